"""
Tests for cross-exchange consensus.
"""

import math

import numpy as np
import pytest

from signalcore.analysis.cross_exchange import (
    consensus_score,
    deviation_bps,
    deviation_series,
    deviation_z,
    lead_lag,
    smoothstep,
)
from signalcore.models import Candle, LeadLag

from conftest import HOUR_MS

T0 = 1_699_000_000_000 - 1_699_000_000_000 % HOUR_MS


def _venue(closes, step=60_000):
    return [Candle(ts=T0 + i * step, o=c, h=c, l=c, c=c, v=1.0) for i, c in enumerate(closes)]


@pytest.fixture
def lagged_pair():
    """Secondary repeats the primary's log return one bar later."""
    rng = np.random.RandomState(7)
    r = rng.randn(150) * 0.001
    pa = [100.0]
    pb = [100.0]
    for i in range(150):
        pa.append(pa[-1] * math.exp(r[i]))
        pb.append(pb[-1] * math.exp(r[i - 1] if i > 0 else 0.0))
    return _venue(pa), _venue(pb)


class TestDeviation:
    """Test price deviation"""

    def test_deviation_bps(self):
        assert deviation_bps(100.1, 100.0) == pytest.approx(0.1 / 100.05 * 10_000)
        assert deviation_bps(100.0, 100.1) < 0

    def test_missing_prices(self):
        assert deviation_bps(None, 100.0) is None
        assert deviation_bps(0.0, 0.0) is None
        assert deviation_bps(float('nan'), 1.0) is None

    def test_series_uses_common_timestamps(self):
        a = _venue([100, 101, 102])
        b = _venue([100, 101])
        assert len(deviation_series(a, b)) == 2

    def test_deviation_z(self):
        a = _venue([100.0] * 40)
        b = _venue([99.9] * 40)

        assert deviation_z(a, b, window=120, min_samples=30) == 0.0
        assert deviation_z(a[:20], b[:20], window=120, min_samples=30) is None


class TestLeadLag:
    """Test lead/lag detection"""

    def test_primary_leads_by_one_bar(self, lagged_pair):
        a, b = lagged_pair
        ll = lead_lag(a, b, window=120, max_lag=3, min_returns=30)

        assert ll.lag_bars == -1
        assert ll.leader == "primary"
        assert ll.corr == pytest.approx(1.0)
        assert ll.score == pytest.approx(1.0)

    def test_swapped_venues_flip_the_leader(self, lagged_pair):
        a, b = lagged_pair
        ll = lead_lag(b, a, window=120, max_lag=3, min_returns=30)

        assert ll.lag_bars == 1
        assert ll.leader == "secondary"

    def test_insufficient_returns(self, lagged_pair):
        a, b = lagged_pair
        assert lead_lag(a[:20], b[:20], min_returns=30) is None


class TestConsensus:
    """Test the blended consensus score"""

    def test_smoothstep(self):
        assert smoothstep(2, 12, 7) == pytest.approx(0.5)
        assert smoothstep(2, 12, 0) == 0.0
        assert smoothstep(2, 12, 50) == 1.0

    def test_tight_deviation_scores_one(self):
        assert consensus_score(0.0) == pytest.approx(1.0)
        assert consensus_score(1.5, LeadLag("none", 0, 1.0, 1.0)) == pytest.approx(1.0)

    def test_wide_deviation_scores_zero(self):
        assert consensus_score(20.0) == pytest.approx(0.0)

    def test_missing_deviation(self):
        assert consensus_score(None) is None

    def test_score_bounded(self):
        for dev in (-50.0, -5.0, 0.0, 3.0, 9.0, 1e6):
            for ll in (None, LeadLag("primary", -5, 0.2, -0.6), LeadLag("none", 0, 1.0, 1.0)):
                score = consensus_score(dev, ll)
                assert 0.0 <= score <= 1.0
