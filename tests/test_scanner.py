"""
Tests for the symbol-rotation scan loop.
"""

import pytest

from signalcore.config import ScanConfig
from signalcore.scanner import MIN_DWELL_MS, ScanLoop, ScanState
from signalcore.setups import Setup, SetupEngineOutput, SetupFamily, SetupState


def _output(symbol, family=SetupFamily.TREND_PULLBACK, direction="LONG", preferred=True):
    s = Setup(title="Candidate", family=family, symbol=symbol, direction=direction,
              state=SetupState.READY, confidence=65)
    return SetupEngineOutput(ts=0, symbol=symbol, setups=[s], preferred_id=s.id if preferred else None, dq_ok=True)


@pytest.fixture
def loop():
    return ScanLoop(["A", "B"], ScanConfig(settle_ms=1_000, dwell_ms=5_000, max_found=2))


class TestPhases:
    """Test settling, dwelling and rotation"""

    def test_settles_then_records(self, loop):
        assert loop.tick(0, _output("A")) is None
        assert loop.state == ScanState.SETTLING

        found = loop.tick(1_000, _output("A"))
        assert loop.state == ScanState.DWELLING
        assert found.key == "A::A:trend_pullback:LONG"
        assert found.state == "READY"
        assert loop.select(found.key) is found

    def test_duplicates_are_ignored(self, loop):
        loop.tick(0)
        loop.tick(1_000, _output("A"))

        assert loop.tick(2_000, _output("A")) is None
        assert len(loop.found) == 1

    def test_rotates_after_dwell(self, loop):
        loop.tick(0)
        loop.tick(6_000)

        assert loop.active_symbol == "B"
        assert loop.cursor == 1
        assert loop.state == ScanState.SETTLING
        assert loop.phase.settle_until == 7_000

    def test_cursor_wraps(self, loop):
        loop.tick(0)
        loop.tick(6_000)
        loop.tick(12_000)

        assert loop.active_symbol == "A"

    def test_single_symbol_never_rotates(self):
        loop = ScanLoop(["A"], ScanConfig(settle_ms=0, dwell_ms=5_000))
        loop.tick(0)
        loop.tick(60_000)

        assert loop.active_symbol == "A"
        assert loop.state == ScanState.DWELLING

    def test_empty_universe_is_idle(self):
        loop = ScanLoop()

        assert loop.tick(0, _output("A")) is None
        assert loop.state == ScanState.IDLE

    def test_dwell_has_a_floor(self):
        assert ScanLoop(["A"], ScanConfig(dwell_ms=100)).dwell_ms == MIN_DWELL_MS


class TestControl:
    """Test pause/resume and universe updates"""

    def test_pause_freezes_rotation(self, loop):
        loop.tick(0)
        loop.pause()

        assert loop.tick(10_000, _output("A")) is None
        assert loop.state == ScanState.PAUSED
        assert loop.cursor == 0
        assert not loop.found

        loop.resume()
        loop.tick(10_000)
        assert loop.active_symbol == "B"

    def test_set_symbols_wraps_cursor(self, loop):
        loop.tick(0)
        loop.tick(6_000)
        loop.set_symbols(["X"])

        assert loop.cursor == 0
        assert loop.active_symbol == "X"

    def test_status(self, loop):
        loop.tick(0)
        status = loop.status(400)

        assert status['state'] == "SETTLING"
        assert status['active_symbol'] == "A"
        assert status['settle_left_ms'] == 600
        assert status['dwell_left_ms'] == 5_600
        assert status['universe_count'] == 2


class TestFound:
    """Test found-list bookkeeping"""

    def test_other_symbol_output_ignored(self, loop):
        loop.tick(0)

        assert loop.tick(1_000, _output("B")) is None
        assert not loop.found

    def test_no_preferred_is_ignored(self, loop):
        loop.tick(0)

        assert loop.tick(1_000, _output("A", preferred=False)) is None

    def test_capped_newest_first(self, loop):
        loop.tick(0)
        loop.tick(1_000, _output("A"))
        loop.tick(1_100, _output("A", direction="SHORT"))
        loop.tick(1_200, _output("A", family=SetupFamily.BREAKOUT))

        assert [f.setup_id for f in loop.found] == ["A:trend_pullback:SHORT", "A:trend_pullback:LONG"]
        assert loop.found[0].to_dict()['found_ts'] == 1_100
