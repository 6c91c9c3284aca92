# pylint: disable=missing-module-docstring,missing-function-docstring

import pytest

from orchestrator.enums.state import RecordingState
from session.race_session import RaceSession


class FakeClock:
    def __init__(self) -> None:
        self.t = 0.0

    def __call__(self) -> float:
        return self.t


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def session(clock: FakeClock) -> RaceSession:
    return RaceSession("alpha", clock=clock, origin=0.0)


def test_start_then_end_appends_one_measurement(session: RaceSession, clock: FakeClock) -> None:
    clock.t = 1.0
    session.start_measurement("X")
    clock.t = 1.5
    measurement = session.end_measurement("X")

    assert measurement is not None
    assert measurement.name == "X"
    assert measurement.duration == pytest.approx(0.5)
    assert len(session.measurements) == 1
    assert session.active_measurements == {}


def test_end_without_start_records_nothing(session: RaceSession) -> None:
    assert session.end_measurement("X") is None
    assert session.measurements == []


def test_restart_overwrites_active_start(session: RaceSession, clock: FakeClock) -> None:
    session.start_measurement("X")
    clock.t = 2.0
    session.start_measurement("X")
    clock.t = 3.0

    measurement = session.end_measurement("X")

    assert measurement is not None
    assert measurement.start_time == 2.0
    assert measurement.duration == 1.0


def test_first_race_start_is_remembered(session: RaceSession, clock: FakeClock) -> None:
    assert session.elapsed_since_first_start() == 0.0
    clock.t = 1.0
    session.start_measurement("a")
    clock.t = 4.0
    session.start_measurement("b")

    assert session.first_race_start == 1.0
    assert session.elapsed_since_first_start() == 3.0


def test_auto_recording_claimed_once(session: RaceSession) -> None:
    assert session.claim_auto_recording()
    assert not session.claim_auto_recording()


def test_explicit_recording_blocks_auto_recording(session: RaceSession) -> None:
    session.mark_explicit_recording()

    assert not session.claim_auto_recording()
    assert not session.auto_recording_started


def test_only_one_segment_open_at_a_time(session: RaceSession, clock: FakeClock) -> None:
    clock.t = 1.0
    assert session.open_segment()
    clock.t = 2.0
    assert not session.open_segment()

    assert session.current_segment_start == 1.0
    assert session.state is RecordingState.RECORDING


def test_close_segment(session: RaceSession, clock: FakeClock) -> None:
    assert session.close_segment() is None

    clock.t = 1.0
    session.open_segment()
    clock.t = 2.5
    segment = session.close_segment()

    assert segment is not None
    assert (segment.start, segment.end) == (1.0, 2.5)
    assert session.segments == [segment]
    assert session.state is RecordingState.IDLE
    assert not session.is_recording


def test_finish_closes_open_segment(session: RaceSession, clock: FakeClock) -> None:
    clock.t = 1.0
    session.open_segment()
    clock.t = 4.0

    segment = session.finish()

    assert segment is not None and segment.end == 4.0
    assert session.is_finished
    assert not session.open_segment()


def test_origin_offsets_all_times(clock: FakeClock) -> None:
    clock.t = 100.0
    session = RaceSession("beta", clock=clock, origin=99.0)

    session.start_measurement()

    assert session.active_measurements["default"] == 1.0
    assert session.to_clock(1.0) == 100.0


def test_finish_time_prefers_last_measurement(session: RaceSession, clock: FakeClock) -> None:
    session.start_measurement()
    clock.t = 2.0
    session.end_measurement()
    clock.t = 9.0

    assert session.finish_time() == 2.0
