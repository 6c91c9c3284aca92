"""
Per-agent race session state machine.

Rules:
- Pure bookkeeping: no barriers, no environment, no async.
- Mutated only through the methods below, in script-issued order.
- Times are seconds relative to the session origin (recording start).

States: idle -> recording -> idle -> ... -> finished.
At most one segment is open at a time.
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass
from typing import Any, Callable

from constants import DEFAULT_MEASUREMENT_NAME
from orchestrator.enums.state import RecordingState


Clock = Callable[[], float]


@dataclass(frozen=True)
class Segment:
    """Recording-relative time range selected for extraction (end > start)."""
    start: float
    end: float

    @property
    def duration(self) -> float:
        return self.end - self.start

    def to_dict(self) -> dict[str, float]:
        return {"start": self.start, "end": self.end}


@dataclass(frozen=True)
class Measurement:
    """A named, timed interval within one agent's run."""
    name: str
    start_time: float
    end_time: float
    duration: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class RaceSession:
    """
    Explicit state for one agent's run.

    Recording-start triggers:
    - `has_explicit_recording` is set by any explicit recording call
    - `auto_recording_started` is a one-shot flag claimed by the first
      race_start when no explicit recording call came first
    Whichever fires first wins; the other never starts recording.
    """

    def __init__(
        self,
        agent_id: str,
        *,
        clock: Clock = time.monotonic,
        origin: float | None = None,
    ) -> None:
        self.agent_id = agent_id
        self._clock = clock
        self._origin = clock() if origin is None else origin

        self.state = RecordingState.IDLE
        self.current_segment_start: float | None = None
        self.segments: list[Segment] = []

        self.measurements: list[Measurement] = []
        self.active_measurements: dict[str, float] = {}
        self.first_race_start: float | None = None

        self.has_explicit_recording = False
        self.auto_recording_started = False

    # ------------------------------------------------------------------
    # Time
    # ------------------------------------------------------------------

    def now(self) -> float:
        """Seconds since the session origin."""
        return self._clock() - self._origin

    def elapsed_since_first_start(self) -> float:
        if self.first_race_start is None:
            return 0.0
        return self.now() - self.first_race_start

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    @property
    def is_recording(self) -> bool:
        return self.current_segment_start is not None

    @property
    def is_finished(self) -> bool:
        return self.state is RecordingState.FINISHED

    def mark_explicit_recording(self) -> None:
        self.has_explicit_recording = True

    def claim_auto_recording(self) -> bool:
        """
        Return True exactly once, and only if no explicit recording call
        happened first.
        """
        if self.has_explicit_recording or self.auto_recording_started:
            return False
        self.auto_recording_started = True
        return True

    def open_segment(self) -> bool:
        """
        Open a segment at the current time.

        No-op (returns False) if one is already open or the session
        has finished.
        """
        if self.is_recording or self.is_finished:
            return False
        self.current_segment_start = self.now()
        self.state = RecordingState.RECORDING
        return True

    def close_segment(self) -> Segment | None:
        """Close the open segment at the current time; None if none is open."""
        if self.current_segment_start is None:
            return None
        segment = Segment(start=self.current_segment_start, end=self.now())
        self.segments.append(segment)
        self.current_segment_start = None
        if not self.is_finished:
            self.state = RecordingState.IDLE
        return segment

    # ------------------------------------------------------------------
    # Measurements
    # ------------------------------------------------------------------

    def start_measurement(self, name: str = DEFAULT_MEASUREMENT_NAME) -> float:
        """
        Begin a named measurement and return its start time.

        Restarting an active name overwrites its start (last write wins).
        """
        start = self.now()
        if self.first_race_start is None:
            self.first_race_start = start
        self.active_measurements[name] = start
        return start

    def end_measurement(self, name: str = DEFAULT_MEASUREMENT_NAME) -> Measurement | None:
        """
        End a named measurement.

        Returns None (and records nothing) when the name is not active.
        """
        start = self.active_measurements.pop(name, None)
        if start is None:
            return None
        end = self.now()
        measurement = Measurement(
            name=name,
            start_time=start,
            end_time=end,
            duration=end - start,
        )
        self.measurements.append(measurement)
        return measurement

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def finish(self) -> Segment | None:
        """
        Finalize the session after the script returns.

        A segment left open is closed at the current time; this is an
        implicit end of recording, not an error.
        """
        segment = self.close_segment()
        self.state = RecordingState.FINISHED
        return segment

    def finish_time(self) -> float:
        """End time used for ranking: last measurement end, else now."""
        if self.measurements:
            return self.measurements[-1].end_time
        return self.now()

    def to_clock(self, t: float) -> float:
        """Session-relative time back on the shared clock (comparable across agents)."""
        return self._origin + t
