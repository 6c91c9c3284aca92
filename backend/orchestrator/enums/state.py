"""
Recording state enumeration for a single race session.

Rules:
- This enum defines ONLY the states.
- No behavior, no helper methods, no side effects.
- Transitions are defined exclusively in session.race_session.
"""

from __future__ import annotations

from enum import Enum


class RecordingState(str, Enum):
    """
    idle -> recording -> idle -> ... -> finished

    At most one segment is open while RECORDING.
    FINISHED is terminal.
    """

    IDLE = "idle"
    RECORDING = "recording"
    FINISHED = "finished"
