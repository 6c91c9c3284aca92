"""
Segment building from detected cues.

Content starts one frame after the last frame of a green cue and ends
one frame before the first frame of the red cue, so the cue itself
never appears in the extracted clip.
"""

from __future__ import annotations

from typing import Sequence

from constants import CUE_RUN_GAP_FRAMES, DEFAULT_FRAME_DURATION_S
from cues.detector import CueSet
from session.race_session import Segment


def build_segments(
    start_cues: Sequence[float],
    end_cues: Sequence[float],
    frame_duration: float,
) -> list[Segment]:
    """
    Single-window segment from cue timestamps.

    Returns [] when either list is empty or when the window collapses
    (end <= start); [] tells the caller to fall back.
    """
    if not start_cues or not end_cues:
        return []
    dt = frame_duration or DEFAULT_FRAME_DURATION_S
    # The cue renders across several frames; its last frame is closest to
    # the true start
    start = start_cues[-1] + dt
    end = end_cues[0] - dt
    if end > start:
        return [Segment(start=start, end=end)]
    return []


def group_cue_runs(cues: Sequence[float], frame_duration: float) -> list[list[float]]:
    """Split sorted cue timestamps into runs of consecutive frames (one run per flash)."""
    dt = frame_duration or DEFAULT_FRAME_DURATION_S
    max_gap = dt * CUE_RUN_GAP_FRAMES
    runs: list[list[float]] = []
    for t in cues:
        if runs and t - runs[-1][-1] <= max_gap:
            runs[-1].append(t)
        else:
            runs.append([t])
    return runs


def build_window_segments(
    start_cues: Sequence[float],
    end_cues: Sequence[float],
    frame_duration: float,
) -> list[Segment]:
    """
    One segment per start/end cue pair, in chronological order.

    Each start flash is paired with the first end flash after it; when
    several start flashes precede the same end flash, the latest one wins.
    Pairs that collapse are dropped.
    """
    start_runs = group_cue_runs(start_cues, frame_duration)
    end_runs = group_cue_runs(end_cues, frame_duration)

    segments: list[Segment] = []
    si = ei = 0
    while si < len(start_runs):
        while ei < len(end_runs) and end_runs[ei][0] <= start_runs[si][-1]:
            ei += 1
        if ei == len(end_runs):
            break
        while si + 1 < len(start_runs) and start_runs[si + 1][-1] < end_runs[ei][0]:
            si += 1
        segments.extend(build_segments(start_runs[si], end_runs[ei], frame_duration))
        si += 1
        ei += 1
    return segments


def segments_from_cues(cues: CueSet, *, windows: int = 1) -> list[Segment]:
    """
    Trim segments for a recording that was expected to contain `windows`
    recording windows.
    """
    if not cues.detected:
        return []
    if windows <= 1:
        return build_segments(cues.start_cues, cues.end_cues, cues.frame_duration)
    return build_window_segments(cues.start_cues, cues.end_cues, cues.frame_duration)


def remap_timestamp(t: float, segments: Sequence[Segment]) -> float | None:
    """
    Map a recording-relative time onto the concatenated trimmed timeline.

    Returns None for times that fall outside every segment (cut away).
    """
    offset = 0.0
    for segment in segments:
        if segment.start <= t <= segment.end:
            return offset + (t - segment.start)
        offset += segment.duration
    return None
