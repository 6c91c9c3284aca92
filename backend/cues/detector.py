"""
Visual cue detection.

Scans per-frame color statistics of a small fixed region of a recording
(the corner where the cue square is rendered) and returns the timestamps
of start cues (green) and end cues (red).

Rules:
- Pure: no subprocesses, no file access (see media.probe for sampling)
- Never raises for missing cues; returns an empty CueSet and logs
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np

from constants import CUE_THRESHOLDS, DEFAULT_FRAME_DURATION_S, CueThresholds
from observability.logger import log_event, now_ms


@dataclass(frozen=True)
class FrameSample:
    """Average hue / saturation / luminance of the cue region at one frame."""
    time: float
    hue: float
    saturation: float
    luminance: float


@dataclass(frozen=True)
class CueSet:
    """Detected cue timestamps plus the inferred sampling interval."""
    start_cues: tuple[float, ...]
    end_cues: tuple[float, ...]
    frame_duration: float = DEFAULT_FRAME_DURATION_S

    @property
    def detected(self) -> bool:
        return bool(self.start_cues) and bool(self.end_cues)


def _as_array(samples: Sequence[FrameSample] | np.ndarray) -> np.ndarray:
    if isinstance(samples, np.ndarray):
        data = np.asarray(samples, dtype=float)
    else:
        data = np.array(
            [(s.time, s.hue, s.saturation, s.luminance) for s in samples],
            dtype=float,
        )
    return data.reshape(-1, 4)


def infer_frame_duration(times: np.ndarray) -> float:
    """
    Median positive delta between consecutive timestamps.

    Falls back to the ~25 fps default with fewer than two usable samples.
    """
    if times.size < 2:
        return DEFAULT_FRAME_DURATION_S
    deltas = np.diff(times)
    deltas = deltas[deltas > 0]
    if deltas.size == 0:
        return DEFAULT_FRAME_DURATION_S
    return float(np.median(deltas))


def classify_frames(
    data: np.ndarray,
    thresholds: CueThresholds = CUE_THRESHOLDS,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Boolean masks (start, end) over rows of [time, hue, sat, y].

    A frame is a start cue if saturated, green-hued and dark; an end cue
    if saturated, red-hued and bright. Everything else is ignored.
    """
    hue, sat, y = data[:, 1], data[:, 2], data[:, 3]
    saturated = sat > thresholds.saturation_min

    start = (
        saturated
        & (hue > thresholds.start_hue_min)
        & (hue < thresholds.start_hue_max)
        & (y < thresholds.start_y_max)
    )
    end = (
        saturated
        & ~start
        & (hue > thresholds.end_hue_min)
        & (hue < thresholds.end_hue_max)
        & (y > thresholds.end_y_min)
    )
    return start, end


def detect_cues(
    samples: Sequence[FrameSample] | np.ndarray,
    thresholds: CueThresholds = CUE_THRESHOLDS,
    *,
    agent_id: str | None = None,
) -> CueSet:
    """
    Detect start/end cue timestamps in a sampled recording.

    Rows with an unparsable time, hue or saturation are skipped. If either
    cue list comes out empty, both are returned empty so the caller falls
    back to timestamp-based segments.
    """
    data = _as_array(samples)
    data = data[~np.isnan(data[:, :3]).any(axis=1)]
    data = data[np.argsort(data[:, 0], kind="stable")]

    frame_duration = infer_frame_duration(data[:, 0])
    start_mask, end_mask = classify_frames(data, thresholds)
    start_cues = tuple(float(t) for t in data[start_mask, 0])
    end_cues = tuple(float(t) for t in data[end_mask, 0])

    if not start_cues or not end_cues:
        log_event({
            "ts_ms": now_ms(),
            "event_type": "CUE_DETECTION_FAILED",
            "agent_id": agent_id,
            "frames": int(data.shape[0]),
            "start_cues": len(start_cues),
            "end_cues": len(end_cues),
        })
        return CueSet(start_cues=(), end_cues=(), frame_duration=frame_duration)

    return CueSet(start_cues=start_cues, end_cues=end_cues, frame_duration=frame_duration)
