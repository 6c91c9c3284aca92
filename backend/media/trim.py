"""
Recording post-processing for one agent.

detect cues -> build segments -> fall back to session timestamps ->
extract. The cue-derived segments are authoritative; wall-clock segments
from the session are only used when no cue pair can be found.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from cues.detector import detect_cues
from cues.segments import segments_from_cues
from media.probe import probe_cue_region
from media.transcode import extract_segments, latest_recording
from observability.logger import log_agent_event
from observability.metrics import timed
from session.race_session import Segment


@dataclass(frozen=True)
class TrimOutcome:
    video_path: Path
    full_video_path: Path | None
    segments: list[Segment]
    from_cues: bool
    trimmed: bool = False


def trim_recording(
    recording_dir: Path,
    marker_segments: Sequence[Segment],
    agent_id: str,
) -> TrimOutcome | None:
    """
    Trim the newest recording in `recording_dir`.

    Returns None when there is no recording.
    """
    video = latest_recording(recording_dir)
    if video is None:
        log_agent_event(agent_id, "RECORDING_NOT_FOUND", recording_dir=str(recording_dir))
        return None

    with timed("trim_recording", agent_id=agent_id):
        cues = detect_cues(probe_cue_region(video, agent_id=agent_id), agent_id=agent_id)
        segments = segments_from_cues(cues, windows=len(marker_segments))
        from_cues = bool(segments)
        if not from_cues:
            # A window opened and closed on the same tick has nothing to cut
            segments = [s for s in marker_segments if s.end > s.start]
            if segments:
                log_agent_event(agent_id, "CUE_DETECTION_FALLBACK", segments=len(segments))

        result = extract_segments(video, segments, agent_id)

    return TrimOutcome(
        video_path=result.trimmed_path,
        full_video_path=result.full_path,
        segments=segments,
        from_cues=from_cues,
        trimmed=result.trimmed,
    )
