"""
Recording files and ffmpeg segment extraction.

Responsibilities:
- Locate the most recent raw recording for an agent
- Remove stale recordings before a new run
- Cut one segment, or cut several and concatenate them in order
- Keep an untouched `_full` copy next to the trimmed recording

A failed extraction leaves the original recording in place and removes
intermediate files; it never raises.
"""

from __future__ import annotations

import shutil
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from constants import (
    FFMPEG_BIN,
    RECORDING_EXTENSION,
    STALE_RECORDING_AGE_S,
    TRANSCODE_TEMP_MARKERS,
    TRANSCODE_TIMEOUT_S,
)
from observability.logger import log_agent_event
from session.race_session import Segment


@dataclass(frozen=True)
class ExtractResult:
    trimmed_path: Path
    full_path: Path | None
    trimmed: bool


# ---------------------------------------------------------------------
# Recording lookup
# ---------------------------------------------------------------------

def latest_recording(directory: Path, extension: str = RECORDING_EXTENSION) -> Path | None:
    """Most recently modified recording in `directory`, or None."""
    directory = Path(directory)
    if not directory.is_dir():
        return None
    videos = [p for p in directory.iterdir() if p.is_file() and p.suffix == extension]
    if not videos:
        return None
    return max(videos, key=lambda p: p.stat().st_mtime)


def cleanup_old_recordings(
    directory: Path,
    *,
    max_age_s: float = STALE_RECORDING_AGE_S,
    extension: str = RECORDING_EXTENSION,
) -> int:
    """Delete recordings older than `max_age_s`; returns how many were removed."""
    directory = Path(directory)
    if not directory.is_dir():
        return 0
    now = time.time()
    removed = 0
    for path in directory.iterdir():
        if path.suffix == extension and now - path.stat().st_mtime > max_age_s:
            path.unlink(missing_ok=True)
            removed += 1
    return removed


# ---------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------

def _cut_command(source: Path, segment: Segment, target: Path) -> list[str]:
    return [
        FFMPEG_BIN, "-y", "-i", str(source),
        "-ss", f"{segment.start:.3f}", "-t", f"{segment.duration:.3f}",
        "-c:v", "libvpx-vp9", "-crf", "30", "-b:v", "0",
        str(target),
    ]


def _concat_command(list_path: Path, target: Path) -> list[str]:
    return [
        FFMPEG_BIN, "-y", "-f", "concat", "-safe", "0",
        "-i", str(list_path), "-c", "copy", str(target),
    ]


def _run(cmd: list[str]) -> None:
    subprocess.run(cmd, capture_output=True, timeout=TRANSCODE_TIMEOUT_S, check=True)


def extract_segments(
    video_path: Path,
    segments: Sequence[Segment],
    agent_id: str,
) -> ExtractResult:
    """
    Replace `video_path` with the given segments, in order.

    The original is first copied to `<stem>_full<ext>`. With no segments
    the recording is left as is. If that copy cannot be made nothing is
    cut and `full_path` is None.
    """
    video_path = Path(video_path)
    directory, stem, ext = video_path.parent, video_path.stem, video_path.suffix
    full_path = directory / f"{stem}_full{ext}"
    try:
        shutil.copyfile(video_path, full_path)
    except OSError as exc:
        log_agent_event(agent_id, "FULL_COPY_FAILED", error=str(exc), path=str(full_path))
        return ExtractResult(trimmed_path=video_path, full_path=None, trimmed=False)

    if not segments:
        return ExtractResult(trimmed_path=video_path, full_path=full_path, trimmed=False)

    try:
        if len(segments) == 1:
            output = directory / f"{stem}_trimmed{ext}"
            _run(_cut_command(video_path, segments[0], output))
        else:
            parts: list[Path] = []
            for i, segment in enumerate(segments):
                part = directory / f"{stem}_seg{i}{ext}"
                _run(_cut_command(video_path, segment, part))
                parts.append(part)

            list_path = directory / f"{stem}_concat.txt"
            list_path.write_text(
                "\n".join(f"file '{p}'" for p in parts), encoding="utf-8"
            )
            output = directory / f"{stem}_final{ext}"
            _run(_concat_command(list_path, output))

            for path in (*parts, list_path):
                path.unlink(missing_ok=True)

        output.replace(video_path)
    except (OSError, subprocess.CalledProcessError, subprocess.TimeoutExpired) as exc:
        log_agent_event(
            agent_id,
            "SEGMENT_EXTRACTION_FAILED",
            error=str(exc),
            hint="is ffmpeg installed?",
        )
        _remove_intermediates(directory, stem)
        return ExtractResult(trimmed_path=video_path, full_path=full_path, trimmed=False)

    log_agent_event(
        agent_id,
        "SEGMENTS_EXTRACTED",
        segments=[s.to_dict() for s in segments],
        video_path=str(video_path),
    )
    return ExtractResult(trimmed_path=video_path, full_path=full_path, trimmed=True)


def _remove_intermediates(directory: Path, stem: str) -> None:
    for path in directory.iterdir():
        name = path.name
        if name.startswith(stem) and any(m in name for m in TRANSCODE_TEMP_MARKERS):
            path.unlink(missing_ok=True)
