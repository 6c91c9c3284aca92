"""
Cue-region sampling via ffprobe.

Crops the top-left cue square of every frame and reads the average
hue, saturation and luminance from ffmpeg's `signalstats` filter.
"""

from __future__ import annotations

import math
import re
import subprocess
from pathlib import Path

from constants import CUE_SIZE_PX, FFPROBE_BIN, PROBE_TIMEOUT_S
from cues.detector import FrameSample
from observability.logger import log_event, now_ms


# Characters with special meaning inside an lavfi filter graph
_LAVFI_SPECIAL = re.compile(r"[';,\[\]=\\ ]")


def escape_lavfi_path(path: Path | str) -> str:
    """Percent-encode a file path for use inside `movie=` of a filter graph."""
    posix = str(path).replace("\\", "/")
    return _LAVFI_SPECIAL.sub(lambda m: f"%{ord(m.group()):02x}", posix)


def build_probe_command(video_path: Path | str) -> list[str]:
    graph = (
        f"movie={escape_lavfi_path(video_path)},"
        f"crop={CUE_SIZE_PX}:{CUE_SIZE_PX}:0:0,signalstats"
    )
    return [
        FFPROBE_BIN,
        "-f", "lavfi",
        "-i", graph,
        "-show_entries",
        "frame=pts_time:frame_tags=lavfi.signalstats.HUEAVG,"
        "lavfi.signalstats.SATAVG,lavfi.signalstats.YAVG",
        "-of", "csv=p=0",
        "-v", "quiet",
    ]


def parse_probe_output(text: str) -> list[FrameSample]:
    """
    Parse `time,hue,sat,y` CSV lines.

    Lines whose time, hue or saturation do not parse are skipped; a missing
    luminance becomes NaN (never classified as a cue).
    """
    samples: list[FrameSample] = []
    for line in text.splitlines():
        parts = line.strip().split(",")
        if len(parts) < 3:
            continue
        try:
            time_s, hue, sat = (float(p) for p in parts[:3])
        except ValueError:
            continue
        if any(math.isnan(v) for v in (time_s, hue, sat)):
            continue
        try:
            y = float(parts[3]) if len(parts) > 3 else math.nan
        except ValueError:
            y = math.nan
        samples.append(FrameSample(time=time_s, hue=hue, saturation=sat, luminance=y))
    return samples


def probe_cue_region(video_path: Path | str, *, agent_id: str | None = None) -> list[FrameSample]:
    """
    Sample the cue region of every frame of a recording.

    Returns [] (and logs) if ffprobe is missing, fails, or times out.
    """
    try:
        result = subprocess.run(
            build_probe_command(video_path),
            capture_output=True,
            text=True,
            timeout=PROBE_TIMEOUT_S,
            check=True,
        )
    except (OSError, subprocess.CalledProcessError, subprocess.TimeoutExpired) as exc:
        log_event({
            "ts_ms": now_ms(),
            "event_type": "CUE_PROBE_FAILED",
            "agent_id": agent_id,
            "video_path": str(video_path),
            "error": str(exc),
        })
        return []

    return parse_probe_output(result.stdout)
