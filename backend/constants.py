"""
BEHAVIOR-AS-CONSTANTS
---------------------
Single source of truth for all behavioral invariants in the system.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- No magic numbers elsewhere in the codebase.
- Other modules MUST import from this file.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final, Mapping, Optional, Tuple

# =============================================================================
# Synchronization
# =============================================================================

# How often a suspended barrier waiter re-checks the shared error flag.
BARRIER_POLL_INTERVAL_MS: Final[int] = 100

DEFAULT_MEASUREMENT_NAME: Final[str] = "default"

# =============================================================================
# Visual Cues (rendered by the agent environment)
# =============================================================================

CUE_COLOR_START: Final[str] = "#00FF00"
CUE_COLOR_END: Final[str] = "#FF0000"
CUE_DURATION_MS: Final[int] = 300
CUE_SIZE_PX: Final[int] = 30  # large enough for reliable detection

# Pause after the finish placement is shown, and before the session returns.
FINISH_DISPLAY_MS: Final[int] = 500
POST_RACE_SETTLE_MS: Final[int] = 500

MEDALS: Final[Tuple[str, ...]] = ("🥇", "🥈", "🥉", "4️⃣", "5️⃣")
ORDINALS: Final[Tuple[str, ...]] = ("1st", "2nd", "3rd", "4th", "5th")

# =============================================================================
# Cue Detection (ffprobe signalstats units)
# =============================================================================
# Green (#00FF00): hue ~146, sat ~118, Y ~38
# Red   (#FF0000): hue ~81,  sat ~116, Y ~161


@dataclass(frozen=True)
class CueThresholds:
    """
    Classification bands for cue frames.

    A frame is a cue only if its saturation exceeds `saturation_min`.
    Bounds are exclusive.
    """
    start_hue_min: float = 130.0
    start_hue_max: float = 170.0
    start_y_max: float = 80.0
    end_hue_min: float = 60.0
    end_hue_max: float = 100.0
    end_y_min: float = 120.0
    saturation_min: float = 80.0


CUE_THRESHOLDS: Final[CueThresholds] = CueThresholds()

# ~25 fps when the sampling interval cannot be inferred
DEFAULT_FRAME_DURATION_S: Final[float] = 0.04

# Consecutive cue frames further apart than this many frame durations
# belong to different cue flashes.
CUE_RUN_GAP_FRAMES: Final[float] = 1.5

# =============================================================================
# Media Tooling
# =============================================================================

FFPROBE_BIN: Final[str] = "ffprobe"
FFMPEG_BIN: Final[str] = "ffmpeg"

PROBE_TIMEOUT_S: Final[float] = 60.0
TRANSCODE_TIMEOUT_S: Final[float] = 120.0

RECORDING_EXTENSION: Final[str] = ".webm"
STALE_RECORDING_AGE_S: Final[float] = 5.0

# Intermediate file markers removed after a failed extraction
TRANSCODE_TEMP_MARKERS: Final[Tuple[str, ...]] = ("_seg", "_concat", "_final", "_trimmed")

# =============================================================================
# Racer Scripts
# =============================================================================

RACER_SCRIPT_SUFFIXES: Final[Tuple[str, ...]] = (".race.py", ".py")
RACER_SCRIPT_ENTRYPOINT: Final[str] = "race"
MAX_RACERS: Final[int] = 5

# =============================================================================
# Browser Environment
# =============================================================================

SCREEN_WIDTH_PX: Final[int] = 1920
SCREEN_HEIGHT_PX: Final[int] = 1080
WINDOW_HEIGHT_PX: Final[int] = 800
SEQUENTIAL_VIEWPORT: Final[Tuple[int, int]] = (1280, 720)

PAGE_DEFAULT_TIMEOUT_MS: Final[int] = 90_000
SLOWMO_MS_PER_STEP: Final[int] = 20


@dataclass(frozen=True)
class NetworkPreset:
    """Network emulation parameters (bytes/s, ms)."""
    download_throughput: float
    upload_throughput: float
    latency_ms: int


NETWORK_PRESETS: Final[Mapping[str, Optional[NetworkPreset]]] = {
    "none": None,
    "slow-3g": NetworkPreset(500 * 1024 / 8, 500 * 1024 / 8, 400),
    "fast-3g": NetworkPreset(1500 * 1024 / 8, 750 * 1024 / 8, 150),
    "4g": NetworkPreset(4000 * 1024 / 8, 3000 * 1024 / 8, 50),
}


# =============================================================================
# Profiling
# =============================================================================

TRACE_CATEGORIES: Final[Tuple[str, ...]] = ("devtools.timeline",)
TRACE_FILE_SUFFIX: Final[str] = ".trace.json"

# CDP Performance.getMetrics name -> reported key; durations arrive in seconds
CDP_DURATION_METRICS: Final[Mapping[str, str]] = {
    "ScriptDuration": "script_duration",
    "LayoutDuration": "layout_duration",
    "RecalcStyleDuration": "recalc_style_duration",
    "TaskDuration": "task_duration",
}


# =============================================================================
# Helper Functions
# =============================================================================

def ms_to_seconds(value_ms: float) -> float:
    """
    Convert milliseconds to seconds.

    Negative input returns 0.0 instead of propagating an error.
    """
    if value_ms <= 0:
        return 0.0
    return value_ms / 1000.0
