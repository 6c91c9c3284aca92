"""
Application and race configuration.

Responsibilities:
- Load deployment-specific configuration from environment variables
- Load per-race settings from settings.json
- Apply command-line overrides on top of race settings
- Provide typed, immutable config objects

Non-responsibilities:
- No orchestration logic
- No behavioral constants (see constants.py)
- No runtime mutation
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

from constants import BARRIER_POLL_INTERVAL_MS, NETWORK_PRESETS
from observability.logger import log_event, now_ms


SETTINGS_FILE_NAME = "settings.json"
DRIVERS = ("playwright", "none")


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable process configuration.

    Constructed once at process startup and passed downward to the
    coordinator and environment factories.
    """

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    env: str

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    enable_json_logs: bool

    # ------------------------------------------------------------------
    # Recording / synchronization
    # ------------------------------------------------------------------

    recordings_dir: Path
    barrier_poll_interval_ms: int

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env() -> AppConfig:
        """Load configuration from environment variables."""
        return AppConfig(
            env=os.environ.get("ENV", "dev"),
            enable_json_logs=os.environ.get("ENABLE_JSON_LOGS", "1") == "1",
            recordings_dir=Path(os.environ.get("RACEBENCH_RECORDINGS_DIR", "recordings")),
            barrier_poll_interval_ms=int(
                os.environ.get("RACEBENCH_BARRIER_POLL_MS", BARRIER_POLL_INTERVAL_MS)
            ),
        )


@dataclass(frozen=True)
class RaceSettings:
    """
    Immutable per-race settings.

    Precedence: defaults < settings.json < command-line overrides.
    """

    parallel: bool = True
    headless: bool = False
    no_overlay: bool = False
    ffmpeg: bool = False
    profile: bool = False
    network: str = "none"
    cpu_throttle: float = 1.0
    slowmo: float = 0.0
    driver: str = "playwright"

    def __post_init__(self) -> None:
        # settings.json values arrive untyped
        for name in ("parallel", "headless", "no_overlay", "ffmpeg", "profile"):
            if not isinstance(getattr(self, name), bool):
                raise ValueError(f"{name} must be true or false")
        for name in ("cpu_throttle", "slowmo"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"{name} must be a number")

        if not isinstance(self.network, str) or self.network not in NETWORK_PRESETS:
            raise ValueError(
                f"unknown network preset {self.network!r}; "
                f"expected one of {sorted(NETWORK_PRESETS)}"
            )
        if self.cpu_throttle < 1:
            raise ValueError("cpu_throttle must be >= 1")
        if self.slowmo < 0:
            raise ValueError("slowmo must be >= 0")
        if self.driver not in DRIVERS:
            raise ValueError(f"unknown driver {self.driver!r}; expected one of {DRIVERS}")

    @staticmethod
    def load(race_dir: Path) -> RaceSettings:
        """
        Load settings.json from a race directory.

        A missing file yields defaults. An unreadable or malformed file
        is logged and ignored.
        """
        path = Path(race_dir) / SETTINGS_FILE_NAME
        if not path.exists():
            return RaceSettings()

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            log_event({
                "ts_ms": now_ms(),
                "event_type": "SETTINGS_UNREADABLE",
                "path": str(path),
                "error": str(exc),
            })
            return RaceSettings()

        if not isinstance(data, dict):
            log_event({
                "ts_ms": now_ms(),
                "event_type": "SETTINGS_UNREADABLE",
                "path": str(path),
                "error": "settings.json must contain an object",
            })
            return RaceSettings()

        return RaceSettings().with_overrides(**_normalize_keys(data))

    def with_overrides(self, **overrides: Any) -> RaceSettings:
        """Return a copy with every non-None known override applied."""
        known = {f.name for f in fields(self)}
        changes = {
            key: value
            for key, value in overrides.items()
            if key in known and value is not None
        }
        return replace(self, **changes)


def _normalize_keys(data: dict[str, Any]) -> dict[str, Any]:
    # settings.json historically used camelCase keys
    aliases = {
        "cpuThrottle": "cpu_throttle",
        "noOverlay": "no_overlay",
    }
    return {aliases.get(key, key): value for key, value in data.items()}
