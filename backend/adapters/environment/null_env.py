"""
Browserless environment.

Runs racer scripts against plain asyncio: there is no page and no video,
and cues are logged instead of rendered. Useful for timing async Python
work head to head, and as the environment behind unit tests.
"""

from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import Any

from adapters.environment.base import AgentEnvironment, EnvironmentFactory
from constants import CUE_DURATION_MS, ms_to_seconds
from observability.logger import log_agent_event


class NullEnvironment(AgentEnvironment):
    """
    Environment with no automation handle and no recording.

    `time_scale` multiplies every cue hold and pause; 0 makes them
    instantaneous.
    """

    def __init__(self, agent_id: str, *, time_scale: float = 1.0) -> None:
        self.agent_id = agent_id
        self.origin = time.monotonic()
        self._time_scale = time_scale
        self._closed = False
        self.cues: list[tuple[str, float]] = []

    @property
    def page(self) -> Any:
        return None

    @property
    def recording_dir(self) -> Path | None:
        return None

    async def flash_cue(self, color: str) -> None:
        self.cues.append((color, time.monotonic() - self.origin))
        log_agent_event(self.agent_id, "CUE_FLASHED", color=color)
        await self.pause(ms_to_seconds(CUE_DURATION_MS))

    async def show_placement(self, place: int | None) -> None:
        log_agent_event(self.agent_id, "FINISHED", place=place)

    async def pause(self, seconds: float) -> None:
        await asyncio.sleep(seconds * self._time_scale)

    async def close(self) -> None:
        self._closed = True


class NullEnvironmentFactory(EnvironmentFactory):
    """Creates NullEnvironment instances sharing one time scale."""

    def __init__(self, *, time_scale: float = 1.0) -> None:
        self._time_scale = time_scale

    async def create(
        self,
        agent_id: str,
        *,
        index: int,
        total: int,
        parallel: bool,
    ) -> NullEnvironment:
        return NullEnvironment(agent_id, time_scale=self._time_scale)
