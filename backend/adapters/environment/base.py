"""
Agent environment contract.

An environment is everything outside the core that one agent runs
against: the automation handle given to its script, the recording
infrastructure, and the on-screen overlays used as visual cues.

This module defines the *interface only*. No timing decisions, no
barriers and no knowledge of other agents live here.

Key invariants:
- `origin` is the monotonic time at which recording started; every
  session timestamp is relative to it.
- The race harness decides when cues appear; the environment only
  renders them.
- close() is idempotent and never raises.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any


@dataclass(frozen=True)
class ClickEvent:
    """A mousedown seen in the page; `timestamp` is seconds since `origin`."""
    timestamp: float
    x: float
    y: float
    element: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class EnvironmentArtifacts:
    """What an environment hands back before it is closed."""
    click_events: list[ClickEvent] = field(default_factory=list)
    profile_metrics: dict[str, Any] | None = None
    trace_path: Path | None = None


class AgentEnvironment(ABC):
    """
    Abstract live environment for one agent.

    Implementations are responsible for:
    - Exposing the automation handle passed to the racer script
    - Rendering cue squares and overlays on request
    - Releasing every resource on close()

    Non-responsibilities:
    - No session state (segments, measurements)
    - No post-processing of recordings
    """

    agent_id: str
    origin: float

    @property
    @abstractmethod
    def page(self) -> Any:
        """Automation handle passed to the racer script (may be None)."""
        raise NotImplementedError

    @property
    @abstractmethod
    def recording_dir(self) -> Path | None:
        """Directory receiving this agent's raw recording, if any."""
        raise NotImplementedError

    @abstractmethod
    async def flash_cue(self, color: str) -> None:
        """
        Render a solid, full-opacity cue square in the detection corner.

        Contract:
        - The square is held for the cue duration, then removed.
        - Returns only once the square is gone, so content recorded after
          the call never contains the cue.
        """
        raise NotImplementedError

    async def show_recording_indicator(self) -> None:
        """Overlay shown while a segment is open. Optional."""

    async def hide_recording_indicator(self) -> None:
        """Remove the recording overlay. Optional."""

    async def show_finish_time(self, duration_s: float) -> None:
        """Show a measured duration. Optional."""

    async def show_placement(self, place: int | None) -> None:
        """Show a medal for `place`, or a finish flag when None. Optional."""

    async def start_profile_window(self) -> None:
        """First race_start: begin measurement-scoped metrics. Optional."""

    def stop_profile_window(self) -> None:
        """No measurement is active any more. Optional."""

    async def collect_artifacts(self) -> EnvironmentArtifacts:
        """
        Click events and profiling output gathered during the run.

        Called once after a successful script, before close(). Click
        timestamps are relative to `origin` (not yet remapped).
        """
        return EnvironmentArtifacts()

    @abstractmethod
    async def pause(self, seconds: float) -> None:
        raise NotImplementedError

    @abstractmethod
    async def close(self) -> None:
        raise NotImplementedError


class EnvironmentFactory(ABC):
    """Creates one environment per agent, ready to record."""

    @abstractmethod
    async def create(
        self,
        agent_id: str,
        *,
        index: int,
        total: int,
        parallel: bool,
    ) -> AgentEnvironment:
        """
        Build the environment for agent `index` of `total`.

        Raises whatever the underlying driver raises; the coordinator
        turns it into that agent's error.
        """
        raise NotImplementedError
