"""
Execution coordinator.

Responsibilities:
- Run one race session per agent, concurrently (barrier-synchronized)
  or one after another (no barriers)
- Own the shared run state and the barrier set for the race
- Convert every per-agent failure into that agent's result
- Optionally hand finished recordings to post-processing
- Gather clicks and profiling output, clicks remapped onto the delivered video

Non-responsibilities:
- NO script semantics (see session.race_api)
- NO environment internals (see adapters.environment)
- NO result rendering

Guarantees:
- run() returns exactly one AgentResult per configured agent, in input
  order, and never raises for an agent failure
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Sequence

from adapters.environment.base import (
    AgentEnvironment,
    ClickEvent,
    EnvironmentArtifacts,
    EnvironmentFactory,
)
from constants import BARRIER_POLL_INTERVAL_MS
from cues.segments import remap_timestamp
from media.trim import TrimOutcome, trim_recording
from observability.logger import log_event, log_agent_event, now_ms
from observability.metrics import timed
from orchestrator.barrier import BarrierSet
from orchestrator.cancellation import CancellationToken
from orchestrator.enums.mode import ExecutionMode
from orchestrator.run_state import SharedRunState
from session.race_api import RaceHarness
from session.race_session import Measurement, RaceSession, Segment
from session.scripts import RaceScript


# ---------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class AgentConfig:
    """One agent to run: its id and its (possibly empty) script."""
    id: str
    script: RaceScript | None


@dataclass
class AgentResult:
    """Outcome of one agent's run, as handed to reporting."""

    id: str
    segments: list[Segment] = field(default_factory=list)
    measurements: list[Measurement] = field(default_factory=list)
    error: str | None = None
    place: int | None = None
    video_path: Path | None = None
    full_video_path: Path | None = None
    click_events: list[ClickEvent] = field(default_factory=list)
    profile_metrics: dict[str, Any] | None = None
    trace_path: Path | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "segments": [s.to_dict() for s in self.segments],
            "measurements": [m.to_dict() for m in self.measurements],
            "error": self.error,
            "place": self.place,
            "video_path": str(self.video_path) if self.video_path else None,
            "full_video_path": str(self.full_video_path) if self.full_video_path else None,
            "click_events": [c.to_dict() for c in self.click_events],
            "profile_metrics": self.profile_metrics,
            "trace_path": str(self.trace_path) if self.trace_path else None,
        }


def remap_clicks(clicks: Sequence[ClickEvent], segments: Sequence[Segment]) -> list[ClickEvent]:
    """
    Shift click timestamps onto the trimmed timeline.

    Clicks outside every segment are dropped. With no segments the
    recording is untrimmed and clicks are returned as is.
    """
    if not segments:
        return list(clicks)
    remapped = []
    for click in clicks:
        t = remap_timestamp(click.timestamp, segments)
        if t is not None:
            remapped.append(replace(click, timestamp=t))
    return remapped


# ---------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------

class ExecutionCoordinator:
    """
    Runs N race sessions and collects their results.

    Parallel mode:
    - one SharedRunState and one BarrierSet sized to the agent count
    - every agent waits at `ready` before its script runs, so no agent
      gets a head start while others are still launching

    Sequential mode:
    - no barriers; agents run one after another with their own full
      lifecycle; the shared state still collects finishes and errors

    A failing agent marks the shared state failed and releases every
    barrier, which aborts siblings still waiting at a checkpoint.
    """

    def __init__(
        self,
        factory: EnvironmentFactory,
        *,
        mode: ExecutionMode = ExecutionMode.PARALLEL,
        trim_recordings: bool = False,
        poll_interval_ms: int = BARRIER_POLL_INTERVAL_MS,
        token: CancellationToken | None = None,
    ) -> None:
        self._factory = factory
        self._mode = mode
        self._trim_recordings = trim_recordings
        self._poll_interval_ms = poll_interval_ms
        self._token = token or CancellationToken()

        self.shared_state = SharedRunState()
        self._barriers: BarrierSet | None = None
        self._sessions: dict[int, RaceSession] = {}

    @property
    def mode(self) -> ExecutionMode:
        return self._mode

    @property
    def token(self) -> CancellationToken:
        return self._token

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(self, configs: Sequence[AgentConfig]) -> list[AgentResult]:
        """Run every agent; results are aligned to `configs`."""
        configs = list(configs)
        if not configs:
            return []

        self.shared_state = SharedRunState()
        self._sessions = {}
        self._token.attach_state(self.shared_state)

        log_event({
            "ts_ms": now_ms(),
            "event_type": "RACE_STARTED",
            "mode": self._mode.value,
            "agents": [c.id for c in configs],
        })

        with timed("race", details={"mode": self._mode.value, "agents": len(configs)}):
            if self._mode is ExecutionMode.PARALLEL:
                results = await self._run_parallel(configs)
            else:
                results = await self._run_sequential(configs)

        if self._mode is ExecutionMode.PARALLEL:
            for result in results:
                if result.error is None:
                    result.place = self.shared_state.placement(result.id)

        log_event({
            "ts_ms": now_ms(),
            "event_type": "RACE_FINISHED",
            "mode": self._mode.value,
            "ranking": self.shared_state.ranking(),
            "failed": [r.id for r in results if r.error is not None],
            "error": self.shared_state.error_message,
        })
        return results

    # ------------------------------------------------------------------
    # Modes
    # ------------------------------------------------------------------

    async def _run_parallel(self, configs: list[AgentConfig]) -> list[AgentResult]:
        total = len(configs)
        # Agents without a script never reach a checkpoint
        racing = sum(1 for c in configs if c.script is not None)
        self._barriers = None
        if racing:
            self._barriers = BarrierSet.create(
                racing,
                self.shared_state,
                poll_interval_ms=self._poll_interval_ms,
            )
            self._token.attach_barriers(self._barriers)

        tasks = []
        for index, config in enumerate(configs):
            task = asyncio.create_task(
                self._run_agent(config, index=index, total=total),
                name=f"agent-{config.id}",
            )
            self._token.attach_task(task)
            tasks.append(task)

        outcomes = await asyncio.gather(*tasks, return_exceptions=True)
        return [
            self._collect(index, config, outcome)
            for index, (config, outcome) in enumerate(zip(configs, outcomes))
        ]

    async def _run_sequential(self, configs: list[AgentConfig]) -> list[AgentResult]:
        self._barriers = None
        total = len(configs)
        results: list[AgentResult] = []

        for index, config in enumerate(configs):
            if self._token.cancelled:
                results.append(AgentResult(id=config.id, error=self._cancel_message()))
                continue

            task = asyncio.create_task(
                self._run_agent(config, index=index, total=total),
                name=f"agent-{config.id}",
            )
            self._token.attach_task(task)
            (outcome,) = await asyncio.gather(task, return_exceptions=True)
            results.append(self._collect(index, config, outcome))

        return results

    # ------------------------------------------------------------------
    # One agent
    # ------------------------------------------------------------------

    async def _run_agent(self, config: AgentConfig, *, index: int, total: int) -> AgentResult:
        """
        Full lifecycle of one agent: environment, script, teardown, trim.

        Exceptions are converted into the result's error; only task
        cancellation escapes.
        """
        environment: AgentEnvironment | None = None
        session: RaceSession | None = None
        artifacts = EnvironmentArtifacts()
        error: str | None = None

        try:
            environment = await self._factory.create(
                config.id,
                index=index,
                total=total,
                parallel=self._mode is ExecutionMode.PARALLEL,
            )
            session = RaceSession(config.id, origin=environment.origin)
            self._sessions[index] = session

            harness = RaceHarness(
                session,
                environment,
                barriers=self._barriers if config.script is not None else None,
                shared_state=self.shared_state,
            )
            with timed("agent_session", agent_id=config.id):
                await harness.run(config.script)
            # Read from the live page, so before close()
            artifacts = await environment.collect_artifacts()

        except Exception as exc:  # pylint: disable=broad-exception-caught
            error = str(exc) or type(exc).__name__
            self._fail(config.id, error)

        finally:
            if environment is not None:
                await environment.close()

        if error is not None or session is None:
            return AgentResult(id=config.id, error=error)

        result = AgentResult(
            id=config.id,
            segments=list(session.segments),
            measurements=list(session.measurements),
            profile_metrics=artifacts.profile_metrics,
            trace_path=artifacts.trace_path,
        )
        timeline = list(session.segments)
        if self._trim_recordings and environment is not None:
            outcome = await self._trim(result, environment, session)
            if outcome is not None and outcome.trimmed:
                timeline = outcome.segments
        result.click_events = remap_clicks(artifacts.click_events, timeline)
        return result

    async def _trim(
        self,
        result: AgentResult,
        environment: AgentEnvironment,
        session: RaceSession,
    ) -> TrimOutcome | None:
        recording_dir = environment.recording_dir
        if recording_dir is None:
            return None
        # ffprobe/ffmpeg block; keep sibling agents' cues on schedule
        outcome = await asyncio.to_thread(
            trim_recording, recording_dir, list(session.segments), result.id
        )
        if outcome is not None:
            result.video_path = outcome.video_path
            result.full_video_path = outcome.full_video_path
        return outcome

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _fail(self, agent_id: str, message: str) -> None:
        log_agent_event(agent_id, "AGENT_FAILED", error=message)
        self.shared_state.fail(message)
        if self._barriers is not None:
            self._barriers.release_all()

    def _collect(self, index: int, config: AgentConfig, outcome: Any) -> AgentResult:
        if isinstance(outcome, AgentResult):
            return outcome

        if isinstance(outcome, asyncio.CancelledError):
            message = self._cancel_message()
        else:
            message = f"{type(outcome).__name__}: {outcome}"
            self._fail(config.id, message)

        # Keep whatever the session recorded before it was interrupted
        session = self._sessions.get(index)
        if session is None:
            return AgentResult(id=config.id, error=message)
        session.finish()
        return AgentResult(
            id=config.id,
            segments=list(session.segments),
            measurements=list(session.measurements),
            error=message,
        )

    def _cancel_message(self) -> str:
        return f"cancelled: {self._token.reason or 'cancelled'}"
