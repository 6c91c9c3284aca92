"""
Race harness and the capability object handed to racer scripts.

Responsibilities:
- Expose exactly five operations to a script (RaceApi)
- Translate those calls into RaceSession transitions
- Rendezvous on the recording_start / ready / stop barriers in
  parallel mode
- Drive the environment's visual cues around each recording segment

Non-responsibilities:
- NO environment lifecycle (the coordinator creates and closes it)
- NO recording post-processing
- NO cross-agent error policy beyond reading barrier results

Ordering:
- Every call is handled in script-issued order on the agent's task.
- Suspension points are barrier waits and environment I/O only.
"""

from __future__ import annotations

import asyncio
from typing import Any, Coroutine

from adapters.environment.base import AgentEnvironment
from constants import (
    CUE_COLOR_END,
    CUE_COLOR_START,
    DEFAULT_MEASUREMENT_NAME,
    FINISH_DISPLAY_MS,
    POST_RACE_SETTLE_MS,
    ms_to_seconds,
)
from observability.logger import log_agent_event
from orchestrator.barrier import BarrierSet
from orchestrator.run_state import SharedRunState
from session.race_session import RaceSession
from session.scripts import RaceScript, ScriptExecutionError


class RaceApi:
    """
    The only harness surface a racer script can reach.

        await api.race_start(name)       start a named stopwatch
        api.race_end(name)               stop it, returns seconds
        await api.race_recording_start() open a recording segment
        await api.race_recording_end()   close the open segment
        api.race_message(text)           annotate the run log

    If no explicit recording call is made, recording wraps from the
    first race_start to the end of the script.
    """

    __slots__ = ("_harness",)

    def __init__(self, harness: RaceHarness) -> None:
        self._harness = harness

    async def race_start(self, name: str = DEFAULT_MEASUREMENT_NAME) -> None:
        await self._harness.race_start(name)

    def race_end(self, name: str = DEFAULT_MEASUREMENT_NAME) -> float:
        return self._harness.race_end(name)

    async def race_recording_start(self) -> None:
        await self._harness.race_recording_start()

    async def race_recording_end(self) -> None:
        await self._harness.race_recording_end()

    def race_message(self, text: Any) -> None:
        self._harness.race_message(text)


class RaceHarness:
    """
    Runs one agent's script against its session and environment.

    `barriers` is None in sequential mode; no cross-agent wait happens.
    """

    def __init__(
        self,
        session: RaceSession,
        environment: AgentEnvironment,
        *,
        barriers: BarrierSet | None = None,
        shared_state: SharedRunState | None = None,
    ) -> None:
        self.session = session
        self.environment = environment
        self.barriers = barriers
        self.shared_state = shared_state
        self.api = RaceApi(self)

        self._overlay_tasks: set[asyncio.Task[None]] = set()

    @property
    def agent_id(self) -> str:
        return self.session.agent_id

    @property
    def parallel(self) -> bool:
        return self.barriers is not None

    # ------------------------------------------------------------------
    # Script lifecycle
    # ------------------------------------------------------------------

    async def run(self, script: RaceScript | None) -> RaceSession:
        """
        Rendezvous at the start line, run the script, finalize.

        Raises:
            ScriptExecutionError if the script raises.
        """
        if self.barriers is not None:
            result = await self.barriers.ready.wait(f"{self.agent_id} ready")
            if result.aborted:
                log_agent_event(self.agent_id, "READY_BARRIER_ABORTED", continuing=True)

        if script is None:
            self.session.finish()
            return self.session

        try:
            await script(self.environment.page, self.api)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_agent_event(
                self.agent_id,
                "SCRIPT_FAILED",
                error=f"{type(exc).__name__}: {exc}",
            )
            await self._drain_overlays()
            raise ScriptExecutionError(self.agent_id, exc) from exc

        await self.finalize()
        await self.environment.pause(ms_to_seconds(POST_RACE_SETTLE_MS))
        return self.session

    async def finalize(self) -> None:
        """
        Close a forgotten segment, then wait at the stop line.

        Finish rank is taken from each agent's own measurements, not from
        its arrival order at the stop barrier.
        """
        if self.session.is_recording:
            await self._stop_recording()
        await self._drain_overlays()
        self.session.finish()

        if self.barriers is not None:
            await self.barriers.stop.wait(f"{self.agent_id} finished")

    # ------------------------------------------------------------------
    # Script-facing operations
    # ------------------------------------------------------------------

    async def race_recording_start(self) -> None:
        self.session.mark_explicit_recording()
        await self._start_recording()

    async def race_recording_end(self) -> None:
        self.session.mark_explicit_recording()
        await self._stop_recording()

    async def race_start(self, name: str) -> None:
        if self.session.claim_auto_recording():
            await self._start_recording()
        if self.session.first_race_start is None:
            await self.environment.start_profile_window()
        self.session.start_measurement(name)

    def race_end(self, name: str) -> float:
        measurement = self.session.end_measurement(name)
        if not self.session.active_measurements:
            self.environment.stop_profile_window()
        if measurement is None:
            return 0.0
        self._spawn_overlay(self.environment.show_finish_time(measurement.duration))
        return measurement.duration

    def race_message(self, text: Any) -> None:
        text = "" if text is None else str(text)
        log_agent_event(
            self.agent_id,
            "RACE_MESSAGE",
            elapsed_s=round(self.session.elapsed_since_first_start(), 1),
            text=text,
        )

    # ------------------------------------------------------------------
    # Recording transitions
    # ------------------------------------------------------------------

    async def _start_recording(self) -> None:
        if self.session.is_recording:
            return

        if self.barriers is not None:
            result = await self.barriers.recording_start.wait(
                f"{self.agent_id} start_recording"
            )
            if result.aborted:
                log_agent_event(self.agent_id, "RECORDING_START_ABORTED")
                return

        # Indicator goes up before the cue so it is visible once trimmed
        await self.environment.show_recording_indicator()
        await self.environment.flash_cue(CUE_COLOR_START)
        self.session.open_segment()
        log_agent_event(
            self.agent_id,
            "RECORDING_SEGMENT_OPENED",
            start=self.session.current_segment_start,
        )

    async def _stop_recording(self) -> None:
        segment = self.session.close_segment()
        if segment is None:
            return
        log_agent_event(
            self.agent_id,
            "RECORDING_SEGMENT_CLOSED",
            start=segment.start,
            end=segment.end,
        )
        await self.environment.hide_recording_indicator()
        await self._show_finish()
        await self.environment.flash_cue(CUE_COLOR_END)

    async def _show_finish(self) -> None:
        if self.shared_state is None:
            return
        self.shared_state.record_finish(
            self.agent_id, self.session.to_clock(self.session.finish_time())
        )
        place = self.shared_state.placement(self.agent_id) if self.parallel else None
        await self.environment.show_placement(place)
        await self.environment.pause(ms_to_seconds(FINISH_DISPLAY_MS))

    # ------------------------------------------------------------------
    # Fire-and-forget overlays
    # ------------------------------------------------------------------

    def _spawn_overlay(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._overlay_tasks.add(task)
        task.add_done_callback(self._overlay_tasks.discard)

    async def _drain_overlays(self) -> None:
        if not self._overlay_tasks:
            return
        results = await asyncio.gather(*self._overlay_tasks, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                log_agent_event(self.agent_id, "OVERLAY_FAILED", error=str(result))
