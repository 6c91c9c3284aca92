"""
Race cancellation.

Responsibilities:
- Turn an external stop request (signal, fatal error) into the same
  abort path a failing agent takes
- Release every registered barrier so no agent stays suspended
- Cancel registered agent tasks

Non-responsibilities:
- NO signal installation (see server.main)
- NO environment teardown; cancelled tasks close their own environments
"""

from __future__ import annotations

import asyncio
from typing import Any

from observability.logger import log_event, now_ms
from orchestrator.barrier import BarrierSet
from orchestrator.run_state import SharedRunState


class CancellationToken:
    """
    One-shot cancel switch for a race.

    Lifecycle:
    1. Coordinator attaches the shared state, barriers and agent tasks
    2. Anyone calls cancel(reason)
    3. Shared state is marked failed, barriers released, tasks cancelled

    Idempotent: only the first cancel() has an effect. Anything attached
    after cancellation is cancelled immediately.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._reason: str | None = None
        self._shared_state: SharedRunState | None = None
        self._barriers: list[BarrierSet] = []
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> str | None:
        return self._reason

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def attach_state(self, shared_state: SharedRunState) -> None:
        self._shared_state = shared_state
        if self._cancelled:
            shared_state.fail(self._reason or "cancelled")

    def attach_barriers(self, barriers: BarrierSet) -> None:
        self._barriers.append(barriers)
        if self._cancelled:
            barriers.release_all()

    def attach_task(self, task: asyncio.Task[Any]) -> None:
        if self._cancelled:
            task.cancel()
            return
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # ------------------------------------------------------------------
    # Cancel
    # ------------------------------------------------------------------

    def cancel(self, reason: str = "cancelled") -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self._reason = reason

        log_event({
            "ts_ms": now_ms(),
            "event_type": "RACE_CANCELLED",
            "reason": reason,
            "running_agents": len(self._tasks),
        })

        if self._shared_state is not None:
            self._shared_state.fail(reason)
        for barriers in self._barriers:
            barriers.release_all()
        for task in list(self._tasks):
            task.cancel()
