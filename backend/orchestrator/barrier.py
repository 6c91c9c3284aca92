"""
N-party rendezvous barrier for parallel races.

Responsibilities:
- Suspend callers of wait() until `count` of them have arrived
- Release every waiter of a round together, then reset for reuse
- Abort waiters when the barrier is released or the shared run state
  reports an error

Non-responsibilities:
- NO knowledge of what a checkpoint means
- NO exceptions for aborts: callers receive BarrierResult(aborted=True)

A race uses three independent barriers (ready / recording_start / stop)
so an agent waiting at one checkpoint can never be released by agents
arriving at another.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Iterator

from constants import BARRIER_POLL_INTERVAL_MS, ms_to_seconds
from observability.logger import log_event, now_ms
from orchestrator.run_state import SharedRunState


@dataclass(frozen=True)
class BarrierResult:
    """Outcome of a wait(): aborted=True means "stop gracefully"."""
    aborted: bool


RELEASED = BarrierResult(aborted=False)
ABORTED = BarrierResult(aborted=True)


class SyncBarrier:
    """
    Reusable N-party barrier with abort propagation.

    Lifecycle:
    1. Each party calls `await wait(label)`
    2. The Nth arrival resolves every pending waiter (and itself) as
       released and resets the waiting count for the next round
    3. `release_all()` or `shared_state.has_error` aborts all pending
       waiters; release_all() is permanent for this instance

    Pending waiters re-check the shared error flag every poll interval,
    because a sibling failure never calls into this barrier directly.
    """

    def __init__(
        self,
        count: int,
        shared_state: SharedRunState | None = None,
        *,
        name: str = "",
        poll_interval_ms: int = BARRIER_POLL_INTERVAL_MS,
    ) -> None:
        if count < 1:
            raise ValueError(f"barrier count must be >= 1, got {count}")

        self.count = count
        self.name = name
        self._shared_state = shared_state
        self._poll_interval_s = ms_to_seconds(poll_interval_ms)

        self._waiting = 0
        self._pending: list[asyncio.Future[BarrierResult]] = []
        self._released = False

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def released(self) -> bool:
        return self._released

    @property
    def waiting(self) -> int:
        return self._waiting

    @property
    def pending_count(self) -> int:
        """Number of suspended waiters still holding a future."""
        return len(self._pending)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def release_all(self) -> None:
        """
        Abort every pending waiter and permanently release the barrier.

        Idempotent: subsequent calls have no effect. Any wait() issued
        afterwards resolves immediately as aborted.
        """
        if self._released:
            return
        self._released = True

        pending, self._pending = self._pending, []
        for fut in pending:
            if not fut.done():
                fut.set_result(ABORTED)

        log_event({
            "ts_ms": now_ms(),
            "event_type": "BARRIER_RELEASED",
            "barrier": self.name,
            "aborted_waiters": len(pending),
        })

    async def wait(self, label: str = "") -> BarrierResult:
        """
        Arrive at the barrier and suspend until the round completes.

        Never raises for an abort; see BarrierResult.
        """
        if self._is_aborted():
            return ABORTED

        self._waiting += 1
        if self._waiting >= self.count:
            pending, self._pending = self._pending, []
            self._waiting = 0
            for fut in pending:
                if not fut.done():
                    fut.set_result(RELEASED)
            log_event({
                "ts_ms": now_ms(),
                "event_type": "BARRIER_ROUND_COMPLETE",
                "barrier": self.name,
                "last_arrival": label,
                "parties": self.count,
            })
            return RELEASED

        fut: asyncio.Future[BarrierResult] = asyncio.get_running_loop().create_future()
        self._pending.append(fut)
        try:
            while not fut.done():
                await asyncio.wait((fut,), timeout=self._poll_interval_s)
                if not fut.done() and self._is_aborted():
                    fut.set_result(ABORTED)
            result = fut.result()
        finally:
            self._discard(fut)

        if result.aborted:
            log_event({
                "ts_ms": now_ms(),
                "event_type": "BARRIER_WAIT_ABORTED",
                "barrier": self.name,
                "label": label,
            })
        return result

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _is_aborted(self) -> bool:
        return self._released or (
            self._shared_state is not None and self._shared_state.has_error
        )

    def _discard(self, fut: asyncio.Future[BarrierResult]) -> None:
        """Drop a waiter's future exactly once, whatever resolved it."""
        if fut in self._pending:
            self._pending.remove(fut)
        if not fut.done():
            # The waiting task was cancelled; it no longer counts as arrived
            fut.cancel()
            self._waiting = max(0, self._waiting - 1)


@dataclass(frozen=True)
class BarrierSet:
    """The three checkpoints of a parallel race."""

    ready: SyncBarrier
    recording_start: SyncBarrier
    stop: SyncBarrier

    @staticmethod
    def create(
        count: int,
        shared_state: SharedRunState | None = None,
        *,
        poll_interval_ms: int = BARRIER_POLL_INTERVAL_MS,
    ) -> BarrierSet:
        def make(name: str) -> SyncBarrier:
            return SyncBarrier(
                count,
                shared_state,
                name=name,
                poll_interval_ms=poll_interval_ms,
            )

        return BarrierSet(
            ready=make("ready"),
            recording_start=make("recording_start"),
            stop=make("stop"),
        )

    def __iter__(self) -> Iterator[SyncBarrier]:
        return iter((self.ready, self.recording_start, self.stop))

    def release_all(self) -> None:
        for barrier in self:
            barrier.release_all()
