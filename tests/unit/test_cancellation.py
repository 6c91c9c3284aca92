# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio

import pytest

from orchestrator.barrier import BarrierSet
from orchestrator.cancellation import CancellationToken
from orchestrator.run_state import SharedRunState


@pytest.mark.asyncio
async def test_cancel_fails_state_releases_barriers_and_cancels_tasks() -> None:
    token = CancellationToken()
    state = SharedRunState()
    barriers = BarrierSet.create(2, state)
    token.attach_state(state)
    token.attach_barriers(barriers)

    waiter = asyncio.create_task(barriers.ready.wait("a"))
    sleeper = asyncio.create_task(asyncio.sleep(10))
    token.attach_task(sleeper)
    await asyncio.sleep(0)

    token.cancel("received SIGTERM")
    token.cancel("second call")

    assert token.cancelled
    assert token.reason == "received SIGTERM"
    assert state.error_message == "received SIGTERM"
    assert (await waiter).aborted
    with pytest.raises(asyncio.CancelledError):
        await sleeper


@pytest.mark.asyncio
async def test_attach_after_cancel_applies_immediately() -> None:
    token = CancellationToken()
    token.cancel()

    state = SharedRunState()
    barriers = BarrierSet.create(2)
    task = asyncio.create_task(asyncio.sleep(10))

    token.attach_state(state)
    token.attach_barriers(barriers)
    token.attach_task(task)

    assert state.has_error
    assert all(b.released for b in barriers)
    with pytest.raises(asyncio.CancelledError):
        await task
