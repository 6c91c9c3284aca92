# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio

import pytest

from orchestrator.barrier import BarrierSet, SyncBarrier
from orchestrator.run_state import SharedRunState


async def _settle() -> None:
    # Let freshly created waiter tasks reach their suspension point
    for _ in range(3):
        await asyncio.sleep(0)


def test_count_must_be_positive() -> None:
    with pytest.raises(ValueError):
        SyncBarrier(0)


@pytest.mark.asyncio
@pytest.mark.parametrize("count", [1, 2, 5])
async def test_all_parties_released_together(count: int) -> None:
    barrier = SyncBarrier(count)

    results = await asyncio.gather(*(barrier.wait(f"p{i}") for i in range(count)))

    assert [r.aborted for r in results] == [False] * count
    assert barrier.waiting == 0
    assert barrier.pending_count == 0


@pytest.mark.asyncio
async def test_nobody_released_before_last_arrival() -> None:
    barrier = SyncBarrier(3)
    first = asyncio.create_task(barrier.wait("a"))
    second = asyncio.create_task(barrier.wait("b"))
    await _settle()

    assert not first.done() and not second.done()
    assert barrier.waiting == 2

    third = await barrier.wait("c")

    assert not third.aborted
    assert not (await first).aborted
    assert not (await second).aborted


@pytest.mark.asyncio
async def test_barrier_is_reusable() -> None:
    barrier = SyncBarrier(2)

    round_one = await asyncio.gather(barrier.wait("a"), barrier.wait("b"))
    round_two = await asyncio.gather(barrier.wait("a"), barrier.wait("b"))

    assert not any(r.aborted for r in round_one + round_two)


@pytest.mark.asyncio
async def test_release_all_aborts_pending_and_is_idempotent() -> None:
    barrier = SyncBarrier(3)
    waiters = [asyncio.create_task(barrier.wait(str(i))) for i in range(2)]
    await _settle()

    barrier.release_all()
    barrier.release_all()

    results = await asyncio.gather(*waiters)
    assert all(r.aborted for r in results)
    assert barrier.released
    assert barrier.pending_count == 0

    late = await barrier.wait("late")
    assert late.aborted


@pytest.mark.asyncio
async def test_shared_error_aborts_pending_waiters() -> None:
    state = SharedRunState()
    barrier = SyncBarrier(3, state, poll_interval_ms=10)
    waiters = [asyncio.create_task(barrier.wait(str(i))) for i in range(2)]
    await _settle()

    state.fail("sibling failed")

    results = await asyncio.wait_for(asyncio.gather(*waiters), timeout=1.0)
    assert all(r.aborted for r in results)
    assert barrier.pending_count == 0


@pytest.mark.asyncio
async def test_wait_after_shared_error_returns_immediately() -> None:
    state = SharedRunState()
    state.fail("already failed")
    barrier = SyncBarrier(2, state)

    result = await asyncio.wait_for(barrier.wait("x"), timeout=0.5)

    assert result.aborted
    assert barrier.waiting == 0


@pytest.mark.asyncio
async def test_cancelled_waiter_no_longer_counts() -> None:
    barrier = SyncBarrier(2)
    task = asyncio.create_task(barrier.wait("gone"))
    await _settle()
    assert barrier.waiting == 1

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert barrier.waiting == 0
    assert barrier.pending_count == 0


@pytest.mark.asyncio
async def test_barrier_set_checkpoints_are_independent() -> None:
    barriers = BarrierSet.create(2, SharedRunState())
    early = asyncio.create_task(barriers.ready.wait("a ready"))
    await _settle()

    stop = asyncio.create_task(barriers.stop.wait("b stop"))
    await _settle()
    assert not early.done()

    await barriers.ready.wait("b ready")
    assert not (await early).aborted
    assert not stop.done()

    barriers.release_all()
    assert (await stop).aborted
    assert all(b.released for b in barriers)
