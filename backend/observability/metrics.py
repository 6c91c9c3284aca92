"""
Timing helpers for observability.

- Measure durations using monotonic time
- Emit one METRIC_TIMER event per measured block via observability.logger
- Never aggregate

Prefer the `timed()` context manager so a timer can never leak.
"""

from __future__ import annotations

import time
import uuid
from contextlib import contextmanager
from typing import Any, Iterator

from observability.logger import log_event, now_ms


# timer_id -> (metric_name, start_time_ns)
_active_timers: dict[str, tuple[str, int]] = {}


def start_timer(name: str) -> str:
    """
    Start a monotonic timer and return its opaque id.

    Callers MUST call stop_timer() in a finally block
    unless using the `timed()` context manager.
    """
    timer_id = f"timer_{uuid.uuid4().hex[:12]}"
    _active_timers[timer_id] = (name, time.monotonic_ns())
    return timer_id


def stop_timer(
    timer_id: str,
    *,
    agent_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> int | None:
    """
    Stop a previously started timer and emit a metric event.

    Returns:
        duration_ms if the timer existed, else None
    """
    entry = _active_timers.pop(timer_id, None)
    if entry is None:
        return None

    name, start_ns = entry
    duration_ms = (time.monotonic_ns() - start_ns) // 1_000_000

    log_event({
        "ts_ms": now_ms(),
        "event_type": "METRIC_TIMER",
        "metric": name,
        "value_ms": duration_ms,
        "agent_id": agent_id,
        "details": details or {},
    })

    return duration_ms


def active_timer_count() -> int:
    """Number of timers started but not yet stopped."""
    return len(_active_timers)


@contextmanager
def timed(
    name: str,
    *,
    agent_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> Iterator[None]:
    """
    Measure the enclosed block.

    The timer is always stopped and the metric emitted exactly once,
    including when the block raises.

    Usage:
        with timed("agent_session", agent_id=config.id):
            await run_script()
    """
    timer_id = start_timer(name)
    try:
        yield
    finally:
        stop_timer(timer_id, agent_id=agent_id, details=details)
