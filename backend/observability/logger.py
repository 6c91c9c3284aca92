"""
JSONL event logger.

- Write one JSON object per line
- Output to stdout
- No buffering, no batching
- No side effects beyond logging
"""

from __future__ import annotations

import json
import sys
import time
from typing import Any, Mapping, Callable


# ------------------------------------------------------------------
# Explicit output sink (patchable in tests)
# ------------------------------------------------------------------

def _stdout_print(line: str) -> None:
    sys.stdout.write(line + "\n")
    sys.stdout.flush()

_print: Callable[[str], None] = _stdout_print


def now_ms() -> int:
    """Wall-clock timestamp for log correlation only."""
    return int(time.time() * 1000)


def log_event(event: Mapping[str, Any]) -> None:
    """
    Write a single JSONL event to stdout.

    The caller supplies a fully-formed event dict (ts_ms, event_type, ...).
    Values that are not JSON-native are rendered with str().

    Never raises.
    """
    try:
        line = json.dumps(event, ensure_ascii=False, separators=(",", ":"), default=str)
    except (TypeError, ValueError) as e:
        # Last-resort fallback; logging must never crash a race
        fallback: dict[str, Any] = {
            "ts_ms": event.get("ts_ms"),
            "event_type": "LOGGER_SERIALIZATION_ERROR",
            "error": str(e),
            "original_event_repr": repr(event),
        }
        line = json.dumps(fallback, ensure_ascii=False, separators=(",", ":"))

    _print(line)


def log_agent_event(agent_id: str, event_type: str, **details: Any) -> None:
    """
    Emit an event scoped to one agent.

    Convenience wrapper that fills in ts_ms, event_type and agent_id.
    """
    log_event({
        "ts_ms": now_ms(),
        "event_type": event_type,
        "agent_id": agent_id,
        **details,
    })


def set_output(sink: Callable[[str], None] | None) -> None:
    """Replace the output sink; None restores stdout."""
    global _print  # pylint: disable=global-statement
    _print = sink or _stdout_print


def discard_line(line: str) -> None:  # pylint: disable=unused-argument
    """Sink that drops every line (JSON logs disabled)."""
