"""
Timing and counter metrics for the live session.

- Durations use monotonic time; ts_ms uses wall-clock time
- One metric = one log event, never aggregated here
- Prefer `timed()` so a timer can never leak
"""

from __future__ import annotations

import time
import uuid
from contextlib import contextmanager
from typing import Any, Iterator, Mapping

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
    session_id: str | None = None,
    state: str | None = None,
    details: dict[str, Any] | None = None,
) -> int | None:
    """
    Stop a timer and emit one METRIC_TIMER event.

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
        "session_id": session_id,
        "state": state,
        "details": details or {},
    })

    return duration_ms


@contextmanager
def timed(
    name: str,
    *,
    session_id: str | None = None,
    state: str | None = None,
    details: dict[str, Any] | None = None,
) -> Iterator[None]:
    """
    Measure the duration of a block.

    The metric is emitted exactly once, also when the block raises.

    Usage:
        with timed("live_handshake", session_id=session_id):
            await transport.connect()
    """
    timer_id = start_timer(name)
    try:
        yield
    finally:
        stop_timer(
            timer_id,
            session_id=session_id,
            state=state,
            details=details,
        )


def log_counters(
    name: str,
    counters: Mapping[str, Mapping[str, int | float]],
    *,
    session_id: str | None = None,
) -> None:
    """Emit a METRIC_COUNTERS event for a group of component snapshots."""
    log_event({
        "ts_ms": now_ms(),
        "event_type": "METRIC_COUNTERS",
        "metric": name,
        "session_id": session_id,
        "counters": {k: dict(v) for k, v in counters.items()},
    })
