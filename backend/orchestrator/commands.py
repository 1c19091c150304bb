"""
Side-effect command definitions for the session controller.

Rules:
- Commands are declarative requests for side effects.
- Commands are emitted by the reducer and executed by the runtime.
- No behavior, no async, no I/O, no clocks.
Invariant:
    - All concrete Command subclasses MUST be frozen dataclasses.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from orchestrator.events import EventType
from session.session_state import SessionState


class CommandType(str, Enum):
    """
    Canonical command types emitted by the reducer.

    Stable discriminants used for logging and runtime dispatch.
    """

    # Capture
    START_CAPTURE = "START_CAPTURE"

    # Lifecycle
    TEARDOWN = "TEARDOWN"

    # UI hooks
    NOTIFY_STATUS = "NOTIFY_STATUS"
    NOTIFY_CLOSED = "NOTIFY_CLOSED"

    # Timers
    START_TIMER = "START_TIMER"
    CANCEL_TIMER = "CANCEL_TIMER"

    # Observability
    LOG_EVENT = "LOG_EVENT"


class Command:
    """
    Base command type.

    command_type is an explicit discriminant and must never be inferred
    from Python type identity.
    """

    command_type: CommandType


# =============================================================================
# Capture
# =============================================================================

@dataclass(frozen=True)
class StartCapture(Command):
    """Begin forwarding microphone frames to the transport."""
    command_type: CommandType = CommandType.START_CAPTURE


# =============================================================================
# Lifecycle
# =============================================================================

@dataclass(frozen=True)
class Teardown(Command):
    """
    Release microphone, connection and output device.

    The runtime executes this at most once per session.
    """
    reason: str
    command_type: CommandType = CommandType.TEARDOWN


# =============================================================================
# UI hooks
# =============================================================================

@dataclass(frozen=True)
class NotifyStatus(Command):
    """Invoke the UI's on_status_change hook."""
    state: SessionState
    command_type: CommandType = CommandType.NOTIFY_STATUS


@dataclass(frozen=True)
class NotifyClosed(Command):
    """Invoke the UI's on_closed hook."""
    command_type: CommandType = CommandType.NOTIFY_CLOSED


# =============================================================================
# Timers
# =============================================================================

@dataclass(frozen=True)
class StartTimer(Command):
    """
    Start (or replace) a named timer.

    On expiry the runtime feeds an event of timeout_event_type back
    into the reducer.
    """
    timer_id: str
    duration_ms: int
    timeout_event_type: EventType
    command_type: CommandType = CommandType.START_TIMER


@dataclass(frozen=True)
class CancelTimer(Command):
    """Cancel a named timer. No-op if it is not running."""
    timer_id: str
    command_type: CommandType = CommandType.CANCEL_TIMER


# =============================================================================
# Observability
# =============================================================================

@dataclass(frozen=True)
class LogEvent(Command):
    """Structured log line; the runtime enriches it with session context."""
    event: dict[str, Any]
    command_type: CommandType = CommandType.LOG_EVENT
