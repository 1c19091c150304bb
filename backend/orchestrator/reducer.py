"""
Pure session reducer.

(state, event) -> (new_state, commands)

Rules:
- Pure: no side effects, no IO, no clocks.
- Deterministic: output depends only on inputs.
- Total: every (state, event) pair is handled or explicitly ignored (logged).
- CLOSED and ERRORED are terminal: every event is ignored there.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any

from orchestrator.commands import (
    CancelTimer,
    Command,
    LogEvent,
    NotifyClosed,
    NotifyStatus,
    StartCapture,
    StartTimer,
    Teardown,
)
from orchestrator.events import (
    CloseRequested,
    DeviceFailed,
    Event,
    EventType,
    HandshakeFailed,
    HandshakeTimedOut,
    MuteToggled,
    SessionStarted,
    TransportClosed,
    TransportErrored,
    TransportOpened,
)
from orchestrator.state_dataclass import ControllerState
from session.errors import ErrorCategory
from session.session_state import SessionState
from spec import LIVE_HANDSHAKE_TIMEOUT_MS


# =============================================================================
# Timer IDs
# =============================================================================

TIMER_HANDSHAKE = "live_handshake_timeout"


# =============================================================================
# Small helpers
# =============================================================================

def _log(
    state: ControllerState,
    event: Event,
    decision: str,
    details: dict[str, Any] | None = None,
) -> LogEvent:
    return LogEvent(
        event={
            "ts_ms": event.ts_ms,
            "state": state.state.value,
            "muted": state.muted,
            "event_type": event.event_type.value,
            "decision": decision,
            "details": details or {},
        }
    )


def _logs_last(commands: tuple[Command, ...]) -> tuple[Command, ...]:
    """Keep side effects first, then plain logs, then state_changed logs."""
    non_logs: list[Command] = []
    logs: list[Command] = []
    state_change_logs: list[Command] = []

    for command in commands:
        if isinstance(command, LogEvent):
            if command.event.get("decision") == "state_changed":
                state_change_logs.append(command)
            else:
                logs.append(command)
        else:
            non_logs.append(command)

    return tuple(non_logs + logs + state_change_logs)


def _ignore(
    state: ControllerState, event: Event, reason: str
) -> tuple[ControllerState, tuple[Command, ...]]:
    return state, (_log(state, event, "ignore", {"reason": reason}),)


def _state_changed(
    old: ControllerState,
    new: ControllerState,
    event: Event,
    source: str,
) -> LogEvent:
    return _log(
        new,
        event,
        "state_changed",
        {
            "from_state": old.state.value,
            "to_state": new.state.value,
            "source": source,
        },
    )


def _enter_terminal(
    state: ControllerState,
    event: Event,
    target: SessionState,
    reason: str,
    category: ErrorCategory | None = None,
) -> tuple[ControllerState, tuple[Command, ...]]:
    """
    Move to CLOSED or ERRORED.

    Emits, in order: timer cancel, teardown, status hook, closed hook.
    """
    new_state = replace(
        state,
        state=target,
        last_error=reason if target is SessionState.ERRORED else state.last_error,
        error_category=category.value if category is not None else state.error_category,
    )

    decision = "enter_error" if target is SessionState.ERRORED else "enter_closed"

    return new_state, _logs_last((
        _state_changed(state, new_state, event, decision),
        _log(new_state, event, decision, {
            "reason": reason,
            "category": category.value if category is not None else None,
        }),
        CancelTimer(timer_id=TIMER_HANDSHAKE),
        Teardown(reason=reason),
        NotifyStatus(state=target),
        NotifyClosed(),
    ))


# =============================================================================
# Per-event handlers
# =============================================================================

def _on_session_started(
    state: ControllerState, event: SessionStarted
) -> tuple[ControllerState, tuple[Command, ...]]:
    if state.state is not SessionState.CONNECTING:
        return _ignore(state, event, "session_already_progressed")

    return state, (
        StartTimer(
            timer_id=TIMER_HANDSHAKE,
            duration_ms=LIVE_HANDSHAKE_TIMEOUT_MS,
            timeout_event_type=EventType.HANDSHAKE_TIMEOUT,
        ),
        _log(state, event, "session_started", {"session_id": event.session_id}),
    )


def _on_transport_opened(
    state: ControllerState, event: TransportOpened
) -> tuple[ControllerState, tuple[Command, ...]]:
    if state.state is SessionState.CONNECTED:
        return _ignore(state, event, "duplicate_open")

    new_state = replace(state, state=SessionState.CONNECTED, opened=True)
    return new_state, _logs_last((
        _state_changed(state, new_state, event, "transport_opened"),
        CancelTimer(timer_id=TIMER_HANDSHAKE),
        StartCapture(),
        NotifyStatus(state=SessionState.CONNECTED),
    ))


def _on_device_failed(
    state: ControllerState, event: DeviceFailed
) -> tuple[ControllerState, tuple[Command, ...]]:
    return _enter_terminal(
        state,
        event,
        SessionState.ERRORED,
        event.reason,
        ErrorCategory.DEVICE_UNAVAILABLE,
    )


def _on_handshake_failed(
    state: ControllerState, event: HandshakeFailed
) -> tuple[ControllerState, tuple[Command, ...]]:
    if state.state is SessionState.CONNECTED:
        return _ignore(state, event, "stale_handshake_failure")

    return _enter_terminal(
        state,
        event,
        SessionState.ERRORED,
        event.reason,
        ErrorCategory.HANDSHAKE_FAILURE,
    )


def _on_handshake_timed_out(
    state: ControllerState, event: HandshakeTimedOut
) -> tuple[ControllerState, tuple[Command, ...]]:
    if state.state is SessionState.CONNECTED:
        return _ignore(state, event, "stale_handshake_timer")

    return _enter_terminal(
        state,
        event,
        SessionState.ERRORED,
        "handshake_timeout",
        ErrorCategory.HANDSHAKE_FAILURE,
    )


def _on_transport_errored(
    state: ControllerState, event: TransportErrored
) -> tuple[ControllerState, tuple[Command, ...]]:
    category = (
        ErrorCategory.TRANSPORT_ERROR
        if state.opened
        else ErrorCategory.HANDSHAKE_FAILURE
    )
    return _enter_terminal(state, event, SessionState.ERRORED, event.reason, category)


def _on_transport_closed(
    state: ControllerState, event: TransportClosed
) -> tuple[ControllerState, tuple[Command, ...]]:
    reason = event.reason or "remote_closed"

    if state.state is SessionState.CONNECTING:
        # The remote hung up before acknowledging setup.
        return _enter_terminal(
            state,
            event,
            SessionState.ERRORED,
            reason,
            ErrorCategory.HANDSHAKE_FAILURE,
        )

    return _enter_terminal(state, event, SessionState.CLOSED, reason)


def _on_close_requested(
    state: ControllerState, event: CloseRequested
) -> tuple[ControllerState, tuple[Command, ...]]:
    return _enter_terminal(state, event, SessionState.CLOSED, "user_close")


def _on_mute_toggled(
    state: ControllerState, event: MuteToggled
) -> tuple[ControllerState, tuple[Command, ...]]:
    new_state = replace(state, muted=not state.muted)
    return new_state, (
        _log(new_state, event, "mute_toggled", {"muted": new_state.muted}),
    )


# =============================================================================
# Public reducer
# =============================================================================

def reduce(
    state: ControllerState, event: Event
) -> tuple[ControllerState, tuple[Command, ...]]:
    """
    Apply one event to the controller state.

    Returns the new state and the commands the runtime must execute,
    in order.
    """
    if state.state.is_terminal:
        return _ignore(state, event, "terminal_state")

    if isinstance(event, SessionStarted):
        return _on_session_started(state, event)
    if isinstance(event, TransportOpened):
        return _on_transport_opened(state, event)
    if isinstance(event, DeviceFailed):
        return _on_device_failed(state, event)
    if isinstance(event, HandshakeFailed):
        return _on_handshake_failed(state, event)
    if isinstance(event, HandshakeTimedOut):
        return _on_handshake_timed_out(state, event)
    if isinstance(event, TransportErrored):
        return _on_transport_errored(state, event)
    if isinstance(event, TransportClosed):
        return _on_transport_closed(state, event)
    if isinstance(event, CloseRequested):
        return _on_close_requested(state, event)
    if isinstance(event, MuteToggled):
        return _on_mute_toggled(state, event)

    return _ignore(state, event, "unhandled_event")
