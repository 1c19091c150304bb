"""
Runtime execution shell for a single live voice session.

Responsibilities:
- Own the controller state
- Call the pure reducer
- Execute commands with side effects (capture, teardown, UI hooks)
- Schedule and cancel timers
- Convert timer expiry into events
"""

from __future__ import annotations

import asyncio
from collections import deque
from typing import TYPE_CHECKING, Any, Callable

from observability.logger import log_event, now_ms
from observability.metrics import log_counters
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
    Event,
    EventType,
    HandshakeTimedOut,
)
from orchestrator.reducer import reduce
from orchestrator.state_dataclass import ControllerState

if TYPE_CHECKING:
    from orchestrator.runtime_context import RuntimeExecutionContext


class Runtime:
    """
    Runtime execution boundary for a single live session.

    Architectural role:
    Runtime is the bridge between the pure layer (reducer + immutable
    state) and the imperative world (devices, sockets, UI hooks, time).

    Guarantees:
    - Reducer is called exactly once per incoming event
    - Events are processed strictly one at a time, in arrival order,
      including events emitted while a previous event's commands run
      (e.g. TransportClosed fired from inside teardown)
    - State is updated before any side effect of that event executes
    - Teardown executes at most once, whatever the event sequence
    """

    def __init__(
        self,
        *,
        initial_state: ControllerState,
        context: RuntimeExecutionContext,
    ) -> None:
        self._state = initial_state
        self._ctx = context
        self._timers: dict[str, asyncio.Task[None]] = {}
        self._pending: deque[Event] = deque()
        self._dispatching = False
        self._torn_down = False

    @property
    def state(self) -> ControllerState:
        """
        Current immutable controller state.

        Only the Runtime replaces it, via the reducer.
        """
        return self._state

    @property
    def torn_down(self) -> bool:
        return self._torn_down

    def handle_event(self, event: Event) -> None:
        """
        Single entry point for every event of the session.

        Synchronous on purpose: transport and device callbacks, the
        controller facade and timers all call this, and teardown must
        never suspend. Re-entrant calls are queued and drained by the
        outermost call.
        """
        self._pending.append(event)
        if self._dispatching:
            return

        self._dispatching = True
        try:
            while self._pending:
                current = self._pending.popleft()
                new_state, commands = reduce(self._state, current)
                self._state = new_state
                for cmd in commands:
                    self._execute_command(cmd)
        finally:
            self._dispatching = False

    def shutdown(self) -> None:
        """Cancel all in-flight timers. Idempotent."""
        for timer_id in list(self._timers.keys()):
            self._cancel_timer(timer_id)

    # ------------------------------------------------------------------
    # Command execution (side effects)
    # ------------------------------------------------------------------

    def _execute_command(self, cmd: Command) -> None:
        """Execute a single command with side effects."""

        if isinstance(cmd, LogEvent):
            log_event({
                **cmd.event,
                "session_id": self._ctx.session_id,
            })

        elif isinstance(cmd, StartCapture):
            self._ctx.capture.start()
            log_event({
                "ts_ms": now_ms(),
                "event_type": "CAPTURE_STARTED",
                "session_id": self._ctx.session_id,
            })

        elif isinstance(cmd, Teardown):
            self._teardown(cmd.reason)

        elif isinstance(cmd, NotifyStatus):
            hook = self._ctx.on_status_change
            if hook is not None:
                self._call_hook("on_status_change", lambda: hook(cmd.state))

        elif isinstance(cmd, NotifyClosed):
            hook = self._ctx.on_closed
            if hook is not None:
                self._call_hook("on_closed", hook)

        elif isinstance(cmd, StartTimer):
            self._start_timer(
                timer_id=cmd.timer_id,
                duration_ms=cmd.duration_ms,
                timeout_event_type=cmd.timeout_event_type,
            )

        elif isinstance(cmd, CancelTimer):
            self._cancel_timer(cmd.timer_id)

        else:
            log_event({
                "ts_ms": now_ms(),
                "event_type": "COMMAND_UNKNOWN",
                "session_id": self._ctx.session_id,
                "command_type": type(cmd).__name__,
            })

    def _call_hook(self, name: str, fn: Callable[[], Any]) -> None:
        try:
            fn()
        except Exception as exc:  # pylint: disable=broad-exception-caught
            # UI hooks are foreign code; a failing hook must not stop teardown.
            log_event({
                "ts_ms": now_ms(),
                "event_type": "UI_HOOK_FAILED",
                "session_id": self._ctx.session_id,
                "hook": name,
                "exception": type(exc).__name__,
                "message": str(exc),
            })

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def _teardown(self, reason: str) -> None:
        """
        Release every session resource exactly once.

        Order: pending tasks, microphone, connection, output device,
        timers. Each step runs even if an earlier one raised; the
        components themselves tolerate never having been started.
        """
        if self._torn_down:
            log_event({
                "ts_ms": now_ms(),
                "event_type": "TEARDOWN_ALREADY_DONE",
                "session_id": self._ctx.session_id,
                "reason": reason,
            })
            return
        self._torn_down = True

        current = _current_task_or_none()
        for task in list(self._ctx.pending_tasks):
            if task is not current and not task.done():
                task.cancel()
        self._ctx.pending_tasks.clear()

        steps = (
            ("capture", self._ctx.capture.stop),
            ("transport", self._ctx.transport.disconnect),
            ("playback", self._ctx.playback.close),
        )
        for name, step in steps:
            try:
                step()
            except Exception as exc:  # pylint: disable=broad-exception-caught
                log_event({
                    "ts_ms": now_ms(),
                    "event_type": "TEARDOWN_STEP_FAILED",
                    "session_id": self._ctx.session_id,
                    "step": name,
                    "exception": type(exc).__name__,
                    "message": str(exc),
                })

        self.shutdown()

        log_event({
            "ts_ms": now_ms(),
            "event_type": "TEARDOWN_EXECUTED",
            "session_id": self._ctx.session_id,
            "reason": reason,
            "state": self._state.state.value,
        })
        log_counters(
            "session_summary",
            {
                "capture": self._ctx.capture.snapshot(),
                "transport": self._ctx.transport.snapshot(),
                "playback": self._ctx.playback.snapshot(),
            },
            session_id=self._ctx.session_id,
        )

    # ------------------------------------------------------------------
    # Timer management
    # ------------------------------------------------------------------

    def _start_timer(
        self,
        *,
        timer_id: str,
        duration_ms: int,
        timeout_event_type: EventType,
    ) -> None:
        """
        Start or replace a timer that emits a timeout event.

        Timer tasks re-enter handle_event() when they expire,
        maintaining the single event entry point invariant.
        """
        self._cancel_timer(timer_id)

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            log_event({
                "ts_ms": now_ms(),
                "event_type": "TIMER_SKIPPED_NO_LOOP",
                "session_id": self._ctx.session_id,
                "timer_id": timer_id,
            })
            return

        async def _timer_task() -> None:
            try:
                await asyncio.sleep(duration_ms / 1000.0)
            except asyncio.CancelledError:
                return
            self._timers.pop(timer_id, None)
            self.handle_event(self._construct_timeout_event(timeout_event_type))

        self._timers[timer_id] = loop.create_task(_timer_task())

    def _cancel_timer(self, timer_id: str) -> None:
        """
        Cancel an in-flight timer if it exists.

        Idempotent: safe to call even if the timer doesn't exist.
        """
        task = self._timers.pop(timer_id, None)
        if task is not None and not task.done():
            task.cancel()

    @staticmethod
    def _construct_timeout_event(timeout_event_type: EventType) -> Event:
        if timeout_event_type is EventType.HANDSHAKE_TIMEOUT:
            return HandshakeTimedOut(event_type=timeout_event_type, ts_ms=now_ms())
        raise ValueError(f"No timeout event for {timeout_event_type}")


def _current_task_or_none() -> asyncio.Task | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None
