# pylint: disable=missing-module-docstring,missing-function-docstring
import asyncio
from typing import Any

import pytest

from orchestrator import reducer as reducer_module
from orchestrator import runtime as runtime_module
from orchestrator.events import (
    CloseRequested,
    EventType,
    SessionStarted,
    TransportClosed,
    TransportErrored,
    TransportOpened,
)
from orchestrator.runtime import Runtime
from orchestrator.runtime_context import RuntimeExecutionContext
from orchestrator.state_dataclass import ControllerState
from session.session_state import SessionState


# ---------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------

class Recorder:
    def __init__(self) -> None:
        self.calls: list[str] = []


class FakeCapture:
    def __init__(self, rec: Recorder, fail_stop: bool = False) -> None:
        self.rec = rec
        self.fail_stop = fail_stop

    def start(self) -> None:
        self.rec.calls.append("capture.start")

    def stop(self) -> None:
        self.rec.calls.append("capture.stop")
        if self.fail_stop:
            raise RuntimeError("mic stuck")

    def snapshot(self) -> dict[str, int]:
        return {"frames_sent": 0}


class FakeTransport:
    """disconnect() reports TransportClosed synchronously, like the real one."""

    def __init__(self, rec: Recorder) -> None:
        self.rec = rec
        self.runtime: Runtime | None = None

    async def connect(self) -> None:
        return None

    def send_frame(self, frame: Any) -> None:
        return None

    def disconnect(self) -> None:
        self.rec.calls.append("transport.disconnect")
        assert self.runtime is not None
        self.runtime.handle_event(
            TransportClosed(
                event_type=EventType.TRANSPORT_CLOSED,
                ts_ms=0,
                reason="local_disconnect",
            )
        )

    def snapshot(self) -> dict[str, int]:
        return {"frames_sent": 0}


class FakePlayback:
    def __init__(self, rec: Recorder) -> None:
        self.rec = rec

    def play(self, pcm_bytes: bytes) -> float | None:
        return None

    def close(self) -> None:
        self.rec.calls.append("playback.close")

    def snapshot(self) -> dict[str, int]:
        return {"segments_scheduled": 0}


def make_runtime(
    *,
    fail_stop: bool = False,
    on_closed: Any = None,
    on_status_change: Any = None,
) -> tuple[Runtime, Recorder, RuntimeExecutionContext]:
    rec = Recorder()
    transport = FakeTransport(rec)
    ctx = RuntimeExecutionContext(
        session_id="live_test",
        capture=FakeCapture(rec, fail_stop=fail_stop),
        transport=transport,
        playback=FakePlayback(rec),
        on_status_change=on_status_change,
        on_closed=on_closed,
    )
    runtime = Runtime(initial_state=ControllerState(), context=ctx)
    transport.runtime = runtime
    return runtime, rec, ctx


def close_requested() -> CloseRequested:
    return CloseRequested(event_type=EventType.CLOSE_REQUESTED, ts_ms=0)


def opened() -> TransportOpened:
    return TransportOpened(event_type=EventType.TRANSPORT_OPENED, ts_ms=0)


@pytest.fixture(name="logs")
def fixture_logs(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    captured: list[dict[str, Any]] = []

    def fake_log_event(event: dict[str, Any]) -> None:
        captured.append(dict(event))

    monkeypatch.setattr(runtime_module, "log_event", fake_log_event)
    monkeypatch.setattr("observability.metrics.log_event", fake_log_event)
    return captured


def event_types(logs: list[dict[str, Any]]) -> list[str]:
    return [e["event_type"] for e in logs]


# ---------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------

def test_teardown_runs_once_in_order(logs) -> None:
    closed_calls: list[int] = []
    runtime, rec, _ = make_runtime(on_closed=lambda: closed_calls.append(1))

    runtime.handle_event(opened())
    runtime.handle_event(close_requested())
    runtime.handle_event(close_requested())
    runtime.handle_event(
        TransportErrored(event_type=EventType.TRANSPORT_ERROR, ts_ms=0, reason="late")
    )

    assert runtime.state.state is SessionState.CLOSED
    assert runtime.torn_down
    assert rec.calls == [
        "capture.start",
        "capture.stop",
        "transport.disconnect",
        "playback.close",
    ]
    assert closed_calls == [1]
    assert event_types(logs).count("TEARDOWN_EXECUTED") == 1
    assert "METRIC_COUNTERS" in event_types(logs)


def test_closed_event_raised_inside_teardown_is_processed_after_it(logs) -> None:
    runtime, _, _ = make_runtime()

    runtime.handle_event(close_requested())

    # The re-entrant TransportClosed was queued, then ignored in CLOSED
    ignored = [
        e for e in logs
        if e.get("decision") == "ignore"
        and e.get("event_type") == EventType.TRANSPORT_CLOSED.value
    ]
    assert len(ignored) == 1
    assert ignored[0]["session_id"] == "live_test"
    assert event_types(logs).index("TEARDOWN_EXECUTED") < logs.index(ignored[0])


def test_status_hook_sees_every_transition(logs) -> None:
    statuses: list[SessionState] = []
    runtime, _, _ = make_runtime(on_status_change=statuses.append)

    runtime.handle_event(opened())
    runtime.handle_event(
        TransportErrored(event_type=EventType.TRANSPORT_ERROR, ts_ms=0, reason="reset")
    )

    assert statuses == [SessionState.CONNECTED, SessionState.ERRORED]
    assert runtime.state.error_category == "transport_error"


def test_failing_step_and_failing_hook_do_not_stop_teardown(logs) -> None:
    def bad_hook() -> None:
        raise ValueError("ui gone")

    runtime, rec, _ = make_runtime(fail_stop=True, on_closed=bad_hook)

    runtime.handle_event(close_requested())

    assert rec.calls == ["capture.stop", "transport.disconnect", "playback.close"]
    types = event_types(logs)
    assert "TEARDOWN_STEP_FAILED" in types
    assert "UI_HOOK_FAILED" in types
    assert runtime.state.state is SessionState.CLOSED


def test_timer_without_running_loop_is_skipped(logs) -> None:
    runtime, _, _ = make_runtime()

    runtime.handle_event(
        SessionStarted(event_type=EventType.SESSION_STARTED, ts_ms=0, session_id="live_test")
    )

    assert "TIMER_SKIPPED_NO_LOOP" in event_types(logs)
    assert runtime.state.state is SessionState.CONNECTING


async def test_handshake_timeout_errors_the_session(
    logs, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(reducer_module, "LIVE_HANDSHAKE_TIMEOUT_MS", 10)
    closed_calls: list[int] = []
    runtime, rec, _ = make_runtime(on_closed=lambda: closed_calls.append(1))

    runtime.handle_event(
        SessionStarted(event_type=EventType.SESSION_STARTED, ts_ms=0, session_id="live_test")
    )
    await asyncio.sleep(0.05)

    assert runtime.state.state is SessionState.ERRORED
    assert runtime.state.last_error == "handshake_timeout"
    assert "transport.disconnect" in rec.calls
    assert closed_calls == [1]


async def test_open_cancels_handshake_timer(logs, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(reducer_module, "LIVE_HANDSHAKE_TIMEOUT_MS", 10)
    runtime, _, _ = make_runtime()

    runtime.handle_event(
        SessionStarted(event_type=EventType.SESSION_STARTED, ts_ms=0, session_id="live_test")
    )
    runtime.handle_event(opened())
    await asyncio.sleep(0.05)

    assert runtime.state.state is SessionState.CONNECTED


async def test_teardown_cancels_pending_tasks(logs) -> None:
    runtime, _, ctx = make_runtime()
    task = asyncio.create_task(asyncio.sleep(10))
    ctx.pending_tasks.add(task)

    runtime.handle_event(close_requested())
    await asyncio.sleep(0)

    assert task.cancelled()
    assert ctx.pending_tasks == set()
