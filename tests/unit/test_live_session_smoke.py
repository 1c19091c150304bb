# pylint: disable=missing-module-docstring,missing-function-docstring
import asyncio
import importlib.util
from pathlib import Path
from types import ModuleType
from typing import Any

import pytest

from session.session_state import SessionState


SMOKE_PATH = Path(__file__).resolve().parents[2] / "tools" / "live_session_smoke.py"


def load_smoke_tool() -> ModuleType:
    spec = importlib.util.spec_from_file_location("live_session_smoke", SMOKE_PATH)
    assert spec is not None and spec.loader is not None
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


class FakeController:
    """Connects at once and stays open until closed."""

    instances: list["FakeController"] = []

    def __init__(self, **_: Any) -> None:
        self.session_id = "live_test"
        self.state = SessionState.CONNECTING
        self.last_error: str | None = None
        self.close_calls = 0
        self._closed = asyncio.Event()
        FakeController.instances.append(self)

    async def start(self) -> None:
        self.state = SessionState.CONNECTED

    async def wait_closed(self) -> SessionState:
        await self._closed.wait()
        return self.state

    def close(self) -> None:
        self.close_calls += 1
        self.state = SessionState.CLOSED

    def snapshot(self) -> dict[str, Any]:
        return {"state": self.state.value}


@pytest.fixture(name="smoke")
def fixture_smoke(monkeypatch: pytest.MonkeyPatch) -> ModuleType:
    monkeypatch.setenv("API_KEY", "test-key")
    module = load_smoke_tool()
    FakeController.instances = []
    monkeypatch.setattr(module, "SessionController", FakeController)
    monkeypatch.setattr(module.logger, "configure", lambda **_: None)
    return module


async def test_session_is_closed_when_the_run_is_cancelled(smoke: ModuleType) -> None:
    task = asyncio.create_task(smoke.main(60.0))
    for _ in range(5):
        await asyncio.sleep(0)
    assert FakeController.instances[0].state is SessionState.CONNECTED

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert FakeController.instances[0].close_calls == 1


async def test_session_is_closed_when_the_duration_elapses(smoke: ModuleType) -> None:
    await smoke.main(0.01)

    controller = FakeController.instances[0]
    assert controller.close_calls == 1
    assert controller.state is SessionState.CLOSED
