"""
Runtime execution context.

Gives the Runtime live access to the session-owned imperative resources
it needs for command execution (capture, transport, playback, UI hooks).

This module contains:
- Narrow Protocols (capabilities, not implementations)
- Zero orchestration logic
- Zero state mutation
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol, runtime_checkable

from audio.frames import EncodedFrame
from session.session_state import SessionState


# ---------------------------------------------------------------------
# Component Protocols
# ---------------------------------------------------------------------

@runtime_checkable
class CaptureProtocol(Protocol):
    def start(self) -> None: ...
    def stop(self) -> None: ...
    def snapshot(self) -> dict[str, int]: ...


@runtime_checkable
class PlaybackProtocol(Protocol):
    def play(self, pcm_bytes: bytes) -> float | None: ...
    def close(self) -> None: ...
    def snapshot(self) -> dict[str, int | float]: ...


@runtime_checkable
class TransportProtocol(Protocol):
    """
    Duplex connection to the remote voice endpoint.

    disconnect() must be synchronous, idempotent and must not raise.
    """

    async def connect(self) -> None: ...
    def send_frame(self, frame: EncodedFrame) -> None: ...
    def disconnect(self) -> None: ...
    def snapshot(self) -> dict[str, int]: ...


# ---------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------

@dataclass
class RuntimeExecutionContext:
    """
    Imperative resources of one session.

    pending_tasks:
        In-flight tasks owned by the controller (e.g. connect) that
        teardown must cancel.
    """
    session_id: str
    capture: CaptureProtocol
    transport: TransportProtocol
    playback: PlaybackProtocol
    on_status_change: Callable[[SessionState], Any] | None = None
    on_closed: Callable[[], Any] | None = None
    pending_tasks: set[asyncio.Task[Any]] = field(default_factory=set)
