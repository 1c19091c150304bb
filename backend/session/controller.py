"""
Live voice session facade.

Responsibilities:
- Wire capture, transport and playback around one Runtime
- Translate UI intents (close, toggle mute) into orchestrator events
- Acquire devices and drive the handshake in start()
- Expose state and lifecycle hooks to the surrounding UI

NOT responsible for:
- Deciding state transitions (reducer)
- Releasing resources (runtime teardown)
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable
from uuid import uuid4

from adapters.live.gemini_live import GeminiLiveTransport
from audio.capture import CapturePipeline, MicrophoneSource
from audio.devices import SoundDeviceMicrophone, SoundDeviceSpeaker
from audio.playback import AudioSink, PlaybackPipeline
from config import AppConfig
from observability.logger import log_event, now_ms
from observability.metrics import timed
from orchestrator.events import (
    CloseRequested,
    DeviceFailed,
    Event,
    EventType,
    HandshakeFailed,
    MuteToggled,
    SessionStarted,
)
from orchestrator.runtime import Runtime
from orchestrator.runtime_context import RuntimeExecutionContext, TransportProtocol
from orchestrator.state_dataclass import ControllerState
from session.errors import DeviceUnavailable, VoiceSessionError
from session.session_state import SessionState


# (emit_event, on_audio, session_id) -> transport
TransportFactory = Callable[
    [Callable[[Event], None], Callable[[bytes], Any], str],
    TransportProtocol,
]


def new_session_id() -> str:
    return f"live_{uuid4().hex[:12]}"


def gemini_transport_factory(config: AppConfig) -> TransportFactory:
    """Build GeminiLiveTransport instances from configuration."""
    api_key = config.require_api_key()

    def _factory(
        emit_event: Callable[[Event], None],
        on_audio: Callable[[bytes], Any],
        session_id: str,
    ) -> TransportProtocol:
        return GeminiLiveTransport(
            emit_event=emit_event,
            on_audio=on_audio,
            api_key=api_key,
            model=config.live_model,
            voice=config.live_voice,
            system_prompt=config.live_system_prompt,
            url=config.live_ws_url,
            session_id=session_id,
        )

    return _factory


class SessionController:
    """
    One duplex voice session, from construction to a terminal state.

    The session starts in CONNECTING. Every state change flows through
    the runtime, so hooks see the same ordered sequence the reducer saw.
    """

    def __init__(
        self,
        *,
        config: AppConfig | None = None,
        transport_factory: TransportFactory | None = None,
        microphone: MicrophoneSource | None = None,
        speaker: AudioSink | None = None,
        on_status_change: Callable[[SessionState], Any] | None = None,
        on_closed: Callable[[], Any] | None = None,
        clock: Callable[[], float] = time.monotonic,
        session_id: str | None = None,
    ) -> None:
        if config is None:
            config = AppConfig.load_from_env()
        if transport_factory is None:
            transport_factory = gemini_transport_factory(config)

        self._session_id = session_id or new_session_id()
        self._user_on_closed = on_closed
        self._closed_signal = asyncio.Event()
        self._started = False

        self._playback = PlaybackPipeline(
            sink=speaker or SoundDeviceSpeaker(device=config.output_device),
            clock=clock,
            session_id=self._session_id,
        )
        self._transport = transport_factory(
            self._dispatch,
            self._playback.play,
            self._session_id,
        )
        self._capture = CapturePipeline(
            source=microphone or SoundDeviceMicrophone(device=config.input_device),
            send=self._transport.send_frame,
            is_muted=lambda: self._runtime.state.muted,
            session_id=self._session_id,
        )

        self._ctx = RuntimeExecutionContext(
            session_id=self._session_id,
            capture=self._capture,
            transport=self._transport,
            playback=self._playback,
            on_status_change=on_status_change,
            on_closed=self._on_closed,
        )
        self._runtime = Runtime(initial_state=ControllerState(), context=self._ctx)

    # ------------------------------------------------------------------
    # Read-only view
    # ------------------------------------------------------------------

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def state(self) -> SessionState:
        return self._runtime.state.state

    @property
    def is_muted(self) -> bool:
        return self._runtime.state.muted

    @property
    def last_error(self) -> str | None:
        return self._runtime.state.last_error

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """
        Acquire devices and connect.

        Returns once the handshake has resolved, either way; failures are
        reported through state and hooks, not raised.

        Raises:
            RuntimeError if called more than once.
        """
        if self._started:
            raise RuntimeError("SessionController.start() may be called only once")
        self._started = True

        self._dispatch(SessionStarted(
            event_type=EventType.SESSION_STARTED,
            ts_ms=now_ms(),
            session_id=self._session_id,
        ))
        if self.state.is_terminal:
            return

        try:
            self._capture.open()
            self._playback.open()
        except DeviceUnavailable as e:
            self._dispatch(DeviceFailed(
                event_type=EventType.DEVICE_FAILED,
                ts_ms=now_ms(),
                reason=str(e),
            ))
            return

        task = asyncio.create_task(self._connect())
        self._ctx.pending_tasks.add(task)
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            self.close()
            raise
        finally:
            self._ctx.pending_tasks.discard(task)

        if task.cancelled():
            # Teardown cancelled the handshake (close() or a timeout).
            return

        exc = task.exception()
        if exc is None:
            return
        if isinstance(exc, VoiceSessionError):
            self._dispatch(HandshakeFailed(
                event_type=EventType.HANDSHAKE_FAILED,
                ts_ms=now_ms(),
                reason=str(exc),
            ))
            return
        raise exc

    def close(self) -> None:
        """Close the session. Safe at any time, any number of times."""
        self._dispatch(CloseRequested(
            event_type=EventType.CLOSE_REQUESTED,
            ts_ms=now_ms(),
        ))

    def toggle_mute(self) -> bool:
        """Flip the mute flag; returns the new value."""
        self._dispatch(MuteToggled(
            event_type=EventType.MUTE_TOGGLED,
            ts_ms=now_ms(),
        ))
        return self.is_muted

    async def wait_closed(self) -> SessionState:
        """Wait for CLOSED or ERRORED and return it."""
        await self._closed_signal.wait()
        return self.state

    def snapshot(self) -> dict[str, Any]:
        return {
            "session_id": self._session_id,
            "state": self.state.value,
            "muted": self.is_muted,
            "capture": self._capture.snapshot(),
            "transport": self._transport.snapshot(),
            "playback": self._playback.snapshot(),
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _dispatch(self, event: Event) -> None:
        self._runtime.handle_event(event)

    async def _connect(self) -> None:
        with timed("live_handshake", session_id=self._session_id):
            await self._transport.connect()

    def _on_closed(self) -> None:
        self._closed_signal.set()
        log_event({
            "ts_ms": now_ms(),
            "event_type": "SESSION_CLOSED",
            "session_id": self._session_id,
            "state": self.state.value,
            "last_error": self.last_error,
        })
        if self._user_on_closed is not None:
            self._user_on_closed()
