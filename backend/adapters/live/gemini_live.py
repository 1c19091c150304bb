"""
Gemini Live websocket transport.

Core model:
- One websocket per session; the handshake happens once.
- Capture frames are queued to a sender task so the capture path never
  awaits the network; frames offered before open are dropped.
- A receiver task decodes inline audio and hands raw PCM16 (24 kHz) to
  the playback callback in arrival order.
- Lifecycle facts are emitted as orchestrator events:
    TransportOpened   after setupComplete
    TransportErrored  send/receive failure after open
    TransportClosed   exactly once, remote close or local disconnect()

Design constraints:
- Transport must not decide session state.
- The websocket lives inside a _ConnectionHandle that only this module sees.
- disconnect() is synchronous and never raises.
"""

from __future__ import annotations

import asyncio
import json
import urllib.parse
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from websockets.asyncio.client import connect as ws_connect

from adapters.live.base import LiveTransport
from audio.frames import EncodedFrame
from audio.pcm import transport_text_to_bytes
from observability.logger import log_event, now_ms
from orchestrator.events import (
    Event,
    EventType,
    TransportClosed,
    TransportErrored,
    TransportOpened,
)
from protocol.live_messages import (
    LiveProtocolError,
    build_realtime_input,
    build_setup_message,
    extract_inline_audio,
    is_go_away,
    is_setup_complete,
    parse_server_message,
)
from session.errors import (
    DecodeFailure,
    ErrorCategory,
    HandshakeFailure,
    TransportError,
)
from spec import (
    LIVE_WS_MAX_MESSAGE_BYTES,
    LIVE_WS_URL_DEFAULT,
    TRANSPORT_SEND_QUEUE_MAX_FRAMES,
)


# Keeps fire-and-forget close() tasks alive until they finish.
_CLOSE_TASKS: set[asyncio.Task[None]] = set()


def _on_close_task_done(task: asyncio.Task[None]) -> None:
    _CLOSE_TASKS.discard(task)
    if not task.cancelled() and task.exception() is not None:
        log_event({
            "ts_ms": now_ms(),
            "event_type": "LIVE_SOCKET_CLOSE_FAILED",
            "error": repr(task.exception()),
        })


class _ConnectionHandle:
    """
    Owned websocket with an explicit release.

    After release() the socket is unreachable through the handle, so late
    callbacks cannot use a closed connection.
    """

    def __init__(self, ws: Any) -> None:
        self._ws: Any = ws

    @property
    def ws(self) -> Any:
        return self._ws

    @property
    def released(self) -> bool:
        return self._ws is None

    def release(self) -> None:
        """Drop the socket and schedule its close. Idempotent."""
        ws = self._ws
        if ws is None:
            return
        self._ws = None
        try:
            task = asyncio.get_running_loop().create_task(ws.close())
        except RuntimeError:
            # No running loop: nothing can await the close handshake.
            return
        _CLOSE_TASKS.add(task)
        task.add_done_callback(_on_close_task_done)


@dataclass
class TransportCounters:
    """Counters for observability."""
    frames_sent: int = 0
    dropped_not_open: int = 0
    dropped_backpressure: int = 0
    audio_payloads_received: int = 0
    malformed_messages: int = 0


class GeminiLiveTransport(LiveTransport):
    """
    Duplex client for the Gemini Live BidiGenerateContent websocket.

    Public interface:
    - connect(): handshake, emits TransportOpened
    - send_frame(frame): fire-and-forget
    - disconnect(): release, emits TransportClosed once
    """

    def __init__(
        self,
        *,
        emit_event: Callable[[Event], None],
        on_audio: Callable[[bytes], Any],
        api_key: str,
        model: str,
        voice: str,
        system_prompt: str,
        url: str = LIVE_WS_URL_DEFAULT,
        session_id: str | None = None,
        connect_fn: Callable[..., Awaitable[Any]] = ws_connect,
    ) -> None:
        self._emit = emit_event
        self._on_audio = on_audio
        self._api_key = api_key
        self._model = model
        self._voice = voice
        self._system_prompt = system_prompt
        self._url = url
        self._session_id = session_id
        self._connect_fn = connect_fn

        self._handle: _ConnectionHandle | None = None
        self._send_q: asyncio.Queue[EncodedFrame] | None = None
        self._sender_task: asyncio.Task[None] | None = None
        self._recv_task: asyncio.Task[None] | None = None

        self._connect_called = False
        self._open = False
        self._closed = False
        self._close_emitted = False

        self.counters = TransportCounters()

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    @property
    def is_open(self) -> bool:
        return self._open

    async def connect(self) -> None:
        if self._connect_called:
            raise RuntimeError("connect() may be called only once per transport")
        self._connect_called = True

        if self._closed:
            raise HandshakeFailure("transport disconnected before connect")

        try:
            ws = await self._connect_fn(
                self._build_url(),
                max_size=LIVE_WS_MAX_MESSAGE_BYTES,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:  # pylint: disable=broad-exception-caught
            raise HandshakeFailure(f"live_connect_failed: {e!r}") from e

        self._handle = _ConnectionHandle(ws)
        if self._closed:
            self._handle.release()
            raise HandshakeFailure("transport disconnected during handshake")

        try:
            await ws.send(json.dumps(build_setup_message(
                model=self._model,
                voice=self._voice,
                system_prompt=self._system_prompt,
            )))
            first = parse_server_message(await ws.recv())
        except asyncio.CancelledError:
            self._handle.release()
            raise
        except Exception as e:  # pylint: disable=broad-exception-caught
            self._handle.release()
            raise HandshakeFailure(f"live_setup_failed: {e!r}") from e

        if not is_setup_complete(first):
            self._handle.release()
            raise HandshakeFailure(
                f"live_setup_rejected: unexpected first message {sorted(first)}"
            )

        if self._closed:
            self._handle.release()
            raise HandshakeFailure("transport disconnected during handshake")

        self._open = True
        self._send_q = asyncio.Queue(maxsize=TRANSPORT_SEND_QUEUE_MAX_FRAMES)
        self._sender_task = asyncio.create_task(self._send_loop(ws, self._send_q))
        self._recv_task = asyncio.create_task(self._recv_loop(ws))

        log_event({
            "ts_ms": now_ms(),
            "event_type": "LIVE_OPENED",
            "session_id": self._session_id,
            "model": self._model,
            "voice": self._voice,
        })
        self._emit(TransportOpened(event_type=EventType.TRANSPORT_OPENED, ts_ms=now_ms()))

    def send_frame(self, frame: EncodedFrame) -> None:
        q = self._send_q
        if not self._open or q is None:
            self.counters.dropped_not_open += 1
            return

        try:
            q.put_nowait(frame)
        except asyncio.QueueFull:
            self.counters.dropped_backpressure += 1
            log_event({
                "ts_ms": now_ms(),
                "event_type": "LIVE_FRAME_DROPPED",
                "session_id": self._session_id,
                "category": ErrorCategory.SEND_DROP.value,
                "reason": "send_queue_full",
                "seq_num": frame.sequence_num,
            })

    def disconnect(self) -> None:
        try:
            self._shutdown("local_disconnect")
        except Exception as e:  # pylint: disable=broad-exception-caught
            log_event({
                "ts_ms": now_ms(),
                "event_type": "LIVE_DISCONNECT_FAILED",
                "session_id": self._session_id,
                "error": repr(e),
            })

    def snapshot(self) -> dict[str, int]:
        return {
            "frames_sent": self.counters.frames_sent,
            "dropped_not_open": self.counters.dropped_not_open,
            "dropped_backpressure": self.counters.dropped_backpressure,
            "audio_payloads_received": self.counters.audio_payloads_received,
            "malformed_messages": self.counters.malformed_messages,
        }

    # -------------------------------------------------------------------------
    # Connection management
    # -------------------------------------------------------------------------

    def _build_url(self) -> str:
        qs = urllib.parse.urlencode({"key": self._api_key})
        return f"{self._url}?{qs}"

    def _shutdown(self, reason: str) -> None:
        """Release everything once; emit TransportClosed once."""
        if self._closed:
            return
        self._closed = True
        self._open = False

        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None

        for task in (self._sender_task, self._recv_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
        self._sender_task = None
        self._recv_task = None
        self._send_q = None

        if self._handle is not None:
            self._handle.release()

        log_event({
            "ts_ms": now_ms(),
            "event_type": "LIVE_DISCONNECTED",
            "session_id": self._session_id,
            "reason": reason,
        })

        if not self._close_emitted:
            self._close_emitted = True
            self._emit(TransportClosed(
                event_type=EventType.TRANSPORT_CLOSED,
                ts_ms=now_ms(),
                reason=reason,
            ))

    def _fail(self, error: TransportError) -> None:
        if self._closed:
            return
        reason = str(error)
        log_event({
            "ts_ms": now_ms(),
            "event_type": "LIVE_TRANSPORT_ERROR",
            "session_id": self._session_id,
            "category": error.category.value,
            "reason": reason,
        })
        self._emit(TransportErrored(
            event_type=EventType.TRANSPORT_ERROR,
            ts_ms=now_ms(),
            reason=reason,
        ))
        self._shutdown(reason)

    # -------------------------------------------------------------------------
    # Background loops
    # -------------------------------------------------------------------------

    async def _send_loop(self, ws: Any, q: asyncio.Queue[EncodedFrame]) -> None:
        """Drain capture frames to the socket in the order they were offered."""
        try:
            while True:
                frame = await q.get()
                await ws.send(json.dumps(build_realtime_input(frame)))
                self.counters.frames_sent += 1
        except asyncio.CancelledError:
            return
        except Exception as e:  # pylint: disable=broad-exception-caught
            self._fail(TransportError(f"live_send_failed: {e!r}"))

    async def _recv_loop(self, ws: Any) -> None:
        """
        Receive server messages until the socket closes.

        A clean remote close ends the session as CLOSED; an abnormal one
        is reported as a transport error first.
        """
        try:
            async for raw in ws:
                self._handle_message(raw)
        except asyncio.CancelledError:
            return
        except Exception as e:  # pylint: disable=broad-exception-caught
            self._fail(TransportError(f"live_recv_failed: {e!r}"))
            return

        code = getattr(ws, "close_code", None)
        self._shutdown(f"remote_closed:{code}")

    def _handle_message(self, raw: str | bytes) -> None:
        """
        Forward every inline audio payload of one message.

        Missing or malformed payloads mean "no frame this turn".
        """
        try:
            msg = parse_server_message(raw)
        except LiveProtocolError as e:
            self.counters.malformed_messages += 1
            log_event({
                "ts_ms": now_ms(),
                "event_type": "LIVE_MESSAGE_MALFORMED",
                "session_id": self._session_id,
                "error": str(e),
            })
            return

        if is_go_away(msg):
            log_event({
                "ts_ms": now_ms(),
                "event_type": "LIVE_GO_AWAY",
                "session_id": self._session_id,
                "details": msg.get("goAway"),
            })

        for b64 in extract_inline_audio(msg):
            try:
                pcm = transport_text_to_bytes(b64)
            except DecodeFailure as e:
                self.counters.malformed_messages += 1
                log_event({
                    "ts_ms": now_ms(),
                    "event_type": "LIVE_AUDIO_UNDECODABLE",
                    "session_id": self._session_id,
                    "error": str(e),
                })
                continue

            self.counters.audio_payloads_received += 1
            self._on_audio(pcm)
