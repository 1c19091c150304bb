# pylint: disable=missing-module-docstring,missing-function-docstring
import asyncio
import base64
import json
from typing import Any

import pytest

from adapters.live import gemini_live
from adapters.live.gemini_live import GeminiLiveTransport
from audio.frames import EncodedFrame
from orchestrator.events import Event, EventType
from session.errors import HandshakeFailure
from spec import TRANSPORT_SEND_QUEUE_MAX_FRAMES


SETUP_COMPLETE = json.dumps({"setupComplete": {}})
_END = object()


# ---------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------

class FakeWebSocket:
    """Minimal stand-in for a websockets client connection."""

    def __init__(self, first_reply: Any = SETUP_COMPLETE) -> None:
        self.sent: list[str] = []
        self.close_calls = 0
        self.close_code: int | None = None
        self._incoming: asyncio.Queue[Any] = asyncio.Queue()
        if first_reply is not None:
            self._incoming.put_nowait(first_reply)

    # test controls
    def feed(self, item: Any) -> None:
        self._incoming.put_nowait(item)

    def end(self, code: int = 1000) -> None:
        self.close_code = code
        self._incoming.put_nowait(_END)

    # websocket surface
    async def send(self, message: str) -> None:
        self.sent.append(message)

    async def recv(self) -> Any:
        item = await self._incoming.get()
        if item is _END:
            raise ConnectionError("closed during handshake")
        if isinstance(item, BaseException):
            raise item
        return item

    def __aiter__(self) -> "FakeWebSocket":
        return self

    async def __anext__(self) -> Any:
        item = await self._incoming.get()
        if item is _END:
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self) -> None:
        self.close_calls += 1
        self._incoming.put_nowait(_END)


class Harness:
    def __init__(self, ws: FakeWebSocket | None = None, connect_error: Exception | None = None) -> None:
        self.ws = ws or FakeWebSocket()
        self.connect_error = connect_error
        self.urls: list[str] = []
        self.events: list[Event] = []
        self.audio: list[bytes] = []
        self.transport = GeminiLiveTransport(
            emit_event=self.events.append,
            on_audio=self.audio.append,
            api_key="secret-key",
            model="test-model",
            voice="Zephyr",
            system_prompt="Be brief.",
            url="wss://example.test/live",
            session_id="live_test",
            connect_fn=self.connect_fn,
        )

    async def connect_fn(self, url: str, **kwargs: Any) -> FakeWebSocket:
        self.urls.append(url)
        assert "max_size" in kwargs
        if self.connect_error is not None:
            raise self.connect_error
        return self.ws

    def event_types(self) -> list[EventType]:
        return [e.event_type for e in self.events]

    def sent_messages(self) -> list[dict[str, Any]]:
        return [json.loads(m) for m in self.ws.sent]


def audio_message(*payloads: bytes) -> str:
    return json.dumps({
        "serverContent": {
            "modelTurn": {
                "parts": [
                    {"inlineData": {
                        "mimeType": "audio/pcm;rate=24000",
                        "data": base64.b64encode(p).decode("ascii"),
                    }}
                    for p in payloads
                ]
            }
        }
    })


def frame(seq: int) -> EncodedFrame:
    data = base64.b64encode(seq.to_bytes(2, "little")).decode("ascii")
    return EncodedFrame(mime_type="audio/pcm;rate=16000", data=data, sequence_num=seq)


async def drain() -> None:
    for _ in range(10):
        await asyncio.sleep(0)


@pytest.fixture(autouse=True)
def quiet_logs(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    logs: list[dict[str, Any]] = []
    monkeypatch.setattr(gemini_live, "log_event", logs.append)
    return logs


# ---------------------------------------------------------------------
# Handshake
# ---------------------------------------------------------------------

async def test_handshake_sends_setup_and_reports_open() -> None:
    h = Harness()

    await h.transport.connect()

    assert h.transport.is_open
    assert h.event_types() == [EventType.TRANSPORT_OPENED]
    assert h.urls == ["wss://example.test/live?key=secret-key"]
    setup = h.sent_messages()[0]["setup"]
    assert setup["model"] == "models/test-model"
    assert setup["generationConfig"]["responseModalities"] == ["AUDIO"]

    h.transport.disconnect()


async def test_rejected_setup_raises_and_releases_socket() -> None:
    h = Harness(FakeWebSocket(first_reply=json.dumps({"error": {"code": 403}})))

    with pytest.raises(HandshakeFailure):
        await h.transport.connect()
    await drain()

    assert not h.transport.is_open
    assert h.ws.close_calls == 1
    assert EventType.TRANSPORT_OPENED not in h.event_types()


async def test_network_failure_before_open_is_handshake_failure() -> None:
    h = Harness(connect_error=OSError("dns"))

    with pytest.raises(HandshakeFailure) as exc_info:
        await h.transport.connect()

    assert "dns" in str(exc_info.value)
    assert h.events == []


async def test_connect_is_single_use() -> None:
    h = Harness()
    await h.transport.connect()

    with pytest.raises(RuntimeError):
        await h.transport.connect()

    h.transport.disconnect()


async def test_disconnect_during_handshake_fails_connect() -> None:
    ws = FakeWebSocket(first_reply=None)
    h = Harness(ws)

    task = asyncio.create_task(h.transport.connect())
    await drain()
    h.transport.disconnect()

    with pytest.raises(HandshakeFailure):
        await task
    assert not h.transport.is_open
    assert h.event_types() == [EventType.TRANSPORT_CLOSED]


# ---------------------------------------------------------------------
# Outbound
# ---------------------------------------------------------------------

async def test_frames_before_open_are_dropped() -> None:
    h = Harness()

    h.transport.send_frame(frame(1))
    await h.transport.connect()
    await drain()

    assert len(h.ws.sent) == 1  # setup only
    assert h.transport.snapshot()["dropped_not_open"] == 1
    h.transport.disconnect()


async def test_frames_are_sent_in_order() -> None:
    h = Harness()
    await h.transport.connect()

    for seq in range(1, 6):
        h.transport.send_frame(frame(seq))
    await drain()

    chunks = [
        m["realtimeInput"]["mediaChunks"][0] for m in h.sent_messages()[1:]
    ]
    assert [c["data"] for c in chunks] == [frame(s).data for s in range(1, 6)]
    assert {c["mimeType"] for c in chunks} == {"audio/pcm;rate=16000"}
    assert h.transport.snapshot()["frames_sent"] == 5
    h.transport.disconnect()


async def test_full_send_queue_drops_newest_frame(
    quiet_logs: list[dict[str, Any]],
) -> None:
    h = Harness()
    await h.transport.connect()

    for seq in range(TRANSPORT_SEND_QUEUE_MAX_FRAMES + 1):
        h.transport.send_frame(frame(seq))

    assert h.transport.snapshot()["dropped_backpressure"] == 1
    drops = [e for e in quiet_logs if e["event_type"] == "LIVE_FRAME_DROPPED"]
    assert [e["category"] for e in drops] == ["send_drop"]
    assert drops[0]["seq_num"] == TRANSPORT_SEND_QUEUE_MAX_FRAMES
    h.transport.disconnect()


async def test_frames_after_disconnect_are_dropped() -> None:
    h = Harness()
    await h.transport.connect()
    h.transport.disconnect()

    h.transport.send_frame(frame(1))
    await drain()

    assert len(h.ws.sent) == 1
    assert h.transport.snapshot()["dropped_not_open"] == 1


# ---------------------------------------------------------------------
# Inbound
# ---------------------------------------------------------------------

async def test_inbound_audio_is_forwarded_in_order() -> None:
    h = Harness()
    await h.transport.connect()

    h.ws.feed(audio_message(b"\x01\x00", b"\x02\x00"))
    h.ws.feed(audio_message(b"\x03\x00"))
    await drain()

    assert h.audio == [b"\x01\x00", b"\x02\x00", b"\x03\x00"]
    assert h.transport.snapshot()["audio_payloads_received"] == 3
    h.transport.disconnect()


async def test_malformed_messages_are_skipped(quiet_logs: list[dict[str, Any]]) -> None:
    h = Harness()
    await h.transport.connect()

    h.ws.feed("{not json")
    h.ws.feed(json.dumps({"serverContent": {"modelTurn": {"parts": [
        {"inlineData": {"mimeType": "audio/pcm", "data": "!!!"}},
    ]}}}))
    h.ws.feed(json.dumps({"serverContent": {"turnComplete": True}}))
    h.ws.feed(audio_message(b"\x07\x00"))
    await drain()

    assert h.audio == [b"\x07\x00"]
    assert h.transport.snapshot()["malformed_messages"] == 2
    assert h.transport.is_open
    types = [e["event_type"] for e in quiet_logs]
    assert "LIVE_MESSAGE_MALFORMED" in types
    assert "LIVE_AUDIO_UNDECODABLE" in types
    h.transport.disconnect()


# ---------------------------------------------------------------------
# Close / error
# ---------------------------------------------------------------------

async def test_remote_close_reports_closed_once() -> None:
    h = Harness()
    await h.transport.connect()

    h.ws.end(code=1000)
    await drain()
    h.transport.disconnect()

    assert h.event_types() == [EventType.TRANSPORT_OPENED, EventType.TRANSPORT_CLOSED]
    assert h.events[-1].reason == "remote_closed:1000"
    assert not h.transport.is_open


async def test_receive_error_reports_error_then_closed(
    quiet_logs: list[dict[str, Any]],
) -> None:
    h = Harness()
    await h.transport.connect()

    h.ws.feed(ConnectionResetError("reset by peer"))
    await drain()

    assert h.event_types() == [
        EventType.TRANSPORT_OPENED,
        EventType.TRANSPORT_ERROR,
        EventType.TRANSPORT_CLOSED,
    ]
    assert "reset by peer" in h.events[1].reason
    assert h.ws.close_calls == 1
    errors = [e for e in quiet_logs if e["event_type"] == "LIVE_TRANSPORT_ERROR"]
    assert [e["category"] for e in errors] == ["transport_error"]


async def test_disconnect_is_idempotent_and_releases_socket() -> None:
    h = Harness()
    await h.transport.connect()

    h.transport.disconnect()
    h.transport.disconnect()
    await drain()

    assert h.ws.close_calls == 1
    assert h.event_types().count(EventType.TRANSPORT_CLOSED) == 1
    assert h.events[-1].reason == "local_disconnect"


async def test_disconnect_never_raises(quiet_logs: list[dict[str, Any]]) -> None:
    def exploding_emit(event: Event) -> None:
        raise RuntimeError("listener failed")

    h = Harness()
    h.transport = GeminiLiveTransport(
        emit_event=exploding_emit,
        on_audio=h.audio.append,
        api_key="k",
        model="m",
        voice="v",
        system_prompt="p",
        connect_fn=h.connect_fn,
    )

    h.transport.disconnect()

    assert "LIVE_DISCONNECT_FAILED" in [e["event_type"] for e in quiet_logs]


def test_disconnect_without_loop_or_connect_is_safe() -> None:
    events: list[Event] = []
    transport = GeminiLiveTransport(
        emit_event=events.append,
        on_audio=lambda pcm: None,
        api_key="k",
        model="m",
        voice="v",
        system_prompt="p",
    )

    transport.disconnect()

    assert [e.event_type for e in events] == [EventType.TRANSPORT_CLOSED]
