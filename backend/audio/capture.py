"""
Microphone capture pipeline.

Invariants:
- PCM16 signed, little-endian, mono, 16 kHz
- Fixed 4096-sample frames, forwarded in production order
- Muted frames are dropped BEFORE encoding; no silence is substituted
- Never awaits the network: send() is fire-and-forget

Threading:
- The device delivers blocks on its own thread.
- The mute flag is read on that thread, at the frame boundary, and travels
  with the block; a later toggle never reclassifies a frame already captured.
- Blocks are marshalled onto the asyncio loop with call_soon_threadsafe,
  which preserves their order; all encoding and sending happen on the loop.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Callable, Protocol

import numpy as np

from audio.frames import AudioFrame, EncodedFrame
from audio.pcm import bytes_to_transport_text, float_to_pcm16_bytes
from observability.logger import log_event, now_ms
from spec import (
    CAPTURE_SAMPLE_RATE_HZ,
    INPUT_AUDIO_MIME_TYPE,
    SEQ_NUM_START,
)


class MicrophoneSource(Protocol):
    """Anything that can deliver float32 mono blocks to a callback."""

    def start(self, on_block: Callable[[np.ndarray], None]) -> None: ...
    def stop(self) -> None: ...


@dataclass
class CaptureCounters:
    """Counters for observability."""
    frames_captured: int = 0
    frames_sent: int = 0
    dropped_muted: int = 0
    dropped_not_started: int = 0


def encode_capture_frame(frame: AudioFrame) -> EncodedFrame:
    """AudioFrame -> base64 EncodedFrame tagged with the capture MIME type."""
    return EncodedFrame(
        mime_type=INPUT_AUDIO_MIME_TYPE,
        data=bytes_to_transport_text(frame.pcm_bytes),
        sequence_num=frame.sequence_num,
    )


class CapturePipeline:
    """
    Microphone -> codec -> transport.

    Lifecycle:
    - open():  acquire the device (raises DeviceUnavailable). Blocks that
               arrive before start() are discarded.
    - start(): begin forwarding frames.
    - stop():  release the device; later blocks are discarded. Idempotent,
               safe without open().
    """

    def __init__(
        self,
        *,
        source: MicrophoneSource,
        send: Callable[[EncodedFrame], None],
        is_muted: Callable[[], bool],
        session_id: str | None = None,
    ) -> None:
        self._source = source
        self._send = send
        self._is_muted = is_muted
        self._session_id = session_id

        self._loop: asyncio.AbstractEventLoop | None = None
        self._opened = False
        self._forwarding = False
        self._stopped = False
        self._next_seq = SEQ_NUM_START
        self.counters = CaptureCounters()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self) -> None:
        """
        Acquire the microphone.

        Must be called from the event loop thread.

        Raises:
            DeviceUnavailable if access is denied or no device is usable.
        """
        if self._stopped or self._opened:
            return
        self._loop = asyncio.get_running_loop()
        self._source.start(self._on_device_block)
        self._opened = True
        log_event({
            "ts_ms": now_ms(),
            "event_type": "MIC_ACQUIRED",
            "session_id": self._session_id,
        })

    def start(self) -> None:
        """Begin forwarding frames to the transport."""
        if self._stopped:
            return
        self._forwarding = True

    def stop(self) -> None:
        """Release the microphone. Idempotent."""
        if self._stopped:
            return
        self._stopped = True
        self._forwarding = False
        if self._opened:
            self._source.stop()
            log_event({
                "ts_ms": now_ms(),
                "event_type": "MIC_RELEASED",
                "session_id": self._session_id,
            })

    @property
    def is_running(self) -> bool:
        return self._forwarding and not self._stopped

    # ------------------------------------------------------------------
    # Frame path
    # ------------------------------------------------------------------

    def _on_device_block(self, block: np.ndarray) -> None:
        """Device thread entry point."""
        loop = self._loop
        if self._stopped or loop is None:
            return
        muted = self._is_muted()
        try:
            loop.call_soon_threadsafe(self.process_block, block, muted)
        except RuntimeError:
            # Loop already closed; the session is gone.
            return

    def process_block(self, block: np.ndarray, muted: bool | None = None) -> None:
        """
        Handle one captured frame on the loop thread.

        muted is the flag as it stood when the device produced the block;
        None reads it now. A muted frame never reaches the encoder.
        """
        if self._stopped:
            return
        if not self._forwarding:
            self.counters.dropped_not_started += 1
            return

        self.counters.frames_captured += 1

        if muted is None:
            muted = self._is_muted()
        if muted:
            self.counters.dropped_muted += 1
            return

        pcm_bytes = float_to_pcm16_bytes(block)
        if not pcm_bytes:
            return

        frame = AudioFrame(
            pcm_bytes=pcm_bytes,
            sample_rate_hz=CAPTURE_SAMPLE_RATE_HZ,
            sequence_num=self._next_seq,
            ts_ms=now_ms(),
        )
        self._next_seq += 1

        self._send(encode_capture_frame(frame))
        self.counters.frames_sent += 1

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    def snapshot(self) -> dict[str, int]:
        """Lightweight snapshot for logging."""
        return {
            "frames_captured": self.counters.frames_captured,
            "frames_sent": self.counters.frames_sent,
            "dropped_muted": self.counters.dropped_muted,
            "dropped_not_started": self.counters.dropped_not_started,
        }
