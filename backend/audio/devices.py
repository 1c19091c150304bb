"""
PortAudio device adapters (sounddevice).

Role in the system:
- SoundDeviceMicrophone: float32 mono blocks from the input device,
  delivered on the PortAudio thread.
- SoundDeviceSpeaker: plays queued float32 segments back-to-back on the
  output device, zero-filling when nothing is queued.

Both raise DeviceUnavailable when the device cannot be opened. Neither
knows about sessions, encoding or the network.
"""

from __future__ import annotations

import threading
from collections import deque
from typing import Any, Callable

import numpy as np

from observability.logger import log_event, now_ms
from session.errors import DeviceUnavailable
from spec import (
    AUDIO_CHANNELS,
    CAPTURE_FRAME_SAMPLES,
    CAPTURE_SAMPLE_RATE_HZ,
    PLAYBACK_SAMPLE_RATE_HZ,
)

try:
    import sounddevice as sd
except OSError as _import_exc:  # PortAudio shared library missing
    sd = None
    _SD_IMPORT_ERROR: str | None = str(_import_exc)
else:
    _SD_IMPORT_ERROR = None


def _require_sounddevice() -> Any:
    if sd is None:
        raise DeviceUnavailable(
            f"sounddevice not available (install PortAudio): {_SD_IMPORT_ERROR}"
        )
    return sd


# ---------------------------------------------------------------------
# Microphone
# ---------------------------------------------------------------------

class SoundDeviceMicrophone:
    """
    Fixed-size block source over sounddevice.InputStream.

    on_block receives a 1-D float32 copy of each block, on the
    PortAudio callback thread.
    """

    def __init__(
        self,
        *,
        device: int | str | None = None,
        sample_rate_hz: int = CAPTURE_SAMPLE_RATE_HZ,
        block_size: int = CAPTURE_FRAME_SAMPLES,
    ) -> None:
        self._device = device
        self._sample_rate_hz = sample_rate_hz
        self._block_size = block_size
        self._stream: Any = None

    def start(self, on_block: Callable[[np.ndarray], None]) -> None:
        """
        Open and start the input stream.

        Raises:
            DeviceUnavailable if the device is missing or access is denied.
        """
        if self._stream is not None:
            return
        backend = _require_sounddevice()

        def _callback(indata: np.ndarray, frames: int, time_info: Any, status: Any) -> None:  # pylint: disable=unused-argument
            if status:
                log_event({
                    "ts_ms": now_ms(),
                    "event_type": "MIC_STATUS",
                    "status": str(status),
                })
            on_block(indata[:, 0].copy())

        try:
            stream = backend.InputStream(
                samplerate=self._sample_rate_hz,
                channels=AUDIO_CHANNELS,
                dtype="float32",
                blocksize=self._block_size,
                device=self._device,
                callback=_callback,
            )
            stream.start()
        except (backend.PortAudioError, ValueError) as e:
            raise DeviceUnavailable(f"microphone unavailable: {e}") from e

        self._stream = stream

    def stop(self) -> None:
        """Stop and close the input stream. Idempotent."""
        stream = self._stream
        self._stream = None
        if stream is None:
            return
        try:
            stream.stop()
            stream.close()
        except Exception as e:  # pylint: disable=broad-exception-caught
            log_event({
                "ts_ms": now_ms(),
                "event_type": "MIC_CLOSE_FAILED",
                "error": repr(e),
            })


# ---------------------------------------------------------------------
# Speaker
# ---------------------------------------------------------------------

class SoundDeviceSpeaker:
    """
    Gapless segment player over sounddevice.OutputStream.

    Segments are played in enqueue order with no gap between them; the
    output callback zero-fills only when the queue is empty.
    """

    def __init__(
        self,
        *,
        device: int | str | None = None,
        sample_rate_hz: int = PLAYBACK_SAMPLE_RATE_HZ,
    ) -> None:
        self._device = device
        self._sample_rate_hz = sample_rate_hz
        self._stream: Any = None
        self._segments: deque[np.ndarray] = deque()
        self._offset = 0  # read position inside self._segments[0]
        self._lock = threading.Lock()

    def open(self) -> None:
        """
        Open and start the output stream.

        Raises:
            DeviceUnavailable if the device is missing.
        """
        if self._stream is not None:
            return
        backend = _require_sounddevice()

        try:
            stream = backend.OutputStream(
                samplerate=self._sample_rate_hz,
                channels=AUDIO_CHANNELS,
                dtype="float32",
                device=self._device,
                callback=self._fill,
            )
            stream.start()
        except (backend.PortAudioError, ValueError) as e:
            raise DeviceUnavailable(f"output device unavailable: {e}") from e

        self._stream = stream

    def enqueue(self, samples: np.ndarray, start_at_s: float) -> None:  # pylint: disable=unused-argument
        """
        Queue one segment behind everything already queued.

        start_at_s is the scheduler's planned start; the FIFO realizes it
        because segments are consumed strictly back-to-back.
        """
        with self._lock:
            self._segments.append(np.asarray(samples, dtype=np.float32))

    def close(self) -> None:
        """Drop unplayed audio and close the output stream. Idempotent."""
        with self._lock:
            self._segments.clear()
            self._offset = 0

        stream = self._stream
        self._stream = None
        if stream is None:
            return
        try:
            stream.stop()
            stream.close()
        except Exception as e:  # pylint: disable=broad-exception-caught
            log_event({
                "ts_ms": now_ms(),
                "event_type": "SPEAKER_CLOSE_FAILED",
                "error": repr(e),
            })

    def _fill(self, outdata: np.ndarray, frames: int, time_info: Any, status: Any) -> None:  # pylint: disable=unused-argument
        out = outdata[:, 0]
        written = 0
        with self._lock:
            while written < frames and self._segments:
                head = self._segments[0]
                take = min(frames - written, len(head) - self._offset)
                out[written:written + take] = head[self._offset:self._offset + take]
                written += take
                self._offset += take
                if self._offset >= len(head):
                    self._segments.popleft()
                    self._offset = 0
        out[written:] = 0.0
