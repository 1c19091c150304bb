"""
Audio frame primitives.

Pure data containers only.
No queues, no timing logic, no IO.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from audio.pcm import transport_text_to_bytes
from spec import AUDIO_CHANNELS, AUDIO_SAMPLE_WIDTH_BYTES, samples_to_seconds


@dataclass(frozen=True)
class AudioFrame:
    """
    One chunk of PCM16 audio in a single direction of the session.

    pcm_bytes:
        Raw PCM16 little-endian mono bytes. Never empty.

    sample_rate_hz:
        16kHz for capture, 24kHz for playback. Fixed for a session.

    sequence_num:
        Monotonic per direction, starting at 1. Debugging and ordering only.

    ts_ms:
        Wall-clock timestamp (milliseconds) when the frame was produced.
        Used for observability only (not control logic).
    """
    pcm_bytes: bytes
    sample_rate_hz: int
    sequence_num: int = 0
    ts_ms: int = 0
    channels: int = AUDIO_CHANNELS

    def __post_init__(self) -> None:
        if not self.pcm_bytes:
            raise ValueError("AudioFrame requires at least one sample")
        if len(self.pcm_bytes) % AUDIO_SAMPLE_WIDTH_BYTES != 0:
            raise ValueError(
                f"PCM16 payload length must be even, got {len(self.pcm_bytes)}"
            )
        if self.channels != AUDIO_CHANNELS:
            raise ValueError(f"Only mono audio is supported, got {self.channels} channels")
        if self.sample_rate_hz <= 0:
            raise ValueError("sample_rate_hz must be > 0")

    @property
    def num_samples(self) -> int:
        return len(self.pcm_bytes) // AUDIO_SAMPLE_WIDTH_BYTES

    @property
    def duration_s(self) -> float:
        return samples_to_seconds(self.num_samples, self.sample_rate_hz)

    @property
    def samples(self) -> np.ndarray:
        """Read-only int16 view of the payload."""
        return np.frombuffer(self.pcm_bytes, dtype="<i2")


@dataclass(frozen=True)
class EncodedFrame:
    """
    Transport-ready form of an AudioFrame.

    data is the base64 text of the AudioFrame's pcm_bytes; decoding it
    reproduces the exact samples.
    """
    mime_type: str
    data: str
    sequence_num: int = 0

    def to_audio_frame(self, sample_rate_hz: int) -> AudioFrame:
        """Decode back to the AudioFrame this was built from."""
        return AudioFrame(
            pcm_bytes=transport_text_to_bytes(self.data),
            sample_rate_hz=sample_rate_hz,
            sequence_num=self.sequence_num,
        )
