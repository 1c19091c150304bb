"""PCM conversion and transport-encoding utilities."""
from __future__ import annotations

import base64
import binascii
from typing import Sequence

import numpy as np

from session.errors import DecodeFailure
from spec import (
    AUDIO_SAMPLE_WIDTH_BYTES,
    PCM16_DECODE_DIVISOR,
    PCM16_NEGATIVE_SCALE,
    PCM16_POSITIVE_SCALE,
)


def float_to_pcm16(samples: Sequence[float] | np.ndarray) -> np.ndarray:
    """
    Convert float samples in [-1.0, 1.0] to int16.

    Out-of-range values are clamped, NaN becomes 0.
    Negative values scale by 32768, non-negative by 32767, and the
    result truncates toward zero:

        [0.5, -0.5, 1.0, -1.0] -> [16383, -16384, 32767, -32768]
    """
    audio = np.asarray(samples, dtype=np.float64).reshape(-1)
    audio = np.clip(np.nan_to_num(audio, nan=0.0), -1.0, 1.0)
    scaled = np.where(
        audio < 0,
        audio * PCM16_NEGATIVE_SCALE,
        audio * PCM16_POSITIVE_SCALE,
    )
    return np.trunc(scaled).astype("<i2")


def float_to_pcm16_bytes(samples: Sequence[float] | np.ndarray) -> bytes:
    """float samples -> PCM16 little-endian bytes."""
    return float_to_pcm16(samples).tobytes()


def pcm16le_to_float32(pcm_bytes: bytes) -> np.ndarray:
    """
    Convert PCM16 little-endian mono bytes to float32 in [-1.0, 1.0).

    Every sample is divided by 32768.0, including positive ones.
    No resampling. No channel mixing.
    """
    if len(pcm_bytes) % AUDIO_SAMPLE_WIDTH_BYTES != 0:
        # Truncated sample; strict callers use decode_pcm16_segment instead.
        pcm_bytes = pcm_bytes[: len(pcm_bytes) - 1]

    audio_i16 = np.frombuffer(pcm_bytes, dtype="<i2")  # little-endian int16
    audio_f32 = audio_i16.astype(np.float32) / np.float32(PCM16_DECODE_DIVISOR)
    return audio_f32


def decode_pcm16_segment(pcm_bytes: bytes) -> np.ndarray:
    """
    Strict variant of pcm16le_to_float32 for inbound playback segments.

    Raises:
        DecodeFailure if the payload is empty or not a whole number of samples.
    """
    if not pcm_bytes:
        raise DecodeFailure("empty audio payload")
    if len(pcm_bytes) % AUDIO_SAMPLE_WIDTH_BYTES != 0:
        raise DecodeFailure(
            f"audio payload of {len(pcm_bytes)} bytes is not whole PCM16 samples"
        )
    return pcm16le_to_float32(pcm_bytes)


# -------------------------
# Transport encoding
# -------------------------

def bytes_to_transport_text(data: bytes) -> str:
    """Binary -> base64 text. Exact for every byte sequence, including b""."""
    return base64.b64encode(data).decode("ascii")


def transport_text_to_bytes(text: str | bytes) -> bytes:
    """
    base64 text -> binary.

    Raises:
        DecodeFailure if the text is not valid base64.
    """
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeFailure(f"invalid transport text: {e}") from e
