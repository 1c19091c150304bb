"""
SPEC-AS-CONSTANTS
-----------------
Single source of truth for all behavioral invariants of the live voice session.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- No magic numbers elsewhere in the codebase.
- Other modules MUST import from this file.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

# =============================================================================
# Capture Format (PCM16 mono @ 16kHz, 4096-sample frames)
# =============================================================================

CAPTURE_SAMPLE_RATE_HZ: Final[int] = 16_000
CAPTURE_FRAME_SAMPLES: Final[int] = 4096

# =============================================================================
# Playback Format (PCM16 mono @ 24kHz)
# =============================================================================

PLAYBACK_SAMPLE_RATE_HZ: Final[int] = 24_000

# =============================================================================
# Shared PCM invariants
# =============================================================================

AUDIO_CHANNELS: Final[int] = 1
AUDIO_SAMPLE_WIDTH_BYTES: Final[int] = 2  # PCM16 (signed)

# Encode scale is split: negative samples scale by 32768, non-negative by 32767.
PCM16_NEGATIVE_SCALE: Final[float] = 32768.0
PCM16_POSITIVE_SCALE: Final[float] = 32767.0

# Decode divisor is uniform. Do not "fix" the asymmetry with the encoder.
PCM16_DECODE_DIVISOR: Final[float] = 32768.0

SEQ_NUM_START: Final[int] = 1

# =============================================================================
# Live wire protocol
# =============================================================================

INPUT_AUDIO_MIME_TYPE: Final[str] = f"audio/pcm;rate={CAPTURE_SAMPLE_RATE_HZ}"
RESPONSE_MODALITY_AUDIO: Final[str] = "AUDIO"

LIVE_WS_URL_DEFAULT: Final[str] = (
    "wss://generativelanguage.googleapis.com/ws/"
    "google.ai.generativelanguage.v1beta.GenerativeService.BidiGenerateContent"
)
LIVE_MODEL_DEFAULT: Final[str] = "gemini-2.5-flash-native-audio-preview-09-2025"
LIVE_VOICE_DEFAULT: Final[str] = "Zephyr"
LIVE_SYSTEM_PROMPT_DEFAULT: Final[str] = (
    "You are Vempati Uday Kiran's Chat Bot. Be concise, helpful, and friendly."
)

# Server messages can carry several seconds of 24kHz audio.
LIVE_WS_MAX_MESSAGE_BYTES: Final[int] = 2**24

# =============================================================================
# Session timing
# =============================================================================

LIVE_HANDSHAKE_TIMEOUT_S: Final[float] = 15.0
LIVE_HANDSHAKE_TIMEOUT_MS: Final[int] = int(LIVE_HANDSHAKE_TIMEOUT_S * 1000)

# Bound on frames waiting for the sender task. Frames beyond this are dropped
# (SendDrop) rather than buffered without limit.
TRANSPORT_SEND_QUEUE_MAX_FRAMES: Final[int] = 64

# =============================================================================
# Helper Functions
# =============================================================================

def samples_to_seconds(num_samples: int, sample_rate_hz: int) -> float:
    """
    Convert a sample count to duration in seconds.

    Defensive behavior:
    - Non-positive input returns 0.0.
    """
    if num_samples <= 0 or sample_rate_hz <= 0:
        return 0.0
    return num_samples / sample_rate_hz


# =============================================================================
# Convenience Bundles
# =============================================================================

@dataclass(frozen=True)
class AudioFormat:
    """
    Immutable bundle describing one direction's PCM format.

    Convenience wrapper for passing format metadata around;
    it is NOT a second source of truth.
    """
    sample_rate_hz: int
    channels: int = AUDIO_CHANNELS
    sample_width_bytes: int = AUDIO_SAMPLE_WIDTH_BYTES

    @property
    def bytes_per_second(self) -> int:
        """Return PCM bytes per second of audio."""
        return self.sample_rate_hz * self.channels * self.sample_width_bytes


CAPTURE_FORMAT: Final[AudioFormat] = AudioFormat(sample_rate_hz=CAPTURE_SAMPLE_RATE_HZ)
PLAYBACK_FORMAT: Final[AudioFormat] = AudioFormat(sample_rate_hz=PLAYBACK_SAMPLE_RATE_HZ)
