"""
Error taxonomy for the live voice session.

Fatal categories end the session in ERRORED and run teardown exactly once.
Recoverable categories are logged and absorbed where they occur.
"""

from __future__ import annotations

from enum import Enum


class ErrorCategory(str, Enum):
    """Classification used for logging and for the fatal/recoverable split."""

    DEVICE_UNAVAILABLE = "device_unavailable"
    HANDSHAKE_FAILURE = "handshake_failure"
    TRANSPORT_ERROR = "transport_error"
    DECODE_FAILURE = "decode_failure"
    SEND_DROP = "send_drop"

    @property
    def is_fatal(self) -> bool:
        """True for categories that terminate the session."""
        return self in _FATAL


_FATAL = frozenset({
    ErrorCategory.DEVICE_UNAVAILABLE,
    ErrorCategory.HANDSHAKE_FAILURE,
    ErrorCategory.TRANSPORT_ERROR,
})


class VoiceSessionError(Exception):
    """Base class for live session errors."""

    category: ErrorCategory


class DeviceUnavailable(VoiceSessionError):
    """
    Microphone or speaker could not be opened.

    Raised when access is denied, no device matches, or the audio
    backend (PortAudio) is missing.
    """

    category = ErrorCategory.DEVICE_UNAVAILABLE


class HandshakeFailure(VoiceSessionError):
    """The remote rejected the setup message or the network failed before open."""

    category = ErrorCategory.HANDSHAKE_FAILURE


class TransportError(VoiceSessionError):
    """The connection failed after a successful open."""

    category = ErrorCategory.TRANSPORT_ERROR


class DecodeFailure(VoiceSessionError):
    """
    An inbound audio payload could not be decoded.

    Recoverable: the segment is skipped and the session continues.
    """

    category = ErrorCategory.DECODE_FAILURE
