"""
Event definitions for the session reducer.

Rules:
- Events describe facts that have occurred.
- Events carry data only (no behavior).
- All reducer decisions are based on these events.
- No clocks, no timers, no async, no side effects.

Device, transport and timer callbacks are all turned into one of these
events and pushed onto the runtime, the session's single ordering point.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


# =============================================================================
# Event Type Enumeration
# =============================================================================

class EventType(str, Enum):
    """
    Canonical event types understood by the reducer.

    Every (state, event_type) pair must be explicitly handled
    or explicitly ignored by the reducer.
    """

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------
    SESSION_STARTED = "SESSION_STARTED"
    CLOSE_REQUESTED = "CLOSE_REQUESTED"

    # ------------------------------------------------------------------
    # User control
    # ------------------------------------------------------------------
    MUTE_TOGGLED = "MUTE_TOGGLED"

    # ------------------------------------------------------------------
    # Devices
    # ------------------------------------------------------------------
    DEVICE_FAILED = "DEVICE_FAILED"

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------
    TRANSPORT_OPENED = "TRANSPORT_OPENED"
    HANDSHAKE_FAILED = "HANDSHAKE_FAILED"
    TRANSPORT_ERROR = "TRANSPORT_ERROR"
    TRANSPORT_CLOSED = "TRANSPORT_CLOSED"

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------
    HANDSHAKE_TIMEOUT = "HANDSHAKE_TIMEOUT"


# =============================================================================
# Base Event
# =============================================================================

@dataclass(frozen=True)
class Event:
    """
    Base event type.

    All events must specify:
    - event_type: discriminant
    - ts_ms: timestamp provided by the source (or fake in tests)
    """

    event_type: EventType
    ts_ms: int


# =============================================================================
# Session Events
# =============================================================================

@dataclass(frozen=True)
class SessionStarted(Event):
    """Controller began acquiring devices and connecting."""
    session_id: str


@dataclass(frozen=True)
class CloseRequested(Event):
    """The user (or the embedding UI) asked to end the session."""


@dataclass(frozen=True)
class MuteToggled(Event):
    """The user flipped the microphone mute switch."""


# =============================================================================
# Device Events
# =============================================================================

@dataclass(frozen=True)
class DeviceFailed(Event):
    """Microphone or output device could not be acquired or died."""
    reason: str


# =============================================================================
# Transport Events
# =============================================================================

@dataclass(frozen=True)
class TransportOpened(Event):
    """Remote acknowledged the setup message."""


@dataclass(frozen=True)
class HandshakeFailed(Event):
    """connect() failed before the remote acknowledged setup."""
    reason: str


@dataclass(frozen=True)
class TransportErrored(Event):
    """The connection reported an error (send/receive failure)."""
    reason: str


@dataclass(frozen=True)
class TransportClosed(Event):
    """
    The connection is gone.

    Emitted exactly once per transport, for remote closes and for
    local disconnect() alike.
    """
    reason: str | None = None


# =============================================================================
# Timer Events
# =============================================================================

@dataclass(frozen=True)
class HandshakeTimedOut(Event):
    """No TransportOpened within LIVE_HANDSHAKE_TIMEOUT_MS."""
