"""
Live transport contract.

This module defines the *interface only*. The transport is the one
component that talks to the remote voice endpoint.

Key invariants:
- The transport reports lifecycle facts as orchestrator events
  (TransportOpened, TransportErrored, TransportClosed). It never decides
  session state.
- TransportClosed is emitted exactly once per transport instance.
- The connection handle never leaves the transport.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from audio.frames import EncodedFrame


class LiveTransport(ABC):
    """
    Abstract duplex session client.

    Implementations are responsible for:
    - The one-time setup handshake (voice, system prompt, audio responses)
    - Sending capture frames without blocking the caller
    - Decoding inbound audio and handing raw PCM to the playback callback
    - Releasing the connection exactly once

    Non-responsibilities:
    - No state machine logic
    - No mute gating (capture does that)
    - No playback scheduling
    """

    @abstractmethod
    async def connect(self) -> None:
        """
        Perform the handshake.

        Emits TransportOpened on success.

        Raises:
            HandshakeFailure if the remote rejects setup or the network fails
            before open.
            RuntimeError if called more than once.
        """
        raise NotImplementedError

    @abstractmethod
    def send_frame(self, frame: EncodedFrame) -> None:
        """
        Fire-and-forget send of one capture frame.

        Contract:
        - Never blocks and never awaits the handshake.
        - Frames offered before open or after disconnect are dropped,
          not queued.
        - Frames that are sent go out in the order offered.
        """
        raise NotImplementedError

    @abstractmethod
    def disconnect(self) -> None:
        """
        Release the connection.

        Contract:
        - Synchronous, idempotent, never raises.
        - Emits TransportClosed if it has not been emitted yet.
        """
        raise NotImplementedError

    @abstractmethod
    def snapshot(self) -> dict[str, int]:
        """Counters for observability."""
        raise NotImplementedError
