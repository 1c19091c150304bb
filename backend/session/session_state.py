"""
Session lifecycle states.

Owned exclusively by the session controller; every other component only
reports events upward.
"""

from __future__ import annotations

from enum import Enum


class SessionState(str, Enum):
    """
    Lifecycle of one user-initiated live voice session.

    CONNECTING -> CONNECTED -> (CLOSED | ERRORED)
    CONNECTING -> (CLOSED | ERRORED)

    CLOSED and ERRORED are terminal: no transitions out.
    """

    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    CLOSED = "CLOSED"
    ERRORED = "ERRORED"

    @property
    def is_terminal(self) -> bool:
        """True for CLOSED and ERRORED."""
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({SessionState.CLOSED, SessionState.ERRORED})
