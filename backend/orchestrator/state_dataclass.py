"""
Authoritative session controller state.

Rules:
- This dataclass is a pure data model.
- It contains ALL state the reducer may ever need.
- No behavior, no helpers, no derived logic.
"""
from __future__ import annotations

from dataclasses import dataclass

from session.session_state import SessionState


@dataclass(frozen=True)
class ControllerState:
    """Immutable snapshot of all controller-owned state."""

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    state: SessionState = SessionState.CONNECTING

    # True once the transport has reported open. Never reset.
    opened: bool = False

    # ------------------------------------------------------------------
    # User control
    # ------------------------------------------------------------------
    # Read by capture on every frame; only MuteToggled changes it.
    muted: bool = False

    # ------------------------------------------------------------------
    # Error handling
    # ------------------------------------------------------------------
    last_error: str | None = None
    error_category: str | None = None
