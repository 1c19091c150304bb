"""
Application configuration.

Responsibilities:
- Load deployment-specific configuration
- Read environment variables
- Provide a typed, immutable config object

Non-responsibilities:
- No session logic
- No protocol constants (see spec.py)
- No runtime mutation
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from spec import (
    LIVE_MODEL_DEFAULT,
    LIVE_SYSTEM_PROMPT_DEFAULT,
    LIVE_VOICE_DEFAULT,
    LIVE_WS_URL_DEFAULT,
)


def _optional_device(raw: str | None) -> int | str | None:
    """Device selectors may be a PortAudio index or a name substring."""
    if raw is None or not raw.strip():
        return None
    raw = raw.strip()
    if raw.isdigit():
        return int(raw)
    return raw


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable application configuration.

    Constructed once at startup.
    Passed downward to the session controller and transport.
    """

    # ------------------------------------------------------------------
    # Live endpoint
    # ------------------------------------------------------------------

    api_key: str | None
    live_ws_url: str
    live_model: str
    live_voice: str
    live_system_prompt: str

    # ------------------------------------------------------------------
    # Audio devices
    # ------------------------------------------------------------------

    input_device: int | str | None
    output_device: int | str | None

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    enable_json_logs: bool

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def require_api_key(self) -> str:
        """
        Return the API key or fail loudly.

        Raises:
            RuntimeError if neither API_KEY nor GEMINI_API_KEY is set.
        """
        if not self.api_key:
            raise RuntimeError(
                "API_KEY is missing. Set API_KEY (or GEMINI_API_KEY) in the environment."
            )
        return self.api_key

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env() -> AppConfig:
        """Load configuration from environment variables."""
        return AppConfig(
            api_key=os.environ.get("API_KEY") or os.environ.get("GEMINI_API_KEY"),
            live_ws_url=os.environ.get("LIVE_WS_URL", LIVE_WS_URL_DEFAULT),
            live_model=os.environ.get("LIVE_MODEL", LIVE_MODEL_DEFAULT),
            live_voice=os.environ.get("LIVE_VOICE", LIVE_VOICE_DEFAULT),
            live_system_prompt=os.environ.get(
                "LIVE_SYSTEM_PROMPT", LIVE_SYSTEM_PROMPT_DEFAULT
            ),

            input_device=_optional_device(os.environ.get("INPUT_DEVICE")),
            output_device=_optional_device(os.environ.get("OUTPUT_DEVICE")),

            enable_json_logs=os.environ.get("ENABLE_JSON_LOGS", "1") == "1",
        )
