"""
Manual hardware check: one live voice session from the terminal.

Speak into the default microphone; the reply plays on the default output
device. Ctrl+C closes the session.

    python tools/live_session_smoke.py [seconds]
"""

import asyncio
import sys

from dotenv import load_dotenv

from config import AppConfig
from observability import logger
from session.controller import SessionController
from session.session_state import SessionState


DEFAULT_SECONDS = 60.0


def _on_status(state: SessionState) -> None:
    print("STATUS:", state.value)


def _on_closed() -> None:
    print("SESSION CLOSED")


async def main(seconds: float) -> None:
    config = AppConfig.load_from_env()
    logger.configure(json_lines=config.enable_json_logs)

    if not config.api_key:
        print("ERROR: API_KEY not set")
        sys.exit(1)

    print("Model:", config.live_model)
    print("Voice:", config.live_voice)
    print("Input device:", config.input_device or "default")
    print("Output device:", config.output_device or "default")

    controller = SessionController(
        config=config,
        on_status_change=_on_status,
        on_closed=_on_closed,
    )
    print("Session:", controller.session_id)

    await controller.start()
    if controller.state is not SessionState.CONNECTED:
        print("ERROR: session did not connect:", controller.last_error)
        return

    print(f"Connected, talking for up to {seconds:.0f}s")
    try:
        await asyncio.wait_for(controller.wait_closed(), timeout=seconds)
    except asyncio.TimeoutError:
        pass
    finally:
        controller.close()

    print("Final state:", controller.state.value)
    print("Counters:", controller.snapshot())


if __name__ == "__main__":
    load_dotenv()
    duration = float(sys.argv[1]) if len(sys.argv) > 1 else DEFAULT_SECONDS
    try:
        asyncio.run(main(duration))
    except KeyboardInterrupt:
        print("Interrupted")
