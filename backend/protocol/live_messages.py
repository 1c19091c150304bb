"""
JSON message helpers for the Live bidirectional websocket.

Client -> Server:
    {"setup": {...}}                                   once, first message
    {"realtimeInput": {"mediaChunks": [{mimeType, data}]}}   per capture frame

Server -> Client:
    {"setupComplete": {}}                              handshake acknowledgement
    {"serverContent": {"modelTurn": {"parts": [{"inlineData": {mimeType, data}}]}}}
    {"goAway": {...}}                                  server is about to close

Usage example:

    await ws.send(json.dumps(build_setup_message(model=..., voice=..., system_prompt=...)))
    msg = parse_server_message(await ws.recv())
    if is_setup_complete(msg):
        ...
    for b64 in extract_inline_audio(msg):
        pcm = transport_text_to_bytes(b64)
"""

from __future__ import annotations

import json
from typing import Any

from audio.frames import EncodedFrame
from spec import RESPONSE_MODALITY_AUDIO


# -------------------------
# Exceptions
# -------------------------

class LiveProtocolError(Exception):
    """A server message is not a JSON object."""


# -------------------------
# Client -> Server
# -------------------------

def _model_resource(model: str) -> str:
    return model if model.startswith("models/") else f"models/{model}"


def build_setup_message(*, model: str, voice: str, system_prompt: str) -> dict[str, Any]:
    """
    Handshake payload: model, voice, system prompt, audio-only responses.
    """
    return {
        "setup": {
            "model": _model_resource(model),
            "generationConfig": {
                "responseModalities": [RESPONSE_MODALITY_AUDIO],
                "speechConfig": {
                    "voiceConfig": {
                        "prebuiltVoiceConfig": {"voiceName": voice},
                    },
                },
            },
            "systemInstruction": {
                "parts": [{"text": system_prompt}],
            },
        }
    }


def build_realtime_input(frame: EncodedFrame) -> dict[str, Any]:
    """One capture frame as a realtimeInput message."""
    return {
        "realtimeInput": {
            "mediaChunks": [
                {"mimeType": frame.mime_type, "data": frame.data},
            ],
        }
    }


# -------------------------
# Server -> Client
# -------------------------

def parse_server_message(raw: str | bytes) -> dict[str, Any]:
    """
    Decode one websocket message.

    The server sends JSON in text or binary frames.

    Raises:
        LiveProtocolError if the payload is not a JSON object.
    """
    try:
        if isinstance(raw, (bytes, bytearray)):
            raw = raw.decode("utf-8")
        data = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise LiveProtocolError(f"undecodable server message: {e}") from e

    if not isinstance(data, dict):
        raise LiveProtocolError(f"server message is {type(data).__name__}, not an object")
    return data


def is_setup_complete(msg: dict[str, Any]) -> bool:
    return "setupComplete" in msg


def is_go_away(msg: dict[str, Any]) -> bool:
    return "goAway" in msg


def extract_inline_audio(msg: dict[str, Any]) -> list[str]:
    """
    Return the base64 audio payloads of a server message, in part order.

    Anything missing or of the wrong shape yields no payload for that part;
    a message without audio yields [].
    """
    content = msg.get("serverContent")
    if not isinstance(content, dict):
        return []
    turn = content.get("modelTurn")
    if not isinstance(turn, dict):
        return []
    parts = turn.get("parts")
    if not isinstance(parts, list):
        return []

    out: list[str] = []
    for part in parts:
        if not isinstance(part, dict):
            continue
        inline = part.get("inlineData")
        if not isinstance(inline, dict):
            continue
        mime = inline.get("mimeType", "audio/pcm")
        data = inline.get("data")
        if isinstance(data, str) and data and str(mime).startswith("audio/"):
            out.append(data)
    return out
