# backend/protocol/live_messages.py
"""
JSON framing helpers for the Gemini Live bidirectional stream.

Client -> Server:
    setup (once):
        {"setup": {"model": ..., "generationConfig": {...}, "systemInstruction": {...}}}
    audio (continuous):
        {"realtimeInput": {"audio": {"mimeType": "audio/pcm;rate=16000", "data": <base64>}}}

Server -> Client (any combination of fields):
    {"setupComplete": {}}
    {"serverContent": {"modelTurn": {"parts": [{"inlineData": {"data": <base64>}}]},
                       "interrupted": true, "turnComplete": true}}
    {"goAway": {"timeLeft": "10s"}}

Usage example:

    msg = parse_server_message(raw)
    for sig in msg.signals():
        if isinstance(sig, InterruptSignal):
            scheduler.interrupt()
        else:
            scheduler.enqueue(decode(sig.encoded))
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Iterator, Union

from spec import INPUT_MIME_TYPE


# -------------------------
# Exceptions
# -------------------------

class LiveProtocolError(Exception):
    """
    Raised when a server frame cannot be parsed.

    Indicates a violation of the framing contract; the connection is
    no longer trustworthy.
    """


# -------------------------
# Inbound message model
# -------------------------

@dataclass(frozen=True)
class InterruptSignal:
    """Remote VAD detected the user speaking over the model."""


@dataclass(frozen=True)
class FragmentSignal:
    """One inline audio part, still transport-encoded."""
    encoded: str
    mime_type: str | None = None


Signal = Union[InterruptSignal, FragmentSignal]


@dataclass(frozen=True)
class ServerMessage:
    """
    Tagged view of one server frame.

    Only the fields the session acts on are modeled; everything else is
    ignored.
    """
    setup_complete: bool = False
    interrupted: bool = False
    fragments: tuple[FragmentSignal, ...] = ()
    turn_complete: bool = False
    go_away_s: float | None = None

    def signals(self) -> Iterator[Signal]:
        """
        Yield playback signals in processing order.

        An interruption is always yielded before any audio carried by the
        same message.
        """
        if self.interrupted:
            yield InterruptSignal()
        yield from self.fragments


# -------------------------
# Outbound builders
# -------------------------

def build_setup_message(*, model: str, system_instruction: str, voice_id: str) -> dict[str, Any]:
    return {
        "setup": {
            "model": model,
            "generationConfig": {
                "responseModalities": ["AUDIO"],
                "speechConfig": {
                    "voiceConfig": {
                        "prebuiltVoiceConfig": {"voiceName": voice_id},
                    },
                },
            },
            "systemInstruction": {
                "parts": [{"text": system_instruction}],
            },
        }
    }


def build_realtime_input(encoded_block: str, *, mime_type: str = INPUT_MIME_TYPE) -> dict[str, Any]:
    return {
        "realtimeInput": {
            "audio": {
                "mimeType": mime_type,
                "data": encoded_block,
            }
        }
    }


# -------------------------
# Inbound parser
# -------------------------

def _parse_duration_s(raw: Any) -> float | None:
    """Protobuf JSON durations arrive as strings like '10s' or '1.5s'."""
    if raw is None:
        return None
    if isinstance(raw, (int, float)):
        return float(raw)
    if isinstance(raw, str):
        text = raw.strip().rstrip("sS").strip()
        try:
            return float(text) if text else 0.0
        except ValueError:
            return None
    return None


def _object_field(container: dict[str, Any], key: str) -> dict[str, Any]:
    """container[key] as a dict; absent or null is empty, any other type is a framing error."""
    value = container.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise LiveProtocolError(f"{key} is not an object: {type(value).__name__}")
    return value


def parse_server_message(raw: str | bytes) -> ServerMessage:
    """
    Parse one server frame.

    Raises:
        LiveProtocolError if the frame is not a JSON object, or a known
        field has the wrong shape.
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise LiveProtocolError(f"server frame is not UTF-8: {e}") from e

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise LiveProtocolError(f"server frame is not JSON: {e}") from e

    if not isinstance(data, dict):
        raise LiveProtocolError(f"server frame is not an object: {type(data).__name__}")

    content = _object_field(data, "serverContent")
    model_turn = _object_field(content, "modelTurn")

    parts = model_turn.get("parts") or []
    if not isinstance(parts, list):
        raise LiveProtocolError(f"modelTurn.parts is not an array: {type(parts).__name__}")

    fragments: list[FragmentSignal] = []
    for part in parts:
        if not isinstance(part, dict):
            raise LiveProtocolError(f"modelTurn part is not an object: {type(part).__name__}")
        inline = _object_field(part, "inlineData")
        if not inline:
            continue
        encoded = inline.get("data")
        if isinstance(encoded, str) and encoded:
            fragments.append(FragmentSignal(encoded=encoded, mime_type=inline.get("mimeType")))

    go_away = _object_field(data, "goAway")

    return ServerMessage(
        setup_complete="setupComplete" in data,
        interrupted=bool(content.get("interrupted")),
        fragments=tuple(fragments),
        turn_complete=bool(content.get("turnComplete")),
        go_away_s=_parse_duration_s(go_away.get("timeLeft")) if "goAway" in data else None,
    )
