"""
Wire codec for console envelopes.

Frames are UTF-8 JSON text. Every envelope carries ``type``, ``messageId`` and
``timestamp``; payload-bearing types wrap their data under ``payload``.
Unknown types decode to :class:`UnknownEnvelope` so newer peers can add
event kinds without breaking older ones.
"""

import json
from typing import Any

from pydantic import TypeAdapter, ValidationError

from call_console.errors import MalformedMessage
from call_console.schemas.envelope import (
    MESSAGE_TYPES,
    PAYLOAD_FREE_TYPES,
    Envelope,
    EnvelopeBase,
    KnownMessage,
    UnknownEnvelope,
)

REQUIRED_KEYS = ("type", "messageId", "timestamp")

_known_adapter: TypeAdapter = TypeAdapter(KnownMessage)


def encode(envelope: EnvelopeBase) -> str:
    return envelope.model_dump_json(by_alias=True, exclude_none=True)


def decode(raw: str | bytes | bytearray) -> Envelope:
    """Parse one frame into a typed envelope or raise :class:`MalformedMessage`."""
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = bytes(raw).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedMessage("frame is not valid UTF-8") from exc
    if not isinstance(raw, str):
        raise MalformedMessage(f"unsupported frame type {type(raw).__name__}")

    try:
        data = json.loads(raw)
    except (ValueError, RecursionError) as exc:
        raise MalformedMessage(f"frame is not valid JSON: {exc}") from exc

    return decode_object(data)


def decode_object(data: Any) -> Envelope:
    if not isinstance(data, dict):
        raise MalformedMessage("envelope must be a JSON object")

    missing = [key for key in REQUIRED_KEYS if key not in data or data[key] is None]
    if missing:
        raise MalformedMessage(
            f"envelope is missing {', '.join(missing)}",
            message_type=data.get("type") if isinstance(data.get("type"), str) else None,
        )

    message_type = data["type"]
    if not isinstance(message_type, str) or not message_type:
        raise MalformedMessage("envelope type must be a non-empty string")

    if message_type not in MESSAGE_TYPES:
        try:
            return UnknownEnvelope.model_validate(data)
        except ValidationError as exc:
            raise MalformedMessage(str(exc), message_type=message_type) from exc

    if message_type not in PAYLOAD_FREE_TYPES and data.get("payload") is None:
        raise MalformedMessage(
            f"{message_type} requires a payload object", message_type=message_type
        )

    try:
        return _known_adapter.validate_python(data)
    except ValidationError as exc:
        raise MalformedMessage(str(exc), message_type=message_type) from exc


def new_envelope(message_type: str, payload: Any = None) -> EnvelopeBase:
    """Build an outbound envelope with a fresh messageId and the current timestamp."""
    model = MESSAGE_TYPES.get(message_type)
    if model is None:
        return UnknownEnvelope(type=message_type, payload=payload)
    if payload is None:
        return model()
    return model(payload=payload)
