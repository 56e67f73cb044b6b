# messages.py
"""
Wire envelope parsing and the typed payload for each signaling message type.

Inbound frames look like ``{"type": str, "payload": {...}}``. ``parse_envelope``
only checks that both fields are present (failures are transport-fatal); ``parse_payload`` turns the
payload into the dataclass for its type (failures are operation-local).
"""
import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

from signal_relay.constants import ANSWER, CANDIDATE, JOIN_POOL, KEEP_ALIVE, KILL, OFFER
from signal_relay.errors import MalformedMessage, ValidationError


@dataclass(frozen=True)
class Envelope:
    type: Any
    payload: Any


@dataclass(frozen=True)
class JoinPool:
    channel: str


@dataclass(frozen=True)
class Offer:
    target: str
    offer: Any
    channel: str


@dataclass(frozen=True)
class Answer:
    target: str
    answer: Any
    channel: str


@dataclass(frozen=True)
class Candidate:
    target: str
    candidate: Any


@dataclass(frozen=True)
class KeepAlive:
    pass


@dataclass(frozen=True)
class Kill:
    channel: Optional[str] = None


def _absent(value) -> bool:
    # empty objects and arrays count as present
    if value is None or value is False or value == "":
        return True
    return isinstance(value, (int, float)) and value == 0


def parse_envelope(raw) -> Envelope:
    """
    Decode a raw frame into an Envelope.

    Args:
        raw (str | bytes): Frame as delivered by the transport.

    Returns:
        Envelope: The message type and its (still untyped) payload.

    Raises:
        MalformedMessage: If the frame is not a JSON object, or its ``type``
            or ``payload`` is absent (missing, null, false, 0 or empty string).
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedMessage("Frame is not valid UTF-8") from e

    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedMessage("Frame is NOT JSON") from e

    if not isinstance(data, dict):
        raise MalformedMessage("Frame is not a JSON object")

    msg_type = data.get("type")
    if _absent(msg_type):
        raise MalformedMessage("Message has no type")

    payload = data.get("payload")
    if _absent(payload):
        raise MalformedMessage("Message has no payload")

    return Envelope(type=msg_type, payload=payload)


def _identifier(payload, field):
    value = payload.get(field)
    if value is None:
        raise ValidationError(field)
    if not isinstance(value, str) or not value:
        raise ValidationError(field, f"{field} must be a non-empty string")
    return value


def _opaque(payload, field):
    value = payload.get(field)
    if value is None:
        raise ValidationError(field)
    return value


def _join_pool(payload):
    return JoinPool(channel=_identifier(payload, "channel"))


def _offer(payload):
    return Offer(
        target=_identifier(payload, "target"),
        offer=_opaque(payload, "offer"),
        channel=_identifier(payload, "channel"),
    )


def _answer(payload):
    return Answer(
        target=_identifier(payload, "target"),
        answer=_opaque(payload, "answer"),
        channel=_identifier(payload, "channel"),
    )


def _candidate(payload):
    return Candidate(
        target=_identifier(payload, "target"),
        candidate=_opaque(payload, "candidate"),
    )


def _kill(payload):
    if payload.get("channel") is None:
        return Kill()
    return Kill(channel=_identifier(payload, "channel"))


PAYLOAD_PARSERS = {
    JOIN_POOL:  _join_pool,
    OFFER:      _offer,
    ANSWER:     _answer,
    CANDIDATE:  _candidate,
    KEEP_ALIVE: lambda payload: KeepAlive(),
    KILL:       _kill,
}


def parse_payload(msg_type: str, payload):
    """
    Build the typed payload for a known message type.

    Raises:
        KeyError: If ``msg_type`` is not a known inbound type.
        ValidationError: If the payload is not an object, or a required field
            is missing or malformed.
    """
    if not isinstance(payload, dict):
        raise ValidationError("payload", "payload must be an object")
    return PAYLOAD_PARSERS[msg_type](payload)


def encode(msg_type: str, payload: Dict[str, Any]) -> str:
    """Serialize an outbound envelope."""
    return json.dumps({"type": msg_type, "payload": payload})
