"""Wire formats of both legs: Twilio Media Streams and ElevenLabs Conversational AI.

Parsing turns JSON text into small frozen event types; building returns the
plain dicts each leg serialises. No audio is interpreted here.
"""

from __future__ import annotations

import base64
import binascii
import json
import re
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Final

from relay.errors import ProtocolError, ValidationError


class CloseCode(IntEnum):
    NORMAL = 1000
    GOING_AWAY = 1001
    NO_STATUS = 1005
    ABNORMAL = 1006
    INVALID_MESSAGE = 1007
    SERVER_ERROR = 1011


# Close reasons
STOP_RECEIVED: Final[str] = "stop-received"
INVALID_MESSAGE: Final[str] = "invalid-message"
PROVIDER_CONNECT_TIMEOUT: Final[str] = "provider-connect-timeout"
PROVIDER_CONNECT_FAILED: Final[str] = "provider-connect-failed"
TELEPHONY_CLOSED: Final[str] = "telephony-closed"
PROVIDER_CLOSED: Final[str] = "provider-closed"
TRANSPORT_ERROR: Final[str] = "transport-error"

_BASE64_CHARS = re.compile(r"[A-Za-z0-9+/=]+")


# Telephony -> session


@dataclass(frozen=True, slots=True)
class StartEvent:
    stream_sid: str


@dataclass(frozen=True, slots=True)
class MediaEvent:
    payload: str | None


@dataclass(frozen=True, slots=True)
class StopEvent:
    pass


@dataclass(frozen=True, slots=True)
class UnknownEvent:
    event: str
    raw: dict[str, Any]


ControlEvent = StartEvent | MediaEvent | StopEvent | UnknownEvent


# Provider -> session


@dataclass(frozen=True, slots=True)
class InitiationMetadataEvent:
    raw: dict[str, Any]


@dataclass(frozen=True, slots=True)
class AudioEvent:
    payload: str | None


@dataclass(frozen=True, slots=True)
class InterruptionEvent:
    pass


@dataclass(frozen=True, slots=True)
class PingEvent:
    event_id: str | int | None


@dataclass(frozen=True, slots=True)
class UnrecognizedEvent:
    type: str
    raw: dict[str, Any]


ProviderEvent = InitiationMetadataEvent | AudioEvent | InterruptionEvent | PingEvent | UnrecognizedEvent


def _load_object(text: str | bytes) -> dict[str, Any]:
    try:
        message = json.loads(text)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ProtocolError(f"Frame is not valid JSON: {exc}") from exc
    if not isinstance(message, dict):
        raise ProtocolError("Frame is not a JSON object")
    return message


def _section(message: dict[str, Any], key: str) -> dict[str, Any]:
    value = message.get(key)
    return value if isinstance(value, dict) else {}


def parse_control_event(text: str | bytes) -> ControlEvent:
    """Decode one Twilio Media Streams frame.

    Raises ProtocolError when the frame is not a JSON object, has no
    ``event`` or is a ``start`` without ``start.streamSid``.
    """

    message = _load_object(text)
    event = message.get("event")
    if not isinstance(event, str) or not event:
        raise ProtocolError("Frame has no event field")

    if event == "start":
        stream_sid = _section(message, "start").get("streamSid")
        if not isinstance(stream_sid, str) or not stream_sid:
            raise ProtocolError("Missing streamSid in start event", event="start")
        return StartEvent(stream_sid=stream_sid)
    if event == "media":
        payload = _section(message, "media").get("payload")
        return MediaEvent(payload=payload if isinstance(payload, str) else None)
    if event == "stop":
        return StopEvent()
    return UnknownEvent(event=event, raw=message)


def parse_provider_event(text: str | bytes) -> ProviderEvent:
    message = _load_object(text)
    kind = message.get("type")

    if kind == "conversation_initiation_metadata":
        return InitiationMetadataEvent(raw=message)
    if kind == "audio":
        payload = _section(message, "audio_event").get("audio_base_64")
        return AudioEvent(payload=payload if isinstance(payload, str) and payload else None)
    if kind == "interruption":
        return InterruptionEvent()
    if kind == "ping":
        event_id = _section(message, "ping_event").get("event_id")
        # ElevenLabs sends integer ids; echo whatever type arrives.
        if isinstance(event_id, bool) or not isinstance(event_id, (str, int)) or event_id == "":
            event_id = None
        return PingEvent(event_id=event_id)
    return UnrecognizedEvent(type=str(kind), raw=message)


def is_base64(payload: str) -> bool:
    """Character-class check used on provider audio before it reaches the caller."""

    return bool(_BASE64_CHARS.fullmatch(payload))


def reencode_base64(payload: str) -> str:
    """Strictly decode and re-encode a payload; canonical input comes back unchanged."""

    try:
        raw = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError(f"Invalid base64 payload: {exc}") from exc
    return base64.b64encode(raw).decode("ascii")


def sendable_close_code(code: int | None) -> int:
    """Map a received close code onto one that may be sent in a close frame."""

    if code is None or code == CloseCode.ABNORMAL:
        return CloseCode.SERVER_ERROR
    if code == CloseCode.NO_STATUS:
        return CloseCode.NORMAL
    if code < 1000 or code >= 5000 or code in (1004, 1015):
        return CloseCode.SERVER_ERROR
    return int(code)


# Outbound frames


def user_audio_chunk(payload: str) -> dict[str, Any]:
    return {"user_audio_chunk": payload}


def pong(event_id: str | int) -> dict[str, Any]:
    return {"type": "pong", "event_id": event_id}


def media_frame(stream_sid: str, payload: str) -> dict[str, Any]:
    return {"event": "media", "streamSid": stream_sid, "media": {"payload": payload}}


def clear_frame(stream_sid: str | None) -> dict[str, Any]:
    return {"event": "clear", "streamSid": stream_sid}
