"""Evolution webhook payload decoding.

Payloads are loosely shaped: fields may live under `data` or be flattened to
the root, and key names vary between Evolution versions. Everything is
decoded here, once, into one of three typed events; the processor never
touches the raw dict again.

MessageUpsert carries PII (remote_jid, text). Never log it; log the
external id prefix instead.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union

from chatrelay.domain.errors import InvalidPayloadError
from chatrelay.domain.models import MessageType

UPSERT_EVENTS = frozenset({"messages.upsert", "message.upsert"})
UPDATE_EVENTS = frozenset({"messages.update", "message.update"})

# Inline media content, first match wins
_BASE64_KEYS = (
    "base64",
    "base64Data",
    "mediaBase64",
    "fileBase64",
    "dataBase64",
    "media",
    "file",
    "body",
)

# message field -> (message type, attachment id suffix)
_MEDIA_FIELDS: tuple[tuple[str, MessageType, str], ...] = (
    ("imageMessage", "image", "img"),
    ("videoMessage", "video", "vid"),
    ("audioMessage", "audio", "aud"),
    ("documentMessage", "file", "doc"),
)


@dataclass(frozen=True)
class InboundMedia:
    """Media part of an inbound message, as reported by the provider."""

    kind: MessageType
    id_suffix: str
    mimetype: str | None = None
    base64: str | None = None
    source_url: str | None = None
    direct_path: str | None = None
    thumbnail_base64: str | None = None
    filename: str | None = None
    size: Any = None
    duration: Any = None


@dataclass(frozen=True)
class MessageUpsert:
    external_id: str
    remote_jid: str
    from_me: bool
    timestamp: int | None
    type: MessageType
    content: str
    media: InboundMedia | None = None


@dataclass(frozen=True)
class StatusUpdate:
    external_id: str
    raw_status: Any


@dataclass(frozen=True)
class OtherEvent:
    """Any event type we accept but do not act on (connection.update, ...)."""

    event_type: str


ProviderEvent = Union[MessageUpsert, StatusUpdate, OtherEvent]


def event_data(payload: dict[str, Any]) -> dict[str, Any]:
    data = payload.get("data")
    return data if isinstance(data, dict) else payload


def event_type(payload: dict[str, Any]) -> str | None:
    value = payload.get("event")
    if not isinstance(value, str) or not value.strip():
        return None
    return value.strip()


def instance_name(payload: dict[str, Any]) -> str | None:
    """Provider instance (line) that emitted the event."""
    value = payload.get("instance") or payload.get("instanceName")
    if isinstance(value, dict):
        value = value.get("instanceName")
    if not isinstance(value, str) or not value.strip():
        return None
    return value.strip()


def external_message_id(payload: dict[str, Any]) -> str | None:
    data = event_data(payload)
    key = data.get("key")
    value = key.get("id") if isinstance(key, dict) else None
    value = value or data.get("keyId")
    return str(value) if value else None


def _to_epoch_seconds(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    # protobuf Long serialized as {"low": ..., "high": ...}
    if isinstance(value, dict) and "low" in value:
        value = value["low"]
    try:
        seconds = int(float(value))
    except (TypeError, ValueError):
        return None
    if seconds > 10**12:
        seconds //= 1000
    return seconds


def event_timestamp(payload: dict[str, Any]) -> int | None:
    """Epoch seconds of the event, or None when the payload carries none."""
    data = event_data(payload)
    candidates = (
        data.get("messageTimestamp"),
        data.get("timestamp"),
        payload.get("timestamp"),
        payload.get("messageTimestamp"),
    )
    for raw in candidates:
        seconds = _to_epoch_seconds(raw)
        if seconds is not None:
            return seconds
    return None


def extract_base64(media: dict[str, Any]) -> str | None:
    for key in _BASE64_KEYS:
        value = media.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def to_data_url(mimetype: str | None, base64_data: str) -> str:
    if base64_data.startswith("data:"):
        return base64_data
    mt = mimetype.strip() if mimetype and mimetype.strip() else "application/octet-stream"
    return f"data:{mt};base64,{base64_data}"


def _decode_media(field_value: dict[str, Any], kind: MessageType, suffix: str) -> InboundMedia:
    return InboundMedia(
        kind=kind,
        id_suffix=suffix,
        mimetype=field_value.get("mimetype"),
        base64=extract_base64(field_value),
        source_url=field_value.get("url"),
        direct_path=field_value.get("directPath"),
        thumbnail_base64=field_value.get("jpegThumbnail") or None,
        filename=field_value.get("fileName"),
        size=field_value.get("fileLength"),
        duration=field_value.get("seconds"),
    )


def _decode_content(message: dict[str, Any]) -> tuple[MessageType, str, InboundMedia | None]:
    conversation = message.get("conversation")
    if conversation:
        return "text", str(conversation), None

    extended = message.get("extendedTextMessage")
    if isinstance(extended, dict):
        return "text", str(extended.get("text") or ""), None

    for field_name, kind, suffix in _MEDIA_FIELDS:
        value = message.get(field_name)
        if isinstance(value, dict):
            caption = "" if kind == "audio" else str(value.get("caption") or "")
            return kind, caption, _decode_media(value, kind, suffix)

    return "text", "", None


def _decode_upsert(payload: dict[str, Any]) -> MessageUpsert:
    data = event_data(payload)
    key = data.get("key")
    if not isinstance(key, dict):
        raise InvalidPayloadError("message without key")

    external_id = key.get("id")
    remote_jid = key.get("remoteJid")
    if not external_id or not remote_jid:
        raise InvalidPayloadError("message without id or remoteJid")

    message = data.get("message")
    kind, content, media = _decode_content(message if isinstance(message, dict) else {})

    from_me = key.get("fromMe")
    return MessageUpsert(
        external_id=str(external_id),
        remote_jid=str(remote_jid),
        from_me=from_me is True or from_me == "true",
        timestamp=_to_epoch_seconds(data.get("messageTimestamp")),
        type=kind,
        content=content,
        media=media,
    )


def _decode_status(payload: dict[str, Any]) -> StatusUpdate:
    data = event_data(payload)
    external_id = external_message_id(payload)

    raw_status = data.get("status")
    if raw_status is None:
        update = data.get("update")
        if isinstance(update, dict):
            raw_status = update.get("status")

    if not external_id or raw_status is None:
        raise InvalidPayloadError("status update without keyId or status")

    return StatusUpdate(external_id=external_id, raw_status=raw_status)


def decode_event(payload: dict[str, Any]) -> ProviderEvent:
    """Decode a webhook payload into a typed event.

    Raises:
        InvalidPayloadError: If the event type is missing, or a message or
            status event lacks the fields needed to act on it.
    """
    etype = event_type(payload)
    if etype is None:
        raise InvalidPayloadError("missing event type")

    if etype in UPSERT_EVENTS:
        return _decode_upsert(payload)
    if etype in UPDATE_EVENTS:
        return _decode_status(payload)
    return OtherEvent(event_type=etype)
