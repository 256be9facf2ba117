"""Chat relay domain records.

Records are immutable; repositories store new instances produced with
dataclasses.replace(). Only identifiers and statuses are safe to log -
contact addresses and content are PII.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

MessageType = Literal["text", "image", "video", "audio", "file"]
MessageStatus = Literal["pending", "sent", "delivered", "read", "failed"]
AttachmentType = Literal["image", "video", "audio", "file"]
WebhookEventStatus = Literal["received", "processed", "rejected", "duplicate", "failed"]
OutboxStatus = Literal["pending", "processing", "sent", "failed"]

MESSAGE_TYPES: frozenset[str] = frozenset({"text", "image", "video", "audio", "file"})
MEDIA_TYPES: frozenset[str] = frozenset({"image", "video", "audio", "file"})

PROVIDER_EVOLUTION = "evolution"
CHANNEL_WHATSAPP = "whatsapp"

# Key under Message.metadata holding the provider-assigned id
PROVIDER_MESSAGE_ID = "providerMessageId"


@dataclass(frozen=True)
class Attachment:
    id: str
    message_id: str
    type: AttachmentType
    url: str
    thumbnail_url: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Message:
    """A single chat message, inbound or outbound."""

    id: str
    workspace_id: str
    conversation_id: str
    sender_id: str
    type: MessageType
    content: str
    status: MessageStatus
    created_at: datetime
    reply_to_message_id: str | None = None
    attachments: tuple[Attachment, ...] = ()
    metadata: dict[str, Any] = field(default_factory=dict)
    updated_at: datetime | None = None

    @property
    def external_id(self) -> str | None:
        """Provider-assigned id, if the message has been seen by the provider."""
        value = self.metadata.get(PROVIDER_MESSAGE_ID)
        return str(value) if value else None


@dataclass(frozen=True)
class Participant:
    id: str
    name: str
    avatar: str | None = None


@dataclass(frozen=True)
class LastMessage:
    id: str
    content: str
    sender_id: str
    created_at: datetime

    @classmethod
    def from_message(cls, message: Message) -> "LastMessage":
        # Media-only messages summarize as "[image]", "[audio]", ...
        content = message.content or (f"[{message.type}]" if message.attachments else "")
        return cls(
            id=message.id,
            content=content,
            sender_id=message.sender_id,
            created_at=message.created_at,
        )


@dataclass(frozen=True)
class Conversation:
    """One-to-one conversation keyed by the normalized contact number."""

    id: str
    workspace_id: str
    contact_id: str
    channel: str
    participants: tuple[Participant, ...]
    updated_at: datetime
    whatsapp_number_id: str | None = None
    last_message: LastMessage | None = None


@dataclass(frozen=True)
class WebhookEvent:
    """Audit record of one inbound delivery attempt."""

    id: str
    provider: str
    workspace_id: str
    event_type: str | None
    payload: dict[str, Any]
    payload_hash: str
    idempotency_key: str
    received_at: datetime
    status: WebhookEventStatus = "received"
    error: str | None = None


@dataclass(frozen=True)
class PendingStatus:
    workspace_id: str
    provider: str
    external_message_id: str
    status: MessageStatus
    received_at: datetime


@dataclass(frozen=True)
class OutboxEntry:
    id: str
    workspace_id: str
    message_id: str
    provider: str
    payload: dict[str, Any]
    status: OutboxStatus
    attempts: int
    next_retry_at: datetime
    created_at: datetime
    updated_at: datetime
    last_error: str | None = None


@dataclass(frozen=True)
class WhatsAppNumber:
    """A provider line (Evolution instance) owned by a workspace."""

    id: str
    workspace_id: str
    instance_name: str
    api_key: str | None = None
