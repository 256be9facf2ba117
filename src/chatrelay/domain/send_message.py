"""Send message use case - persist an outbound message and queue its delivery."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from chatrelay.domain.errors import InvalidRequestError
from chatrelay.domain.identity import resolve_conversation
from chatrelay.domain.models import (
    CHANNEL_WHATSAPP,
    MESSAGE_TYPES,
    Attachment,
    Conversation,
    LastMessage,
    Message,
    MessageType,
    OutboxEntry,
    Participant,
)
from chatrelay.domain.outbox import OutboundPayload, enqueue
from chatrelay.infra.repositories.ports import UnitOfWork
from chatrelay.infra.time import utc_now
from chatrelay.observability.logging import get_logger
from chatrelay.observability.redaction import safe_log_context

logger = get_logger(__name__)

DEFAULT_SENDER_ID = "me"
SENDER_PARTICIPANT_NAME = "Me"


@dataclass(frozen=True)
class AttachmentInput:
    """Already-uploaded media referenced by URL or storage path."""

    type: str
    url: str | None = None
    storage_path: str | None = None
    thumbnail_url: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SendMessageInput:
    workspace_id: str
    conversation_id: str
    type: str
    content: str | None
    user_id: str | None = None
    whatsapp_number_id: str | None = None
    reply_to_message_id: str | None = None
    attachments: tuple[AttachmentInput, ...] = ()


class SendMessage:
    """Outbound send: message, outbox entry and conversation in one unit of work.

    The optional `on_enqueued` hook runs after commit (worker kick). Its
    failures are logged, never raised: the entry is already durable and the
    poller will pick it up.
    """

    def __init__(
        self,
        uow: UnitOfWork,
        on_enqueued: Callable[[OutboxEntry], None] | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._uow = uow
        self._on_enqueued = on_enqueued
        self._clock = clock

    def __call__(self, data: SendMessageInput) -> Message:
        if not data.conversation_id or not data.type or data.content is None:
            raise InvalidRequestError("conversation_id, type and content are required")
        if data.type not in MESSAGE_TYPES:
            raise InvalidRequestError("unsupported message type")
        if data.type != "text" and not data.attachments:
            raise InvalidRequestError("attachments are required for media messages")

        contact = resolve_conversation(data.conversation_id)
        message_type: MessageType = data.type  # type: ignore[assignment]
        message_id = f"msg-{uuid.uuid4().hex}"
        sender_id = data.user_id or DEFAULT_SENDER_ID
        now = self._clock()

        attachments = tuple(
            Attachment(
                id=f"att-{message_id}-{index}",
                message_id=message_id,
                type=item.type if item.type in MESSAGE_TYPES and item.type != "text" else "file",
                url=item.url or "",
                thumbnail_url=item.thumbnail_url,
                metadata=(
                    {**item.metadata, "storagePath": item.storage_path}
                    if item.storage_path
                    else dict(item.metadata)
                ),
            )
            for index, item in enumerate(data.attachments)
        )

        with self._uow() as repos:
            reply_provider_id = None
            if data.reply_to_message_id:
                target = repos.messages.find_by_id(data.workspace_id, data.reply_to_message_id)
                if target is None or target.conversation_id != contact.conversation_key:
                    raise InvalidRequestError("invalid reply_to_message_id")
                reply_provider_id = target.external_id

            message = Message(
                id=message_id,
                workspace_id=data.workspace_id,
                conversation_id=contact.conversation_key,
                sender_id=sender_id,
                type=message_type,
                content=data.content,
                status="pending",
                created_at=now,
                reply_to_message_id=data.reply_to_message_id,
                attachments=attachments,
            )
            repos.messages.save(message)

            first = data.attachments[0] if data.attachments else None
            is_media = message_type != "text"
            entry = enqueue(
                repos,
                workspace_id=data.workspace_id,
                message_id=message_id,
                payload=OutboundPayload(
                    type=message_type,
                    to=contact.address,
                    text=data.content if not is_media else None,
                    media_url=first.url if is_media and first else None,
                    media_path=first.storage_path if is_media and first else None,
                    caption=(data.content or None) if is_media else None,
                    reply_message_id=reply_provider_id,
                ),
            )

            last_message = LastMessage.from_message(message)
            conversation = repos.conversations.find_by_id(
                data.workspace_id, contact.conversation_key
            )
            if conversation is not None:
                repos.conversations.update(
                    data.workspace_id,
                    conversation.id,
                    last_message=last_message,
                    updated_at=now,
                )
            else:
                repos.conversations.save(
                    Conversation(
                        id=contact.conversation_key,
                        workspace_id=data.workspace_id,
                        contact_id=contact.conversation_key,
                        channel=CHANNEL_WHATSAPP,
                        participants=(
                            Participant(id=sender_id, name=SENDER_PARTICIPANT_NAME),
                            Participant(id=contact.contact_number, name=contact.contact_number),
                        ),
                        updated_at=now,
                        whatsapp_number_id=data.whatsapp_number_id,
                        last_message=last_message,
                    )
                )

        logger.info(
            "outbound message queued",
            extra={
                "extra_fields": safe_log_context(
                    outboxId=entry.id, type=message_type, hasReply=bool(reply_provider_id)
                )
            },
        )

        if self._on_enqueued is not None:
            try:
                self._on_enqueued(entry)
            except Exception:
                logger.exception(
                    "outbox worker trigger failed",
                    extra={"extra_fields": safe_log_context(outboxId=entry.id)},
                )

        return message
