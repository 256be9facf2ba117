"""Read-side use cases: message history, inbox, message context."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any

from chatrelay.domain.errors import InvalidRequestError, MessageNotFoundError
from chatrelay.domain.identity import conversation_key
from chatrelay.domain.models import PROVIDER_EVOLUTION, Conversation, Message
from chatrelay.infra.repositories.ports import UnitOfWork

DEFAULT_LIMIT = 50
MAX_LIMIT = 200

# Sender ids that mark a message as ours
_OUTBOUND_SENDERS = frozenset({"me", "system"})


def list_messages(
    uow: UnitOfWork,
    workspace_id: str,
    conversation_id: str,
    since: datetime | None = None,
    limit: int | None = None,
) -> list[Message]:
    """Messages of a conversation, oldest first.

    conversation_id may be any address variant; it is normalized to the
    conversation key. limit defaults to 50 and is capped at 200.
    """
    if not conversation_id:
        raise InvalidRequestError("conversation_id is required")

    key = conversation_key(conversation_id)
    safe_limit = min(limit, MAX_LIMIT) if limit and limit > 0 else DEFAULT_LIMIT

    with uow() as repos:
        return repos.messages.find_by_conversation(workspace_id, key, since, safe_limit)


def list_conversations(uow: UnitOfWork, workspace_id: str) -> list[Conversation]:
    """Workspace conversations, most recently updated first."""
    with uow() as repos:
        conversations = repos.conversations.find_all(workspace_id)
    return sorted(conversations, key=lambda c: c.updated_at, reverse=True)


@dataclass(frozen=True)
class MessageContext:
    message_id: str
    conversation_id: str
    workspace_id: str
    direction: str
    provider: str
    type: str
    status: str
    has_attachments: bool
    is_reply: bool
    created_at: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _direction(sender_id: str, user_id: str | None) -> str:
    if not sender_id:
        return "inbound"
    if sender_id in _OUTBOUND_SENDERS or (user_id and sender_id == user_id):
        return "outbound"
    return "inbound"


def fetch_message_context(
    uow: UnitOfWork,
    workspace_id: str,
    message_id: str,
    user_id: str | None = None,
    system_sender_id: str = "system",
) -> MessageContext:
    """PII-free summary of one message (for downstream automations).

    Raises:
        MessageNotFoundError: If message_id is empty or unknown.
    """
    if not message_id:
        raise MessageNotFoundError("invalid message_id")

    with uow() as repos:
        message = repos.messages.find_by_id(workspace_id, message_id)
    if message is None:
        raise MessageNotFoundError()

    direction = _direction(message.sender_id, user_id)
    if message.sender_id == system_sender_id:
        direction = "outbound"

    return MessageContext(
        message_id=message.id,
        conversation_id=message.conversation_id,
        workspace_id=message.workspace_id,
        direction=direction,
        provider=PROVIDER_EVOLUTION if message.external_id else "unknown",
        type="document" if message.type == "file" else message.type,
        status=message.status,
        has_attachments=bool(message.attachments),
        is_reply=bool(message.reply_to_message_id),
        created_at=message.created_at.isoformat(),
    )
