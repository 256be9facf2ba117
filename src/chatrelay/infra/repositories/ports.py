"""Repository contracts consumed by the relay core.

Two backends implement them: memory.py (one explicitly constructed store) and
the psycopg2 modules (one cursor per unit of work). Use cases never talk to a
backend directly; they receive a UnitOfWork and use the Repositories bundle it
yields, so every write inside one `with uow() as repos:` block commits or rolls
back together.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, ContextManager, Protocol

from chatrelay.domain.models import (
    Conversation,
    LastMessage,
    Message,
    MessageStatus,
    OutboxEntry,
    WebhookEvent,
    WebhookEventStatus,
    WhatsAppNumber,
)


class MessageRepository(Protocol):
    def find_by_conversation(
        self,
        workspace_id: str,
        conversation_id: str,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> list[Message]:
        """Messages of a conversation, oldest first, optionally after `since`."""
        ...

    def find_by_id(self, workspace_id: str, message_id: str) -> Message | None: ...

    def find_by_external_id(
        self, workspace_id: str, provider: str, external_id: str
    ) -> Message | None: ...

    def save(self, message: Message) -> None:
        """Insert a message. Raises DuplicateMessageError on unique violation."""
        ...

    def update_status(
        self, workspace_id: str, message_id: str, status: MessageStatus
    ) -> None:
        """Set status. Raises MessageNotFoundError if the message is gone."""
        ...

    def update(
        self,
        workspace_id: str,
        message_id: str,
        *,
        status: MessageStatus | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Patch status and/or merge metadata. Raises MessageNotFoundError."""
        ...


class ConversationRepository(Protocol):
    def find_all(self, workspace_id: str) -> list[Conversation]: ...

    def find_by_id(self, workspace_id: str, conversation_id: str) -> Conversation | None: ...

    def save(self, conversation: Conversation) -> None: ...

    def update(
        self,
        workspace_id: str,
        conversation_id: str,
        *,
        last_message: LastMessage,
        updated_at: datetime,
    ) -> None:
        """Patch last message summary. Raises ConversationNotFoundError."""
        ...


class MessageStatusRepository(Protocol):
    def upsert_pending(
        self,
        workspace_id: str,
        provider: str,
        external_message_id: str,
        status: MessageStatus,
    ) -> None: ...

    def get_pending(
        self, workspace_id: str, provider: str, external_message_id: str
    ) -> MessageStatus | None: ...

    def delete_pending(
        self, workspace_id: str, provider: str, external_message_id: str
    ) -> None: ...


class OutboxRepository(Protocol):
    def enqueue(
        self,
        *,
        workspace_id: str,
        message_id: str,
        provider: str,
        payload: dict[str, Any],
    ) -> OutboxEntry: ...

    def get(self, outbox_id: str) -> OutboxEntry | None: ...

    def reclaim_stale(self, older_than: datetime) -> int:
        """Return entries stuck in processing since before `older_than` to pending."""
        ...

    def claim_batch(self, limit: int, now: datetime) -> list[OutboxEntry]:
        """Claim due pending entries, oldest first, one conditional update each."""
        ...

    def mark_sent(self, outbox_id: str) -> None: ...

    def mark_failed(
        self, outbox_id: str, attempts: int, next_retry_at: datetime, reason: str
    ) -> None: ...

    def mark_permanent_failure(
        self, outbox_id: str, reason: str, attempts: int | None = None
    ) -> None: ...


class WebhookEventRepository(Protocol):
    def claim_key(self, idempotency_key: str, event_id: str) -> bool:
        """Atomically bind a key to an event id. False if already bound."""
        ...

    def insert(self, event: WebhookEvent) -> bool:
        """Store an audit row. False (nothing written) if the id is taken."""
        ...

    def get(self, event_id: str) -> WebhookEvent | None: ...

    def update_status(
        self, event_id: str, status: WebhookEventStatus, error: str | None = None
    ) -> bool:
        """Set status/error. Returns False (no error) when the id is unknown."""
        ...


class WhatsAppNumberRepository(Protocol):
    def find_by_instance(self, instance_name: str) -> WhatsAppNumber | None: ...

    def find_by_id(self, whatsapp_number_id: str) -> WhatsAppNumber | None: ...


@dataclass(frozen=True)
class Repositories:
    """All repositories bound to one unit of work."""

    messages: MessageRepository
    conversations: ConversationRepository
    statuses: MessageStatusRepository
    outbox: OutboxRepository
    webhook_events: WebhookEventRepository
    whatsapp_numbers: WhatsAppNumberRepository


class UnitOfWork(Protocol):
    """Factory of transactional scopes yielding a Repositories bundle."""

    def __call__(self) -> ContextManager[Repositories]: ...
