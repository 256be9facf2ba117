"""In-memory repositories for development and tests.

All state lives in one InMemoryStore instance constructed at startup and
passed to whoever needs it. A unit of work holds the store lock for its whole
duration and restores a snapshot if the block raises, which gives the same
both-or-neither guarantee as a database transaction.
"""

from __future__ import annotations

import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable, Iterator

from chatrelay.domain.errors import (
    ConversationNotFoundError,
    DuplicateMessageError,
    MessageNotFoundError,
)
from chatrelay.domain.models import (
    PROVIDER_EVOLUTION,
    PROVIDER_MESSAGE_ID,
    Conversation,
    LastMessage,
    Message,
    MessageStatus,
    OutboxEntry,
    PendingStatus,
    WebhookEvent,
    WebhookEventStatus,
    WhatsAppNumber,
)
from chatrelay.infra.time import utc_now

from chatrelay.infra.repositories.ports import Repositories

Clock = Callable[[], datetime]


@dataclass
class _State:
    messages: dict[tuple[str, str], Message] = field(default_factory=dict)
    external_index: dict[tuple[str, str, str], str] = field(default_factory=dict)
    conversations: dict[tuple[str, str], Conversation] = field(default_factory=dict)
    pending_statuses: dict[tuple[str, str, str], PendingStatus] = field(default_factory=dict)
    outbox: dict[str, OutboxEntry] = field(default_factory=dict)
    webhook_events: dict[str, WebhookEvent] = field(default_factory=dict)
    idempotency_index: dict[str, str] = field(default_factory=dict)
    whatsapp_numbers: dict[str, WhatsAppNumber] = field(default_factory=dict)

    def snapshot(self) -> "_State":
        # Records are frozen, so copying the containers is enough
        return _State(**{name: dict(value) for name, value in vars(self).items()})


class InMemoryStore:
    """Process-local store shared by the in-memory repositories."""

    def __init__(self, clock: Clock = utc_now) -> None:
        self.clock = clock
        self.lock = threading.RLock()
        self.state = _State()

    @contextmanager
    def unit_of_work(self) -> Iterator[Repositories]:
        with self.lock:
            saved = self.state.snapshot()
            try:
                yield self.repositories()
            except BaseException:
                self.state = saved
                raise

    def repositories(self) -> Repositories:
        return Repositories(
            messages=InMemoryMessageRepository(self),
            conversations=InMemoryConversationRepository(self),
            statuses=InMemoryMessageStatusRepository(self),
            outbox=InMemoryOutboxRepository(self),
            webhook_events=InMemoryWebhookEventRepository(self),
            whatsapp_numbers=InMemoryWhatsAppNumberRepository(self),
        )

    def add_whatsapp_number(self, number: WhatsAppNumber) -> None:
        """Register a provider line (seed data / tests)."""
        with self.lock:
            self.state.whatsapp_numbers[number.id] = number

    def clear(self) -> None:
        with self.lock:
            self.state = _State()


class InMemoryMessageRepository:
    def __init__(self, store: InMemoryStore) -> None:
        self._store = store

    def find_by_conversation(
        self,
        workspace_id: str,
        conversation_id: str,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> list[Message]:
        with self._store.lock:
            messages = [
                m
                for (ws, _), m in self._store.state.messages.items()
                if ws == workspace_id and m.conversation_id == conversation_id
            ]
        if since is not None:
            messages = [m for m in messages if m.created_at > since]
        messages.sort(key=lambda m: m.created_at)
        if limit:
            messages = messages[:limit]
        return messages

    def find_by_id(self, workspace_id: str, message_id: str) -> Message | None:
        with self._store.lock:
            return self._store.state.messages.get((workspace_id, message_id))

    def find_by_external_id(
        self, workspace_id: str, provider: str, external_id: str
    ) -> Message | None:
        with self._store.lock:
            state = self._store.state
            message_id = state.external_index.get((workspace_id, provider, external_id))
            if message_id is None:
                return None
            return state.messages.get((workspace_id, message_id))

    def save(self, message: Message) -> None:
        with self._store.lock:
            state = self._store.state
            key = (message.workspace_id, message.id)
            if key in state.messages:
                raise DuplicateMessageError()
            external_key = None
            if message.external_id:
                external_key = (message.workspace_id, PROVIDER_EVOLUTION, message.external_id)
                if external_key in state.external_index:
                    raise DuplicateMessageError()
            state.messages[key] = message
            if external_key is not None:
                state.external_index[external_key] = message.id

    def update_status(
        self, workspace_id: str, message_id: str, status: MessageStatus
    ) -> None:
        self.update(workspace_id, message_id, status=status)

    def update(
        self,
        workspace_id: str,
        message_id: str,
        *,
        status: MessageStatus | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        with self._store.lock:
            state = self._store.state
            current = state.messages.get((workspace_id, message_id))
            if current is None:
                raise MessageNotFoundError()

            changes: dict[str, Any] = {"updated_at": self._store.clock()}
            if status is not None:
                changes["status"] = status
            if metadata:
                merged = {**current.metadata, **metadata}
                external_id = merged.get(PROVIDER_MESSAGE_ID)
                if external_id:
                    external_key = (workspace_id, PROVIDER_EVOLUTION, str(external_id))
                    owner = state.external_index.get(external_key)
                    if owner is not None and owner != message_id:
                        raise DuplicateMessageError()
                    state.external_index[external_key] = message_id
                changes["metadata"] = merged

            state.messages[(workspace_id, message_id)] = replace(current, **changes)


class InMemoryConversationRepository:
    def __init__(self, store: InMemoryStore) -> None:
        self._store = store

    def find_all(self, workspace_id: str) -> list[Conversation]:
        with self._store.lock:
            return [
                c for (ws, _), c in self._store.state.conversations.items() if ws == workspace_id
            ]

    def find_by_id(self, workspace_id: str, conversation_id: str) -> Conversation | None:
        with self._store.lock:
            return self._store.state.conversations.get((workspace_id, conversation_id))

    def save(self, conversation: Conversation) -> None:
        with self._store.lock:
            self._store.state.conversations[(conversation.workspace_id, conversation.id)] = (
                conversation
            )

    def update(
        self,
        workspace_id: str,
        conversation_id: str,
        *,
        last_message: LastMessage,
        updated_at: datetime,
    ) -> None:
        with self._store.lock:
            conversations = self._store.state.conversations
            current = conversations.get((workspace_id, conversation_id))
            if current is None:
                raise ConversationNotFoundError()
            conversations[(workspace_id, conversation_id)] = replace(
                current, last_message=last_message, updated_at=updated_at
            )


class InMemoryMessageStatusRepository:
    def __init__(self, store: InMemoryStore) -> None:
        self._store = store

    def upsert_pending(
        self,
        workspace_id: str,
        provider: str,
        external_message_id: str,
        status: MessageStatus,
    ) -> None:
        with self._store.lock:
            self._store.state.pending_statuses[(workspace_id, provider, external_message_id)] = (
                PendingStatus(
                    workspace_id=workspace_id,
                    provider=provider,
                    external_message_id=external_message_id,
                    status=status,
                    received_at=self._store.clock(),
                )
            )

    def get_pending(
        self, workspace_id: str, provider: str, external_message_id: str
    ) -> MessageStatus | None:
        with self._store.lock:
            pending = self._store.state.pending_statuses.get(
                (workspace_id, provider, external_message_id)
            )
        return pending.status if pending else None

    def delete_pending(
        self, workspace_id: str, provider: str, external_message_id: str
    ) -> None:
        with self._store.lock:
            self._store.state.pending_statuses.pop(
                (workspace_id, provider, external_message_id), None
            )


class InMemoryOutboxRepository:
    def __init__(self, store: InMemoryStore) -> None:
        self._store = store

    def enqueue(
        self,
        *,
        workspace_id: str,
        message_id: str,
        provider: str,
        payload: dict[str, Any],
    ) -> OutboxEntry:
        now = self._store.clock()
        entry = OutboxEntry(
            id=str(uuid.uuid4()),
            workspace_id=workspace_id,
            message_id=message_id,
            provider=provider,
            payload=dict(payload),
            status="pending",
            attempts=0,
            next_retry_at=now,
            created_at=now,
            updated_at=now,
        )
        with self._store.lock:
            self._store.state.outbox[entry.id] = entry
        return entry

    def get(self, outbox_id: str) -> OutboxEntry | None:
        with self._store.lock:
            return self._store.state.outbox.get(outbox_id)

    def reclaim_stale(self, older_than: datetime) -> int:
        reclaimed = 0
        with self._store.lock:
            outbox = self._store.state.outbox
            for entry in list(outbox.values()):
                if entry.status == "processing" and entry.updated_at < older_than:
                    outbox[entry.id] = replace(
                        entry,
                        status="pending",
                        attempts=entry.attempts + 1,
                        last_error="lease_expired",
                        updated_at=self._store.clock(),
                    )
                    reclaimed += 1
        return reclaimed

    def claim_batch(self, limit: int, now: datetime) -> list[OutboxEntry]:
        with self._store.lock:
            candidates = [
                e
                for e in self._store.state.outbox.values()
                if e.status == "pending" and e.next_retry_at <= now
            ]
        candidates.sort(key=lambda e: e.created_at)

        claimed: list[OutboxEntry] = []
        for candidate in candidates[:limit]:
            entry = self._transition(candidate.id, "pending", "processing")
            if entry is not None:
                claimed.append(entry)
        return claimed

    def _transition(self, outbox_id: str, expected: str, target: str) -> OutboxEntry | None:
        """Conditional status change; None if the entry is no longer `expected`."""
        with self._store.lock:
            outbox = self._store.state.outbox
            current = outbox.get(outbox_id)
            if current is None or current.status != expected:
                return None
            updated = replace(current, status=target, updated_at=self._store.clock())
            outbox[outbox_id] = updated
            return updated

    def _patch(self, outbox_id: str, **changes: Any) -> None:
        with self._store.lock:
            outbox = self._store.state.outbox
            current = outbox.get(outbox_id)
            if current is None:
                return
            outbox[outbox_id] = replace(current, updated_at=self._store.clock(), **changes)

    def mark_sent(self, outbox_id: str) -> None:
        self._patch(outbox_id, status="sent", last_error=None)

    def mark_failed(
        self, outbox_id: str, attempts: int, next_retry_at: datetime, reason: str
    ) -> None:
        self._patch(
            outbox_id,
            status="pending",
            attempts=attempts,
            next_retry_at=next_retry_at,
            last_error=reason,
        )

    def mark_permanent_failure(
        self, outbox_id: str, reason: str, attempts: int | None = None
    ) -> None:
        changes: dict[str, Any] = {"status": "failed", "last_error": reason}
        if attempts is not None:
            changes["attempts"] = attempts
        self._patch(outbox_id, **changes)


class InMemoryWebhookEventRepository:
    def __init__(self, store: InMemoryStore) -> None:
        self._store = store

    def claim_key(self, idempotency_key: str, event_id: str) -> bool:
        with self._store.lock:
            index = self._store.state.idempotency_index
            if idempotency_key in index:
                return False
            index[idempotency_key] = event_id
            return True

    def insert(self, event: WebhookEvent) -> bool:
        with self._store.lock:
            events = self._store.state.webhook_events
            if event.id in events:
                return False
            events[event.id] = event
            return True

    def get(self, event_id: str) -> WebhookEvent | None:
        with self._store.lock:
            return self._store.state.webhook_events.get(event_id)

    def update_status(
        self, event_id: str, status: WebhookEventStatus, error: str | None = None
    ) -> bool:
        with self._store.lock:
            events = self._store.state.webhook_events
            current = events.get(event_id)
            if current is None:
                return False
            events[event_id] = replace(current, status=status, error=error)
            return True


class InMemoryWhatsAppNumberRepository:
    def __init__(self, store: InMemoryStore) -> None:
        self._store = store

    def find_by_instance(self, instance_name: str) -> WhatsAppNumber | None:
        with self._store.lock:
            for number in self._store.state.whatsapp_numbers.values():
                if number.instance_name == instance_name:
                    return number
        return None

    def find_by_id(self, whatsapp_number_id: str) -> WhatsAppNumber | None:
        with self._store.lock:
            return self._store.state.whatsapp_numbers.get(whatsapp_number_id)
