"""PostgreSQL unit of work: one txn() cursor shared by every repository."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from chatrelay.infra.db import txn
from chatrelay.infra.repositories.conversation_repository import PgConversationRepository
from chatrelay.infra.repositories.message_repository import PgMessageRepository
from chatrelay.infra.repositories.message_status_repository import PgMessageStatusRepository
from chatrelay.infra.repositories.outbox_repository import PgOutboxRepository
from chatrelay.infra.repositories.ports import Repositories
from chatrelay.infra.repositories.webhook_event_repository import PgWebhookEventRepository
from chatrelay.infra.repositories.whatsapp_numbers_repository import PgWhatsAppNumberRepository


@contextmanager
def pg_unit_of_work() -> Iterator[Repositories]:
    with txn() as cur:
        yield Repositories(
            messages=PgMessageRepository(cur),
            conversations=PgConversationRepository(cur),
            statuses=PgMessageStatusRepository(cur),
            outbox=PgOutboxRepository(cur),
            webhook_events=PgWebhookEventRepository(cur),
            whatsapp_numbers=PgWhatsAppNumberRepository(cur),
        )
