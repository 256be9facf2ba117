"""Composition root - wires repositories, use cases and adapters.

Nothing here is a module global: build_relay() returns a ChatRelay that the
HTTP app keeps on app.state and the poller keeps on its stack. Tests build
one with an InMemoryStore and fakes for the provider and media storage.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from chatrelay.domain.outbox_worker import OutboxWorker
from chatrelay.domain.send_message import SendMessage
from chatrelay.domain.webhook_processor import WebhookProcessor
from chatrelay.domain.webhook_store import WebhookEventStore
from chatrelay.infra.outbox_trigger import OutboxTrigger
from chatrelay.infra.repositories.memory import InMemoryStore
from chatrelay.infra.repositories.ports import UnitOfWork
from chatrelay.infra.settings import (
    OutboxSettings,
    StorageBackend,
    WebhookSettings,
    load_media_base_url,
    load_outbox_settings,
    load_storage_backend,
    load_webhook_settings,
)
from chatrelay.infra.time import utc_now
from chatrelay.observability.logging import get_logger
from chatrelay.tasks.client import TasksClient
from chatrelay.whatsapp.evolution_provider import EvolutionWhatsAppProvider
from chatrelay.whatsapp.ports import MediaStorage, PublicUrlMediaStorage, WhatsAppProvider

logger = get_logger(__name__)


@dataclass
class ChatRelay:
    """Everything the entrypoints need, bound to one storage backend."""

    backend: StorageBackend
    uow: UnitOfWork
    webhook_settings: WebhookSettings
    outbox_settings: OutboxSettings
    event_store: WebhookEventStore
    processor: WebhookProcessor
    outbox_worker: OutboxWorker
    send_message: SendMessage
    tasks_client: TasksClient
    store: InMemoryStore | None = None


def _postgres_uow() -> UnitOfWork:
    # Imported lazily so the memory backend never needs psycopg2 at import time
    from chatrelay.infra.repositories.postgres import pg_unit_of_work

    return pg_unit_of_work


def build_relay(
    backend: StorageBackend | None = None,
    *,
    store: InMemoryStore | None = None,
    provider: WhatsAppProvider | None = None,
    media_storage: MediaStorage | None = None,
    tasks_client: TasksClient | None = None,
    webhook_settings: WebhookSettings | None = None,
    outbox_settings: OutboxSettings | None = None,
    clock: Callable[[], datetime] = utc_now,
) -> ChatRelay:
    """Build a ChatRelay from explicit collaborators, falling back to env config."""
    backend = backend or load_storage_backend()
    webhook_settings = webhook_settings or load_webhook_settings()
    outbox_settings = outbox_settings or load_outbox_settings()
    tasks_client = tasks_client or TasksClient()

    if backend == "memory":
        store = store or InMemoryStore(clock=clock)
        uow: UnitOfWork = store.unit_of_work
    else:
        store = None
        uow = _postgres_uow()

    event_store = WebhookEventStore(uow)
    relay = ChatRelay(
        backend=backend,
        uow=uow,
        webhook_settings=webhook_settings,
        outbox_settings=outbox_settings,
        event_store=event_store,
        processor=WebhookProcessor(uow, event_store, webhook_settings, clock=clock),
        outbox_worker=OutboxWorker(
            uow,
            provider or EvolutionWhatsAppProvider(),
            media_storage or PublicUrlMediaStorage(load_media_base_url()),
            outbox_settings,
            clock=clock,
        ),
        send_message=SendMessage(
            uow,
            on_enqueued=OutboxTrigger(tasks_client, outbox_settings.batch_size),
            clock=clock,
        ),
        tasks_client=tasks_client,
        store=store,
    )

    logger.info(
        "chat relay built",
        extra={"extra_fields": {"backend": backend, "tasksBackend": tasks_client.backend}},
    )
    return relay
