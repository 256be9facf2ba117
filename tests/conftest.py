"""Shared pytest fixtures for chatrelay tests."""
import sys
sys.dont_write_bytecode = True

import pytest  # noqa: E402

from chatrelay.composition import build_relay  # noqa: E402
from chatrelay.domain.models import WhatsAppNumber  # noqa: E402
from chatrelay.infra.repositories.memory import InMemoryStore  # noqa: E402
from chatrelay.infra.settings import OutboxSettings, WebhookSettings  # noqa: E402
from chatrelay.tasks.client import TasksClient  # noqa: E402
from chatrelay.whatsapp.ports import PublicUrlMediaStorage  # noqa: E402
from helpers import (  # noqa: E402
    LINE_API_KEY,
    MEDIA_BASE_URL,
    NUMBER_ID,
    TEST_INSTANCE,
    TEST_WORKSPACE,
    WEBHOOK_SECRET,
    FakeClock,
    FakeProvider,
)


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch):
    """Keep developer env vars from leaking into tests."""
    for name in (
        "APP_ROLE",
        "STORAGE_BACKEND",
        "TASKS_BACKEND",
        "TASKS_OIDC_AUDIENCE",
        "TASKS_OIDC_SERVICE_ACCOUNT",
        "INTERNAL_TASK_SECRET",
        "EVOLUTION_WEBHOOK_SECRET",
        "DB_PASSWORD",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    """InMemoryStore with one registered provider line."""
    s = InMemoryStore(clock=clock)
    s.add_whatsapp_number(
        WhatsAppNumber(
            id=NUMBER_ID,
            workspace_id=TEST_WORKSPACE,
            instance_name=TEST_INSTANCE,
            api_key=LINE_API_KEY,
        )
    )
    return s


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def outbox_settings():
    return OutboxSettings(
        max_attempts=5,
        backoff_base_seconds=5,
        backoff_max_seconds=300,
        processing_lease_seconds=300,
        batch_size=10,
    )


@pytest.fixture
def relay(store, provider, clock, outbox_settings):
    return build_relay(
        "memory",
        store=store,
        provider=provider,
        media_storage=PublicUrlMediaStorage(MEDIA_BASE_URL),
        tasks_client=TasksClient("inline"),
        webhook_settings=WebhookSettings(secret=WEBHOOK_SECRET),
        outbox_settings=outbox_settings,
        clock=clock,
    )
