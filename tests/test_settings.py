"""Tests for environment-driven settings."""

import pytest

from chatrelay.infra.settings import (
    OutboxSettings,
    is_local_dev,
    load_evolution_settings,
    load_media_base_url,
    load_outbox_settings,
    load_storage_backend,
    load_webhook_settings,
)
from chatrelay.whatsapp.ports import PublicUrlMediaStorage


class TestWebhookSettings:
    def test_defaults(self, monkeypatch):
        for name in ("WEBHOOK_MAX_AGE_SECONDS", "SYSTEM_SENDER_ID", "MEDIA_PROXY_PATH"):
            monkeypatch.delenv(name, raising=False)

        settings = load_webhook_settings()

        assert settings.secret == ""
        assert settings.max_age_seconds == 300
        assert settings.system_sender_id == "system"
        assert settings.media_proxy_path == "/media/whatsapp"

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("EVOLUTION_WEBHOOK_SECRET", "  tok  ")
        monkeypatch.setenv("WEBHOOK_MAX_AGE_SECONDS", "60")

        settings = load_webhook_settings()

        assert settings.secret == "tok"
        assert settings.max_age_seconds == 60

    def test_invalid_integer(self, monkeypatch):
        monkeypatch.setenv("WEBHOOK_MAX_AGE_SECONDS", "five minutes")

        with pytest.raises(RuntimeError, match="WEBHOOK_MAX_AGE_SECONDS"):
            load_webhook_settings()


class TestOutboxSettings:
    def test_defaults(self, monkeypatch):
        for name in (
            "OUTBOX_MAX_ATTEMPTS",
            "OUTBOX_BACKOFF_BASE_SECONDS",
            "OUTBOX_BACKOFF_MAX_SECONDS",
            "OUTBOX_PROCESSING_LEASE_SECONDS",
            "OUTBOX_BATCH_SIZE",
            "OUTBOX_POLL_INTERVAL_SECONDS",
        ):
            monkeypatch.delenv(name, raising=False)

        assert load_outbox_settings() == OutboxSettings()

    def test_max_attempts_must_be_positive(self, monkeypatch):
        monkeypatch.setenv("OUTBOX_MAX_ATTEMPTS", "0")

        with pytest.raises(RuntimeError, match="OUTBOX_MAX_ATTEMPTS"):
            load_outbox_settings()


class TestEvolutionSettings:
    def test_missing(self, monkeypatch):
        monkeypatch.delenv("EVOLUTION_BASE_URL", raising=False)

        with pytest.raises(RuntimeError):
            load_evolution_settings()

    def test_loaded(self, monkeypatch):
        monkeypatch.setenv("EVOLUTION_BASE_URL", "http://evo:8080/")
        monkeypatch.setenv("EVOLUTION_INSTANCE", "line")
        monkeypatch.setenv("EVOLUTION_API_KEY", "key")
        monkeypatch.setenv("EVOLUTION_HTTP_TIMEOUT", "3")

        settings = load_evolution_settings()

        assert settings.base_url == "http://evo:8080"
        assert settings.timeout_seconds == 3


class TestMisc:
    def test_storage_backend(self, monkeypatch):
        assert load_storage_backend() == "memory"
        monkeypatch.setenv("STORAGE_BACKEND", "postgres")
        assert load_storage_backend() == "postgres"
        monkeypatch.setenv("STORAGE_BACKEND", "redis")
        with pytest.raises(RuntimeError):
            load_storage_backend()

    def test_local_dev(self, monkeypatch):
        assert is_local_dev() is False
        monkeypatch.setenv("TASKS_OIDC_AUDIENCE", "chatrelay-tasks-local")
        assert is_local_dev() is True

    def test_media_storage_urls(self, monkeypatch):
        monkeypatch.setenv("MEDIA_PUBLIC_BASE_URL", "https://cdn.example.com/")
        storage = PublicUrlMediaStorage(load_media_base_url())

        assert storage.signed_url("ws/a.jpg") == "https://cdn.example.com/ws/a.jpg"
        assert storage.signed_url("/ws/a.jpg") == "https://cdn.example.com/ws/a.jpg"
        assert storage.signed_url("https://other/x.jpg") == "https://other/x.jpg"
        assert PublicUrlMediaStorage("").signed_url("ws/a.jpg") == "ws/a.jpg"
