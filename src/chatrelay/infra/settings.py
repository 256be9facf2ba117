"""Runtime settings loaded from environment variables.

Each concern gets a small frozen dataclass and a loader. Loaders are called at
composition time, so tests can build settings directly instead of patching env.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal

StorageBackend = Literal["memory", "postgres"]

# TASKS_OIDC_AUDIENCE value that enables local-dev shortcuts
LOCAL_DEV_AUDIENCE = "chatrelay-tasks-local"


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name, "")
    if not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}") from None


@dataclass(frozen=True)
class WebhookSettings:
    """Inbound webhook validation and translation settings.

    Attributes:
        secret: Shared URL token expected on /webhooks/whatsapp/{token}.
        max_age_seconds: Accepted skew between event timestamp and now.
        system_sender_id: Sender id attributed to messages sent by us.
        media_proxy_path: Path of the media proxy used for reference-only media.
    """

    secret: str = ""
    max_age_seconds: int = 300
    system_sender_id: str = "system"
    media_proxy_path: str = "/media/whatsapp"


@dataclass(frozen=True)
class OutboxSettings:
    """Outbox delivery policy."""

    max_attempts: int = 5
    backoff_base_seconds: int = 5
    backoff_max_seconds: int = 300
    processing_lease_seconds: int = 300
    batch_size: int = 10
    poll_interval_seconds: int = 5


@dataclass(frozen=True)
class EvolutionSettings:
    """Evolution API connection defaults (per-line credentials override these)."""

    base_url: str
    instance: str
    api_key: str
    timeout_seconds: int = 10


def load_webhook_settings() -> WebhookSettings:
    return WebhookSettings(
        secret=os.environ.get("EVOLUTION_WEBHOOK_SECRET", "").strip(),
        max_age_seconds=_int_env("WEBHOOK_MAX_AGE_SECONDS", 300),
        system_sender_id=os.environ.get("SYSTEM_SENDER_ID", "system") or "system",
        media_proxy_path=os.environ.get("MEDIA_PROXY_PATH", "/media/whatsapp"),
    )


def load_outbox_settings() -> OutboxSettings:
    settings = OutboxSettings(
        max_attempts=_int_env("OUTBOX_MAX_ATTEMPTS", 5),
        backoff_base_seconds=_int_env("OUTBOX_BACKOFF_BASE_SECONDS", 5),
        backoff_max_seconds=_int_env("OUTBOX_BACKOFF_MAX_SECONDS", 300),
        processing_lease_seconds=_int_env("OUTBOX_PROCESSING_LEASE_SECONDS", 300),
        batch_size=_int_env("OUTBOX_BATCH_SIZE", 10),
        poll_interval_seconds=_int_env("OUTBOX_POLL_INTERVAL_SECONDS", 5),
    )
    if settings.max_attempts < 1:
        raise RuntimeError("OUTBOX_MAX_ATTEMPTS must be at least 1")
    return settings


def load_evolution_settings() -> EvolutionSettings:
    """Load Evolution API config.

    Required env vars:
    - EVOLUTION_BASE_URL: Base URL (e.g., http://localhost:8080)
    - EVOLUTION_INSTANCE: Default instance name
    - EVOLUTION_API_KEY: API token

    Raises:
        RuntimeError: If any required variable is missing.
    """
    base_url = os.environ.get("EVOLUTION_BASE_URL", "")
    instance = os.environ.get("EVOLUTION_INSTANCE", "")
    api_key = os.environ.get("EVOLUTION_API_KEY", "")

    if not base_url or not instance or not api_key:
        raise RuntimeError(
            "Missing Evolution config: EVOLUTION_BASE_URL, EVOLUTION_INSTANCE, EVOLUTION_API_KEY"
        )

    return EvolutionSettings(
        base_url=base_url.rstrip("/"),
        instance=instance,
        api_key=api_key,
        timeout_seconds=_int_env("EVOLUTION_HTTP_TIMEOUT", 10),
    )


def load_storage_backend() -> StorageBackend:
    backend = os.environ.get("STORAGE_BACKEND", "memory")
    if backend not in ("memory", "postgres"):
        raise RuntimeError(f"Unknown STORAGE_BACKEND: {backend}")
    return backend  # type: ignore[return-value]


def is_local_dev() -> bool:
    """True when running with the local-dev task audience (relaxed secrets)."""
    return os.environ.get("TASKS_OIDC_AUDIENCE", "") == LOCAL_DEV_AUDIENCE


def load_media_base_url() -> str:
    """Public base URL that stored media paths are served from (may be empty)."""
    return os.environ.get("MEDIA_PUBLIC_BASE_URL", "").strip()
