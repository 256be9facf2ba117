"""Outbound provider and media storage contracts."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from chatrelay.domain.models import AttachmentType


class ProviderError(Exception):
    """Provider send failed (non-2xx response or network error).

    The message is PII-free by construction: it never includes the request
    body or the provider's response body.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class SendOptions:
    """Per-send overrides: reply reference and line credentials."""

    reply_message_id: str | None = None
    instance: str | None = None
    api_key: str | None = None


@dataclass(frozen=True)
class SendResult:
    provider_message_id: str | None


class WhatsAppProvider(Protocol):
    def send_text(self, to: str, text: str, options: SendOptions | None = None) -> SendResult: ...

    def send_media(
        self,
        to: str,
        media_url: str,
        kind: AttachmentType,
        caption: str | None = None,
        options: SendOptions | None = None,
    ) -> SendResult: ...


class MediaStorage(Protocol):
    def signed_url(self, path: str) -> str:
        """Resolve a stored media path into a URL the provider can fetch."""
        ...


class PublicUrlMediaStorage:
    """Media storage served from a public base URL.

    Paths are joined onto MEDIA_PUBLIC_BASE_URL; with no base URL configured,
    paths are returned unchanged (already absolute URLs).
    """

    def __init__(self, base_url: str = "") -> None:
        self._base_url = base_url.rstrip("/")

    def signed_url(self, path: str) -> str:
        if not self._base_url or path.startswith(("http://", "https://")):
            return path
        return f"{self._base_url}/{path.lstrip('/')}"
