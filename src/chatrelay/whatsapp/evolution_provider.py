"""Outbound WhatsApp messaging via Evolution API.

Security: NEVER log `to`, text or captions. Only log hashes and lengths.

No retries here: the outbox owns retry and backoff, a send is one request.
"""

from __future__ import annotations

import json
import urllib.error
import urllib.parse
import urllib.request
from typing import Any

from chatrelay.domain.identity import normalize_address
from chatrelay.domain.models import AttachmentType
from chatrelay.infra.hashing import hash_identifier
from chatrelay.infra.settings import EvolutionSettings, load_evolution_settings
from chatrelay.observability.logging import get_logger
from chatrelay.observability.redaction import safe_log_context
from chatrelay.whatsapp.ports import ProviderError, SendOptions, SendResult

logger = get_logger(__name__)

# Domain attachment type -> Evolution mediatype
_MEDIA_TYPES: dict[str, str] = {
    "image": "image",
    "video": "video",
    "audio": "audio",
    "file": "document",
}


def _do_request(
    url: str, data: bytes, headers: dict[str, str], timeout: int
) -> dict[str, Any]:
    """Execute HTTP POST request. Raises on error."""
    req = urllib.request.Request(url, data=data, headers=headers, method="POST")
    with urllib.request.urlopen(req, timeout=timeout) as resp:
        body = resp.read().decode()
    parsed = json.loads(body) if body.strip() else {}
    return parsed if isinstance(parsed, dict) else {}


def _sanitize_error(exc: Exception) -> str:
    """PII-free description of a transport error."""
    if isinstance(exc, urllib.error.HTTPError):
        return f"HTTPError {exc.code}"
    if isinstance(exc, urllib.error.URLError):
        return f"URLError: {type(exc.reason).__name__}"
    if isinstance(exc, TimeoutError):
        return "TimeoutError"
    if isinstance(exc, json.JSONDecodeError):
        return "invalid JSON response"
    return type(exc).__name__


def _extract_message_id(response: dict[str, Any]) -> str | None:
    key = response.get("key")
    value = key.get("id") if isinstance(key, dict) else None
    value = value or response.get("id") or response.get("messageId")
    return str(value) if value else None


class EvolutionWhatsAppProvider:
    """WhatsAppProvider backed by Evolution API.

    Per-line credentials in SendOptions override the configured defaults.
    Without explicit settings, config is read from the environment on first
    send, so processes that never send do not need Evolution credentials.
    """

    def __init__(self, settings: EvolutionSettings | None = None) -> None:
        self._settings = settings

    @property
    def settings(self) -> EvolutionSettings:
        if self._settings is None:
            self._settings = load_evolution_settings()
        return self._settings

    def send_text(self, to: str, text: str, options: SendOptions | None = None) -> SendResult:
        body: dict[str, Any] = {"number": normalize_address(to), "text": text}
        return self._send(
            "sendText",
            body,
            options,
            log_ctx=safe_log_context(to_hash=hash_identifier(to), text_len=len(text)),
        )

    def send_media(
        self,
        to: str,
        media_url: str,
        kind: AttachmentType,
        caption: str | None = None,
        options: SendOptions | None = None,
    ) -> SendResult:
        body: dict[str, Any] = {
            "number": normalize_address(to),
            "mediatype": _MEDIA_TYPES.get(kind, kind),
            "media": media_url,
        }
        if caption:
            body["caption"] = caption
        return self._send(
            "sendMedia",
            body,
            options,
            log_ctx=safe_log_context(to_hash=hash_identifier(to), mediatype=body["mediatype"]),
        )

    def _send(
        self,
        endpoint: str,
        body: dict[str, Any],
        options: SendOptions | None,
        log_ctx: dict[str, str],
    ) -> SendResult:
        options = options or SendOptions()
        settings = self.settings
        if options.reply_message_id:
            body["quotedMessageId"] = options.reply_message_id

        instance = options.instance or settings.instance
        url = f"{settings.base_url}/message/{endpoint}/{urllib.parse.quote(instance, safe='')}"
        headers = {
            "Content-Type": "application/json",
            "apikey": options.api_key or settings.api_key,
        }

        logger.info(
            "sending outbound message",
            extra={"extra_fields": {**log_ctx, "endpoint": endpoint}},
        )

        try:
            response = _do_request(
                url,
                json.dumps(body).encode("utf-8"),
                headers,
                settings.timeout_seconds,
            )
        except (urllib.error.URLError, TimeoutError, json.JSONDecodeError) as exc:
            status_code = exc.code if isinstance(exc, urllib.error.HTTPError) else None
            error = _sanitize_error(exc)
            logger.error(
                "outbound send failed",
                extra={"extra_fields": {**log_ctx, "endpoint": endpoint, "error": error}},
            )
            raise ProviderError(error, status_code=status_code) from exc

        provider_message_id = _extract_message_id(response)
        logger.info(
            "outbound message sent",
            extra={
                "extra_fields": {
                    **log_ctx,
                    "endpoint": endpoint,
                    "hasProviderId": str(provider_message_id is not None).lower(),
                }
            },
        )
        return SendResult(provider_message_id=provider_message_id)
