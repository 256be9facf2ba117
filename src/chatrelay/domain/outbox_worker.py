"""Outbox worker - claim, deliver, retry with capped exponential backoff.

Delivery is at-least-once: a crash between the provider accepting a send and
the entry being marked sent causes a resend once the processing lease expires.

Each entry moves through its own units of work:

    claim (pending -> processing)   one UoW for the whole batch
    load message/conversation/line  read-only UoW
    provider send                   outside any UoW
    resolve (sent | pending+backoff | failed)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Literal

from chatrelay.domain import reconciler
from chatrelay.domain.errors import (
    DomainError,
    DuplicateMessageError,
    InvalidRequestError,
    MessageNotFoundError,
)
from chatrelay.domain.models import PROVIDER_MESSAGE_ID, OutboxEntry
from chatrelay.domain.outbox import OutboundPayload, compute_backoff
from chatrelay.infra.repositories.ports import UnitOfWork
from chatrelay.infra.settings import OutboxSettings
from chatrelay.infra.time import utc_now
from chatrelay.observability.logging import get_logger
from chatrelay.observability.redaction import id_prefix, safe_log_context
from chatrelay.whatsapp.ports import (
    MediaStorage,
    ProviderError,
    SendOptions,
    SendResult,
    WhatsAppProvider,
)

logger = get_logger(__name__)

DeliveryOutcome = Literal["sent", "retried", "failed"]


@dataclass(frozen=True)
class BatchResult:
    processed: int = 0
    sent: int = 0
    retried: int = 0
    failed: int = 0


def _sanitize_error(exc: Exception) -> str:
    """PII-free description for last_error."""
    if isinstance(exc, ProviderError):
        return f"ProviderError: {exc}"
    if isinstance(exc, DomainError):
        return exc.code
    return type(exc).__name__


class OutboxWorker:
    def __init__(
        self,
        uow: UnitOfWork,
        provider: WhatsAppProvider,
        media_storage: MediaStorage,
        settings: OutboxSettings,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._uow = uow
        self._provider = provider
        self._media = media_storage
        self._settings = settings
        self._clock = clock

    def process_batch(self, limit: int | None = None) -> BatchResult:
        """Claim up to `limit` due entries and deliver them one by one."""
        limit = limit or self._settings.batch_size
        now = self._clock()
        lease_cutoff = now - timedelta(seconds=self._settings.processing_lease_seconds)

        with self._uow() as repos:
            reclaimed = repos.outbox.reclaim_stale(lease_cutoff)
            entries = repos.outbox.claim_batch(limit, now)

        if reclaimed:
            logger.warning(
                "outbox entries reclaimed after lease expiry",
                extra={"extra_fields": safe_log_context(count=reclaimed)},
            )

        counts = {"sent": 0, "retried": 0, "failed": 0}
        for entry in entries:
            counts[self._deliver(entry)] += 1

        result = BatchResult(processed=len(entries), **counts)
        if entries:
            logger.info(
                "outbox batch processed",
                extra={
                    "extra_fields": safe_log_context(
                        processed=result.processed,
                        sent=result.sent,
                        retried=result.retried,
                        failed=result.failed,
                    )
                },
            )
        return result

    def _deliver(self, entry: OutboxEntry) -> DeliveryOutcome:
        if entry.attempts >= self._settings.max_attempts:
            # Reclaimed after its last allowed attempt
            self._fail_permanently(entry, entry.last_error or "max_attempts_exceeded", None)
            return "failed"

        try:
            payload = OutboundPayload.from_dict(entry.payload)
            result = self._send(entry, payload)
        except InvalidRequestError as exc:
            self._fail_permanently(entry, exc.message, entry.attempts + 1)
            return "failed"
        except Exception as exc:
            return self._retry_or_fail(entry, exc)

        # The provider accepted the send: from here on nothing may schedule a resend
        try:
            self._mark_delivered(entry, result)
        except Exception:
            logger.exception(
                "outbox bookkeeping failed after send",
                extra={
                    "extra_fields": safe_log_context(
                        outboxId=entry.id, messageId=id_prefix(entry.message_id, 16)
                    )
                },
            )
            with self._uow() as repos:
                repos.outbox.mark_sent(entry.id)

        logger.info(
            "outbox entry sent",
            extra={
                "extra_fields": safe_log_context(
                    outboxId=entry.id, messageId=entry.message_id, attempts=entry.attempts + 1
                )
            },
        )
        return "sent"

    def _send(self, entry: OutboxEntry, payload: OutboundPayload) -> SendResult:
        with self._uow() as repos:
            message = repos.messages.find_by_id(entry.workspace_id, entry.message_id)
            if message is None:
                raise MessageNotFoundError()
            conversation = repos.conversations.find_by_id(
                entry.workspace_id, message.conversation_id
            )
            number = None
            if conversation is not None and conversation.whatsapp_number_id:
                number = repos.whatsapp_numbers.find_by_id(conversation.whatsapp_number_id)

        options = SendOptions(
            reply_message_id=payload.reply_message_id,
            instance=number.instance_name if number else None,
            api_key=number.api_key if number else None,
        )

        if payload.type == "text":
            return self._provider.send_text(payload.to, payload.text or "", options)

        media_url = (
            self._media.signed_url(payload.media_path) if payload.media_path else payload.media_url
        )
        return self._provider.send_media(
            payload.to,
            media_url or "",
            payload.type,
            payload.caption or None,
            options,
        )

    def _mark_delivered(self, entry: OutboxEntry, result: SendResult) -> None:
        provider_id = result.provider_message_id
        try:
            with self._uow() as repos:
                message = repos.messages.find_by_id(entry.workspace_id, entry.message_id)
                if not provider_id:
                    repos.messages.update_status(entry.workspace_id, entry.message_id, "sent")
                elif message is None or message.external_id != provider_id:
                    repos.messages.update(
                        entry.workspace_id,
                        entry.message_id,
                        status="sent",
                        metadata={PROVIDER_MESSAGE_ID: provider_id},
                    )
                    # A status update may have beaten us here
                    reconciler.settle(repos, entry.workspace_id, provider_id, entry.message_id)
                # Otherwise the fromMe echo already linked the id and settled statuses
                repos.outbox.mark_sent(entry.id)
        except DuplicateMessageError:
            # The provider id is held by another message (an echo stored on its own)
            logger.warning(
                "provider id already taken, outbound message marked sent without it",
                extra={
                    "extra_fields": safe_log_context(
                        outboxId=entry.id, providerIdPrefix=id_prefix(provider_id or "")
                    )
                },
            )
            with self._uow() as repos:
                repos.messages.update_status(entry.workspace_id, entry.message_id, "sent")
                repos.outbox.mark_sent(entry.id)

    def _retry_or_fail(self, entry: OutboxEntry, exc: Exception) -> DeliveryOutcome:
        attempts = entry.attempts + 1
        reason = _sanitize_error(exc)

        if attempts >= self._settings.max_attempts:
            self._fail_permanently(entry, reason, attempts)
            return "failed"

        delay = compute_backoff(
            attempts,
            self._settings.backoff_base_seconds,
            self._settings.backoff_max_seconds,
        )
        next_retry_at = self._clock() + timedelta(seconds=delay)
        with self._uow() as repos:
            repos.outbox.mark_failed(entry.id, attempts, next_retry_at, reason)

        logger.warning(
            "outbox delivery failed, retry scheduled",
            extra={
                "extra_fields": safe_log_context(
                    outboxId=entry.id,
                    attempts=attempts,
                    delaySeconds=delay,
                    error=reason,
                )
            },
        )
        return "retried"

    def _fail_permanently(self, entry: OutboxEntry, reason: str, attempts: int | None) -> None:
        with self._uow() as repos:
            repos.outbox.mark_permanent_failure(entry.id, reason, attempts)
            try:
                repos.messages.update_status(entry.workspace_id, entry.message_id, "failed")
            except MessageNotFoundError:
                logger.warning(
                    "message missing for failed outbox entry",
                    extra={
                        "extra_fields": safe_log_context(
                            outboxId=entry.id, messageId=id_prefix(entry.message_id, 16)
                        )
                    },
                )

        logger.error(
            "outbox entry failed permanently",
            extra={
                "extra_fields": safe_log_context(
                    outboxId=entry.id,
                    attempts=attempts if attempts is not None else entry.attempts,
                    error=reason,
                )
            },
        )
