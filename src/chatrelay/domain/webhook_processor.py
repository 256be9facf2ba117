"""Webhook event processing - provider events to messages and statuses.

ingest() is the whole inbound pipeline for one delivery:

1. record the event (audit row + idempotency claim)
2. validate: event type, timestamp window, external id for message events
3. short-circuit duplicates
4. decode and dispatch (new message / status update / ignored event)
5. map the outcome and store the final event status

Message save, pending-status settlement and the conversation write share one
unit of work, so a failure leaves neither behind.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Literal
from urllib.parse import urlencode

from chatrelay.domain import reconciler
from chatrelay.domain.errors import (
    DuplicateMessageError,
    InvalidPayloadError,
    InvalidRequestError,
    MessageNotFoundError,
)
from chatrelay.domain.identity import resolve_conversation
from chatrelay.domain.models import (
    CHANNEL_WHATSAPP,
    PROVIDER_EVOLUTION,
    PROVIDER_MESSAGE_ID,
    Attachment,
    Conversation,
    LastMessage,
    Message,
    Participant,
    WebhookEvent,
)
from chatrelay.domain.webhook_store import WebhookEventStore, build_idempotency_key
from chatrelay.infra.hashing import hash_payload
from chatrelay.infra.repositories.ports import Repositories, UnitOfWork
from chatrelay.infra.settings import WebhookSettings
from chatrelay.infra.time import epoch_seconds, from_epoch_seconds, utc_now
from chatrelay.observability.logging import get_logger
from chatrelay.observability.redaction import id_prefix, redact_string, safe_log_context
from chatrelay.whatsapp.events import (
    UPDATE_EVENTS,
    UPSERT_EVENTS,
    InboundMedia,
    MessageUpsert,
    OtherEvent,
    ProviderEvent,
    StatusUpdate,
    decode_event,
    event_timestamp,
    event_type,
    external_message_id,
    to_data_url,
)

logger = get_logger(__name__)

IngestOutcome = Literal["processed", "duplicate", "rejected", "failed"]

SYSTEM_PARTICIPANT_NAME = "Me"

_MAX_REASON_LENGTH = 200


@dataclass(frozen=True)
class IngestResult:
    outcome: IngestOutcome
    event_id: str
    reason: str | None = None


def _failure_reason(exc: Exception) -> str:
    """PII-free, bounded description of an unexpected processing error."""
    detail = redact_string(str(exc))[:_MAX_REASON_LENGTH]
    return f"{type(exc).__name__}: {detail}" if detail else type(exc).__name__


def _awaiting_provider_id(
    repos: Repositories, workspace_id: str, conversation_key: str, upsert: MessageUpsert
) -> Message | None:
    """Oldest outbound message of the conversation matching an echo and still without an id."""
    for candidate in repos.messages.find_by_conversation(workspace_id, conversation_key):
        if (
            candidate.status == "pending"
            and candidate.external_id is None
            and candidate.type == upsert.type
            and candidate.content == upsert.content
        ):
            return candidate
    return None


class WebhookProcessor:
    def __init__(
        self,
        uow: UnitOfWork,
        event_store: WebhookEventStore,
        settings: WebhookSettings,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._uow = uow
        self._store = event_store
        self._settings = settings
        self._clock = clock

    def ingest(
        self,
        raw_body: bytes | str,
        payload: dict[str, Any],
        workspace_id: str,
        whatsapp_number_id: str | None = None,
    ) -> IngestResult:
        now = self._clock()
        etype = event_type(payload)
        external_id = external_message_id(payload)
        payload_hash = hash_payload(raw_body)

        record = self._store.record(
            WebhookEvent(
                id=f"{PROVIDER_EVOLUTION}:{payload_hash}",
                provider=PROVIDER_EVOLUTION,
                workspace_id=workspace_id,
                event_type=etype,
                payload=payload,
                payload_hash=payload_hash,
                idempotency_key=build_idempotency_key(
                    workspace_id, etype, external_id, payload_hash
                ),
                received_at=now,
            )
        )
        event_id = record.event.id

        # Validated before the duplicate check: an invalid replay ends up rejected
        rejection = self._validate(payload, etype, external_id, now)
        if rejection is not None:
            return self._finish(event_id, "rejected", rejection)

        if record.is_duplicate:
            return IngestResult(outcome="duplicate", event_id=event_id)

        try:
            event = decode_event(payload)
            self.process_event(
                event,
                workspace_id=workspace_id,
                whatsapp_number_id=whatsapp_number_id,
            )
        except DuplicateMessageError as exc:
            return self._finish(event_id, "duplicate", exc.message)
        except (InvalidPayloadError, InvalidRequestError) as exc:
            return self._finish(event_id, "rejected", exc.message)
        except MessageNotFoundError as exc:
            # Status raced a delete; nothing left to update
            return self._finish(event_id, "processed", exc.message)
        except Exception as exc:
            logger.exception(
                "webhook event processing failed",
                extra={"extra_fields": safe_log_context(eventId=event_id, eventType=etype)},
            )
            return self._finish(event_id, "failed", _failure_reason(exc), log=False)

        return self._finish(event_id, "processed", None)

    def _validate(
        self,
        payload: dict[str, Any],
        etype: str | None,
        external_id: str | None,
        now: datetime,
    ) -> str | None:
        if etype is None:
            return "missing_event_type"

        timestamp = event_timestamp(payload)
        if (
            timestamp is not None
            and abs(epoch_seconds(now) - timestamp) > self._settings.max_age_seconds
        ):
            return "timestamp_out_of_range"

        if not external_id and (etype in UPSERT_EVENTS or etype in UPDATE_EVENTS):
            return "missing_external_message_id"

        return None

    def _finish(
        self,
        event_id: str,
        outcome: IngestOutcome,
        reason: str | None,
        *,
        log: bool = True,
    ) -> IngestResult:
        self._store.update_status(event_id, outcome, reason)
        if log:
            logger.info(
                "webhook event handled",
                extra={
                    "extra_fields": safe_log_context(
                        eventId=event_id, outcome=outcome, reason=reason
                    )
                },
            )
        return IngestResult(outcome=outcome, event_id=event_id, reason=reason)

    def process_event(
        self,
        event: ProviderEvent,
        *,
        workspace_id: str,
        whatsapp_number_id: str | None = None,
    ) -> None:
        """Apply a decoded event to the domain.

        Raises:
            DuplicateMessageError: Message with this external id already exists.
            InvalidAddressError: Contact address has no digits.
        """
        if isinstance(event, MessageUpsert):
            self._create_message(event, workspace_id, whatsapp_number_id)
        elif isinstance(event, StatusUpdate):
            status = reconciler.map_provider_status(event.raw_status)
            with self._uow() as repos:
                applied = reconciler.apply(repos, workspace_id, event.external_id, status)
            logger.info(
                "message status received",
                extra={
                    "extra_fields": safe_log_context(
                        externalIdPrefix=id_prefix(event.external_id),
                        status=status,
                        applied=applied,
                    )
                },
            )
        elif isinstance(event, OtherEvent):
            logger.debug(
                "webhook event ignored",
                extra={"extra_fields": safe_log_context(eventType=event.event_type)},
            )

    def _build_attachment(
        self, media: InboundMedia, external_id: str, message_id: str
    ) -> Attachment:
        attachment_id = f"att-{external_id}-{media.id_suffix}"
        if media.base64:
            url = to_data_url(media.mimetype, media.base64)
        else:
            query = urlencode({"providerMessageId": external_id, "attachmentId": attachment_id})
            url = f"{self._settings.media_proxy_path}?{query}"

        metadata: dict[str, Any] = {
            "mimeType": media.mimetype,
            "size": media.size,
            "providerSourceUrl": media.source_url,
            "directPath": media.direct_path,
        }
        if media.kind == "file":
            metadata["filename"] = media.filename or "document"
        elif media.filename:
            metadata["filename"] = media.filename
        if media.kind in ("video", "audio"):
            metadata["duration"] = media.duration

        thumbnail = None
        if media.thumbnail_base64 and media.kind in ("image", "video"):
            thumbnail = to_data_url("image/jpeg", media.thumbnail_base64)

        return Attachment(
            id=attachment_id,
            message_id=message_id,
            type=media.kind,
            url=url,
            thumbnail_url=thumbnail,
            metadata={k: v for k, v in metadata.items() if v is not None},
        )

    def _create_message(
        self,
        upsert: MessageUpsert,
        workspace_id: str,
        whatsapp_number_id: str | None,
    ) -> None:
        contact = resolve_conversation(upsert.remote_jid)
        system_id = self._settings.system_sender_id
        message_id = f"evo-{upsert.external_id}"

        attachments: tuple[Attachment, ...] = ()
        if upsert.media is not None:
            attachments = (self._build_attachment(upsert.media, upsert.external_id, message_id),)

        with self._uow() as repos:
            existing = repos.messages.find_by_external_id(
                workspace_id, PROVIDER_EVOLUTION, upsert.external_id
            )
            if existing is not None:
                raise DuplicateMessageError()

            if upsert.from_me:
                outbound = _awaiting_provider_id(
                    repos, workspace_id, contact.conversation_key, upsert
                )
                if outbound is not None:
                    repos.messages.update(
                        workspace_id,
                        outbound.id,
                        status="sent",
                        metadata={PROVIDER_MESSAGE_ID: upsert.external_id},
                    )
                    reconciler.settle(repos, workspace_id, upsert.external_id, outbound.id)
                    logger.info(
                        "provider echo linked to outbound message",
                        extra={
                            "extra_fields": safe_log_context(
                                messageId=id_prefix(outbound.id, 16),
                                externalIdPrefix=id_prefix(upsert.external_id),
                            )
                        },
                    )
                    return

            if not upsert.content and not attachments:
                logger.info(
                    "inbound message without content dropped",
                    extra={
                        "extra_fields": safe_log_context(
                            externalIdPrefix=id_prefix(upsert.external_id)
                        )
                    },
                )
                return

            now = self._clock()
            message = Message(
                id=message_id,
                workspace_id=workspace_id,
                conversation_id=contact.conversation_key,
                sender_id=system_id if upsert.from_me else contact.contact_number,
                type=upsert.type,
                content=upsert.content,
                status="sent" if upsert.from_me else "delivered",
                created_at=(
                    from_epoch_seconds(upsert.timestamp) if upsert.timestamp is not None else now
                ),
                attachments=attachments,
                metadata={PROVIDER_MESSAGE_ID: upsert.external_id},
            )
            repos.messages.save(message)
            reconciler.settle(repos, workspace_id, upsert.external_id, message.id)

            last_message = LastMessage.from_message(message)
            conversation = repos.conversations.find_by_id(workspace_id, contact.conversation_key)
            if conversation is not None:
                repos.conversations.update(
                    workspace_id,
                    conversation.id,
                    last_message=last_message,
                    updated_at=now,
                )
            else:
                contact_participant = Participant(
                    id=contact.contact_number, name=contact.contact_number
                )
                system_participant = Participant(id=system_id, name=SYSTEM_PARTICIPANT_NAME)
                participants = (
                    (system_participant, contact_participant)
                    if upsert.from_me
                    else (contact_participant, system_participant)
                )
                repos.conversations.save(
                    Conversation(
                        id=contact.conversation_key,
                        workspace_id=workspace_id,
                        contact_id=contact.conversation_key,
                        channel=CHANNEL_WHATSAPP,
                        participants=participants,
                        updated_at=now,
                        whatsapp_number_id=whatsapp_number_id,
                        last_message=last_message,
                    )
                )

        logger.info(
            "inbound message stored",
            extra={
                "extra_fields": safe_log_context(
                    messageId=id_prefix(message_id, 16),
                    type=upsert.type,
                    fromMe=upsert.from_me,
                )
            },
        )
