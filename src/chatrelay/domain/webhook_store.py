"""Webhook event audit log with idempotency.

Every delivery attempt gets its own WebhookEvent row; only the first attempt
per idempotency key wins the claim, later ones are stored as `duplicate`.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, replace

from chatrelay.domain.models import WebhookEvent, WebhookEventStatus
from chatrelay.infra.repositories.ports import UnitOfWork
from chatrelay.observability.logging import get_logger
from chatrelay.observability.redaction import safe_log_context

logger = get_logger(__name__)


def build_idempotency_key(
    workspace_id: str,
    event_type: str | None,
    external_id: str | None,
    payload_hash: str,
) -> str:
    """`{ws}:{eventType}:{externalId}`, falling back to the payload hash."""
    return f"{workspace_id}:{event_type or ''}:{external_id or payload_hash}"


@dataclass(frozen=True)
class RecordResult:
    event: WebhookEvent
    is_duplicate: bool


class WebhookEventStore:
    def __init__(self, uow: UnitOfWork) -> None:
        self._uow = uow

    def record(self, event: WebhookEvent) -> RecordResult:
        """Persist an event and claim its idempotency key atomically.

        Returns:
            RecordResult; is_duplicate is True when another event already
            holds the key (the stored row then has status `duplicate`).
        """
        with self._uow() as repos:
            events = repos.webhook_events

            # Replays hash to the same id, possibly in a concurrent transaction;
            # the row is written first so the claim binds the id actually stored
            if not events.insert(event):
                event = replace(event, id=f"{event.id}:{uuid.uuid4().hex[:12]}")
                events.insert(event)

            claimed = events.claim_key(event.idempotency_key, event.id)
            if not claimed:
                event = replace(event, status="duplicate")
                events.update_status(event.id, "duplicate")

        if not claimed:
            logger.info(
                "webhook event duplicate",
                extra={
                    "extra_fields": safe_log_context(
                        eventId=event.id,
                        eventType=event.event_type,
                        workspaceId=event.workspace_id,
                    )
                },
            )
        return RecordResult(event=event, is_duplicate=not claimed)

    def update_status(
        self,
        event_id: str,
        status: WebhookEventStatus,
        reason: str | None = None,
    ) -> None:
        """Set the final status of an event. Unknown ids are ignored."""
        with self._uow() as repos:
            found = repos.webhook_events.update_status(event_id, status, reason)

        if not found:
            logger.warning(
                "webhook event not found for status update",
                extra={"extra_fields": safe_log_context(eventId=event_id, status=status)},
            )

    def get(self, event_id: str) -> WebhookEvent | None:
        with self._uow() as repos:
            return repos.webhook_events.get(event_id)
