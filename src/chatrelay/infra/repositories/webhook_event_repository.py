"""Webhook event audit log and idempotency keys.

Uses raw SQL with psycopg2 (no ORM). The idempotency claim is an
INSERT ... ON CONFLICT DO NOTHING; rowcount tells who won.
"""

from __future__ import annotations

import json
from typing import Any

from psycopg2.extensions import cursor as PgCursor

from chatrelay.domain.models import WebhookEvent, WebhookEventStatus

_COLUMNS = """
    id, provider, workspace_id, event_type, payload, payload_hash,
    idempotency_key, received_at, status, error
"""


def _row_to_event(row: tuple[Any, ...]) -> WebhookEvent:
    return WebhookEvent(
        id=row[0],
        provider=row[1],
        workspace_id=row[2],
        event_type=row[3],
        payload=row[4] or {},
        payload_hash=row[5],
        idempotency_key=row[6],
        received_at=row[7],
        status=row[8],
        error=row[9],
    )


class PgWebhookEventRepository:
    def __init__(self, cur: PgCursor) -> None:
        self._cur = cur

    def claim_key(self, idempotency_key: str, event_id: str) -> bool:
        self._cur.execute(
            """
            INSERT INTO webhook_idempotency_keys (idempotency_key, event_id)
            VALUES (%s, %s)
            ON CONFLICT (idempotency_key) DO NOTHING
            """,
            (idempotency_key, event_id),
        )
        return self._cur.rowcount == 1

    def insert(self, event: WebhookEvent) -> bool:
        self._cur.execute(
            """
            INSERT INTO webhook_events (
                id, provider, workspace_id, event_type, payload, payload_hash,
                idempotency_key, received_at, status, error
            )
            VALUES (%s, %s, %s, %s, %s::jsonb, %s, %s, %s, %s, %s)
            ON CONFLICT (id) DO NOTHING
            """,
            (
                event.id,
                event.provider,
                event.workspace_id,
                event.event_type,
                json.dumps(event.payload),
                event.payload_hash,
                event.idempotency_key,
                event.received_at,
                event.status,
                event.error,
            ),
        )
        return self._cur.rowcount == 1

    def get(self, event_id: str) -> WebhookEvent | None:
        self._cur.execute(
            f"SELECT {_COLUMNS} FROM webhook_events WHERE id = %s",
            (event_id,),
        )
        row = self._cur.fetchone()
        return _row_to_event(row) if row else None

    def update_status(
        self, event_id: str, status: WebhookEventStatus, error: str | None = None
    ) -> bool:
        self._cur.execute(
            "UPDATE webhook_events SET status = %s, error = %s WHERE id = %s",
            (status, error, event_id),
        )
        return self._cur.rowcount > 0
