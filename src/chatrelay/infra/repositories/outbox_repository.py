"""Outbox repository - durable queue of outbound provider sends.

Uses raw SQL with psycopg2 (no ORM). Claims are single conditional updates
(`WHERE status = 'pending'`) so two workers never hold the same entry.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from psycopg2.extensions import cursor as PgCursor

from chatrelay.domain.models import OutboxEntry

_COLUMNS = """
    id, workspace_id, message_id, provider, payload, status, attempts,
    next_retry_at, created_at, updated_at, last_error
"""


def _row_to_entry(row: tuple[Any, ...]) -> OutboxEntry:
    return OutboxEntry(
        id=str(row[0]),
        workspace_id=row[1],
        message_id=row[2],
        provider=row[3],
        payload=row[4] or {},
        status=row[5],
        attempts=row[6],
        next_retry_at=row[7],
        created_at=row[8],
        updated_at=row[9],
        last_error=row[10],
    )


class PgOutboxRepository:
    def __init__(self, cur: PgCursor) -> None:
        self._cur = cur

    def enqueue(
        self,
        *,
        workspace_id: str,
        message_id: str,
        provider: str,
        payload: dict[str, Any],
    ) -> OutboxEntry:
        self._cur.execute(
            f"""
            INSERT INTO message_outbox (
                workspace_id, message_id, provider, payload, status,
                attempts, next_retry_at
            )
            VALUES (%s, %s, %s, %s::jsonb, 'pending', 0, now())
            RETURNING {_COLUMNS}
            """,
            (workspace_id, message_id, provider, json.dumps(payload)),
        )
        return _row_to_entry(self._cur.fetchone())

    def get(self, outbox_id: str) -> OutboxEntry | None:
        self._cur.execute(
            f"SELECT {_COLUMNS} FROM message_outbox WHERE id = %s",
            (outbox_id,),
        )
        row = self._cur.fetchone()
        return _row_to_entry(row) if row else None

    def reclaim_stale(self, older_than: datetime) -> int:
        self._cur.execute(
            """
            UPDATE message_outbox
            SET status = 'pending',
                attempts = attempts + 1,
                last_error = 'lease_expired',
                updated_at = now()
            WHERE status = 'processing' AND updated_at < %s
            """,
            (older_than,),
        )
        return self._cur.rowcount

    def claim_batch(self, limit: int, now: datetime) -> list[OutboxEntry]:
        self._cur.execute(
            """
            SELECT id FROM message_outbox
            WHERE status = 'pending' AND next_retry_at <= %s
            ORDER BY created_at ASC
            LIMIT %s
            """,
            (now, limit),
        )
        candidate_ids = [row[0] for row in self._cur.fetchall()]

        claimed: list[OutboxEntry] = []
        for outbox_id in candidate_ids:
            self._cur.execute(
                f"""
                UPDATE message_outbox
                SET status = 'processing', updated_at = now()
                WHERE id = %s AND status = 'pending'
                RETURNING {_COLUMNS}
                """,
                (outbox_id,),
            )
            row = self._cur.fetchone()
            if row is not None:
                claimed.append(_row_to_entry(row))
        return claimed

    def mark_sent(self, outbox_id: str) -> None:
        self._cur.execute(
            """
            UPDATE message_outbox
            SET status = 'sent', last_error = NULL, updated_at = now()
            WHERE id = %s
            """,
            (outbox_id,),
        )

    def mark_failed(
        self, outbox_id: str, attempts: int, next_retry_at: datetime, reason: str
    ) -> None:
        self._cur.execute(
            """
            UPDATE message_outbox
            SET status = 'pending', attempts = %s, next_retry_at = %s,
                last_error = %s, updated_at = now()
            WHERE id = %s
            """,
            (attempts, next_retry_at, reason, outbox_id),
        )

    def mark_permanent_failure(
        self, outbox_id: str, reason: str, attempts: int | None = None
    ) -> None:
        self._cur.execute(
            """
            UPDATE message_outbox
            SET status = 'failed', attempts = COALESCE(%s, attempts),
                last_error = %s, updated_at = now()
            WHERE id = %s
            """,
            (attempts, reason, outbox_id),
        )
