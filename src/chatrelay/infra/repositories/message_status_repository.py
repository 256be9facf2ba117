"""Pending message statuses - status updates that arrived before their message.

Uses raw SQL with psycopg2 (no ORM).
"""

from __future__ import annotations

from psycopg2.extensions import cursor as PgCursor

from chatrelay.domain.models import MessageStatus


class PgMessageStatusRepository:
    def __init__(self, cur: PgCursor) -> None:
        self._cur = cur

    def upsert_pending(
        self,
        workspace_id: str,
        provider: str,
        external_message_id: str,
        status: MessageStatus,
    ) -> None:
        # Last write wins
        self._cur.execute(
            """
            INSERT INTO message_status_pending (
                workspace_id, provider, external_message_id, status, received_at
            )
            VALUES (%s, %s, %s, %s, now())
            ON CONFLICT (workspace_id, provider, external_message_id)
            DO UPDATE SET status = EXCLUDED.status, received_at = EXCLUDED.received_at
            """,
            (workspace_id, provider, external_message_id, status),
        )

    def get_pending(
        self, workspace_id: str, provider: str, external_message_id: str
    ) -> MessageStatus | None:
        self._cur.execute(
            """
            SELECT status FROM message_status_pending
            WHERE workspace_id = %s AND provider = %s AND external_message_id = %s
            """,
            (workspace_id, provider, external_message_id),
        )
        row = self._cur.fetchone()
        return row[0] if row else None

    def delete_pending(
        self, workspace_id: str, provider: str, external_message_id: str
    ) -> None:
        self._cur.execute(
            """
            DELETE FROM message_status_pending
            WHERE workspace_id = %s AND provider = %s AND external_message_id = %s
            """,
            (workspace_id, provider, external_message_id),
        )
