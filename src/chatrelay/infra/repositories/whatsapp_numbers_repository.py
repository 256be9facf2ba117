"""WhatsApp numbers (provider lines) - instance to workspace mapping.

Uses raw SQL with psycopg2 (no ORM).
"""

from __future__ import annotations

from psycopg2.extensions import cursor as PgCursor

from chatrelay.domain.models import WhatsAppNumber


class PgWhatsAppNumberRepository:
    def __init__(self, cur: PgCursor) -> None:
        self._cur = cur

    def find_by_instance(self, instance_name: str) -> WhatsAppNumber | None:
        self._cur.execute(
            """
            SELECT id, workspace_id, instance_name, api_key
            FROM whatsapp_numbers
            WHERE instance_name = %s
            """,
            (instance_name,),
        )
        row = self._cur.fetchone()
        return WhatsAppNumber(*row) if row else None

    def find_by_id(self, whatsapp_number_id: str) -> WhatsAppNumber | None:
        self._cur.execute(
            """
            SELECT id, workspace_id, instance_name, api_key
            FROM whatsapp_numbers
            WHERE id = %s
            """,
            (whatsapp_number_id,),
        )
        row = self._cur.fetchone()
        return WhatsAppNumber(*row) if row else None
