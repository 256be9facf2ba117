"""Conversation repository - one row per (workspace, conversation key).

Uses raw SQL with psycopg2 (no ORM).
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from psycopg2.extensions import cursor as PgCursor

from chatrelay.domain.errors import ConversationNotFoundError
from chatrelay.domain.models import Conversation, LastMessage, Participant

_COLUMNS = """
    id, workspace_id, contact_id, channel, participants,
    updated_at, whatsapp_number_id, last_message
"""


def _last_message_json(last_message: LastMessage | None) -> str | None:
    if last_message is None:
        return None
    return json.dumps(
        {
            "id": last_message.id,
            "content": last_message.content,
            "senderId": last_message.sender_id,
            "createdAt": last_message.created_at.isoformat(),
        }
    )


def _row_to_conversation(row: tuple[Any, ...]) -> Conversation:
    last = row[7]
    return Conversation(
        id=row[0],
        workspace_id=row[1],
        contact_id=row[2],
        channel=row[3],
        participants=tuple(
            Participant(id=p["id"], name=p["name"], avatar=p.get("avatar"))
            for p in (row[4] or [])
        ),
        updated_at=row[5],
        whatsapp_number_id=row[6],
        last_message=(
            LastMessage(
                id=last["id"],
                content=last["content"],
                sender_id=last["senderId"],
                created_at=datetime.fromisoformat(last["createdAt"]),
            )
            if last
            else None
        ),
    )


class PgConversationRepository:
    def __init__(self, cur: PgCursor) -> None:
        self._cur = cur

    def find_all(self, workspace_id: str) -> list[Conversation]:
        self._cur.execute(
            f"SELECT {_COLUMNS} FROM conversations WHERE workspace_id = %s",
            (workspace_id,),
        )
        return [_row_to_conversation(row) for row in self._cur.fetchall()]

    def find_by_id(self, workspace_id: str, conversation_id: str) -> Conversation | None:
        self._cur.execute(
            f"SELECT {_COLUMNS} FROM conversations WHERE workspace_id = %s AND id = %s",
            (workspace_id, conversation_id),
        )
        row = self._cur.fetchone()
        return _row_to_conversation(row) if row else None

    def save(self, conversation: Conversation) -> None:
        participants = json.dumps(
            [{"id": p.id, "name": p.name, "avatar": p.avatar} for p in conversation.participants]
        )
        self._cur.execute(
            """
            INSERT INTO conversations (
                id, workspace_id, contact_id, channel, participants,
                updated_at, whatsapp_number_id, last_message
            )
            VALUES (%s, %s, %s, %s, %s::jsonb, %s, %s, %s::jsonb)
            ON CONFLICT (workspace_id, id) DO UPDATE SET
                participants = EXCLUDED.participants,
                updated_at = EXCLUDED.updated_at,
                whatsapp_number_id = COALESCE(EXCLUDED.whatsapp_number_id, conversations.whatsapp_number_id),
                last_message = EXCLUDED.last_message
            """,
            (
                conversation.id,
                conversation.workspace_id,
                conversation.contact_id,
                conversation.channel,
                participants,
                conversation.updated_at,
                conversation.whatsapp_number_id,
                _last_message_json(conversation.last_message),
            ),
        )

    def update(
        self,
        workspace_id: str,
        conversation_id: str,
        *,
        last_message: LastMessage,
        updated_at: datetime,
    ) -> None:
        self._cur.execute(
            """
            UPDATE conversations
            SET last_message = %s::jsonb, updated_at = %s
            WHERE workspace_id = %s AND id = %s
            """,
            (_last_message_json(last_message), updated_at, workspace_id, conversation_id),
        )
        if self._cur.rowcount == 0:
            raise ConversationNotFoundError()
