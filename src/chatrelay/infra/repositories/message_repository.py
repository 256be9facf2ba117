"""Message repository - persistence for chat messages.

Uses raw SQL with psycopg2 (no ORM).
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from psycopg2 import errors as pg_errors
from psycopg2.extensions import cursor as PgCursor

from chatrelay.domain.errors import DuplicateMessageError, MessageNotFoundError
from chatrelay.domain.models import (
    PROVIDER_EVOLUTION,
    PROVIDER_MESSAGE_ID,
    Attachment,
    Message,
    MessageStatus,
)

_COLUMNS = """
    id, workspace_id, conversation_id, sender_id, type, content, status,
    reply_to_message_id, attachments, metadata, created_at, updated_at
"""


def _attachments_json(attachments: tuple[Attachment, ...]) -> str:
    return json.dumps(
        [
            {
                "id": a.id,
                "messageId": a.message_id,
                "type": a.type,
                "url": a.url,
                "thumbnailUrl": a.thumbnail_url,
                "metadata": a.metadata,
            }
            for a in attachments
        ]
    )


def _row_to_message(row: tuple[Any, ...]) -> Message:
    attachments = tuple(
        Attachment(
            id=item["id"],
            message_id=item["messageId"],
            type=item["type"],
            url=item["url"],
            thumbnail_url=item.get("thumbnailUrl"),
            metadata=item.get("metadata") or {},
        )
        for item in (row[8] or [])
    )
    return Message(
        id=row[0],
        workspace_id=row[1],
        conversation_id=row[2],
        sender_id=row[3],
        type=row[4],
        content=row[5],
        status=row[6],
        reply_to_message_id=row[7],
        attachments=attachments,
        metadata=row[9] or {},
        created_at=row[10],
        updated_at=row[11],
    )


class PgMessageRepository:
    def __init__(self, cur: PgCursor) -> None:
        self._cur = cur

    def find_by_conversation(
        self,
        workspace_id: str,
        conversation_id: str,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> list[Message]:
        query = f"SELECT {_COLUMNS} FROM messages WHERE workspace_id = %s AND conversation_id = %s"
        params: list[Any] = [workspace_id, conversation_id]
        if since is not None:
            query += " AND created_at > %s"
            params.append(since)
        query += " ORDER BY created_at ASC"
        if limit:
            query += " LIMIT %s"
            params.append(limit)

        self._cur.execute(query, params)
        return [_row_to_message(row) for row in self._cur.fetchall()]

    def find_by_id(self, workspace_id: str, message_id: str) -> Message | None:
        self._cur.execute(
            f"SELECT {_COLUMNS} FROM messages WHERE workspace_id = %s AND id = %s",
            (workspace_id, message_id),
        )
        row = self._cur.fetchone()
        return _row_to_message(row) if row else None

    def find_by_external_id(
        self, workspace_id: str, provider: str, external_id: str
    ) -> Message | None:
        self._cur.execute(
            f"""
            SELECT {_COLUMNS} FROM messages
            WHERE workspace_id = %s AND provider = %s AND external_message_id = %s
            """,
            (workspace_id, provider, external_id),
        )
        row = self._cur.fetchone()
        return _row_to_message(row) if row else None

    def save(self, message: Message) -> None:
        external_id = message.external_id
        self._cur.execute(
            """
            INSERT INTO messages (
                id, workspace_id, conversation_id, sender_id, type, content,
                status, reply_to_message_id, attachments, metadata,
                provider, external_message_id, created_at, updated_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s::jsonb, %s::jsonb, %s, %s, %s, %s)
            ON CONFLICT DO NOTHING
            """,
            (
                message.id,
                message.workspace_id,
                message.conversation_id,
                message.sender_id,
                message.type,
                message.content,
                message.status,
                message.reply_to_message_id,
                _attachments_json(message.attachments),
                json.dumps(message.metadata),
                PROVIDER_EVOLUTION if external_id else None,
                external_id,
                message.created_at,
                message.updated_at or message.created_at,
            ),
        )
        if self._cur.rowcount == 0:
            raise DuplicateMessageError()

    def update_status(
        self, workspace_id: str, message_id: str, status: MessageStatus
    ) -> None:
        self.update(workspace_id, message_id, status=status)

    def update(
        self,
        workspace_id: str,
        message_id: str,
        *,
        status: MessageStatus | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        external_id = (metadata or {}).get(PROVIDER_MESSAGE_ID)
        try:
            self._cur.execute(
                """
                UPDATE messages
                SET status = COALESCE(%s, status),
                    metadata = metadata || %s::jsonb,
                    provider = COALESCE(%s, provider),
                    external_message_id = COALESCE(%s, external_message_id),
                    updated_at = now()
                WHERE workspace_id = %s AND id = %s
                """,
                (
                    status,
                    json.dumps(metadata or {}),
                    PROVIDER_EVOLUTION if external_id else None,
                    str(external_id) if external_id else None,
                    workspace_id,
                    message_id,
                ),
            )
        except pg_errors.UniqueViolation as exc:
            raise DuplicateMessageError() from exc

        if self._cur.rowcount == 0:
            raise MessageNotFoundError()
