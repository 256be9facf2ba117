"""Chat relay schema (SQL-only).

Revision ID: 001_chatrelay_schema
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op


# revision identifiers, used by Alembic.
revision = "001_chatrelay_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    conn = op.get_bind()

    conn.exec_driver_sql("""
        CREATE TABLE whatsapp_numbers (
            id             TEXT PRIMARY KEY,
            workspace_id   TEXT NOT NULL,
            instance_name  TEXT NOT NULL UNIQUE,
            api_key        TEXT,
            created_at     TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)

    conn.exec_driver_sql("""
        CREATE TABLE conversations (
            workspace_id        TEXT NOT NULL,
            id                  TEXT NOT NULL,
            contact_id          TEXT NOT NULL,
            channel             TEXT NOT NULL,
            participants        JSONB NOT NULL DEFAULT '[]'::jsonb,
            whatsapp_number_id  TEXT,
            last_message        JSONB,
            updated_at          TIMESTAMPTZ NOT NULL DEFAULT now(),
            PRIMARY KEY (workspace_id, id)
        )
    """)
    conn.exec_driver_sql("""
        CREATE INDEX idx_conversations_updated
            ON conversations(workspace_id, updated_at DESC)
    """)

    conn.exec_driver_sql("""
        CREATE TABLE messages (
            workspace_id         TEXT NOT NULL,
            id                   TEXT NOT NULL,
            conversation_id      TEXT NOT NULL,
            sender_id            TEXT NOT NULL,
            type                 TEXT NOT NULL
                CHECK (type IN ('text', 'image', 'video', 'audio', 'file')),
            content              TEXT NOT NULL DEFAULT '',
            status               TEXT NOT NULL
                CHECK (status IN ('pending', 'sent', 'delivered', 'read', 'failed')),
            reply_to_message_id  TEXT,
            attachments          JSONB NOT NULL DEFAULT '[]'::jsonb,
            metadata             JSONB NOT NULL DEFAULT '{}'::jsonb,
            provider             TEXT,
            external_message_id  TEXT,
            created_at           TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at           TIMESTAMPTZ NOT NULL DEFAULT now(),
            PRIMARY KEY (workspace_id, id),
            UNIQUE (workspace_id, provider, external_message_id)
        )
    """)
    conn.exec_driver_sql("""
        CREATE INDEX idx_messages_conversation_created
            ON messages(workspace_id, conversation_id, created_at)
    """)

    conn.exec_driver_sql("""
        CREATE TABLE message_status_pending (
            workspace_id         TEXT NOT NULL,
            provider             TEXT NOT NULL,
            external_message_id  TEXT NOT NULL,
            status               TEXT NOT NULL
                CHECK (status IN ('sent', 'delivered', 'read')),
            received_at          TIMESTAMPTZ NOT NULL DEFAULT now(),
            PRIMARY KEY (workspace_id, provider, external_message_id)
        )
    """)

    conn.exec_driver_sql("""
        CREATE TABLE message_outbox (
            id             UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            workspace_id   TEXT NOT NULL,
            message_id     TEXT NOT NULL,
            provider       TEXT NOT NULL,
            payload        JSONB NOT NULL,
            status         TEXT NOT NULL
                CHECK (status IN ('pending', 'processing', 'sent', 'failed')),
            attempts       INT NOT NULL DEFAULT 0,
            next_retry_at  TIMESTAMPTZ NOT NULL DEFAULT now(),
            last_error     TEXT,
            created_at     TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at     TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)
    conn.exec_driver_sql("""
        CREATE INDEX idx_message_outbox_due
            ON message_outbox(status, next_retry_at)
    """)

    conn.exec_driver_sql("""
        CREATE TABLE webhook_events (
            id               TEXT PRIMARY KEY,
            provider         TEXT NOT NULL,
            workspace_id     TEXT NOT NULL,
            event_type       TEXT,
            payload          JSONB NOT NULL,
            payload_hash     TEXT NOT NULL,
            idempotency_key  TEXT NOT NULL,
            received_at      TIMESTAMPTZ NOT NULL DEFAULT now(),
            status           TEXT NOT NULL
                CHECK (status IN ('received', 'processed', 'duplicate', 'rejected', 'failed')),
            error            TEXT
        )
    """)

    conn.exec_driver_sql("""
        CREATE TABLE webhook_idempotency_keys (
            idempotency_key  TEXT PRIMARY KEY,
            event_id         TEXT NOT NULL,
            created_at       TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)


def downgrade() -> None:
    conn = op.get_bind()
    for table in (
        "webhook_idempotency_keys",
        "webhook_events",
        "message_outbox",
        "message_status_pending",
        "messages",
        "conversations",
        "whatsapp_numbers",
    ):
        conn.exec_driver_sql(f"DROP TABLE IF EXISTS {table}")
