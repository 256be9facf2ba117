"""PostgreSQL access with psycopg2.

The relay opens one short-lived connection per unit of work: txn() commits on
success and rolls back on any exception, so a webhook or outbox step either
lands completely or not at all.
"""

import os
from contextlib import contextmanager
from typing import Iterator

import psycopg2
from psycopg2.extensions import connection as PgConnection, cursor as PgCursor

APPLICATION_NAME = "chatrelay"


def get_conn() -> PgConnection:
    """Open a connection to DATABASE_URL (URL or libpq key=value DSN).

    Raises:
        RuntimeError: If DATABASE_URL is not set.
        psycopg2.Error: On connection failure.
    """
    dsn = os.environ.get("DATABASE_URL")
    if not dsn:
        raise RuntimeError("DATABASE_URL environment variable not set")
    # Tagged so relay sessions are identifiable in pg_stat_activity
    return psycopg2.connect(dsn, application_name=APPLICATION_NAME)


@contextmanager
def txn(conn: PgConnection | None = None) -> Iterator[PgCursor]:
    """Run a block in one transaction and yield its cursor.

    With no conn, a fresh connection is opened and closed on exit.
    """
    owns_conn = conn is None
    if owns_conn:
        conn = get_conn()

    try:
        with conn.cursor() as cur:
            yield cur
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        if owns_conn:
            conn.close()
