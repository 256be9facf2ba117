"""Database URL helpers for Alembic migrations.

Kept apart from env.py so they can be tested without an alembic context.
The app connects with psycopg2 using DATABASE_URL as-is (URL or libpq
key=value DSN); Alembic needs a SQLAlchemy URL, built here.
"""

from __future__ import annotations

import os
from urllib.parse import quote_plus, urlsplit, urlunsplit

from psycopg2.extensions import parse_dsn

_DRIVER_SCHEME = "postgresql+psycopg2"


def _with_password(netloc: str, password: str) -> str:
    userinfo, _, hostport = netloc.rpartition("@")
    user = userinfo.split(":", 1)[0]
    return f"{user}:{quote_plus(password)}@{hostport}"


def url_from_uri(url: str) -> str:
    """Normalize a postgres:// or postgresql:// URI to the psycopg2 driver scheme."""
    parts = urlsplit(url)
    scheme = parts.scheme
    if scheme in ("postgres", "postgresql"):
        scheme = _DRIVER_SCHEME

    netloc = parts.netloc
    db_password = os.environ.get("DB_PASSWORD", "")
    if db_password and "@" in netloc and not parts.password:
        netloc = _with_password(netloc, db_password)

    return urlunsplit((scheme, netloc, parts.path, parts.query, parts.fragment))


def url_from_dsn(dsn: str) -> str:
    """Convert a libpq key=value DSN to a SQLAlchemy URL.

    Unix sockets (Cloud SQL) go in the query string:
        host=/cloudsql/P:R:I -> postgresql+psycopg2://U:P@/DB?host=%2Fcloudsql%2FP%3AR%3AI
    """
    params = parse_dsn(dsn)
    password = params.get("password") or os.environ.get("DB_PASSWORD", "")

    user = quote_plus(params.get("user", ""))
    dbname = quote_plus(params.get("dbname", ""))
    host = params.get("host", "localhost")
    port = params.get("port", "5432")
    credentials = f"{user}:{quote_plus(password)}"

    if host.startswith("/"):
        return f"{_DRIVER_SCHEME}://{credentials}@/{dbname}?host={quote_plus(host)}"
    return f"{_DRIVER_SCHEME}://{credentials}@{host}:{port}/{dbname}"


def get_database_url() -> str:
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is required to run migrations")
    if "://" in url:
        return url_from_uri(url)
    return url_from_dsn(url)
