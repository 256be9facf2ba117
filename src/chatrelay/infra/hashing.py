"""Hashing utilities for webhook identity and PII-safe logging."""

import hashlib


def hash_payload(raw_body: bytes | str) -> str:
    """SHA-256 hex digest of a raw webhook body.

    The digest identifies a delivery by content: identical bodies hash equally,
    which is what event ids and the id-less idempotency fallback rely on.
    """
    if isinstance(raw_body, str):
        raw_body = raw_body.encode("utf-8")
    return hashlib.sha256(raw_body).hexdigest()


def hash_identifier(value: str) -> str:
    """Create non-reversible hash for logging. Returns first 12 chars of sha256."""
    return hashlib.sha256(value.encode()).hexdigest()[:12]
