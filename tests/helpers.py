"""Shared test helpers for chatrelay tests.

Regular functions and fakes, importable by conftest.py and test modules.
These are NOT fixtures.
"""

from __future__ import annotations

import json
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterator

from chatrelay.infra.time import epoch_seconds
from chatrelay.whatsapp.ports import SendOptions, SendResult

TEST_WORKSPACE = "ws-test"
TEST_INSTANCE = "inst-test"
NUMBER_ID = "num-test"
LINE_API_KEY = "line-api-key"
WEBHOOK_SECRET = "hook-secret"
MEDIA_BASE_URL = "https://cdn.example.com"

CONTACT_NUMBER = "5511999999999"
CONTACT_JID = f"{CONTACT_NUMBER}@s.whatsapp.net"


class FakeClock:
    """Controllable clock; call it to read, advance() to move forward."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class FakeProvider:
    """WhatsAppProvider that records sends.

    error: exception raised by every send while set.
    return_ids: hand out PROV-1, PROV-2, ...; False means "no id in response".
    on_send: called with the provider id before the send returns, like a
        webhook echo that reaches the relay ahead of the response.
    """

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.error: Exception | None = None
        self.return_ids = True
        self.on_send: Callable[[str | None], None] | None = None
        self._lock = threading.Lock()
        self._counter = 0

    def _record(self, call: dict[str, Any]) -> SendResult:
        with self._lock:
            self.sent.append(call)
            if self.error is not None:
                raise self.error
            self._counter += 1
            provider_id = f"PROV-{self._counter}" if self.return_ids else None
        if self.on_send is not None:
            self.on_send(provider_id)
        return SendResult(provider_message_id=provider_id)

    def send_text(self, to: str, text: str, options: SendOptions | None = None) -> SendResult:
        return self._record({"kind": "text", "to": to, "text": text, "options": options})

    def send_media(
        self,
        to: str,
        media_url: str,
        kind: str,
        caption: str | None = None,
        options: SendOptions | None = None,
    ) -> SendResult:
        return self._record(
            {
                "kind": kind,
                "to": to,
                "media_url": media_url,
                "caption": caption,
                "options": options,
            }
        )


def upsert_payload(
    external_id: str = "3EB0ABC123",
    text: str | None = "oi",
    *,
    remote_jid: str = CONTACT_JID,
    from_me: bool = False,
    timestamp: int | None = None,
    message: dict[str, Any] | None = None,
    instance: str = TEST_INSTANCE,
) -> dict[str, Any]:
    """Evolution messages.upsert payload."""
    if message is None:
        message = {"conversation": text} if text is not None else {}
    return {
        "event": "messages.upsert",
        "instance": instance,
        "data": {
            "key": {"remoteJid": remote_jid, "fromMe": from_me, "id": external_id},
            "message": message,
            "messageTimestamp": timestamp,
        },
    }


def status_payload(
    external_id: str,
    status: Any,
    *,
    instance: str = TEST_INSTANCE,
) -> dict[str, Any]:
    """Evolution messages.update payload (flat status variant)."""
    return {
        "event": "messages.update",
        "instance": instance,
        "data": {"keyId": external_id, "status": status},
    }


def now_ts(clock: FakeClock) -> int:
    return epoch_seconds(clock())


def raw(payload: dict[str, Any]) -> bytes:
    return json.dumps(payload).encode("utf-8")


class _ListHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__()
        self.records: list[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)


@contextmanager
def capture_logs(logger_name: str) -> Iterator[list[str]]:
    """Collect formatted JSON lines of one chatrelay logger.

    chatrelay loggers do not propagate, so caplog cannot see them.
    """
    from chatrelay.observability.logging import JsonFormatter, get_logger

    logger = get_logger(logger_name)
    handler = _ListHandler()
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)
    lines: list[str] = []
    try:
        yield lines
    finally:
        logger.removeHandler(handler)
        lines.extend(handler.format(r) for r in handler.records)
