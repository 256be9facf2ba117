"""Outbound outbox - enqueue side and payload contract.

The payload is everything the worker needs to perform one provider send, so
delivery never depends on request state:

    {type, to, text?, mediaUrl?, mediaPath?, caption?, replyMessageId?}

`to` is the canonical contact address and `replyMessageId` is the provider
id of the quoted message. The payload holds PII; it is stored, never logged.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from chatrelay.domain.errors import InvalidRequestError
from chatrelay.domain.models import MESSAGE_TYPES, PROVIDER_EVOLUTION, MessageType, OutboxEntry
from chatrelay.infra.repositories.ports import Repositories


def compute_backoff(attempt: int, base_seconds: int, max_seconds: int) -> int:
    """Delay before retry number `attempt` (1-based): base * 2^(attempt-1), capped."""
    return min(base_seconds * 2 ** max(0, attempt - 1), max_seconds)


@dataclass(frozen=True)
class OutboundPayload:
    type: MessageType
    to: str
    text: str | None = None
    media_url: str | None = None
    media_path: str | None = None
    caption: str | None = None
    reply_message_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "type": self.type,
            "to": self.to,
            "text": self.text,
            "mediaUrl": self.media_url,
            "mediaPath": self.media_path,
            "caption": self.caption,
            "replyMessageId": self.reply_message_id,
        }
        return {k: v for k, v in data.items() if v is not None}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OutboundPayload":
        """Decode a stored payload.

        Raises:
            InvalidRequestError: If the payload cannot produce a send.
        """
        message_type = data.get("type")
        to = data.get("to")
        if not to or message_type not in MESSAGE_TYPES:
            raise InvalidRequestError("invalid_payload")

        payload = cls(
            type=message_type,
            to=str(to),
            text=data.get("text"),
            media_url=data.get("mediaUrl"),
            media_path=data.get("mediaPath"),
            caption=data.get("caption"),
            reply_message_id=data.get("replyMessageId"),
        )
        if payload.type != "text" and not (payload.media_url or payload.media_path):
            raise InvalidRequestError("media_payload_without_media")
        return payload


def enqueue(
    repos: Repositories,
    *,
    workspace_id: str,
    message_id: str,
    payload: OutboundPayload,
    provider: str = PROVIDER_EVOLUTION,
) -> OutboxEntry:
    """Add a pending entry, due immediately, inside the caller's unit of work."""
    return repos.outbox.enqueue(
        workspace_id=workspace_id,
        message_id=message_id,
        provider=provider,
        payload=payload.to_dict(),
    )
