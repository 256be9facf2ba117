"""Message status reconciliation.

Provider status updates may arrive before the message they describe exists.
apply() parks such updates as PendingStatus; settle() is called right after a
message gains its external id (inbound create, or the outbox worker attaching
the provider id to an outbound message) and folds the parked status in.
Both orders converge to the same final status.

Both functions run inside the caller's unit of work.
"""

from __future__ import annotations

from typing import Any

from chatrelay.domain.models import PROVIDER_EVOLUTION, MessageStatus
from chatrelay.infra.repositories.ports import Repositories

# Evolution reports ack levels as numbers or names depending on version
_STATUS_MAP: dict[Any, MessageStatus] = {
    1: "sent",
    "SERVER_ACK": "sent",
    "SENT": "sent",
    2: "delivered",
    "DELIVERY_ACK": "delivered",
    "DELIVERED": "delivered",
    3: "read",
    "READ": "read",
    "READED": "read",
}

DEFAULT_STATUS: MessageStatus = "sent"


def map_provider_status(raw: Any) -> MessageStatus:
    """Translate a provider status value. Unknown values map to `sent`."""
    if isinstance(raw, bool) or not isinstance(raw, (str, int)):
        return DEFAULT_STATUS
    if isinstance(raw, str):
        raw = raw.strip().upper()
    return _STATUS_MAP.get(raw, DEFAULT_STATUS)


def apply(
    repos: Repositories,
    workspace_id: str,
    external_id: str,
    status: MessageStatus,
    provider: str = PROVIDER_EVOLUTION,
) -> bool:
    """Apply a status to the message with this external id.

    Returns:
        True if a message was updated, False if the status was parked.
    """
    message = repos.messages.find_by_external_id(workspace_id, provider, external_id)
    if message is None:
        repos.statuses.upsert_pending(workspace_id, provider, external_id, status)
        return False

    repos.messages.update_status(workspace_id, message.id, status)
    return True


def settle(
    repos: Repositories,
    workspace_id: str,
    external_id: str,
    message_id: str,
    provider: str = PROVIDER_EVOLUTION,
) -> MessageStatus | None:
    """Apply and clear any parked status for a message that now exists."""
    pending = repos.statuses.get_pending(workspace_id, provider, external_id)
    if pending is None:
        return None

    repos.messages.update_status(workspace_id, message_id, pending)
    repos.statuses.delete_pending(workspace_id, provider, external_id)
    return pending
