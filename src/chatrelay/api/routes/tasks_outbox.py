"""Worker task: process one outbox batch.

Triggered by the tasks backend right after a send is queued, or by a
scheduler. Concurrent calls are safe: the claim is the only exclusion point.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field

from chatrelay.api.deps import get_relay
from chatrelay.api.task_auth import verify_task_auth
from chatrelay.composition import ChatRelay
from chatrelay.observability.correlation import get_correlation_id
from chatrelay.observability.logging import get_logger
from chatrelay.observability.redaction import safe_log_context

router = APIRouter(prefix="/tasks/outbox", tags=["tasks"])

logger = get_logger(__name__)


class ProcessOutboxRequest(BaseModel):
    limit: int = Field(10, ge=1, le=100)


@router.post("/process")
async def process_outbox(
    request: Request,
    req: ProcessOutboxRequest | None = None,
    relay: ChatRelay = Depends(get_relay),
) -> dict:
    """Claim and deliver up to `limit` due outbox entries.

    Returns:
        Batch counters: processed, sent, retried, failed.
    """
    if not verify_task_auth(request):
        logger.warning(
            "task auth failed",
            extra={"extra_fields": safe_log_context(correlationId=get_correlation_id())},
        )
        raise HTTPException(status_code=401, detail="Unauthorized")

    limit = (req or ProcessOutboxRequest()).limit
    result = await run_in_threadpool(relay.outbox_worker.process_batch, limit)
    return {
        "processed": result.processed,
        "sent": result.sent,
        "retried": result.retried,
        "failed": result.failed,
    }
