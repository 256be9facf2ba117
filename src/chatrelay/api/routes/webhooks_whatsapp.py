"""WhatsApp webhook routes - Evolution API integration.

The shared secret travels as the last URL segment
(/webhooks/whatsapp/{token}) because Evolution cannot send custom headers.

Security:
- token compared in constant time; missing secret fails closed (except local dev)
- remote JIDs and message text are never logged
- the webhook answers 2xx for everything that must not be redelivered
  (processed, duplicate, failed-but-recorded) and 4xx for bad requests
"""

from __future__ import annotations

import hmac
import json
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from chatrelay.api.deps import get_relay
from chatrelay.composition import ChatRelay
from chatrelay.domain.webhook_processor import IngestResult
from chatrelay.infra.settings import is_local_dev
from chatrelay.observability.correlation import get_correlation_id
from chatrelay.observability.logging import get_logger
from chatrelay.observability.redaction import safe_log_context
from chatrelay.whatsapp.events import instance_name

router = APIRouter(prefix="/webhooks/whatsapp", tags=["webhooks"])

logger = get_logger(__name__)


def _token_is_valid(token: str, secret: str) -> bool:
    if not secret:
        if is_local_dev():
            logger.warning(
                "EVOLUTION_WEBHOOK_SECRET not set - skipping validation (local dev)",
                extra={"extra_fields": safe_log_context(correlationId=get_correlation_id())},
            )
            return True
        logger.error(
            "EVOLUTION_WEBHOOK_SECRET not configured - rejecting webhook (fail-closed)",
            extra={"extra_fields": safe_log_context(correlationId=get_correlation_id())},
        )
        return False
    return hmac.compare_digest(token.encode("utf-8"), secret.encode("utf-8"))


def _to_response(result: IngestResult) -> JSONResponse:
    if result.outcome == "rejected":
        return JSONResponse({"error": "invalid event", "reason": result.reason}, status_code=400)
    if result.outcome == "failed":
        return JSONResponse({"ok": True}, status_code=202)
    if result.outcome == "duplicate":
        return JSONResponse({"ok": True, "duplicate": True})
    return JSONResponse({"ok": True})


@router.get("/{token}")
def webhook_url_check(token: str) -> dict:
    """Evolution calls GET when the webhook URL is saved."""
    return {"status": "ok"}


@router.post("/{token}")
async def evolution_webhook(
    token: str,
    request: Request,
    relay: ChatRelay = Depends(get_relay),
) -> JSONResponse:
    """Receive an Evolution API webhook.

    Returns:
        200 processed or duplicate.
        202 recorded but processing failed (not retried by the provider).
        400 invalid JSON, missing instance, or rejected event.
        403 bad token or unknown instance.
    """
    correlation_id = get_correlation_id()

    if not _token_is_valid(token, relay.webhook_settings.secret):
        logger.warning(
            "evolution webhook token mismatch",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return JSONResponse({"error": "invalid token"}, status_code=403)

    raw_body = await request.body()
    try:
        payload: Any = json.loads(raw_body)
    except ValueError:
        logger.warning(
            "invalid json body",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return JSONResponse({"error": "invalid json"}, status_code=400)
    if not isinstance(payload, dict):
        return JSONResponse({"error": "invalid json"}, status_code=400)

    instance = instance_name(payload)
    if instance is None:
        return JSONResponse({"error": "instance is required"}, status_code=400)

    def _find_number():
        with relay.uow() as repos:
            return repos.whatsapp_numbers.find_by_instance(instance)

    number = await run_in_threadpool(_find_number)
    if number is None:
        logger.warning(
            "webhook for unknown instance",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return JSONResponse({"error": "instance not authorized"}, status_code=403)

    result = await run_in_threadpool(
        relay.processor.ingest,
        raw_body,
        payload,
        number.workspace_id,
        number.id,
    )
    return _to_response(result)
