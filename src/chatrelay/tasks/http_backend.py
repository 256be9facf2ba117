"""HTTP backend for tasks - POSTs tasks to the worker service.

Used where the public API and the worker run as separate containers on the
same network. Settings are read per call so tests can patch the environment.
"""

from __future__ import annotations

import os
from datetime import datetime
from typing import Any

import requests
from google.auth.transport.requests import Request as GoogleRequest
from google.oauth2.id_token import fetch_id_token

from chatrelay.infra.settings import is_local_dev
from chatrelay.observability.logging import get_logger
from chatrelay.observability.redaction import safe_log_context

logger = get_logger(__name__)


def _worker_base_url() -> str:
    return os.environ.get("WORKER_BASE_URL", "http://worker:8000").rstrip("/")


def _fetch_oidc_token(audience: str) -> str | None:
    """Fetch a GCP ID token for the worker audience (None if unavailable)."""
    try:
        return fetch_id_token(GoogleRequest(), audience)
    except Exception as exc:
        logger.error(
            "failed to fetch OIDC ID token",
            extra={"extra_fields": safe_log_context(audience=audience, error=type(exc).__name__)},
        )
        return None


def enqueue_http(
    task_id: str,
    url_path: str,
    payload: dict[str, Any],
    correlation_id: str | None = None,
    schedule_time: datetime | None = None,
) -> bool:
    """POST a task to the worker.

    Returns:
        True if the worker answered 2xx, False otherwise.
    """
    if schedule_time is not None:
        logger.warning(
            "HTTP backend does not support scheduled tasks",
            extra={"extra_fields": safe_log_context(task_id=task_id)},
        )
        return True

    base_url = _worker_base_url()
    headers = {
        "Content-Type": "application/json",
        "X-Correlation-ID": correlation_id or "",
        "X-Task-Id": task_id,
    }

    # Shared secret for local dev, real OIDC token elsewhere
    if is_local_dev():
        secret = os.environ.get("INTERNAL_TASK_SECRET", "")
        if secret:
            headers["X-Internal-Task-Secret"] = secret
    else:
        token = _fetch_oidc_token(base_url)
        if not token:
            logger.error(
                "HTTP task enqueue aborted: OIDC token unavailable",
                extra={"extra_fields": safe_log_context(task_id=task_id, url_path=url_path)},
            )
            return False
        headers["Authorization"] = f"Bearer {token}"

    try:
        response = requests.post(
            f"{base_url}{url_path}",
            json=payload,
            headers=headers,
            timeout=int(os.environ.get("TASKS_HTTP_TIMEOUT", "30")),
        )
        response.raise_for_status()
    except requests.RequestException as exc:
        logger.error(
            "HTTP task enqueue failed",
            extra={
                "extra_fields": safe_log_context(
                    task_id=task_id, url_path=url_path, error=type(exc).__name__
                )
            },
        )
        return False

    logger.info(
        "HTTP task enqueued",
        extra={"extra_fields": safe_log_context(task_id=task_id, url_path=url_path)},
    )
    return True
