"""Cloud Tasks backend for GCP deployment."""

from __future__ import annotations

import json
import os
from datetime import datetime
from typing import Any

from google.api_core.exceptions import AlreadyExists
from google.cloud import tasks_v2
from google.protobuf import timestamp_pb2

from chatrelay.observability.logging import get_logger
from chatrelay.observability.redaction import safe_log_context

logger = get_logger(__name__)


def _task_name(parent: str, task_id: str) -> str:
    # Task names allow only letters, digits, hyphens and underscores
    safe_id = "".join(ch if ch.isalnum() or ch in "-_" else "-" for ch in task_id)
    return f"{parent}/tasks/{safe_id}"


def enqueue_cloud_task(
    task_id: str,
    url_path: str,
    payload: dict[str, Any],
    correlation_id: str | None = None,
    schedule_time: datetime | None = None,
) -> bool:
    """Create a Cloud Tasks HTTP task targeting the worker.

    The task name derives from task_id, so Cloud Tasks deduplicates repeats.

    Raises:
        RuntimeError: If required env vars are not set.
    """
    project = os.environ.get("GOOGLE_CLOUD_PROJECT") or os.environ.get("GCP_PROJECT_ID")
    location = os.environ.get("GCP_LOCATION", "us-central1")
    queue = os.environ.get("GCP_TASKS_QUEUE", "chatrelay-outbox")
    worker_url = os.environ.get("WORKER_BASE_URL")
    oidc_service_account = os.environ.get("TASKS_OIDC_SERVICE_ACCOUNT")

    if not project:
        raise RuntimeError("GOOGLE_CLOUD_PROJECT or GCP_PROJECT_ID required")
    if not worker_url:
        raise RuntimeError("WORKER_BASE_URL required for Cloud Tasks")
    if not oidc_service_account:
        raise RuntimeError("TASKS_OIDC_SERVICE_ACCOUNT required for Cloud Tasks")

    client = tasks_v2.CloudTasksClient()
    parent = client.queue_path(project, location, queue)

    headers = {"Content-Type": "application/json"}
    if correlation_id:
        headers["X-Correlation-ID"] = correlation_id

    task: dict[str, Any] = {
        "name": _task_name(parent, task_id),
        "http_request": {
            "http_method": tasks_v2.HttpMethod.POST,
            "url": f"{worker_url.rstrip('/')}{url_path}",
            "headers": headers,
            "body": json.dumps(payload).encode(),
            "oidc_token": {
                "service_account_email": oidc_service_account,
                "audience": worker_url,
            },
        },
    }
    if schedule_time:
        timestamp = timestamp_pb2.Timestamp()
        timestamp.FromDatetime(schedule_time)
        task["schedule_time"] = timestamp

    try:
        response = client.create_task(parent=parent, task=task)
    except AlreadyExists:
        logger.info(
            "cloud task already exists (dedupe)",
            extra={"extra_fields": safe_log_context(task_id=task_id)},
        )
        return True

    logger.info(
        "cloud task enqueued",
        extra={"extra_fields": {"task_name": response.name, "url_path": url_path}},
    )
    return True
