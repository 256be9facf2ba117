"""Tasks client with idempotent enqueue.

Used to kick the outbox worker right after a send is queued, so delivery
does not wait for the next poll. Backends, selected via TASKS_BACKEND:
- inline (default): records the task only; the poller delivers
- http: POSTs the task to the worker service
- cloud_tasks: creates a Google Cloud Tasks HTTP task
"""

from __future__ import annotations

import os
import threading
from datetime import datetime
from typing import Any

TASK_BACKENDS = ("inline", "http", "cloud_tasks")


class TasksClient:
    """Tasks client with idempotent enqueue by task_id (same task_id = no-op)."""

    def __init__(self, backend: str | None = None) -> None:
        self._backend = backend or os.environ.get("TASKS_BACKEND", "inline")
        if self._backend not in TASK_BACKENDS:
            raise ValueError(f"Unknown TASKS_BACKEND: {self._backend}")
        self._lock = threading.Lock()
        self._seen_ids: set[str] = set()
        self._recorded: list[dict[str, Any]] = []

    @property
    def backend(self) -> str:
        return self._backend

    def enqueue_http(
        self,
        task_id: str,
        url_path: str,
        payload: dict[str, Any],
        correlation_id: str | None = None,
        schedule_time: datetime | None = None,
    ) -> bool:
        """Enqueue an HTTP task for the worker.

        Args:
            task_id: Unique identifier for idempotency.
            url_path: Worker endpoint path (e.g., "/tasks/outbox/process").
            payload: Task data (must not contain PII).
            correlation_id: Optional correlation ID for tracing.
            schedule_time: Optional future execution time.

        Returns:
            True if the task was handed to the backend, False if task_id was
            already seen or the backend refused it.
        """
        with self._lock:
            if task_id in self._seen_ids:
                return False
            self._seen_ids.add(task_id)

        if self._backend == "inline":
            with self._lock:
                self._recorded.append(
                    {
                        "task_id": task_id,
                        "url_path": url_path,
                        "payload": payload,
                        "correlation_id": correlation_id,
                        "schedule_time": schedule_time,
                    }
                )
            return True

        if self._backend == "http":
            from chatrelay.tasks.http_backend import enqueue_http

            return enqueue_http(task_id, url_path, payload, correlation_id, schedule_time)

        from chatrelay.tasks.cloud_tasks_backend import enqueue_cloud_task

        return enqueue_cloud_task(task_id, url_path, payload, correlation_id, schedule_time)

    def was_enqueued(self, task_id: str) -> bool:
        with self._lock:
            return task_id in self._seen_ids

    def get_recorded_tasks(self) -> list[dict[str, Any]]:
        """Tasks recorded by the inline backend (useful for testing)."""
        with self._lock:
            return list(self._recorded)

    def clear(self) -> None:
        with self._lock:
            self._seen_ids.clear()
            self._recorded.clear()
