"""Kick the outbox worker after a send is queued.

The task payload is PII-free: it carries a batch size only, the worker claims
whatever is due. task_id is per outbox entry so repeated kicks for the same
entry collapse into one task.
"""

from chatrelay.domain.models import OutboxEntry
from chatrelay.observability.correlation import get_correlation_id
from chatrelay.tasks.client import TasksClient

OUTBOX_PROCESS_PATH = "/tasks/outbox/process"


class OutboxTrigger:
    def __init__(self, tasks_client: TasksClient, batch_size: int = 10) -> None:
        self._tasks = tasks_client
        self._batch_size = batch_size

    def __call__(self, entry: OutboxEntry) -> None:
        self._tasks.enqueue_http(
            task_id=f"outbox:{entry.id}",
            url_path=OUTBOX_PROCESS_PATH,
            payload={"limit": self._batch_size},
            correlation_id=get_correlation_id() or None,
        )
