"""Worker/internal routes (APP_ROLE=worker)."""

from fastapi import APIRouter

from chatrelay.api.routes import tasks_outbox

router = APIRouter()
router.include_router(tasks_outbox.router)


@router.get("/tasks/health")
def tasks_health() -> dict:
    """Tasks subsystem health check."""
    return {"status": "ok", "subsystem": "tasks"}
