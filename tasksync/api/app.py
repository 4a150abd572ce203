"""FastAPI application exposing tasks, sync control and a reference authority."""

import logging
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Any

from fastapi import Body, FastAPI, HTTPException, Response
from fastapi.responses import JSONResponse

from .. import __version__
from ..config import Config
from ..errors import ValidationError
from ..models import to_iso, utc_now
from ..store import TaskStore
from ..sync import SyncEngine

logger = logging.getLogger(__name__)


def _authority_id() -> str:
    ts = int(datetime.now(timezone.utc).timestamp() * 1000)
    return f"srv_{ts}_{uuid.uuid4().hex[:9]}"


def create_app(
    config: Config,
    store: TaskStore | None = None,
    engine: SyncEngine | None = None,
) -> FastAPI:
    """Create the FastAPI application.

    Args:
        config: Application configuration.
        store: Optional TaskStore backing the task routes.
        engine: Optional SyncEngine backing the sync routes.

    Returns:
        Configured FastAPI application.
    """
    app = FastAPI(
        title="tasksync",
        description="Offline-first tasks with batched sync",
        version=__version__,
    )

    app.state.config = config
    app.state.store = store
    app.state.engine = engine

    def require_store() -> TaskStore:
        if store is None:
            raise HTTPException(status_code=503, detail="No task store available")
        return store

    def require_engine() -> SyncEngine:
        if engine is None:
            raise HTTPException(status_code=503, detail="Sync engine not configured")
        return engine

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request, exc: ValidationError):
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.exception_handler(sqlite3.Error)
    async def storage_error_handler(request, exc: sqlite3.Error):
        logger.error(f"Storage error on {request.url.path}: {exc}")
        return JSONResponse(status_code=500, content={"error": "Storage unavailable"})

    # ==================== Task Routes ====================

    @app.get("/api/tasks")
    async def list_tasks() -> list[dict[str, Any]]:
        """Get all tasks that are not deleted."""
        return [t.to_dict() for t in require_store().list_tasks()]

    @app.get("/api/tasks/{task_id}")
    async def get_task(task_id: str) -> dict[str, Any]:
        task = require_store().get_task(task_id)
        if task is None:
            raise HTTPException(status_code=404, detail="Task not found")
        return task.to_dict()

    @app.post("/api/tasks", status_code=201)
    async def create_task(body: dict[str, Any] = Body(...)) -> dict[str, Any]:
        task = require_store().create_task(
            title=body.get("title"),
            description=body.get("description"),
        )
        return task.to_dict()

    @app.put("/api/tasks/{task_id}")
    async def update_task(
        task_id: str, body: dict[str, Any] = Body(...)
    ) -> dict[str, Any]:
        # Only fields present in the body are changed
        fields = {k: body[k] for k in ("title", "description", "completed") if k in body}
        task = require_store().update_task(task_id, **fields)
        if task is None:
            raise HTTPException(status_code=404, detail="Task not found")
        return task.to_dict()

    @app.delete("/api/tasks/{task_id}", status_code=204)
    async def delete_task(task_id: str) -> Response:
        if not require_store().delete_task(task_id):
            raise HTTPException(status_code=404, detail="Task not found")
        return Response(status_code=204)

    # ==================== Sync Routes ====================

    @app.post("/api/sync")
    async def trigger_sync() -> dict[str, Any]:
        """Run a sync pass now; 503 when the authority is unreachable."""
        summary = await require_engine().run_pass()
        if summary.offline:
            raise HTTPException(
                status_code=503, detail="Service unavailable - offline"
            )
        return summary.to_dict()

    @app.get("/api/status")
    async def sync_status() -> dict[str, Any]:
        report = await require_engine().get_status()
        return report.to_dict()

    @app.post("/api/sync/retry-failed")
    async def retry_failed(body: dict[str, Any] | None = Body(None)) -> dict[str, Any]:
        """Requeue dead-lettered items, optionally for specific tasks."""
        task_ids = (body or {}).get("task_ids")
        requeued = require_engine().retry_failed(task_ids)
        return {"requeued_tasks": requeued}

    # ==================== Reference Authority ====================

    @app.post("/api/batch")
    async def batch(body: dict[str, Any] = Body(...)) -> dict[str, Any]:
        """Accept every item of a batch.

        Stand-in for the real authority when developing against a single
        process; it never reports conflicts or errors.
        """
        processed = []
        for item in body.get("items", []):
            data = item.get("data") or {}
            server_id = _authority_id()
            processed.append(
                {
                    "client_id": item.get("task_id"),
                    "server_id": server_id,
                    "status": "success",
                    "resolved_data": {
                        "id": server_id,
                        "title": data.get("title"),
                        "description": data.get("description"),
                        "completed": data.get("completed", False),
                        "is_deleted": data.get("is_deleted", False),
                        "created_at": item.get("created_at"),
                        "updated_at": to_iso(utc_now()),
                    },
                }
            )
        return {"processed_items": processed}

    @app.get("/api/health")
    async def health() -> dict[str, Any]:
        """Health check endpoint used by connectivity probes."""
        return {"status": "ok", "timestamp": to_iso(utc_now())}

    return app
