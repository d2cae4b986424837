from __future__ import annotations

import logging
import os
import threading
from typing import Any, Literal

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from taskcal.config_manager import MASK, ConfigManager
from taskcal.errors import TaskNotFoundError, TaskSyncError
from taskcal.service import TaskCalendarSyncService
from taskcal.state_store import StateStore

logger = logging.getLogger(__name__)


class ConfigUpdateRequest(BaseModel):
    payload: dict[str, Any] = Field(default_factory=dict)


class TaskSyncRequest(BaseModel):
    path: str = Field(min_length=1)


class TaskNotifyRequest(BaseModel):
    path: str = Field(min_length=1)
    event: Literal["updated", "completed", "deleted"]
    remote_event_id: str | None = None


class UnlinkRequest(BaseModel):
    delete_events: bool = False


class AppContext:
    def __init__(self, config_path: str, state_path: str) -> None:
        self.config_manager = ConfigManager(config_path)
        self.state_store = StateStore(state_path)
        self._lock = threading.Lock()
        self.service = self._build_service()

    def _build_service(self) -> TaskCalendarSyncService:
        return TaskCalendarSyncService(self.config_manager.load(), state_store=self.state_store)

    def connect(self) -> bool:
        if not self.service.config.caldav.is_complete():
            return False
        return self.service.connect()

    def reload(self) -> None:
        with self._lock:
            previous = self.service
            self.service = self._build_service()
        previous.destroy()
        self.connect()

    def shutdown(self) -> None:
        self.service.destroy()


def _sanitize_config_payload(payload: dict[str, Any], current: dict[str, Any]) -> dict[str, Any]:
    sanitized = dict(payload)
    current_password = str(current.get("caldav", {}).get("password", ""))
    caldav = sanitized.get("caldav")
    if isinstance(caldav, dict):
        caldav = dict(caldav)
        password = caldav.get("password")
        if password is not None and str(password).strip() in {"", MASK}:
            if current_password:
                caldav.pop("password", None)
            else:
                caldav["password"] = ""
        if caldav:
            sanitized["caldav"] = caldav
        else:
            sanitized.pop("caldav", None)
    return sanitized


def create_app() -> FastAPI:
    config_path = os.getenv("TASKCAL_CONFIG_PATH", "config.yaml")
    state_path = os.getenv("TASKCAL_STATE_PATH", "data/state.db")
    context = AppContext(config_path=config_path, state_path=state_path)

    app = FastAPI(title="taskcal admin", version="0.1.0")
    app.state.context = context

    @app.on_event("startup")
    def _startup() -> None:
        app.state.context.connect()

    @app.on_event("shutdown")
    def _shutdown() -> None:
        app.state.context.shutdown()

    @app.get("/healthz")
    def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/config")
    def get_config() -> dict[str, Any]:
        return app.state.context.config_manager.masked()

    @app.put("/api/config")
    def put_config(request: ConfigUpdateRequest) -> dict[str, Any]:
        current = app.state.context.config_manager.load().to_dict()
        sanitized_payload = _sanitize_config_payload(request.payload, current)
        app.state.context.config_manager.update(sanitized_payload)
        app.state.context.reload()
        return {
            "message": "config updated",
            "config": app.state.context.config_manager.masked(),
        }

    @app.get("/api/calendars")
    def calendars() -> dict[str, Any]:
        try:
            found = app.state.context.service.remote.list_calendars()
        except Exception as exc:
            logger.warning("Listing calendars failed: %s", exc)
            raise HTTPException(status_code=502, detail=str(exc))
        return {"calendars": [item.to_dict() for item in found]}

    @app.post("/api/sync/run")
    def trigger_sync() -> dict[str, Any]:
        result = app.state.context.service.sync_all_tasks(trigger="manual")
        return {"message": "sync completed", "result": result.to_dict()}

    @app.post("/api/tasks/sync")
    def sync_task(request: TaskSyncRequest) -> dict[str, Any]:
        try:
            synced = app.state.context.service.sync_task_now(request.path)
        except TaskNotFoundError:
            raise HTTPException(status_code=404, detail="task not found")
        except TaskSyncError as exc:
            raise HTTPException(status_code=502, detail=str(exc))
        return {"path": request.path, "synced": synced}

    @app.post("/api/tasks/notify")
    def notify_task(request: TaskNotifyRequest) -> dict[str, Any]:
        service = app.state.context.service
        if request.event == "updated":
            scheduled = service.task_updated(request.path) is not None
            return {"path": request.path, "event": request.event, "scheduled": scheduled}
        if request.event == "deleted":
            deleted = service.task_deleted(request.path, request.remote_event_id)
            return {"path": request.path, "event": request.event, "deleted": deleted}
        task = service.task_store.get_task(request.path)
        if task is None:
            raise HTTPException(status_code=404, detail="task not found")
        try:
            updated = service.task_completed(task)
        except TaskSyncError as exc:
            raise HTTPException(status_code=502, detail=str(exc))
        return {"path": request.path, "event": request.event, "updated": updated}

    @app.post("/api/links/unlink")
    def unlink(request: UnlinkRequest) -> dict[str, Any]:
        count = app.state.context.service.unlink_all_tasks(delete_events=request.delete_events)
        return {"unlinked": count}

    @app.get("/api/sync/status")
    def sync_status(limit: int = 20) -> dict[str, Any]:
        return {"runs": app.state.context.state_store.recent_sync_runs(limit=limit)}

    @app.get("/api/audit/events")
    def audit_events(limit: int = 100, path: str | None = None) -> dict[str, Any]:
        return {"events": app.state.context.state_store.recent_audit_events(limit=limit, path=path)}

    @app.get("/api/notices")
    def notices(limit: int = 50) -> dict[str, Any]:
        return {"notices": app.state.context.state_store.recent_notices(limit=limit)}

    return app
