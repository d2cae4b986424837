from __future__ import annotations

import logging
from concurrent.futures import Future
from typing import Any

from taskcal.bulk import BulkOrchestrator
from taskcal.caldav_client import CalDAVService
from taskcal.errors import TaskNotFoundError, TaskSyncError
from taskcal.models import AppConfig, BulkSyncResult, TaskSnapshot
from taskcal.notices import LoggingNoticeSink, NoticeSink, StoredNoticeSink
from taskcal.scheduler import SyncCoordinator
from taskcal.state_store import StateStore
from taskcal.sync_engine import SyncExecutor
from taskcal.task_store import FrontmatterTaskStore, LinkStore
from taskcal.throttle import CallSpacer

logger = logging.getLogger(__name__)


class TaskCalendarSyncService:
    """Entry points for callers that watch local task edits."""

    def __init__(
        self,
        config: AppConfig,
        *,
        remote: Any = None,
        task_store: Any = None,
        notices: NoticeSink | None = None,
        state_store: StateStore | None = None,
    ) -> None:
        self.config = config
        settings = config.export
        self.remote = remote if remote is not None else CalDAVService(config.caldav)
        self.task_store = (
            task_store
            if task_store is not None
            else FrontmatterTaskStore(
                config.task_store.root,
                task_tag=config.task_store.task_tag,
                link_field=config.task_store.link_field,
            )
        )
        self.link_store = LinkStore(self.task_store, config.task_store.link_field)
        if notices is None:
            notices = StoredNoticeSink(state_store) if state_store is not None else LoggingNoticeSink()
        self.notices = notices
        self.state_store = state_store
        self.executor = SyncExecutor(
            settings,
            self.remote,
            self.task_store,
            self.link_store,
            notices=notices,
            state_store=state_store,
            spacer=CallSpacer(settings.api_call_spacing_ms),
            vault_name=config.task_store.vault_name,
        )
        self.coordinator = SyncCoordinator(
            self.task_store.get_task,
            self._run_debounced,
            debounce_ms=settings.debounce_ms,
        )
        self.bulk = BulkOrchestrator(
            self.executor,
            concurrency_limit=settings.concurrency_limit,
            notices=notices,
            state_store=state_store,
        )

    def connect(self) -> bool:
        try:
            self.remote.connect()
        except Exception as exc:
            logger.warning("Calendar connection failed: %s", exc)
            return False
        return True

    def _surface(self, exc: Exception) -> None:
        self.notices.notify(f"Failed to sync task to calendar: {exc}", level="error")

    def _run_debounced(self, task: TaskSnapshot) -> bool:
        try:
            return self.executor.execute_task_update(task)
        except TaskSyncError as exc:
            self._surface(exc)
            raise

    def task_created(self, task: TaskSnapshot) -> bool:
        try:
            return self.executor.sync_task(task)
        except TaskSyncError as exc:
            self._surface(exc)
            raise

    def task_updated(self, path: str) -> Future | None:
        if not self.config.export.sync_on_task_update:
            return None
        return self.coordinator.schedule(path)

    def task_completed(self, task: TaskSnapshot) -> bool:
        try:
            return self.executor.complete_task(task)
        except TaskSyncError as exc:
            self._surface(exc)
            raise

    def task_deleted(self, path: str, remote_id: str | None) -> bool:
        if not remote_id:
            return False
        return self.executor.delete_task_by_path(path, remote_id)

    def sync_task_now(self, path: str) -> bool:
        task = self.task_store.get_task(path)
        if task is None:
            raise TaskNotFoundError(path)
        return self.task_created(task)

    def sync_all_tasks(self, trigger: str = "manual") -> BulkSyncResult:
        return self.bulk.sync_all_tasks(trigger=trigger)

    def unlink_all_tasks(self, delete_events: bool = False) -> int:
        return self.executor.unlink_all_tasks(delete_events=delete_events)

    def destroy(self) -> None:
        self.coordinator.destroy()
