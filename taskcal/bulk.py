from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor

from taskcal.models import BulkSyncResult, TaskSnapshot
from taskcal.notices import LoggingNoticeSink, NoticeSink
from taskcal.state_store import StateStore
from taskcal.sync_engine import SyncExecutor

logger = logging.getLogger(__name__)


class BulkOrchestrator:
    def __init__(
        self,
        executor: SyncExecutor,
        *,
        concurrency_limit: int = 5,
        notices: NoticeSink | None = None,
        state_store: StateStore | None = None,
    ) -> None:
        self.executor = executor
        self.concurrency_limit = max(1, int(concurrency_limit))
        self.notices = notices or LoggingNoticeSink()
        self.state_store = state_store
        self._counter_lock = threading.Lock()

    def _sync_one(self, task: TaskSnapshot, result: BulkSyncResult) -> None:
        try:
            sent = self.executor.sync_task(task)
        except Exception as exc:
            logger.warning("Failed to sync task %s: %s", task.path, exc)
            sent = False
        # An eligible task that produced no event (unparseable date) counts as a failure.
        with self._counter_lock:
            if sent:
                result.synced += 1
            else:
                result.failed += 1

    def sync_all_tasks(self, trigger: str = "manual") -> BulkSyncResult:
        result = BulkSyncResult()
        if not self.executor.is_enabled():
            self.notices.notify("Calendar export is not enabled or not configured.", level="error")
            return result

        started = time.monotonic()
        try:
            all_tasks = self.executor.task_store.get_all_tasks()
        except Exception as exc:
            logger.exception("Could not enumerate tasks for bulk sync")
            self.notices.notify(f"Calendar sync failed: {exc}", level="error")
            result.status = "error"
            return result
        eligible: list[TaskSnapshot] = []
        for task in all_tasks:
            if self.executor.should_sync_task(task):
                eligible.append(task)
            else:
                result.skipped += 1

        self.notices.notify(f"Syncing {len(all_tasks)} tasks to the calendar...")

        # The pool size is the in-flight bound; calendar servers throttle bursts hard.
        with ThreadPoolExecutor(max_workers=self.concurrency_limit, thread_name_prefix="taskcal-bulk") as pool:
            for task in eligible:
                pool.submit(self._sync_one, task, result)

        result.duration_ms = int((time.monotonic() - started) * 1000)
        result.status = "success" if result.failed == 0 else "partial"
        message = f"Calendar sync complete: {result.synced} synced, {result.failed} failed, {result.skipped} skipped."
        self.notices.notify(message, level="info" if result.failed == 0 else "error")
        if self.state_store is not None:
            self.state_store.record_sync_run(
                trigger=trigger,
                status=result.status,
                message=message,
                duration_ms=result.duration_ms,
                synced=result.synced,
                failed=result.failed,
                skipped=result.skipped,
            )
        return result
