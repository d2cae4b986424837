from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Callable, TypeVar

from taskcal.errors import RemoteCalendarError, TaskSyncError
from taskcal.event_builder import build_completed_title, build_event_description, build_event_payload
from taskcal.models import EventPayload, ExportConfig, TaskSnapshot
from taskcal.notices import LoggingNoticeSink, NoticeSink
from taskcal.recurrence import to_remote_recurrence
from taskcal.state_store import StateStore
from taskcal.task_store import LinkStore
from taskcal.throttle import CallSpacer

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SyncExecutor:
    """
    Create, update and delete the remote event linked to one task.

    Each public operation issues one mutating remote call. The only exception is the
    stale-link recovery in ``sync_task``: when the linked event is gone remotely, the
    link is cleared and the task is created again exactly once. A second failure is
    raised instead of retried, so a transport that keeps answering 404 cannot loop.
    """

    def __init__(
        self,
        settings: ExportConfig,
        remote: Any,
        task_store: Any,
        link_store: LinkStore,
        *,
        notices: NoticeSink | None = None,
        state_store: StateStore | None = None,
        spacer: CallSpacer | None = None,
        vault_name: str = "",
    ) -> None:
        self.settings = settings
        self.remote = remote
        self.task_store = task_store
        self.link_store = link_store
        self.notices = notices or LoggingNoticeSink()
        self.state_store = state_store
        self.spacer = spacer or CallSpacer(settings.api_call_spacing_ms)
        self.vault_name = vault_name

    @property
    def calendar_id(self) -> str:
        return self.settings.target_calendar_id

    def is_enabled(self) -> bool:
        if not self.settings.enabled or not self.settings.target_calendar_id:
            return False
        return bool(self.remote.is_connected())

    def should_sync_task(self, task: TaskSnapshot) -> bool:
        if not self.is_enabled() or task.archived:
            return False
        trigger = self.settings.sync_trigger
        if trigger == "scheduled":
            return bool(task.scheduled)
        if trigger == "due":
            return bool(task.due)
        if trigger == "either":
            return bool(task.scheduled or task.due)
        return False

    def build_payload(self, task: TaskSnapshot, *, clear_recurrence: bool = False) -> EventPayload | None:
        return build_event_payload(
            task,
            self.settings,
            vault_name=self.vault_name,
            clear_recurrence=clear_recurrence,
        )

    def _call(self, fn: Callable[..., T], *args: Any) -> T:
        return self.spacer.call(fn, *args)

    def _audit(self, path: str, action: str, remote_id: str | None = None, **details: Any) -> None:
        if self.state_store is None:
            return
        self.state_store.record_audit_event(path=path, action=action, remote_id=remote_id, details=details)

    def _clear_link(self, path: str, remote_id: str | None, action: str) -> None:
        status = self.link_store.clear(path)
        self._audit(path, action, remote_id, link_status=status.value)

    def sync_task(self, task: TaskSnapshot, *, allow_stale_retry: bool = True) -> bool:
        """Create or update the task's event. Returns False when nothing was sent."""
        if not self.should_sync_task(task):
            return False

        existing_id = task.remote_event_id
        # Linked events get an explicit empty recurrence so a removed rule is cleared remotely.
        payload = self.build_payload(task, clear_recurrence=bool(existing_id))
        if payload is None:
            logger.warning("Could not convert task to event: %s", task.path)
            return False

        try:
            if existing_id:
                self._call(self.remote.update_event, self.calendar_id, existing_id, payload)
                self._audit(task.path, "update_event", existing_id)
            else:
                remote_id = self._call(self.remote.create_event, self.calendar_id, payload)
                self._audit(task.path, "create_event", remote_id)
                status = self.link_store.write(task.path, remote_id)
                self._audit(task.path, "write_link", remote_id, link_status=status.value)
            return True
        except RemoteCalendarError as exc:
            if exc.not_found and existing_id and allow_stale_retry:
                logger.info("Event %s for %s no longer exists remotely, recreating", existing_id, task.path)
                self._clear_link(task.path, existing_id, "clear_stale_link")
                fresh = self.task_store.get_task(task.path)
                if fresh is None:
                    return False
                return self.sync_task(replace(fresh, remote_event_id=None), allow_stale_retry=False)
            logger.error("Failed to sync task %s: %s", task.path, exc)
            raise TaskSyncError(task.path, str(exc)) from exc
        except Exception as exc:
            logger.exception("Failed to sync task %s", task.path)
            raise TaskSyncError(task.path, str(exc)) from exc

    def complete_task(self, task: TaskSnapshot) -> bool:
        if not self.settings.sync_on_task_complete or not task.remote_event_id:
            return False
        if not self.is_enabled():
            return False

        if task.syncs_as_recurring:
            remote = to_remote_recurrence(task.recurrence, task.complete_instances, task.skipped_instances)
            if remote is not None:
                return self._update_exclusions(task, remote.rule_lines)

        payload = EventPayload(
            summary=build_completed_title(task, self.settings),
            description=(
                build_event_description(task, self.settings, self.vault_name)
                if self.settings.include_description
                else None
            ),
        )
        try:
            self._call(self.remote.update_event, self.calendar_id, task.remote_event_id, payload)
        except RemoteCalendarError as exc:
            if exc.not_found:
                self._clear_link(task.path, task.remote_event_id, "clear_stale_link")
                return False
            logger.error("Failed to update completed task %s: %s", task.path, exc)
            raise TaskSyncError(task.path, str(exc)) from exc
        except Exception as exc:
            logger.exception("Failed to update completed task %s", task.path)
            raise TaskSyncError(task.path, str(exc)) from exc
        self._audit(task.path, "mark_completed", task.remote_event_id)
        return True

    def _update_exclusions(self, task: TaskSnapshot, rule_lines: tuple[str, ...]) -> bool:
        try:
            self._call(
                self.remote.update_event,
                self.calendar_id,
                task.remote_event_id,
                EventPayload(recurrence=rule_lines),
            )
        except RemoteCalendarError as exc:
            if exc.not_found:
                self._clear_link(task.path, task.remote_event_id, "clear_stale_link")
                return False
            logger.warning("Updating exclusion dates failed for %s (%s), falling back to full sync", task.path, exc)
            return self.sync_task(task)
        except Exception as exc:
            logger.exception("Updating exclusion dates failed for %s", task.path)
            raise TaskSyncError(task.path, str(exc)) from exc
        self._audit(task.path, "update_exclusions", task.remote_event_id, exdates=len(rule_lines) - 1)
        return True

    def _delete_remote(self, path: str, remote_id: str) -> bool:
        try:
            self._call(self.remote.delete_event, self.calendar_id, remote_id)
        except RemoteCalendarError as exc:
            if not exc.not_found:
                logger.error("Failed to delete event %s for %s: %s", remote_id, path, exc)
                self._audit(path, "delete_event_failed", remote_id, error=str(exc))
                return False
        except Exception as exc:
            # Transport failures leave the remote state unknown.
            logger.error("Failed to delete event %s for %s: %s", remote_id, path, exc)
            self._audit(path, "delete_event_failed", remote_id, error=str(exc))
            return False
        self._audit(path, "delete_event", remote_id)
        return True

    def delete_task(self, task: TaskSnapshot) -> bool:
        if not self.settings.sync_on_task_delete or not task.remote_event_id:
            return False
        if not self.is_enabled():
            return False
        deleted = self._delete_remote(task.path, task.remote_event_id)
        self._clear_link(task.path, task.remote_event_id, "clear_link")
        return deleted

    def delete_task_by_path(self, path: str, remote_id: str) -> bool:
        # The task file is already gone, so there is no link to clear.
        if not self.settings.sync_on_task_delete or not remote_id:
            return False
        if not self.is_enabled():
            return False
        return self._delete_remote(path, remote_id)

    def execute_task_update(self, task: TaskSnapshot) -> bool:
        if not self.should_sync_task(task):
            if task.remote_event_id and self.is_enabled():
                return self.delete_task(task)
            return False
        return self.sync_task(task)

    def unlink_all_tasks(self, delete_events: bool = False) -> int:
        unlinked = 0
        can_delete = delete_events and self.is_enabled()
        for task in self.task_store.get_all_tasks():
            if not task.remote_event_id:
                continue
            if can_delete:
                self._delete_remote(task.path, task.remote_event_id)
            self._clear_link(task.path, task.remote_event_id, "unlink")
            unlinked += 1

        if delete_events:
            self.notices.notify(f"Deleted calendar events and unlinked {unlinked} tasks.")
        else:
            self.notices.notify(f"Unlinked {unlinked} tasks from their calendar events.")
        return unlinked
