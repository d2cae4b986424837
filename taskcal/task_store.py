from __future__ import annotations

import logging
import re
import threading
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

from taskcal.errors import TaskNotFoundError
from taskcal.fileio import atomic_write_text
from taskcal.models import TaskSnapshot

logger = logging.getLogger(__name__)

FRONTMATTER_PATTERN = re.compile(r"\A---[ \t]*\r?\n(?:(.*?)\r?\n)?---[ \t]*(?:\r?\n|\Z)", re.DOTALL)


def split_frontmatter(text: str) -> tuple[dict[str, Any], str]:
    match = FRONTMATTER_PATTERN.match(text or "")
    if not match:
        return {}, text or ""
    data = yaml.safe_load(match.group(1) or "") or {}
    if not isinstance(data, dict):
        data = {}
    return data, text[match.end():]


def join_frontmatter(data: dict[str, Any], body: str) -> str:
    yaml_content = yaml.safe_dump(
        data,
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
    )
    return f"---\n{yaml_content}---\n{body}"


def _date_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        if value.second or value.microsecond:
            return value.isoformat(timespec="seconds")
        return value.isoformat(timespec="minutes")
    if isinstance(value, date):
        return value.isoformat()
    return str(value).strip()


def _as_tuple(value: Any) -> tuple[str, ...]:
    if value is None or value == "":
        return ()
    if isinstance(value, (list, tuple, set)):
        return tuple(_date_text(item) for item in value if _date_text(item))
    return (_date_text(value),)


def _as_minutes(value: Any) -> int | None:
    try:
        minutes = int(value)
    except (TypeError, ValueError):
        return None
    return minutes if minutes > 0 else None


def _as_reminders(value: Any) -> tuple[dict[str, Any], ...]:
    if not isinstance(value, list):
        return ()
    return tuple(dict(item) for item in value if isinstance(item, dict))


def snapshot_from_frontmatter(path: str, data: dict[str, Any], link_field: str) -> TaskSnapshot:
    tags = tuple(tag.lstrip("#") for tag in _as_tuple(data.get("tags")))
    remote_event_id = str(data.get(link_field) or "").strip() or None
    return TaskSnapshot(
        path=path,
        title=str(data.get("title") or Path(path).stem).strip(),
        archived=bool(data.get("archived")) or "archived" in tags,
        status=str(data.get("status") or "").strip(),
        priority=str(data.get("priority") or "").strip(),
        scheduled=_date_text(data.get("scheduled")),
        due=_date_text(data.get("due")),
        time_estimate=_as_minutes(data.get("timeEstimate")),
        recurrence=str(data.get("recurrence") or "").strip(),
        recurrence_anchor=str(data.get("recurrence_anchor") or "scheduled").strip().lower(),
        complete_instances=_as_tuple(data.get("complete_instances")),
        skipped_instances=_as_tuple(data.get("skipped_instances")),
        remote_event_id=remote_event_id,
        tags=tags,
        contexts=_as_tuple(data.get("contexts")),
        projects=_as_tuple(data.get("projects")),
        reminders=_as_reminders(data.get("reminders")),
    )


class FrontmatterTaskStore:
    """Markdown notes with YAML frontmatter; a note is a task when tagged with ``task_tag``."""

    def __init__(self, root: str | Path, *, task_tag: str = "task", link_field: str = "calendarEventId") -> None:
        self.root = Path(root)
        self.task_tag = task_tag
        self.link_field = link_field
        self._lock = threading.RLock()

    def _resolve(self, path: str) -> Path:
        root = self.root.resolve()
        full = (root / path).resolve()
        if root != full and root not in full.parents:
            raise TaskNotFoundError(path)
        return full

    def _read(self, path: str) -> tuple[dict[str, Any], str] | None:
        try:
            full = self._resolve(path)
            text = full.read_text(encoding="utf-8")
        except (FileNotFoundError, IsADirectoryError, TaskNotFoundError):
            return None
        return split_frontmatter(text)

    def _is_task(self, data: dict[str, Any]) -> bool:
        tags = {tag.lstrip("#") for tag in _as_tuple(data.get("tags"))}
        return self.task_tag in tags

    def get_task(self, path: str) -> TaskSnapshot | None:
        with self._lock:
            parsed = self._read(path)
        if parsed is None:
            return None
        data, _ = parsed
        if not self._is_task(data):
            return None
        return snapshot_from_frontmatter(path, data, self.link_field)

    def get_all_tasks(self) -> list[TaskSnapshot]:
        if not self.root.exists():
            return []
        tasks: list[TaskSnapshot] = []
        for file_path in sorted(self.root.rglob("*.md")):
            relative = file_path.relative_to(self.root).as_posix()
            try:
                task = self.get_task(relative)
            except yaml.YAMLError:
                logger.warning("Skipping %s: invalid frontmatter", relative)
                continue
            if task is not None:
                tasks.append(task)
        return tasks

    def _update_frontmatter(self, path: str, name: str, value: Any, remove: bool) -> None:
        with self._lock:
            full = self._resolve(path)
            if not full.is_file():
                raise TaskNotFoundError(path)
            data, body = split_frontmatter(full.read_text(encoding="utf-8"))
            if remove:
                if name not in data:
                    return
                data.pop(name)
            else:
                data[name] = value
            atomic_write_text(full, join_frontmatter(data, body))

    def set_field(self, path: str, name: str, value: Any) -> None:
        self._update_frontmatter(path, name, value, remove=False)

    def delete_field(self, path: str, name: str) -> None:
        self._update_frontmatter(path, name, None, remove=True)


class LinkWriteStatus(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"


class LinkStore:
    def __init__(self, task_store: Any, field_name: str) -> None:
        self.task_store = task_store
        self.field_name = field_name

    def write(self, path: str, remote_id: str) -> LinkWriteStatus:
        try:
            self.task_store.set_field(path, self.field_name, remote_id)
        except TaskNotFoundError:
            logger.warning("Cannot save event id: task file not found at %s", path)
            return LinkWriteStatus.NOT_FOUND
        return LinkWriteStatus.OK

    def clear(self, path: str) -> LinkWriteStatus:
        try:
            self.task_store.delete_field(path, self.field_name)
        except TaskNotFoundError:
            logger.warning("Cannot remove event id: task file not found at %s", path)
            return LinkWriteStatus.NOT_FOUND
        return LinkWriteStatus.OK
