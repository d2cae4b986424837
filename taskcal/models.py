from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any


SYNC_TRIGGERS = {"scheduled", "due", "either"}
DEFAULT_TITLE_TEMPLATE = "{{title}}"
DEFAULT_TASK_LINK_TEMPLATE = "obsidian://open?vault={vault}&file={path}"


def _as_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _as_int(value: Any, default: int, minimum: int = 0) -> int:
    try:
        return max(minimum, int(value))
    except (TypeError, ValueError):
        return default


def serialize_datetime(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


@dataclass
class CalDAVConfig:
    base_url: str = ""
    username: str = ""
    password: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "CalDAVConfig":
        data = data or {}
        return cls(
            base_url=str(data.get("base_url", "")).strip(),
            username=str(data.get("username", "")).strip(),
            password=str(data.get("password", "")).strip(),
        )

    def is_complete(self) -> bool:
        return bool(self.base_url and self.username)


@dataclass
class TaskStoreConfig:
    root: str = "tasks"
    task_tag: str = "task"
    link_field: str = "calendarEventId"
    vault_name: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "TaskStoreConfig":
        data = data or {}
        return cls(
            root=str(data.get("root", "tasks")).strip() or "tasks",
            task_tag=str(data.get("task_tag", "task")).strip().lstrip("#") or "task",
            link_field=str(data.get("link_field", "calendarEventId")).strip() or "calendarEventId",
            vault_name=str(data.get("vault_name", "")).strip(),
        )


@dataclass
class ExportConfig:
    enabled: bool = False
    target_calendar_id: str = ""
    sync_trigger: str = "scheduled"
    create_as_all_day: bool = False
    default_event_duration: int = 60
    timezone: str = "UTC"
    include_description: bool = True
    include_task_link: bool = True
    task_link_template: str = DEFAULT_TASK_LINK_TEMPLATE
    event_title_template: str = DEFAULT_TITLE_TEMPLATE
    completed_marker: str = "✓"
    event_color: str = ""
    default_reminder_minutes: int | None = None
    sync_on_task_update: bool = True
    sync_on_task_complete: bool = True
    sync_on_task_delete: bool = True
    debounce_ms: int = 500
    concurrency_limit: int = 5
    api_call_spacing_ms: int = 100

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "ExportConfig":
        data = data or {}
        trigger = str(data.get("sync_trigger", "scheduled")).strip().lower()
        if trigger == "both":
            trigger = "either"
        if trigger not in SYNC_TRIGGERS:
            trigger = "scheduled"
        reminder = data.get("default_reminder_minutes")
        default_reminder_minutes = None if reminder in (None, "") else _as_int(reminder, 0)
        return cls(
            enabled=_as_bool(data.get("enabled"), False),
            target_calendar_id=str(data.get("target_calendar_id", "")).strip(),
            sync_trigger=trigger,
            create_as_all_day=_as_bool(data.get("create_as_all_day"), False),
            default_event_duration=_as_int(data.get("default_event_duration", 60), 60, minimum=1),
            timezone=str(data.get("timezone", "UTC")).strip() or "UTC",
            include_description=_as_bool(data.get("include_description"), True),
            include_task_link=_as_bool(data.get("include_task_link"), True),
            task_link_template=str(data.get("task_link_template", DEFAULT_TASK_LINK_TEMPLATE)).strip()
            or DEFAULT_TASK_LINK_TEMPLATE,
            event_title_template=str(data.get("event_title_template", DEFAULT_TITLE_TEMPLATE))
            or DEFAULT_TITLE_TEMPLATE,
            completed_marker=str(data.get("completed_marker", "✓")),
            event_color=str(data.get("event_color", "") or "").strip(),
            default_reminder_minutes=default_reminder_minutes,
            sync_on_task_update=_as_bool(data.get("sync_on_task_update"), True),
            sync_on_task_complete=_as_bool(data.get("sync_on_task_complete"), True),
            sync_on_task_delete=_as_bool(data.get("sync_on_task_delete"), True),
            debounce_ms=_as_int(data.get("debounce_ms", 500), 500),
            concurrency_limit=_as_int(data.get("concurrency_limit", 5), 5, minimum=1),
            api_call_spacing_ms=_as_int(data.get("api_call_spacing_ms", 100), 100),
        )


@dataclass
class AppConfig:
    caldav: CalDAVConfig = field(default_factory=CalDAVConfig)
    task_store: TaskStoreConfig = field(default_factory=TaskStoreConfig)
    export: ExportConfig = field(default_factory=ExportConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "AppConfig":
        data = data or {}
        return cls(
            caldav=CalDAVConfig.from_dict(data.get("caldav")),
            task_store=TaskStoreConfig.from_dict(data.get("task_store")),
            export=ExportConfig.from_dict(data.get("export")),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def default_app_config() -> AppConfig:
    return AppConfig()


@dataclass
class CalendarInfo:
    calendar_id: str
    name: str
    url: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class TaskSnapshot:
    path: str
    title: str = ""
    archived: bool = False
    status: str = ""
    priority: str = ""
    scheduled: str = ""
    due: str = ""
    time_estimate: int | None = None
    recurrence: str = ""
    recurrence_anchor: str = "scheduled"
    complete_instances: tuple[str, ...] = ()
    skipped_instances: tuple[str, ...] = ()
    remote_event_id: str | None = None
    tags: tuple[str, ...] = ()
    contexts: tuple[str, ...] = ()
    projects: tuple[str, ...] = ()
    reminders: tuple[dict[str, Any], ...] = ()

    @property
    def is_linked(self) -> bool:
        return bool(self.remote_event_id)

    @property
    def syncs_as_recurring(self) -> bool:
        # Completion-anchored rules move their DTSTART on every completion.
        if not self.recurrence:
            return False
        return (self.recurrence_anchor or "scheduled") == "scheduled"


@dataclass(frozen=True)
class EventTime:
    date: str | None = None
    date_time: str | None = None
    time_zone: str | None = None

    @property
    def is_all_day(self) -> bool:
        return self.date is not None

    def to_dict(self) -> dict[str, str]:
        if self.date is not None:
            return {"date": self.date}
        payload = {"dateTime": self.date_time or ""}
        if self.time_zone:
            payload["timeZone"] = self.time_zone
        return payload


@dataclass(frozen=True)
class ReminderOverride:
    method: str
    minutes: int


@dataclass(frozen=True)
class EventReminders:
    use_default: bool
    overrides: tuple[ReminderOverride, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"useDefault": self.use_default}
        if self.overrides:
            payload["overrides"] = [asdict(item) for item in self.overrides]
        return payload


@dataclass(frozen=True)
class EventPayload:
    """Remote event fields; ``None`` means "leave untouched" when used as an update."""

    summary: str | None = None
    description: str | None = None
    start: EventTime | None = None
    end: EventTime | None = None
    color: str | None = None
    reminders: EventReminders | None = None
    recurrence: tuple[str, ...] | None = None

    @property
    def is_all_day(self) -> bool:
        return self.start is not None and self.start.is_all_day

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        if self.summary is not None:
            payload["summary"] = self.summary
        if self.description is not None:
            payload["description"] = self.description
        if self.start is not None:
            payload["start"] = self.start.to_dict()
        if self.end is not None:
            payload["end"] = self.end.to_dict()
        if self.color is not None:
            payload["color"] = self.color
        if self.reminders is not None:
            payload["reminders"] = self.reminders.to_dict()
        if self.recurrence is not None:
            payload["recurrence"] = list(self.recurrence)
        return payload


@dataclass
class BulkSyncResult:
    synced: int = 0
    failed: int = 0
    skipped: int = 0
    status: str = "success"
    duration_ms: int = 0
    run_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def total(self) -> int:
        return self.synced + self.failed + self.skipped

    def to_dict(self) -> dict[str, Any]:
        return {
            "synced": self.synced,
            "failed": self.failed,
            "skipped": self.skipped,
            "total": self.total,
            "status": self.status,
            "duration_ms": self.duration_ms,
            "run_at": serialize_datetime(self.run_at),
        }
