from __future__ import annotations

import logging
import re
from datetime import date, datetime, timedelta, timezone, tzinfo
from urllib.parse import quote
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from taskcal.models import (
    EventPayload,
    EventReminders,
    EventTime,
    ExportConfig,
    ReminderOverride,
    TaskSnapshot,
)
from taskcal.recurrence import to_remote_recurrence

logger = logging.getLogger(__name__)

UNTITLED_TASK = "Untitled task"
MAX_REMINDER_MINUTES = 40320
ISO_DURATION_PATTERN = re.compile(
    r"^(-?)P(?:(\d+)Y)?(?:(\d+)M)?(?:(\d+)W)?(?:(\d+)D)?(?:T(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?)?$"
)
# Date followed by a time, with either the ISO "T" or a space between them.
TIMED_PATTERN = re.compile(r"\d{4}-?\d{2}-?\d{2}[T ]\d")


def resolve_timezone(name: str) -> tzinfo:
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown time zone %r, falling back to UTC", name)
        return timezone.utc


def _zone_name(tz: tzinfo) -> str:
    return getattr(tz, "key", None) or "UTC"


def _format_timestamp(value: datetime) -> str:
    return value.isoformat(timespec="seconds")


def is_timed(value: str) -> bool:
    return bool(TIMED_PATTERN.match((value or "").strip()))


def parse_local_datetime(value: str, tz: tzinfo) -> datetime:
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=tz)
    return parsed.astimezone(tz)


def add_minutes(start: datetime, minutes: int) -> datetime:
    # Absolute time arithmetic so DST transitions keep the real duration.
    tz = start.tzinfo
    return (start.astimezone(timezone.utc) + timedelta(minutes=minutes)).astimezone(tz)


def event_date_source(task: TaskSnapshot, sync_trigger: str) -> tuple[str, str] | None:
    if sync_trigger == "scheduled":
        return ("scheduled", task.scheduled) if task.scheduled else None
    if sync_trigger == "due":
        return ("due", task.due) if task.due else None
    if sync_trigger == "either":
        if task.scheduled:
            return "scheduled", task.scheduled
        if task.due:
            return "due", task.due
    return None


def _all_day_span(start_day: date) -> tuple[EventTime, EventTime]:
    end_day = start_day + timedelta(days=1)
    return EventTime(date=start_day.isoformat()), EventTime(date=end_day.isoformat())


def _timed_span(start: datetime, duration_minutes: int) -> tuple[EventTime, EventTime]:
    zone = _zone_name(start.tzinfo)
    end = add_minutes(start, duration_minutes)
    return (
        EventTime(date_time=_format_timestamp(start), time_zone=zone),
        EventTime(date_time=_format_timestamp(end), time_zone=zone),
    )


def apply_title_template(task: TaskSnapshot, template: str) -> str:
    title = (
        template.replace("{{title}}", task.title or UNTITLED_TASK)
        .replace("{{status}}", task.status or "")
        .replace("{{priority}}", task.priority or "")
        .replace("{{due}}", task.due or "")
        .replace("{{scheduled}}", task.scheduled or "")
        .strip()
    )
    return title or UNTITLED_TASK


def build_completed_title(task: TaskSnapshot, settings: ExportConfig) -> str:
    title = apply_title_template(task, settings.event_title_template)
    marker = settings.completed_marker.strip()
    return f"{marker} {title}" if marker else title


def format_time_estimate(minutes: int) -> str:
    hours, rest = divmod(int(minutes), 60)
    return f"{hours}h {rest}m" if hours > 0 else f"{rest}m"


def build_task_link(task: TaskSnapshot, settings: ExportConfig, vault_name: str) -> str:
    return settings.task_link_template.replace("{vault}", quote(vault_name, safe="")).replace(
        "{path}", quote(task.path, safe="")
    )


def build_event_description(task: TaskSnapshot, settings: ExportConfig, vault_name: str = "") -> str:
    parts: list[str] = []
    if task.priority and task.priority != "none":
        parts.append(f"Priority: {task.priority}")
    if task.status:
        parts.append(f"Status: {task.status}")
    if task.due:
        parts.append(f"Due: {task.due}")
    if task.scheduled:
        parts.append(f"Scheduled: {task.scheduled}")
    if task.time_estimate:
        parts.append(f"Time estimate: {format_time_estimate(task.time_estimate)}")
    if task.tags:
        parts.append("Tags: " + ", ".join(f"#{tag}" for tag in task.tags))
    if task.contexts:
        parts.append("Contexts: " + ", ".join(f"@{context}" for context in task.contexts))
    if task.projects:
        parts.append("Projects: " + ", ".join(task.projects))

    if settings.include_task_link:
        if parts:
            parts.extend(["", "---"])
        parts.append(f"Open task: {build_task_link(task, settings, vault_name)}")
    return "\n".join(parts)


def parse_iso8601_duration(value: str) -> timedelta | None:
    match = ISO_DURATION_PATTERN.match((value or "").strip())
    if not match or value.strip() in {"P", "-P", "PT", "-PT"}:
        return None
    sign, years, months, weeks, days, hours, minutes, seconds = match.groups()
    # Months and years are approximated as 30 and 365 days.
    total = timedelta(
        days=int(years or 0) * 365 + int(months or 0) * 30 + int(weeks or 0) * 7 + int(days or 0),
        hours=int(hours or 0),
        minutes=int(minutes or 0),
        seconds=int(seconds or 0),
    )
    return -total if sign == "-" else total


def convert_task_reminders(
    task: TaskSnapshot,
    event_start: datetime,
    date_source: str,
) -> tuple[ReminderOverride, ...]:
    overrides: list[ReminderOverride] = []
    for reminder in task.reminders:
        kind = str(reminder.get("type", "")).strip()
        if kind == "relative":
            if str(reminder.get("relatedTo", "")).strip() != date_source:
                continue
            offset = parse_iso8601_duration(str(reminder.get("offset", "")))
            if offset is None:
                logger.warning("Invalid reminder offset on %s: %r", task.path, reminder.get("offset"))
                continue
            if offset > timedelta(0):
                logger.debug("Skipping reminder after event on %s", task.path)
                continue
            minutes = abs(round(offset.total_seconds() / 60))
        elif kind == "absolute":
            raw = str(reminder.get("absoluteTime", "")).strip()
            if not raw:
                continue
            try:
                remind_at = parse_local_datetime(raw, event_start.tzinfo)
            except ValueError:
                logger.warning("Invalid absolute reminder time on %s: %r", task.path, raw)
                continue
            minutes = round((event_start - remind_at).total_seconds() / 60)
            if minutes < 0:
                logger.debug("Skipping absolute reminder after event start on %s", task.path)
                continue
        else:
            continue
        overrides.append(ReminderOverride(method="popup", minutes=min(minutes, MAX_REMINDER_MINUTES)))
    return tuple(overrides)


def _build_reminders(
    task: TaskSnapshot,
    settings: ExportConfig,
    event_start: datetime,
    date_source: str,
    all_day: bool,
) -> EventReminders | None:
    overrides = convert_task_reminders(task, event_start, date_source)
    if overrides:
        return EventReminders(use_default=False, overrides=overrides)
    if settings.default_reminder_minutes is not None and settings.default_reminder_minutes > 0:
        # Minute offsets on all-day events fire the evening before; use the calendar's own default.
        if all_day:
            return EventReminders(use_default=True)
        return EventReminders(
            use_default=False,
            overrides=(ReminderOverride(method="popup", minutes=settings.default_reminder_minutes),),
        )
    return None


def build_event_payload(
    task: TaskSnapshot,
    settings: ExportConfig,
    *,
    vault_name: str = "",
    clear_recurrence: bool = False,
) -> EventPayload | None:
    source = event_date_source(task, settings.sync_trigger)
    if source is None:
        return None
    date_source, raw_date = source
    tz = resolve_timezone(settings.timezone)
    duration = task.time_estimate or settings.default_event_duration

    try:
        if is_timed(raw_date):
            event_start = parse_local_datetime(raw_date, tz)
            if settings.create_as_all_day:
                start, end = _all_day_span(event_start.date())
            else:
                start, end = _timed_span(event_start, duration)
        else:
            start_day = date.fromisoformat(raw_date.strip())
            event_start = datetime.combine(start_day, datetime.min.time(), tzinfo=tz)
            start, end = _all_day_span(start_day)
    except ValueError:
        logger.warning("Could not convert task to event, bad date %r: %s", raw_date, task.path)
        return None

    recurrence: tuple[str, ...] | None = None
    if task.syncs_as_recurring:
        remote = to_remote_recurrence(task.recurrence, task.complete_instances, task.skipped_instances)
        if remote is not None:
            recurrence = remote.rule_lines
            # The rule's own anchor wins over the task's mutable date field.
            if settings.create_as_all_day or not remote.has_time:
                start, end = _all_day_span(date.fromisoformat(remote.anchor_date))
            else:
                naive = datetime.fromisoformat(f"{remote.anchor_date}T{remote.anchor_time}")
                if remote.anchor_is_utc:
                    anchor = naive.replace(tzinfo=timezone.utc).astimezone(tz)
                else:
                    anchor = naive.replace(tzinfo=tz)
                start, end = _timed_span(anchor, duration)
        else:
            logger.info("Recurrence of %s cannot be mirrored remotely, syncing as single event", task.path)
    if recurrence is None and clear_recurrence:
        recurrence = ()

    return EventPayload(
        summary=apply_title_template(task, settings.event_title_template),
        description=build_event_description(task, settings, vault_name) if settings.include_description else None,
        start=start,
        end=end,
        color=settings.event_color or None,
        reminders=_build_reminders(task, settings, event_start, date_source, start.is_all_day),
        recurrence=recurrence,
    )
