from __future__ import annotations

import logging
import re
import uuid
from contextlib import contextmanager
from datetime import date, datetime, timedelta, timezone
from typing import Any, Iterator
from zoneinfo import ZoneInfo

import caldav
from caldav.lib import error as dav_error
from icalendar import Alarm as ICAlarm
from icalendar import Calendar as ICalendar
from icalendar import Event as ICEvent
from icalendar import vRecur

from taskcal.errors import RemoteCalendarError
from taskcal.models import CalDAVConfig, CalendarInfo, EventPayload, EventReminders, EventTime

logger = logging.getLogger(__name__)

PRODID = "-//taskcal//Task Calendar Sync//EN"
STATUS_PATTERN = re.compile(r"\b([45]\d\d)\b")
RECURRENCE_PROPERTIES = ("RRULE", "EXDATE")


def _status_from_reason(reason: Any) -> int | None:
    match = STATUS_PATTERN.search(str(reason or ""))
    return int(match.group(1)) if match else None


@contextmanager
def _remote_errors(action: str) -> Iterator[None]:
    try:
        yield
    except dav_error.NotFoundError as exc:
        raise RemoteCalendarError(f"{action}: {exc}", status=404) from exc
    except dav_error.DAVError as exc:
        status = _status_from_reason(getattr(exc, "reason", "")) or _status_from_reason(exc)
        raise RemoteCalendarError(f"{action}: {exc}", status=status) from exc


def _first_vevent(calendar_obj: ICalendar) -> ICEvent | None:
    for component in calendar_obj.walk():
        if component.name == "VEVENT":
            return component
    return None


def _decode_raw_ical(raw_data: Any) -> str:
    if isinstance(raw_data, bytes):
        return raw_data.decode("utf-8", errors="replace")
    return str(raw_data)


def event_time_value(value: EventTime) -> date | datetime:
    if value.date is not None:
        return date.fromisoformat(value.date)
    parsed = datetime.fromisoformat(value.date_time or "")
    zone = ZoneInfo(value.time_zone) if value.time_zone else timezone.utc
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=zone)
    return parsed.astimezone(zone)


def _exdate_values(lines: list[str], start: date | datetime | None) -> list[date | datetime]:
    values: list[date | datetime] = []
    for line in lines:
        compact = line.split(":", 1)[1].strip()
        day = date(int(compact[0:4]), int(compact[4:6]), int(compact[6:8]))
        # EXDATE must share the DTSTART value type.
        if isinstance(start, datetime):
            values.append(datetime.combine(day, start.timetz()))
        else:
            values.append(day)
    return values


def _apply_recurrence(vevent: ICEvent, recurrence: tuple[str, ...]) -> None:
    for name in RECURRENCE_PROPERTIES:
        vevent.pop(name, None)
    start = vevent.decoded("DTSTART") if vevent.get("DTSTART") is not None else None
    exdates: list[str] = []
    for line in recurrence:
        key, _, body = line.partition(":")
        key = key.strip().upper()
        if key == "RRULE":
            vevent.add("RRULE", vRecur.from_ical(body.strip()))
        elif key == "EXDATE":
            exdates.append(line)
    if exdates:
        vevent.add("EXDATE", _exdate_values(exdates, start))


def _apply_reminders(vevent: ICEvent, reminders: EventReminders, summary: str) -> None:
    vevent.subcomponents = [item for item in vevent.subcomponents if item.name != "VALARM"]
    if reminders.use_default:
        return
    for override in reminders.overrides:
        alarm = ICAlarm()
        alarm.add("ACTION", "DISPLAY")
        alarm.add("DESCRIPTION", summary or "Reminder")
        alarm.add("TRIGGER", timedelta(minutes=-override.minutes))
        vevent.add_component(alarm)


def apply_payload(vevent: ICEvent, payload: EventPayload) -> None:
    """Write the non-``None`` payload fields onto ``vevent``; other properties stay as they are."""
    if payload.summary is not None:
        vevent.pop("SUMMARY", None)
        vevent.add("SUMMARY", payload.summary)
    if payload.description is not None:
        vevent.pop("DESCRIPTION", None)
        vevent.add("DESCRIPTION", payload.description)
    if payload.start is not None:
        vevent.pop("DTSTART", None)
        vevent.add("DTSTART", event_time_value(payload.start))
    if payload.end is not None:
        vevent.pop("DTEND", None)
        vevent.add("DTEND", event_time_value(payload.end))
    if payload.color is not None:
        vevent.pop("COLOR", None)
        if payload.color:
            vevent.add("COLOR", payload.color)
    if payload.reminders is not None:
        _apply_reminders(vevent, payload.reminders, str(vevent.get("SUMMARY", "")))
    if payload.recurrence is not None:
        _apply_recurrence(vevent, payload.recurrence)
    vevent.pop("DTSTAMP", None)
    vevent.add("DTSTAMP", datetime.now(timezone.utc))


def build_ical(uid: str, payload: EventPayload) -> str:
    calendar_obj = ICalendar()
    calendar_obj.add("PRODID", PRODID)
    calendar_obj.add("VERSION", "2.0")
    vevent = ICEvent()
    vevent.add("UID", uid)
    apply_payload(vevent, payload)
    calendar_obj.add_component(vevent)
    calendar_obj.add_missing_timezones()
    return calendar_obj.to_ical().decode("utf-8")


class CalDAVService:
    def __init__(self, config: CalDAVConfig) -> None:
        self.config = config
        self._client: Any = None
        self._principal: Any = None
        self._calendar_cache: dict[str, Any] = {}

    def connect(self) -> None:
        if self._principal is not None:
            return
        if not self.config.is_complete():
            raise RemoteCalendarError("CalDAV config is incomplete.")
        with _remote_errors("connect"):
            self._client = caldav.DAVClient(
                url=self.config.base_url,
                username=self.config.username,
                password=self.config.password,
            )
            self._principal = self._client.principal()
        self.list_calendars()

    def is_connected(self) -> bool:
        return self._principal is not None and bool(self._calendar_cache)

    def list_calendars(self) -> list[CalendarInfo]:
        self.connect()
        calendars: list[CalendarInfo] = []
        with _remote_errors("list calendars"):
            found = self._principal.calendars()
        self._calendar_cache = {}
        for calendar in found:
            calendar_id = str(calendar.url)
            name = getattr(calendar, "name", "") or calendar_id
            self._calendar_cache[calendar_id] = calendar
            calendars.append(CalendarInfo(calendar_id=calendar_id, name=name, url=calendar_id))
        return calendars

    def _get_calendar(self, calendar_id: str) -> Any:
        self.connect()
        if calendar_id in self._calendar_cache:
            return self._calendar_cache[calendar_id]
        self.list_calendars()
        if calendar_id not in self._calendar_cache:
            raise RemoteCalendarError(f"Calendar not found: {calendar_id}")
        return self._calendar_cache[calendar_id]

    def _load(self, calendar: Any, remote_id: str) -> tuple[Any, ICalendar, ICEvent]:
        resource = calendar.event_by_uid(remote_id)
        calendar_obj = ICalendar.from_ical(_decode_raw_ical(resource.data))
        vevent = _first_vevent(calendar_obj)
        if vevent is None:
            raise RemoteCalendarError(f"VEVENT missing in resource {remote_id}", status=404)
        return resource, calendar_obj, vevent

    def create_event(self, calendar_id: str, payload: EventPayload) -> str:
        calendar = self._get_calendar(calendar_id)
        uid = f"{uuid.uuid4().hex}@taskcal"
        raw_ical = build_ical(uid, payload)
        with _remote_errors("create event"):
            calendar.save_event(raw_ical)
        logger.debug("Created event %s in %s", uid, calendar_id)
        return uid

    def update_event(self, calendar_id: str, remote_id: str, payload: EventPayload) -> None:
        calendar = self._get_calendar(calendar_id)
        with _remote_errors(f"update event {remote_id}"):
            resource, calendar_obj, vevent = self._load(calendar, remote_id)
            apply_payload(vevent, payload)
            calendar_obj.add_missing_timezones()
            resource.data = calendar_obj.to_ical().decode("utf-8")
            resource.save()
        logger.debug("Updated event %s in %s", remote_id, calendar_id)

    def delete_event(self, calendar_id: str, remote_id: str) -> None:
        calendar = self._get_calendar(calendar_id)
        with _remote_errors(f"delete event {remote_id}"):
            resource = calendar.event_by_uid(remote_id)
            resource.delete()
        logger.debug("Deleted event %s from %s", remote_id, calendar_id)
