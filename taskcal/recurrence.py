"""Translate stored task recurrence rules into remote recurrence lines.

Stored rules carry their own anchor, e.g. ``DTSTART:20250310;FREQ=WEEKLY;BYDAY=MO``.
Remote events keep the anchor in the event start instead, so it is split off here
and returned separately together with EXDATE lines for finished occurrences.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable

from icalendar import vRecur

DTSTART_PATTERN = re.compile(r"DTSTART:(\d{8})(?:T(\d{6})(Z)?)?;?")
ISO_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
SUPPORTED_FREQUENCIES = {"DAILY", "WEEKLY", "MONTHLY", "YEARLY"}
UNSUPPORTED_PARTS = ("BYSECOND=", "BYMINUTE=", "BYHOUR=")


@dataclass(frozen=True)
class RemoteRecurrence:
    rule_lines: tuple[str, ...]
    anchor_date: str
    anchor_time: str | None = None
    anchor_is_utc: bool = False

    @property
    def has_time(self) -> bool:
        return self.anchor_time is not None


def _compact_to_iso(value: str) -> str:
    return f"{value[0:4]}-{value[4:6]}-{value[6:8]}"


def format_exdates(dates: Iterable[str]) -> list[str]:
    lines: list[str] = []
    seen: set[str] = set()
    for value in dates:
        text = str(value or "").strip()
        if not ISO_DATE_PATTERN.match(text) or text in seen:
            continue
        seen.add(text)
        lines.append(f"EXDATE:{text.replace('-', '')}")
    return lines


def is_remote_compatible(rule: str) -> bool:
    body = DTSTART_PATTERN.sub("", rule or "").strip().upper()
    freq = re.search(r"FREQ=([A-Z]+)", body)
    if not freq or freq.group(1) not in SUPPORTED_FREQUENCIES:
        return False
    return not any(part in body for part in UNSUPPORTED_PARTS)


def to_remote_recurrence(
    rule: str,
    completed: Iterable[str] = (),
    skipped: Iterable[str] = (),
) -> RemoteRecurrence | None:
    """Return ``None`` when the rule has no anchor or FREQ, or cannot be represented remotely."""
    if not rule:
        return None
    match = DTSTART_PATTERN.search(rule)
    if not match:
        return None

    body = DTSTART_PATTERN.sub("", rule, count=1).strip().strip(";")
    if "FREQ=" not in body.upper() or not is_remote_compatible(body):
        return None
    try:
        vRecur.from_ical(body)
    except ValueError:
        return None

    raw_time = match.group(2)
    anchor_time = f"{raw_time[0:2]}:{raw_time[2:4]}:{raw_time[4:6]}" if raw_time else None
    lines = [f"RRULE:{body}"]
    lines.extend(format_exdates([*completed, *skipped]))
    return RemoteRecurrence(
        rule_lines=tuple(lines),
        anchor_date=_compact_to_iso(match.group(1)),
        anchor_time=anchor_time,
        anchor_is_utc=bool(raw_time and match.group(3)),
    )
