import unittest
from datetime import timedelta

from taskcal.event_builder import (
    MAX_REMINDER_MINUTES,
    build_completed_title,
    build_event_description,
    build_event_payload,
    format_time_estimate,
    parse_iso8601_duration,
)
from taskcal.models import EventReminders, EventTime, ReminderOverride, TaskSnapshot
from tests.fakes import make_settings

WEEKLY_RULE = "DTSTART:20250310;FREQ=WEEKLY;BYDAY=MO"


class EventPayloadTests(unittest.TestCase):
    def test_date_only_task_becomes_all_day_event(self) -> None:
        task = TaskSnapshot(path="Tasks/report.md", title="Write report", scheduled="2025-03-10")
        payload = build_event_payload(task, make_settings())
        assert payload is not None
        self.assertEqual(payload.summary, "Write report")
        self.assertEqual(payload.start, EventTime(date="2025-03-10"))
        self.assertEqual(payload.end, EventTime(date="2025-03-11"))
        self.assertEqual(payload.description, "Scheduled: 2025-03-10")
        self.assertIsNone(payload.recurrence)

    def test_timed_task_uses_time_estimate(self) -> None:
        task = TaskSnapshot(
            path="Tasks/report.md",
            title="Write report",
            scheduled="2025-03-10T15:00",
            time_estimate=90,
        )
        payload = build_event_payload(task, make_settings())
        assert payload is not None
        self.assertEqual(payload.start, EventTime(date_time="2025-03-10T15:00:00+00:00", time_zone="UTC"))
        self.assertEqual(payload.end, EventTime(date_time="2025-03-10T16:30:00+00:00", time_zone="UTC"))

    def test_timed_task_defaults_to_configured_duration(self) -> None:
        task = TaskSnapshot(path="a.md", title="Call", scheduled="2025-03-10T15:00")
        payload = build_event_payload(task, make_settings(default_event_duration=30))
        assert payload is not None
        self.assertEqual(payload.end.date_time, "2025-03-10T15:30:00+00:00")

    def test_space_separated_time_is_timed(self) -> None:
        task = TaskSnapshot(path="a.md", title="Call", scheduled="2025-03-10 15:00")
        payload = build_event_payload(task, make_settings(default_event_duration=30))
        assert payload is not None
        self.assertEqual(payload.start, EventTime(date_time="2025-03-10T15:00:00+00:00", time_zone="UTC"))
        self.assertEqual(payload.end.date_time, "2025-03-10T15:30:00+00:00")

    def test_duration_crossing_dst_keeps_real_length(self) -> None:
        task = TaskSnapshot(path="a.md", title="Night job", scheduled="2025-03-09T01:30")
        payload = build_event_payload(task, make_settings(timezone="America/New_York"))
        assert payload is not None
        self.assertEqual(payload.start.date_time, "2025-03-09T01:30:00-05:00")
        self.assertEqual(payload.end.date_time, "2025-03-09T03:30:00-04:00")
        self.assertEqual(payload.start.time_zone, "America/New_York")

    def test_create_as_all_day_drops_time(self) -> None:
        task = TaskSnapshot(path="a.md", title="Call", scheduled="2025-03-10T15:00")
        payload = build_event_payload(task, make_settings(create_as_all_day=True))
        assert payload is not None
        self.assertEqual(payload.start, EventTime(date="2025-03-10"))
        self.assertEqual(payload.end, EventTime(date="2025-03-11"))

    def test_sync_trigger_selects_date_field(self) -> None:
        task = TaskSnapshot(path="a.md", title="Pay rent", due="2025-04-01")
        self.assertIsNone(build_event_payload(task, make_settings(sync_trigger="scheduled")))
        due_payload = build_event_payload(task, make_settings(sync_trigger="due"))
        assert due_payload is not None
        self.assertEqual(due_payload.start, EventTime(date="2025-04-01"))

        both = TaskSnapshot(path="a.md", title="Pay rent", scheduled="2025-03-28", due="2025-04-01")
        either_payload = build_event_payload(both, make_settings(sync_trigger="either"))
        assert either_payload is not None
        self.assertEqual(either_payload.start, EventTime(date="2025-03-28"))

    def test_invalid_dates_produce_no_payload(self) -> None:
        settings = make_settings()
        self.assertIsNone(build_event_payload(TaskSnapshot(path="a.md", scheduled="2025-13-45"), settings))
        self.assertIsNone(build_event_payload(TaskSnapshot(path="a.md", scheduled="2025-03-10T25:00"), settings))
        self.assertIsNone(build_event_payload(TaskSnapshot(path="a.md"), settings))

    def test_untitled_task_and_title_template(self) -> None:
        settings = make_settings(event_title_template="{{title}} [{{priority}}]")
        task = TaskSnapshot(path="a.md", title="Write report", priority="high", scheduled="2025-03-10")
        payload = build_event_payload(task, settings)
        assert payload is not None
        self.assertEqual(payload.summary, "Write report [high]")

        untitled = build_event_payload(TaskSnapshot(path="a.md", scheduled="2025-03-10"), make_settings())
        assert untitled is not None
        self.assertEqual(untitled.summary, "Untitled task")

    def test_recurring_task_uses_rule_anchor(self) -> None:
        task = TaskSnapshot(
            path="a.md",
            title="Standup",
            scheduled="2025-03-24",
            recurrence=WEEKLY_RULE,
            complete_instances=("2025-03-17",),
        )
        payload = build_event_payload(task, make_settings())
        assert payload is not None
        self.assertEqual(payload.start, EventTime(date="2025-03-10"))
        self.assertEqual(payload.end, EventTime(date="2025-03-11"))
        self.assertEqual(payload.recurrence, ("RRULE:FREQ=WEEKLY;BYDAY=MO", "EXDATE:20250317"))

    def test_utc_anchor_is_shown_in_local_zone(self) -> None:
        task = TaskSnapshot(
            path="a.md",
            title="Standup",
            scheduled="2025-03-10T10:00",
            recurrence="DTSTART:20250310T090000Z;FREQ=DAILY",
        )
        payload = build_event_payload(task, make_settings(timezone="Europe/Berlin"))
        assert payload is not None
        self.assertEqual(payload.start, EventTime(date_time="2025-03-10T10:00:00+01:00", time_zone="Europe/Berlin"))
        self.assertEqual(payload.end.date_time, "2025-03-10T11:00:00+01:00")

    def test_untranslatable_rule_syncs_single_event(self) -> None:
        task = TaskSnapshot(
            path="a.md",
            title="Ping",
            scheduled="2025-03-12",
            recurrence="DTSTART:20250310;FREQ=HOURLY",
        )
        payload = build_event_payload(task, make_settings())
        assert payload is not None
        self.assertEqual(payload.start, EventTime(date="2025-03-12"))
        self.assertIsNone(payload.recurrence)

    def test_completion_anchored_rule_is_not_mirrored(self) -> None:
        task = TaskSnapshot(
            path="a.md",
            title="Water plants",
            scheduled="2025-03-12",
            recurrence="DTSTART:20250310;FREQ=DAILY",
            recurrence_anchor="completion",
        )
        payload = build_event_payload(task, make_settings(), clear_recurrence=True)
        assert payload is not None
        self.assertEqual(payload.start, EventTime(date="2025-03-12"))
        self.assertEqual(payload.recurrence, ())

    def test_clear_recurrence_only_when_requested(self) -> None:
        task = TaskSnapshot(path="a.md", title="Once", scheduled="2025-03-10")
        cleared = build_event_payload(task, make_settings(), clear_recurrence=True)
        assert cleared is not None
        self.assertEqual(cleared.recurrence, ())

    def test_event_color(self) -> None:
        task = TaskSnapshot(path="a.md", title="Once", scheduled="2025-03-10")
        self.assertIsNone(build_event_payload(task, make_settings()).color)
        self.assertEqual(build_event_payload(task, make_settings(event_color="#ff8800")).color, "#ff8800")

    def test_build_is_deterministic(self) -> None:
        task = TaskSnapshot(
            path="a.md",
            title="Standup",
            scheduled="2025-03-10T09:00",
            recurrence="DTSTART:20250310T090000;FREQ=WEEKLY",
            tags=("work",),
        )
        settings = make_settings(timezone="Europe/Berlin", default_reminder_minutes=10)
        self.assertEqual(build_event_payload(task, settings), build_event_payload(task, settings))


class ReminderTests(unittest.TestCase):
    def _task(self, *reminders: dict) -> TaskSnapshot:
        return TaskSnapshot(path="a.md", title="Call", scheduled="2025-03-10T15:00", reminders=reminders)

    def test_relative_and_absolute_reminders(self) -> None:
        task = self._task(
            {"type": "relative", "relatedTo": "scheduled", "offset": "-PT15M"},
            {"type": "relative", "relatedTo": "due", "offset": "-PT5M"},
            {"type": "relative", "relatedTo": "scheduled", "offset": "PT5M"},
            {"type": "absolute", "absoluteTime": "2025-03-10T14:00"},
            {"type": "absolute", "absoluteTime": "2025-03-10T16:00"},
            {"type": "relative", "relatedTo": "scheduled", "offset": "soon"},
        )
        payload = build_event_payload(task, make_settings())
        assert payload is not None
        self.assertEqual(
            payload.reminders,
            EventReminders(
                use_default=False,
                overrides=(ReminderOverride("popup", 15), ReminderOverride("popup", 60)),
            ),
        )

    def test_reminder_is_capped(self) -> None:
        task = self._task({"type": "relative", "relatedTo": "scheduled", "offset": "-P30D"})
        payload = build_event_payload(task, make_settings())
        assert payload is not None
        self.assertEqual(payload.reminders.overrides[0].minutes, MAX_REMINDER_MINUTES)

    def test_default_reminder(self) -> None:
        settings = make_settings(default_reminder_minutes=10)
        timed = build_event_payload(self._task(), settings)
        assert timed is not None
        self.assertEqual(timed.reminders, EventReminders(False, (ReminderOverride("popup", 10),)))

        all_day = build_event_payload(TaskSnapshot(path="a.md", scheduled="2025-03-10"), settings)
        assert all_day is not None
        self.assertEqual(all_day.reminders, EventReminders(use_default=True))

        self.assertIsNone(build_event_payload(self._task(), make_settings()).reminders)

    def test_parse_iso8601_duration(self) -> None:
        self.assertEqual(parse_iso8601_duration("-PT15M"), -timedelta(minutes=15))
        self.assertEqual(parse_iso8601_duration("P1W"), timedelta(days=7))
        self.assertEqual(parse_iso8601_duration("-P1DT2H"), -timedelta(days=1, hours=2))
        self.assertIsNone(parse_iso8601_duration("P"))
        self.assertIsNone(parse_iso8601_duration("15 minutes"))


class DescriptionTests(unittest.TestCase):
    def test_description_lists_metadata_and_link(self) -> None:
        settings = make_settings(include_task_link=True)
        task = TaskSnapshot(
            path="Tasks/Write report.md",
            title="Write report",
            priority="high",
            status="open",
            scheduled="2025-03-10",
            time_estimate=90,
            tags=("work", "writing"),
            contexts=("office",),
        )
        description = build_event_description(task, settings, "My Vault")
        self.assertEqual(
            description.splitlines(),
            [
                "Priority: high",
                "Status: open",
                "Scheduled: 2025-03-10",
                "Time estimate: 1h 30m",
                "Tags: #work, #writing",
                "Contexts: @office",
                "",
                "---",
                "Open task: obsidian://open?vault=My%20Vault&file=Tasks%2FWrite%20report.md",
            ],
        )

    def test_description_can_be_disabled(self) -> None:
        task = TaskSnapshot(path="a.md", title="Once", scheduled="2025-03-10")
        payload = build_event_payload(task, make_settings(include_description=False))
        assert payload is not None
        self.assertIsNone(payload.description)

    def test_completed_title_and_estimate_format(self) -> None:
        task = TaskSnapshot(path="a.md", title="Write report")
        self.assertEqual(build_completed_title(task, make_settings()), "✓ Write report")
        self.assertEqual(build_completed_title(task, make_settings(completed_marker="")), "Write report")
        self.assertEqual(format_time_estimate(45), "45m")
        self.assertEqual(format_time_estimate(120), "2h 0m")


if __name__ == "__main__":
    unittest.main()
