import unittest

from taskcal.recurrence import format_exdates, is_remote_compatible, to_remote_recurrence


class RecurrenceTests(unittest.TestCase):
    def test_weekly_rule_with_exdates(self) -> None:
        remote = to_remote_recurrence(
            "DTSTART:20250310;FREQ=WEEKLY;BYDAY=MO",
            completed=["2025-03-17"],
            skipped=["2025-03-24"],
        )
        self.assertIsNotNone(remote)
        assert remote is not None
        self.assertEqual(
            remote.rule_lines,
            ("RRULE:FREQ=WEEKLY;BYDAY=MO", "EXDATE:20250317", "EXDATE:20250324"),
        )
        self.assertEqual(remote.anchor_date, "2025-03-10")
        self.assertFalse(remote.has_time)

    def test_timed_anchor(self) -> None:
        remote = to_remote_recurrence("DTSTART:20250310T090000Z;FREQ=DAILY;INTERVAL=2")
        assert remote is not None
        self.assertEqual(remote.rule_lines, ("RRULE:FREQ=DAILY;INTERVAL=2",))
        self.assertEqual(remote.anchor_time, "09:00:00")
        self.assertTrue(remote.anchor_is_utc)

    def test_exdates_are_deduplicated_and_validated(self) -> None:
        self.assertEqual(
            format_exdates(["2025-03-17", "2025-03-17", "not-a-date", "", "2025-04-01"]),
            ["EXDATE:20250317", "EXDATE:20250401"],
        )

    def test_rules_without_anchor_or_freq_are_rejected(self) -> None:
        self.assertIsNone(to_remote_recurrence(""))
        self.assertIsNone(to_remote_recurrence("FREQ=DAILY"))
        self.assertIsNone(to_remote_recurrence("DTSTART:20250310;INTERVAL=2"))

    def test_sub_daily_rules_are_rejected(self) -> None:
        self.assertFalse(is_remote_compatible("FREQ=HOURLY"))
        self.assertFalse(is_remote_compatible("FREQ=DAILY;BYHOUR=9"))
        self.assertTrue(is_remote_compatible("DTSTART:20250310;FREQ=MONTHLY;BYMONTHDAY=10"))
        self.assertIsNone(to_remote_recurrence("DTSTART:20250310;FREQ=MINUTELY"))


if __name__ == "__main__":
    unittest.main()
