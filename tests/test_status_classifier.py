from __future__ import annotations

import unittest
from datetime import datetime, time, timezone

from attendance_engine.models import AttendanceStatus
from attendance_engine.services.status_classifier import (
    ScanAction,
    classify,
    local_now,
    local_time_of_day,
    parse_hhmm,
)


class StatusClassifierTests(unittest.TestCase):
    def test_check_in_before_or_at_start_is_present(self) -> None:
        self.assertEqual(classify("08:59", "09:00", ScanAction.CHECK_IN), AttendanceStatus.PRESENT)
        self.assertEqual(classify("09:00", "09:00", ScanAction.CHECK_IN), AttendanceStatus.PRESENT)

    def test_check_in_after_start_is_late(self) -> None:
        self.assertEqual(classify("09:01", "09:00", ScanAction.CHECK_IN), AttendanceStatus.LATE)

    def test_check_out_before_end_is_early_out(self) -> None:
        self.assertEqual(classify("16:59", "17:00", ScanAction.CHECK_OUT), AttendanceStatus.EARLY_OUT)

    def test_check_out_at_or_after_end_is_present(self) -> None:
        self.assertEqual(classify("17:00", "17:00", ScanAction.CHECK_OUT), AttendanceStatus.PRESENT)
        self.assertEqual(classify("17:01", "17:00", ScanAction.CHECK_OUT), AttendanceStatus.PRESENT)

    def test_missing_boundary_is_present(self) -> None:
        self.assertEqual(classify("23:59", None, ScanAction.CHECK_IN), AttendanceStatus.PRESENT)
        self.assertEqual(classify("00:01", None, ScanAction.CHECK_OUT), AttendanceStatus.PRESENT)

    def test_seconds_are_ignored(self) -> None:
        self.assertEqual(
            classify(time(9, 0, 59), time(9, 0), ScanAction.CHECK_IN),
            AttendanceStatus.PRESENT,
        )
        self.assertEqual(classify("09:00:45", "09:00:00", ScanAction.CHECK_IN), AttendanceStatus.PRESENT)

    def test_parse_hhmm_rejects_garbage(self) -> None:
        for raw in ["9", "ab:cd", "24:00", "12:60", "1:2:3:4"]:
            with self.subTest(raw=raw):
                with self.assertRaises(ValueError):
                    parse_hhmm(raw)
        self.assertIsNone(parse_hhmm("  "))

    def test_local_time_uses_kuala_lumpur_offset(self) -> None:
        ts_utc = datetime(2026, 3, 2, 1, 30, 42, tzinfo=timezone.utc)

        self.assertEqual(local_time_of_day(ts_utc), time(9, 30))
        self.assertEqual(local_now(ts_utc).date().isoformat(), "2026-03-02")

    def test_local_day_rolls_over_before_utc_midnight(self) -> None:
        ts_utc = datetime(2026, 3, 2, 16, 30, tzinfo=timezone.utc)
        self.assertEqual(local_now(ts_utc).date().isoformat(), "2026-03-03")

    def test_naive_timestamps_are_treated_as_utc(self) -> None:
        self.assertEqual(local_time_of_day(datetime(2026, 3, 2, 0, 0)), time(8, 0))


if __name__ == "__main__":
    unittest.main()
