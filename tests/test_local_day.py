from __future__ import annotations

import unittest
from datetime import date, datetime
from unittest.mock import patch
from zoneinfo import ZoneInfo

from db_support import utc

from attendance_engine.services.local_day import (
    end_of_local_day_utc,
    local_day_bounds_utc,
    local_day_of,
    normalize_ts,
    resolve_timezone,
    weekday_number,
)
from attendance_engine.settings import Settings


class ResolveTimezoneTests(unittest.TestCase):
    def test_explicit_zone_wins_over_default(self) -> None:
        self.assertEqual(resolve_timezone("America/New_York"), ZoneInfo("America/New_York"))

    def test_default_zone_follows_current_settings(self) -> None:
        with patch(
            "attendance_engine.services.local_day.get_settings",
            return_value=Settings(attendance_timezone="Asia/Kolkata"),
        ):
            self.assertEqual(resolve_timezone(None), ZoneInfo("Asia/Kolkata"))

        with patch(
            "attendance_engine.services.local_day.get_settings",
            return_value=Settings(attendance_timezone="America/New_York"),
        ):
            self.assertEqual(resolve_timezone(None), ZoneInfo("America/New_York"))
            self.assertEqual(resolve_timezone("  "), ZoneInfo("America/New_York"))

    def test_unknown_zone_falls_back_to_utc(self) -> None:
        with self.assertLogs("attendance_engine.local_day", level="WARNING"):
            zone = resolve_timezone("Mars/Olympus_Mons")

        self.assertEqual(zone, ZoneInfo("UTC"))


class LocalDayTests(unittest.TestCase):
    def test_naive_timestamps_are_treated_as_utc(self) -> None:
        self.assertEqual(normalize_ts(datetime(2024, 3, 1, 3, 30)), utc(2024, 3, 1, 3, 30))

    def test_local_day_crosses_utc_midnight(self) -> None:
        kolkata = ZoneInfo("Asia/Kolkata")

        self.assertEqual(local_day_of(utc(2024, 3, 1, 19, 0), kolkata), date(2024, 3, 2))
        self.assertEqual(
            local_day_bounds_utc(date(2024, 3, 2), kolkata),
            (utc(2024, 3, 1, 18, 30), utc(2024, 3, 2, 18, 30)),
        )
        self.assertEqual(end_of_local_day_utc(utc(2024, 3, 1, 3, 30), kolkata), utc(2024, 3, 1, 18, 29, 59, 999000))

    def test_weekday_numbering_starts_on_sunday(self) -> None:
        self.assertEqual(weekday_number(date(2024, 3, 3)), 0)
        self.assertEqual(weekday_number(date(2024, 3, 2)), 6)


if __name__ == "__main__":
    unittest.main()
