from __future__ import annotations

import unittest
from datetime import date
from unittest.mock import patch

from db_support import (
    add_employee,
    add_holiday,
    add_leave_request,
    add_leave_type,
    add_log,
    make_engine,
    make_session,
    utc,
)
from sqlalchemy import func, select

from attendance_engine.errors import AlreadyClockedIn, ClockInBlocked, NoOpenShift, NotFound
from attendance_engine.models import AttendanceLog, LeaveRequestStatus, ShiftCloseSource, ShiftState
from attendance_engine.services.daily_status import DayFacts
from attendance_engine.services.attendance import get_today_shift, request_clock_in, request_clock_out
from attendance_engine.services.local_day import normalize_ts

# 2024-03-01 09:00 in Asia/Kolkata (a Friday).
FRIDAY_MORNING = utc(2024, 3, 1, 3, 30)
FRIDAY_EVENING = utc(2024, 3, 1, 12, 30)
# 2024-03-01 23:59:59.999 in Asia/Kolkata.
FRIDAY_END = utc(2024, 3, 1, 18, 29, 59, 999000)


class ClockInTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = make_engine()
        self.db = make_session(self.engine)
        add_employee(self.db, 1)

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def _log_count(self) -> int:
        return int(self.db.scalar(select(func.count()).select_from(AttendanceLog)) or 0)

    def test_clock_in_creates_open_shift(self) -> None:
        result = request_clock_in(self.db, 1, FRIDAY_MORNING)

        log = self.db.get(AttendanceLog, result.log_id)
        self.assertIsNotNone(log)
        self.assertEqual(normalize_ts(log.clock_in), FRIDAY_MORNING)
        self.assertIsNone(log.clock_out)
        self.assertEqual(result.clock_in, FRIDAY_MORNING)

    def test_clock_in_on_holiday_is_blocked_without_writing(self) -> None:
        add_holiday(self.db, date(2024, 3, 1))

        with self.assertRaises(ClockInBlocked) as exc:
            request_clock_in(self.db, 1, FRIDAY_MORNING)

        self.assertEqual(exc.exception.reason, "holiday")
        self.assertEqual(exc.exception.status_code, 422)
        self.assertEqual(self._log_count(), 0)

    def test_clock_in_on_approved_leave_is_blocked(self) -> None:
        leave_type = add_leave_type(self.db)
        add_leave_request(
            self.db,
            employee_id=1,
            leave_type_id=leave_type.id,
            start_date=date(2024, 2, 28),
            end_date=date(2024, 3, 1),
            status=LeaveRequestStatus.APPROVED,
        )

        with self.assertRaises(ClockInBlocked) as exc:
            request_clock_in(self.db, 1, FRIDAY_MORNING)

        self.assertEqual(exc.exception.reason, "on_leave")
        self.assertEqual(self._log_count(), 0)

    def test_clock_in_on_week_off_is_blocked(self) -> None:
        add_employee(self.db, 2, weekend_days=[5, 6])

        with self.assertRaises(ClockInBlocked) as exc:
            request_clock_in(self.db, 2, FRIDAY_MORNING)

        self.assertEqual(exc.exception.reason, "week_off")
        self.assertEqual(self._log_count(), 0)

    def test_second_clock_in_while_open_is_rejected(self) -> None:
        first = request_clock_in(self.db, 1, FRIDAY_MORNING)

        with self.assertRaises(AlreadyClockedIn) as exc:
            request_clock_in(self.db, 1, FRIDAY_EVENING)

        self.assertEqual(exc.exception.log_id, first.log_id)
        self.assertFalse(exc.exception.shift_closed)
        self.assertEqual(self._log_count(), 1)

    def test_clock_in_after_closed_shift_same_day_is_rejected(self) -> None:
        request_clock_in(self.db, 1, FRIDAY_MORNING)
        request_clock_out(self.db, 1, utc(2024, 3, 1, 8, 0))

        with self.assertRaises(AlreadyClockedIn) as exc:
            request_clock_in(self.db, 1, FRIDAY_EVENING)

        self.assertTrue(exc.exception.shift_closed)
        self.assertEqual(self._log_count(), 1)

    def test_clock_in_next_day_reconciles_forgotten_shift_first(self) -> None:
        stale = add_log(self.db, employee_id=1, clock_in=FRIDAY_MORNING)

        # 2024-03-04 is a Monday.
        result = request_clock_in(self.db, 1, utc(2024, 3, 4, 3, 30))

        self.db.refresh(stale)
        self.assertEqual(normalize_ts(stale.clock_out), utc(2024, 3, 1, 18, 29, 59, 999000))
        self.assertEqual(stale.closed_by, ShiftCloseSource.RECONCILER)
        self.assertNotEqual(result.log_id, stale.id)

    def test_racing_insert_is_caught_by_open_shift_index(self) -> None:
        existing = add_log(self.db, employee_id=1, clock_in=FRIDAY_MORNING)
        empty_facts = {
            1: DayFacts(
                employee_id=1,
                day=date(2024, 3, 1),
                is_holiday=False,
                on_leave=False,
                weekend_days=frozenset(),
                shift=None,
            )
        }

        with patch("attendance_engine.services.attendance.load_day_facts", return_value=empty_facts):
            with self.assertRaises(AlreadyClockedIn) as exc:
                request_clock_in(self.db, 1, FRIDAY_EVENING)

        self.assertEqual(exc.exception.log_id, existing.id)
        self.assertEqual(self._log_count(), 1)

    def test_unknown_employee_is_not_found(self) -> None:
        with self.assertRaises(NotFound) as exc:
            request_clock_in(self.db, 99, FRIDAY_MORNING)
        self.assertEqual(exc.exception.code, "EMPLOYEE_NOT_FOUND")


class ClockOutTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = make_engine()
        self.db = make_session(self.engine)
        add_employee(self.db, 1)
        add_employee(self.db, 2)

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def test_clock_out_closes_open_shift(self) -> None:
        clock_in = request_clock_in(self.db, 1, FRIDAY_MORNING)

        result = request_clock_out(self.db, 1, FRIDAY_EVENING)

        log = self.db.get(AttendanceLog, clock_in.log_id)
        self.assertEqual(result.log_id, clock_in.log_id)
        self.assertFalse(result.already_closed)
        self.assertEqual(normalize_ts(log.clock_out), FRIDAY_EVENING)
        self.assertEqual(log.closed_by, ShiftCloseSource.USER)

    def test_clock_out_without_open_shift_fails(self) -> None:
        with self.assertRaises(NoOpenShift) as exc:
            request_clock_out(self.db, 1, FRIDAY_EVENING)
        self.assertEqual(exc.exception.status_code, 409)

    def test_second_clock_out_without_log_id_fails(self) -> None:
        request_clock_in(self.db, 1, FRIDAY_MORNING)
        request_clock_out(self.db, 1, FRIDAY_EVENING)

        with self.assertRaises(NoOpenShift):
            request_clock_out(self.db, 1, utc(2024, 3, 1, 13, 0))

    def test_retry_with_log_id_returns_recorded_clock_out(self) -> None:
        clock_in = request_clock_in(self.db, 1, FRIDAY_MORNING)
        request_clock_out(self.db, 1, FRIDAY_EVENING, log_id=clock_in.log_id)

        retry = request_clock_out(self.db, 1, utc(2024, 3, 1, 13, 0), log_id=clock_in.log_id)

        self.assertTrue(retry.already_closed)
        self.assertEqual(retry.clock_out, FRIDAY_EVENING)

    def test_log_id_of_another_employee_is_not_found(self) -> None:
        clock_in = request_clock_in(self.db, 1, FRIDAY_MORNING)

        with self.assertRaises(NotFound):
            request_clock_out(self.db, 2, FRIDAY_EVENING, log_id=clock_in.log_id)

    def test_late_clock_out_never_stretches_forgotten_shift(self) -> None:
        stale = add_log(self.db, employee_id=1, clock_in=FRIDAY_MORNING)

        # 2024-03-04 09:30 in Asia/Kolkata.
        with self.assertRaises(NoOpenShift):
            request_clock_out(self.db, 1, utc(2024, 3, 4, 4, 0))

        stale = self.db.get(AttendanceLog, stale.id, populate_existing=True)
        self.assertEqual(normalize_ts(stale.clock_out), FRIDAY_END)
        self.assertEqual(stale.closed_by, ShiftCloseSource.RECONCILER)

    def test_retry_of_forgotten_shift_reports_reconciled_clock_out(self) -> None:
        stale = add_log(self.db, employee_id=1, clock_in=FRIDAY_MORNING)

        result = request_clock_out(self.db, 1, utc(2024, 3, 2, 4, 0), log_id=stale.id)

        self.assertTrue(result.already_closed)
        self.assertEqual(result.log_id, stale.id)
        self.assertEqual(result.clock_out, FRIDAY_END)


class TodayShiftTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = make_engine()
        self.db = make_session(self.engine)
        add_employee(self.db, 1)

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def test_state_follows_shift_lifecycle(self) -> None:
        self.assertEqual(get_today_shift(self.db, 1, FRIDAY_MORNING).state, ShiftState.NO_SHIFT)

        request_clock_in(self.db, 1, FRIDAY_MORNING)
        today = get_today_shift(self.db, 1, FRIDAY_MORNING)
        self.assertEqual(today.state, ShiftState.SHIFT_OPEN)
        self.assertEqual(today.local_day, date(2024, 3, 1))

        request_clock_out(self.db, 1, FRIDAY_EVENING)
        self.assertEqual(get_today_shift(self.db, 1, FRIDAY_EVENING).state, ShiftState.SHIFT_CLOSED)

    def test_yesterdays_open_shift_is_not_today(self) -> None:
        add_log(self.db, employee_id=1, clock_in=FRIDAY_MORNING)

        today = get_today_shift(self.db, 1, utc(2024, 3, 2, 4, 0))

        self.assertEqual(today.state, ShiftState.NO_SHIFT)
        self.assertEqual(today.local_day, date(2024, 3, 2))


if __name__ == "__main__":
    unittest.main()
