from __future__ import annotations

import unittest
from datetime import date

from db_support import add_employee, add_holiday, make_engine, make_session

from attendance_engine.errors import ApiError, NotFound
from attendance_engine.schemas import EmployeeCreate, HolidayCreate
from attendance_engine.services.calendar_store import (
    create_holiday,
    delete_holiday,
    get_weekend_days,
    list_holidays,
    register_employee,
    replace_weekend_days,
    set_employee_timezone,
    update_holiday,
)

TODAY = date(2024, 6, 1)


class HolidayStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = make_engine()
        self.db = make_session(self.engine)

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def test_create_and_list_in_date_order(self) -> None:
        create_holiday(self.db, HolidayCreate(holiday_date=date(2024, 12, 25), label=" Christmas "), today=TODAY)
        create_holiday(self.db, HolidayCreate(holiday_date=date(2024, 8, 15), label="Independence Day"), today=TODAY)

        holidays = list_holidays(self.db)

        self.assertEqual([item.holiday_date for item in holidays], [date(2024, 8, 15), date(2024, 12, 25)])
        self.assertEqual(holidays[1].label, "Christmas")
        self.assertEqual(
            [item.label for item in list_holidays(self.db, start=date(2024, 9, 1), end=date(2024, 12, 31))],
            ["Christmas"],
        )

    def test_duplicate_date_is_rejected(self) -> None:
        create_holiday(self.db, HolidayCreate(holiday_date=date(2024, 12, 25), label="Christmas"), today=TODAY)

        with self.assertRaises(ApiError) as exc:
            create_holiday(self.db, HolidayCreate(holiday_date=date(2024, 12, 25), label="Again"), today=TODAY)

        self.assertEqual(exc.exception.code, "HOLIDAY_DATE_EXISTS")

    def test_past_holidays_are_immutable(self) -> None:
        past = add_holiday(self.db, date(2024, 1, 26), "Republic Day")

        with self.assertRaises(ApiError) as exc:
            create_holiday(self.db, HolidayCreate(holiday_date=date(2024, 5, 1), label="Late"), today=TODAY)
        self.assertEqual(exc.exception.code, "HOLIDAY_IN_PAST")
        with self.assertRaises(ApiError):
            update_holiday(
                self.db,
                past.id,
                HolidayCreate(holiday_date=date(2024, 7, 1), label="Moved"),
                today=TODAY,
            )
        with self.assertRaises(ApiError):
            delete_holiday(self.db, past.id, today=TODAY)

        self.assertEqual(len(list_holidays(self.db)), 1)

    def test_update_and_delete_future_holiday(self) -> None:
        holiday = create_holiday(self.db, HolidayCreate(holiday_date=date(2024, 10, 2), label="Gandhi"), today=TODAY)

        updated = update_holiday(
            self.db,
            holiday.id,
            HolidayCreate(holiday_date=date(2024, 10, 3), label="Moved"),
            today=TODAY,
        )
        self.assertEqual(updated.holiday_date, date(2024, 10, 3))

        delete_holiday(self.db, holiday.id, today=TODAY)
        self.assertEqual(list_holidays(self.db), [])
        with self.assertRaises(NotFound):
            delete_holiday(self.db, holiday.id, today=TODAY)

    def test_reversed_range_is_rejected(self) -> None:
        with self.assertRaises(ApiError) as exc:
            list_holidays(self.db, start=date(2024, 12, 31), end=date(2024, 1, 1))
        self.assertEqual(exc.exception.code, "INVALID_DATE_RANGE")


class WeekendStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = make_engine()
        self.db = make_session(self.engine)
        add_employee(self.db, 1)

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def test_replace_is_a_full_set_upsert(self) -> None:
        self.assertEqual(get_weekend_days(self.db, 1), [])

        replace_weekend_days(self.db, 1, [6, 0, 6])
        self.assertEqual(get_weekend_days(self.db, 1), [0, 6])

        replace_weekend_days(self.db, 1, [5])
        self.assertEqual(get_weekend_days(self.db, 1), [5])

        replace_weekend_days(self.db, 1, [])
        self.assertEqual(get_weekend_days(self.db, 1), [])

    def test_out_of_range_weekday_is_rejected(self) -> None:
        with self.assertRaises(ApiError) as exc:
            replace_weekend_days(self.db, 1, [7])
        self.assertEqual(exc.exception.code, "INVALID_WEEKDAY")

    def test_unknown_employee_is_not_found(self) -> None:
        with self.assertRaises(NotFound):
            replace_weekend_days(self.db, 42, [0])


class EmployeeStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = make_engine()
        self.db = make_session(self.engine)

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def test_register_with_explicit_id_and_zone(self) -> None:
        employee = register_employee(
            self.db,
            EmployeeCreate(id=7, full_name=" Asha Rao ", timezone="Asia/Kolkata"),
        )

        self.assertEqual(employee.id, 7)
        self.assertEqual(employee.full_name, "Asha Rao")
        with self.assertRaises(ApiError) as exc:
            register_employee(self.db, EmployeeCreate(id=7, full_name="Duplicate"))
        self.assertEqual(exc.exception.code, "EMPLOYEE_EXISTS")

    def test_unknown_time_zone_is_rejected(self) -> None:
        with self.assertRaises(ApiError) as exc:
            register_employee(self.db, EmployeeCreate(full_name="Nobody", timezone="Mars/Olympus"))
        self.assertEqual(exc.exception.code, "INVALID_TIMEZONE")

        add_employee(self.db, 3)
        with self.assertRaises(ApiError):
            set_employee_timezone(self.db, 3, "Not/AZone")

    def test_time_zone_can_be_cleared(self) -> None:
        add_employee(self.db, 3)

        employee = set_employee_timezone(self.db, 3, None)

        self.assertIsNone(employee.timezone)


if __name__ == "__main__":
    unittest.main()
