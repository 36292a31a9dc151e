from __future__ import annotations

import unittest
from datetime import date, datetime, time, timedelta, timezone
from unittest.mock import patch

from sqlalchemy import func, select

from guardpost.clock import FixedClock
from guardpost.errors import ApiError
from guardpost.models import AttendanceRecord, AttendanceStatus, ShiftType
from guardpost.services.attendance import (
    check_in,
    check_out,
    count_by_status_for_date,
    find_for_site_on_date,
    find_open_for_guard_on_date,
    get_attendance,
    list_attendance_for_guard,
)
from guardpost.services.reconciliation import run_absence_sweep
from tests.db_fixtures import add_assignment, build_session_factory, build_sqlite_engine, seed_roster

MONDAY = date(2026, 3, 2)


class AttendanceServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = build_sqlite_engine()
        self.db = build_session_factory(self.engine)()
        self.roster = seed_roster(self.db)
        self.day_assignment = add_assignment(
            self.db,
            guard=self.roster.alice,
            post=self.roster.gate,
            shift_type=self.roster.day_shift,
            effective_from=date(2026, 3, 1),
        )
        self.night_assignment = add_assignment(
            self.db,
            guard=self.roster.carol,
            post=self.roster.lobby,
            shift_type=self.roster.night_shift,
            effective_from=date(2026, 3, 1),
        )
        self.clock = FixedClock(datetime(2026, 3, 2, 8, 15))

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def _record_count(self) -> int:
        return int(self.db.scalar(select(func.count(AttendanceRecord.id))) or 0)

    def test_late_check_in_records_late_minutes(self) -> None:
        record = check_in(self.db, guard_id=self.roster.alice.id, notes="Radio 4", clock=self.clock)

        self.assertEqual(record.status, AttendanceStatus.LATE)
        self.assertEqual(record.late_minutes, 15)
        self.assertEqual(record.early_leave_minutes, 0)
        self.assertEqual(record.attendance_date, MONDAY)
        self.assertEqual(record.assignment_id, self.day_assignment.id)
        self.assertEqual(record.notes, "Radio 4")
        self.assertIsNotNone(record.check_in_time)
        self.assertIsNone(record.check_out_time)

    def test_early_check_in_is_present(self) -> None:
        self.clock.set(datetime(2026, 3, 2, 7, 50))
        record = check_in(self.db, guard_id=self.roster.alice.id, notes=None, clock=self.clock)
        self.assertEqual(record.status, AttendanceStatus.PRESENT)
        self.assertEqual(record.late_minutes, 0)

    def test_check_in_uses_local_time_of_clock_zone(self) -> None:
        local_clock = FixedClock(datetime(2026, 3, 2, 8, 15), tz=timezone(timedelta(hours=3)))
        self.assertEqual(local_clock.now_utc(), datetime(2026, 3, 2, 5, 15, tzinfo=timezone.utc))

        record = check_in(self.db, guard_id=self.roster.alice.id, notes=None, clock=local_clock)
        self.assertEqual(record.status, AttendanceStatus.LATE)
        self.assertEqual(record.late_minutes, 15)

    def test_check_in_requires_active_guard(self) -> None:
        for guard_id in (self.roster.retired.id, 999):
            with self.assertRaises(ApiError) as exc:
                check_in(self.db, guard_id=guard_id, notes=None, clock=self.clock)
            self.assertEqual(exc.exception.status_code, 400)
            self.assertEqual(exc.exception.code, "INACTIVE_GUARD")

    def test_check_in_requires_assignment_today(self) -> None:
        with self.assertRaises(ApiError) as exc:
            check_in(self.db, guard_id=self.roster.bob.id, notes=None, clock=self.clock)
        self.assertEqual(exc.exception.status_code, 400)
        self.assertEqual(exc.exception.code, "NO_ACTIVE_ASSIGNMENT")
        self.assertEqual(self._record_count(), 0)

    def test_second_check_in_same_day_is_rejected(self) -> None:
        check_in(self.db, guard_id=self.roster.alice.id, notes=None, clock=self.clock)
        self.clock.set(datetime(2026, 3, 2, 9, 0))

        with self.assertRaises(ApiError) as exc:
            check_in(self.db, guard_id=self.roster.alice.id, notes=None, clock=self.clock)
        self.assertEqual(exc.exception.status_code, 409)
        self.assertEqual(exc.exception.code, "ALREADY_CHECKED_IN")
        self.assertEqual(self._record_count(), 1)

    def test_lost_check_in_race_hits_unique_constraint(self) -> None:
        check_in(self.db, guard_id=self.roster.alice.id, notes=None, clock=self.clock)

        with patch("guardpost.services.attendance.find_record_for_guard_on_date", return_value=None):
            with self.assertRaises(ApiError) as exc:
                check_in(self.db, guard_id=self.roster.alice.id, notes=None, clock=self.clock)

        self.assertEqual(exc.exception.code, "ALREADY_CHECKED_IN")
        self.assertEqual(self._record_count(), 1)

    def test_check_in_outside_window_creates_nothing(self) -> None:
        self.clock.set(datetime(2026, 3, 2, 11, 0))
        with self.assertRaises(ApiError) as exc:
            check_in(self.db, guard_id=self.roster.alice.id, notes=None, clock=self.clock)

        self.assertEqual(exc.exception.code, "OUTSIDE_CHECKIN_WINDOW")
        self.assertEqual(exc.exception.details["window_start"], "06:00")
        self.assertEqual(exc.exception.details["window_end"], "10:00")
        self.assertEqual(self._record_count(), 0)

    def test_late_status_survives_early_check_out(self) -> None:
        check_in(self.db, guard_id=self.roster.alice.id, notes="Radio 4", clock=self.clock)
        self.clock.set(datetime(2026, 3, 2, 15, 45))

        record = check_out(self.db, guard_id=self.roster.alice.id, notes="Relieved by B shift", clock=self.clock)

        self.assertEqual(record.status, AttendanceStatus.LATE)
        self.assertEqual(record.late_minutes, 15)
        self.assertEqual(record.early_leave_minutes, 15)
        self.assertIsNotNone(record.check_out_time)
        self.assertEqual(record.notes, "Radio 4 | Checkout: Relieved by B shift")

    def test_present_guard_leaving_early_is_early_leave(self) -> None:
        self.clock.set(datetime(2026, 3, 2, 7, 55))
        check_in(self.db, guard_id=self.roster.alice.id, notes=None, clock=self.clock)
        self.clock.set(datetime(2026, 3, 2, 14, 0))

        record = check_out(self.db, guard_id=self.roster.alice.id, notes=None, clock=self.clock)
        self.assertEqual(record.status, AttendanceStatus.EARLY_LEAVE)
        self.assertEqual(record.early_leave_minutes, 120)
        self.assertIsNone(record.notes)

    def test_check_out_after_shift_end_keeps_present(self) -> None:
        self.clock.set(datetime(2026, 3, 2, 7, 55))
        check_in(self.db, guard_id=self.roster.alice.id, notes=None, clock=self.clock)
        self.clock.set(datetime(2026, 3, 2, 16, 10))

        record = check_out(self.db, guard_id=self.roster.alice.id, notes="All quiet", clock=self.clock)
        self.assertEqual(record.status, AttendanceStatus.PRESENT)
        self.assertEqual(record.early_leave_minutes, 0)
        self.assertEqual(record.notes, "Checkout: All quiet")

    def test_check_out_without_check_in_is_rejected(self) -> None:
        with self.assertRaises(ApiError) as exc:
            check_out(self.db, guard_id=self.roster.alice.id, notes=None, clock=self.clock)
        self.assertEqual(exc.exception.status_code, 400)
        self.assertEqual(exc.exception.code, "NOT_CHECKED_IN")

        with self.assertRaises(ApiError) as unknown:
            check_out(self.db, guard_id=999, notes=None, clock=self.clock)
        self.assertEqual(unknown.exception.status_code, 404)
        self.assertEqual(unknown.exception.code, "GUARD_NOT_FOUND")

    def test_check_out_on_absent_record_is_not_checked_in(self) -> None:
        self.db.add(
            AttendanceRecord(
                guard_id=self.roster.alice.id,
                assignment_id=self.day_assignment.id,
                attendance_date=MONDAY,
                status=AttendanceStatus.ABSENT,
                late_minutes=0,
                early_leave_minutes=0,
            )
        )
        self.db.commit()

        with self.assertRaises(ApiError) as exc:
            check_out(self.db, guard_id=self.roster.alice.id, notes=None, clock=self.clock)
        self.assertEqual(exc.exception.code, "NOT_CHECKED_IN")

    def test_second_check_out_is_rejected(self) -> None:
        check_in(self.db, guard_id=self.roster.alice.id, notes=None, clock=self.clock)
        self.clock.set(datetime(2026, 3, 2, 16, 5))
        check_out(self.db, guard_id=self.roster.alice.id, notes=None, clock=self.clock)

        with self.assertRaises(ApiError) as exc:
            check_out(self.db, guard_id=self.roster.alice.id, notes=None, clock=self.clock)
        self.assertEqual(exc.exception.status_code, 409)
        self.assertEqual(exc.exception.code, "ALREADY_CHECKED_OUT")

    def test_overnight_shift_checks_out_against_previous_day(self) -> None:
        self.clock.set(datetime(2026, 3, 2, 22, 10))
        record = check_in(self.db, guard_id=self.roster.carol.id, notes=None, clock=self.clock)
        self.assertEqual(record.status, AttendanceStatus.LATE)
        self.assertEqual(record.late_minutes, 10)
        self.assertIsNotNone(find_open_for_guard_on_date(self.db, self.roster.carol.id, MONDAY))

        self.clock.set(datetime(2026, 3, 3, 5, 30))
        closed = check_out(self.db, guard_id=self.roster.carol.id, notes=None, clock=self.clock)

        self.assertEqual(closed.id, record.id)
        self.assertEqual(closed.attendance_date, MONDAY)
        self.assertEqual(closed.status, AttendanceStatus.LATE)
        self.assertEqual(closed.early_leave_minutes, 30)

    def test_shift_starting_after_midnight_is_dated_to_shift_day(self) -> None:
        grave_shift = ShiftType(name="GRAVE", start_time=time(0, 30), end_time=time(8, 30))
        self.db.add(grave_shift)
        self.db.commit()
        add_assignment(
            self.db,
            guard=self.roster.bob,
            post=self.roster.gate,
            shift_type=grave_shift,
            effective_from=date(2026, 3, 1),
        )
        tuesday = date(2026, 3, 3)

        self.clock.set(datetime(2026, 3, 2, 23, 0))
        with self.assertRaises(ApiError) as exc:
            check_in(self.db, guard_id=self.roster.bob.id, notes=None, clock=self.clock)
        self.assertEqual(exc.exception.code, "OUTSIDE_CHECKIN_WINDOW")
        self.assertEqual(self._record_count(), 0)

        self.clock.set(datetime(2026, 3, 3, 0, 20))
        record = check_in(self.db, guard_id=self.roster.bob.id, notes=None, clock=self.clock)
        self.assertEqual(record.attendance_date, tuesday)
        self.assertEqual(record.status, AttendanceStatus.PRESENT)

        self.clock.set(datetime(2026, 3, 3, 8, 30))
        closed = check_out(self.db, guard_id=self.roster.bob.id, notes=None, clock=self.clock)
        self.assertEqual(closed.id, record.id)
        self.assertEqual(closed.status, AttendanceStatus.PRESENT)

        run_absence_sweep(tuesday, db=self.db)
        self.db.expire_all()
        self.assertEqual(get_attendance(self.db, record.id).status, AttendanceStatus.PRESENT)
        bob_history = list_attendance_for_guard(self.db, self.roster.bob.id)
        self.assertEqual([item.status for item in bob_history], [AttendanceStatus.PRESENT])

    def test_read_side_queries(self) -> None:
        check_in(self.db, guard_id=self.roster.alice.id, notes=None, clock=self.clock)
        self.clock.set(datetime(2026, 3, 2, 21, 50))
        check_in(self.db, guard_id=self.roster.carol.id, notes=None, clock=self.clock)

        history = list_attendance_for_guard(self.db, self.roster.alice.id)
        self.assertEqual(len(history), 1)
        self.assertEqual(history[0].assignment.site_post.post_name, "Main Gate")

        at_site = find_for_site_on_date(self.db, self.roster.site.id, MONDAY)
        self.assertEqual([item.guard_id for item in at_site], [self.roster.alice.id, self.roster.carol.id])
        self.assertEqual(find_for_site_on_date(self.db, self.roster.site.id, date(2026, 3, 3)), [])

        counts = count_by_status_for_date(self.db, MONDAY)
        self.assertEqual(counts, {AttendanceStatus.LATE: 1, AttendanceStatus.PRESENT: 1})

        with self.assertRaises(ApiError) as missing:
            get_attendance(self.db, 4242)
        self.assertEqual(missing.exception.code, "ATTENDANCE_NOT_FOUND")

        with self.assertRaises(ApiError) as unknown_guard:
            list_attendance_for_guard(self.db, 999)
        self.assertEqual(unknown_guard.exception.code, "GUARD_NOT_FOUND")


if __name__ == "__main__":
    unittest.main()
