from __future__ import annotations

import logging
from datetime import date, timedelta

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from guardpost.clock import Clock
from guardpost.errors import ApiError, not_found
from guardpost.models import (
    Assignment,
    AttendanceRecord,
    AttendanceStatus,
    SitePost,
)
from guardpost.services.assignments import list_active_assignments_on_date
from guardpost.services.attendance_engine import (
    CHECKOUT_NOTE_PREFIX,
    ShiftWindow,
    append_note,
    classify_check_in,
    classify_check_out,
    ensure_can_check_out,
)
from guardpost.services.directory import find_active_guard, find_guard

logger = logging.getLogger("guardpost.attendance")


def _attendance_query():  # type: ignore[no-untyped-def]
    return select(AttendanceRecord).options(
        selectinload(AttendanceRecord.guard),
        selectinload(AttendanceRecord.assignment).selectinload(Assignment.shift_type),
        selectinload(AttendanceRecord.assignment)
        .selectinload(Assignment.site_post)
        .selectinload(SitePost.site),
    )


def _by_check_in(stmt):  # type: ignore[no-untyped-def]
    return stmt.order_by(AttendanceRecord.check_in_time.asc().nulls_last(), AttendanceRecord.id.asc())


def _already_checked_in_error(guard_id: int, attendance_date: date) -> ApiError:
    return ApiError(
        status_code=409,
        code="ALREADY_CHECKED_IN",
        message="Attendance already recorded for today. Cannot check in again.",
        details={"guard_id": guard_id, "attendance_date": attendance_date.isoformat()},
    )


def find_record_for_guard_on_date(db: Session, guard_id: int, attendance_date: date) -> AttendanceRecord | None:
    return db.scalar(
        select(AttendanceRecord).where(
            AttendanceRecord.guard_id == guard_id,
            AttendanceRecord.attendance_date == attendance_date,
        )
    )


def find_open_for_guard_on_date(db: Session, guard_id: int, attendance_date: date) -> AttendanceRecord | None:
    return db.scalar(
        select(AttendanceRecord).where(
            AttendanceRecord.guard_id == guard_id,
            AttendanceRecord.attendance_date == attendance_date,
            AttendanceRecord.check_in_time.is_not(None),
            AttendanceRecord.check_out_time.is_(None),
        )
    )


def find_all_for_guard(db: Session, guard_id: int) -> list[AttendanceRecord]:
    stmt = _attendance_query().where(AttendanceRecord.guard_id == guard_id).order_by(
        AttendanceRecord.attendance_date.desc(),
        AttendanceRecord.id.desc(),
    )
    return list(db.scalars(stmt).all())


def find_for_site_on_date(db: Session, site_id: int, attendance_date: date) -> list[AttendanceRecord]:
    stmt = (
        _attendance_query()
        .join(Assignment, Assignment.id == AttendanceRecord.assignment_id)
        .join(SitePost, SitePost.id == Assignment.site_post_id)
        .where(
            SitePost.site_id == site_id,
            AttendanceRecord.attendance_date == attendance_date,
        )
    )
    return list(db.scalars(_by_check_in(stmt)).all())


def find_for_date(db: Session, attendance_date: date) -> list[AttendanceRecord]:
    stmt = _attendance_query().where(AttendanceRecord.attendance_date == attendance_date)
    return list(db.scalars(_by_check_in(stmt)).all())


def find_pending_checkouts(db: Session, up_to_date: date) -> list[AttendanceRecord]:
    stmt = (
        _attendance_query()
        .where(
            AttendanceRecord.attendance_date <= up_to_date,
            AttendanceRecord.check_in_time.is_not(None),
            AttendanceRecord.check_out_time.is_(None),
            AttendanceRecord.status != AttendanceStatus.MISSED_CHECKOUT,
        )
        .order_by(AttendanceRecord.attendance_date.asc(), AttendanceRecord.id.asc())
    )
    return list(db.scalars(stmt).all())


def count_by_status_for_date(db: Session, attendance_date: date) -> dict[AttendanceStatus, int]:
    rows = db.execute(
        select(AttendanceRecord.status, func.count(AttendanceRecord.id))
        .where(AttendanceRecord.attendance_date == attendance_date)
        .group_by(AttendanceRecord.status)
    ).all()
    return {status: int(count) for status, count in rows}


def get_attendance(db: Session, attendance_id: int) -> AttendanceRecord:
    record = db.scalar(_attendance_query().where(AttendanceRecord.id == attendance_id))
    if record is None:
        raise not_found("ATTENDANCE_NOT_FOUND", "Attendance record", attendance_id)
    return record


def list_attendance_for_guard(db: Session, guard_id: int) -> list[AttendanceRecord]:
    if find_guard(db, guard_id) is None:
        raise not_found("GUARD_NOT_FOUND", "Guard", guard_id)
    return find_all_for_guard(db, guard_id)


def check_in(
    db: Session,
    *,
    guard_id: int,
    notes: str | None,
    clock: Clock,
) -> AttendanceRecord:
    today = clock.today()
    now_utc = clock.now_utc()
    local_time = clock.local_now().time()

    guard = find_active_guard(db, guard_id, lock=True)
    if guard is None:
        raise ApiError(
            status_code=400,
            code="INACTIVE_GUARD",
            message=f"Guard not found or inactive with id: {guard_id}",
            details={"guard_id": guard_id},
        )

    assignments = list_active_assignments_on_date(db, today, guard_id=guard_id)
    if not assignments:
        raise ApiError(
            status_code=400,
            code="NO_ACTIVE_ASSIGNMENT",
            message="No active assignment found for guard today. Cannot check in.",
            details={"guard_id": guard_id, "attendance_date": today.isoformat()},
        )
    assignment = assignments[0]

    if find_record_for_guard_on_date(db, guard_id, today) is not None:
        raise _already_checked_in_error(guard_id, today)

    decision = classify_check_in(
        shift=ShiftWindow.from_shift_type(assignment.shift_type),
        local_time=local_time,
    )

    record = AttendanceRecord(
        guard_id=guard_id,
        assignment_id=assignment.id,
        attendance_date=today,
        check_in_time=now_utc,
        check_out_time=None,
        status=decision.status,
        late_minutes=decision.late_minutes,
        early_leave_minutes=0,
        notes=notes or None,
    )
    db.add(record)
    try:
        db.commit()
    except IntegrityError as exc:
        # Concurrent check-in for the same guard and date won the unique constraint.
        db.rollback()
        raise _already_checked_in_error(guard_id, today) from exc

    logger.info(
        "guard_checked_in",
        extra={
            "attendance_id": record.id,
            "guard_id": guard_id,
            "assignment_id": assignment.id,
            "attendance_date": today.isoformat(),
            "status": decision.status.value,
            "late_minutes": decision.late_minutes,
        },
    )
    return get_attendance(db, record.id)


def _resolve_record_for_check_out(db: Session, *, guard_id: int, today: date) -> AttendanceRecord | None:
    record = find_record_for_guard_on_date(db, guard_id, today)
    if record is not None:
        return record

    # An overnight shift started yesterday is still checked out against yesterday's record.
    previous = find_open_for_guard_on_date(db, guard_id, today - timedelta(days=1))
    if previous is not None and previous.assignment.shift_type.is_overnight:
        return previous
    return None


def check_out(
    db: Session,
    *,
    guard_id: int,
    notes: str | None,
    clock: Clock,
) -> AttendanceRecord:
    today = clock.today()
    now_utc = clock.now_utc()
    local_time = clock.local_now().time()

    if find_guard(db, guard_id) is None:
        raise not_found("GUARD_NOT_FOUND", "Guard", guard_id)

    record = _resolve_record_for_check_out(db, guard_id=guard_id, today=today)
    if record is None:
        raise ApiError(
            status_code=400,
            code="NOT_CHECKED_IN",
            message="No check-in record found for today. Please check in first.",
            details={"guard_id": guard_id, "attendance_date": today.isoformat()},
        )
    ensure_can_check_out(check_in_time=record.check_in_time, check_out_time=record.check_out_time)

    decision = classify_check_out(
        shift=ShiftWindow.from_shift_type(record.assignment.shift_type),
        local_time=local_time,
        current_status=record.status,
    )
    record.check_out_time = now_utc
    record.status = decision.status
    record.early_leave_minutes = decision.early_leave_minutes
    record.notes = append_note(record.notes, notes, prefix=CHECKOUT_NOTE_PREFIX)
    db.commit()

    logger.info(
        "guard_checked_out",
        extra={
            "attendance_id": record.id,
            "guard_id": guard_id,
            "attendance_date": record.attendance_date.isoformat(),
            "status": decision.status.value,
            "early_leave_minutes": decision.early_leave_minutes,
        },
    )
    return get_attendance(db, record.id)
