from datetime import date
from typing import Any

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from guardpost.audit import log_audit
from guardpost.clock import Clock, get_clock
from guardpost.db import get_db
from guardpost.errors import ApiError
from guardpost.models import AttendanceRecord, AttendanceStatus, AuditActorType
from guardpost.schemas import (
    AttendanceRead,
    AttendanceSummaryRead,
    CheckInRequest,
    CheckOutRequest,
)
from guardpost.security import actor_id_from_claims, require_actor
from guardpost.services.attendance import (
    check_in,
    check_out,
    count_by_status_for_date,
    find_for_date,
    find_for_site_on_date,
    get_attendance,
    list_attendance_for_guard,
)

router = APIRouter(tags=["attendance"], dependencies=[Depends(require_actor)])


def _to_attendance_read(record: AttendanceRecord) -> AttendanceRead:
    assignment = record.assignment
    return AttendanceRead(
        id=record.id,
        guard_id=record.guard_id,
        guard_name=record.guard.full_name,
        employee_code=record.guard.employee_code,
        assignment_id=record.assignment_id,
        site_name=assignment.site_post.site.name,
        post_name=assignment.site_post.post_name,
        shift_type_name=assignment.shift_type.name,
        attendance_date=record.attendance_date,
        check_in_time=record.check_in_time,
        check_out_time=record.check_out_time,
        status=record.status,
        late_minutes=record.late_minutes,
        early_leave_minutes=record.early_leave_minutes,
        notes=record.notes,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


def _summary_for_day(db: Session, day: date) -> AttendanceSummaryRead:
    counts = count_by_status_for_date(db, day)
    return AttendanceSummaryRead(
        attendance_date=day,
        total=sum(counts.values()),
        counts={item: counts.get(item, 0) for item in AttendanceStatus},
        records=[_to_attendance_read(record) for record in find_for_date(db, day)],
    )


def _audit_attendance_action(
    db: Session,
    request: Request,
    *,
    claims: dict[str, Any],
    action: str,
    guard_id: int,
    record: AttendanceRecord | None = None,
    error: ApiError | None = None,
) -> None:
    details: dict[str, Any] = {"guard_id": guard_id}
    if record is not None:
        details.update(
            {
                "attendance_date": record.attendance_date.isoformat(),
                "status": record.status.value,
                "late_minutes": record.late_minutes,
                "early_leave_minutes": record.early_leave_minutes,
            }
        )
    if error is not None:
        details["reason"] = error.code
    log_audit(
        db,
        actor_type=AuditActorType.USER,
        actor_id=actor_id_from_claims(claims),
        action=action if error is None else f"{action}_FAIL",
        success=error is None,
        entity_type="attendance_record",
        entity_id=str(record.id) if record is not None else None,
        details=details,
        request_id=getattr(request.state, "request_id", None),
    )


@router.post(
    "/api/attendance/check-in",
    response_model=AttendanceRead,
    status_code=status.HTTP_201_CREATED,
)
def check_in_endpoint(
    payload: CheckInRequest,
    request: Request,
    claims: dict[str, Any] = Depends(require_actor),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> AttendanceRead:
    request.state.guard_id = payload.guard_id
    try:
        record = check_in(db, guard_id=payload.guard_id, notes=payload.notes, clock=clock)
    except ApiError as exc:
        _audit_attendance_action(
            db, request, claims=claims, action="ATTENDANCE_CHECK_IN", guard_id=payload.guard_id, error=exc
        )
        raise
    _audit_attendance_action(
        db, request, claims=claims, action="ATTENDANCE_CHECK_IN", guard_id=payload.guard_id, record=record
    )
    return _to_attendance_read(record)


@router.post("/api/attendance/check-out", response_model=AttendanceRead)
def check_out_endpoint(
    payload: CheckOutRequest,
    request: Request,
    claims: dict[str, Any] = Depends(require_actor),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> AttendanceRead:
    request.state.guard_id = payload.guard_id
    try:
        record = check_out(db, guard_id=payload.guard_id, notes=payload.notes, clock=clock)
    except ApiError as exc:
        _audit_attendance_action(
            db, request, claims=claims, action="ATTENDANCE_CHECK_OUT", guard_id=payload.guard_id, error=exc
        )
        raise
    _audit_attendance_action(
        db, request, claims=claims, action="ATTENDANCE_CHECK_OUT", guard_id=payload.guard_id, record=record
    )
    return _to_attendance_read(record)


@router.get("/api/attendance/today-summary", response_model=AttendanceSummaryRead)
def today_summary_endpoint(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> AttendanceSummaryRead:
    return _summary_for_day(db, clock.today())


@router.get("/api/attendance/summary", response_model=AttendanceSummaryRead)
def summary_endpoint(
    day: date = Query(),
    db: Session = Depends(get_db),
) -> AttendanceSummaryRead:
    return _summary_for_day(db, day)


@router.get("/api/attendance/guard/{guard_id}", response_model=list[AttendanceRead])
def guard_history_endpoint(guard_id: int, db: Session = Depends(get_db)) -> list[AttendanceRead]:
    return [_to_attendance_read(record) for record in list_attendance_for_guard(db, guard_id)]


@router.get("/api/attendance/site/{site_id}", response_model=list[AttendanceRead])
def site_attendance_endpoint(
    site_id: int,
    day: date | None = Query(default=None),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> list[AttendanceRead]:
    records = find_for_site_on_date(db, site_id, day or clock.today())
    return [_to_attendance_read(record) for record in records]


@router.get("/api/attendance/{attendance_id}", response_model=AttendanceRead)
def get_attendance_endpoint(attendance_id: int, db: Session = Depends(get_db)) -> AttendanceRead:
    return _to_attendance_read(get_attendance(db, attendance_id))
