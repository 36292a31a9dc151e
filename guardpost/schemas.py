from datetime import date, datetime, time

from pydantic import BaseModel, ConfigDict, Field

from guardpost.models import AssignmentStatus, AttendanceStatus


class ShiftTypeRead(BaseModel):
    id: int
    name: str
    start_time: time
    end_time: time
    description: str | None = None
    is_overnight: bool

    model_config = ConfigDict(from_attributes=True)


class AssignmentCreate(BaseModel):
    guard_id: int = Field(ge=1)
    site_post_id: int = Field(ge=1)
    shift_type_id: int = Field(ge=1)
    effective_from: date
    effective_to: date | None = None
    notes: str | None = Field(default=None, max_length=2000)


class AssignmentRead(BaseModel):
    id: int
    guard_id: int
    guard_name: str
    employee_code: str
    site_post_id: int
    post_name: str
    site_id: int
    site_name: str
    shift_type_id: int
    shift_type_name: str
    shift_start_time: time
    shift_end_time: time
    effective_from: date
    effective_to: date | None
    status: AssignmentStatus
    notes: str | None
    created_by: str
    created_at: datetime
    updated_at: datetime


class CheckInRequest(BaseModel):
    guard_id: int = Field(ge=1)
    notes: str | None = Field(default=None, max_length=2000)


class CheckOutRequest(BaseModel):
    guard_id: int = Field(ge=1)
    notes: str | None = Field(default=None, max_length=2000)


class AttendanceRead(BaseModel):
    id: int
    guard_id: int
    guard_name: str
    employee_code: str
    assignment_id: int
    site_name: str
    post_name: str
    shift_type_name: str
    attendance_date: date
    check_in_time: datetime | None
    check_out_time: datetime | None
    status: AttendanceStatus
    late_minutes: int
    early_leave_minutes: int
    notes: str | None
    created_at: datetime
    updated_at: datetime


class AttendanceSummaryRead(BaseModel):
    attendance_date: date
    total: int
    counts: dict[AttendanceStatus, int]
    records: list[AttendanceRead] = Field(default_factory=list)


class SweepResultRead(BaseModel):
    sweep: str
    affected: int
    attendance_date: date | None = None
    ran_at_utc: datetime
