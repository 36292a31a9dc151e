from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo

from guardpost.errors import ApiError
from guardpost.models import AttendanceStatus, ShiftType

CHECK_IN_BEFORE_SHIFT = timedelta(hours=2)
CHECK_IN_AFTER_SHIFT = timedelta(hours=2)
CHECKOUT_GRACE = timedelta(hours=2)
NOTE_DELIMITER = " | "
CHECKOUT_NOTE_PREFIX = "Checkout: "

_SECONDS_PER_DAY = 24 * 60 * 60


@dataclass(frozen=True)
class ShiftWindow:
    start: time
    end: time

    @property
    def overnight(self) -> bool:
        return self.start > self.end

    @classmethod
    def from_shift_type(cls, shift_type: ShiftType) -> ShiftWindow:
        return cls(start=shift_type.start_time, end=shift_type.end_time)


@dataclass(frozen=True)
class CheckInDecision:
    status: AttendanceStatus
    late_minutes: int


@dataclass(frozen=True)
class CheckOutDecision:
    status: AttendanceStatus
    early_leave_minutes: int


def _seconds_of_day(value: time) -> int:
    return value.hour * 3600 + value.minute * 60 + value.second


def _time_of_day(seconds: int) -> time:
    return time(hour=seconds // 3600, minute=(seconds % 3600) // 60, second=seconds % 60)


def _minutes_between(earlier: time, later: time) -> int:
    return max(0, (_seconds_of_day(later) - _seconds_of_day(earlier)) // 60)


def format_hhmm(value: time) -> str:
    return f"{value.hour:02d}:{value.minute:02d}"


def check_in_window(shift: ShiftWindow) -> tuple[time, time]:
    # Clamped to the shift's calendar day; check-ins are dated to the day they happen.
    start = _seconds_of_day(shift.start)
    earliest = max(0, start - int(CHECK_IN_BEFORE_SHIFT.total_seconds()))
    latest = min(_SECONDS_PER_DAY - 1, start + int(CHECK_IN_AFTER_SHIFT.total_seconds()))
    return _time_of_day(earliest), _time_of_day(latest)


def is_within_check_in_window(shift: ShiftWindow, local_time: time) -> bool:
    earliest, latest = check_in_window(shift)
    return earliest <= local_time <= latest


def classify_check_in(*, shift: ShiftWindow, local_time: time) -> CheckInDecision:
    # Overnight shifts are never gated on entry.
    if not shift.overnight and not is_within_check_in_window(shift, local_time):
        earliest, latest = check_in_window(shift)
        raise ApiError(
            status_code=422,
            code="OUTSIDE_CHECKIN_WINDOW",
            message=(
                f"Check-in window is {format_hhmm(earliest)} to {format_hhmm(latest)}. "
                f"Current time {format_hhmm(local_time)} is outside allowed window."
            ),
            details={
                "window_start": format_hhmm(earliest),
                "window_end": format_hhmm(latest),
                "observed": format_hhmm(local_time),
            },
        )

    if local_time > shift.start:
        return CheckInDecision(
            status=AttendanceStatus.LATE,
            late_minutes=_minutes_between(shift.start, local_time),
        )
    return CheckInDecision(status=AttendanceStatus.PRESENT, late_minutes=0)


def ensure_can_check_out(*, check_in_time: datetime | None, check_out_time: datetime | None) -> None:
    if check_in_time is None:
        raise ApiError(
            status_code=400,
            code="NOT_CHECKED_IN",
            message="No check-in record found for today. Please check in first.",
        )
    if check_out_time is not None:
        raise ApiError(
            status_code=409,
            code="ALREADY_CHECKED_OUT",
            message="Already checked out today. Cannot check out again.",
        )


def classify_check_out(
    *,
    shift: ShiftWindow,
    local_time: time,
    current_status: AttendanceStatus,
) -> CheckOutDecision:
    if local_time >= shift.end:
        return CheckOutDecision(status=current_status, early_leave_minutes=0)

    # LATE is detected first and is never overwritten by EARLY_LEAVE.
    status = current_status
    if current_status == AttendanceStatus.PRESENT:
        status = AttendanceStatus.EARLY_LEAVE
    return CheckOutDecision(
        status=status,
        early_leave_minutes=_minutes_between(local_time, shift.end),
    )


def append_note(existing: str | None, note: str | None, *, prefix: str = "") -> str | None:
    if not note:
        return existing
    addition = f"{prefix}{note}"
    if existing:
        return f"{existing}{NOTE_DELIMITER}{addition}"
    return addition


def missed_checkout_deadline(*, shift: ShiftWindow, attendance_date: date, tz: tzinfo) -> datetime:
    shift_end = datetime.combine(attendance_date, shift.end, tzinfo=tz)
    if shift.overnight:
        shift_end += timedelta(days=1)
    return shift_end + CHECKOUT_GRACE


def missed_checkout_note(shift: ShiftWindow) -> str:
    grace_hours = int(CHECKOUT_GRACE.total_seconds() // 3600)
    return (
        "Auto-marked MISSED_CHECKOUT by system "
        f"(no checkout by {format_hhmm(shift.end)} + {grace_hours} hour grace period)"
    )
