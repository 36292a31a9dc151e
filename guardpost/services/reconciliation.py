from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo

from sqlalchemy import text
from sqlalchemy.orm import Session

from guardpost.audit import SYSTEM_ACTOR_ID, log_audit
from guardpost.clock import Clock, attendance_timezone, normalize_ts
from guardpost.db import SessionLocal, is_postgresql
from guardpost.models import AttendanceRecord, AttendanceStatus, AuditActorType
from guardpost.services.assignments import list_active_assignments_on_date
from guardpost.services.attendance import (
    count_by_status_for_date,
    find_pending_checkouts,
    find_record_for_guard_on_date,
)
from guardpost.services.attendance_engine import (
    ShiftWindow,
    append_note,
    missed_checkout_deadline,
    missed_checkout_note,
)

logger = logging.getLogger("guardpost.reconciliation")

SWEEP_ABSENCE = "absence"
SWEEP_MISSED_CHECKOUT = "missed_checkout"
JOB_DAILY_SUMMARY = "daily_summary"
ABSENT_NOTE = "Auto-marked ABSENT by system (no check-in recorded)"

_SWEEP_LOCKS: dict[str, threading.Lock] = {
    SWEEP_ABSENCE: threading.Lock(),
    SWEEP_MISSED_CHECKOUT: threading.Lock(),
}
_ADVISORY_LOCK_KEYS: dict[str, int] = {
    SWEEP_ABSENCE: 7_310_001,
    SWEEP_MISSED_CHECKOUT: 7_310_002,
}


@contextmanager
def _serialized_sweep(session: Session, sweep: str) -> Iterator[None]:
    with _SWEEP_LOCKS[sweep]:
        if is_postgresql(session):
            # Released when the sweep transaction commits or rolls back.
            session.execute(
                text("SELECT pg_advisory_xact_lock(:key)"),
                {"key": _ADVISORY_LOCK_KEYS[sweep]},
            )
        yield


def _mark_absent_guards(session: Session, day: date) -> list[AttendanceRecord]:
    assignments = list_active_assignments_on_date(session, day)
    logger.info(
        "absence_sweep_assignments_found",
        extra={"day": day.isoformat(), "assignment_count": len(assignments)},
    )

    created: list[AttendanceRecord] = []
    seen_guard_ids: set[int] = set()
    for assignment in assignments:
        if assignment.guard_id in seen_guard_ids:
            continue
        seen_guard_ids.add(assignment.guard_id)
        if find_record_for_guard_on_date(session, assignment.guard_id, day) is not None:
            continue

        record = AttendanceRecord(
            guard_id=assignment.guard_id,
            assignment_id=assignment.id,
            attendance_date=day,
            check_in_time=None,
            check_out_time=None,
            status=AttendanceStatus.ABSENT,
            late_minutes=0,
            early_leave_minutes=0,
            notes=ABSENT_NOTE,
        )
        session.add(record)
        created.append(record)
        logger.debug(
            "guard_marked_absent",
            extra={"guard_id": assignment.guard_id, "day": day.isoformat()},
        )
    return created


def run_absence_sweep(day: date, db: Session | None = None) -> int:
    if db is None:
        with SessionLocal() as managed_db:
            return run_absence_sweep(day, db=managed_db)

    session = db
    logger.info("absence_sweep_started", extra={"day": day.isoformat()})
    with _serialized_sweep(session, SWEEP_ABSENCE):
        try:
            created = _mark_absent_guards(session, day)
            session.commit()
        except Exception:
            session.rollback()
            logger.exception(
                "reconciliation_sweep_failed",
                extra={"sweep": SWEEP_ABSENCE, "day": day.isoformat()},
            )
            raise

    logger.info(
        "absence_sweep_completed",
        extra={"day": day.isoformat(), "marked_absent": len(created)},
    )
    log_audit(
        session,
        actor_type=AuditActorType.SYSTEM,
        actor_id=SYSTEM_ACTOR_ID,
        action="ABSENCE_SWEEP_COMPLETED",
        success=True,
        entity_type="attendance_sweep",
        entity_id=day.isoformat(),
        details={"marked_absent": len(created), "guard_ids": [item.guard_id for item in created]},
    )
    return len(created)


def _mark_missed_checkouts(session: Session, *, now_utc: datetime, tz: tzinfo) -> list[AttendanceRecord]:
    local_today = now_utc.astimezone(tz).date()
    pending = find_pending_checkouts(session, local_today)
    logger.info(
        "missed_checkout_sweep_pending_found",
        extra={"pending_count": len(pending), "local_day": local_today.isoformat()},
    )

    marked: list[AttendanceRecord] = []
    for record in pending:
        shift = ShiftWindow.from_shift_type(record.assignment.shift_type)
        deadline = missed_checkout_deadline(shift=shift, attendance_date=record.attendance_date, tz=tz)
        if now_utc <= deadline:
            continue

        record.status = AttendanceStatus.MISSED_CHECKOUT
        record.notes = append_note(record.notes, missed_checkout_note(shift))
        marked.append(record)
        logger.debug(
            "attendance_marked_missed_checkout",
            extra={"attendance_id": record.id, "guard_id": record.guard_id},
        )
    return marked


def run_missed_checkout_sweep(
    now_utc: datetime,
    db: Session | None = None,
    *,
    tz: tzinfo | None = None,
) -> int:
    if db is None:
        with SessionLocal() as managed_db:
            return run_missed_checkout_sweep(now_utc, db=managed_db, tz=tz)

    session = db
    reference_utc = normalize_ts(now_utc)
    zone = tz or attendance_timezone()
    logger.info("missed_checkout_sweep_started", extra={"now_utc": reference_utc.isoformat()})
    with _serialized_sweep(session, SWEEP_MISSED_CHECKOUT):
        try:
            marked = _mark_missed_checkouts(session, now_utc=reference_utc, tz=zone)
            session.commit()
        except Exception:
            session.rollback()
            logger.exception(
                "reconciliation_sweep_failed",
                extra={"sweep": SWEEP_MISSED_CHECKOUT, "now_utc": reference_utc.isoformat()},
            )
            raise

    logger.info("missed_checkout_sweep_completed", extra={"marked_missed_checkout": len(marked)})
    if marked:
        log_audit(
            session,
            actor_type=AuditActorType.SYSTEM,
            actor_id=SYSTEM_ACTOR_ID,
            action="MISSED_CHECKOUT_SWEEP_COMPLETED",
            success=True,
            entity_type="attendance_sweep",
            entity_id=reference_utc.isoformat(),
            details={"attendance_ids": [item.id for item in marked]},
        )
    return len(marked)


def summarize_attendance_for_day(day: date, db: Session | None = None) -> dict[str, int]:
    if db is None:
        with SessionLocal() as managed_db:
            return summarize_attendance_for_day(day, db=managed_db)

    counts = count_by_status_for_date(db, day)
    summary = {status.value: counts.get(status, 0) for status in AttendanceStatus}
    summary["TOTAL"] = sum(counts.values())
    logger.info("daily_attendance_summary", extra={"day": day.isoformat(), "summary": summary})
    return summary


@dataclass
class ReconciliationSchedule:
    absence_sweep_at: time
    daily_summary_at: time
    last_missed_checkout_slot: datetime | None = None
    last_absence_day: date | None = None
    last_summary_day: date | None = None

    def due_jobs(self, local_now: datetime) -> list[str]:
        jobs: list[str] = []
        if self.last_missed_checkout_slot != _hour_slot(local_now):
            jobs.append(SWEEP_MISSED_CHECKOUT)
        if self.absence_day_due(local_now) is not None:
            jobs.append(SWEEP_ABSENCE)
        if local_now.time() >= self.daily_summary_at and self.last_summary_day != local_now.date():
            jobs.append(JOB_DAILY_SUMMARY)
        return jobs

    def absence_day_due(self, local_now: datetime) -> date | None:
        today = local_now.date()
        if self.last_absence_day is None:
            next_day = today - timedelta(days=1)
        else:
            next_day = self.last_absence_day + timedelta(days=1)
        # Days skipped while the worker was down or failing are swept oldest first.
        if next_day < today:
            return next_day
        if next_day == today and local_now.time() >= self.absence_sweep_at:
            return today
        return None

    def mark_done(self, job: str, local_now: datetime) -> None:
        if job == SWEEP_MISSED_CHECKOUT:
            self.last_missed_checkout_slot = _hour_slot(local_now)
        elif job == SWEEP_ABSENCE:
            self.last_absence_day = self.absence_day_due(local_now) or self.last_absence_day
        elif job == JOB_DAILY_SUMMARY:
            self.last_summary_day = local_now.date()


def _hour_slot(local_now: datetime) -> datetime:
    return local_now.replace(minute=0, second=0, microsecond=0)


def run_due_reconciliation_jobs(schedule: ReconciliationSchedule, clock: Clock) -> dict[str, int]:
    local_now = clock.local_now()
    results: dict[str, int] = {}
    for job in schedule.due_jobs(local_now):
        try:
            if job == SWEEP_MISSED_CHECKOUT:
                results[job] = run_missed_checkout_sweep(clock.now_utc(), tz=clock.tz)
            elif job == SWEEP_ABSENCE:
                results[job] = run_absence_sweep(schedule.absence_day_due(local_now))
            elif job == JOB_DAILY_SUMMARY:
                summary = summarize_attendance_for_day(local_now.date() - timedelta(days=1))
                results[job] = summary["TOTAL"]
        except Exception:
            # Left unmarked so the next tick retries it.
            logger.exception("reconciliation_job_failed", extra={"job": job})
            continue
        schedule.mark_done(job, local_now)
    return results
