from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from guardpost.errors import ApiError, invalid_reference, not_found
from guardpost.models import Assignment, AssignmentStatus, SitePost
from guardpost.services.directory import find_active_guard, find_active_post, find_guard, find_post
from guardpost.services.shift_catalog import find_shift_type

logger = logging.getLogger("guardpost.assignments")

OPEN_ENDED_UNTIL = date(9999, 12, 31)


def _assignment_query():  # type: ignore[no-untyped-def]
    return select(Assignment).options(
        selectinload(Assignment.guard),
        selectinload(Assignment.shift_type),
        selectinload(Assignment.site_post).selectinload(SitePost.site),
    )


def _newest_first(stmt):  # type: ignore[no-untyped-def]
    return stmt.order_by(Assignment.effective_from.desc(), Assignment.id.desc())


def find_overlapping_assignment(
    db: Session,
    *,
    guard_id: int,
    effective_from: date,
    effective_to: date | None,
    exclude_id: int | None = None,
) -> Assignment | None:
    upper = effective_to if effective_to is not None else OPEN_ENDED_UNTIL
    stmt = select(Assignment).where(
        Assignment.guard_id == guard_id,
        Assignment.status == AssignmentStatus.ACTIVE,
        Assignment.effective_from <= upper,
        or_(Assignment.effective_to.is_(None), Assignment.effective_to >= effective_from),
    )
    if exclude_id is not None:
        stmt = stmt.where(Assignment.id != exclude_id)
    return db.scalar(stmt.order_by(Assignment.effective_from.asc()).limit(1))


def _conflict_error(guard_id: int, conflicting_id: int | None) -> ApiError:
    return ApiError(
        status_code=409,
        code="CONFLICTING_ASSIGNMENT",
        message=(
            "Guard already has an active assignment during this period. "
            "Please end or cancel the existing assignment before creating a new one."
        ),
        details={"guard_id": guard_id, "conflicting_assignment_id": conflicting_id},
    )


def create_assignment(
    db: Session,
    *,
    guard_id: int,
    site_post_id: int,
    shift_type_id: int,
    effective_from: date,
    effective_to: date | None,
    notes: str | None,
    actor_id: str,
) -> Assignment:
    guard = find_active_guard(db, guard_id, lock=True)
    if guard is None:
        raise invalid_reference("Guard", guard_id)
    if find_active_post(db, site_post_id) is None:
        raise invalid_reference("Site post", site_post_id)
    if find_shift_type(db, shift_type_id) is None:
        raise invalid_reference("Shift type", shift_type_id)

    if effective_to is not None and effective_to < effective_from:
        raise ApiError(
            status_code=422,
            code="INVALID_RANGE",
            message="Effective to date must be on or after effective from date.",
            details={
                "effective_from": effective_from.isoformat(),
                "effective_to": effective_to.isoformat(),
            },
        )

    conflicting = find_overlapping_assignment(
        db,
        guard_id=guard_id,
        effective_from=effective_from,
        effective_to=effective_to,
    )
    if conflicting is not None:
        raise _conflict_error(guard_id, conflicting.id)

    assignment = Assignment(
        guard_id=guard_id,
        site_post_id=site_post_id,
        shift_type_id=shift_type_id,
        effective_from=effective_from,
        effective_to=effective_to,
        status=AssignmentStatus.ACTIVE,
        notes=notes,
        created_by=actor_id,
    )
    db.add(assignment)
    try:
        db.commit()
    except IntegrityError as exc:
        # Exclusion constraint lost a race against a concurrent creation.
        db.rollback()
        raise _conflict_error(guard_id, None) from exc

    logger.info(
        "assignment_created",
        extra={
            "assignment_id": assignment.id,
            "guard_id": guard_id,
            "site_post_id": site_post_id,
            "shift_type_id": shift_type_id,
            "effective_from": effective_from.isoformat(),
            "effective_to": effective_to.isoformat() if effective_to else None,
            "actor_id": actor_id,
        },
    )
    return get_assignment(db, assignment.id)


def get_assignment(db: Session, assignment_id: int) -> Assignment:
    assignment = db.scalar(_assignment_query().where(Assignment.id == assignment_id))
    if assignment is None:
        raise not_found("ASSIGNMENT_NOT_FOUND", "Assignment", assignment_id)
    return assignment


def cancel_assignment(db: Session, assignment_id: int) -> Assignment:
    assignment = db.get(Assignment, assignment_id)
    if assignment is None:
        raise not_found("ASSIGNMENT_NOT_FOUND", "Assignment", assignment_id)

    previous_status = assignment.status
    assignment.status = AssignmentStatus.CANCELLED
    db.commit()
    logger.info(
        "assignment_cancelled",
        extra={
            "assignment_id": assignment.id,
            "guard_id": assignment.guard_id,
            "previous_status": previous_status.value,
        },
    )
    return assignment


def list_assignments_for_guard(db: Session, guard_id: int) -> list[Assignment]:
    if find_guard(db, guard_id) is None:
        raise not_found("GUARD_NOT_FOUND", "Guard", guard_id)
    stmt = _newest_first(_assignment_query().where(Assignment.guard_id == guard_id))
    return list(db.scalars(stmt).all())


def list_assignments_for_post(db: Session, site_post_id: int) -> list[Assignment]:
    if find_post(db, site_post_id) is None:
        raise not_found("POST_NOT_FOUND", "Site post", site_post_id)
    stmt = _newest_first(_assignment_query().where(Assignment.site_post_id == site_post_id))
    return list(db.scalars(stmt).all())


def list_active_assignments(db: Session) -> list[Assignment]:
    stmt = _newest_first(_assignment_query().where(Assignment.status == AssignmentStatus.ACTIVE))
    return list(db.scalars(stmt).all())


def list_active_assignments_on_date(
    db: Session,
    day: date,
    *,
    guard_id: int | None = None,
    site_post_id: int | None = None,
) -> list[Assignment]:
    stmt = _assignment_query().where(
        Assignment.status == AssignmentStatus.ACTIVE,
        Assignment.effective_from <= day,
        or_(Assignment.effective_to.is_(None), Assignment.effective_to >= day),
    )
    if guard_id is not None:
        stmt = stmt.where(Assignment.guard_id == guard_id)
    if site_post_id is not None:
        stmt = stmt.where(Assignment.site_post_id == site_post_id)
    return list(db.scalars(_newest_first(stmt)).all())
