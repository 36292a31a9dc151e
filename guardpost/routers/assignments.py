from datetime import date
from typing import Any

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from guardpost.audit import log_audit
from guardpost.db import get_db
from guardpost.models import Assignment, AuditActorType
from guardpost.schemas import AssignmentCreate, AssignmentRead, ShiftTypeRead
from guardpost.security import actor_id_from_claims, require_actor
from guardpost.services.assignments import (
    cancel_assignment,
    create_assignment,
    get_assignment,
    list_active_assignments,
    list_active_assignments_on_date,
    list_assignments_for_guard,
    list_assignments_for_post,
)
from guardpost.services.shift_catalog import list_shift_types

router = APIRouter(tags=["assignments"], dependencies=[Depends(require_actor)])


def _to_assignment_read(assignment: Assignment) -> AssignmentRead:
    site_post = assignment.site_post
    shift_type = assignment.shift_type
    return AssignmentRead(
        id=assignment.id,
        guard_id=assignment.guard_id,
        guard_name=assignment.guard.full_name,
        employee_code=assignment.guard.employee_code,
        site_post_id=assignment.site_post_id,
        post_name=site_post.post_name,
        site_id=site_post.site_id,
        site_name=site_post.site.name,
        shift_type_id=assignment.shift_type_id,
        shift_type_name=shift_type.name,
        shift_start_time=shift_type.start_time,
        shift_end_time=shift_type.end_time,
        effective_from=assignment.effective_from,
        effective_to=assignment.effective_to,
        status=assignment.status,
        notes=assignment.notes,
        created_by=assignment.created_by,
        created_at=assignment.created_at,
        updated_at=assignment.updated_at,
    )


@router.post(
    "/api/assignments",
    response_model=AssignmentRead,
    status_code=status.HTTP_201_CREATED,
)
def create_assignment_endpoint(
    payload: AssignmentCreate,
    request: Request,
    claims: dict[str, Any] = Depends(require_actor),
    db: Session = Depends(get_db),
) -> AssignmentRead:
    actor_id = actor_id_from_claims(claims)
    assignment = create_assignment(
        db,
        guard_id=payload.guard_id,
        site_post_id=payload.site_post_id,
        shift_type_id=payload.shift_type_id,
        effective_from=payload.effective_from,
        effective_to=payload.effective_to,
        notes=payload.notes,
        actor_id=actor_id,
    )
    log_audit(
        db,
        actor_type=AuditActorType.USER,
        actor_id=actor_id,
        action="ASSIGNMENT_CREATED",
        success=True,
        entity_type="assignment",
        entity_id=str(assignment.id),
        details={
            "guard_id": assignment.guard_id,
            "site_post_id": assignment.site_post_id,
            "shift_type_id": assignment.shift_type_id,
            "effective_from": assignment.effective_from.isoformat(),
            "effective_to": assignment.effective_to.isoformat() if assignment.effective_to else None,
        },
        request_id=getattr(request.state, "request_id", None),
    )
    return _to_assignment_read(assignment)


@router.get("/api/assignments", response_model=list[AssignmentRead])
def list_active_assignments_endpoint(db: Session = Depends(get_db)) -> list[AssignmentRead]:
    return [_to_assignment_read(item) for item in list_active_assignments(db)]


@router.get("/api/assignments/shift-types", response_model=list[ShiftTypeRead])
def list_shift_types_endpoint(db: Session = Depends(get_db)) -> list[ShiftTypeRead]:
    return [ShiftTypeRead.model_validate(item) for item in list_shift_types(db)]


@router.get("/api/assignments/active-on", response_model=list[AssignmentRead])
def list_assignments_active_on_endpoint(
    day: date = Query(),
    guard_id: int | None = Query(default=None, ge=1),
    site_post_id: int | None = Query(default=None, ge=1),
    db: Session = Depends(get_db),
) -> list[AssignmentRead]:
    assignments = list_active_assignments_on_date(db, day, guard_id=guard_id, site_post_id=site_post_id)
    return [_to_assignment_read(item) for item in assignments]


@router.get("/api/assignments/guard/{guard_id}", response_model=list[AssignmentRead])
def list_guard_assignments_endpoint(guard_id: int, db: Session = Depends(get_db)) -> list[AssignmentRead]:
    return [_to_assignment_read(item) for item in list_assignments_for_guard(db, guard_id)]


@router.get("/api/assignments/site-post/{site_post_id}", response_model=list[AssignmentRead])
def list_post_assignments_endpoint(site_post_id: int, db: Session = Depends(get_db)) -> list[AssignmentRead]:
    return [_to_assignment_read(item) for item in list_assignments_for_post(db, site_post_id)]


@router.get("/api/assignments/{assignment_id}", response_model=AssignmentRead)
def get_assignment_endpoint(assignment_id: int, db: Session = Depends(get_db)) -> AssignmentRead:
    return _to_assignment_read(get_assignment(db, assignment_id))


@router.delete("/api/assignments/{assignment_id}", status_code=status.HTTP_204_NO_CONTENT)
def cancel_assignment_endpoint(
    assignment_id: int,
    request: Request,
    claims: dict[str, Any] = Depends(require_actor),
    db: Session = Depends(get_db),
) -> None:
    assignment = cancel_assignment(db, assignment_id)
    log_audit(
        db,
        actor_type=AuditActorType.USER,
        actor_id=actor_id_from_claims(claims),
        action="ASSIGNMENT_CANCELLED",
        success=True,
        entity_type="assignment",
        entity_id=str(assignment.id),
        details={"guard_id": assignment.guard_id},
        request_id=getattr(request.state, "request_id", None),
    )
