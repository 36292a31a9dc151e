from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from guardpost.db import Base
from guardpost.models import Assignment, AssignmentStatus, DirectoryStatus, Guard, ShiftType, Site, SitePost
from guardpost.services.shift_catalog import get_shift_type_by_name, seed_default_shift_types


def build_sqlite_engine() -> Engine:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


def build_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@dataclass
class Roster:
    day_shift: ShiftType
    evening_shift: ShiftType
    night_shift: ShiftType
    site: Site
    gate: SitePost
    lobby: SitePost
    closed_post: SitePost
    alice: Guard
    bob: Guard
    carol: Guard
    retired: Guard


def seed_roster(db: Session) -> Roster:
    seed_default_shift_types(db)
    site = Site(name="Harbor Tower", status=DirectoryStatus.ACTIVE)
    gate = SitePost(site=site, post_name="Main Gate", status=DirectoryStatus.ACTIVE)
    lobby = SitePost(site=site, post_name="Lobby", status=DirectoryStatus.ACTIVE)
    closed_post = SitePost(site=site, post_name="Loading Dock", status=DirectoryStatus.INACTIVE)
    alice = Guard(employee_code="G-001", first_name="Alice", last_name="Stone", status=DirectoryStatus.ACTIVE)
    bob = Guard(employee_code="G-002", first_name="Bob", last_name="Reyes", status=DirectoryStatus.ACTIVE)
    carol = Guard(employee_code="G-003", first_name="Carol", last_name=None, status=DirectoryStatus.ACTIVE)
    retired = Guard(employee_code="G-099", first_name="Rex", last_name="Old", status=DirectoryStatus.INACTIVE)
    db.add_all([site, gate, lobby, closed_post, alice, bob, carol, retired])
    db.commit()

    return Roster(
        day_shift=get_shift_type_by_name(db, "DAY"),  # type: ignore[arg-type]
        evening_shift=get_shift_type_by_name(db, "EVENING"),  # type: ignore[arg-type]
        night_shift=get_shift_type_by_name(db, "NIGHT"),  # type: ignore[arg-type]
        site=site,
        gate=gate,
        lobby=lobby,
        closed_post=closed_post,
        alice=alice,
        bob=bob,
        carol=carol,
        retired=retired,
    )


def add_assignment(
    db: Session,
    *,
    guard: Guard,
    post: SitePost,
    shift_type: ShiftType,
    effective_from: date,
    effective_to: date | None = None,
    status: AssignmentStatus = AssignmentStatus.ACTIVE,
) -> Assignment:
    assignment = Assignment(
        guard_id=guard.id,
        site_post_id=post.id,
        shift_type_id=shift_type.id,
        effective_from=effective_from,
        effective_to=effective_to,
        status=status,
        created_by="fixture",
    )
    db.add(assignment)
    db.commit()
    return assignment
