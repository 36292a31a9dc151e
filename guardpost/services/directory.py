from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from guardpost.models import DirectoryStatus, Guard, SitePost


def find_guard(db: Session, guard_id: int) -> Guard | None:
    return db.get(Guard, guard_id)


def find_active_guard(db: Session, guard_id: int, *, lock: bool = False) -> Guard | None:
    stmt = select(Guard).where(
        Guard.id == guard_id,
        Guard.status == DirectoryStatus.ACTIVE,
    )
    # Row lock scoped to the guard serializes writers for the same guard.
    if lock:
        stmt = stmt.with_for_update()
    return db.scalar(stmt)


def find_active_post(db: Session, site_post_id: int) -> SitePost | None:
    return db.scalar(
        select(SitePost).where(
            SitePost.id == site_post_id,
            SitePost.status == DirectoryStatus.ACTIVE,
        )
    )


def find_post(db: Session, site_post_id: int) -> SitePost | None:
    return db.get(SitePost, site_post_id)
