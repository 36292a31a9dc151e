from __future__ import annotations

import logging
from datetime import time

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from guardpost.errors import not_found
from guardpost.models import ShiftType

logger = logging.getLogger("guardpost.shift_catalog")

DEFAULT_SHIFT_TYPES: tuple[tuple[str, time, time, str], ...] = (
    ("DAY", time(8, 0), time(16, 0), "Day shift"),
    ("EVENING", time(16, 0), time(0, 0), "Evening shift"),
    ("NIGHT", time(22, 0), time(6, 0), "Night shift (overnight)"),
)


def list_shift_types(db: Session) -> list[ShiftType]:
    return list(db.scalars(select(ShiftType).order_by(ShiftType.start_time.asc(), ShiftType.id.asc())).all())


def find_shift_type(db: Session, shift_type_id: int) -> ShiftType | None:
    return db.get(ShiftType, shift_type_id)


def get_shift_type(db: Session, shift_type_id: int) -> ShiftType:
    shift_type = find_shift_type(db, shift_type_id)
    if shift_type is None:
        raise not_found("SHIFT_TYPE_NOT_FOUND", "Shift type", shift_type_id)
    return shift_type


def get_shift_type_by_name(db: Session, name: str) -> ShiftType | None:
    normalized = name.strip().lower()
    if not normalized:
        return None
    return db.scalar(select(ShiftType).where(func.lower(ShiftType.name) == normalized))


def seed_default_shift_types(db: Session) -> list[ShiftType]:
    created: list[ShiftType] = []
    for name, start_time, end_time, description in DEFAULT_SHIFT_TYPES:
        if get_shift_type_by_name(db, name) is not None:
            continue
        shift_type = ShiftType(
            name=name,
            start_time=start_time,
            end_time=end_time,
            description=description,
        )
        db.add(shift_type)
        created.append(shift_type)
    db.commit()
    if created:
        logger.info("shift_types_seeded", extra={"names": [item.name for item in created]})
    return created
