from __future__ import annotations

import enum
from datetime import date, datetime, time, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from guardpost.db import Base


class DirectoryStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    DELETED = "DELETED"


class AssignmentStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    CANCELLED = "CANCELLED"


class AttendanceStatus(str, enum.Enum):
    PRESENT = "PRESENT"
    LATE = "LATE"
    EARLY_LEAVE = "EARLY_LEAVE"
    ABSENT = "ABSENT"
    MISSED_CHECKOUT = "MISSED_CHECKOUT"


class AuditActorType(str, enum.Enum):
    USER = "USER"
    SYSTEM = "SYSTEM"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ShiftType(Base):
    __tablename__ = "shift_types"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    assignments: Mapped[list[Assignment]] = relationship(back_populates="shift_type")

    @property
    def is_overnight(self) -> bool:
        return self.start_time > self.end_time


class Guard(Base):
    __tablename__ = "guards"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    first_name: Mapped[str] = mapped_column(String(255), nullable=False)
    last_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[DirectoryStatus] = mapped_column(
        Enum(DirectoryStatus, name="directory_status"),
        nullable=False,
        default=DirectoryStatus.ACTIVE,
    )

    assignments: Mapped[list[Assignment]] = relationship(back_populates="guard")
    attendance_records: Mapped[list[AttendanceRecord]] = relationship(back_populates="guard")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name or ''}".strip()


class Site(Base):
    __tablename__ = "sites"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[DirectoryStatus] = mapped_column(
        Enum(DirectoryStatus, name="directory_status"),
        nullable=False,
        default=DirectoryStatus.ACTIVE,
    )

    posts: Mapped[list[SitePost]] = relationship(back_populates="site")


class SitePost(Base):
    __tablename__ = "site_posts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    site_id: Mapped[int] = mapped_column(ForeignKey("sites.id", ondelete="CASCADE"), nullable=False, index=True)
    post_name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[DirectoryStatus] = mapped_column(
        Enum(DirectoryStatus, name="directory_status"),
        nullable=False,
        default=DirectoryStatus.ACTIVE,
    )

    site: Mapped[Site] = relationship(back_populates="posts")
    assignments: Mapped[list[Assignment]] = relationship(back_populates="site_post")


class Assignment(Base):
    __tablename__ = "guard_assignments"
    __table_args__ = (
        CheckConstraint(
            "effective_to IS NULL OR effective_to >= effective_from",
            name="ck_guard_assignments_effective_range",
        ),
        Index("ix_guard_assignments_guard_status", "guard_id", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    guard_id: Mapped[int] = mapped_column(ForeignKey("guards.id", ondelete="RESTRICT"), nullable=False)
    site_post_id: Mapped[int] = mapped_column(
        ForeignKey("site_posts.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    shift_type_id: Mapped[int] = mapped_column(ForeignKey("shift_types.id", ondelete="RESTRICT"), nullable=False)
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[AssignmentStatus] = mapped_column(
        Enum(AssignmentStatus, name="assignment_status"),
        nullable=False,
        default=AssignmentStatus.ACTIVE,
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=_utcnow,
    )

    guard: Mapped[Guard] = relationship(back_populates="assignments")
    site_post: Mapped[SitePost] = relationship(back_populates="assignments")
    shift_type: Mapped[ShiftType] = relationship(back_populates="assignments")
    attendance_records: Mapped[list[AttendanceRecord]] = relationship(back_populates="assignment")

    def covers(self, day: date) -> bool:
        if self.effective_from > day:
            return False
        return self.effective_to is None or self.effective_to >= day


class AttendanceRecord(Base):
    __tablename__ = "attendance_records"
    __table_args__ = (
        UniqueConstraint("guard_id", "attendance_date", name="uq_attendance_records_guard_date"),
        CheckConstraint("late_minutes >= 0", name="ck_attendance_records_late_minutes"),
        CheckConstraint("early_leave_minutes >= 0", name="ck_attendance_records_early_leave_minutes"),
        Index("ix_attendance_records_date_status", "attendance_date", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    guard_id: Mapped[int] = mapped_column(ForeignKey("guards.id", ondelete="RESTRICT"), nullable=False)
    assignment_id: Mapped[int] = mapped_column(
        ForeignKey("guard_assignments.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    attendance_date: Mapped[date] = mapped_column(Date, nullable=False)
    check_in_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    check_out_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[AttendanceStatus] = mapped_column(
        Enum(AttendanceStatus, name="attendance_status"),
        nullable=False,
    )
    late_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    early_leave_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=_utcnow,
    )

    guard: Mapped[Guard] = relationship(back_populates="attendance_records")
    assignment: Mapped[Assignment] = relationship(back_populates="attendance_records")


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ts_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        index=True,
    )
    actor_type: Mapped[AuditActorType] = mapped_column(
        Enum(AuditActorType, name="audit_actor_type"),
        nullable=False,
    )
    actor_id: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[str] = mapped_column(String(255), nullable=False)
    entity_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    details: Mapped[dict[str, Any]] = mapped_column(
        JSON().with_variant(JSONB, "postgresql"),
        nullable=False,
        default=dict,
    )
