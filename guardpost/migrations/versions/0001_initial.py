"""Initial guard scheduling schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-01 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

directory_status = postgresql.ENUM(
    "ACTIVE",
    "INACTIVE",
    "DELETED",
    name="directory_status",
    create_type=False,
)
assignment_status = postgresql.ENUM(
    "ACTIVE",
    "CANCELLED",
    name="assignment_status",
    create_type=False,
)
attendance_status = postgresql.ENUM(
    "PRESENT",
    "LATE",
    "EARLY_LEAVE",
    "ABSENT",
    "MISSED_CHECKOUT",
    name="attendance_status",
    create_type=False,
)
audit_actor_type = postgresql.ENUM(
    "USER",
    "SYSTEM",
    name="audit_actor_type",
    create_type=False,
)


def upgrade() -> None:
    bind = op.get_bind()
    directory_status.create(bind, checkfirst=True)
    assignment_status.create(bind, checkfirst=True)
    attendance_status.create(bind, checkfirst=True)
    audit_actor_type.create(bind, checkfirst=True)
    op.execute("CREATE EXTENSION IF NOT EXISTS btree_gist")

    op.create_table(
        "shift_types",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=50), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.UniqueConstraint("name", name="uq_shift_types_name"),
    )

    op.create_table(
        "guards",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_code", sa.String(length=50), nullable=False),
        sa.Column("first_name", sa.String(length=255), nullable=False),
        sa.Column("last_name", sa.String(length=255), nullable=True),
        sa.Column("status", directory_status, nullable=False, server_default="ACTIVE"),
        sa.UniqueConstraint("employee_code", name="uq_guards_employee_code"),
    )

    op.create_table(
        "sites",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("status", directory_status, nullable=False, server_default="ACTIVE"),
    )

    op.create_table(
        "site_posts",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("site_id", sa.Integer(), nullable=False),
        sa.Column("post_name", sa.String(length=255), nullable=False),
        sa.Column("status", directory_status, nullable=False, server_default="ACTIVE"),
        sa.ForeignKeyConstraint(["site_id"], ["sites.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_site_posts_site_id", "site_posts", ["site_id"], unique=False)

    op.create_table(
        "guard_assignments",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("guard_id", sa.Integer(), nullable=False),
        sa.Column("site_post_id", sa.Integer(), nullable=False),
        sa.Column("shift_type_id", sa.Integer(), nullable=False),
        sa.Column("effective_from", sa.Date(), nullable=False),
        sa.Column("effective_to", sa.Date(), nullable=True),
        sa.Column("status", assignment_status, nullable=False, server_default="ACTIVE"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.ForeignKeyConstraint(["guard_id"], ["guards.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["site_post_id"], ["site_posts.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["shift_type_id"], ["shift_types.id"], ondelete="RESTRICT"),
        sa.CheckConstraint(
            "effective_to IS NULL OR effective_to >= effective_from",
            name="ck_guard_assignments_effective_range",
        ),
    )
    op.create_index("ix_guard_assignments_guard_status", "guard_assignments", ["guard_id", "status"], unique=False)
    op.create_index("ix_guard_assignments_site_post_id", "guard_assignments", ["site_post_id"], unique=False)
    # Two ACTIVE assignments of one guard may never share a calendar day.
    op.execute(
        """
        ALTER TABLE guard_assignments
        ADD CONSTRAINT ex_guard_assignments_active_overlap
        EXCLUDE USING gist (
            guard_id WITH =,
            daterange(effective_from, COALESCE(effective_to, DATE '9999-12-31'), '[]') WITH &&
        )
        WHERE (status = 'ACTIVE')
        """
    )

    op.create_table(
        "attendance_records",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("guard_id", sa.Integer(), nullable=False),
        sa.Column("assignment_id", sa.Integer(), nullable=False),
        sa.Column("attendance_date", sa.Date(), nullable=False),
        sa.Column("check_in_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("check_out_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", attendance_status, nullable=False),
        sa.Column("late_minutes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("early_leave_minutes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.ForeignKeyConstraint(["guard_id"], ["guards.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["assignment_id"], ["guard_assignments.id"], ondelete="RESTRICT"),
        sa.UniqueConstraint("guard_id", "attendance_date", name="uq_attendance_records_guard_date"),
        sa.CheckConstraint("late_minutes >= 0", name="ck_attendance_records_late_minutes"),
        sa.CheckConstraint("early_leave_minutes >= 0", name="ck_attendance_records_early_leave_minutes"),
    )
    op.create_index("ix_attendance_records_assignment_id", "attendance_records", ["assignment_id"], unique=False)
    op.create_index(
        "ix_attendance_records_date_status",
        "attendance_records",
        ["attendance_date", "status"],
        unique=False,
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("ts_utc", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("actor_type", audit_actor_type, nullable=False),
        sa.Column("actor_id", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=255), nullable=True),
        sa.Column("entity_id", sa.String(length=255), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "details",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
    )
    op.create_index("ix_audit_logs_ts_utc", "audit_logs", ["ts_utc"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_audit_logs_ts_utc", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_attendance_records_date_status", table_name="attendance_records")
    op.drop_index("ix_attendance_records_assignment_id", table_name="attendance_records")
    op.drop_table("attendance_records")
    op.drop_index("ix_guard_assignments_site_post_id", table_name="guard_assignments")
    op.drop_index("ix_guard_assignments_guard_status", table_name="guard_assignments")
    op.drop_table("guard_assignments")
    op.drop_index("ix_site_posts_site_id", table_name="site_posts")
    op.drop_table("site_posts")
    op.drop_table("sites")
    op.drop_table("guards")
    op.drop_table("shift_types")

    bind = op.get_bind()
    audit_actor_type.drop(bind, checkfirst=True)
    attendance_status.drop(bind, checkfirst=True)
    assignment_status.drop(bind, checkfirst=True)
    directory_status.drop(bind, checkfirst=True)
