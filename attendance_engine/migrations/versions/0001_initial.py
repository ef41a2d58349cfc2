"""Initial attendance engine schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-16 00:00:00
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

member_role = postgresql.ENUM(
    "member",
    "admin",
    name="member_role",
    create_type=False,
)
attendance_status = postgresql.ENUM(
    "present",
    "late",
    "early_out",
    "no_checkout",
    "absent",
    name="attendance_status",
    create_type=False,
)
audit_actor_type = postgresql.ENUM(
    "member",
    "anonymous",
    "system",
    name="audit_actor_type",
    create_type=False,
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    member_role.create(bind, checkfirst=True)
    attendance_status.create(bind, checkfirst=True)
    audit_actor_type.create(bind, checkfirst=True)

    op.create_table(
        "departments",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.String(length=1000), nullable=True),
        sa.Column("location", sa.String(length=64), nullable=True),
        sa.Column("geofence_radius_m", sa.Integer(), nullable=True, server_default=sa.text("500")),
        sa.Column("start_time", sa.Time(), nullable=True),
        sa.Column("end_time", sa.Time(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("name", name="uq_departments_name"),
    )

    op.create_table(
        "groups",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.String(length=1000), nullable=True),
        sa.Column("department_id", sa.Integer(), nullable=True),
        sa.Column("location", sa.String(length=64), nullable=True),
        sa.Column("geofence_radius_m", sa.Integer(), nullable=True, server_default=sa.text("500")),
        sa.Column("start_time", sa.Time(), nullable=True),
        sa.Column("end_time", sa.Time(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["department_id"], ["departments.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_groups_department_id", "groups", ["department_id"], unique=False)

    op.create_table(
        "members",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("first_name", sa.String(length=255), nullable=False),
        sa.Column("middle_name", sa.String(length=255), nullable=True),
        sa.Column("last_name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=True),
        sa.Column("photo_url", sa.String(length=2048), nullable=True),
        sa.Column("role", member_role, nullable=False, server_default=sa.text("'member'")),
        sa.Column("department_id", sa.Integer(), nullable=True),
        sa.Column("group_id", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["department_id"], ["departments.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["group_id"], ["groups.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("email", name="uq_members_email"),
    )
    op.create_index("ix_members_department_id", "members", ["department_id"], unique=False)
    op.create_index("ix_members_group_id", "members", ["group_id"], unique=False)

    op.create_table(
        "attendance",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("member_id", sa.Integer(), nullable=False),
        sa.Column("attendance_date", sa.Date(), nullable=False),
        sa.Column("check_in_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("check_out_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", attendance_status, nullable=False),
        sa.Column("location", sa.String(length=64), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["member_id"], ["members.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("member_id", "attendance_date", name="uq_attendance_member_day"),
    )
    op.create_index("ix_attendance_member_id", "attendance", ["member_id"], unique=False)
    op.create_index("ix_attendance_attendance_date", "attendance", ["attendance_date"], unique=False)

    op.create_table(
        "attendance_history",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("attendance_id", sa.Integer(), nullable=False),
        sa.Column("member_id", sa.Integer(), nullable=False),
        sa.Column("attendance_date", sa.Date(), nullable=False),
        sa.Column("check_in_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("check_out_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", attendance_status, nullable=False),
        sa.Column("location", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("archived_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["member_id"], ["members.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("attendance_id", name="uq_attendance_history_attendance_id"),
    )
    op.create_index("ix_attendance_history_member_id", "attendance_history", ["member_id"], unique=False)
    op.create_index(
        "ix_attendance_history_attendance_date",
        "attendance_history",
        ["attendance_date"],
        unique=False,
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("ts_utc", sa.DateTime(timezone=True), nullable=False),
        sa.Column("actor_type", audit_actor_type, nullable=False),
        sa.Column("actor_id", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=255), nullable=True),
        sa.Column("entity_id", sa.String(length=255), nullable=True),
        sa.Column("ip", sa.String(length=255), nullable=True),
        sa.Column("user_agent", sa.String(length=1024), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column(
            "details",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
    )
    op.create_index("ix_audit_logs_ts_utc", "audit_logs", ["ts_utc"], unique=False)
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_audit_logs_action", table_name="audit_logs")
    op.drop_index("ix_audit_logs_ts_utc", table_name="audit_logs")
    op.drop_table("audit_logs")

    op.drop_index("ix_attendance_history_attendance_date", table_name="attendance_history")
    op.drop_index("ix_attendance_history_member_id", table_name="attendance_history")
    op.drop_table("attendance_history")

    op.drop_index("ix_attendance_attendance_date", table_name="attendance")
    op.drop_index("ix_attendance_member_id", table_name="attendance")
    op.drop_table("attendance")

    op.drop_index("ix_members_group_id", table_name="members")
    op.drop_index("ix_members_department_id", table_name="members")
    op.drop_table("members")

    op.drop_index("ix_groups_department_id", table_name="groups")
    op.drop_table("groups")
    op.drop_table("departments")

    bind = op.get_bind()
    audit_actor_type.drop(bind, checkfirst=True)
    attendance_status.drop(bind, checkfirst=True)
    member_role.drop(bind, checkfirst=True)
