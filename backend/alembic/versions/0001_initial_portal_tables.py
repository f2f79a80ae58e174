"""Initial portal tables: users, schools, programs, seat assignments.

Revision ID: 0001
Revises:
Create Date: 2026-10-05
"""

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

import sqlalchemy as sa
from alembic import op


def upgrade() -> None:
    op.create_table(
        "schools",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("address", sa.String(500)),
        sa.Column("email", sa.String(255)),
        sa.Column("phone", sa.String(32)),
        sa.Column("admin_id", sa.String(64)),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column("seats_total", sa.Integer(), server_default="0", nullable=False),
        sa.Column("seats_used", sa.Integer(), server_default="0", nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_schools_admin_id", "schools", ["admin_id"])

    op.create_table(
        "programs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("school_id", sa.String(36), sa.ForeignKey("schools.id"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("program_type", sa.String(64)),
        sa.Column("duration_months", sa.Integer(), server_default="12", nullable=False),
        sa.Column("class_year", sa.Integer()),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true(), nullable=False),
    )
    op.create_index("ix_programs_school_id", "programs", ["school_id"])

    op.create_table(
        "users",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("email", sa.String(255)),
        sa.Column("first_name", sa.String(120)),
        sa.Column("last_name", sa.String(120)),
        sa.Column("phone", sa.String(32)),
        sa.Column("role", sa.String(32)),
        sa.Column("school_id", sa.String(36), sa.ForeignKey("schools.id")),
        sa.Column("program_id", sa.String(36), sa.ForeignKey("programs.id")),
        sa.Column("student_id", sa.String(64)),
        sa.Column("enrollment_date", sa.DateTime(timezone=True)),
        sa.Column("onboarding_completed", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("onboarding_completed_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_users_email", "users", ["email"])

    op.create_table(
        "seat_assignments",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("school_id", sa.String(36), sa.ForeignKey("schools.id"), nullable=False),
        sa.Column("principal_id", sa.String(64), nullable=False),
        sa.Column("plan", sa.String(32), server_default="school-seat", nullable=False),
        sa.Column("assigned_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("school_id", "principal_id", name="uq_seat_assignments_school_principal"),
    )
    op.create_index("ix_seat_assignments_school_id", "seat_assignments", ["school_id"])


def downgrade() -> None:
    op.drop_table("seat_assignments")
    op.drop_table("users")
    op.drop_table("programs")
    op.drop_table("schools")
