"""Add onboarding_sessions and onboarding_analytics.

Revision ID: 0002
Revises: 0001
Create Date: 2026-10-06

One open (active/paused) session per principal, enforced by a partial
unique index.  Analytics rows carry no FK so events outlive purged
sessions.
"""

revision = "0002"
down_revision = "0001"
branch_labels = None
depends_on = None

import sqlalchemy as sa
from alembic import op


def upgrade() -> None:
    op.create_table(
        "onboarding_sessions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("principal_id", sa.String(64), nullable=False),
        sa.Column("current_step", sa.String(48), nullable=False),
        sa.Column("completed_steps", sa.JSON(), server_default="[]", nullable=False),
        sa.Column("skipped_steps", sa.JSON(), server_default="[]", nullable=False),
        sa.Column("form_data", sa.JSON(), server_default="{}", nullable=False),
        sa.Column("context", sa.JSON(), server_default="{}", nullable=False),
        sa.Column("status", sa.String(16), server_default="active", nullable=False),
        sa.Column("selected_role", sa.String(32)),
        sa.Column("error_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("last_error", sa.Text()),
        sa.Column("version", sa.Integer(), server_default="1", nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("step_started_at", sa.DateTime(timezone=True)),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
    )
    op.create_index("ix_onboarding_sessions_principal_id", "onboarding_sessions", ["principal_id"])
    op.create_index("ix_onboarding_sessions_status", "onboarding_sessions", ["status"])
    op.create_index("ix_onboarding_sessions_expires_at", "onboarding_sessions", ["expires_at"])
    op.create_index(
        "uq_onboarding_sessions_open_principal",
        "onboarding_sessions",
        ["principal_id"],
        unique=True,
        postgresql_where=sa.text("status IN ('active', 'paused')"),
    )

    op.create_table(
        "onboarding_analytics",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("principal_id", sa.String(64), nullable=False),
        sa.Column("session_id", sa.String(36)),
        sa.Column("event_kind", sa.String(32), nullable=False),
        sa.Column("step", sa.String(48), nullable=False),
        sa.Column("duration_ms", sa.Integer()),
        sa.Column("metadata", sa.JSON(), server_default="{}", nullable=False),
        sa.Column("error_message", sa.Text()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_onboarding_analytics_principal_id", "onboarding_analytics", ["principal_id"])
    op.create_index("ix_onboarding_analytics_session_id", "onboarding_analytics", ["session_id"])
    op.create_index("ix_onboarding_analytics_event_kind", "onboarding_analytics", ["event_kind"])
    op.create_index("ix_onboarding_analytics_created_at", "onboarding_analytics", ["created_at"])


def downgrade() -> None:
    op.drop_table("onboarding_analytics")
    op.drop_table("onboarding_sessions")
