"""Persisted onboarding session, one row per session id.

Only one *open* (active or paused) session may exist per principal; the
partial unique index enforces it at the database level.  Completed, expired
and abandoned rows stay behind for audit until the reaper purges them.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, Index, Integer, JSON, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from medstint.database import Base

_OPEN_STATUSES = text("status IN ('active', 'paused')")


class OnboardingSessionRow(Base):
    __tablename__ = "onboarding_sessions"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    principal_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    current_step: Mapped[str] = mapped_column(String(48), nullable=False)
    completed_steps: Mapped[list] = mapped_column(JSON, default=list)
    skipped_steps: Mapped[list] = mapped_column(JSON, default=list)
    # {step_id: validated record}; merged per step on save
    form_data: Mapped[dict] = mapped_column(JSON, default=dict)
    # Pre-assignments taken from the identity claims at creation
    context: Mapped[dict] = mapped_column(JSON, default=dict)
    status: Mapped[str] = mapped_column(String(16), default="active", index=True)
    selected_role: Mapped[str | None] = mapped_column(String(32))

    error_count: Mapped[int] = mapped_column(Integer, default=0)
    last_error: Mapped[str | None] = mapped_column(Text)
    version: Mapped[int] = mapped_column(Integer, default=1)

    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    step_started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index(
            "uq_onboarding_sessions_open_principal",
            "principal_id",
            unique=True,
            postgresql_where=_OPEN_STATUSES,
            sqlite_where=_OPEN_STATUSES,
        ),
        Index("ix_onboarding_sessions_expires_at", "expires_at"),
    )
