import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from medstint.database import Base


class OnboardingAnalytics(Base):
    """Append-only funnel event.  Written by the analytics sink, never read
    back by the onboarding engine."""

    __tablename__ = "onboarding_analytics"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    principal_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    # No FK: events may outlive a purged session
    session_id: Mapped[str | None] = mapped_column(String(36), index=True)
    event_kind: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    step: Mapped[str] = mapped_column(String(48), nullable=False)
    duration_ms: Mapped[int | None] = mapped_column(Integer)
    event_metadata: Mapped[dict] = mapped_column("metadata", JSON, default=dict)
    error_message: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True
    )
