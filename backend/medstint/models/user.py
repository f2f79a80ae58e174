from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from medstint.database import Base


class User(Base):
    """Principal record owned by the portal.

    The identity provider owns authentication; this row only carries what
    onboarding assigns (role, school, program) and the onboarded flag.
    """

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    email: Mapped[str | None] = mapped_column(String(255), index=True)
    first_name: Mapped[str | None] = mapped_column(String(120))
    last_name: Mapped[str | None] = mapped_column(String(120))
    phone: Mapped[str | None] = mapped_column(String(32))
    # Wire value of medstint.onboarding.types.Role; null until onboarding
    role: Mapped[str | None] = mapped_column(String(32))
    school_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("schools.id"))
    program_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("programs.id"))
    student_id: Mapped[str | None] = mapped_column(String(64))
    enrollment_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    onboarding_completed: Mapped[bool] = mapped_column(Boolean, default=False)
    onboarding_completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
