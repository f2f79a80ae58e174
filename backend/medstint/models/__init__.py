"""Aggregate model imports for Alembic auto-detection."""

from medstint.models.onboarding_analytics import OnboardingAnalytics  # noqa: F401
from medstint.models.onboarding_session import OnboardingSessionRow  # noqa: F401
from medstint.models.school import Program, School, SeatAssignment  # noqa: F401
from medstint.models.user import User  # noqa: F401
