"""Core onboarding value types shared by the catalog, store and engine."""

import enum
from dataclasses import dataclass, field
from datetime import datetime


class Role(str, enum.Enum):
    PLATFORM_ADMIN = "platform-admin"
    INSTITUTION_ADMIN = "institution-admin"
    CLINICAL_PRECEPTOR = "clinical-preceptor"
    CLINICAL_SUPERVISOR = "clinical-supervisor"
    STUDENT = "student"


class StepId(str, enum.Enum):
    WELCOME = "welcome"
    ROLE_SELECTION = "role-selection"
    BASIC_INFO = "basic-info"
    CONTACT_INFO = "contact-info"
    SCHOOL_SELECTION = "school-selection"
    PROGRAM_SELECTION = "program-selection"
    ENROLLMENT_CONFIRMATION = "enrollment-confirmation"
    SUBSCRIPTION = "subscription"
    SCHOOL_SETUP = "school-setup"
    PROGRAM_SETUP = "program-setup"
    AFFILIATION_SETUP = "affiliation-setup"
    COMPLETE = "complete"


class SessionStatus(str, enum.Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    EXPIRED = "expired"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


# Statuses that may still be resumed before expiry
RESUMABLE_STATUSES = (SessionStatus.ACTIVE, SessionStatus.PAUSED, SessionStatus.ABANDONED)


class EventKind(str, enum.Enum):
    STEP_STARTED = "step_started"
    STEP_COMPLETED = "step_completed"
    STEP_SKIPPED = "step_skipped"
    VALIDATION_ERROR = "validation_error"
    API_ERROR = "api_error"
    USER_INTERACTION = "user_interaction"
    SESSION_SAVED = "session_saved"
    SESSION_RESUMED = "session_resumed"
    SESSION_EXPIRED = "session_expired"
    SESSION_ABANDONED = "session_abandoned"
    ONBOARDING_COMPLETED = "onboarding_completed"
    COMPLETION_FAILED = "completion_failed"


@dataclass
class Principal:
    """Authenticated identity, built from bearer-token claims only."""
    id: str
    email: str | None = None
    role: str | None = None
    school_id: str | None = None
    program_id: str | None = None

    def context(self) -> dict:
        """Pre-assignments carried into a new session."""
        ctx: dict = {}
        if self.role in {r.value for r in Role}:
            ctx["role"] = self.role
        if self.school_id:
            ctx["school_id"] = self.school_id
        if self.program_id:
            ctx["program_id"] = self.program_id
        return ctx


@dataclass
class OnboardingSession:
    session_id: str
    principal_id: str
    current_step: StepId
    expires_at: datetime
    started_at: datetime
    updated_at: datetime
    completed_steps: list[StepId] = field(default_factory=list)
    skipped_steps: list[StepId] = field(default_factory=list)
    form_data: dict[StepId, dict] = field(default_factory=dict)
    context: dict = field(default_factory=dict)
    status: SessionStatus = SessionStatus.ACTIVE
    selected_role: Role | None = None
    error_count: int = 0
    last_error: str | None = None
    version: int = 1
    step_started_at: datetime | None = None
    completed_at: datetime | None = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at < now

    @property
    def is_open(self) -> bool:
        return self.status in (SessionStatus.ACTIVE, SessionStatus.PAUSED)

    @property
    def role(self) -> Role | None:
        """Frozen role, or the pre-assigned one from the identity claims."""
        if self.selected_role is not None:
            return self.selected_role
        preset = self.context.get("role")
        return Role(preset) if preset else None
