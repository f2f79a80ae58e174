"""Request/response schemas for the onboarding session endpoints."""

from datetime import datetime

from pydantic import BaseModel

from medstint.onboarding import catalog
from medstint.onboarding.types import OnboardingSession, StepId


class StartSessionRequest(BaseModel):
    restart: bool = False


class StepSubmission(BaseModel):
    step: StepId
    data: dict = {}
    expected_version: int | None = None


class SkipRequest(BaseModel):
    step: StepId


class SessionOut(BaseModel):
    session_id: str
    current_step: StepId
    completed_steps: list[StepId]
    skipped_steps: list[StepId] = []
    form_data: dict[str, dict] = {}
    status: str
    selected_role: str | None = None
    progress: int
    version: int
    started_at: datetime
    expires_at: datetime
    completed_at: datetime | None = None
    resumed: bool = False

    @classmethod
    def from_session(cls, session: OnboardingSession, resumed: bool = False) -> "SessionOut":
        return cls(
            session_id=session.session_id,
            current_step=session.current_step,
            completed_steps=session.completed_steps,
            skipped_steps=session.skipped_steps,
            form_data={k.value: v for k, v in session.form_data.items()},
            status=session.status.value,
            selected_role=session.role.value if session.role else None,
            progress=catalog.progress(session),
            version=session.version,
            started_at=session.started_at,
            expires_at=session.expires_at,
            completed_at=session.completed_at,
            resumed=resumed,
        )


class StepResult(BaseModel):
    ok: bool
    next_step: StepId | None = None
    field_errors: dict[str, str] | None = None
    completed_steps: list[StepId]
    expires_at: datetime
    status: str
    progress: int
    version: int


class CompletionResult(BaseModel):
    status: str
    redirect_to: str
    completed_at: datetime | None = None
