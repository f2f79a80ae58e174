from datetime import datetime

from pydantic import BaseModel, Field

from medstint.onboarding.types import EventKind


class TrackEventRequest(BaseModel):
    """Client-side event.  The principal always comes from the token."""
    event_kind: EventKind
    step: str = Field(min_length=1, max_length=48)
    session_id: str | None = None
    duration_ms: int | None = Field(default=None, ge=0)
    metadata: dict | None = None
    error_message: str | None = Field(default=None, max_length=2000)


class TrackEventResponse(BaseModel):
    accepted: bool = True


class FunnelMetrics(BaseModel):
    since: datetime | None = None
    total_sessions: int = 0
    by_status: dict[str, int] = {}
    completion_rate: float = 0.0
    average_completion_minutes: float | None = None
    step_reach: dict[str, int] = {}
    drop_off: dict[str, int] = {}
    role_distribution: dict[str, int] = {}
    sessions_with_errors: int = 0
    error_rate: float = 0.0
