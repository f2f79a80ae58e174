"""Onboarding session endpoints.

Endpoints:
  POST /onboarding/session                 → resume the open session or create one
  GET  /onboarding/session/{id}            → current state
  POST /onboarding/session/{id}/step       → submit one step's data
  POST /onboarding/session/{id}/skip       → skip an optional step
  POST /onboarding/session/{id}/pause      → save and exit
  POST /onboarding/session/{id}/complete   → idempotent finalize

Design:
  - All decisions live in OnboardingEngine; handlers only translate.
  - Validation failures answer 422 with ``ok: false`` and every field
    error; every other failure uses the standard error envelope.
"""

from fastapi import APIRouter, Depends, Response, status

from medstint.auth.deps import get_current_principal
from medstint.dependencies import get_onboarding_engine
from medstint.middleware.exceptions import StepValidationError
from medstint.onboarding import catalog
from medstint.onboarding.engine import OnboardingEngine
from medstint.onboarding.types import OnboardingSession, Principal, StepId
from medstint.schemas.onboarding import (
    CompletionResult,
    SessionOut,
    SkipRequest,
    StartSessionRequest,
    StepResult,
    StepSubmission,
)

router = APIRouter()


def _step_result(
    session: OnboardingSession,
    next_step: StepId | None,
    field_errors: dict[str, str] | None = None,
) -> StepResult:
    return StepResult(
        ok=field_errors is None,
        next_step=next_step,
        field_errors=field_errors,
        completed_steps=session.completed_steps,
        expires_at=session.expires_at,
        status=session.status.value,
        progress=catalog.progress(session),
        version=session.version,
    )


# ── Session lifecycle ────────────────────────────────────────

@router.post("/session", response_model=SessionOut)
async def start_session(
    body: StartSessionRequest | None = None,
    principal: Principal = Depends(get_current_principal),
    engine: OnboardingEngine = Depends(get_onboarding_engine),
):
    """Resume the principal's open session, or start one (``restart`` forces new)."""
    restart = body.restart if body else False
    outcome = await engine.resume_or_create(principal, restart=restart)
    return SessionOut.from_session(outcome.session, resumed=outcome.resumed)


@router.get("/session/{session_id}", response_model=SessionOut)
async def get_session(
    session_id: str,
    principal: Principal = Depends(get_current_principal),
    engine: OnboardingEngine = Depends(get_onboarding_engine),
):
    session = await engine.get(session_id, principal)
    return SessionOut.from_session(session)


@router.post("/session/{session_id}/pause", response_model=SessionOut)
async def pause_session(
    session_id: str,
    principal: Principal = Depends(get_current_principal),
    engine: OnboardingEngine = Depends(get_onboarding_engine),
):
    session = await engine.pause(session_id, principal)
    return SessionOut.from_session(session)


# ── Steps ────────────────────────────────────────────────────

@router.post("/session/{session_id}/step", response_model=StepResult)
async def submit_step(
    session_id: str,
    body: StepSubmission,
    response: Response,
    principal: Principal = Depends(get_current_principal),
    engine: OnboardingEngine = Depends(get_onboarding_engine),
):
    try:
        outcome = await engine.submit(
            session_id,
            principal,
            body.step,
            body.data,
            expected_version=body.expected_version,
        )
    except StepValidationError as exc:
        response.status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
        return _step_result(exc.session, None, field_errors=exc.field_errors)
    return _step_result(outcome.session, outcome.next_step)


@router.post("/session/{session_id}/skip", response_model=StepResult)
async def skip_step(
    session_id: str,
    body: SkipRequest,
    principal: Principal = Depends(get_current_principal),
    engine: OnboardingEngine = Depends(get_onboarding_engine),
):
    """Skip an optional step (``is_required = False`` in the catalog)."""
    outcome = await engine.skip(session_id, principal, body.step)
    return _step_result(outcome.session, outcome.next_step)


# ── Completion ───────────────────────────────────────────────

@router.post("/session/{session_id}/complete", response_model=CompletionResult)
async def complete_onboarding(
    session_id: str,
    principal: Principal = Depends(get_current_principal),
    engine: OnboardingEngine = Depends(get_onboarding_engine),
):
    """Finalize onboarding.  Safe to call again after success or failure."""
    session = await engine.complete(session_id, principal)
    return CompletionResult(
        status=session.status.value,
        redirect_to=catalog.dashboard_for(session.role),
        completed_at=session.completed_at,
    )
