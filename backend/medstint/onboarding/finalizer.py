"""Completion finalizer: marks the principal onboarded exactly once.

Idempotent and guarded against double submission:
  1. already completed       → success, no side effects
  2. required steps missing  → DependencyViolationError
  3. per-session lock, status re-checked under the lock
  4. seat assigner, then principal recorder (both idempotent)
  5. store.complete appends the terminal step and flips the status

A collaborator failure leaves the session active with error_count and
last_error recorded so the client can retry via /complete.
"""

import logging

from medstint.middleware.exceptions import (
    CollaboratorError,
    CompletionInProgressError,
    DependencyViolationError,
    MedStintException,
    PersistenceError,
)
from medstint.onboarding import catalog
from medstint.onboarding.analytics import AnalyticsEmitter
from medstint.onboarding.collaborators import CompletionPlan, PrincipalRecorder, SeatAssigner
from medstint.onboarding.store import SessionStore
from medstint.onboarding.types import EventKind, OnboardingSession, SessionStatus, StepId
from medstint.utils.locks import LockNotAcquired, LockUnavailable

logger = logging.getLogger(__name__)


class CompletionFinalizer:
    def __init__(
        self,
        store: SessionStore,
        emitter: AnalyticsEmitter,
        principal_recorder: PrincipalRecorder,
        seat_assigner: SeatAssigner,
        locks,
    ):
        self.store = store
        self.emitter = emitter
        self.principal_recorder = principal_recorder
        self.seat_assigner = seat_assigner
        self.locks = locks

    async def finalize(self, session: OnboardingSession, email: str | None = None) -> OnboardingSession:
        if session.status is SessionStatus.COMPLETED:
            return session

        missing = catalog.missing_for(session)
        if missing:
            raise DependencyViolationError(
                "Complete these steps first: " + ", ".join(s.value for s in missing),
                missing=[s.value for s in missing],
            )

        try:
            async with self.locks.hold(f"finalize:{session.session_id}"):
                return await self._finalize_locked(session.session_id, email)
        except LockUnavailable as exc:
            raise PersistenceError("Completion lock unavailable; please retry") from exc
        except LockNotAcquired as exc:
            raise CompletionInProgressError(session.session_id) from exc

    async def _finalize_locked(self, session_id: str, email: str | None) -> OnboardingSession:
        session = await self.store.load(session_id)
        if session.status is SessionStatus.COMPLETED:
            logger.info("Session %s already completed; skipping collaborators", session_id)
            return session

        plan = CompletionPlan.from_session(session, email=email)
        try:
            await self.seat_assigner.assign(plan)
            await self.principal_recorder.record(plan)
        except Exception as exc:
            await self._record_failure(session, exc)
            if isinstance(exc, CollaboratorError):
                raise
            raise CollaboratorError(
                "Could not finish onboarding; please retry",
                session_id=session_id,
            ) from exc

        completed = await self.store.complete(session_id)
        await self.emitter.emit(
            EventKind.ONBOARDING_COMPLETED,
            completed,
            StepId.COMPLETE,
            metadata={
                "role": plan.role.value,
                "completed_steps": len(completed.completed_steps),
            },
        )
        logger.info("Onboarding completed for %s (session %s)", plan.principal_id, session_id)
        return completed

    async def _record_failure(self, session: OnboardingSession, exc: Exception) -> None:
        message = exc.message if isinstance(exc, MedStintException) else str(exc)
        logger.warning("Completion failed for session %s: %s", session.session_id, message)
        session.error_count += 1
        session.last_error = message
        try:
            await self.store.save(session)
        except MedStintException as save_exc:
            logger.error("Could not record completion failure for %s: %s", session.session_id, save_exc)
        await self.emitter.emit(
            EventKind.COMPLETION_FAILED,
            session,
            StepId.COMPLETE,
            error_message=message,
            metadata={"collaborator": getattr(exc, "collaborator", "unknown")},
        )
