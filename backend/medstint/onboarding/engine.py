"""Transition engine: the single entry point for advancing onboarding.

submit() order of operations:
  1. resolve the session (ownership, expiry → fresh session + 410)
  2. validate, including the frozen role → StepValidationError,
     nothing mutated
  3. reachability and dependency check → DependencyViolationError
  4. replay of an identical completed step → no-op
  5. merge data, append step, freeze role, compute next step
  6. persist, emit step_completed / step_started
  7. terminal step reached → CompletionFinalizer
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime

from medstint.middleware.exceptions import (
    DependencyViolationError,
    MedStintException,
    PersistenceError,
    SessionExpiredError,
    SessionNotFoundError,
    StepValidationError,
)
from medstint.onboarding import catalog
from medstint.onboarding.analytics import AnalyticsEmitter
from medstint.onboarding.finalizer import CompletionFinalizer
from medstint.onboarding.store import SessionStore
from medstint.onboarding.types import (
    EventKind,
    OnboardingSession,
    Principal,
    Role,
    SessionStatus,
    StepId,
)
from medstint.onboarding.validation import validate

logger = logging.getLogger(__name__)


@dataclass
class StartOutcome:
    session: OnboardingSession
    resumed: bool = False


@dataclass
class StepOutcome:
    session: OnboardingSession
    next_step: StepId
    replayed: bool = False


def _duration_ms(start: datetime | None, end: datetime) -> int | None:
    if start is None:
        return None
    return max(0, int((end - start).total_seconds() * 1000))


class OnboardingEngine:
    def __init__(
        self,
        store: SessionStore,
        emitter: AnalyticsEmitter,
        finalizer: CompletionFinalizer,
    ):
        self.store = store
        self.emitter = emitter
        self.finalizer = finalizer

    def today(self) -> date:
        return self.store.now().date()

    # ── Session lifecycle ───────────────────────────────────

    async def resume_or_create(self, principal: Principal, restart: bool = False) -> StartOutcome:
        if not restart:
            existing = await self._guard(self.store.find_resumable(principal.id))
            if existing is not None:
                if existing.status is not SessionStatus.ACTIVE:
                    existing.status = SessionStatus.ACTIVE
                    existing = await self._guard(self.store.save(existing))
                await self.emitter.emit(EventKind.SESSION_RESUMED, existing)
                return StartOutcome(session=existing, resumed=True)

        session = await self._guard(self.store.create(principal.id, principal.context()))
        await self.emitter.emit(
            EventKind.STEP_STARTED, session, metadata={"restart": restart}
        )
        return StartOutcome(session=session)

    async def get(self, session_id: str, principal: Principal) -> OnboardingSession:
        return await self._resolve(session_id, principal)

    async def pause(self, session_id: str, principal: Principal) -> OnboardingSession:
        """Save and exit.  Progress is already persisted; only the status moves."""
        session = await self._resolve(session_id, principal)
        if session.status is SessionStatus.COMPLETED:
            return session
        session.status = SessionStatus.PAUSED
        saved = await self._persist(session, principal)
        await self.emitter.emit(
            EventKind.SESSION_SAVED, saved, metadata={"progress": catalog.progress(saved)}
        )
        return saved

    # ── Step submission ─────────────────────────────────────

    async def submit(
        self,
        session_id: str,
        principal: Principal,
        step: StepId,
        data: dict,
        expected_version: int | None = None,
    ) -> StepOutcome:
        session = await self._resolve(session_id, principal)
        if step is StepId.COMPLETE:
            raise DependencyViolationError("Use /complete to finish onboarding")

        record = await self._validated(session, step, data)

        if step in session.completed_steps and session.form_data.get(step) == record:
            logger.debug("Replay of %s on session %s ignored", step.value, session_id)
            return StepOutcome(session=session, next_step=catalog.next_step(session), replayed=True)

        if session.status is SessionStatus.COMPLETED:
            raise DependencyViolationError("Onboarding is already complete")

        now = self.store.now()
        started_at = session.step_started_at
        session.form_data[step] = record
        if step not in session.completed_steps:
            session.completed_steps.append(step)
        if step is StepId.ROLE_SELECTION and session.selected_role is None:
            session.selected_role = Role(record["role"])
        if session.status is not SessionStatus.ACTIVE:
            session.status = SessionStatus.ACTIVE

        upcoming = catalog.next_step(session)
        session.current_step = upcoming
        session.step_started_at = now
        saved = await self._persist(session, principal, expected_version)

        await self.emitter.emit(
            EventKind.STEP_COMPLETED,
            saved,
            step,
            duration_ms=_duration_ms(started_at, now),
            metadata={"next_step": upcoming.value, "progress": catalog.progress(saved)},
        )

        if upcoming is StepId.COMPLETE:
            saved = await self.finalizer.finalize(saved, email=principal.email)
        else:
            await self.emitter.emit(EventKind.STEP_STARTED, saved, upcoming)

        return StepOutcome(session=saved, next_step=upcoming)

    async def skip(self, session_id: str, principal: Principal, step: StepId) -> StepOutcome:
        session = await self._resolve(session_id, principal)
        definition = catalog.get_step(step)
        if definition.is_required:
            raise DependencyViolationError(f"Step '{step.value}' is required and cannot be skipped")
        self._check_order(session, step)

        if step in session.skipped_steps or step in session.completed_steps:
            return StepOutcome(session=session, next_step=catalog.next_step(session), replayed=True)

        session.skipped_steps.append(step)
        upcoming = catalog.next_step(session)
        session.current_step = upcoming
        session.step_started_at = self.store.now()
        saved = await self._persist(session, principal)
        await self.emitter.emit(EventKind.STEP_SKIPPED, saved, step)

        if upcoming is StepId.COMPLETE:
            saved = await self.finalizer.finalize(saved, email=principal.email)
        return StepOutcome(session=saved, next_step=upcoming)

    async def complete(self, session_id: str, principal: Principal) -> OnboardingSession:
        session = await self._resolve(session_id, principal)
        return await self.finalizer.finalize(session, email=principal.email)

    # ── Internals ───────────────────────────────────────────

    async def _guard(self, awaitable):
        """Await a store call; anything but our own errors becomes retryable."""
        try:
            return await awaitable
        except MedStintException:
            raise
        except Exception as exc:
            logger.error("Session store call failed: %s", exc, exc_info=True)
            raise PersistenceError() from exc

    async def _persist(
        self,
        session: OnboardingSession,
        principal: Principal,
        expected_version: int | None = None,
    ) -> OnboardingSession:
        """Save; a session that lapsed or was reaped mid-request is replaced."""
        try:
            return await self._guard(self.store.save(session, expected_version))
        except SessionExpiredError as exc:
            if exc.session is not None:
                raise
            current = await self._guard(self.store.load(session.session_id))
            replacement = await self._replace_expired(session.session_id, principal, current)
            raise replacement from exc

    async def _replace_expired(
        self,
        session_id: str,
        principal: Principal,
        current: OnboardingSession | None,
    ) -> SessionExpiredError:
        if current is not None and current.status is not SessionStatus.EXPIRED:
            expired = await self._guard(self.store.expire(session_id))
            if expired is not None:
                await self.emitter.emit(EventKind.SESSION_EXPIRED, expired)
        fresh = await self.resume_or_create(principal)
        return SessionExpiredError(session_id, fresh.session)

    async def _resolve(self, session_id: str, principal: Principal) -> OnboardingSession:
        session = await self._guard(self.store.load(session_id))
        if session is None or session.principal_id != principal.id:
            raise SessionNotFoundError(session_id)
        if session.status is SessionStatus.COMPLETED:
            return session

        if session.status is SessionStatus.EXPIRED or session.is_expired(self.store.now()):
            raise await self._replace_expired(session_id, principal, session)
        return session

    def _check_order(self, session: OnboardingSession, step: StepId) -> None:
        if not catalog.is_reachable(step, session):
            raise DependencyViolationError(
                f"Step '{step.value}' is not part of this onboarding flow"
            )
        unmet = catalog.unmet_dependencies(step, session)
        if unmet:
            names = [s.value for s in unmet]
            raise DependencyViolationError(
                f"Complete these first: {', '.join(names)}", missing=names
            )

    async def _validated(self, session: OnboardingSession, step: StepId, data) -> dict:
        result = validate(step, data, today=self.today())
        errors = dict(result.field_errors)
        if (
            result.ok
            and step is StepId.ROLE_SELECTION
            and session.selected_role is not None
            and result.record["role"] != session.selected_role.value
        ):
            errors["role"] = "Role cannot be changed once selected"

        if errors:
            logger.info(
                "Validation failed for %s on session %s: %s",
                step.value, session.session_id, sorted(errors),
            )
            await self.emitter.emit(
                EventKind.VALIDATION_ERROR,
                session,
                step,
                error_message="; ".join(f"{k}: {v}" for k, v in errors.items()),
                metadata={"fields": sorted(errors)},
            )
            raise StepValidationError(errors, session)

        self._check_order(session, step)
        return result.record
