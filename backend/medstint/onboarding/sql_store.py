"""SQLAlchemy implementation of the session store.

Each operation runs in its own transaction and locks the row it mutates
(``SELECT ... FOR UPDATE`` on PostgreSQL; a no-op on SQLite).  Database
failures surface as PersistenceError so callers can retry.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from medstint.middleware.exceptions import (
    PersistenceError,
    SessionNotFoundError,
    VersionConflictError,
)
from medstint.models.onboarding_session import OnboardingSessionRow
from medstint.onboarding.store import ReapResult, SessionStore, merge_for_save
from medstint.onboarding.types import (
    RESUMABLE_STATUSES,
    OnboardingSession,
    Role,
    SessionStatus,
    StepId,
)

logger = logging.getLogger(__name__)

_RESUMABLE = [s.value for s in RESUMABLE_STATUSES]


def _aware(dt: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if dt is None or dt.tzinfo is not None:
        return dt
    return dt.replace(tzinfo=timezone.utc)


def _to_session(row: OnboardingSessionRow) -> OnboardingSession:
    return OnboardingSession(
        session_id=row.id,
        principal_id=row.principal_id,
        current_step=StepId(row.current_step),
        expires_at=_aware(row.expires_at),
        started_at=_aware(row.started_at),
        updated_at=_aware(row.updated_at),
        completed_steps=[StepId(s) for s in row.completed_steps or []],
        skipped_steps=[StepId(s) for s in row.skipped_steps or []],
        form_data={StepId(k): v for k, v in (row.form_data or {}).items()},
        context=dict(row.context or {}),
        status=SessionStatus(row.status),
        selected_role=Role(row.selected_role) if row.selected_role else None,
        error_count=row.error_count or 0,
        last_error=row.last_error,
        version=row.version,
        step_started_at=_aware(row.step_started_at),
        completed_at=_aware(row.completed_at),
    )


def _apply(row: OnboardingSessionRow, session: OnboardingSession) -> None:
    row.principal_id = session.principal_id
    row.current_step = session.current_step.value
    row.completed_steps = [s.value for s in session.completed_steps]
    row.skipped_steps = [s.value for s in session.skipped_steps]
    row.form_data = {k.value: v for k, v in session.form_data.items()}
    row.context = dict(session.context)
    row.status = session.status.value
    row.selected_role = session.selected_role.value if session.selected_role else None
    row.error_count = session.error_count
    row.last_error = session.last_error
    row.version = session.version
    row.started_at = session.started_at
    row.updated_at = session.updated_at
    row.expires_at = session.expires_at
    row.step_started_at = session.step_started_at
    row.completed_at = session.completed_at


class SqlSessionStore(SessionStore):
    def __init__(self, sessionmaker: async_sessionmaker, ttl=None, clock=None):
        super().__init__(ttl=ttl, clock=clock)
        self._sessionmaker = sessionmaker

    @asynccontextmanager
    async def _transaction(self):
        try:
            async with self._sessionmaker() as db:
                async with db.begin():
                    yield db
        except SQLAlchemyError as exc:
            logger.error("Session store failure: %s", exc)
            raise PersistenceError() from exc

    async def _locked_row(self, db: AsyncSession, session_id: str) -> OnboardingSessionRow | None:
        result = await db.execute(
            select(OnboardingSessionRow)
            .where(OnboardingSessionRow.id == session_id)
            .with_for_update()
        )
        return result.scalar_one_or_none()

    async def load(self, session_id: str) -> OnboardingSession | None:
        async with self._transaction() as db:
            row = await db.get(OnboardingSessionRow, session_id)
            return _to_session(row) if row else None

    async def find_resumable(self, principal_id: str) -> OnboardingSession | None:
        now = self.now()
        async with self._transaction() as db:
            result = await db.execute(
                select(OnboardingSessionRow)
                .where(
                    OnboardingSessionRow.principal_id == principal_id,
                    OnboardingSessionRow.status.in_(_RESUMABLE),
                    OnboardingSessionRow.expires_at > now,
                )
                .order_by(OnboardingSessionRow.updated_at.desc())
                .limit(1)
            )
            row = result.scalar_one_or_none()
            return _to_session(row) if row else None

    async def create(self, principal_id: str, context: dict | None = None) -> OnboardingSession:
        session = self.new_session(principal_id, context)
        now = session.started_at
        async with self._transaction() as db:
            # Lapsed but unreaped rows still hold the open-session index
            await db.execute(
                update(OnboardingSessionRow)
                .where(
                    OnboardingSessionRow.principal_id == principal_id,
                    OnboardingSessionRow.status.in_(_RESUMABLE),
                    OnboardingSessionRow.expires_at <= now,
                )
                .values(status=SessionStatus.EXPIRED.value, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            # Supersede whatever is still resumable
            await db.execute(
                update(OnboardingSessionRow)
                .where(
                    OnboardingSessionRow.principal_id == principal_id,
                    OnboardingSessionRow.status.in_(_RESUMABLE),
                    OnboardingSessionRow.expires_at > now,
                )
                .values(
                    status=SessionStatus.ABANDONED.value,
                    expires_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            row = OnboardingSessionRow(id=session.session_id)
            _apply(row, session)
            db.add(row)
        logger.info("Created onboarding session %s for %s", session.session_id, principal_id)
        return session

    async def save(
        self, session: OnboardingSession, expected_version: int | None = None
    ) -> OnboardingSession:
        async with self._transaction() as db:
            row = await self._locked_row(db, session.session_id)
            if row is None:
                raise SessionNotFoundError(session.session_id)
            if expected_version is not None and row.version != expected_version:
                raise VersionConflictError(expected_version, row.version)
            merged = merge_for_save(_to_session(row), session, self.now(), self.ttl)
            _apply(row, merged)
        return merged

    async def expire(self, session_id: str) -> OnboardingSession | None:
        async with self._transaction() as db:
            row = await self._locked_row(db, session_id)
            if row is None:
                return None
            if row.status != SessionStatus.COMPLETED.value:
                row.status = SessionStatus.EXPIRED.value
                row.updated_at = self.now()
                row.version += 1
            return _to_session(row)

    async def complete(self, session_id: str) -> OnboardingSession:
        async with self._transaction() as db:
            row = await self._locked_row(db, session_id)
            if row is None:
                raise SessionNotFoundError(session_id)
            if row.status != SessionStatus.COMPLETED.value:
                now = self.now()
                steps = list(row.completed_steps or [])
                if StepId.COMPLETE.value not in steps:
                    steps.append(StepId.COMPLETE.value)
                row.completed_steps = steps
                row.current_step = StepId.COMPLETE.value
                row.status = SessionStatus.COMPLETED.value
                row.completed_at = now
                row.updated_at = now
                row.version += 1
            return _to_session(row)

    async def list_sessions(self, since: datetime | None = None) -> list[OnboardingSession]:
        async with self._transaction() as db:
            stmt = select(OnboardingSessionRow)
            if since is not None:
                stmt = stmt.where(OnboardingSessionRow.started_at >= since)
            result = await db.execute(stmt.order_by(OnboardingSessionRow.started_at))
            return [_to_session(row) for row in result.scalars().all()]

    async def reap(
        self,
        now: datetime,
        abandon_before: datetime,
        purge_before: datetime,
    ) -> ReapResult:
        result = ReapResult()
        async with self._transaction() as db:
            rows = await db.execute(
                select(OnboardingSessionRow)
                .where(OnboardingSessionRow.status.in_(_RESUMABLE))
                .with_for_update(skip_locked=True)
            )
            for row in rows.scalars().all():
                if _aware(row.expires_at) < now:
                    row.status = SessionStatus.EXPIRED.value
                    row.version += 1
                    result.expired.append(_to_session(row))
                elif (
                    row.status == SessionStatus.ACTIVE.value
                    and _aware(row.updated_at) < abandon_before
                ):
                    row.status = SessionStatus.ABANDONED.value
                    row.version += 1
                    result.abandoned.append(_to_session(row))

            await db.flush()
            purged = await db.execute(
                delete(OnboardingSessionRow).where(
                    OnboardingSessionRow.status == SessionStatus.EXPIRED.value,
                    OnboardingSessionRow.expires_at < purge_before,
                )
                .execution_options(synchronize_session=False)
            )
            result.purged = purged.rowcount or 0
        return result
