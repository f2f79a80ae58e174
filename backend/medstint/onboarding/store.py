"""Session store: persistence abstraction for onboarding sessions.

The store owns the expiry clock.  Every successful save slides
``expires_at`` to ``now + ttl`` and bumps ``version``.  A save against an
expired or lapsed session is refused with SessionExpiredError.  Two
implementations: InMemorySessionStore (development, tests) and
SqlSessionStore in medstint.onboarding.sql_store (production).
"""

import asyncio
import copy
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable

from medstint.config import settings
from medstint.middleware.exceptions import (
    SessionExpiredError,
    SessionNotFoundError,
    VersionConflictError,
)
from medstint.onboarding.types import (
    RESUMABLE_STATUSES,
    OnboardingSession,
    Role,
    SessionStatus,
    StepId,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ReapResult:
    abandoned: list[OnboardingSession] = field(default_factory=list)
    expired: list[OnboardingSession] = field(default_factory=list)
    purged: int = 0


def merge_for_save(
    stored: OnboardingSession,
    incoming: OnboardingSession,
    now: datetime,
    ttl: timedelta,
) -> OnboardingSession:
    """Apply save semantics of ``incoming`` on top of ``stored``.

    - formData: per-step records from ``incoming`` replace stored ones,
      other steps are kept
    - completed/skipped steps: ordered union, never shrinks
    - selected role: first one set wins
    - completed status is terminal
    - an expired or lapsed session refuses the save (SessionExpiredError)
    """
    if stored.status is SessionStatus.EXPIRED or (
        stored.status is not SessionStatus.COMPLETED and stored.is_expired(now)
    ):
        raise SessionExpiredError(stored.session_id)

    merged = copy.deepcopy(incoming)

    form_data = dict(stored.form_data)
    form_data.update(incoming.form_data)
    merged.form_data = form_data

    merged.completed_steps = list(stored.completed_steps) + [
        s for s in incoming.completed_steps if s not in stored.completed_steps
    ]
    merged.skipped_steps = list(stored.skipped_steps) + [
        s for s in incoming.skipped_steps if s not in stored.skipped_steps
    ]
    if stored.selected_role is not None:
        merged.selected_role = stored.selected_role

    if stored.status is SessionStatus.COMPLETED:
        merged.status = stored.status
        merged.completed_at = stored.completed_at
        merged.expires_at = stored.expires_at
    else:
        merged.expires_at = now + ttl

    merged.started_at = stored.started_at
    merged.updated_at = now
    merged.version = stored.version + 1
    return merged


class SessionStore(ABC):
    def __init__(
        self,
        ttl: timedelta | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.ttl = ttl or timedelta(hours=settings.session_ttl_hours)
        self.clock = clock or utcnow

    def now(self) -> datetime:
        return self.clock()

    def new_session(self, principal_id: str, context: dict | None = None) -> OnboardingSession:
        now = self.now()
        ctx = dict(context or {})
        session = OnboardingSession(
            session_id=str(uuid.uuid4()),
            principal_id=principal_id,
            current_step=StepId.WELCOME,
            expires_at=now + self.ttl,
            started_at=now,
            updated_at=now,
            context=ctx,
            step_started_at=now,
        )
        if ctx.get("role"):
            session.selected_role = Role(ctx["role"])
        return session

    @abstractmethod
    async def load(self, session_id: str) -> OnboardingSession | None:
        """Return the session regardless of status, or None."""

    @abstractmethod
    async def find_resumable(self, principal_id: str) -> OnboardingSession | None:
        """Most recently updated unexpired active/paused/abandoned session."""

    @abstractmethod
    async def create(self, principal_id: str, context: dict | None = None) -> OnboardingSession:
        """Create a fresh session, superseding any resumable one."""

    @abstractmethod
    async def save(
        self, session: OnboardingSession, expected_version: int | None = None
    ) -> OnboardingSession:
        ...

    @abstractmethod
    async def expire(self, session_id: str) -> OnboardingSession | None:
        ...

    @abstractmethod
    async def complete(self, session_id: str) -> OnboardingSession:
        ...

    @abstractmethod
    async def list_sessions(self, since: datetime | None = None) -> list[OnboardingSession]:
        ...

    @abstractmethod
    async def reap(
        self,
        now: datetime,
        abandon_before: datetime,
        purge_before: datetime,
    ) -> ReapResult:
        """Abandon idle sessions, expire dead ones, purge old expired rows."""

    async def close(self) -> None:
        return None


def _resumable(session: OnboardingSession, now: datetime) -> bool:
    # Superseded sessions carry expires_at == supersession time
    return session.status in RESUMABLE_STATUSES and session.expires_at > now


class InMemorySessionStore(SessionStore):
    """Dict-backed store.  Copies on the way in and out, like a database."""

    def __init__(self, ttl: timedelta | None = None, clock=None):
        super().__init__(ttl=ttl, clock=clock)
        self._sessions: dict[str, OnboardingSession] = {}
        self._lock = asyncio.Lock()

    async def load(self, session_id: str) -> OnboardingSession | None:
        session = self._sessions.get(session_id)
        return copy.deepcopy(session) if session else None

    async def find_resumable(self, principal_id: str) -> OnboardingSession | None:
        now = self.now()
        candidates = [
            s for s in self._sessions.values()
            if s.principal_id == principal_id and _resumable(s, now)
        ]
        if not candidates:
            return None
        return copy.deepcopy(max(candidates, key=lambda s: s.updated_at))

    async def create(self, principal_id: str, context: dict | None = None) -> OnboardingSession:
        async with self._lock:
            now = self.now()
            for s in self._sessions.values():
                if s.principal_id != principal_id or s.status not in RESUMABLE_STATUSES:
                    continue
                if _resumable(s, now):
                    s.status = SessionStatus.ABANDONED
                    s.expires_at = now
                else:
                    s.status = SessionStatus.EXPIRED
                s.updated_at = now
            session = self.new_session(principal_id, context)
            self._sessions[session.session_id] = copy.deepcopy(session)
            return session

    async def save(
        self, session: OnboardingSession, expected_version: int | None = None
    ) -> OnboardingSession:
        async with self._lock:
            stored = self._sessions.get(session.session_id)
            if stored is None:
                raise SessionNotFoundError(session.session_id)
            if expected_version is not None and stored.version != expected_version:
                raise VersionConflictError(expected_version, stored.version)
            merged = merge_for_save(stored, session, self.now(), self.ttl)
            self._sessions[merged.session_id] = merged
            return copy.deepcopy(merged)

    async def expire(self, session_id: str) -> OnboardingSession | None:
        async with self._lock:
            stored = self._sessions.get(session_id)
            if stored is None:
                return None
            if stored.status is not SessionStatus.COMPLETED:
                stored.status = SessionStatus.EXPIRED
                stored.updated_at = self.now()
                stored.version += 1
            return copy.deepcopy(stored)

    async def complete(self, session_id: str) -> OnboardingSession:
        async with self._lock:
            stored = self._sessions.get(session_id)
            if stored is None:
                raise SessionNotFoundError(session_id)
            if stored.status is not SessionStatus.COMPLETED:
                now = self.now()
                if StepId.COMPLETE not in stored.completed_steps:
                    stored.completed_steps.append(StepId.COMPLETE)
                stored.current_step = StepId.COMPLETE
                stored.status = SessionStatus.COMPLETED
                stored.completed_at = now
                stored.updated_at = now
                stored.version += 1
            return copy.deepcopy(stored)

    async def list_sessions(self, since: datetime | None = None) -> list[OnboardingSession]:
        return [
            copy.deepcopy(s) for s in self._sessions.values()
            if since is None or s.started_at >= since
        ]

    async def reap(
        self,
        now: datetime,
        abandon_before: datetime,
        purge_before: datetime,
    ) -> ReapResult:
        result = ReapResult()
        async with self._lock:
            for s in list(self._sessions.values()):
                if s.status in RESUMABLE_STATUSES and s.expires_at < now:
                    s.status = SessionStatus.EXPIRED
                    s.version += 1
                    result.expired.append(copy.deepcopy(s))
                elif s.status is SessionStatus.ACTIVE and s.updated_at < abandon_before:
                    s.status = SessionStatus.ABANDONED
                    s.version += 1
                    result.abandoned.append(copy.deepcopy(s))

            for sid, s in list(self._sessions.items()):
                if s.status is SessionStatus.EXPIRED and s.expires_at < purge_before:
                    del self._sessions[sid]
                    result.purged += 1
        return result
