"""Pytest configuration and fixtures for onboarding tests.

Provides a frozen clock, in-memory store and analytics sink, fake
collaborators, a SQLite-backed sessionmaker for the SQLAlchemy code paths,
and an HTTP client wired to the app through dependency overrides.
"""

import os

# Must be set before medstint.config is imported
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("LOCK_BACKEND", "local")
os.environ.setdefault("CACHE_ENABLED", "false")
os.environ.setdefault("REAPER_ENABLED", "false")
os.environ.setdefault("SECRET_KEY", "test-secret")

import asyncio
import fnmatch
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from medstint.auth.jwt import create_access_token
from medstint.database import Base
from medstint.dependencies import (
    get_analytics_emitter,
    get_onboarding_engine,
    get_session_store,
)
from medstint.main import app
from medstint.models import *  # noqa: F401,F403 (register every table on Base)
from medstint.onboarding.analytics import AnalyticsEmitter, InMemoryAnalyticsSink
from medstint.onboarding.collaborators import CompletionPlan, PrincipalRecorder, SeatAssigner
from medstint.onboarding.engine import OnboardingEngine
from medstint.onboarding.finalizer import CompletionFinalizer
from medstint.onboarding.store import InMemorySessionStore
from medstint.onboarding.types import Principal, Role, StepId
from medstint.utils.locks import LocalLockManager

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
TTL = timedelta(hours=24)

STUDENT_STEPS: list[tuple[StepId, dict]] = [
    (StepId.WELCOME, {}),
    (StepId.ROLE_SELECTION, {"role": "student"}),
    (StepId.BASIC_INFO, {"first_name": "Ada", "last_name": "Lovelace", "date_of_birth": "1999-12-10"}),
    (StepId.CONTACT_INFO, {"email": "ada@example.edu", "phone": "+1 555 010 2030"}),
    (StepId.SCHOOL_SELECTION, {"school_id": "school-1"}),
    (StepId.PROGRAM_SELECTION, {"program_id": "program-1"}),
    (
        StepId.ENROLLMENT_CONFIRMATION,
        {"student_id": "S-1001", "enrollment_date": "2026-09-01", "expected_graduation": "2028-06-01"},
    ),
    (StepId.SUBSCRIPTION, {"plan": "school-seat"}),
]


class Clock:
    """Controllable ``now()`` for stores."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakePrincipalRecorder(PrincipalRecorder):
    def __init__(self):
        self.plans: list[CompletionPlan] = []
        self.fail_with: Exception | None = None

    async def record(self, plan: CompletionPlan) -> None:
        await asyncio.sleep(0.01)
        if self.fail_with is not None:
            raise self.fail_with
        self.plans.append(plan)


class FakeSeatAssigner(SeatAssigner):
    def __init__(self):
        self.plans: list[CompletionPlan] = []
        self.fail_with: Exception | None = None

    async def assign(self, plan: CompletionPlan) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.plans.append(plan)


class FakeRedis:
    """Just enough of redis.asyncio.Redis for the cache and lock helpers."""

    def __init__(self):
        self.data: dict[str, str] = {}

    async def get(self, key):
        return self.data.get(key)

    async def setex(self, key, ttl, value):
        self.data[key] = value

    async def set(self, key, value, nx=False, px=None):
        if nx and key in self.data:
            return None
        self.data[key] = value
        return True

    async def eval(self, script, numkeys, key, token):
        if self.data.get(key) == token:
            del self.data[key]
            return 1
        return 0

    async def scan_iter(self, match="*"):
        for key in list(self.data):
            if fnmatch.fnmatch(key, match):
                yield key

    async def delete(self, *keys):
        for key in keys:
            self.data.pop(key, None)
        return len(keys)


async def walk(engine: OnboardingEngine, principal: Principal, session_id: str, steps):
    """Submit each (step, data) in order; returns the last outcome."""
    outcome = None
    for step, data in steps:
        outcome = await engine.submit(session_id, principal, step, data)
    return outcome


async def make_ready_session(store, principal_id: str = "student-1"):
    """A student session with every step done but not yet finalized."""
    session = await store.create(principal_id)
    session.selected_role = Role.STUDENT
    for step, data in STUDENT_STEPS:
        session.completed_steps.append(step)
        session.form_data[step] = dict(data)
    session.current_step = StepId.COMPLETE
    return await store.save(session)


def auth_headers_for(principal_id: str, **claims) -> dict:
    token = create_access_token(principal_id, **claims)
    return {"Authorization": f"Bearer {token}"}


# ── Core fixtures ───────────────────────────────────────────────

@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def store(clock) -> InMemorySessionStore:
    return InMemorySessionStore(ttl=TTL, clock=clock)


@pytest.fixture
def sink() -> InMemoryAnalyticsSink:
    return InMemoryAnalyticsSink()


@pytest.fixture
def emitter(sink) -> AnalyticsEmitter:
    return AnalyticsEmitter(sink, timeout=1.0, enabled=True, background=False)


@pytest.fixture
def recorder() -> FakePrincipalRecorder:
    return FakePrincipalRecorder()


@pytest.fixture
def seats() -> FakeSeatAssigner:
    return FakeSeatAssigner()


@pytest.fixture
def locks() -> LocalLockManager:
    return LocalLockManager(timeout=1.0)


@pytest.fixture
def finalizer(store, emitter, recorder, seats, locks) -> CompletionFinalizer:
    return CompletionFinalizer(store, emitter, recorder, seats, locks)


@pytest.fixture
def engine(store, emitter, finalizer) -> OnboardingEngine:
    return OnboardingEngine(store, emitter, finalizer)


@pytest.fixture
def student() -> Principal:
    return Principal(id="student-1", email="ada@example.edu")


# ── SQLite-backed SQLAlchemy ───────────────────────────────────

@pytest_asyncio.fixture
async def sql_sessionmaker(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """Fresh SQLite database with every table created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'medstint.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


# ── HTTP client ─────────────────────────────────────────────────

@pytest_asyncio.fixture
async def client(engine, store, emitter) -> AsyncGenerator[AsyncClient, None]:
    """Test client with the engine, store and emitter overridden."""
    app.dependency_overrides[get_onboarding_engine] = lambda: engine
    app.dependency_overrides[get_session_store] = lambda: store
    app.dependency_overrides[get_analytics_emitter] = lambda: emitter

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers() -> dict:
    return auth_headers_for("student-1", email="ada@example.edu")


@pytest.fixture
def admin_headers() -> dict:
    return auth_headers_for("admin-1", email="ops@medstint.io", role="platform-admin")


# ── Test Markers ─────────────────────────────────────────────────

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "api: HTTP endpoint tests")
    config.addinivalue_line("markers", "auth: Authentication tests")
