"""FastAPI dependencies wiring the onboarding engine to its backends.

  get_session_store()      → SqlSessionStore, or InMemorySessionStore when
                             STORE_BACKEND=memory
  get_analytics_emitter()  → emitter over the matching sink
  get_onboarding_engine()  → engine + finalizer with SQL collaborators

Stores and emitters are process-wide; tests replace them through
``app.dependency_overrides``.
"""

from fastapi import Depends

from medstint.config import settings
from medstint.database import async_session
from medstint.onboarding.analytics import (
    AnalyticsEmitter,
    InMemoryAnalyticsSink,
    SqlAnalyticsSink,
)
from medstint.onboarding.collaborators import SqlPrincipalRecorder, SqlSeatAssigner
from medstint.onboarding.engine import OnboardingEngine
from medstint.onboarding.finalizer import CompletionFinalizer
from medstint.onboarding.sql_store import SqlSessionStore
from medstint.onboarding.store import InMemorySessionStore, SessionStore
from medstint.utils.locks import get_lock_manager

_store: SessionStore | None = None
_emitter: AnalyticsEmitter | None = None


def get_session_store() -> SessionStore:
    global _store
    if _store is None:
        if settings.store_backend == "memory":
            _store = InMemorySessionStore()
        else:
            _store = SqlSessionStore(async_session)
    return _store


def get_analytics_emitter() -> AnalyticsEmitter:
    global _emitter
    if _emitter is None:
        if settings.store_backend == "memory":
            sink = InMemoryAnalyticsSink()
        else:
            sink = SqlAnalyticsSink(async_session)
        _emitter = AnalyticsEmitter(sink)
    return _emitter


def get_onboarding_engine(
    store: SessionStore = Depends(get_session_store),
    emitter: AnalyticsEmitter = Depends(get_analytics_emitter),
) -> OnboardingEngine:
    finalizer = CompletionFinalizer(
        store=store,
        emitter=emitter,
        principal_recorder=SqlPrincipalRecorder(async_session),
        seat_assigner=SqlSeatAssigner(async_session),
        locks=get_lock_manager(),
    )
    return OnboardingEngine(store, emitter, finalizer)
