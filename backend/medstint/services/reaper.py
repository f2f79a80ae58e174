"""Background session reaper: abandons idle sessions, expires dead ones.

Uses FastAPI's lifespan context to start/stop an asyncio background loop,
one pass every REAPER_INTERVAL_SECONDS.  Expiry is also enforced lazily
on access, so a missed pass never lets a stale session advance.

Configuration (via .env):
    REAPER_ENABLED=true
    REAPER_INTERVAL_SECONDS=900
    ABANDON_AFTER_MINUTES=60     idle active sessions → abandoned
    PURGE_AFTER_DAYS=30          expired rows older than this are deleted
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI

from medstint.config import settings
from medstint.dependencies import get_analytics_emitter, get_session_store
from medstint.onboarding.analytics import AnalyticsEmitter
from medstint.onboarding.store import ReapResult, SessionStore
from medstint.onboarding.types import EventKind
from medstint.utils.cache import close_redis, invalidate_cache

logger = logging.getLogger("medstint.reaper")


async def run_reaper_pass(store: SessionStore, emitter: AnalyticsEmitter) -> ReapResult:
    """One sweep over the store; emits an event per state change."""
    now = store.now()
    result = await store.reap(
        now=now,
        abandon_before=now - timedelta(minutes=settings.abandon_after_minutes),
        purge_before=now - timedelta(days=settings.purge_after_days),
    )

    for session in result.abandoned:
        await emitter.emit(
            EventKind.SESSION_ABANDONED, session, metadata={"reason": "inactivity"}
        )
    for session in result.expired:
        await emitter.emit(EventKind.SESSION_EXPIRED, session, metadata={"reason": "ttl"})

    if result.abandoned or result.expired or result.purged:
        await invalidate_cache("funnel:*")
        logger.info(
            "Reaper pass: %d abandoned, %d expired, %d purged",
            len(result.abandoned), len(result.expired), result.purged,
        )
    return result


async def _reaper_loop() -> None:
    store = get_session_store()
    emitter = get_analytics_emitter()
    while True:
        await asyncio.sleep(settings.reaper_interval_seconds)
        try:
            await run_reaper_pass(store, emitter)
        except Exception:
            logger.exception("Unhandled error in session reaper pass")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI lifespan: start the reaper on startup, cancel on shutdown."""
    task = None
    if settings.reaper_enabled:
        task = asyncio.create_task(_reaper_loop())
        logger.info(
            "Session reaper started (every %ds)", settings.reaper_interval_seconds
        )
    try:
        yield
    finally:
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            logger.info("Session reaper stopped")
        await get_analytics_emitter().drain()
        await close_redis()
