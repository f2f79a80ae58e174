"""Best-effort analytics emitter for onboarding funnel events.

Usage:
    await emitter.emit(
        EventKind.STEP_COMPLETED, session, StepId.BASIC_INFO,
        duration_ms=4200, metadata={"fields": 2},
    )

Every write is time-boxed and every sink failure is logged and dropped:
analytics never blocks or fails a transition.  With ANALYTICS_BACKGROUND
on, emit() hands the write to a tracked task and returns at once; drain()
waits for whatever is still in flight (called on shutdown).
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import async_sessionmaker

from medstint.config import settings
from medstint.models.onboarding_analytics import OnboardingAnalytics
from medstint.onboarding.types import EventKind, OnboardingSession, StepId

logger = logging.getLogger("medstint.analytics")


@dataclass
class AnalyticsEvent:
    principal_id: str
    event_kind: EventKind
    step: str
    session_id: str | None = None
    duration_ms: int | None = None
    metadata: dict = field(default_factory=dict)
    error_message: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class AnalyticsSink(ABC):
    @abstractmethod
    async def write(self, event: AnalyticsEvent) -> None:
        ...


class SqlAnalyticsSink(AnalyticsSink):
    """Appends one onboarding_analytics row per event, in its own transaction."""

    def __init__(self, sessionmaker: async_sessionmaker):
        self._sessionmaker = sessionmaker

    async def write(self, event: AnalyticsEvent) -> None:
        async with self._sessionmaker() as db:
            db.add(
                OnboardingAnalytics(
                    principal_id=event.principal_id,
                    session_id=event.session_id,
                    event_kind=event.event_kind.value,
                    step=event.step,
                    duration_ms=event.duration_ms,
                    event_metadata=event.metadata or {},
                    error_message=event.error_message,
                    created_at=event.timestamp,
                )
            )
            await db.commit()


class InMemoryAnalyticsSink(AnalyticsSink):
    def __init__(self):
        self.events: list[AnalyticsEvent] = []

    async def write(self, event: AnalyticsEvent) -> None:
        self.events.append(event)

    def kinds(self) -> list[EventKind]:
        return [e.event_kind for e in self.events]


class AnalyticsEmitter:
    def __init__(
        self,
        sink: AnalyticsSink,
        timeout: float | None = None,
        enabled: bool | None = None,
        background: bool | None = None,
    ):
        self.sink = sink
        self.timeout = timeout if timeout is not None else settings.analytics_timeout_seconds
        self.enabled = settings.analytics_enabled if enabled is None else enabled
        self.background = settings.analytics_background if background is None else background
        self._pending: set[asyncio.Task] = set()

    async def track(self, event: AnalyticsEvent) -> None:
        if not self.enabled:
            return
        try:
            await asyncio.wait_for(self.sink.write(event), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Analytics write timed out after %.1fs (%s)",
                self.timeout, event.event_kind.value,
            )
        except Exception as exc:
            logger.warning(
                "Analytics write failed (%s): %s", event.event_kind.value, exc,
            )

    async def emit(
        self,
        kind: EventKind,
        session: OnboardingSession,
        step: StepId | None = None,
        *,
        duration_ms: int | None = None,
        metadata: dict | None = None,
        error_message: str | None = None,
    ) -> None:
        step = step or session.current_step
        event = AnalyticsEvent(
            principal_id=session.principal_id,
            session_id=session.session_id,
            event_kind=kind,
            step=step.value,
            duration_ms=duration_ms,
            metadata=metadata or {},
            error_message=error_message,
        )
        if not self.background:
            await self.track(event)
            return
        task = asyncio.create_task(self.track(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending))
