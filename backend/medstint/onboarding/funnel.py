"""Funnel metrics over onboarding sessions, for platform admins.

Computed from session state rather than the analytics table: sessions
are authoritative, analytics events are best-effort.
"""

from collections import Counter
from datetime import datetime, timedelta

from medstint.config import settings
from medstint.onboarding.store import SessionStore
from medstint.onboarding.types import OnboardingSession, SessionStatus, StepId
from medstint.schemas.analytics import FunnelMetrics
from medstint.utils.cache import cached

_DROPPED = (SessionStatus.ABANDONED, SessionStatus.EXPIRED)


def compute_funnel(sessions: list[OnboardingSession], since: datetime | None = None) -> FunnelMetrics:
    total = len(sessions)
    if total == 0:
        return FunnelMetrics(since=since)

    by_status = Counter(s.status.value for s in sessions)
    reach = Counter(step.value for s in sessions for step in s.completed_steps)
    drop_off = Counter(s.current_step.value for s in sessions if s.status in _DROPPED)
    roles = Counter(s.role.value for s in sessions if s.role is not None)
    with_errors = sum(1 for s in sessions if s.error_count > 0)

    durations = [
        (s.completed_at - s.started_at).total_seconds() / 60
        for s in sessions
        if s.status is SessionStatus.COMPLETED and s.completed_at
    ]

    return FunnelMetrics(
        since=since,
        total_sessions=total,
        by_status=dict(by_status),
        completion_rate=round(by_status.get(SessionStatus.COMPLETED.value, 0) / total, 4),
        average_completion_minutes=round(sum(durations) / len(durations), 1) if durations else None,
        # Catalog order, so the funnel reads top to bottom
        step_reach={step.value: reach[step.value] for step in StepId if reach[step.value]},
        drop_off=dict(drop_off.most_common()),
        role_distribution=dict(roles),
        sessions_with_errors=with_errors,
        error_rate=round(with_errors / total, 4),
    )


@cached(ttl=settings.funnel_cache_ttl_seconds, prefix="funnel")
async def funnel_snapshot(store: SessionStore, since_days: int = 30) -> FunnelMetrics:
    since = store.now() - timedelta(days=since_days)
    sessions = await store.list_sessions(since=since)
    return compute_funnel(sessions, since=since)
