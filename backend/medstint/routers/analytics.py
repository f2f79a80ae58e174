"""Analytics endpoints.

  POST /analytics/track              → fire-and-forget client event sink
  GET  /analytics/onboarding/funnel  → funnel metrics (platform admins)
"""

import logging

from fastapi import APIRouter, BackgroundTasks, Body, Depends, Query
from pydantic import ValidationError

from medstint.auth.deps import get_current_principal, require_role
from medstint.dependencies import get_analytics_emitter, get_session_store
from medstint.onboarding.analytics import AnalyticsEmitter, AnalyticsEvent
from medstint.onboarding.funnel import funnel_snapshot
from medstint.onboarding.store import SessionStore
from medstint.onboarding.types import Principal, Role
from medstint.schemas.analytics import FunnelMetrics, TrackEventRequest, TrackEventResponse

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/track", response_model=TrackEventResponse)
async def track_event(
    background_tasks: BackgroundTasks,
    payload: dict = Body(...),
    principal: Principal = Depends(get_current_principal),
    emitter: AnalyticsEmitter = Depends(get_analytics_emitter),
):
    """Accept a client event.  Always answers ``accepted: true``; malformed
    events are logged and dropped, well-formed ones are written after the
    response is sent."""
    try:
        body = TrackEventRequest.model_validate(payload)
    except ValidationError as exc:
        logger.info(
            "Dropped malformed analytics event from %s (%d errors)",
            principal.id, exc.error_count(),
        )
        return TrackEventResponse()

    background_tasks.add_task(
        emitter.track,
        AnalyticsEvent(
            principal_id=principal.id,
            event_kind=body.event_kind,
            step=body.step,
            session_id=body.session_id,
            duration_ms=body.duration_ms,
            metadata=body.metadata or {},
            error_message=body.error_message,
        ),
    )
    return TrackEventResponse()


@router.get("/onboarding/funnel", response_model=FunnelMetrics)
async def onboarding_funnel(
    since_days: int = Query(30, ge=1, le=365),
    principal: Principal = Depends(require_role(Role.PLATFORM_ADMIN)),
    store: SessionStore = Depends(get_session_store),
):
    """Aggregate funnel over sessions started in the last ``since_days``.
    Cached in Redis for a few minutes."""
    return await funnel_snapshot(store, since_days=since_days)
