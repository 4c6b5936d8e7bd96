"""
Analytics ingestion and reporting endpoints
"""

from typing import Any, Optional
from uuid import UUID
import logging

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.database import get_session
from app.core.exceptions import AuthenticationError, AuthorizationError
from app.core.security import Principal, get_current_principal, require_admin
from app.models.analytics import Actor, AnalyticsEvent, EventType
from app.schemas.analytics import (
    AddToCartRequest,
    AnalyticsEventResponse,
    EventListResponse,
    FunnelStepRequest,
    LiveStreamViewRequest,
    PageViewRequest,
    ProductViewRequest,
    PurchaseRequest,
    RealtimeResponse,
    RevenueResponse,
    SummaryResponse,
    TrackEventRequest,
    TrackResponse,
)
from app.schemas.response import MessageResponse
from app.services.aggregation import Period
from app.services.analytics_service import (
    EXPORT_FORMATS,
    AnalyticsService,
    get_analytics_service,
)
from app.services.enrichment import RequestContext
from app.services.ingest_queue import EventWriteQueue

router = APIRouter()
logger = logging.getLogger(__name__)


def get_request_context(request: Request) -> RequestContext:
    return RequestContext.from_request(request)


def get_write_queue(request: Request) -> Optional[EventWriteQueue]:
    """The async write queue, when the app started one"""
    return getattr(request.app.state, "write_queue", None)


def resolve_actor(
    principal: Optional[Principal],
    context: RequestContext
) -> Optional[Actor]:
    """
    Owner of an ingested event: the authenticated user, else the session
    """
    if principal is not None:
        return Actor.identified(principal.user_id)
    if context.session_id:
        return Actor.anonymous(context.session_id)
    return None


def resolve_target_actor(
    principal: Optional[Principal],
    context: RequestContext,
    user_id: Optional[UUID] = None
) -> Optional[Actor]:
    """
    Whose events a read may cover. Admins choose freely (None means all
    users); everyone else is pinned to their own identity or session.
    """
    if principal is not None and principal.is_admin:
        return Actor.identified(user_id) if user_id else None

    if principal is not None:
        if user_id and user_id != principal.user_id:
            raise AuthorizationError("Only admins can view other users' analytics")
        return Actor.identified(principal.user_id)

    if user_id:
        raise AuthorizationError("Only admins can view other users' analytics")
    if context.session_id:
        return Actor.anonymous(context.session_id)
    raise AuthenticationError("Authentication or a session id is required")


async def ingest(
    event: AnalyticsEvent,
    db: AsyncSession,
    service: AnalyticsService,
    queue: Optional[EventWriteQueue]
) -> None:
    """Queue the event when async ingestion is running, else write it now"""
    if queue is not None and queue.is_running:
        await queue.submit(event)
    else:
        await service.persist(db, event)


@router.post("/track", response_model=TrackResponse)
async def track_event(
    payload: TrackEventRequest,
    db: AsyncSession = Depends(get_session),
    service: AnalyticsService = Depends(get_analytics_service),
    context: RequestContext = Depends(get_request_context),
    principal: Optional[Principal] = Depends(get_current_principal)
) -> Any:
    """
    Track a generic event. Always written synchronously so the id can be returned.
    """
    event = await service.track_event(
        db,
        payload.event_type,
        payload.event_name,
        payload.properties,
        actor=resolve_actor(principal, context),
        context=context,
        value=payload.value,
        currency=payload.currency or settings.ANALYTICS_DEFAULT_CURRENCY,
    )
    return TrackResponse(message="Event tracked successfully", id=event.id)


@router.get("/summary", response_model=SummaryResponse)
async def get_summary(
    period: Period = Query(Period.MONTH, description="Trailing window"),
    user_id: Optional[UUID] = Query(None, alias="userId", description="Target user (admin only)"),
    db: AsyncSession = Depends(get_session),
    service: AnalyticsService = Depends(get_analytics_service),
    context: RequestContext = Depends(get_request_context),
    principal: Optional[Principal] = Depends(get_current_principal)
) -> Any:
    """
    Aggregate summary over the trailing period
    """
    actor = resolve_target_actor(principal, context, user_id)
    summary = await service.get_summary_payload(db, actor, period)
    return {"period": period.value, "summary": summary}


@router.get("/realtime", response_model=RealtimeResponse)
async def get_realtime(
    user_id: Optional[UUID] = Query(None, alias="userId", description="Target user (admin only)"),
    db: AsyncSession = Depends(get_session),
    service: AnalyticsService = Depends(get_analytics_service),
    context: RequestContext = Depends(get_request_context),
    principal: Optional[Principal] = Depends(get_current_principal)
) -> Any:
    """
    Realtime view over the last hour
    """
    actor = resolve_target_actor(principal, context, user_id)
    now = service.clock()
    realtime = await service.get_realtime(db, actor, now=now)
    return {"realtime": realtime, "timestamp": now.isoformat()}


@router.post("/page-view", response_model=MessageResponse)
async def track_page_view(
    payload: PageViewRequest,
    db: AsyncSession = Depends(get_session),
    service: AnalyticsService = Depends(get_analytics_service),
    queue: Optional[EventWriteQueue] = Depends(get_write_queue),
    context: RequestContext = Depends(get_request_context),
    principal: Optional[Principal] = Depends(get_current_principal)
) -> Any:
    event = service.page_view(payload.page, resolve_actor(principal, context), context)
    await ingest(event, db, service, queue)
    return {"message": "Page view tracked"}


@router.post("/product-view", response_model=MessageResponse)
async def track_product_view(
    payload: ProductViewRequest,
    db: AsyncSession = Depends(get_session),
    service: AnalyticsService = Depends(get_analytics_service),
    queue: Optional[EventWriteQueue] = Depends(get_write_queue),
    context: RequestContext = Depends(get_request_context),
    principal: Optional[Principal] = Depends(get_current_principal)
) -> Any:
    event = service.product_view(payload.product_id, resolve_actor(principal, context), context)
    await ingest(event, db, service, queue)
    return {"message": "Product view tracked"}


@router.post("/add-to-cart", response_model=MessageResponse)
async def track_add_to_cart(
    payload: AddToCartRequest,
    db: AsyncSession = Depends(get_session),
    service: AnalyticsService = Depends(get_analytics_service),
    queue: Optional[EventWriteQueue] = Depends(get_write_queue),
    context: RequestContext = Depends(get_request_context),
    principal: Optional[Principal] = Depends(get_current_principal)
) -> Any:
    event = service.add_to_cart(
        payload.product_id,
        payload.quantity,
        payload.value,
        resolve_actor(principal, context),
        context
    )
    await ingest(event, db, service, queue)
    return {"message": "Add to cart tracked"}


@router.post("/purchase", response_model=MessageResponse)
async def track_purchase(
    payload: PurchaseRequest,
    db: AsyncSession = Depends(get_session),
    service: AnalyticsService = Depends(get_analytics_service),
    queue: Optional[EventWriteQueue] = Depends(get_write_queue),
    context: RequestContext = Depends(get_request_context),
    principal: Optional[Principal] = Depends(get_current_principal)
) -> Any:
    event = service.purchase(
        payload.order_id,
        payload.value,
        payload.items,
        resolve_actor(principal, context),
        context
    )
    await ingest(event, db, service, queue)
    return {"message": "Purchase tracked"}


@router.post("/funnel-step", response_model=MessageResponse)
async def track_funnel_step(
    payload: FunnelStepRequest,
    db: AsyncSession = Depends(get_session),
    service: AnalyticsService = Depends(get_analytics_service),
    queue: Optional[EventWriteQueue] = Depends(get_write_queue),
    context: RequestContext = Depends(get_request_context),
    principal: Optional[Principal] = Depends(get_current_principal)
) -> Any:
    event = service.funnel_step(
        payload.funnel_id,
        payload.step_id,
        payload.action,
        resolve_actor(principal, context),
        context
    )
    await ingest(event, db, service, queue)
    return {"message": "Funnel step tracked"}


@router.post("/live-stream-view", response_model=MessageResponse)
async def track_live_stream_view(
    payload: LiveStreamViewRequest,
    db: AsyncSession = Depends(get_session),
    service: AnalyticsService = Depends(get_analytics_service),
    queue: Optional[EventWriteQueue] = Depends(get_write_queue),
    context: RequestContext = Depends(get_request_context),
    principal: Optional[Principal] = Depends(get_current_principal)
) -> Any:
    event = service.live_stream_view(payload.stream_id, resolve_actor(principal, context), context)
    await ingest(event, db, service, queue)
    return {"message": "Live stream view tracked"}


@router.get("/events", response_model=EventListResponse)
async def list_events(
    event_type: Optional[EventType] = Query(None, alias="eventType"),
    period: Period = Query(Period.MONTH),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    user_id: Optional[UUID] = Query(None, alias="userId", description="Target user (admin only)"),
    db: AsyncSession = Depends(get_session),
    service: AnalyticsService = Depends(get_analytics_service),
    context: RequestContext = Depends(get_request_context),
    principal: Optional[Principal] = Depends(get_current_principal)
) -> Any:
    """
    Raw events, newest first
    """
    actor = resolve_target_actor(principal, context, user_id)
    events, total = await service.list_events(db, actor, event_type, period, limit, offset)
    return {
        "items": [event.to_dict() for event in events],
        "total": total,
        "limit": limit,
        "offset": offset
    }


@router.get("/events/{event_id}", response_model=AnalyticsEventResponse)
async def get_event(
    event_id: int,
    db: AsyncSession = Depends(get_session),
    service: AnalyticsService = Depends(get_analytics_service),
    context: RequestContext = Depends(get_request_context),
    principal: Optional[Principal] = Depends(get_current_principal)
) -> Any:
    event = await service.get_event(db, event_id)

    if principal is not None and principal.is_admin:
        return event.to_dict()
    owner = resolve_target_actor(principal, context)
    if event.actor != owner:
        raise AuthorizationError("Not allowed to view this event")
    return event.to_dict()


@router.get("/sessions/{session_id}", response_model=EventListResponse)
async def get_session_events(
    session_id: str,
    db: AsyncSession = Depends(get_session),
    service: AnalyticsService = Depends(get_analytics_service),
    admin: Principal = Depends(require_admin)
) -> Any:
    """
    Clickstream of one session (Admin only)
    """
    events = await service.find_by_session(db, session_id)
    return {
        "items": [event.to_dict() for event in events],
        "total": len(events),
        "limit": len(events),
        "offset": 0
    }


@router.get("/revenue", response_model=RevenueResponse)
async def get_revenue(
    period: Period = Query(Period.MONTH),
    db: AsyncSession = Depends(get_session),
    service: AnalyticsService = Depends(get_analytics_service),
    admin: Principal = Depends(require_admin)
) -> Any:
    """
    Purchase revenue per day (Admin only)
    """
    revenue = await service.get_revenue_by_day(db, period)
    return {"period": period.value, "revenue": revenue}


@router.get("/export")
async def export_events(
    period: Period = Query(Period.MONTH),
    format: str = Query("csv", pattern="^(csv|json|excel)$"),
    user_id: Optional[UUID] = Query(None, alias="userId"),
    db: AsyncSession = Depends(get_session),
    service: AnalyticsService = Depends(get_analytics_service),
    admin: Principal = Depends(require_admin)
) -> Response:
    """
    Download raw events (Admin only)
    """
    actor = Actor.identified(user_id) if user_id else None
    content = await service.export_events(db, actor, period, format)
    extension = "xlsx" if format == "excel" else format
    logger.info(f"Admin {admin.user_id} exported {period.value} analytics as {format}")
    return Response(
        content=content,
        media_type=EXPORT_FORMATS[format],
        headers={
            "Content-Disposition": f'attachment; filename="analytics-{period.value}.{extension}"'
        }
    )
