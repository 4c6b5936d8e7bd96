"""
Analytics Service
Event ingestion plus summary and realtime aggregation over trailing windows
"""

from collections.abc import Mapping
from datetime import datetime, timedelta
from decimal import Decimal
from io import BytesIO
from typing import Any, Callable, Dict, List, Optional, Tuple, Union
import asyncio
import json
import logging

import pandas as pd
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.cache import CacheManager
from app.core.exceptions import AggregationError, NotFoundError, StorageError, ValidationError
from app.core.metrics import AGGREGATION_DURATION, EVENTS_INGESTED, INGEST_FAILURES
from app.models.analytics import REQUIRED_PROPERTIES, Actor, AnalyticsEvent, EventType
from app.models.base import utcnow
from app.services import aggregation
from app.services.aggregation import AggregationResult, Period, TimeWindow
from app.services.enrichment import EventEnricher, RequestContext
from app.services.live_streams import LiveStreamCounter, StaticLiveStreamCounter

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

MAX_VALUE = Decimal("100000000")  # Numeric(10, 2)
EXPORT_FORMATS = {
    "csv": "text/csv",
    "json": "application/json",
    "excel": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}
# Raw IP and user agent stay out of exports
EXPORT_COLUMNS = [
    "id", "event_type", "event_name", "properties", "value", "currency",
    "user_id", "session_id", "source", "medium", "campaign", "referrer",
    "country", "city", "device", "browser", "os",
    "created_at", "event_date", "event_hour",
]


def parse_period(period: Union[Period, str]) -> Period:
    try:
        return Period(period)
    except ValueError:
        raise ValidationError(
            f"Invalid period '{period}'. Expected one of: {', '.join(p.value for p in Period)}",
            field="period"
        )


class AnalyticsService:
    """
    Ingests analytics events and computes aggregate views.

    Collaborators (enricher, live-stream counter, cache, clock) are injected
    so the same service runs against production backends and test fakes.
    """

    def __init__(
        self,
        enricher: Optional[EventEnricher] = None,
        live_stream_counter: Optional[LiveStreamCounter] = None,
        cache: Optional[CacheManager] = None,
        clock: Clock = utcnow,
        top_n: int = settings.ANALYTICS_TOP_N,
        recent_purchases_limit: int = settings.ANALYTICS_RECENT_PURCHASES,
        realtime_window: timedelta = timedelta(minutes=settings.ANALYTICS_REALTIME_WINDOW_MINUTES),
        query_timeout: Optional[float] = settings.AGGREGATION_TIMEOUT_SECONDS,
        cache_ttl: int = settings.CACHE_TTL_SUMMARY,
    ):
        self.enricher = enricher or EventEnricher()
        self.live_stream_counter = live_stream_counter or StaticLiveStreamCounter(0)
        self.cache = cache
        self.clock = clock
        self.top_n = top_n
        self.recent_purchases_limit = recent_purchases_limit
        self.realtime_window = realtime_window
        self.query_timeout = query_timeout
        self.cache_ttl = cache_ttl

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def build_event(
        self,
        event_type: Union[EventType, str],
        event_name: str,
        properties: Optional[Mapping] = None,
        actor: Optional[Actor] = None,
        context: Optional[RequestContext] = None,
        value: Any = None,
        currency: Optional[str] = settings.ANALYTICS_DEFAULT_CURRENCY,
    ) -> AnalyticsEvent:
        """
        Validate and enrich one event without touching the database
        """
        try:
            event_type = EventType(event_type)
        except ValueError:
            raise ValidationError(f"Unknown event type: {event_type}", field="eventType")

        if not isinstance(event_name, str) or not event_name.strip():
            raise ValidationError("eventName is required", field="eventName")
        event_name = event_name.strip()
        if len(event_name) > 255:
            raise ValidationError("eventName must be at most 255 characters", field="eventName")

        properties = self._validate_properties(event_type, properties)
        amount, currency = self._validate_value(value, currency)

        enriched = self.enricher.enrich(context)
        if actor is not None and actor.is_anonymous and not enriched.session_id:
            enriched.session_id = actor.session_id

        return AnalyticsEvent(
            created_at=self.clock(),
            event_type=event_type.value,
            event_name=event_name,
            properties=properties,
            value=amount,
            currency=currency,
            user_id=actor.user_id if actor is not None else None,
            **enriched.as_columns(),
        )

    @staticmethod
    def _validate_properties(event_type: EventType, properties: Optional[Mapping]) -> Dict[str, Any]:
        if properties is None:
            properties = {}
        if not isinstance(properties, Mapping):
            raise ValidationError("properties must be an object", field="properties")
        properties = dict(properties)

        missing = [
            key for key in REQUIRED_PROPERTIES.get(event_type, ())
            if properties.get(key) is None
        ]
        if missing:
            raise ValidationError(
                f"{event_type.value} events require properties: {', '.join(missing)}",
                field="properties"
            )

        try:
            json.dumps(properties)
        except (TypeError, ValueError):
            raise ValidationError("properties must be JSON-serializable", field="properties")
        return properties

    @staticmethod
    def _validate_value(value: Any, currency: Optional[str]) -> Tuple[Optional[Decimal], Optional[str]]:
        # Currency is only stored alongside a value
        if value is None:
            return None, None

        amount = aggregation.to_decimal(value)
        if amount is None or isinstance(value, bool) or not amount.is_finite():
            raise ValidationError("value must be a number", field="value")
        if abs(amount) >= MAX_VALUE:
            raise ValidationError("value is out of range", field="value")
        if amount != amount.quantize(aggregation.CENTS):
            raise ValidationError("value must have at most two decimal places", field="value")
        amount = amount.quantize(aggregation.CENTS)

        if not currency or not str(currency).strip():
            raise ValidationError("currency is required when value is set", field="currency")
        currency = str(currency).strip().upper()
        if len(currency) != 3 or not currency.isalpha():
            raise ValidationError("currency must be a 3-letter ISO code", field="currency")
        return amount, currency

    async def persist(self, db: AsyncSession, event: AnalyticsEvent) -> AnalyticsEvent:
        """
        Write one event in its own unit of work
        """
        try:
            db.add(event)
            await db.commit()
        except (SQLAlchemyError, OSError) as e:
            await db.rollback()
            INGEST_FAILURES.labels(stage="write").inc()
            logger.error(f"Failed to store {event.event_type} event: {type(e).__name__}: {e}")
            raise StorageError() from e

        EVENTS_INGESTED.labels(event_type=event.event_type).inc()
        logger.debug(f"Stored analytics event {event.id} ({event.event_type})")
        return event

    async def track_event(
        self,
        db: AsyncSession,
        event_type: Union[EventType, str],
        event_name: str,
        properties: Optional[Mapping] = None,
        actor: Optional[Actor] = None,
        context: Optional[RequestContext] = None,
        value: Any = None,
        currency: Optional[str] = settings.ANALYTICS_DEFAULT_CURRENCY,
    ) -> AnalyticsEvent:
        """
        Validate, enrich and store one event. Exactly one write per call;
        duplicates are the caller's concern.
        """
        event = self.build_event(event_type, event_name, properties, actor, context, value, currency)
        return await self.persist(db, event)

    def page_view(self, page: str, actor=None, context=None) -> AnalyticsEvent:
        return self.build_event(EventType.PAGE_VIEW, "Page View", {"page": page}, actor, context)

    def product_view(self, product_id, actor=None, context=None) -> AnalyticsEvent:
        return self.build_event(
            EventType.PRODUCT_VIEW, "Product View", {"product_id": product_id}, actor, context
        )

    def add_to_cart(self, product_id, quantity: int, value, actor=None, context=None) -> AnalyticsEvent:
        return self.build_event(
            EventType.ADD_TO_CART,
            "Add to Cart",
            {"product_id": product_id, "quantity": quantity},
            actor,
            context,
            value=value,
        )

    def purchase(self, order_id, value, items: Optional[List] = None, actor=None, context=None) -> AnalyticsEvent:
        return self.build_event(
            EventType.PURCHASE,
            "Purchase",
            {"order_id": order_id, "items": list(items or [])},
            actor,
            context,
            value=value,
        )

    def funnel_step(self, funnel_id, step_id, action: str = "view", actor=None, context=None) -> AnalyticsEvent:
        return self.build_event(
            EventType.FUNNEL_STEP,
            "Funnel Step",
            {"funnel_id": funnel_id, "step_id": step_id, "action": action},
            actor,
            context,
        )

    def live_stream_view(self, stream_id, actor=None, context=None) -> AnalyticsEvent:
        return self.build_event(
            EventType.LIVE_STREAM_VIEW, "Live Stream View", {"stream_id": stream_id}, actor, context
        )

    def message_sent(self, conversation_id, actor=None, context=None) -> AnalyticsEvent:
        return self.build_event(
            EventType.MESSAGE_SENT, "Message Sent", {"conversation_id": conversation_id}, actor, context
        )

    def social_share(self, platform: str, target_type: str, target_id, actor=None, context=None) -> AnalyticsEvent:
        return self.build_event(
            EventType.SOCIAL_SHARE,
            "Social Share",
            {"platform": platform, "target_type": target_type, "target_id": target_id},
            actor,
            context,
        )

    async def track_page_view(self, db: AsyncSession, page: str, actor=None, context=None) -> AnalyticsEvent:
        return await self.persist(db, self.page_view(page, actor, context))

    async def track_product_view(self, db: AsyncSession, product_id, actor=None, context=None) -> AnalyticsEvent:
        return await self.persist(db, self.product_view(product_id, actor, context))

    async def track_add_to_cart(
        self, db: AsyncSession, product_id, quantity: int, value, actor=None, context=None
    ) -> AnalyticsEvent:
        return await self.persist(db, self.add_to_cart(product_id, quantity, value, actor, context))

    async def track_purchase(
        self, db: AsyncSession, order_id, value, items=None, actor=None, context=None
    ) -> AnalyticsEvent:
        return await self.persist(db, self.purchase(order_id, value, items, actor, context))

    async def track_funnel_step(
        self, db: AsyncSession, funnel_id, step_id, action: str = "view", actor=None, context=None
    ) -> AnalyticsEvent:
        return await self.persist(db, self.funnel_step(funnel_id, step_id, action, actor, context))

    async def track_live_stream_view(self, db: AsyncSession, stream_id, actor=None, context=None) -> AnalyticsEvent:
        return await self.persist(db, self.live_stream_view(stream_id, actor, context))

    async def track_message_sent(self, db: AsyncSession, conversation_id, actor=None, context=None) -> AnalyticsEvent:
        return await self.persist(db, self.message_sent(conversation_id, actor, context))

    async def track_social_share(
        self, db: AsyncSession, platform: str, target_type: str, target_id, actor=None, context=None
    ) -> AnalyticsEvent:
        return await self.persist(db, self.social_share(platform, target_type, target_id, actor, context))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @staticmethod
    def _filters(
        window: Optional[TimeWindow] = None,
        actor: Optional[Actor] = None,
        event_type: Optional[EventType] = None,
    ) -> list:
        filters = []
        if window is not None:
            filters.append(AnalyticsEvent.created_at >= window.start)
            filters.append(AnalyticsEvent.created_at < window.end)
        if actor is not None:
            if actor.is_anonymous:
                filters.append(AnalyticsEvent.session_id == actor.session_id)
            else:
                filters.append(AnalyticsEvent.user_id == actor.user_id)
        if event_type is not None:
            filters.append(AnalyticsEvent.event_type == event_type.value)
        return filters

    async def _execute(self, db: AsyncSession, stmt):
        """
        Run a read query; any failure or timeout becomes AggregationError
        """
        try:
            if self.query_timeout:
                return await asyncio.wait_for(db.execute(stmt), timeout=self.query_timeout)
            return await db.execute(stmt)
        except asyncio.TimeoutError as e:
            logger.error(f"Analytics query timed out after {self.query_timeout}s")
            raise AggregationError("Analytics query timed out") from e
        except SQLAlchemyError as e:
            logger.error(f"Analytics query failed: {type(e).__name__}: {e}")
            raise AggregationError() from e

    async def fetch_events(
        self,
        db: AsyncSession,
        window: TimeWindow,
        actor: Optional[Actor] = None,
        event_type: Optional[EventType] = None,
    ) -> List[AnalyticsEvent]:
        stmt = (
            select(AnalyticsEvent)
            .where(*self._filters(window, actor, event_type))
            .order_by(AnalyticsEvent.created_at, AnalyticsEvent.id)
        )
        result = await self._execute(db, stmt)
        return list(result.scalars().all())

    async def get_summary(
        self,
        db: AsyncSession,
        actor: Optional[Actor] = None,
        period: Union[Period, str] = Period.MONTH,
        now: Optional[datetime] = None,
    ) -> AggregationResult:
        """
        Aggregate all events in [now - period, now), optionally restricted
        to one actor. Passing no actor aggregates across all users; callers
        must authorize that.
        """
        period = parse_period(period)
        window = TimeWindow.trailing(period.delta, now or self.clock())

        with AGGREGATION_DURATION.labels(view="summary").time():
            events = await self.fetch_events(db, window, actor)
            return aggregation.summarize(events, self.top_n)

    async def get_summary_payload(
        self,
        db: AsyncSession,
        actor: Optional[Actor] = None,
        period: Union[Period, str] = Period.MONTH,
    ) -> Dict[str, Any]:
        """
        JSON summary, served from the Redis cache when enabled. Cached
        entries may lag ingestion by up to the cache TTL.
        """
        period = parse_period(period)
        cache_key = None
        if self.cache is not None:
            cache_key = self.cache.generate_cache_key(
                "analytics_summary",
                {
                    "actor": actor.key if actor else None,
                    "anonymous": actor.is_anonymous if actor else None,
                    "period": period.value,
                }
            )
            cached = await self.cache.get_json(cache_key)
            if cached is not None:
                return cached

        payload = (await self.get_summary(db, actor, period)).to_dict()

        if cache_key is not None:
            await self.cache.set_json(cache_key, payload, ttl=self.cache_ttl)
        return payload

    async def get_realtime(
        self,
        db: AsyncSession,
        actor: Optional[Actor] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Live dashboard view over the trailing realtime window
        """
        window = TimeWindow.trailing(self.realtime_window, now or self.clock())

        with AGGREGATION_DURATION.labels(view="realtime").time():
            events = await self.fetch_events(db, window, actor)
            try:
                live_streams = await self.live_stream_counter.count_live()
            except Exception as e:
                logger.error(f"Live stream count unavailable: {e}")
                raise AggregationError("Live stream state unavailable") from e

            return {
                "active_users": aggregation.count_unique_actors(events),
                "page_views_last_hour": aggregation.count_by_type(events, EventType.PAGE_VIEW),
                "current_live_streams": live_streams,
                "recent_purchases": [
                    e.to_dict() for e in aggregation.recent_purchases(events, self.recent_purchases_limit)
                ],
                "top_pages_now": {
                    str(page): count for page, count in aggregation.top_pages(events, self.top_n)
                },
            }

    async def list_events(
        self,
        db: AsyncSession,
        actor: Optional[Actor] = None,
        event_type: Optional[EventType] = None,
        period: Union[Period, str] = Period.MONTH,
        limit: int = 50,
        offset: int = 0,
        now: Optional[datetime] = None,
    ) -> Tuple[List[AnalyticsEvent], int]:
        """
        Page through raw events, newest first
        """
        period = parse_period(period)
        window = TimeWindow.trailing(period.delta, now or self.clock())
        filters = self._filters(window, actor, event_type)

        total = (await self._execute(
            db, select(func.count(AnalyticsEvent.id)).where(*filters)
        )).scalar() or 0
        result = await self._execute(
            db,
            select(AnalyticsEvent)
            .where(*filters)
            .order_by(AnalyticsEvent.created_at.desc(), AnalyticsEvent.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    async def get_event(self, db: AsyncSession, event_id: int) -> AnalyticsEvent:
        try:
            event = await db.get(AnalyticsEvent, event_id)
        except SQLAlchemyError as e:
            logger.error(f"Failed to load analytics event {event_id}: {e}")
            raise AggregationError() from e
        if event is None:
            raise NotFoundError("Analytics event", event_id)
        return event

    async def find_by_session(self, db: AsyncSession, session_id: str) -> List[AnalyticsEvent]:
        """
        Full clickstream of one session, oldest first
        """
        result = await self._execute(
            db,
            select(AnalyticsEvent)
            .where(AnalyticsEvent.session_id == session_id)
            .order_by(AnalyticsEvent.created_at, AnalyticsEvent.id)
        )
        return list(result.scalars().all())

    async def get_revenue_by_day(
        self,
        db: AsyncSession,
        period: Union[Period, str] = Period.MONTH,
        now: Optional[datetime] = None,
    ) -> List[Dict[str, str]]:
        """
        Purchase revenue grouped by the derived event_date bucket
        """
        period = parse_period(period)
        window = TimeWindow.trailing(period.delta, now or self.clock())
        stmt = (
            select(AnalyticsEvent.event_date, func.sum(AnalyticsEvent.value).label("revenue"))
            .where(*self._filters(window, event_type=EventType.PURCHASE))
            .group_by(AnalyticsEvent.event_date)
            .order_by(AnalyticsEvent.event_date)
        )
        result = await self._execute(db, stmt)
        return [
            {
                "date": row.event_date.isoformat(),
                "revenue": str(
                    (aggregation.to_decimal(row.revenue) or Decimal("0")).quantize(aggregation.CENTS)
                ),
            }
            for row in result
        ]

    async def export_events(
        self,
        db: AsyncSession,
        actor: Optional[Actor] = None,
        period: Union[Period, str] = Period.MONTH,
        format: str = "csv",
        max_rows: int = settings.EXPORT_MAX_ROWS,
    ) -> bytes:
        """
        Export the raw events of a window as CSV, JSON or Excel
        """
        if format not in EXPORT_FORMATS:
            raise ValidationError(f"Invalid format: {format}", field="format")

        events, _ = await self.list_events(db, actor, period=period, limit=max_rows)
        rows = []
        for event in events:
            row = event.to_dict()
            row["properties"] = json.dumps(row["properties"], default=str)
            rows.append(row)
        df = pd.DataFrame(rows, columns=EXPORT_COLUMNS)

        if format == "csv":
            return df.to_csv(index=False).encode()
        if format == "json":
            return df.to_json(orient="records").encode()

        output = BytesIO()
        with pd.ExcelWriter(output, engine="xlsxwriter") as writer:
            df.to_excel(writer, sheet_name="Events", index=False)
        return output.getvalue()


def _build_default_service() -> AnalyticsService:
    from app.core.cache import cache_manager
    from app.services.live_streams import RedisLiveStreamCounter

    return AnalyticsService(
        live_stream_counter=RedisLiveStreamCounter(),
        cache=cache_manager if settings.SUMMARY_CACHE_ENABLED else None,
    )


# Initialize global analytics service
analytics_service = _build_default_service()


def get_analytics_service() -> AnalyticsService:
    """FastAPI dependency; overridden in tests"""
    return analytics_service
