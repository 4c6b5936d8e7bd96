"""
Analytics request and response schemas
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import Field

from app.schemas.base import BaseSchema, RequestSchema
from app.schemas.response import MessageResponse


class TrackEventRequest(RequestSchema):
    event_type: str = Field(..., alias="eventType", min_length=1)
    event_name: str = Field(..., alias="eventName", min_length=1)
    properties: Optional[Dict[str, Any]] = None
    value: Optional[Decimal] = None
    currency: Optional[str] = None


class PageViewRequest(RequestSchema):
    page: str = Field(..., min_length=1, max_length=2048)


class ProductViewRequest(RequestSchema):
    product_id: int = Field(..., alias="productId", gt=0)


class AddToCartRequest(RequestSchema):
    product_id: int = Field(..., alias="productId", gt=0)
    quantity: int = Field(1, ge=1)
    value: Decimal = Field(..., gt=0)


class PurchaseRequest(RequestSchema):
    order_id: int = Field(..., alias="orderId", gt=0)
    value: Decimal = Field(..., gt=0)
    items: List[Any] = Field(default_factory=list)


class FunnelStepRequest(RequestSchema):
    funnel_id: int = Field(..., alias="funnelId", gt=0)
    step_id: int = Field(..., alias="stepId", gt=0)
    action: str = Field("view", min_length=1, max_length=100)


class LiveStreamViewRequest(RequestSchema):
    stream_id: int = Field(..., alias="streamId", gt=0)


class TrackResponse(MessageResponse):
    id: int


class AnalyticsEventResponse(BaseSchema):
    id: int
    event_type: str
    event_name: str
    properties: Dict[str, Any] = {}
    value: Optional[str] = None
    currency: Optional[str] = None
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    source: Optional[str] = None
    medium: Optional[str] = None
    campaign: Optional[str] = None
    referrer: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None
    device: Optional[str] = None
    browser: Optional[str] = None
    os: Optional[str] = None
    created_at: datetime
    event_date: Optional[date] = None
    event_hour: Optional[int] = None


class AggregationSummary(BaseSchema):
    total_events: int
    page_views: int
    product_views: int
    add_to_cart: int
    purchases: int
    counts_by_type: Dict[str, int]
    total_revenue: str
    conversion_rate: float
    top_pages: Dict[str, int]
    top_products: Dict[str, int]
    traffic_sources: Dict[str, int]
    device_breakdown: Dict[str, int]
    hourly_distribution: List[int]


class SummaryResponse(BaseSchema):
    period: str
    summary: AggregationSummary


class RealtimeView(BaseSchema):
    active_users: int
    page_views_last_hour: int
    current_live_streams: int
    recent_purchases: List[AnalyticsEventResponse]
    top_pages_now: Dict[str, int]


class RealtimeResponse(BaseSchema):
    realtime: RealtimeView
    timestamp: datetime


class EventListResponse(BaseSchema):
    items: List[AnalyticsEventResponse]
    total: int
    limit: int
    offset: int


class DailyRevenue(BaseSchema):
    date: date
    revenue: str


class RevenueResponse(BaseSchema):
    period: str
    revenue: List[DailyRevenue]
