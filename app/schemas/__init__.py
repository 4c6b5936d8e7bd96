"""
Pydantic schemas for request and response validation
"""

from app.schemas.analytics import (
    TrackEventRequest,
    PageViewRequest,
    ProductViewRequest,
    AddToCartRequest,
    PurchaseRequest,
    FunnelStepRequest,
    LiveStreamViewRequest,
    TrackResponse,
    AnalyticsEventResponse,
    SummaryResponse,
    RealtimeResponse,
    EventListResponse,
    RevenueResponse
)
from app.schemas.response import (
    ErrorResponse,
    MessageResponse,
    HealthResponse
)

__all__ = [
    "TrackEventRequest",
    "PageViewRequest",
    "ProductViewRequest",
    "AddToCartRequest",
    "PurchaseRequest",
    "FunnelStepRequest",
    "LiveStreamViewRequest",
    "TrackResponse",
    "AnalyticsEventResponse",
    "SummaryResponse",
    "RealtimeResponse",
    "EventListResponse",
    "RevenueResponse",
    "ErrorResponse",
    "MessageResponse",
    "HealthResponse"
]
