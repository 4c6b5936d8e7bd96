"""
Analytics event model
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Union
from uuid import UUID
import enum

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    Date,
    Index,
    Numeric,
    SmallInteger,
    String,
    Uuid,
    event,
)
from sqlalchemy.dialects.postgresql import JSONB

from app.models.base import AppendOnlyModel, ensure_utc, utcnow


class EventType(str, enum.Enum):
    """
    Closed set of accepted event types. To add one, add a member here and,
    if it carries a payload, its keys to REQUIRED_PROPERTIES.
    """
    PAGE_VIEW = "page_view"
    PRODUCT_VIEW = "product_view"
    ADD_TO_CART = "add_to_cart"
    PURCHASE = "purchase"
    FUNNEL_STEP = "funnel_step"
    LIVE_STREAM_VIEW = "live_stream_view"
    MESSAGE_SENT = "message_sent"
    SOCIAL_SHARE = "social_share"


# Payload keys checked at ingestion; the rest of the map is free-form
REQUIRED_PROPERTIES: Dict[EventType, tuple] = {
    EventType.PAGE_VIEW: ("page",),
    EventType.PRODUCT_VIEW: ("product_id",),
    EventType.ADD_TO_CART: ("product_id", "quantity"),
    EventType.PURCHASE: ("order_id",),
    EventType.FUNNEL_STEP: ("funnel_id", "step_id"),
    EventType.LIVE_STREAM_VIEW: ("stream_id",),
}


class Device(str, enum.Enum):
    MOBILE = "mobile"
    TABLET = "tablet"
    DESKTOP = "desktop"


@dataclass(frozen=True)
class Actor:
    """
    Who an event belongs to: an identified user, or an anonymous session.
    `key` is the identity used for unique-user counting.
    """
    user_id: Optional[UUID] = None
    session_id: Optional[str] = None

    def __post_init__(self):
        if (self.user_id is None) == (self.session_id is None):
            raise ValueError("Actor needs exactly one of user_id or session_id")

    @classmethod
    def identified(cls, user_id: Union[UUID, str]) -> "Actor":
        return cls(user_id=user_id if isinstance(user_id, UUID) else UUID(str(user_id)))

    @classmethod
    def anonymous(cls, session_id: str) -> "Actor":
        return cls(session_id=session_id)

    @property
    def is_anonymous(self) -> bool:
        return self.user_id is None

    @property
    def key(self) -> str:
        return str(self.user_id) if self.user_id is not None else self.session_id


class AnalyticsEvent(AppendOnlyModel):
    """
    One immutable analytics event.

    `event_date` and `event_hour` are bucketing copies of `created_at`
    (UTC) and are always derived from it.
    """
    __tablename__ = "analytics_events"

    event_type = Column(String(50), nullable=False, index=True)
    event_name = Column(String(255), nullable=False)
    properties = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=dict)

    value = Column(Numeric(10, 2, asdecimal=True), nullable=True)
    currency = Column(String(3), nullable=True)

    # Weak reference: identities live in the marketplace user service
    user_id = Column(Uuid(as_uuid=True), nullable=True, index=True)

    # UTM attribution
    source = Column(String(255), nullable=True)
    medium = Column(String(255), nullable=True)
    campaign = Column(String(255), nullable=True)

    # Request context
    session_id = Column(String(255), nullable=True, index=True)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(String(500), nullable=True)
    referrer = Column(String(255), nullable=True)
    country = Column(String(10), nullable=True)
    city = Column(String(100), nullable=True)
    device = Column(String(100), nullable=True)
    browser = Column(String(100), nullable=True)
    os = Column(String(100), nullable=True)

    event_date = Column(Date, nullable=False, index=True)
    event_hour = Column(SmallInteger, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "value IS NULL OR currency IS NOT NULL",
            name="ck_analytics_events_value_currency"
        ),
        CheckConstraint(
            "event_hour IS NULL OR (event_hour >= 0 AND event_hour <= 23)",
            name="ck_analytics_events_event_hour"
        ),
        Index("ix_analytics_events_created_at_type", "created_at", "event_type"),
    )

    def __init__(self, created_at: Optional[datetime] = None, **kwargs: Any):
        if "event_date" in kwargs or "event_hour" in kwargs:
            raise TypeError("event_date and event_hour are derived from created_at")
        kwargs.setdefault("properties", {})
        super().__init__(created_at=ensure_utc(created_at or utcnow()), **kwargs)
        self._derive_buckets()

    def _derive_buckets(self):
        created_at = ensure_utc(self.created_at)
        self.event_date = created_at.date()
        self.event_hour = created_at.hour

    @property
    def actor(self) -> Optional[Actor]:
        if self.user_id is not None:
            return Actor.identified(self.user_id)
        if self.session_id:
            return Actor.anonymous(self.session_id)
        return None

    def detached_copy(self) -> "AnalyticsEvent":
        """Unsaved copy with the same content and timestamp, for write retries"""
        columns = {
            column.name: getattr(self, column.name)
            for column in self.__table__.columns
            if column.name not in ("id", "event_date", "event_hour")
        }
        columns["properties"] = dict(columns.get("properties") or {})
        return AnalyticsEvent(**columns)

    def get_property(self, key: str, default: Any = None) -> Any:
        return (self.properties or {}).get(key, default)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly representation"""
        return {
            "id": self.id,
            "event_type": self.event_type,
            "event_name": self.event_name,
            "properties": dict(self.properties or {}),
            "value": str(self.value) if self.value is not None else None,
            "currency": self.currency,
            "user_id": str(self.user_id) if self.user_id else None,
            "session_id": self.session_id,
            "source": self.source,
            "medium": self.medium,
            "campaign": self.campaign,
            "referrer": self.referrer,
            "country": self.country,
            "city": self.city,
            "device": self.device,
            "browser": self.browser,
            "os": self.os,
            "created_at": ensure_utc(self.created_at).isoformat(),
            "event_date": self.event_date.isoformat() if self.event_date else None,
            "event_hour": self.event_hour,
        }

    def __repr__(self):
        return f"<AnalyticsEvent(id={self.id}, event_type={self.event_type}, created_at={self.created_at})>"


@event.listens_for(AnalyticsEvent, "before_insert")
def _derive_buckets_before_insert(mapper, connection, target):
    # Re-derive so a stray assignment before flush cannot desync the buckets
    target._derive_buckets()
