"""
Pure aggregation functions over analytics events.

Every function takes a sequence of events (ORM rows or anything exposing
the same attributes), never mutates it, and returns zeroed/empty results
for empty input. Ordering of ranked outputs is stable: ties keep the order
in which keys were first seen, so callers should pass events in
`created_at, id` order.
"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Hashable, Iterable, List, Optional, Sequence, Tuple
import enum
import re
import logging

from app.models.analytics import EventType
from app.models.base import ensure_utc

logger = logging.getLogger(__name__)

TOP_N = 10
HOURS_PER_DAY = 24
CENTS = Decimal("0.01")


class Period(str, enum.Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"

    @property
    def delta(self) -> timedelta:
        return _PERIOD_DELTAS[self]


# Month and year are fixed-length trailing windows, not calendar periods
_PERIOD_DELTAS = {
    Period.DAY: timedelta(days=1),
    Period.WEEK: timedelta(weeks=1),
    Period.MONTH: timedelta(days=30),
    Period.YEAR: timedelta(days=365),
}


@dataclass(frozen=True)
class TimeWindow:
    """Half-open interval [start, end)"""
    start: datetime
    end: datetime

    @classmethod
    def trailing(cls, delta: timedelta, now: datetime) -> "TimeWindow":
        now = ensure_utc(now)
        return cls(start=now - delta, end=now)

    def contains(self, moment: datetime) -> bool:
        return self.start <= ensure_utc(moment) < self.end


@dataclass(frozen=True)
class AggregationResult:
    total_events: int = 0
    counts_by_type: Dict[str, int] = field(default_factory=dict)
    total_revenue: Decimal = Decimal("0")
    conversion_rate: float = 0.0
    top_pages: List[Tuple[Any, int]] = field(default_factory=list)
    top_products: List[Tuple[Any, int]] = field(default_factory=list)
    traffic_sources: Dict[str, int] = field(default_factory=dict)
    device_breakdown: Dict[str, int] = field(default_factory=dict)
    hourly_distribution: List[int] = field(default_factory=lambda: [0] * HOURS_PER_DAY)

    def count(self, event_type: EventType) -> int:
        return self.counts_by_type.get(event_type.value, 0)

    @property
    def page_views(self) -> int:
        return self.count(EventType.PAGE_VIEW)

    @property
    def product_views(self) -> int:
        return self.count(EventType.PRODUCT_VIEW)

    @property
    def add_to_cart(self) -> int:
        return self.count(EventType.ADD_TO_CART)

    @property
    def purchases(self) -> int:
        return self.count(EventType.PURCHASE)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_events": self.total_events,
            "page_views": self.page_views,
            "product_views": self.product_views,
            "add_to_cart": self.add_to_cart,
            "purchases": self.purchases,
            "counts_by_type": dict(self.counts_by_type),
            "total_revenue": str(self.total_revenue.quantize(CENTS)),
            "conversion_rate": self.conversion_rate,
            "top_pages": {str(page): count for page, count in self.top_pages},
            "top_products": {str(product): count for product, count in self.top_products},
            "traffic_sources": dict(self.traffic_sources),
            "device_breakdown": dict(self.device_breakdown),
            "hourly_distribution": list(self.hourly_distribution),
        }


_INTEGER_ID = re.compile(r"-?[0-9]+")


def product_key(value: Any) -> Optional[Hashable]:
    """
    Canonical product id for grouping. Integer-like ids collapse to int so
    7, "7" and 7.0 count as one product; anything else groups by its text.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    text = str(value).strip()
    if not text:
        return None
    if _INTEGER_ID.fullmatch(text):
        return int(text)
    return text


def page_key(value: Any) -> str:
    return "unknown" if value is None else str(value)


def _ranked(counter: Counter, limit: Optional[int] = None) -> List[Tuple[Any, int]]:
    # sorted() is stable, including with reverse=True
    ranked = sorted(counter.items(), key=lambda item: item[1], reverse=True)
    return ranked[:limit] if limit is not None else ranked


def _of_type(events: Iterable, event_type: EventType) -> List:
    return [e for e in events if e.event_type == event_type.value]


def count_by_type(events: Sequence, event_type: EventType) -> int:
    return len(_of_type(events, event_type))


def counts_by_type(events: Sequence) -> Dict[str, int]:
    counts = {t.value: 0 for t in EventType}
    for e in events:
        if e.event_type in counts:
            counts[e.event_type] += 1
    return counts


def to_decimal(value: Any) -> Optional[Decimal]:
    """Exact decimal from Decimal/str/int/float; None when not numeric"""
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def sum_values_by_type(events: Sequence, event_type: EventType) -> Decimal:
    total = Decimal("0")
    for e in _of_type(events, event_type):
        amount = to_decimal(e.value)
        if amount is not None:
            total += amount
    return total


def conversion_rate(events: Sequence) -> float:
    page_views = count_by_type(events, EventType.PAGE_VIEW)
    if page_views == 0:
        return 0.0
    purchases = count_by_type(events, EventType.PURCHASE)
    return purchases / page_views * 100


def top_pages(events: Sequence, limit: int = TOP_N) -> List[Tuple[Any, int]]:
    pages = Counter()
    for e in _of_type(events, EventType.PAGE_VIEW):
        page = (e.properties or {}).get("page")
        pages[page_key(page)] += 1
    return _ranked(pages, limit)


def top_products(events: Sequence, limit: int = TOP_N) -> List[Tuple[Any, int]]:
    products = Counter()
    for e in _of_type(events, EventType.PRODUCT_VIEW):
        product = product_key((e.properties or {}).get("product_id"))
        if product is not None:
            products[product] += 1
    return _ranked(products, limit)


def traffic_sources(events: Sequence) -> Dict[str, int]:
    sources = Counter(e.source or "direct" for e in events)
    return dict(_ranked(sources))


def device_breakdown(events: Sequence) -> Dict[str, int]:
    return dict(Counter(e.device or "unknown" for e in events))


def hourly_distribution(events: Sequence) -> List[int]:
    hours = [0] * HOURS_PER_DAY
    for e in events:
        hour = e.event_hour if e.event_hour is not None else 0
        if 0 <= hour < HOURS_PER_DAY:
            hours[hour] += 1
        else:
            logger.warning(f"Ignoring event {e.id} with out-of-range hour {hour}")
    return hours


def count_unique_actors(events: Sequence) -> int:
    """
    Distinct identities: user id when known, else session id. Anonymous
    events are only distinguishable by session, so events with neither are
    not counted.
    """
    keys = set()
    for e in events:
        if e.user_id is not None:
            keys.add(("user", str(e.user_id)))
        elif e.session_id:
            keys.add(("session", e.session_id))
    return len(keys)


def recent_purchases(events: Sequence, limit: int = 5) -> List:
    purchases = _of_type(events, EventType.PURCHASE)
    purchases.sort(key=lambda e: (ensure_utc(e.created_at), e.id or 0), reverse=True)
    return purchases[:limit]


def summarize(events: Sequence, top_n: int = TOP_N) -> AggregationResult:
    return AggregationResult(
        total_events=len(events),
        counts_by_type=counts_by_type(events),
        total_revenue=sum_values_by_type(events, EventType.PURCHASE),
        conversion_rate=conversion_rate(events),
        top_pages=top_pages(events, top_n),
        top_products=top_products(events, top_n),
        traffic_sources=traffic_sources(events),
        device_breakdown=device_breakdown(events),
        hourly_distribution=hourly_distribution(events),
    )
