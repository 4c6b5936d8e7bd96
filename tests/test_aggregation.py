"""
Unit tests for the pure aggregation functions
"""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace
from uuid import uuid4

from app.models.analytics import AnalyticsEvent, EventType
from app.services import aggregation
from app.services.aggregation import Period, TimeWindow

NOW = datetime(2024, 5, 15, 12, 0, 0, tzinfo=timezone.utc)


def make_event(event_type, properties=None, minutes_ago=0, **columns):
    """Unsaved event row; aggregation only reads attributes"""
    return AnalyticsEvent(
        created_at=NOW - timedelta(minutes=minutes_ago),
        event_type=event_type.value,
        event_name=event_type.value,
        properties=properties or {},
        **columns
    )


@pytest.mark.unit
class TestPeriods:
    """Trailing windows"""

    def test_period_lengths(self):
        assert Period.DAY.delta == timedelta(days=1)
        assert Period.WEEK.delta == timedelta(days=7)
        assert Period.MONTH.delta == timedelta(days=30)
        assert Period.YEAR.delta == timedelta(days=365)

    def test_window_is_half_open(self):
        window = TimeWindow.trailing(timedelta(days=1), NOW)

        assert window.contains(NOW - timedelta(days=1))
        assert window.contains(NOW - timedelta(seconds=1))
        assert not window.contains(NOW)
        assert not window.contains(NOW - timedelta(days=1, seconds=1))

    def test_naive_now_is_treated_as_utc(self):
        window = TimeWindow.trailing(timedelta(hours=1), NOW.replace(tzinfo=None))
        assert window.end == NOW


@pytest.mark.unit
class TestCounts:
    """Counting and revenue"""

    def test_empty_input_gives_zeroed_result(self):
        result = aggregation.summarize([])

        assert result.total_events == 0
        assert result.page_views == 0
        assert result.purchases == 0
        assert result.total_revenue == Decimal("0")
        assert result.conversion_rate == 0.0
        assert result.top_pages == []
        assert result.top_products == []
        assert result.traffic_sources == {}
        assert result.device_breakdown == {}
        assert result.hourly_distribution == [0] * 24

    def test_counts_by_type_include_every_type(self):
        events = [make_event(EventType.PAGE_VIEW, {"page": "/"}) for _ in range(3)]
        counts = aggregation.counts_by_type(events)

        assert set(counts) == {t.value for t in EventType}
        assert counts["page_view"] == 3
        assert counts["social_share"] == 0

    def test_revenue_is_exact(self):
        events = [
            make_event(EventType.PURCHASE, {"order_id": i}, value=Decimal("0.10"), currency="EUR")
            for i in range(3)
        ]
        events.append(make_event(EventType.ADD_TO_CART, {"product_id": 1, "quantity": 1},
                                 value=Decimal("99.99"), currency="EUR"))

        total = aggregation.sum_values_by_type(events, EventType.PURCHASE)

        assert total == Decimal("0.30")

    def test_float_and_string_values_are_converted_exactly(self):
        events = [
            SimpleNamespace(event_type="purchase", value=0.1),
            SimpleNamespace(event_type="purchase", value="0.2"),
            SimpleNamespace(event_type="purchase", value=None),
        ]
        assert aggregation.sum_values_by_type(events, EventType.PURCHASE) == Decimal("0.3")

    def test_conversion_rate_is_a_percentage(self):
        events = [make_event(EventType.PAGE_VIEW, {"page": "/"}) for _ in range(4)]
        events.append(make_event(EventType.PURCHASE, {"order_id": 1}, value=Decimal("5"), currency="EUR"))

        assert aggregation.conversion_rate(events) == 25.0

    def test_conversion_rate_without_page_views(self):
        events = [make_event(EventType.PURCHASE, {"order_id": 1}, value=Decimal("5"), currency="EUR")]
        assert aggregation.conversion_rate(events) == 0.0


@pytest.mark.unit
class TestRankings:
    """Top pages, top products, sources, devices"""

    def test_top_pages_ranked_with_stable_ties(self):
        pages = ["/b", "/a", "/b", "/c", "/a", "/d"]
        events = [make_event(EventType.PAGE_VIEW, {"page": p}) for p in pages]

        ranked = aggregation.top_pages(events)

        # "/b" and "/a" tie on 2 and keep first-seen order
        assert ranked == [("/b", 2), ("/a", 2), ("/c", 1), ("/d", 1)]

    def test_top_pages_only_counts_page_views(self):
        events = [
            make_event(EventType.PAGE_VIEW, {"page": "/home"}),
            make_event(EventType.FUNNEL_STEP, {"page": "/home", "funnel_id": 1, "step_id": 1}),
            make_event(EventType.PAGE_VIEW, {}),
        ]

        assert aggregation.top_pages(events) == [("/home", 1), ("unknown", 1)]

    def test_top_pages_limit(self):
        events = [make_event(EventType.PAGE_VIEW, {"page": f"/p{i}"}) for i in range(15)]
        assert len(aggregation.top_pages(events, limit=10)) == 10

    def test_top_products_skips_missing_ids(self):
        events = [
            make_event(EventType.PRODUCT_VIEW, {"product_id": 7}),
            make_event(EventType.PRODUCT_VIEW, {"product_id": 7}),
            make_event(EventType.PRODUCT_VIEW, {"product_id": 3}),
            make_event(EventType.PRODUCT_VIEW, {"product_id": None}),
            make_event(EventType.PAGE_VIEW, {"page": "/", "product_id": 3}),
        ]

        assert aggregation.top_products(events) == [(7, 2), (3, 1)]

    def test_top_products_groups_mixed_id_types(self):
        events = [
            make_event(EventType.PRODUCT_VIEW, {"product_id": 7}),
            make_event(EventType.PRODUCT_VIEW, {"product_id": "7"}),
            make_event(EventType.PRODUCT_VIEW, {"product_id": " 7 "}),
            make_event(EventType.PRODUCT_VIEW, {"product_id": "sku-9"}),
        ]

        assert aggregation.top_products(events) == [(7, 3), ("sku-9", 1)]
        assert aggregation.summarize(events).to_dict()["top_products"] == {"7": 3, "sku-9": 1}

    def test_top_pages_groups_by_text(self):
        events = [
            make_event(EventType.PAGE_VIEW, {"page": 404}),
            make_event(EventType.PAGE_VIEW, {"page": "404"}),
        ]

        assert aggregation.summarize(events).to_dict()["top_pages"] == {"404": 2}

    def test_traffic_sources_default_to_direct(self):
        events = [
            make_event(EventType.PAGE_VIEW, {"page": "/"}, source="google"),
            make_event(EventType.PAGE_VIEW, {"page": "/"}),
            make_event(EventType.PAGE_VIEW, {"page": "/"}),
        ]

        sources = aggregation.traffic_sources(events)

        assert sources == {"direct": 2, "google": 1}
        assert list(sources) == ["direct", "google"]

    def test_device_breakdown_defaults_to_unknown(self):
        events = [
            make_event(EventType.PAGE_VIEW, {"page": "/"}, device="mobile"),
            make_event(EventType.PAGE_VIEW, {"page": "/"}),
            make_event(EventType.PAGE_VIEW, {"page": "/"}, device="mobile"),
        ]

        assert aggregation.device_breakdown(events) == {"mobile": 2, "unknown": 1}


@pytest.mark.unit
class TestHourlyAndActors:
    """Hourly buckets, unique actors and recent purchases"""

    def test_hourly_distribution_has_24_buckets(self):
        events = [
            make_event(EventType.PAGE_VIEW, {"page": "/"}, minutes_ago=0),    # 12:00
            make_event(EventType.PAGE_VIEW, {"page": "/"}, minutes_ago=30),   # 11:30
            make_event(EventType.PAGE_VIEW, {"page": "/"}, minutes_ago=45),   # 11:15
        ]

        hours = aggregation.hourly_distribution(events)

        assert len(hours) == 24
        assert hours[12] == 1
        assert hours[11] == 2
        assert sum(hours) == len(events)

    def test_missing_hour_lands_in_bucket_zero(self):
        events = [SimpleNamespace(id=1, event_hour=None)]
        assert aggregation.hourly_distribution(events)[0] == 1

    def test_unique_actors_fall_back_to_session(self):
        user = uuid4()
        events = [
            make_event(EventType.PAGE_VIEW, {"page": "/"}, user_id=user, session_id="s1"),
            make_event(EventType.PAGE_VIEW, {"page": "/"}, user_id=user, session_id="s2"),
            make_event(EventType.PAGE_VIEW, {"page": "/"}, session_id="s3"),
            make_event(EventType.PAGE_VIEW, {"page": "/"}, session_id="s3"),
            make_event(EventType.PAGE_VIEW, {"page": "/"}),
        ]

        assert aggregation.count_unique_actors(events) == 2

    def test_recent_purchases_newest_first(self):
        events = [
            make_event(EventType.PURCHASE, {"order_id": i}, minutes_ago=i, value=Decimal("1"), currency="EUR")
            for i in range(8)
        ]

        recent = aggregation.recent_purchases(events, limit=5)

        assert [e.properties["order_id"] for e in recent] == [0, 1, 2, 3, 4]


@pytest.mark.unit
class TestSummaryPayload:
    """JSON form of an aggregation result"""

    def test_to_dict_shapes(self):
        events = [
            make_event(EventType.PAGE_VIEW, {"page": "/"}),
            make_event(EventType.PRODUCT_VIEW, {"product_id": 42}),
            make_event(EventType.PURCHASE, {"order_id": 1}, value=Decimal("19.9"), currency="EUR"),
        ]

        payload = aggregation.summarize(events).to_dict()

        assert payload["total_events"] == 3
        assert payload["total_revenue"] == "19.90"
        assert payload["conversion_rate"] == 100.0
        assert payload["top_products"] == {"42": 1}
        assert payload["top_pages"] == {"/": 1}
        assert len(payload["hourly_distribution"]) == 24

    def test_summarize_does_not_mutate_input(self):
        events = [make_event(EventType.PURCHASE, {"order_id": i}, minutes_ago=10 - i,
                             value=Decimal("1"), currency="EUR") for i in range(3)]
        before = list(events)

        aggregation.summarize(events)
        aggregation.recent_purchases(events)

        assert events == before
