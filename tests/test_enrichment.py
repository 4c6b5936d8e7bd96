"""
Unit tests for request-context enrichment
"""

import pytest

from app.services.enrichment import (
    EventEnricher,
    GeoLocation,
    RequestContext,
    StaticGeoLocator,
    classify_browser,
    classify_device,
    classify_os,
)
DESKTOP_CHROME_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)
IPHONE_SAFARI_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_4 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.4 Mobile/15E148 Safari/604.1"
)
FIREFOX_LINUX_UA = "Mozilla/5.0 (X11; Linux x86_64; rv:125.0) Gecko/20100101 Firefox/125.0"
MAC_SAFARI_UA = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_4) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.4 Safari/605.1.15"
)
EDGE_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36 Edg/124.0.0.0"
)


class BrokenGeoLocator:
    def lookup(self, ip_address):
        raise RuntimeError("geo provider down")


@pytest.mark.unit
class TestUserAgentClassification:
    """Ordered first-match rules over the User-Agent"""

    def test_desktop_chrome_on_windows(self):
        assert classify_device(DESKTOP_CHROME_UA) == "desktop"
        assert classify_browser(DESKTOP_CHROME_UA) == "Chrome"
        assert classify_os(DESKTOP_CHROME_UA) == "Windows"

    def test_iphone_is_mobile_safari(self):
        assert classify_device(IPHONE_SAFARI_UA) == "mobile"
        assert classify_browser(IPHONE_SAFARI_UA) == "Safari"
        # "like Mac OS X" matches before the iOS rule
        assert classify_os(IPHONE_SAFARI_UA) == "macOS"

    def test_firefox_on_linux(self):
        assert classify_browser(FIREFOX_LINUX_UA) == "Firefox"
        assert classify_os(FIREFOX_LINUX_UA) == "Linux"

    def test_safari_on_mac(self):
        assert classify_browser(MAC_SAFARI_UA) == "Safari"
        assert classify_os(MAC_SAFARI_UA) == "macOS"
        assert classify_device(MAC_SAFARI_UA) == "desktop"

    def test_chromium_edge_reports_chrome(self):
        assert classify_browser(EDGE_UA) == "Chrome"

    def test_tablet_keyword(self):
        assert classify_device("SomeVendor Tablet Browser") == "tablet"

    def test_ipad_matches_mobile_rule_first(self):
        assert classify_device("Mozilla/5.0 (iPad; CPU OS 17_0 like Mac OS X)") == "mobile"

    def test_missing_user_agent(self):
        assert classify_device(None) == "desktop"
        assert classify_browser(None) is None
        assert classify_os("") is None


@pytest.mark.unit
class TestRequestContext:
    """RequestContext normalisation"""

    def test_headers_are_case_insensitive(self):
        ctx = RequestContext(headers={"User-Agent": "x", "Referer": "https://a.example"})
        assert ctx.header("user-agent") == "x"
        assert ctx.header("REFERER") == "https://a.example"

    def test_empty_header_reads_as_none(self):
        ctx = RequestContext(headers={"Referer": ""})
        assert ctx.header("referer") is None


@pytest.mark.unit
class TestEventEnricher:
    """Enrichment of event context columns"""

    def test_full_context(self):
        enricher = EventEnricher(StaticGeoLocator("FR", "Paris"))
        ctx = RequestContext(
            query={"utm_source": "newsletter", "utm_medium": "email", "utm_campaign": "spring"},
            headers={"User-Agent": DESKTOP_CHROME_UA, "Referer": "https://shop.example/"},
            client_ip="203.0.113.7",
            session_id="sess-1",
        )

        enriched = enricher.enrich(ctx)

        assert enriched.source == "newsletter"
        assert enriched.medium == "email"
        assert enriched.campaign == "spring"
        assert enriched.ip_address == "203.0.113.7"
        assert enriched.user_agent == DESKTOP_CHROME_UA
        assert enriched.referrer == "https://shop.example/"
        assert enriched.session_id == "sess-1"
        assert enriched.device == "desktop"
        assert enriched.browser == "Chrome"
        assert enriched.os == "Windows"
        assert enriched.country == "FR"
        assert enriched.city == "Paris"

    def test_missing_fields_become_none(self):
        enriched = EventEnricher(StaticGeoLocator()).enrich(RequestContext())

        assert enriched.source is None
        assert enriched.medium is None
        assert enriched.campaign is None
        assert enriched.referrer is None
        assert enriched.session_id is None
        assert enriched.browser is None
        assert enriched.os is None
        assert enriched.device == "desktop"

    def test_no_context_at_all(self):
        enriched = EventEnricher().enrich(None)
        assert all(value is None for value in enriched.as_columns().values())

    def test_geo_failure_does_not_raise(self):
        enricher = EventEnricher(BrokenGeoLocator())
        enriched = enricher.enrich(RequestContext(client_ip="198.51.100.1"))

        assert enriched.country is None
        assert enriched.city is None
        assert enriched.ip_address == "198.51.100.1"

    def test_long_values_are_truncated_to_column_size(self):
        enricher = EventEnricher(StaticGeoLocator())
        ctx = RequestContext(
            query={"utm_source": "s" * 400},
            headers={"User-Agent": "u" * 800},
        )

        enriched = enricher.enrich(ctx)

        assert len(enriched.source) == 255
        assert len(enriched.user_agent) == 500

    def test_custom_geo_locator(self):
        class OneCity:
            def lookup(self, ip_address):
                return GeoLocation(country="DE", city="Berlin")

        enriched = EventEnricher(OneCity()).enrich(RequestContext(client_ip="192.0.2.1"))
        assert (enriched.country, enriched.city) == ("DE", "Berlin")
