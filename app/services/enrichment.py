"""
Request-context enrichment for analytics events.

Derives UTM attribution, client details, device/browser/OS and geo fields
from an inbound request. Enrichment never fails ingestion: anything missing
or unparseable becomes None.
"""

from dataclasses import dataclass, field, asdict
from typing import Dict, Optional, Protocol
import logging
import re

from app.config import settings
from app.models.analytics import Device

logger = logging.getLogger(__name__)

SESSION_HEADER = "x-session-id"
SESSION_COOKIE = "session_id"

# Ordered rules: the first match wins. Chromium-based Edge carries "Chrome"
# in its UA and is therefore reported as Chrome.
_DEVICE_RULES = (
    (re.compile(r"Mobile|Android|iPhone|iPad"), Device.MOBILE),
    (re.compile(r"Tablet"), Device.TABLET),
)
_BROWSER_RULES = (
    ("Chrome", "Chrome"),
    ("Firefox", "Firefox"),
    ("Safari", "Safari"),
    ("Edge", "Edge"),
)
_OS_RULES = (
    ("Windows", "Windows"),
    ("Mac OS", "macOS"),
    ("Linux", "Linux"),
    ("Android", "Android"),
    ("iOS", "iOS"),
)


@dataclass
class RequestContext:
    """The parts of an HTTP request that enrichment reads"""
    query: Dict[str, str] = field(default_factory=dict)
    headers: Dict[str, str] = field(default_factory=dict)
    client_ip: Optional[str] = None
    session_id: Optional[str] = None

    def __post_init__(self):
        self.headers = {k.lower(): v for k, v in (self.headers or {}).items()}
        self.query = dict(self.query or {})

    def header(self, name: str) -> Optional[str]:
        return self.headers.get(name.lower()) or None

    @classmethod
    def from_request(cls, request) -> "RequestContext":
        """Build from a Starlette/FastAPI request"""
        headers = dict(request.headers)
        session_id = headers.get(SESSION_HEADER) or request.cookies.get(SESSION_COOKIE)
        return cls(
            query=dict(request.query_params),
            headers=headers,
            client_ip=request.client.host if request.client else None,
            session_id=session_id or None,
        )


@dataclass
class EnrichedContext:
    source: Optional[str] = None
    medium: Optional[str] = None
    campaign: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    referrer: Optional[str] = None
    session_id: Optional[str] = None
    device: Optional[str] = None
    browser: Optional[str] = None
    os: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None

    def as_columns(self) -> Dict[str, Optional[str]]:
        return asdict(self)


@dataclass(frozen=True)
class GeoLocation:
    country: Optional[str] = None
    city: Optional[str] = None


class GeoLocator(Protocol):
    """Resolves a client IP to a coarse location"""

    def lookup(self, ip_address: Optional[str]) -> GeoLocation:
        ...


class StaticGeoLocator:
    """
    Placeholder used when no geolocation provider is configured:
    every address maps to the same location.
    """

    def __init__(self, country: Optional[str] = None, city: Optional[str] = None):
        self.location = GeoLocation(country=country, city=city)

    @classmethod
    def from_settings(cls) -> "StaticGeoLocator":
        return cls(settings.GEO_DEFAULT_COUNTRY, settings.GEO_DEFAULT_CITY)

    def lookup(self, ip_address: Optional[str]) -> GeoLocation:
        return self.location


def classify_device(user_agent: Optional[str]) -> str:
    ua = user_agent or ""
    for pattern, device in _DEVICE_RULES:
        if pattern.search(ua):
            return device.value
    return Device.DESKTOP.value


def classify_browser(user_agent: Optional[str]) -> Optional[str]:
    ua = user_agent or ""
    for needle, name in _BROWSER_RULES:
        if needle in ua:
            return name
    return None


def classify_os(user_agent: Optional[str]) -> Optional[str]:
    ua = user_agent or ""
    for needle, name in _OS_RULES:
        if needle in ua:
            return name
    return None


def _truncate(value: Optional[str], length: int) -> Optional[str]:
    if value is None:
        return None
    return value[:length]


class EventEnricher:
    """Turns a RequestContext into the context columns of an event"""

    def __init__(self, geo_locator: Optional[GeoLocator] = None):
        self.geo_locator = geo_locator or StaticGeoLocator.from_settings()

    def enrich(self, context: Optional[RequestContext]) -> EnrichedContext:
        if context is None:
            return EnrichedContext()

        user_agent = context.header("user-agent")
        enriched = EnrichedContext(
            source=_truncate(context.query.get("utm_source") or None, 255),
            medium=_truncate(context.query.get("utm_medium") or None, 255),
            campaign=_truncate(context.query.get("utm_campaign") or None, 255),
            ip_address=_truncate(context.client_ip, 45),
            user_agent=_truncate(user_agent, 500),
            referrer=_truncate(context.header("referer"), 255),
            session_id=_truncate(context.session_id, 255),
            device=classify_device(user_agent),
            browser=classify_browser(user_agent),
            os=classify_os(user_agent),
        )

        location = self._locate(context.client_ip)
        enriched.country = _truncate(location.country, 10)
        enriched.city = _truncate(location.city, 100)
        return enriched

    def _locate(self, ip_address: Optional[str]) -> GeoLocation:
        try:
            return self.geo_locator.lookup(ip_address) or GeoLocation()
        except Exception as e:
            logger.warning(f"Geo lookup failed for {ip_address}: {e}")
            return GeoLocation()
