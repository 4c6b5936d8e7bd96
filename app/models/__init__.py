"""
Database models
"""

from app.models.analytics import Actor, AnalyticsEvent, Device, EventType, REQUIRED_PROPERTIES
from app.models.base import AppendOnlyModel, ImmutableRecordError

__all__ = [
    "Actor",
    "AnalyticsEvent",
    "AppendOnlyModel",
    "Device",
    "EventType",
    "ImmutableRecordError",
    "REQUIRED_PROPERTIES",
]
