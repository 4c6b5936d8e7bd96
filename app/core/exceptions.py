"""
Custom application exceptions
"""

from typing import Optional, Dict, Any


class AnalyticsException(Exception):
    """Base exception for the analytics service"""

    def __init__(
        self,
        message: str,
        code: str,
        status_code: int = 400,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class AuthenticationError(AnalyticsException):
    """Authentication related errors"""

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict] = None):
        super().__init__(
            message=message,
            code="AUTH_ERROR",
            status_code=401,
            details=details
        )


class AuthorizationError(AnalyticsException):
    """Authorization related errors"""

    def __init__(self, message: str = "Not authorized", details: Optional[Dict] = None):
        super().__init__(
            message=message,
            code="AUTH_FORBIDDEN",
            status_code=403,
            details=details
        )


class NotFoundError(AnalyticsException):
    """Resource not found errors"""

    def __init__(self, resource: str, identifier: Any = None):
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} with id {identifier} not found"
        super().__init__(
            message=message,
            code="NOT_FOUND",
            status_code=404
        )


class ValidationError(AnalyticsException):
    """Malformed or missing ingestion fields"""

    def __init__(self, message: str, field: Optional[str] = None):
        details = {"field": field} if field else {}
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            status_code=400,
            details=details
        )


class StorageError(AnalyticsException):
    """Event store unavailable or write failed. Not retried here."""

    def __init__(self, message: str = "Failed to store analytics event", details: Optional[Dict] = None):
        super().__init__(
            message=message,
            code="STORAGE_ERROR",
            status_code=500,
            details=details
        )


class AggregationError(AnalyticsException):
    """Summary query failed; no partial result is returned"""

    def __init__(self, message: str = "Failed to compute analytics", details: Optional[Dict] = None):
        super().__init__(
            message=message,
            code="AGGREGATION_ERROR",
            status_code=500,
            details=details
        )
