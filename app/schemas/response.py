"""
Generic response schemas
"""

from pydantic import BaseModel, Field
from typing import Dict, Optional
from datetime import datetime, timezone


class ErrorResponse(BaseModel):
    """Error body returned for every handled failure"""
    error: str


class MessageResponse(BaseModel):
    """Simple message response"""
    message: str


class HealthResponse(BaseModel):
    """Health check response"""
    status: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    checks: Optional[Dict[str, bool]] = None
    version: Optional[str] = None
