"""API response models for monitoring and maintenance endpoints."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from .dead_letter import ResolvedBy
from .subscription import Platform


class PlatformSubscriptionHealth(BaseModel):
    """Subscription counts for one platform."""

    platform: Platform
    by_status: dict[str, int] = Field(default_factory=dict, description="Count per status")
    premium_count: int = Field(..., description="Subscriptions with premium access")
    total_count: int
    last_updated: Optional[datetime] = None


class PlatformDlqSummary(BaseModel):
    """Dead letter queue summary for one platform."""

    platform: Platform
    pending: int
    auto_resolved: int
    expired: int
    manual: int
    total: int
    next_retry: Optional[datetime] = Field(None, description="Earliest pending retry time")
    last_failure: Optional[datetime] = None


class RecentError(BaseModel):
    """Notification event that failed processing."""

    event_id: str
    platform: Platform
    notification_type: str
    original_transaction_id: Optional[str] = None
    processing_error: str
    received_at: datetime


class AdvanceTimeResponse(BaseModel):
    """Response after advancing the virtual clock."""

    previous_time: datetime
    current_time: datetime
    advanced_seconds: float

    class Config:
        json_schema_extra = {
            "example": {
                "previous_time": "2026-01-30T21:00:00Z",
                "current_time": "2026-01-30T21:02:00Z",
                "advanced_seconds": 120.0,
            }
        }


class ResetTimeResponse(BaseModel):
    """Response after resetting the virtual clock to real time."""

    previous_time: datetime
    current_time: datetime


class ResolveDlqResponse(BaseModel):
    """Response after manually resolving a dead letter entry."""

    id: str
    resolved_at: datetime
    resolved_by: ResolvedBy


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Error message")

    class Config:
        json_schema_extra = {
            "example": {
                "error": "not_found",
                "message": "Dead letter entry not found: 0b8f6c1e",
            }
        }
