"""Dead letter queue models."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from .subscription import Platform


class ResolvedBy(str, Enum):
    """How a dead letter entry reached its terminal state."""

    AUTO = "auto"  # A retry succeeded
    EXPIRED = "expired"  # Retries exhausted
    MANUAL = "manual"  # Resolved by an operator


class DeadLetterEntry(BaseModel):
    """A failed processing attempt awaiting backed-off retry.

    original_event_id is a weak reference: the event row may have been purged.
    """

    id: str = Field(..., description="Generated entry ID")
    original_event_id: Optional[str] = Field(None, description="Originating notification event")
    platform: Platform
    notification_type: str
    original_transaction_id: Optional[str] = None

    failure_reason: str
    failure_detail: dict[str, Any] = Field(default_factory=dict)
    raw_payload: str = Field(default="", description="Verbatim payload snapshot")
    replay_payload: Optional[str] = Field(
        None, description="JSON snapshot of the normalized notification used for replay"
    )

    retry_count: int = Field(default=0, ge=0)
    max_retries: int = Field(default=5, ge=0)
    next_retry_at: Optional[datetime] = None
    last_retry_at: Optional[datetime] = None

    created_at: datetime
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[ResolvedBy] = None

    @property
    def is_resolved(self) -> bool:
        return self.resolved_at is not None

    @property
    def is_exhausted(self) -> bool:
        return self.retry_count >= self.max_retries

    class Config:
        json_schema_extra = {
            "example": {
                "id": "0b8f6c1e-2d3a-4b5c-8d9e-0f1a2b3c4d5e",
                "original_event_id": "9a8b7c6d-5e4f-4a3b-2c1d-0e9f8a7b6c5d",
                "platform": "google_play",
                "notification_type": "SUBSCRIPTION_REVOKED",
                "original_transaction_id": "GPA.1234-5678-9012-34567",
                "failure_reason": "Transition in_grace_period -> revoked is not allowed",
                "failure_detail": {"error_type": "InvalidTransitionError"},
                "retry_count": 0,
                "max_retries": 5,
                "next_retry_at": "2026-01-30T21:01:00Z",
                "created_at": "2026-01-30T21:00:00Z",
            }
        }


class DlqRunResult(BaseModel):
    """Summary of one retry scheduler pass."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    expired: int = 0
    pending: int = 0
    skipped: bool = Field(default=False, description="True when another pass was already running")
    timestamp: datetime


class CleanupResult(BaseModel):
    """Summary of one retention cleanup pass."""

    deleted_events: int = 0
    deleted_dlq: int = 0
    retention_days: int
    skipped: bool = False
    timestamp: datetime
