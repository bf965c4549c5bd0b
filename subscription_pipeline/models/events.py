"""Notification event models.

NotificationInput is the normalized notification handed over by the webhook
receiver; NotificationEvent is the deduplicated row kept for every delivery.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from .subscription import Platform, SubscriptionEnvironment, SubscriptionIdentity, SubscriptionStatus


class NotificationInput(BaseModel):
    """Already authenticated, already decoded notification fields."""

    notification_id: str = Field(..., min_length=1, description="Platform notification ID")
    platform: Platform = Field(..., description="Delivering platform")
    notification_type: str = Field(..., min_length=1, description="Platform notification type")
    subtype: Optional[str] = Field(None, description="Platform notification subtype")
    original_transaction_id: Optional[str] = Field(
        None, description="Subscription identity on the platform (absent for test notifications)"
    )
    raw_payload: str = Field(default="", description="Opaque payload, preserved verbatim")
    decoded_payload: dict[str, Any] = Field(default_factory=dict, description="Decoded payload")
    signed_date: Optional[datetime] = Field(None, description="Signed or received timestamp")

    # Subscription candidate fields
    user_id: Optional[str] = Field(None, description="Owning user, when known")
    product_id: str = Field(default="", description="Product / SKU identifier")
    bundle_id: Optional[str] = Field(None, description="Bundle ID or package name")
    status: SubscriptionStatus = Field(..., description="Candidate status")
    purchase_date: Optional[datetime] = None
    original_purchase_date: Optional[datetime] = None
    expires_date: Optional[datetime] = None
    auto_renew_status: bool = True
    auto_renew_product_id: Optional[str] = None
    environment: SubscriptionEnvironment = SubscriptionEnvironment.PRODUCTION
    app_account_token: Optional[str] = Field(None, description="Client-supplied correlation token")

    @field_validator("environment", mode="before")
    @classmethod
    def _normalize_environment(cls, value: Any) -> SubscriptionEnvironment:
        return SubscriptionEnvironment.normalize(value)

    @field_validator("original_transaction_id", mode="before")
    @classmethod
    def _blank_transaction_is_none(cls, value: Any) -> Optional[str]:
        if value is None or (isinstance(value, str) and not value.strip()):
            return None
        return value

    @property
    def identity(self) -> Optional[SubscriptionIdentity]:
        if self.original_transaction_id is None:
            return None
        return SubscriptionIdentity(self.platform, self.original_transaction_id)

    def subscription_fields(self) -> dict[str, Any]:
        """Fields written to the subscription registry besides the status."""
        return {
            "user_id": self.user_id,
            "product_id": self.product_id,
            "bundle_id": self.bundle_id,
            "purchase_date": self.purchase_date,
            "original_purchase_date": self.original_purchase_date,
            "expires_date": self.expires_date,
            "auto_renew_status": self.auto_renew_status,
            "auto_renew_product_id": self.auto_renew_product_id,
            "environment": self.environment,
            "app_account_token": self.app_account_token,
        }

    class Config:
        json_schema_extra = {
            "example": {
                "notification_id": "b5c4a1f0-3c2d-4e5f-8a9b-0c1d2e3f4a5b",
                "platform": "apple",
                "notification_type": "DID_RENEW",
                "subtype": None,
                "original_transaction_id": "2000000123456789",
                "raw_payload": "eyJhbGciOiJFUzI1NiJ9...",
                "decoded_payload": {"notificationType": "DID_RENEW"},
                "user_id": "user-123",
                "product_id": "premium.monthly",
                "status": "active",
                "auto_renew_status": True,
                "environment": "Production",
            }
        }


class NotificationEvent(BaseModel):
    """Durably recorded inbound notification.

    Only processed, processing_error and subscription_id change after creation.
    """

    id: str = Field(..., description="Generated event ID")
    platform: Platform
    notification_id: str = Field(..., description="Canonical notification UUID")
    raw_notification_id: str = Field(..., description="Notification ID as delivered")
    notification_type: str
    subtype: Optional[str] = None
    original_transaction_id: Optional[str] = None
    raw_payload: str = ""
    decoded_payload: dict[str, Any] = Field(default_factory=dict)
    signed_date: Optional[datetime] = None
    received_at: datetime

    processed: bool = False
    processing_error: Optional[str] = None
    subscription_id: Optional[str] = None


class RecordEventResult(BaseModel):
    """Outcome of recording a notification in the dedup store."""

    event_id: str
    already_processed: bool
    created: bool
