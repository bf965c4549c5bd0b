"""Subscription state and registry models.

Includes platforms, subscription statuses, environments and the stored
subscription record.
"""

from datetime import datetime
from enum import Enum
from typing import NamedTuple, Optional

from pydantic import BaseModel, Field


class Platform(str, Enum):
    """Payment platforms that deliver lifecycle notifications."""

    APPLE = "apple"
    GOOGLE_PLAY = "google_play"
    STRIPE = "stripe"


class SubscriptionStatus(str, Enum):
    """Subscription status values stored in the registry."""

    ACTIVE = "active"  # Active and in good standing
    EXPIRED = "expired"  # Period ended without renewal
    IN_GRACE_PERIOD = "in_grace_period"  # Payment failed, access retained
    IN_BILLING_RETRY = "in_billing_retry"  # Payment failed, platform retrying
    ON_HOLD = "on_hold"  # Account hold (Google Play)
    PAUSED = "paused"  # Paused by user (Google Play)
    PENDING = "pending"  # Awaiting first payment
    REVOKED = "revoked"  # Access revoked (family sharing, etc.)
    REFUNDED = "refunded"  # Refunded
    UNKNOWN = "unknown"  # Initial state before the first notification

    @classmethod
    def coerce(cls, value: "str | SubscriptionStatus") -> Optional["SubscriptionStatus"]:
        """Return the matching status, or None for an unrecognized value."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


TERMINAL_STATUSES = frozenset({SubscriptionStatus.REVOKED, SubscriptionStatus.REFUNDED})
PREMIUM_STATUSES = frozenset({SubscriptionStatus.ACTIVE, SubscriptionStatus.IN_GRACE_PERIOD})


class SubscriptionEnvironment(str, Enum):
    """Environment the platform reported the subscription from."""

    PRODUCTION = "production"
    SANDBOX = "sandbox"

    @classmethod
    def normalize(cls, value: Optional[str]) -> "SubscriptionEnvironment":
        """Map a platform environment string to a known environment.

        Anything that is not clearly production is treated as sandbox.
        """
        if isinstance(value, cls):
            return value
        if value and value.strip().lower() in ("production", "prod"):
            return cls.PRODUCTION
        return cls.SANDBOX


class SubscriptionIdentity(NamedTuple):
    """The (platform, original_transaction_id) pair naming one subscription."""

    platform: Platform
    original_transaction_id: str

    def __str__(self) -> str:
        return f"{self.platform.value}:{self.original_transaction_id}"


class SubscriptionRecord(BaseModel):
    """Current state of one subscription lifecycle."""

    id: str = Field(..., description="Generated subscription ID")
    platform: Platform = Field(..., description="Platform the subscription lives on")
    original_transaction_id: str = Field(..., description="Platform transaction identity")
    user_id: Optional[str] = Field(None, description="Owning user")
    product_id: str = Field(default="", description="Product / SKU identifier")
    bundle_id: Optional[str] = Field(None, description="Bundle ID or package name")

    status: SubscriptionStatus = Field(default=SubscriptionStatus.UNKNOWN, description="Current status")

    # Timestamps
    purchase_date: Optional[datetime] = Field(None, description="Latest purchase date")
    original_purchase_date: Optional[datetime] = Field(None, description="First purchase date")
    expires_date: Optional[datetime] = Field(None, description="Current period expiry")

    # Renewal
    auto_renew_status: bool = Field(default=True, description="Whether auto-renew is on")
    auto_renew_product_id: Optional[str] = Field(None, description="Product used for next renewal")

    environment: SubscriptionEnvironment = Field(
        default=SubscriptionEnvironment.PRODUCTION, description="Reporting environment"
    )
    app_account_token: Optional[str] = Field(None, description="Client-supplied correlation token")

    created_at: datetime = Field(..., description="When the record was first written")
    updated_at: datetime = Field(..., description="When the record was last written")

    @property
    def identity(self) -> SubscriptionIdentity:
        return SubscriptionIdentity(self.platform, self.original_transaction_id)

    @property
    def has_premium_access(self) -> bool:
        return self.status in PREMIUM_STATUSES

    class Config:
        json_schema_extra = {
            "example": {
                "id": "5f0c1d2e-8a7b-4c3d-9e8f-0a1b2c3d4e5f",
                "platform": "apple",
                "original_transaction_id": "2000000123456789",
                "user_id": "user-123",
                "product_id": "premium.monthly",
                "bundle_id": "com.example.app",
                "status": "active",
                "auto_renew_status": True,
                "environment": "production",
                "created_at": "2026-01-30T21:00:00Z",
                "updated_at": "2026-01-30T21:00:00Z",
            }
        }
