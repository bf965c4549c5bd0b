"""Monitoring API - read-only operational views.

Implements:
- GET /v1/monitoring/subscriptions - Subscription counts by status per platform
- GET /v1/monitoring/dlq - Dead letter queue summary per platform
- GET /v1/monitoring/events/errors - Recent processing errors
"""

from fastapi import APIRouter, Query

from subscription_pipeline.logging_config import get_logger
from subscription_pipeline.models.api_response import (
    PlatformDlqSummary,
    PlatformSubscriptionHealth,
    RecentError,
)
from subscription_pipeline.services.maintenance import get_maintenance_service

logger = get_logger(__name__)
router = APIRouter(tags=["Monitoring"], prefix="/v1/monitoring")


@router.get(
    "/subscriptions",
    response_model=list[PlatformSubscriptionHealth],
    summary="Subscription health",
)
def subscription_health() -> list[PlatformSubscriptionHealth]:
    """Subscription counts by status for each platform."""
    return get_maintenance_service().subscription_health()


@router.get("/dlq", response_model=list[PlatformDlqSummary], summary="Dead letter summary")
def dlq_summary() -> list[PlatformDlqSummary]:
    """Pending count, next retry and resolution counts for each platform."""
    return get_maintenance_service().dlq_summary()


@router.get("/events/errors", response_model=list[RecentError], summary="Recent errors")
def recent_errors(limit: int = Query(100, ge=1, le=1000)) -> list[RecentError]:
    return get_maintenance_service().recent_errors(limit)
