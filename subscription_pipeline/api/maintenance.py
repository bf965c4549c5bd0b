"""Maintenance API for operators and test orchestration.

Implements:
- POST /v1/maintenance/dlq/process - Run one retry pass
- POST /v1/maintenance/dlq/{entry_id}/resolve - Resolve an entry manually
- POST /v1/maintenance/cleanup - Purge rows past retention
- POST /v1/maintenance/time/advance - Fast-forward the virtual clock
- POST /v1/maintenance/time/reset - Reset the virtual clock to real time
"""

from typing import Optional

from fastapi import APIRouter, HTTPException

from subscription_pipeline.logging_config import get_logger
from subscription_pipeline.models.api_request import AdvanceTimeRequest, CleanupRequest
from subscription_pipeline.models.api_response import (
    AdvanceTimeResponse,
    ResetTimeResponse,
    ResolveDlqResponse,
)
from subscription_pipeline.models.dead_letter import CleanupResult, DlqRunResult
from subscription_pipeline.repositories.dead_letter_store import (
    DeadLetterNotFoundError,
    DeadLetterStateError,
)
from subscription_pipeline.services.maintenance import get_maintenance_service
from subscription_pipeline.services.retry_scheduler import get_retry_scheduler
from subscription_pipeline.services.time_controller import get_time_controller

logger = get_logger(__name__)
router = APIRouter(tags=["Maintenance"], prefix="/v1/maintenance")


@router.post("/dlq/process", response_model=DlqRunResult, summary="Process dead letter queue")
def process_dlq() -> DlqRunResult:
    """Run one retry pass over due dead letter entries.

    Returns skipped=true when a pass is already running.
    """
    return get_retry_scheduler().process_dlq()


@router.post(
    "/dlq/{entry_id}/resolve",
    response_model=ResolveDlqResponse,
    summary="Resolve dead letter entry",
)
def resolve_dlq_entry(entry_id: str) -> ResolveDlqResponse:
    """Mark a dead letter entry as resolved by an operator.

    Raises:
        404: Entry not found
        409: Entry already resolved
    """
    try:
        entry = get_retry_scheduler().resolve_manually(entry_id)
    except DeadLetterNotFoundError as e:
        logger.warning("dlq_entry_not_found", dlq_entry_id=entry_id)
        raise HTTPException(status_code=404, detail={"error": "not_found", "message": str(e)})
    except DeadLetterStateError as e:
        raise HTTPException(status_code=409, detail={"error": "already_resolved", "message": str(e)})

    return ResolveDlqResponse(id=entry.id, resolved_at=entry.resolved_at, resolved_by=entry.resolved_by)


@router.post("/cleanup", response_model=CleanupResult, summary="Retention cleanup")
def cleanup(request: Optional[CleanupRequest] = None) -> CleanupResult:
    """Delete processed events and resolved dead letter entries past retention."""
    retention_days = request.retention_days if request else None
    return get_maintenance_service().cleanup_old_events(retention_days)


@router.post("/time/advance", response_model=AdvanceTimeResponse, summary="Advance virtual time")
def advance_time(request: AdvanceTimeRequest) -> AdvanceTimeResponse:
    """Fast-forward the clock so backed-off retries become due.

    Raises:
        400: No duration given
    """
    if request.days == 0 and request.hours == 0 and request.minutes == 0:
        raise HTTPException(
            status_code=400,
            detail={"error": "invalid_request", "message": "Specify days, hours or minutes to advance"},
        )

    result = get_time_controller().advance_time(
        days=request.days, hours=request.hours, minutes=request.minutes
    )
    return AdvanceTimeResponse(**result)


@router.post("/time/reset", response_model=ResetTimeResponse, summary="Reset virtual time")
def reset_time() -> ResetTimeResponse:
    return ResetTimeResponse(**get_time_controller().reset_time())
