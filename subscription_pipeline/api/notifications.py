"""Notification ingestion API.

Implements:
- POST /v1/notifications - Apply one normalized, authenticated notification
"""

from fastapi import APIRouter, HTTPException, Response

from subscription_pipeline.config import get_config
from subscription_pipeline.logging_config import bind_context, get_logger
from subscription_pipeline.models.events import NotificationInput
from subscription_pipeline.models.results import AlreadyProcessed, Failed, ProcessResult, Success
from subscription_pipeline.services.event_processor import get_event_processor

logger = get_logger(__name__)
router = APIRouter(tags=["Notifications"], prefix="/v1")


@router.post(
    "/notifications",
    response_model=ProcessResult,
    status_code=200,
    summary="Process notification",
    responses={202: {"description": "Processing failed, queued for retry"}},
)
def process_notification(notification: NotificationInput, response: Response) -> ProcessResult:
    """Process an inbound subscription lifecycle notification.

    Duplicate deliveries of an already applied notification return
    already_processed. A failure returns 202: the dead letter queue owns
    recovery, so the platform does not need to redeliver.

    Raises:
        400: Platform not accepted by configuration
    """
    bind_context(
        platform=notification.platform.value,
        notification_type=notification.notification_type,
    )

    if not get_config().is_platform_enabled(notification.platform):
        logger.warning("platform_disabled", platform=notification.platform.value)
        raise HTTPException(
            status_code=400,
            detail={
                "error": "platform_disabled",
                "message": f"Notifications from '{notification.platform.value}' are not accepted",
            },
        )

    result = get_event_processor().process_event(notification)

    if isinstance(result, Failed):
        response.status_code = 202
    elif isinstance(result, AlreadyProcessed):
        logger.info("notification_already_processed", event_id=result.event_id)
    elif isinstance(result, Success):
        logger.debug("notification_success", event_id=result.event_id)

    return result
