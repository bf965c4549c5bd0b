"""State change logging for subscriptions and dead letter entries.

Tracks transitions with before/after values for debugging and auditing.
"""

from datetime import datetime
from typing import Any, Optional

from subscription_pipeline.logging_config import get_logger

logger = get_logger(__name__)


def _short(value: Optional[str], length: int = 24) -> Optional[str]:
    if value is None:
        return None
    return value[:length] + "..." if len(value) > length else value


def log_subscription_state_change(
    identity: Any,
    subscription_id: str,
    old_status: Any,
    new_status: Any,
    reason: Optional[str] = None,
    **extra_context: Any,
) -> None:
    """Log a subscription status change.

    Args:
        identity: SubscriptionIdentity of the record
        subscription_id: Registry ID
        old_status: Previous status (None on first write)
        new_status: New status
        reason: Notification type or other cause of the change
        **extra_context: Additional context (user_id, event_id, etc.)
    """
    logger.info(
        "subscription_state_changed",
        subscription=_short(str(identity), 48),
        subscription_id=subscription_id,
        old_status=str(old_status.value if hasattr(old_status, "value") else old_status),
        new_status=str(new_status.value if hasattr(new_status, "value") else new_status),
        reason=reason,
        **extra_context,
    )


def log_transition_rejected(
    identity: Any,
    current_status: Any,
    candidate_status: Any,
    **extra_context: Any,
) -> None:
    """Log a status change refused by the state machine."""
    logger.warning(
        "transition_rejected",
        subscription=_short(str(identity), 48),
        current_status=str(getattr(current_status, "value", current_status)),
        candidate_status=str(getattr(candidate_status, "value", candidate_status)),
        **extra_context,
    )


def log_dlq_entry_added(
    entry_id: str,
    platform: Any,
    notification_type: str,
    failure_reason: str,
    next_retry_at: datetime,
    **extra_context: Any,
) -> None:
    """Log a new dead letter entry."""
    logger.warning(
        "dlq_entry_added",
        dlq_entry_id=entry_id,
        platform=str(getattr(platform, "value", platform)),
        notification_type=notification_type,
        failure_reason=_short(failure_reason, 200),
        next_retry_at=next_retry_at.isoformat(),
        **extra_context,
    )


def log_dlq_retry_scheduled(
    entry_id: str,
    old_retry_count: int,
    new_retry_count: int,
    next_retry_at: datetime,
    **extra_context: Any,
) -> None:
    """Log a claimed retry and its backed-off next attempt."""
    logger.info(
        "dlq_retry_claimed",
        dlq_entry_id=entry_id,
        old_retry_count=old_retry_count,
        new_retry_count=new_retry_count,
        next_retry_at=next_retry_at.isoformat(),
        **extra_context,
    )


def log_dlq_entry_resolved(
    entry_id: str,
    resolved_by: Any,
    retry_count: int,
    **extra_context: Any,
) -> None:
    """Log a dead letter entry reaching its terminal state.

    Expired entries are logged at error level; they need an operator.
    """
    resolved = str(getattr(resolved_by, "value", resolved_by))
    log = logger.error if resolved == "expired" else logger.info
    log(
        "dlq_entry_expired" if resolved == "expired" else "dlq_entry_resolved",
        dlq_entry_id=entry_id,
        resolved_by=resolved,
        retry_count=retry_count,
        **extra_context,
    )
