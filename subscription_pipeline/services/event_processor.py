"""Atomic transition processor.

Responsibilities:
- Record each inbound notification exactly once (dedup store)
- Resolve the owning user of a subscription
- Validate and write the candidate status (subscription registry)
- Roll back its own writes and hand failures to the dead letter queue

The unit either completes fully (event processed, registry written) or
leaves the registry as it was and the event unprocessed.
"""

import threading
from typing import Optional, Union

from subscription_pipeline.logging_config import get_logger, pipeline_context
from subscription_pipeline.models.events import NotificationInput
from subscription_pipeline.models.results import AlreadyProcessed, Failed, Success
from subscription_pipeline.repositories.dead_letter_store import DeadLetterStore, get_dead_letter_store
from subscription_pipeline.repositories.event_store import EventStore, get_event_store
from subscription_pipeline.repositories.subscription_store import (
    InvalidTransitionError,
    SubscriptionStore,
    get_subscription_store,
)
from subscription_pipeline.utils.identifiers import canonical_notification_id
from subscription_pipeline.utils.keyed_lock import KeyedLock

logger = get_logger(__name__)

ProcessOutcome = Union[Success, AlreadyProcessed, Failed]


class EventProcessor:
    """Applies notifications to the subscription registry.

    Locks are always taken in the same order: notification
    (platform, canonical notification id) first, then subscription identity.
    """

    def __init__(
        self,
        event_store: Optional[EventStore] = None,
        subscription_store: Optional[SubscriptionStore] = None,
        dead_letter_store: Optional[DeadLetterStore] = None,
    ):
        """Initialize event processor.

        Args:
            event_store: Dedup store (defaults to global instance)
            subscription_store: Subscription registry (defaults to global instance)
            dead_letter_store: Dead letter queue (defaults to global instance)
        """
        self.events = event_store if event_store is not None else get_event_store()
        self.subscriptions = subscription_store if subscription_store is not None else get_subscription_store()
        self.dead_letters = dead_letter_store if dead_letter_store is not None else get_dead_letter_store()
        self._notification_locks = KeyedLock()

        logger.info("event_processor_initialized")

    def process_event(self, notification: NotificationInput) -> ProcessOutcome:
        """Process an inbound notification.

        Args:
            notification: Authenticated, normalized notification

        Returns:
            Success, AlreadyProcessed, or Failed with the queued dead letter entry id
        """
        return self._process(notification, queue_on_failure=True)

    def replay(self, notification: NotificationInput) -> ProcessOutcome:
        """Re-run the unit for a dead letter entry.

        Same as process_event() except that a failure is not queued again;
        the caller owns the existing entry.
        """
        return self._process(notification, queue_on_failure=False)

    def _process(self, notification: NotificationInput, queue_on_failure: bool) -> ProcessOutcome:
        with pipeline_context(
            platform=notification.platform.value,
            notification_id=notification.notification_id,
        ):
            return self._run_unit(notification, queue_on_failure)

    def _run_unit(self, notification: NotificationInput, queue_on_failure: bool) -> ProcessOutcome:
        canonical_id = canonical_notification_id(notification.notification_id)

        with self._notification_locks.hold((notification.platform, canonical_id)):
            event_id = None
            try:
                recorded = self.events.record_event(
                    notification_id=notification.notification_id,
                    platform=notification.platform,
                    notification_type=notification.notification_type,
                    subtype=notification.subtype,
                    original_transaction_id=notification.original_transaction_id,
                    raw_payload=notification.raw_payload,
                    decoded_payload=notification.decoded_payload,
                    signed_date=notification.signed_date,
                )
                event_id = recorded.event_id

                if recorded.already_processed:
                    stored = self.events.find(event_id)
                    return AlreadyProcessed(
                        event_id=event_id,
                        subscription_id=stored.subscription_id if stored else None,
                    )

                subscription_id = self._apply(notification, event_id)
            except Exception as e:
                return self._fail(notification, event_id, e, queue_on_failure)

        logger.info(
            "notification_applied",
            event_id=event_id,
            platform=notification.platform.value,
            notification_type=notification.notification_type,
            subscription_id=subscription_id,
            status=notification.status.value,
        )
        return Success(event_id=event_id, subscription_id=subscription_id)

    def _apply(self, notification: NotificationInput, event_id: str) -> Optional[str]:
        """Write the subscription (when the notification carries one) and mark the event processed."""
        identity = notification.identity
        if identity is None:
            # Test notifications and the like carry no subscription
            self.events.mark_processed(event_id, None)
            return None

        with self.subscriptions.lock_identity(identity):
            snapshot = self.subscriptions.snapshot(identity)
            written = False
            try:
                fields = notification.subscription_fields()
                if not fields["user_id"]:
                    fields["user_id"] = self.subscriptions.find_owner(
                        notification.app_account_token,
                        notification.original_transaction_id,
                        notification.platform,
                    )

                subscription_id = self.subscriptions.upsert(
                    identity,
                    notification.status,
                    reason=notification.notification_type,
                    **fields,
                )
                written = True
                self.events.mark_processed(event_id, subscription_id)
            except Exception:
                if written:
                    self.subscriptions.restore(identity, snapshot)
                raise

        return subscription_id

    def _fail(
        self,
        notification: NotificationInput,
        event_id: Optional[str],
        error: Exception,
        queue_on_failure: bool,
    ) -> Failed:
        reason = str(error) or type(error).__name__
        error_type = type(error).__name__
        detail = {
            "error_type": error_type,
            "notification_id": notification.notification_id,
            "subtype": notification.subtype,
            "candidate_status": notification.status.value,
        }
        if isinstance(error, InvalidTransitionError):
            detail["current_status"] = error.current_status.value
            logger.warning(
                "notification_rejected",
                event_id=event_id,
                platform=notification.platform.value,
                notification_type=notification.notification_type,
                reason=reason,
            )
        else:
            logger.error(
                "notification_processing_failed",
                event_id=event_id,
                platform=notification.platform.value,
                notification_type=notification.notification_type,
                error=reason,
                error_type=error_type,
                exc_info=error,
            )

        if event_id is not None:
            self.events.mark_failed(event_id, reason)

        dlq_entry_id = None
        if queue_on_failure:
            entry = self.dead_letters.add(
                event_id=event_id,
                platform=notification.platform,
                notification_type=notification.notification_type,
                original_transaction_id=notification.original_transaction_id,
                failure_reason=reason,
                failure_detail=detail,
                raw_payload=notification.raw_payload,
                replay_payload=notification.model_dump_json(),
            )
            dlq_entry_id = entry.id

        return Failed(event_id=event_id, reason=reason, error_type=error_type, dlq_entry_id=dlq_entry_id)


_processor_instance: Optional[EventProcessor] = None
_processor_lock = threading.Lock()


def get_event_processor() -> EventProcessor:
    """Get global event processor instance (singleton).

    Returns:
        EventProcessor instance
    """
    global _processor_instance
    if _processor_instance is None:
        with _processor_lock:
            if _processor_instance is None:
                _processor_instance = EventProcessor()
    return _processor_instance


def reset_event_processor() -> None:
    """Drop the global processor so the next call rebuilds it (for testing)."""
    global _processor_instance
    _processor_instance = None
