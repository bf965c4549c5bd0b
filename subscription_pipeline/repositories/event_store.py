"""Event dedup store - durable, uniquely keyed log of inbound notifications.

Every delivery is recorded once per (platform, canonical notification id).
The store is the single coordination point that makes redelivery safe.
"""

import copy
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from subscription_pipeline.logging_config import get_logger
from subscription_pipeline.models.events import NotificationEvent, RecordEventResult
from subscription_pipeline.models.subscription import Platform
from subscription_pipeline.services.time_controller import TimeController, get_time_controller
from subscription_pipeline.utils.identifiers import canonical_notification_id, generate_id

logger = get_logger(__name__)

DedupKey = Tuple[Platform, str]


class EventStoreError(Exception):
    """Base exception for event store errors."""

    pass


class EventNotFoundError(EventStoreError):
    """Raised when an event is not found in the store."""

    pass


class EventStore:
    """In-memory storage for notification events.

    Thread-safe. The (platform, notification_id) index plays the role of a
    unique constraint: lookups and inserts happen under one lock, so two
    concurrent deliveries can never create two rows.
    """

    def __init__(self, clock: Optional[TimeController] = None):
        """Initialize event store with empty storage.

        Args:
            clock: Time source for received_at (defaults to global instance)
        """
        self._events: Dict[str, NotificationEvent] = {}
        self._by_notification: Dict[DedupKey, str] = {}
        self._lock = threading.RLock()
        self._clock = clock or get_time_controller()

    def record_event(
        self,
        notification_id: str,
        platform: Platform,
        notification_type: str,
        subtype: Optional[str],
        original_transaction_id: Optional[str],
        raw_payload: str,
        decoded_payload: Optional[Dict[str, Any]],
        signed_date: Optional[datetime],
    ) -> RecordEventResult:
        """Record a notification idempotently.

        If a row for (platform, notification_id) exists, its id and current
        processed flag are returned and nothing is modified.

        Args:
            notification_id: Notification ID as delivered (canonicalized here)
            platform: Delivering platform
            notification_type: Platform notification type
            subtype: Platform notification subtype
            original_transaction_id: Subscription identity reference
            raw_payload: Opaque payload, stored verbatim
            decoded_payload: Decoded payload
            signed_date: Signed/received timestamp from the platform

        Returns:
            RecordEventResult with event_id, already_processed and created
        """
        canonical_id = canonical_notification_id(notification_id)
        key = (platform, canonical_id)

        with self._lock:
            existing_id = self._by_notification.get(key)
            if existing_id is not None:
                existing = self._events[existing_id]
                logger.info(
                    "notification_duplicate",
                    event_id=existing_id,
                    platform=platform.value,
                    notification_id=canonical_id,
                    already_processed=existing.processed,
                )
                return RecordEventResult(
                    event_id=existing_id,
                    already_processed=existing.processed,
                    created=False,
                )

            event = NotificationEvent(
                id=generate_id(),
                platform=platform,
                notification_id=canonical_id,
                raw_notification_id=notification_id,
                notification_type=notification_type,
                subtype=subtype,
                original_transaction_id=original_transaction_id,
                raw_payload=raw_payload,
                decoded_payload=copy.deepcopy(decoded_payload or {}),
                signed_date=signed_date,
                received_at=self._clock.now(),
            )
            self._events[event.id] = event
            self._by_notification[key] = event.id

        logger.info(
            "notification_recorded",
            event_id=event.id,
            platform=platform.value,
            notification_id=canonical_id,
            notification_type=notification_type,
        )
        return RecordEventResult(event_id=event.id, already_processed=False, created=True)

    def mark_processed(self, event_id: str, subscription_id: Optional[str] = None) -> None:
        """Mark an event as processed and attach the resulting subscription.

        Raises:
            EventNotFoundError: If event_id not found
        """
        with self._lock:
            event = self._get_stored(event_id)
            event.processed = True
            event.processing_error = None
            event.subscription_id = subscription_id

        logger.debug("notification_processed", event_id=event_id, subscription_id=subscription_id)

    def mark_failed(self, event_id: str, error: str) -> None:
        """Record a processing error. The event stays unprocessed.

        Raises:
            EventNotFoundError: If event_id not found
        """
        with self._lock:
            event = self._get_stored(event_id)
            event.processed = False
            event.processing_error = error

    def _get_stored(self, event_id: str) -> NotificationEvent:
        event = self._events.get(event_id)
        if event is None:
            raise EventNotFoundError(f"Notification event not found: {event_id}")
        return event

    def get(self, event_id: str) -> NotificationEvent:
        """Get event by id.

        Raises:
            EventNotFoundError: If event_id not found
        """
        with self._lock:
            return self._get_stored(event_id).model_copy(deep=True)

    def find(self, event_id: str) -> Optional[NotificationEvent]:
        """Find event by id (returns None if not found)."""
        with self._lock:
            event = self._events.get(event_id)
            return event.model_copy(deep=True) if event else None

    def find_by_notification(self, platform: Platform, notification_id: str) -> Optional[NotificationEvent]:
        """Find event by platform and notification id (raw or canonical)."""
        key = (platform, canonical_notification_id(notification_id))
        with self._lock:
            event_id = self._by_notification.get(key)
            if event_id is None:
                return None
            return self._events[event_id].model_copy(deep=True)

    def get_unprocessed(self) -> List[NotificationEvent]:
        """Get all events that have not been processed yet."""
        with self._lock:
            return [e.model_copy(deep=True) for e in self._events.values() if not e.processed]

    def recent_errors(self, limit: int = 100) -> List[NotificationEvent]:
        """Get the most recent events with a processing error, newest first."""
        with self._lock:
            failed = [e for e in self._events.values() if e.processing_error is not None]
        failed.sort(key=lambda e: e.received_at, reverse=True)
        return [e.model_copy(deep=True) for e in failed[:limit]]

    def purge_processed_before(self, cutoff: datetime) -> int:
        """Delete processed events received before cutoff.

        Unprocessed events are kept indefinitely.

        Returns:
            Number of deleted events
        """
        with self._lock:
            doomed = [
                e for e in self._events.values() if e.processed and e.received_at < cutoff
            ]
            for event in doomed:
                del self._events[event.id]
                del self._by_notification[(event.platform, event.notification_id)]
            return len(doomed)

    def count(self) -> int:
        with self._lock:
            return len(self._events)

    def clear(self) -> None:
        """Clear all events from the store.

        Warning: This removes all data. Use with caution.
        """
        with self._lock:
            self._events.clear()
            self._by_notification.clear()

    def get_statistics(self) -> Dict[str, int]:
        """Get event store statistics.

        Returns:
            Dictionary with total, processed, unprocessed and failed counts
        """
        with self._lock:
            events = list(self._events.values())
            return {
                "total_events": len(events),
                "processed": sum(1 for e in events if e.processed),
                "unprocessed": sum(1 for e in events if not e.processed),
                "with_errors": sum(1 for e in events if e.processing_error is not None),
            }

    def __len__(self) -> int:
        return self.count()

    def __repr__(self) -> str:
        return f"EventStore(events={self.count()})"


_store_instance: Optional[EventStore] = None
_store_lock = threading.Lock()


def get_event_store() -> EventStore:
    """Get global event store instance (singleton)."""
    global _store_instance
    if _store_instance is None:
        with _store_lock:
            if _store_instance is None:
                _store_instance = EventStore()
    return _store_instance


def reset_event_store() -> None:
    """Reset global event store (clears all data)."""
    get_event_store().clear()
