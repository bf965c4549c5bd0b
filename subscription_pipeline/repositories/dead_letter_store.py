"""Dead letter store - failed processing attempts awaiting backed-off retry.

Entries carry a full snapshot of the notification so a retry never depends
on the original event row, which retention cleanup may already have purged.
"""

import threading
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from subscription_pipeline.logging_config import get_logger
from subscription_pipeline.models.dead_letter import DeadLetterEntry, ResolvedBy
from subscription_pipeline.models.subscription import Platform
from subscription_pipeline.services.time_controller import TimeController, get_time_controller
from subscription_pipeline.state_logger import (
    log_dlq_entry_added,
    log_dlq_entry_resolved,
    log_dlq_retry_scheduled,
)
from subscription_pipeline.utils.identifiers import generate_id

logger = get_logger(__name__)


def backoff_delay(retry_count: int) -> timedelta:
    """Delay before the next attempt for an entry observed at retry_count.

    2^(retry_count + 1) minutes: 2, 4, 8, 16, 32 ...
    """
    return timedelta(minutes=2 ** (retry_count + 1))


class DeadLetterStoreError(Exception):
    """Base exception for dead letter store errors."""

    pass


class DeadLetterNotFoundError(DeadLetterStoreError):
    """Raised when an entry is not found in the store."""

    pass


class DeadLetterStateError(DeadLetterStoreError):
    """Raised when an operation is invalid for a resolved entry."""

    pass


class DeadLetterStore:
    """In-memory storage for dead letter entries.

    Thread-safe. claim_due() selects and bumps entries under one lock, the
    in-memory counterpart of "select for update skip locked": an entry is
    handed to exactly one caller per retry.
    """

    def __init__(
        self,
        clock: Optional[TimeController] = None,
        max_retries: int = 5,
        base_delay_minutes: int = 1,
    ):
        """Initialize dead letter store with empty storage.

        Args:
            clock: Time source (defaults to global instance)
            max_retries: max_retries for new entries
            base_delay_minutes: Delay before the first retry of a new entry
        """
        self._entries: Dict[str, DeadLetterEntry] = {}
        self._lock = threading.RLock()
        self._clock = clock or get_time_controller()
        self.max_retries = max_retries
        self.base_delay = timedelta(minutes=base_delay_minutes)

    def add(
        self,
        event_id: Optional[str],
        platform: Platform,
        notification_type: str,
        original_transaction_id: Optional[str],
        failure_reason: str,
        failure_detail: Optional[Dict[str, Any]] = None,
        raw_payload: str = "",
        replay_payload: Optional[str] = None,
        max_retries: Optional[int] = None,
    ) -> DeadLetterEntry:
        """Queue a failed processing attempt.

        The entry starts with retry_count = 0 and is first due one base
        delay (1 minute by default) from now.

        Returns:
            The created DeadLetterEntry
        """
        now = self._clock.now()
        entry = DeadLetterEntry(
            id=generate_id(),
            original_event_id=event_id,
            platform=platform,
            notification_type=notification_type,
            original_transaction_id=original_transaction_id,
            failure_reason=failure_reason,
            failure_detail=dict(failure_detail or {}),
            raw_payload=raw_payload,
            replay_payload=replay_payload,
            retry_count=0,
            max_retries=self.max_retries if max_retries is None else max_retries,
            next_retry_at=now + self.base_delay,
            created_at=now,
        )
        with self._lock:
            self._entries[entry.id] = entry

        log_dlq_entry_added(
            entry_id=entry.id,
            platform=platform,
            notification_type=notification_type,
            failure_reason=failure_reason,
            next_retry_at=entry.next_retry_at,
            event_id=event_id,
        )
        return entry.model_copy(deep=True)

    def expire_exhausted(self) -> List[DeadLetterEntry]:
        """Resolve every unresolved entry whose retries are used up.

        Returns:
            Entries marked resolved_by = expired
        """
        now = self._clock.now()
        expired = []
        with self._lock:
            for entry in self._entries.values():
                if not entry.is_resolved and entry.is_exhausted:
                    entry.resolved_at = now
                    entry.resolved_by = ResolvedBy.EXPIRED
                    expired.append(entry.model_copy(deep=True))

        for entry in expired:
            log_dlq_entry_resolved(entry.id, ResolvedBy.EXPIRED, entry.retry_count)
        return expired

    def claim_due(self, limit: int) -> List[DeadLetterEntry]:
        """Claim up to limit due entries for a retry attempt.

        Selects unresolved entries with next_retry_at <= now and
        retry_count < max_retries, ordered by next_retry_at. Each claimed
        entry gets retry_count + 1, last_retry_at = now and
        next_retry_at = now + 2^(n+1) minutes for the observed count n.

        Returns:
            Copies of the claimed entries after the bump
        """
        now = self._clock.now()
        with self._lock:
            due = [
                e
                for e in self._entries.values()
                if not e.is_resolved
                and e.next_retry_at is not None
                and e.next_retry_at <= now
                and e.retry_count < e.max_retries
            ]
            due.sort(key=lambda e: e.next_retry_at)
            claimed = []
            for entry in due[:limit]:
                observed = entry.retry_count
                entry.retry_count = observed + 1
                entry.last_retry_at = now
                entry.next_retry_at = now + backoff_delay(observed)
                claimed.append(entry.model_copy(deep=True))

        for entry in claimed:
            log_dlq_retry_scheduled(
                entry_id=entry.id,
                old_retry_count=entry.retry_count - 1,
                new_retry_count=entry.retry_count,
                next_retry_at=entry.next_retry_at,
            )
        return claimed

    def resolve(self, entry_id: str, resolved_by: ResolvedBy) -> DeadLetterEntry:
        """Mark an entry resolved.

        Raises:
            DeadLetterNotFoundError: If entry_id not found
            DeadLetterStateError: If the entry is already resolved
        """
        with self._lock:
            entry = self._get_stored(entry_id)
            if entry.is_resolved:
                raise DeadLetterStateError(
                    f"Dead letter entry {entry_id} already resolved by {entry.resolved_by.value}"
                )
            entry.resolved_at = self._clock.now()
            entry.resolved_by = resolved_by
            resolved = entry.model_copy(deep=True)

        log_dlq_entry_resolved(resolved.id, resolved_by, resolved.retry_count)
        return resolved

    def record_failure(self, entry_id: str, failure_reason: str, failure_detail: Optional[Dict[str, Any]] = None) -> DeadLetterEntry:
        """Replace the failure reason after a failed retry.

        Raises:
            DeadLetterNotFoundError: If entry_id not found
        """
        with self._lock:
            entry = self._get_stored(entry_id)
            entry.failure_reason = failure_reason
            if failure_detail is not None:
                entry.failure_detail = dict(failure_detail)
            return entry.model_copy(deep=True)

    def _get_stored(self, entry_id: str) -> DeadLetterEntry:
        entry = self._entries.get(entry_id)
        if entry is None:
            raise DeadLetterNotFoundError(f"Dead letter entry not found: {entry_id}")
        return entry

    def get(self, entry_id: str) -> DeadLetterEntry:
        """Get entry by id.

        Raises:
            DeadLetterNotFoundError: If entry_id not found
        """
        with self._lock:
            return self._get_stored(entry_id).model_copy(deep=True)

    def find(self, entry_id: str) -> Optional[DeadLetterEntry]:
        with self._lock:
            entry = self._entries.get(entry_id)
            return entry.model_copy(deep=True) if entry else None

    def get_by_event(self, event_id: str) -> List[DeadLetterEntry]:
        """Get all entries created for a notification event."""
        with self._lock:
            return [
                e.model_copy(deep=True) for e in self._entries.values() if e.original_event_id == event_id
            ]

    def get_unresolved(self) -> List[DeadLetterEntry]:
        with self._lock:
            return [e.model_copy(deep=True) for e in self._entries.values() if not e.is_resolved]

    def pending_count(self) -> int:
        with self._lock:
            return sum(1 for e in self._entries.values() if not e.is_resolved)

    def next_retry_at(self) -> Optional[datetime]:
        """Earliest scheduled retry among unresolved entries."""
        with self._lock:
            return min(
                (e.next_retry_at for e in self._entries.values() if not e.is_resolved and e.next_retry_at),
                default=None,
            )

    def summary_by_platform(self) -> List[Dict[str, Any]]:
        """Pending/resolved counts and next retry time for each platform."""
        with self._lock:
            entries = list(self._entries.values())

        summary: Dict[Platform, Dict[str, Any]] = {}
        for entry in entries:
            row = summary.setdefault(
                entry.platform,
                {
                    "platform": entry.platform,
                    "pending": 0,
                    "auto_resolved": 0,
                    "expired": 0,
                    "manual": 0,
                    "total": 0,
                    "next_retry": None,
                    "last_failure": None,
                },
            )
            row["total"] += 1
            if entry.resolved_by is None:
                row["pending"] += 1
                if entry.next_retry_at and (row["next_retry"] is None or entry.next_retry_at < row["next_retry"]):
                    row["next_retry"] = entry.next_retry_at
            elif entry.resolved_by == ResolvedBy.AUTO:
                row["auto_resolved"] += 1
            elif entry.resolved_by == ResolvedBy.EXPIRED:
                row["expired"] += 1
            else:
                row["manual"] += 1
            if row["last_failure"] is None or entry.created_at > row["last_failure"]:
                row["last_failure"] = entry.created_at

        return [summary[p] for p in sorted(summary, key=lambda p: p.value)]

    def purge_resolved_before(self, cutoff: datetime) -> int:
        """Delete resolved entries resolved before cutoff.

        Unresolved entries are kept indefinitely.

        Returns:
            Number of deleted entries
        """
        with self._lock:
            doomed = [
                e.id for e in self._entries.values() if e.resolved_at is not None and e.resolved_at < cutoff
            ]
            for entry_id in doomed:
                del self._entries[entry_id]
            return len(doomed)

    def count(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        """Clear all entries from the store.

        Warning: This removes all data. Use with caution.
        """
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return self.count()

    def __repr__(self) -> str:
        return f"DeadLetterStore(entries={self.count()}, pending={self.pending_count()})"


_store_instance: Optional[DeadLetterStore] = None
_store_lock = threading.Lock()


def get_dead_letter_store() -> DeadLetterStore:
    """Get global dead letter store instance (singleton), configured from pipeline.yaml."""
    global _store_instance
    if _store_instance is None:
        with _store_lock:
            if _store_instance is None:
                from subscription_pipeline.config import get_config

                settings = get_config().dlq_settings
                _store_instance = DeadLetterStore(
                    max_retries=settings.max_retries,
                    base_delay_minutes=settings.base_delay_minutes,
                )
    return _store_instance


def reset_dead_letter_store() -> None:
    """Reset global dead letter store (clears all data)."""
    get_dead_letter_store().clear()
