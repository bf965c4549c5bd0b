"""Subscription registry - current state per subscription identity.

Every status write is approved by the state machine against the status
stored at the time of the write, under a per-identity lock.
"""

import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional

from subscription_pipeline.logging_config import get_logger
from subscription_pipeline.models.subscription import (
    PREMIUM_STATUSES,
    Platform,
    SubscriptionEnvironment,
    SubscriptionIdentity,
    SubscriptionRecord,
    SubscriptionStatus,
)
from subscription_pipeline.services import transition_validator
from subscription_pipeline.services.time_controller import TimeController, get_time_controller
from subscription_pipeline.state_logger import log_subscription_state_change, log_transition_rejected
from subscription_pipeline.utils.identifiers import generate_id
from subscription_pipeline.utils.keyed_lock import KeyedLock

logger = get_logger(__name__)

# Fields that keep their stored value when an update does not carry one
_COALESCED_FIELDS = ("user_id", "app_account_token", "bundle_id", "original_purchase_date")

_UPDATABLE_FIELDS = (
    "user_id",
    "product_id",
    "bundle_id",
    "purchase_date",
    "original_purchase_date",
    "expires_date",
    "auto_renew_status",
    "auto_renew_product_id",
    "environment",
    "app_account_token",
)


class SubscriptionStoreError(Exception):
    """Base exception for subscription registry errors."""

    pass


class SubscriptionNotFoundError(SubscriptionStoreError):
    """Raised when a subscription is not found in the store."""

    pass


class InvalidTransitionError(SubscriptionStoreError):
    """Raised when the state machine rejects a status change."""

    def __init__(
        self,
        identity: SubscriptionIdentity,
        current_status: SubscriptionStatus,
        candidate_status: SubscriptionStatus,
    ):
        self.identity = identity
        self.current_status = current_status
        self.candidate_status = candidate_status
        super().__init__(
            f"Transition {current_status.value} -> {candidate_status.value} "
            f"is not allowed for subscription {identity}"
        )


class SubscriptionStore:
    """In-memory storage for subscription records.

    Thread-safe storage keyed by (platform, original_transaction_id), with
    lookups by user, status and correlation token.
    """

    def __init__(self, clock: Optional[TimeController] = None):
        """Initialize subscription store with empty storage.

        Args:
            clock: Time source for created_at/updated_at (defaults to global instance)
        """
        self._subscriptions: Dict[SubscriptionIdentity, SubscriptionRecord] = {}
        self._lock = threading.RLock()
        self._identity_locks = KeyedLock()
        self._clock = clock or get_time_controller()

    @contextmanager
    def lock_identity(self, identity: SubscriptionIdentity) -> Iterator[None]:
        """Serialize read-validate-write sequences for one subscription.

        Reentrant: upsert() takes the same lock, so callers may hold it around
        several operations (snapshot, upsert, restore).
        """
        with self._identity_locks.hold(identity):
            yield

    def upsert(
        self,
        identity: SubscriptionIdentity,
        candidate_status: SubscriptionStatus,
        reason: Optional[str] = None,
        **fields: Any,
    ) -> str:
        """Create or update a subscription after validating the status change.

        The transition is validated against the currently stored status, not
        the caller's view of it. First sight of an identity accepts any status.
        A candidate equal to the stored status only refreshes the other fields,
        unless the stored status is terminal.

        Args:
            identity: Subscription identity
            candidate_status: Proposed status
            reason: Cause of the change, for the audit log
            **fields: Any of user_id, product_id, bundle_id, purchase_date,
                original_purchase_date, expires_date, auto_renew_status,
                auto_renew_product_id, environment, app_account_token

        Returns:
            Subscription ID

        Raises:
            InvalidTransitionError: If the state machine rejects the change
            ValueError: If an unknown field is given
        """
        unknown = set(fields) - set(_UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown subscription fields: {sorted(unknown)}")

        candidate = SubscriptionStatus(candidate_status)
        if "environment" in fields:
            fields["environment"] = SubscriptionEnvironment.normalize(fields["environment"])

        with self.lock_identity(identity):
            with self._lock:
                current = self._subscriptions.get(identity)
            now = self._clock.now()

            if current is None:
                record = SubscriptionRecord(
                    id=generate_id(),
                    platform=identity.platform,
                    original_transaction_id=identity.original_transaction_id,
                    status=candidate,
                    created_at=now,
                    updated_at=now,
                    **{k: v for k, v in fields.items() if v is not None},
                )
                old_status = None
            else:
                self._check_transition(identity, current.status, candidate)
                update: Dict[str, Any] = {"status": candidate, "updated_at": now}
                for name, value in fields.items():
                    if value is None and name in _COALESCED_FIELDS:
                        continue
                    update[name] = value
                record = current.model_copy(update=update, deep=True)
                old_status = current.status

            with self._lock:
                self._subscriptions[identity] = record

        if old_status != candidate:
            log_subscription_state_change(
                identity=identity,
                subscription_id=record.id,
                old_status=old_status,
                new_status=candidate,
                reason=reason,
                user_id=record.user_id,
            )
        else:
            logger.debug("subscription_refreshed", subscription_id=record.id, status=candidate.value)

        return record.id

    def _check_transition(
        self,
        identity: SubscriptionIdentity,
        current: SubscriptionStatus,
        candidate: SubscriptionStatus,
    ) -> None:
        if current == candidate:
            allowed = not transition_validator.is_terminal(current)
        else:
            allowed = transition_validator.is_allowed(current, candidate)

        if not allowed:
            log_transition_rejected(identity, current, candidate)
            raise InvalidTransitionError(identity, current, candidate)

    def snapshot(self, identity: SubscriptionIdentity) -> Optional[SubscriptionRecord]:
        """Copy of the stored record (None if the identity was never seen)."""
        with self._lock:
            record = self._subscriptions.get(identity)
            return record.model_copy(deep=True) if record else None

    def restore(self, identity: SubscriptionIdentity, snapshot: Optional[SubscriptionRecord]) -> None:
        """Put back a snapshot taken with snapshot(), undoing later writes."""
        with self._lock:
            if snapshot is None:
                self._subscriptions.pop(identity, None)
            else:
                self._subscriptions[identity] = snapshot.model_copy(deep=True)

        logger.info(
            "subscription_restored",
            subscription=str(identity),
            status=snapshot.status.value if snapshot else None,
        )

    def get(self, identity: SubscriptionIdentity) -> SubscriptionRecord:
        """Get subscription by identity.

        Raises:
            SubscriptionNotFoundError: If identity not found
        """
        record = self.find(identity)
        if record is None:
            raise SubscriptionNotFoundError(f"Subscription not found: {identity}")
        return record

    def find(self, identity: SubscriptionIdentity) -> Optional[SubscriptionRecord]:
        """Find subscription by identity (returns None if not found)."""
        return self.snapshot(identity)

    def get_by_id(self, subscription_id: str) -> SubscriptionRecord:
        """Get subscription by its generated id.

        Raises:
            SubscriptionNotFoundError: If subscription_id not found
        """
        with self._lock:
            for record in self._subscriptions.values():
                if record.id == subscription_id:
                    return record.model_copy(deep=True)
        raise SubscriptionNotFoundError(f"Subscription not found for id: {subscription_id}")

    def get_current_status(self, identity: SubscriptionIdentity) -> Optional[SubscriptionStatus]:
        """Stored status for identity, or None when it was never seen."""
        with self._lock:
            record = self._subscriptions.get(identity)
            return record.status if record else None

    def find_owner(
        self,
        app_account_token: Optional[str],
        original_transaction_id: Optional[str],
        platform: Optional[Platform] = None,
    ) -> Optional[str]:
        """Find the user owning a transaction.

        The client correlation token is tried first, preferring a record on the
        same platform. Transaction ids are only unique per platform, so when a
        platform is given the transaction id fallback is limited to it.

        Returns:
            user_id if found, None otherwise
        """
        with self._lock:
            records = [r for r in self._subscriptions.values() if r.user_id]

        if app_account_token:
            by_token = [r for r in records if r.app_account_token == app_account_token]
            matches = [r for r in by_token if r.platform == platform] or by_token
            if matches:
                return matches[0].user_id

        if original_transaction_id:
            for record in records:
                if record.original_transaction_id != original_transaction_id:
                    continue
                if platform is None or record.platform == platform:
                    return record.user_id

        return None

    def get_by_user(self, user_id: str) -> List[SubscriptionRecord]:
        """Get all subscriptions for a specific user."""
        with self._lock:
            return [s.model_copy(deep=True) for s in self._subscriptions.values() if s.user_id == user_id]

    def get_by_status(self, status: SubscriptionStatus) -> List[SubscriptionRecord]:
        """Get all subscriptions in a specific status."""
        with self._lock:
            return [s.model_copy(deep=True) for s in self._subscriptions.values() if s.status == status]

    def has_premium_access(self, user_id: str) -> bool:
        """Check if any of a user's subscriptions grants premium access."""
        return any(s.status in PREMIUM_STATUSES for s in self.get_by_user(user_id))

    def counts_by_platform(self) -> List[Dict[str, Any]]:
        """Subscription counts by status for each platform.

        Returns:
            One dictionary per platform with platform, by_status,
            premium_count, total_count and last_updated
        """
        with self._lock:
            records = list(self._subscriptions.values())

        summary: Dict[Platform, Dict[str, Any]] = {}
        for record in records:
            row = summary.setdefault(
                record.platform,
                {
                    "platform": record.platform,
                    "by_status": {},
                    "premium_count": 0,
                    "total_count": 0,
                    "last_updated": None,
                },
            )
            status = record.status.value
            row["by_status"][status] = row["by_status"].get(status, 0) + 1
            row["total_count"] += 1
            if record.status in PREMIUM_STATUSES:
                row["premium_count"] += 1
            if row["last_updated"] is None or record.updated_at > row["last_updated"]:
                row["last_updated"] = record.updated_at

        return [summary[p] for p in sorted(summary, key=lambda p: p.value)]

    def count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def count_by_status(self, status: SubscriptionStatus) -> int:
        with self._lock:
            return sum(1 for s in self._subscriptions.values() if s.status == status)

    def clear(self) -> None:
        """Clear all subscriptions from the store.

        Warning: This removes all data. Use with caution.
        """
        with self._lock:
            self._subscriptions.clear()

    def last_updated(self) -> Optional[datetime]:
        with self._lock:
            return max((s.updated_at for s in self._subscriptions.values()), default=None)

    def __len__(self) -> int:
        return self.count()

    def __contains__(self, identity: SubscriptionIdentity) -> bool:
        with self._lock:
            return identity in self._subscriptions

    def __repr__(self) -> str:
        return f"SubscriptionStore(subscriptions={self.count()})"


_store_instance: Optional[SubscriptionStore] = None
_store_lock = threading.Lock()


def get_subscription_store() -> SubscriptionStore:
    """Get global subscription store instance (singleton)."""
    global _store_instance
    if _store_instance is None:
        with _store_lock:
            if _store_instance is None:
                _store_instance = SubscriptionStore()
    return _store_instance


def reset_subscription_store() -> None:
    """Reset global subscription store (clears all data)."""
    get_subscription_store().clear()
