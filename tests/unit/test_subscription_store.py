"""Tests for SubscriptionStore - the subscription registry."""

import threading
from datetime import datetime, timedelta, timezone

import pytest

from subscription_pipeline.models.subscription import (
    Platform,
    SubscriptionEnvironment,
    SubscriptionIdentity,
    SubscriptionStatus,
)
from subscription_pipeline.repositories.subscription_store import (
    InvalidTransitionError,
    SubscriptionNotFoundError,
    SubscriptionStore,
    get_subscription_store,
    reset_subscription_store,
)
from subscription_pipeline.services.time_controller import TimeController

START = datetime(2026, 1, 30, 21, 0, tzinfo=timezone.utc)
APPLE_SUB = SubscriptionIdentity(Platform.APPLE, "2000000123456789")
GOOGLE_SUB = SubscriptionIdentity(Platform.GOOGLE_PLAY, "GPA.1234-5678-9012-34567")


@pytest.fixture
def clock():
    return TimeController(start=START)


@pytest.fixture
def store(clock):
    """Create a fresh SubscriptionStore instance for testing."""
    store = SubscriptionStore(clock=clock)
    yield store
    store.clear()


class TestUpsert:
    """Test validated create/update."""

    def test_first_sight_accepts_any_status(self, store):
        sub_id = store.upsert(APPLE_SUB, SubscriptionStatus.REFUNDED, product_id="premium.monthly")

        record = store.get(APPLE_SUB)
        assert record.id == sub_id
        assert record.status == SubscriptionStatus.REFUNDED
        assert record.product_id == "premium.monthly"
        assert record.created_at == START

    def test_allowed_transition_updates_record(self, store, clock):
        sub_id = store.upsert(APPLE_SUB, SubscriptionStatus.ACTIVE)
        clock.advance_time(days=30)

        again = store.upsert(APPLE_SUB, SubscriptionStatus.IN_GRACE_PERIOD)

        record = store.get(APPLE_SUB)
        assert again == sub_id
        assert record.status == SubscriptionStatus.IN_GRACE_PERIOD
        assert record.created_at == START
        assert record.updated_at == START + timedelta(days=30)

    def test_rejected_transition_leaves_record_untouched(self, store):
        store.upsert(APPLE_SUB, SubscriptionStatus.EXPIRED, product_id="basic")

        with pytest.raises(InvalidTransitionError) as exc_info:
            store.upsert(APPLE_SUB, SubscriptionStatus.IN_GRACE_PERIOD, product_id="premium")

        assert exc_info.value.current_status == SubscriptionStatus.EXPIRED
        assert exc_info.value.candidate_status == SubscriptionStatus.IN_GRACE_PERIOD
        record = store.get(APPLE_SUB)
        assert record.status == SubscriptionStatus.EXPIRED
        assert record.product_id == "basic"

    def test_terminal_status_is_final(self, store):
        store.upsert(APPLE_SUB, SubscriptionStatus.REVOKED)

        for candidate in (SubscriptionStatus.ACTIVE, SubscriptionStatus.REVOKED):
            with pytest.raises(InvalidTransitionError):
                store.upsert(APPLE_SUB, candidate)

    def test_same_status_refreshes_fields(self, store):
        store.upsert(APPLE_SUB, SubscriptionStatus.ACTIVE, expires_date=START)
        renewed_until = START + timedelta(days=30)

        store.upsert(APPLE_SUB, SubscriptionStatus.ACTIVE, expires_date=renewed_until)

        assert store.get(APPLE_SUB).expires_date == renewed_until

    def test_missing_owner_keeps_stored_owner(self, store):
        store.upsert(APPLE_SUB, SubscriptionStatus.ACTIVE, user_id="user-1", app_account_token="tok-1")

        store.upsert(APPLE_SUB, SubscriptionStatus.EXPIRED, user_id=None, app_account_token=None)

        record = store.get(APPLE_SUB)
        assert record.user_id == "user-1"
        assert record.app_account_token == "tok-1"

    def test_environment_is_normalized(self, store):
        store.upsert(APPLE_SUB, SubscriptionStatus.ACTIVE, environment="Xcode")
        assert store.get(APPLE_SUB).environment == SubscriptionEnvironment.SANDBOX

    def test_unknown_field_rejected(self, store):
        with pytest.raises(ValueError):
            store.upsert(APPLE_SUB, SubscriptionStatus.ACTIVE, price=10)

    def test_status_given_as_string(self, store):
        store.upsert(APPLE_SUB, "active")
        assert store.get_current_status(APPLE_SUB) == SubscriptionStatus.ACTIVE

    def test_concurrent_conflicting_writes_follow_state_machine(self, store):
        """expired -> active races with expired -> in_grace_period; only legal orders win."""
        store.upsert(APPLE_SUB, SubscriptionStatus.EXPIRED)
        outcomes = []

        def write(status):
            try:
                store.upsert(APPLE_SUB, status)
                outcomes.append((status, True))
            except InvalidTransitionError:
                outcomes.append((status, False))

        threads = [
            threading.Thread(target=write, args=(SubscriptionStatus.ACTIVE,)),
            threading.Thread(target=write, args=(SubscriptionStatus.IN_GRACE_PERIOD,)),
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        final = store.get_current_status(APPLE_SUB)
        assert final in (SubscriptionStatus.ACTIVE, SubscriptionStatus.IN_GRACE_PERIOD)
        assert (SubscriptionStatus.ACTIVE, True) in outcomes


class TestSnapshotRestore:
    def test_restore_undoes_update(self, store):
        store.upsert(APPLE_SUB, SubscriptionStatus.ACTIVE, product_id="basic")
        snapshot = store.snapshot(APPLE_SUB)
        store.upsert(APPLE_SUB, SubscriptionStatus.EXPIRED, product_id="premium")

        store.restore(APPLE_SUB, snapshot)

        record = store.get(APPLE_SUB)
        assert record.status == SubscriptionStatus.ACTIVE
        assert record.product_id == "basic"

    def test_restore_of_missing_snapshot_removes_record(self, store):
        snapshot = store.snapshot(APPLE_SUB)
        store.upsert(APPLE_SUB, SubscriptionStatus.ACTIVE)

        store.restore(APPLE_SUB, snapshot)

        assert APPLE_SUB not in store
        assert store.get_current_status(APPLE_SUB) is None


class TestQueries:
    def test_get_missing_raises(self, store):
        with pytest.raises(SubscriptionNotFoundError):
            store.get(APPLE_SUB)
        with pytest.raises(SubscriptionNotFoundError):
            store.get_by_id("missing")
        assert store.find(APPLE_SUB) is None

    def test_get_by_id(self, store):
        sub_id = store.upsert(APPLE_SUB, SubscriptionStatus.ACTIVE)
        assert store.get_by_id(sub_id).identity == APPLE_SUB

    def test_find_owner_prefers_correlation_token(self, store):
        store.upsert(APPLE_SUB, SubscriptionStatus.ACTIVE, user_id="by-token", app_account_token="tok-1")
        store.upsert(
            SubscriptionIdentity(Platform.STRIPE, "sub_123"), SubscriptionStatus.ACTIVE, user_id="by-txn"
        )

        assert store.find_owner("tok-1", "sub_123") == "by-token"
        assert store.find_owner("unknown-token", "sub_123") == "by-txn"
        assert store.find_owner(None, "2000000123456789") == "by-token"
        assert store.find_owner(None, None) is None

    def test_find_owner_transaction_id_scoped_to_platform(self, store):
        store.upsert(
            SubscriptionIdentity(Platform.GOOGLE_PLAY, "shared-123"), SubscriptionStatus.ACTIVE, user_id="android-user"
        )

        assert store.find_owner(None, "shared-123", Platform.STRIPE) is None
        assert store.find_owner(None, "shared-123", Platform.GOOGLE_PLAY) == "android-user"

        store.upsert(SubscriptionIdentity(Platform.STRIPE, "shared-123"), SubscriptionStatus.ACTIVE, user_id="web-user")
        assert store.find_owner(None, "shared-123", Platform.STRIPE) == "web-user"

    def test_find_owner_token_prefers_same_platform(self, store):
        store.upsert(APPLE_SUB, SubscriptionStatus.ACTIVE, user_id="apple-user", app_account_token="tok-9")
        stripe_sub = SubscriptionIdentity(Platform.STRIPE, "sub_9")
        store.upsert(stripe_sub, SubscriptionStatus.ACTIVE, user_id="stripe-user", app_account_token="tok-9")

        assert store.find_owner("tok-9", None, Platform.STRIPE) == "stripe-user"
        assert store.find_owner("tok-9", None, Platform.APPLE) == "apple-user"
        assert store.find_owner("tok-9", None, Platform.GOOGLE_PLAY) == "apple-user"

    def test_user_queries(self, store):
        store.upsert(APPLE_SUB, SubscriptionStatus.IN_GRACE_PERIOD, user_id="user-1")
        store.upsert(GOOGLE_SUB, SubscriptionStatus.EXPIRED, user_id="user-1")

        assert len(store.get_by_user("user-1")) == 2
        assert store.has_premium_access("user-1") is True
        assert store.has_premium_access("user-2") is False
        assert [s.identity for s in store.get_by_status(SubscriptionStatus.EXPIRED)] == [GOOGLE_SUB]
        assert store.count_by_status(SubscriptionStatus.IN_GRACE_PERIOD) == 1

    def test_counts_by_platform(self, store):
        store.upsert(APPLE_SUB, SubscriptionStatus.ACTIVE)
        store.upsert(SubscriptionIdentity(Platform.APPLE, "2000000999"), SubscriptionStatus.EXPIRED)
        store.upsert(GOOGLE_SUB, SubscriptionStatus.IN_GRACE_PERIOD)

        rows = {row["platform"]: row for row in store.counts_by_platform()}

        assert rows[Platform.APPLE]["by_status"] == {"active": 1, "expired": 1}
        assert rows[Platform.APPLE]["premium_count"] == 1
        assert rows[Platform.APPLE]["total_count"] == 2
        assert rows[Platform.GOOGLE_PLAY]["premium_count"] == 1
        assert rows[Platform.GOOGLE_PLAY]["last_updated"] == START


def test_global_store_singleton():
    store = get_subscription_store()
    assert get_subscription_store() is store
    reset_subscription_store()
    assert store.count() == 0
