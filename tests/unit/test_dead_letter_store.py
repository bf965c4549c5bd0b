"""Tests for DeadLetterStore - failed attempts awaiting retry."""

import threading
from datetime import datetime, timedelta, timezone

import pytest

from subscription_pipeline.models.dead_letter import ResolvedBy
from subscription_pipeline.models.subscription import Platform
from subscription_pipeline.repositories.dead_letter_store import (
    DeadLetterNotFoundError,
    DeadLetterStateError,
    DeadLetterStore,
    backoff_delay,
)
from subscription_pipeline.services.time_controller import TimeController

START = datetime(2026, 1, 30, 21, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock():
    return TimeController(start=START)


@pytest.fixture
def store(clock):
    """Create a fresh DeadLetterStore instance for testing."""
    store = DeadLetterStore(clock=clock)
    yield store
    store.clear()


def add(store, platform=Platform.GOOGLE_PLAY, **overrides):
    kwargs = dict(
        event_id="event-1",
        platform=platform,
        notification_type="SUBSCRIPTION_REVOKED",
        original_transaction_id="GPA.1234",
        failure_reason="boom",
        failure_detail={"error_type": "RuntimeError"},
        raw_payload="raw",
        replay_payload="{}",
    )
    kwargs.update(overrides)
    return store.add(**kwargs)


class TestAdd:
    def test_new_entry_is_due_after_one_minute(self, store):
        entry = add(store)

        assert entry.retry_count == 0
        assert entry.max_retries == 5
        assert entry.next_retry_at == START + timedelta(minutes=1)
        assert entry.created_at == START
        assert entry.is_resolved is False
        assert store.pending_count() == 1

    def test_entries_by_event(self, store):
        first = add(store)
        add(store, event_id="event-2")

        assert [e.id for e in store.get_by_event("event-1")] == [first.id]
        assert store.get_by_event("missing") == []

    def test_max_retries_override(self, store):
        assert add(store, max_retries=2).max_retries == 2

    def test_store_level_settings(self, clock):
        store = DeadLetterStore(clock=clock, max_retries=3, base_delay_minutes=5)
        entry = add(store)
        assert entry.max_retries == 3
        assert entry.next_retry_at == START + timedelta(minutes=5)


class TestClaimDue:
    def test_nothing_due_before_next_retry(self, store):
        add(store)
        assert store.claim_due(10) == []

    def test_claim_bumps_retry_and_backs_off(self, store, clock):
        entry = add(store)
        clock.advance_time(minutes=1)

        claimed = store.claim_due(10)

        assert [c.id for c in claimed] == [entry.id]
        bumped = store.get(entry.id)
        assert bumped.retry_count == 1
        assert bumped.last_retry_at == clock.now()
        assert bumped.next_retry_at == clock.now() + timedelta(minutes=2)

    def test_backoff_sequence(self, store, clock):
        entry = add(store)
        clock.advance_time(minutes=1)
        delays = []
        for _ in range(5):
            store.claim_due(10)
            current = store.get(entry.id)
            delays.append(current.next_retry_at - clock.now())
            clock.set_time(current.next_retry_at)

        assert delays == [timedelta(minutes=m) for m in (2, 4, 8, 16, 32)]
        assert store.get(entry.id).retry_count == 5

    def test_claim_respects_batch_size_and_order(self, store, clock):
        ids = []
        for i in range(12):
            ids.append(add(store, event_id=f"event-{i}").id)
            clock.advance_time(seconds=1)
        clock.advance_time(minutes=1)

        claimed = store.claim_due(10)

        assert [c.id for c in claimed] == ids[:10]

    def test_exhausted_entries_are_not_claimed(self, store, clock):
        add(store, max_retries=0)
        clock.advance_time(minutes=1)
        assert store.claim_due(10) == []

    def test_concurrent_claims_never_double_bump(self, store, clock):
        for i in range(20):
            add(store, event_id=f"event-{i}")
        clock.advance_time(minutes=1)
        claimed = []

        def claim():
            claimed.extend(store.claim_due(10))

        threads = [threading.Thread(target=claim) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(claimed) == 20
        assert len({c.id for c in claimed}) == 20
        assert all(e.retry_count == 1 for e in store.get_unresolved())


class TestResolution:
    def test_expire_exhausted(self, store):
        exhausted = add(store, max_retries=0)
        fresh = add(store)

        expired = store.expire_exhausted()

        assert [e.id for e in expired] == [exhausted.id]
        assert store.get(exhausted.id).resolved_by == ResolvedBy.EXPIRED
        assert store.get(fresh.id).is_resolved is False

    def test_resolve_is_terminal(self, store):
        entry = add(store)
        resolved = store.resolve(entry.id, ResolvedBy.MANUAL)

        assert resolved.resolved_by == ResolvedBy.MANUAL
        assert resolved.resolved_at == START
        with pytest.raises(DeadLetterStateError):
            store.resolve(entry.id, ResolvedBy.AUTO)

    def test_resolved_entries_are_not_claimed(self, store, clock):
        entry = add(store)
        store.resolve(entry.id, ResolvedBy.MANUAL)
        clock.advance_time(minutes=5)
        assert store.claim_due(10) == []

    def test_unknown_entry(self, store):
        with pytest.raises(DeadLetterNotFoundError):
            store.resolve("missing", ResolvedBy.MANUAL)
        with pytest.raises(DeadLetterNotFoundError):
            store.get("missing")
        assert store.find("missing") is None

    def test_record_failure(self, store):
        entry = add(store)
        store.record_failure(entry.id, "still broken", {"error_type": "ValueError"})

        updated = store.get(entry.id)
        assert updated.failure_reason == "still broken"
        assert updated.failure_detail == {"error_type": "ValueError"}


class TestSummaryAndPurge:
    def test_summary_by_platform(self, store):
        pending = add(store, platform=Platform.APPLE)
        done = add(store, platform=Platform.APPLE)
        store.resolve(done.id, ResolvedBy.AUTO)
        add(store, platform=Platform.STRIPE, max_retries=0)
        store.expire_exhausted()

        rows = {row["platform"]: row for row in store.summary_by_platform()}

        assert rows[Platform.APPLE]["pending"] == 1
        assert rows[Platform.APPLE]["auto_resolved"] == 1
        assert rows[Platform.APPLE]["next_retry"] == pending.next_retry_at
        assert rows[Platform.STRIPE]["expired"] == 1
        assert rows[Platform.STRIPE]["next_retry"] is None
        assert store.next_retry_at() == pending.next_retry_at

    def test_purge_keeps_unresolved_entries(self, store, clock):
        resolved = add(store)
        unresolved = add(store)
        store.resolve(resolved.id, ResolvedBy.MANUAL)
        clock.advance_time(days=91)

        deleted = store.purge_resolved_before(clock.now() - timedelta(days=90))

        assert deleted == 1
        assert store.find(resolved.id) is None
        assert store.find(unresolved.id) is not None


def test_backoff_delay():
    assert [backoff_delay(n) for n in range(5)] == [timedelta(minutes=m) for m in (2, 4, 8, 16, 32)]
