"""Dead letter retry scheduler.

One pass of process_dlq():
1. Expire entries that have used all their retries
2. Claim a batch of due entries (bumping retry_count and backing off next_retry_at)
3. Replay each claimed entry through the event processor

Passes are single-flight: a pass started while another is running returns
immediately with skipped=True.
"""

import threading
from typing import Optional

from pydantic import ValidationError

from subscription_pipeline.logging_config import get_logger, pipeline_context
from subscription_pipeline.models.dead_letter import DeadLetterEntry, DlqRunResult, ResolvedBy
from subscription_pipeline.models.events import NotificationInput
from subscription_pipeline.models.results import Failed
from subscription_pipeline.repositories.dead_letter_store import (
    DeadLetterStateError,
    DeadLetterStore,
    get_dead_letter_store,
)
from subscription_pipeline.services.event_processor import EventProcessor, get_event_processor
from subscription_pipeline.services.time_controller import TimeController, get_time_controller

logger = get_logger(__name__)


class RetryScheduler:
    """Replays dead letter entries with exponential backoff."""

    def __init__(
        self,
        dead_letter_store: Optional[DeadLetterStore] = None,
        processor: Optional[EventProcessor] = None,
        batch_size: Optional[int] = None,
        clock: Optional[TimeController] = None,
    ):
        """Initialize retry scheduler.

        Args:
            dead_letter_store: Dead letter queue (defaults to global instance)
            processor: Processor used for replays (defaults to global instance)
            batch_size: Entries claimed per pass (defaults to dlq.batch_size)
            clock: Time source (defaults to global instance)
        """
        self.dead_letters = dead_letter_store if dead_letter_store is not None else get_dead_letter_store()
        self.processor = processor if processor is not None else get_event_processor()
        if batch_size is None:
            from subscription_pipeline.config import get_config

            batch_size = get_config().dlq_settings.batch_size
        self.batch_size = batch_size
        self._clock = clock if clock is not None else get_time_controller()
        self._run_lock = threading.Lock()

    def process_dlq(self) -> DlqRunResult:
        """Run one retry pass.

        Returns:
            DlqRunResult with processed, succeeded, failed, expired and pending counts
        """
        if not self._run_lock.acquire(blocking=False):
            logger.info("dlq_run_skipped", reason="already_running")
            return DlqRunResult(
                skipped=True,
                pending=self.dead_letters.pending_count(),
                timestamp=self._clock.now(),
            )

        try:
            return self._run()
        finally:
            self._run_lock.release()

    def _run(self) -> DlqRunResult:
        expired = len(self.dead_letters.expire_exhausted())
        claimed = self.dead_letters.claim_due(self.batch_size)

        succeeded = 0
        failed = 0
        for entry in claimed:
            try:
                with pipeline_context(dlq_entry_id=entry.id):
                    ok = self._retry(entry)
            except Exception as e:
                logger.error(
                    "dlq_retry_error",
                    dlq_entry_id=entry.id,
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )
                self.dead_letters.record_failure(entry.id, str(e) or type(e).__name__)
                ok = False

            if ok:
                succeeded += 1
                continue

            failed += 1
            if entry.is_exhausted:
                self._resolve(entry, ResolvedBy.EXPIRED)
                expired += 1

        result = DlqRunResult(
            processed=len(claimed),
            succeeded=succeeded,
            failed=failed,
            expired=expired,
            pending=self.dead_letters.pending_count(),
            timestamp=self._clock.now(),
        )
        if claimed or expired:
            logger.info("dlq_run_completed", **result.model_dump(exclude={"timestamp", "skipped"}))
        else:
            logger.debug("dlq_run_idle", pending=result.pending)
        return result

    def _retry(self, entry: DeadLetterEntry) -> bool:
        """Replay one claimed entry. Returns True when the entry is resolved."""
        if entry.replay_payload is None:
            self.dead_letters.record_failure(entry.id, "Entry has no replay snapshot")
            return False

        try:
            notification = NotificationInput.model_validate_json(entry.replay_payload)
        except ValidationError as e:
            self.dead_letters.record_failure(
                entry.id, f"Replay snapshot is invalid: {e.error_count()} errors", {"error_type": "ValidationError"}
            )
            return False

        result = self.processor.replay(notification)
        if isinstance(result, Failed):
            self.dead_letters.record_failure(
                entry.id,
                result.reason,
                {**entry.failure_detail, "error_type": result.error_type},
            )
            logger.warning(
                "dlq_retry_failed",
                dlq_entry_id=entry.id,
                retry_count=entry.retry_count,
                max_retries=entry.max_retries,
                reason=result.reason,
            )
            return False

        self._resolve(entry, ResolvedBy.AUTO)
        return True

    def _resolve(self, entry: DeadLetterEntry, resolved_by: ResolvedBy) -> None:
        try:
            self.dead_letters.resolve(entry.id, resolved_by)
        except DeadLetterStateError:
            # Resolved by an operator while the retry was running
            logger.info("dlq_entry_already_resolved", dlq_entry_id=entry.id, attempted=resolved_by.value)

    def resolve_manually(self, entry_id: str) -> DeadLetterEntry:
        """Resolve an entry by hand.

        Raises:
            DeadLetterNotFoundError: If entry_id not found
            DeadLetterStateError: If the entry is already resolved
        """
        return self.dead_letters.resolve(entry_id, ResolvedBy.MANUAL)


_scheduler_instance: Optional[RetryScheduler] = None
_scheduler_lock = threading.Lock()


def get_retry_scheduler() -> RetryScheduler:
    """Get global retry scheduler instance (singleton)."""
    global _scheduler_instance
    if _scheduler_instance is None:
        with _scheduler_lock:
            if _scheduler_instance is None:
                _scheduler_instance = RetryScheduler()
    return _scheduler_instance


def reset_retry_scheduler() -> None:
    """Drop the global scheduler so the next call rebuilds it (for testing)."""
    global _scheduler_instance
    _scheduler_instance = None
