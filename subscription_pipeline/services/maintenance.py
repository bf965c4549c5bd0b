"""Retention cleanup, health reads and the periodic job runner.

Responsibilities:
- Purge processed events and resolved dead letter entries past retention
- Expose operational read models (subscription health, DLQ summary, recent errors)
- Run process_dlq and cleanup on fixed intervals in a background thread
"""

import threading
from datetime import timedelta
from typing import Callable, List, Optional

from subscription_pipeline.logging_config import get_logger
from subscription_pipeline.models.api_response import (
    PlatformDlqSummary,
    PlatformSubscriptionHealth,
    RecentError,
)
from subscription_pipeline.models.dead_letter import CleanupResult
from subscription_pipeline.repositories.dead_letter_store import DeadLetterStore, get_dead_letter_store
from subscription_pipeline.repositories.event_store import EventStore, get_event_store
from subscription_pipeline.repositories.subscription_store import SubscriptionStore, get_subscription_store
from subscription_pipeline.services.time_controller import TimeController, get_time_controller

logger = get_logger(__name__)


class MaintenanceService:
    """Retention cleanup and read-only health views."""

    def __init__(
        self,
        event_store: Optional[EventStore] = None,
        subscription_store: Optional[SubscriptionStore] = None,
        dead_letter_store: Optional[DeadLetterStore] = None,
        retention_days: Optional[int] = None,
        clock: Optional[TimeController] = None,
    ):
        self.events = event_store if event_store is not None else get_event_store()
        self.subscriptions = subscription_store if subscription_store is not None else get_subscription_store()
        self.dead_letters = dead_letter_store if dead_letter_store is not None else get_dead_letter_store()
        if retention_days is None:
            from subscription_pipeline.config import get_config

            retention_days = get_config().retention_settings.retention_days
        self.retention_days = retention_days
        self._clock = clock if clock is not None else get_time_controller()
        self._cleanup_lock = threading.Lock()

    def cleanup_old_events(self, retention_days: Optional[int] = None) -> CleanupResult:
        """Delete processed events and resolved DLQ entries older than the retention window.

        Unprocessed events and unresolved entries are never deleted. Single
        flight: a call made while another cleanup runs returns skipped=True.

        Args:
            retention_days: Override of the configured window

        Returns:
            CleanupResult with deleted counts

        Raises:
            ValueError: If retention_days is not positive
        """
        days = self.retention_days if retention_days is None else retention_days
        if days <= 0:
            raise ValueError(f"retention_days must be positive, got {days}")

        now = self._clock.now()
        if not self._cleanup_lock.acquire(blocking=False):
            logger.info("cleanup_skipped", reason="already_running")
            return CleanupResult(retention_days=days, skipped=True, timestamp=now)

        try:
            cutoff = now - timedelta(days=days)
            deleted_events = self.events.purge_processed_before(cutoff)
            deleted_dlq = self.dead_letters.purge_resolved_before(cutoff)
        finally:
            self._cleanup_lock.release()

        logger.info(
            "cleanup_completed",
            deleted_events=deleted_events,
            deleted_dlq=deleted_dlq,
            retention_days=days,
            cutoff=cutoff.isoformat(),
        )
        return CleanupResult(
            deleted_events=deleted_events,
            deleted_dlq=deleted_dlq,
            retention_days=days,
            timestamp=now,
        )

    def subscription_health(self) -> List[PlatformSubscriptionHealth]:
        """Subscription counts by status for each platform."""
        return [PlatformSubscriptionHealth(**row) for row in self.subscriptions.counts_by_platform()]

    def dlq_summary(self) -> List[PlatformDlqSummary]:
        """Pending, resolved and next retry per platform."""
        return [PlatformDlqSummary(**row) for row in self.dead_letters.summary_by_platform()]

    def recent_errors(self, limit: int = 100) -> List[RecentError]:
        """Most recent events that failed processing."""
        return [
            RecentError(
                event_id=event.id,
                platform=event.platform,
                notification_type=event.notification_type,
                original_transaction_id=event.original_transaction_id,
                processing_error=event.processing_error,
                received_at=event.received_at,
            )
            for event in self.events.recent_errors(limit)
        ]


class PeriodicJobRunner:
    """Background thread running maintenance jobs on fixed intervals.

    Jobs run one after another on the runner thread; an exception in one job
    is logged and does not stop the runner.

    Example:
        runner = PeriodicJobRunner(poll_interval=1.0)
        runner.add_job("process_dlq", scheduler.process_dlq, interval=300)
        runner.start()
        ...
        runner.stop()
    """

    def __init__(self, poll_interval: float = 1.0):
        self.poll_interval = poll_interval
        self._jobs: List[dict] = []
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def add_job(self, name: str, func: Callable[[], object], interval: float) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self._jobs.append({"name": name, "func": func, "interval": interval, "elapsed": 0.0})

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="periodic-jobs", daemon=True)
        self._thread.start()
        logger.info("job_runner_started", jobs=[job["name"] for job in self._jobs])

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        if self._thread is None:
            return
        self._stop.set()
        self._thread.join(timeout)
        if self._thread.is_alive():
            # Still inside a job; start() stays a no-op until it exits
            logger.warning("job_runner_stop_timed_out", timeout=timeout)
            return
        self._thread = None
        logger.info("job_runner_stopped")

    def run_pending(self, elapsed: float) -> List[str]:
        """Advance every job by elapsed seconds and run the ones that are due.

        Returns:
            Names of the jobs that ran
        """
        ran = []
        for job in self._jobs:
            job["elapsed"] += elapsed
            if job["elapsed"] < job["interval"]:
                continue
            job["elapsed"] = 0.0
            ran.append(job["name"])
            try:
                job["func"]()
            except Exception as e:
                logger.error(
                    "periodic_job_failed",
                    job=job["name"],
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )
        return ran

    def _loop(self) -> None:
        while not self._stop.wait(self.poll_interval):
            self.run_pending(self.poll_interval)


_service_instance: Optional[MaintenanceService] = None
_service_lock = threading.Lock()


def get_maintenance_service() -> MaintenanceService:
    """Get global maintenance service instance (singleton)."""
    global _service_instance
    if _service_instance is None:
        with _service_lock:
            if _service_instance is None:
                _service_instance = MaintenanceService()
    return _service_instance


def reset_maintenance_service() -> None:
    """Drop the global service so the next call rebuilds it (for testing)."""
    global _service_instance
    _service_instance = None


def build_job_runner() -> PeriodicJobRunner:
    """Job runner wired to the global scheduler and maintenance service from configuration."""
    from subscription_pipeline.config import get_config
    from subscription_pipeline.services.retry_scheduler import get_retry_scheduler

    settings = get_config().scheduler_settings
    runner = PeriodicJobRunner()
    runner.add_job("process_dlq", get_retry_scheduler().process_dlq, settings.dlq_interval_seconds)
    runner.add_job("cleanup_old_events", get_maintenance_service().cleanup_old_events, settings.cleanup_interval_seconds)
    return runner
