"""Virtual clock shared by the stores and the retry scheduler.

Responsibilities:
- Maintain the current pipeline time (UTC)
- Advance time (days, hours, minutes) so backed-off retries become due
- Reset back to wall-clock time
"""

import threading
from datetime import datetime, timedelta, timezone
from typing import Optional

from subscription_pipeline.logging_config import get_logger

logger = get_logger(__name__)


def utc_now() -> datetime:
    """Current wall-clock time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class TimeController:
    """Clock with an optional offset from wall-clock time.

    Without any advance the controller follows real time. Advancing adds a
    fixed offset, so time keeps flowing from the new point.

    Args:
        start: optional fixed starting time; when given, the clock is frozen
            there and only moves on advance_time / set_time
    """

    def __init__(self, start: Optional[datetime] = None) -> None:
        self._lock = threading.RLock()
        self._offset = timedelta(0)
        self._frozen_at: Optional[datetime] = start

        logger.debug("time_controller_initialized", frozen=start is not None)

    def now(self) -> datetime:
        """Get the current pipeline time.

        Returns:
            Aware UTC datetime
        """
        with self._lock:
            if self._frozen_at is not None:
                return self._frozen_at + self._offset
            return utc_now() + self._offset

    def advance_time(self, days: int = 0, hours: int = 0, minutes: int = 0, seconds: int = 0) -> dict:
        """Advance the clock.

        Args:
            days: number of days to advance
            hours: number of hours to advance
            minutes: number of minutes to advance
            seconds: number of seconds to advance

        Returns:
            Dictionary with previous_time, current_time and advanced_seconds

        Raises:
            ValueError: if any value is negative
        """
        if days < 0 or hours < 0 or minutes < 0 or seconds < 0:
            raise ValueError("Cannot advance time backwards, negative values are not allowed")

        delta = timedelta(days=days, hours=hours, minutes=minutes, seconds=seconds)
        with self._lock:
            previous = self.now()
            self._offset += delta
            current = self.now()

        if delta:
            logger.info(
                "time_advanced",
                previous_time=previous.isoformat(),
                current_time=current.isoformat(),
                advanced_seconds=delta.total_seconds(),
            )

        return {
            "previous_time": previous,
            "current_time": current,
            "advanced_seconds": delta.total_seconds(),
        }

    def set_time(self, moment: datetime) -> dict:
        """Set the clock to a specific moment, which must not be in its past.

        Raises:
            ValueError: If moment is before the current pipeline time
        """
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)

        with self._lock:
            previous = self.now()
            if moment < previous:
                raise ValueError(
                    f"cannot set time backwards, current: {previous.isoformat()}, "
                    f"requested: {moment.isoformat()}"
                )
            self._offset += moment - previous

        logger.info("time_set", previous_time=previous.isoformat(), current_time=moment.isoformat())
        return {"previous_time": previous, "current_time": moment}

    def reset_time(self) -> dict:
        """Reset the clock to real current time."""
        with self._lock:
            previous = self.now()
            self._offset = timedelta(0)
            self._frozen_at = None
            current = self.now()

        logger.info("time_reset", previous_time=previous.isoformat(), current_time=current.isoformat())
        return {"previous_time": previous, "current_time": current}


_time_controller_instance: Optional[TimeController] = None
_controller_lock = threading.Lock()


def get_time_controller() -> TimeController:
    global _time_controller_instance
    if _time_controller_instance is None:
        with _controller_lock:
            if _time_controller_instance is None:
                _time_controller_instance = TimeController()
    return _time_controller_instance


def reset_time_controller() -> None:
    """Reset the global clock to real time.

    The instance is kept: stores hold a reference to it.
    """
    get_time_controller().reset_time()
