"""
StreamFeed Import Scheduler
==========================

Triggers import cycles on a recurring schedule anchored at a start date:
``start``, ``start + interval``, ``start + 2 * interval`` and so on, with a
daily, weekly or biweekly interval. Missed occurrences are not caught up;
the next run is the next occurrence after the current time.

Scheduled runs delete consumed items from the remote queue by default.
With a ``settings_loader`` the settings are reloaded before every due
cycle, so changed credentials and cycle tunables apply to the next run.
"""

import time
from datetime import datetime, timedelta
from typing import Callable, Optional

from ..config.settings import ScheduleFrequency, ScheduleSettings, StreamFeedSettings
from ..database.models import ImportOutcome
from ..pipeline.coordinator import CycleConfig, ImportCoordinator
from ..utils.exceptions import ConfigurationError, ErrorCode, StreamFeedError
from ..utils.logging import get_logger_for_component


FREQUENCY_INTERVALS = {
    ScheduleFrequency.DAILY: timedelta(days=1),
    ScheduleFrequency.WEEKLY: timedelta(days=7),
    ScheduleFrequency.BIWEEKLY: timedelta(days=14),
}


class ImportScheduler:
    """Runs ``ImportCoordinator.run_cycle`` when a scheduled occurrence is due."""

    def __init__(
        self,
        coordinator: ImportCoordinator,
        schedule: ScheduleSettings,
        delete_after_download: bool = True,
        clock: Callable[[], datetime] = datetime.now,
        sleep: Callable[[float], None] = time.sleep,
        settings_loader: Optional[Callable[[], StreamFeedSettings]] = None,
    ):
        if schedule.start_datetime is None:
            raise ConfigurationError(
                "A start date is required for scheduled import",
                config_key="schedule.start",
                error_code=ErrorCode.CONFIG_MISSING,
            )

        self.coordinator = coordinator
        self.schedule = schedule
        self.delete_after_download = delete_after_download
        self.clock = clock
        self.sleep = sleep
        self.settings_loader = settings_loader
        self.logger = get_logger_for_component("scheduler")

        self.start = schedule.start_datetime
        self.interval = FREQUENCY_INTERVALS[schedule.frequency]
        self.next_run: Optional[datetime] = None
        self.running = False

    def next_run_after(self, now: datetime) -> datetime:
        """First occurrence strictly after ``now``."""
        if now < self.start:
            return self.start
        elapsed_periods = (now - self.start) // self.interval
        return self.start + (elapsed_periods + 1) * self.interval

    def first_run_at_or_after(self, now: datetime) -> datetime:
        if now <= self.start:
            return self.start
        if (now - self.start) % self.interval == timedelta(0):
            return now
        return self.next_run_after(now)

    def run_pending(self, now: Optional[datetime] = None) -> Optional[ImportOutcome]:
        """Run a cycle if one is due.

        Returns:
            The cycle outcome, or None when nothing was due
        """
        now = now or self.clock()
        if self.next_run is None:
            self.next_run = self.first_run_at_or_after(now)
            self.logger.info(f"Next scheduled import at {self.next_run.isoformat()}")

        if now < self.next_run:
            return None

        self.logger.info(f"Scheduled import due ({self.next_run.isoformat()})")
        try:
            outcome = self.coordinator.run_cycle(
                delete_after_download=self.delete_after_download, **self._cycle_overrides()
            )
        finally:
            self.next_run = self.next_run_after(now)
            self.logger.info(f"Next scheduled import at {self.next_run.isoformat()}")

        return outcome

    def _cycle_overrides(self) -> dict:
        if self.settings_loader is None:
            return {}
        try:
            settings = self.settings_loader()
        except StreamFeedError as e:
            self.logger.warning(f"Reloading settings failed, keeping the previous ones: {e}")
            return {}
        return {"config": CycleConfig.from_settings(settings)}

    def run_forever(self, poll_seconds: Optional[int] = None, max_iterations: Optional[int] = None) -> None:
        """Poll the schedule until ``stop()`` is called.

        Args:
            poll_seconds: Seconds between schedule checks
            max_iterations: Stop after this many checks (None = unbounded)
        """
        if not self.schedule.enabled:
            raise ConfigurationError(
                "Scheduled import is disabled",
                config_key="schedule.enabled",
            )

        poll = poll_seconds or self.schedule.poll_seconds
        self.running = True
        iterations = 0
        self.logger.info(
            f"Scheduler started: {self.schedule.frequency.value} from {self.start.isoformat()}"
        )

        while self.running:
            try:
                outcome = self.run_pending()
                if outcome is not None and not outcome.skipped_run:
                    self.logger.info(f"Scheduled import finished: {outcome.summary()}")
            except StreamFeedError as e:
                self.logger.error(f"Scheduled import failed: {e}", extra=e.to_dict())

            iterations += 1
            if max_iterations is not None and iterations >= max_iterations:
                break
            self.sleep(poll)

        self.running = False
        self.logger.info("Scheduler stopped")

    def stop(self) -> None:
        self.running = False
