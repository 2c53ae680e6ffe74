#!/usr/bin/env python3
"""
StreamFeed Scheduler Runner
==========================

Entry point for running scheduled Content Stream imports as a service.
Handles initialization, startup, and graceful shutdown.
"""

import signal
import sys

from streamfeed.config.settings import get_settings
from streamfeed.pipeline.factory import build_coordinator
from streamfeed.scheduler.import_scheduler import ImportScheduler
from streamfeed.utils.exceptions import StreamFeedError
from streamfeed.utils.logging import configure_application_logging, get_logger_for_component


def main() -> int:
    settings = get_settings()
    configure_application_logging(
        log_level=settings.get_effective_log_level(),
        log_file=settings.logging.file_path,
        enable_console=settings.logging.console_logging,
        structured_logging=settings.logging.structured_logging,
        max_file_size_mb=settings.logging.max_file_size_mb,
        backup_count=settings.logging.backup_count,
    )
    logger = get_logger_for_component("scheduler_service")

    try:
        settings.validate_configuration()
        scheduler = ImportScheduler(
            build_coordinator(),
            settings.schedule,
            delete_after_download=settings.feed.delete_after_download,
            settings_loader=lambda: get_settings(reload=True),
        )
    except StreamFeedError as e:
        logger.error(f"Cannot start scheduler: {e}", extra=e.to_dict())
        return 1

    def _shutdown(signum, frame):
        logger.info(f"Received signal {signum}, stopping after the current check")
        scheduler.stop()

    signal.signal(signal.SIGTERM, _shutdown)
    signal.signal(signal.SIGINT, _shutdown)

    try:
        scheduler.run_forever()
    except StreamFeedError as e:
        logger.error(f"Scheduler stopped: {e}", extra=e.to_dict())
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
