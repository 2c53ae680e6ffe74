"""
StreamFeed Logging
==================

Console and rotating-file logging for the ``streamfeed`` logger tree.

Component loggers carry the import context of the work they log (queue
item uid, staged document path, cycle id). The JSON file format lifts
those fields into a ``context`` object so one cycle or one document can
be followed through the log.
"""

import json
import logging
import logging.handlers
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, MutableMapping, Optional, Tuple, Union

CONTEXT_FIELDS = ("component", "cycle_id", "uid", "path")

_STANDARD_RECORD_FIELDS = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


def _record_fields(record: logging.LogRecord) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """Split non-standard record attributes into import context and other extras."""
    context, extra = {}, {}
    for key, value in vars(record).items():
        if key in _STANDARD_RECORD_FIELDS:
            continue
        (context if key in CONTEXT_FIELDS else extra)[key] = value
    return context, extra


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        context, extra = _record_fields(record)
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if context:
            entry["context"] = context
        if extra:
            entry["extra"] = extra
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ConsoleFormatter(logging.Formatter):
    """Single-line console output with the import context appended."""

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, color: bool = True):
        super().__init__()
        self.color = color

    def format(self, record: logging.LogRecord) -> str:
        context, _ = _record_fields(record)
        level = f"{record.levelname:8}"
        if self.color and record.levelname in self.LEVEL_COLORS:
            level = f"{self.LEVEL_COLORS[record.levelname]}{level}{self.RESET}"

        line = f"[{datetime.fromtimestamp(record.created):%H:%M:%S}] {level} {record.name} - {record.getMessage()}"
        tags = " ".join(f"{key}={context[key]}" for key in CONTEXT_FIELDS[1:] if key in context)
        if tags:
            line += f" ({tags})"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class ComponentLogger(logging.LoggerAdapter):
    """Adapter that adds its context to every record without dropping per-call extras."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**kwargs.get("extra", {}), **self.extra}
        return msg, kwargs


def get_logger_for_component(
    component_name: str,
    uid: Optional[str] = None,
    path: Optional[str] = None,
    cycle_id: Optional[str] = None,
) -> ComponentLogger:
    """Logger for ``streamfeed.<component_name>`` carrying the given import context."""
    context = {"component": component_name}
    if uid:
        context["uid"] = uid
    if path:
        context["path"] = path
    if cycle_id:
        context["cycle_id"] = cycle_id
    return ComponentLogger(logging.getLogger(f"streamfeed.{component_name}"), context)


def configure_application_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = "logs/streamfeed.log",
    enable_console: bool = True,
    structured_logging: bool = False,
    max_file_size_mb: int = 10,
    backup_count: int = 5,
) -> logging.Logger:
    """Install handlers on the ``streamfeed`` logger.

    Args:
        log_level: Level name for the ``streamfeed`` logger
        log_file: Rotating JSON log file; None or empty disables file output
        enable_console: Log to stdout
        structured_logging: JSON instead of colored lines on the console
        max_file_size_mb: Rotation size of the log file
        backup_count: Rotated files to keep

    Returns:
        The configured ``streamfeed`` logger
    """
    logger = logging.getLogger("streamfeed")
    logger.setLevel(getattr(logging, log_level.upper()))
    # Reconfiguring replaces handlers instead of stacking them
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    if enable_console:
        console = logging.StreamHandler(sys.stdout)
        console.setFormatter(
            StructuredFormatter() if structured_logging else ConsoleFormatter(color=sys.stdout.isatty())
        )
        logger.addHandler(console)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_path,
            maxBytes=max_file_size_mb * 1024 * 1024,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(StructuredFormatter())
        logger.addHandler(file_handler)

    for noisy in ("urllib3", "requests"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return logger


class PerformanceLogger:
    """Times a block and logs its outcome.

    ``duration_seconds`` is available after the block exits, whether or not
    it raised.
    """

    def __init__(self, logger: Union[logging.Logger, logging.LoggerAdapter], operation: str, **context):
        self.logger = logger
        self.operation = operation
        self.context = context
        self.duration_seconds = 0.0
        self._started: Optional[float] = None

    def __enter__(self) -> "PerformanceLogger":
        self._started = time.monotonic()
        self.logger.debug(f"Starting {self.operation}", extra=self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.duration_seconds = time.monotonic() - self._started
        context = {**self.context, "duration_seconds": round(self.duration_seconds, 3), "success": exc_type is None}
        if exc_type is None:
            self.logger.info(f"Completed {self.operation} in {self.duration_seconds:.3f}s", extra=context)
        else:
            self.logger.error(f"Failed {self.operation} in {self.duration_seconds:.3f}s", extra=context)
