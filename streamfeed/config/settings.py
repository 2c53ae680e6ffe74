"""
StreamFeed Configuration System
==============================

Configuration management with environment variables and Pydantic models.
Environment variables override Field defaults with clear precedence.

Credentials are read through ``get_settings()`` at call time, so calling
``get_settings(reload=True)`` between cycles hot-swaps them.
"""

from datetime import date, datetime, time
from enum import Enum
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings

from ..utils.exceptions import ConfigurationError, ErrorCode
from ..utils.validators import validate_url


DEFAULT_ENDPOINT_URL = "https://contentstream.cfemedia.com/api/"


class LogLevel(str, Enum):
    """Available log levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class PostStatus(str, Enum):
    """Status new records are created with."""
    DRAFT = "draft"
    PUBLISH = "publish"


class ScheduleFrequency(str, Enum):
    """Recurrence of the scheduled import."""
    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"


class FeedSettings(BaseModel):
    """Remote Content Stream connection."""
    endpoint_url: str = Field(default=DEFAULT_ENDPOINT_URL, description="Content Stream API endpoint")
    username: str = Field(default="", description="Content Stream account username")
    password: str = Field(default="", description="Content Stream account password")
    feed_id: str = Field(default="", description="Content Stream feed definition ID")
    page_size: int = Field(default=10, ge=1, le=100, description="Items requested per list call")
    delete_after_download: bool = Field(default=True, description="Remove items from the remote queue after scheduled downloads")
    verify_tls: bool = Field(default=True, description="Verify TLS host and peer certificates")
    request_timeout: int = Field(default=30, ge=1, le=300, description="Request timeout in seconds")

    @field_validator("endpoint_url")
    @classmethod
    def validate_endpoint(cls, v):
        """Endpoint must be an http(s) URL."""
        v = v.strip()
        if not validate_url(v):
            raise ValueError("endpoint_url must be an absolute http:// or https:// URL")
        return v

    @property
    def has_credentials(self) -> bool:
        return bool(self.username and self.password and self.feed_id)


class StagingSettings(BaseModel):
    """Local staging area layout."""
    root: str = Field(default="data/content-stream", description="Staging directory for downloaded documents")
    asset_folder: str = Field(default="syndicationAssets", description="Asset folder name, also the token rewritten in body text")
    imported_folder: str = Field(default="imported", description="Archive subfolder for consumed documents")
    failed_folder: str = Field(default="failed", description="Quarantine subfolder for documents over the attempt cap")
    asset_base_url: str = Field(
        default="/uploads/content-stream/syndicationAssets",
        description="Public base URL assets are served from",
    )
    lock_file: bool = Field(default=True, description="Guard the staging directory with a process lock file")
    max_import_attempts: int = Field(default=0, ge=0, le=1000, description="Quarantine after this many failed imports (0 = never)")
    asset_workers: int = Field(default=1, ge=1, le=16, description="Concurrent asset downloads per document")

    @field_validator("asset_folder", "imported_folder", "failed_folder")
    @classmethod
    def validate_folder_name(cls, v):
        """Folder names are single path components."""
        v = v.strip().strip("/")
        if not v or "/" in v or v in (".", ".."):
            raise ValueError("folder names must be a single path component")
        return v


class PublishingSettings(BaseModel):
    """Defaults applied to records created from staged documents."""
    post_status: PostStatus = Field(default=PostStatus.DRAFT, description="Status for new records")
    author_id: Optional[int] = Field(default=None, description="Host author ID to post as")
    category_id: Optional[int] = Field(default=None, description="Host category ID")


class ScheduleSettings(BaseModel):
    """Recurring import configuration."""
    enabled: bool = Field(default=False, description="Enable scheduled import")
    start: Optional[Union[datetime, date]] = Field(default=None, description="First scheduled run")
    frequency: ScheduleFrequency = Field(default=ScheduleFrequency.DAILY, description="Recurrence")
    poll_seconds: int = Field(default=60, ge=1, le=3600, description="Scheduler loop poll interval")

    @model_validator(mode="after")
    def validate_start_when_enabled(self):
        """A start date is required when scheduled import is enabled."""
        if self.enabled and self.start is None:
            raise ValueError("A start date is required when scheduled import is enabled")
        return self

    @property
    def start_datetime(self) -> Optional[datetime]:
        if self.start is None:
            return None
        if isinstance(self.start, datetime):
            return self.start
        return datetime.combine(self.start, time.min)


class RetrySettings(BaseModel):
    """Transport retry behaviour for downloads."""
    max_attempts: int = Field(default=3, ge=1, le=10, description="Attempts per download")
    base_delay: float = Field(default=1.0, ge=0.0, le=60.0, description="Base backoff delay in seconds")
    max_delay: float = Field(default=30.0, ge=0.0, le=600.0, description="Maximum backoff delay in seconds")


class DatabaseSettings(BaseModel):
    """Database configuration."""
    path: str = Field(default="data/streamfeed.db", description="SQLite database file path")
    pool_size: int = Field(default=5, ge=1, le=20, description="Connection pool size")


class LoggingSettings(BaseModel):
    """Logging configuration."""
    level: LogLevel = Field(default=LogLevel.INFO, description="Global log level")
    file_path: Optional[str] = Field(default="logs/streamfeed.log", description="Log file path")
    max_file_size_mb: int = Field(default=10, ge=1, le=100, description="Max log file size in MB")
    backup_count: int = Field(default=5, ge=1, le=20, description="Number of log backup files")
    structured_logging: bool = Field(default=False, description="Use structured JSON logging")
    console_logging: bool = Field(default=True, description="Enable console logging")


class StreamFeedSettings(BaseSettings):
    """Main application settings."""

    feed: FeedSettings = Field(default_factory=FeedSettings)
    staging: StagingSettings = Field(default_factory=StagingSettings)
    publishing: PublishingSettings = Field(default_factory=PublishingSettings)
    schedule: ScheduleSettings = Field(default_factory=ScheduleSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    app_name: str = Field(default="StreamFeed", description="Application name")
    version: str = Field(default="0.3.0", description="Application version")
    debug: bool = Field(default=False, description="Enable debug mode")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "env_nested_delimiter": "__",
        "env_prefix": "STREAMFEED_",
    }

    def validate_configuration(self) -> None:
        """Validate complete configuration."""
        errors = []

        if not self.feed.has_credentials:
            errors.append("Username, password, and feed ID are required")

        for label, raw_path in (
            ("database path", Path(self.database.path).parent),
            ("staging root", Path(self.staging.root)),
        ):
            try:
                raw_path.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                errors.append(f"Invalid {label}: {e}")

        if self.logging.file_path:
            try:
                Path(self.logging.file_path).parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                errors.append(f"Invalid log file path: {e}")

        if errors:
            raise ConfigurationError(
                f"Configuration validation failed: {'; '.join(errors)}",
                error_code=ErrorCode.CONFIG_INVALID,
            )

    def get_effective_log_level(self) -> str:
        """Get effective log level considering debug mode."""
        if self.debug:
            return "DEBUG"
        return self.logging.level.value


def load_settings(validate: bool = True) -> StreamFeedSettings:
    """Load settings from environment variables and defaults.

    Args:
        validate: Run ``validate_configuration`` on the loaded settings

    Returns:
        Loaded settings

    Raises:
        ConfigurationError: If configuration is invalid
    """
    from dotenv import load_dotenv
    load_dotenv()

    try:
        settings = StreamFeedSettings()
        if validate:
            settings.validate_configuration()
        return settings

    except ConfigurationError:
        raise
    except Exception as e:
        raise ConfigurationError(
            f"Failed to initialize settings: {e}",
            error_code=ErrorCode.CONFIG_INVALID,
        ) from e


_settings: Optional[StreamFeedSettings] = None


def get_settings(reload: bool = False) -> StreamFeedSettings:
    """Get the process settings instance.

    Args:
        reload: Force reload of settings (picks up changed credentials)

    Returns:
        Settings instance
    """
    global _settings

    if _settings is None or reload:
        _settings = load_settings(validate=False)

    return _settings


def set_settings(settings: Optional[StreamFeedSettings]) -> None:
    """Replace the process settings instance (tests, embedding hosts)."""
    global _settings
    _settings = settings
