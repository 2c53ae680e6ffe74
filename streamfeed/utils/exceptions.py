"""
StreamFeed Custom Exceptions
===========================

Custom exception hierarchy for StreamFeed with error codes, context
information, and user-friendly error messages.

Remote queue failures, staging failures and document failures each have
their own branch so the import coordinator can decide per item whether a
failure is isolated (record and continue) or cycle-fatal (list errors).
"""

from typing import Optional, Dict, Any
from enum import Enum


class ErrorCode(str, Enum):
    """Error codes for categorizing exceptions."""

    # Configuration errors (C001-C099)
    CONFIG_INVALID = "C001"
    CONFIG_MISSING = "C002"

    # Database / host store errors (D001-D099)
    DATABASE_CONNECTION = "D001"
    DATABASE_SCHEMA = "D002"
    DATABASE_CONSTRAINT = "D003"
    DATABASE_TRANSACTION = "D004"
    DATABASE_ERROR = "D006"

    # Remote queue errors (Q001-Q099)
    QUEUE_AUTH_FAILED = "Q001"
    QUEUE_NETWORK_ERROR = "Q002"
    QUEUE_TIMEOUT = "Q003"
    QUEUE_PROTOCOL_ERROR = "Q004"
    QUEUE_ITEM_NOT_FOUND = "Q005"
    QUEUE_SERVER_ERROR = "Q006"

    # Staging errors (S001-S099)
    STAGING_WRITE_FAILED = "S001"
    STAGING_CONFLICT = "S002"
    STAGING_DISK_FULL = "S003"
    STAGING_PERMISSION_DENIED = "S004"

    # Document errors (P001-P099)
    DOCUMENT_MALFORMED = "P001"
    DOCUMENT_MISSING_TITLE = "P002"
    DOCUMENT_ENCODING = "P003"

    # Publishing errors (L001-L099)
    PUBLISH_FAILED = "L001"
    TAG_CREATE_FAILED = "L002"

    # Run control (R001-R099)
    RUN_ALREADY_ACTIVE = "R001"


class StreamFeedError(Exception):
    """Base exception for all StreamFeed errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[ErrorCode] = None,
        context: Optional[Dict[str, Any]] = None,
        user_message: Optional[str] = None,
        recoverable: bool = False,
    ):
        """Initialize StreamFeed error.

        Args:
            message: Technical error message for logging
            error_code: Categorized error code
            context: Additional context information
            user_message: User-friendly error message
            recoverable: Whether the error is recoverable
        """
        super().__init__(message)
        self.error_code = error_code
        self.context = context or {}
        self.user_message = user_message or message
        self.recoverable = recoverable

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code.value if self.error_code else None,
            "error_message": str(self),
            "user_message": self.user_message,
            "context": self.context,
            "recoverable": self.recoverable,
        }

    def __str__(self) -> str:
        """String representation with error code."""
        if self.error_code:
            return f"[{self.error_code.value}] {super().__str__()}"
        return super().__str__()


def _passthrough(kwargs: Dict[str, Any], *consumed: str) -> Dict[str, Any]:
    return {k: v for k, v in kwargs.items() if k not in consumed}


class ConfigurationError(StreamFeedError):
    """Configuration-related errors."""

    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs):
        """Initialize configuration error.

        Args:
            message: Error message
            config_key: Configuration key that caused the error
            **kwargs: Additional arguments for StreamFeedError
        """
        context = kwargs.get("context", {})
        if config_key:
            context["config_key"] = config_key

        super().__init__(
            message=message,
            error_code=kwargs.get("error_code", ErrorCode.CONFIG_INVALID),
            context=context,
            user_message=kwargs.get("user_message", f"Configuration error: {message}"),
            **_passthrough(kwargs, "context", "error_code", "user_message"),
        )


class DatabaseError(StreamFeedError):
    """Host store / database errors."""

    def __init__(self, message: str, query: Optional[str] = None, **kwargs):
        context = kwargs.get("context", {})
        if query:
            context["query"] = query

        super().__init__(
            message=message,
            error_code=kwargs.get("error_code", ErrorCode.DATABASE_CONNECTION),
            context=context,
            user_message=kwargs.get("user_message", "Database operation failed"),
            recoverable=kwargs.get("recoverable", True),
            **_passthrough(kwargs, "context", "error_code", "user_message", "recoverable"),
        )


class PublishError(DatabaseError):
    """Creating a content record in the host store failed."""

    def __init__(self, message: str, title: Optional[str] = None, **kwargs):
        context = kwargs.get("context", {})
        if title:
            context["title"] = title
        kwargs["context"] = context
        kwargs.setdefault("error_code", ErrorCode.PUBLISH_FAILED)
        kwargs.setdefault("user_message", "Publishing the record failed")
        super().__init__(message, **kwargs)


# Remote queue errors


class RemoteQueueError(StreamFeedError):
    """Errors raised by the remote queue client."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        uid: Optional[str] = None,
        **kwargs,
    ):
        """Initialize remote queue error.

        Args:
            message: Error message
            operation: Remote operation name (getContentList, getArticle, ...)
            uid: Queue item uid, when the call targets one item
            **kwargs: Additional arguments for StreamFeedError
        """
        context = kwargs.get("context", {})
        if operation:
            context["operation"] = operation
        if uid:
            context["uid"] = uid

        super().__init__(
            message=message,
            error_code=kwargs.get("error_code", ErrorCode.QUEUE_PROTOCOL_ERROR),
            context=context,
            user_message=kwargs.get(
                "user_message", f"Content Stream request failed: {message}"
            ),
            recoverable=kwargs.get("recoverable", True),
            **_passthrough(kwargs, "context", "error_code", "user_message", "recoverable"),
        )


class AuthError(RemoteQueueError):
    """Credentials were rejected by the remote service."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("error_code", ErrorCode.QUEUE_AUTH_FAILED)
        kwargs.setdefault("user_message", "Content Stream rejected the credentials")
        kwargs.setdefault("recoverable", False)
        super().__init__(message, **kwargs)


class TransportError(RemoteQueueError):
    """Network, timeout, or server-side transport failure."""

    def __init__(self, message: str, url: Optional[str] = None, **kwargs):
        context = kwargs.get("context", {})
        if url:
            context["url"] = url
        kwargs["context"] = context
        kwargs.setdefault("error_code", ErrorCode.QUEUE_NETWORK_ERROR)
        kwargs.setdefault("user_message", "Network connection failed")
        super().__init__(message, **kwargs)


class ProtocolError(RemoteQueueError):
    """Malformed or unexpected response from the remote service."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("error_code", ErrorCode.QUEUE_PROTOCOL_ERROR)
        kwargs.setdefault("recoverable", False)
        super().__init__(message, **kwargs)


class NotFoundError(RemoteQueueError):
    """The queue item is no longer available (consumed elsewhere)."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("error_code", ErrorCode.QUEUE_ITEM_NOT_FOUND)
        kwargs.setdefault("recoverable", False)
        super().__init__(message, **kwargs)


class MalformedDocumentError(ProtocolError):
    """A staged document cannot be parsed as the expected schema."""

    def __init__(self, message: str, path: Optional[str] = None, **kwargs):
        context = kwargs.get("context", {})
        if path:
            context["path"] = path
        kwargs["context"] = context
        kwargs.setdefault("error_code", ErrorCode.DOCUMENT_MALFORMED)
        kwargs.setdefault("user_message", f"Document could not be parsed: {message}")
        super().__init__(message, **kwargs)


# Staging errors


class StagingError(StreamFeedError):
    """Local staging area errors."""

    def __init__(self, message: str, path: Optional[str] = None, **kwargs):
        context = kwargs.get("context", {})
        if path:
            context["path"] = path

        super().__init__(
            message=message,
            error_code=kwargs.get("error_code", ErrorCode.STAGING_WRITE_FAILED),
            context=context,
            user_message=kwargs.get("user_message", "Staging operation failed"),
            recoverable=kwargs.get("recoverable", True),
            **_passthrough(kwargs, "context", "error_code", "user_message", "recoverable"),
        )


class WriteError(StagingError):
    """Writing a downloaded resource to local storage failed."""

    pass


class ConflictError(StagingError):
    """An archive destination is already taken."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("error_code", ErrorCode.STAGING_CONFLICT)
        kwargs.setdefault("recoverable", False)
        super().__init__(message, **kwargs)


# Exception handling utilities


def handle_exception(
    exception: Exception,
    logger,
    operation: str,
    context: Optional[Dict[str, Any]] = None,
) -> StreamFeedError:
    """Convert generic exceptions to StreamFeed exceptions with logging.

    Args:
        exception: Original exception
        logger: Logger instance for error logging
        operation: Operation that was being performed
        context: Additional context information

    Returns:
        StreamFeed exception with proper categorization
    """
    context = context or {}
    context["operation"] = operation
    context["original_exception_type"] = type(exception).__name__

    if isinstance(exception, StreamFeedError):
        logger.error(f"Operation '{operation}' failed", extra=exception.to_dict())
        return exception

    elif isinstance(exception, (ConnectionError, TimeoutError)):
        error = TransportError(
            f"Network error during {operation}: {exception}",
            context=context,
        )

    elif isinstance(exception, PermissionError):
        error = WriteError(
            f"Permission denied during {operation}: {exception}",
            error_code=ErrorCode.STAGING_PERMISSION_DENIED,
            context=context,
            user_message="Access denied",
            recoverable=False,
        )

    elif isinstance(exception, OSError):
        error = WriteError(
            f"Filesystem error during {operation}: {exception}",
            context=context,
        )

    else:
        error = StreamFeedError(
            message=f"Unexpected error during {operation}: {exception}",
            context=context,
            user_message="An unexpected error occurred",
            recoverable=True,
        )

    logger.error(f"Operation '{operation}' failed", extra=error.to_dict())
    return error


def get_user_friendly_message(exception: Exception) -> str:
    """Get user-friendly error message for any exception."""
    if isinstance(exception, StreamFeedError):
        return exception.user_message

    return "An unexpected error occurred. Please try again later."
