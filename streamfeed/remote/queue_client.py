"""
Content Stream Queue Client
==========================

Client for the remote Content Stream queue. The service exposes three
operations, all authenticated with the account credentials and feed
definition ID:

- ``getContentList``: page through queued items
- ``getArticle``: document and asset URLs for one item
- ``deleteFromQueue``: acknowledge a consumed item

Every response carries ``errorOccurred``/``errorDescription``; the flag is
honoured even on HTTP 200.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, List, Optional, Type, TypeVar

import requests
from pydantic import BaseModel, Field, ValidationError, field_validator

from ..config.settings import get_settings, FeedSettings
from ..database.models import AssetRef, ContentListPage, FetchedDocument, QueueItemRef
from ..utils.exceptions import (
    AuthError,
    ErrorCode,
    NotFoundError,
    ProtocolError,
    TransportError,
)
from ..utils.logging import get_logger_for_component
from ..utils.validators import filename_from_url
from .session import build_session, tls_verify_option


OP_LIST = "getContentList"
OP_FETCH = "getArticle"
OP_DELETE = "deleteFromQueue"

_AUTH_PATTERN = re.compile(
    r"(invalid|incorrect|wrong|bad)\s+(user\s*name|password|credentials?|login)"
    r"|authenticat|unauthori[sz]ed|access\s+denied|login\s+failed|not\s+authori[sz]ed",
    re.IGNORECASE,
)
_NOT_FOUND_PATTERN = re.compile(r"not\s+found|not\s+in\s+(the\s+)?queue|no\s+such|does\s+not\s+exist", re.IGNORECASE)

_DATE_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %I:%M:%S %p",
    "%Y-%m-%d",
)


@dataclass(frozen=True)
class FeedCredentials:
    """Account credentials sent with every remote call."""
    username: str
    password: str
    feed_id: str

    @classmethod
    def from_feed(cls, feed: FeedSettings) -> "FeedCredentials":
        return cls(username=feed.username, password=feed.password, feed_id=feed.feed_id)


def settings_credentials() -> FeedCredentials:
    """Read credentials from the current settings instance."""
    return FeedCredentials.from_feed(get_settings().feed)


# Wire schemas


def _as_list(value: Any) -> List[Any]:
    # Single-element arrays may arrive collapsed to a scalar
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


class _ServiceResponse(BaseModel):
    error_occurred: bool = Field(default=False, alias="errorOccurred")
    error_description: Optional[str] = Field(default=None, alias="errorDescription")

    model_config = {"populate_by_name": True, "extra": "ignore"}


class ContentListResponse(_ServiceResponse):
    arr_uid: List[str] = Field(default_factory=list, alias="arrUid")
    arr_title: List[str] = Field(default_factory=list, alias="arrTitle")
    arr_date_time: List[Optional[str]] = Field(default_factory=list, alias="arrDateTime")
    total_number_in_queue: int = Field(default=0, ge=0, alias="totalNumberInQueue")
    more_results: bool = Field(default=False, alias="moreResults")
    starting_offset: int = Field(default=0, ge=0, alias="startingOffset")
    ending_offset: int = Field(default=0, ge=0, alias="endingOffset")

    @field_validator("arr_uid", "arr_title", "arr_date_time", mode="before")
    @classmethod
    def wrap_scalars(cls, v):
        return [None if item is None else str(item) for item in _as_list(v)]


class ArticleResponse(_ServiceResponse):
    article_xml_url: Optional[str] = Field(default=None, alias="articleXMLURL")
    arr_article_asset_url: List[str] = Field(default_factory=list, alias="arrArticleAssetURL")
    arr_article_asset_file_name: List[str] = Field(default_factory=list, alias="arrArticleAssetFileName")

    @field_validator("arr_article_asset_url", "arr_article_asset_file_name", mode="before")
    @classmethod
    def wrap_scalars(cls, v):
        return [str(item) for item in _as_list(v) if item is not None]


class DeleteResponse(_ServiceResponse):
    pass


ResponseT = TypeVar("ResponseT", bound=_ServiceResponse)


def parse_remote_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse a remote timestamp, returning None when it cannot be read."""
    if not value:
        return None
    value = value.strip()
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    return None


class RemoteQueueClient(ABC):
    """Remote queue of content items awaiting download."""

    @abstractmethod
    def list(self, max_results: int = 10, offset: int = 0) -> ContentListPage:
        """List queued items starting at ``offset``."""

    @abstractmethod
    def fetch(self, uid: str) -> FetchedDocument:
        """Get the document URL and asset list of one item."""

    @abstractmethod
    def delete(self, uid: str) -> bool:
        """Remove an item from the queue.

        Returns:
            True when deleted, False when the item was already gone
        """

    def get_content_list_all(self, page_size: int = 10, max_pages: int = 1000) -> Iterator[QueueItemRef]:
        """Iterate over every queued item, page by page."""
        offset = 0
        for _ in range(max_pages):
            page = self.list(max_results=page_size, offset=offset)
            yield from page.items
            if not page.more_results or not page.items:
                return
            offset += len(page.items)


class HttpQueueClient(RemoteQueueClient):
    """Queue client speaking JSON over HTTP POST.

    Each operation is posted to ``{endpoint_url}/{operation}`` with the
    credentials merged into the request body. Credentials are obtained from
    ``credentials_provider`` on every call and never cached. Without a
    provider, explicitly given ``feed_settings`` supply the credentials;
    otherwise the current process settings are read on each call, so
    ``get_settings(reload=True)`` takes effect on the next request.
    """

    def __init__(
        self,
        feed_settings: Optional[FeedSettings] = None,
        credentials_provider: Optional[Callable[[], FeedCredentials]] = None,
        session: Optional[requests.Session] = None,
    ):
        settings = get_settings()
        self.feed = feed_settings or settings.feed
        if credentials_provider is None:
            credentials_provider = (
                settings_credentials if feed_settings is None else self._feed_credentials
            )
        self.credentials_provider = credentials_provider
        self.logger = get_logger_for_component("queue_client")
        self.session = session or build_session(
            app_name=settings.app_name,
            version=settings.version,
            retries=2,
            backoff_factor=0.5,
            allowed_methods=("POST",),
        )
        self._verify = tls_verify_option(self.feed.verify_tls, "queue_client")

    def _feed_credentials(self) -> FeedCredentials:
        return FeedCredentials.from_feed(self.feed)

    # Operations

    def list(self, max_results: int = 10, offset: int = 0) -> ContentListPage:
        response = self._call(
            OP_LIST,
            ContentListResponse,
            {"maxNumberResultsRequested": max_results, "offset": offset},
        )

        if len(response.arr_uid) != len(response.arr_title):
            raise ProtocolError(
                f"arrUid has {len(response.arr_uid)} entries but arrTitle has {len(response.arr_title)}",
                operation=OP_LIST,
            )
        dates = response.arr_date_time or [None] * len(response.arr_uid)
        if len(dates) != len(response.arr_uid):
            raise ProtocolError(
                f"arrUid has {len(response.arr_uid)} entries but arrDateTime has {len(dates)}",
                operation=OP_LIST,
            )

        items = []
        for uid, title, raw_date in zip(response.arr_uid, response.arr_title, dates):
            if not uid:
                raise ProtocolError("Empty uid in content list", operation=OP_LIST)
            published_at = parse_remote_datetime(raw_date)
            if raw_date and published_at is None:
                self.logger.debug(f"Unparseable date {raw_date!r} for item {uid}")
            items.append(QueueItemRef(uid=uid, title=title or "", published_at=published_at))

        self.logger.debug(
            f"Listed {len(items)} of {response.total_number_in_queue} queued items (offset {offset})"
        )
        return ContentListPage(
            items=items,
            total_in_queue=response.total_number_in_queue,
            more_results=response.more_results,
            starting_offset=response.starting_offset,
            ending_offset=response.ending_offset,
        )

    def fetch(self, uid: str) -> FetchedDocument:
        response = self._call(OP_FETCH, ArticleResponse, {"uid": uid}, uid=uid)

        if not response.article_xml_url:
            raise ProtocolError("Response has no articleXMLURL", operation=OP_FETCH, uid=uid)

        urls = response.arr_article_asset_url
        names = response.arr_article_asset_file_name
        assets = []
        for index, url in enumerate(urls):
            if not url:
                continue
            name = names[index] if index < len(names) and names[index] else filename_from_url(url)
            assets.append(AssetRef(url=url, filename=name))

        return FetchedDocument(uid=uid, document_url=response.article_xml_url, assets=assets)

    def delete(self, uid: str) -> bool:
        try:
            self._call(OP_DELETE, DeleteResponse, {"uid": uid}, uid=uid)
        except NotFoundError:
            self.logger.info(f"Item {uid} was already removed from the queue")
            return False
        return True

    # Transport

    def _operation_url(self, operation: str) -> str:
        return f"{self.feed.endpoint_url.rstrip('/')}/{operation}"

    def _call(
        self,
        operation: str,
        response_model: Type[ResponseT],
        params: Dict[str, Any],
        uid: Optional[str] = None,
    ) -> ResponseT:
        credentials = self.credentials_provider()
        body = {
            "username": credentials.username,
            "password": credentials.password,
            "feedDefinitionId": credentials.feed_id,
            **params,
        }
        url = self._operation_url(operation)

        try:
            http_response = self.session.post(
                url, json=body, timeout=self.feed.request_timeout, verify=self._verify
            )
        except requests.Timeout as e:
            raise TransportError(
                f"{operation} timed out: {e}",
                url=url,
                operation=operation,
                uid=uid,
                error_code=ErrorCode.QUEUE_TIMEOUT,
            ) from e
        except requests.RequestException as e:
            raise TransportError(f"{operation} failed: {e}", url=url, operation=operation, uid=uid) from e

        self._check_status(http_response, operation, uid)

        try:
            payload = http_response.json()
        except ValueError as e:
            raise ProtocolError(f"{operation} returned invalid JSON: {e}", operation=operation, uid=uid) from e

        if not isinstance(payload, dict):
            raise ProtocolError(f"{operation} returned a non-object payload", operation=operation, uid=uid)

        try:
            response = response_model.model_validate(payload)
        except ValidationError as e:
            raise ProtocolError(
                f"{operation} response does not match schema: {e.error_count()} errors",
                operation=operation,
                uid=uid,
                context={"validation_errors": e.errors(include_url=False)},
            ) from e

        if response.error_occurred:
            raise self._flagged_error(operation, response.error_description or "Unspecified error", uid)

        return response

    def _check_status(self, http_response: requests.Response, operation: str, uid: Optional[str]) -> None:
        status = http_response.status_code
        if status < 400:
            return

        message = f"{operation} returned HTTP {status}"
        if status in (401, 403):
            raise AuthError(message, operation=operation, uid=uid)
        if status == 404 and operation in (OP_FETCH, OP_DELETE):
            raise NotFoundError(message, operation=operation, uid=uid)
        if status >= 500 or status == 429:
            raise TransportError(
                message,
                url=http_response.url,
                operation=operation,
                uid=uid,
                error_code=ErrorCode.QUEUE_SERVER_ERROR,
            )
        raise ProtocolError(message, operation=operation, uid=uid)

    def _flagged_error(self, operation: str, description: str, uid: Optional[str]):
        message = f"{operation} failed: {description}"
        if operation in (OP_FETCH, OP_DELETE) and _NOT_FOUND_PATTERN.search(description):
            return NotFoundError(message, operation=operation, uid=uid)
        if _AUTH_PATTERN.search(description):
            return AuthError(message, operation=operation, uid=uid)
        return ProtocolError(message, operation=operation, uid=uid)
