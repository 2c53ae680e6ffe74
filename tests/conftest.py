"""
PyTest Configuration and Fixtures
=================================

Shared fixtures and fakes for StreamFeed tests.

The remote side is faked at two levels:
- ``FakeQueueClient`` implements the queue contract in memory
- ``FakeHttpSession`` stands in for ``requests.Session`` so the real
  ``AssetFetcher`` streams, writes and renames files as in production
"""

import os
import sys
from pathlib import Path
from typing import Dict, List, Optional, Union

import pytest
import requests

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).parent.parent))

# Keep the developer's .env and log directory out of test runs
os.environ["STREAMFEED_LOGGING__FILE_PATH"] = ""
os.environ["STREAMFEED_FEED__USERNAME"] = "test-user"
os.environ["STREAMFEED_FEED__PASSWORD"] = "test-password"
os.environ["STREAMFEED_FEED__FEED_ID"] = "1001"

from streamfeed.config.settings import (  # noqa: E402
    DatabaseSettings,
    FeedSettings,
    LoggingSettings,
    RetrySettings,
    StagingSettings,
    StreamFeedSettings,
    set_settings,
)
from streamfeed.database.connection import DatabaseConnection  # noqa: E402
from streamfeed.database.models import (  # noqa: E402
    AssetRef,
    ContentListPage,
    FetchedDocument,
    QueueItemRef,
)
from streamfeed.database.schema import DatabaseSchema  # noqa: E402
from streamfeed.ingestion.asset_fetcher import AssetFetcher  # noqa: E402
from streamfeed.parsing.content_parser import ContentParser  # noqa: E402
from streamfeed.pipeline.coordinator import CycleConfig, ImportCoordinator  # noqa: E402
from streamfeed.recovery.retry_logic import RetryConfig, RetryManager  # noqa: E402
from streamfeed.remote.queue_client import RemoteQueueClient  # noqa: E402
from streamfeed.staging.store import StagingStore  # noqa: E402
from streamfeed.storage.content_store import SqliteContentStore  # noqa: E402
from streamfeed.utils.exceptions import NotFoundError, TransportError  # noqa: E402


# ============================================================================
# Document builders
# ============================================================================


def make_article_xml(
    title: Optional[str] = "Sample Article",
    subheader: Optional[str] = None,
    abstract: Optional[str] = None,
    author: Optional[str] = None,
    bodytext: Optional[str] = None,
    copyright_notice: Optional[str] = None,
    keywords: Optional[str] = None,
) -> bytes:
    """Build a staged document in the Content Stream article schema."""
    fields = [
        ("title", title),
        ("subheader", subheader),
        ("abstract", abstract),
        ("author", author),
        ("bodytext", bodytext),
        ("copyright", copyright_notice),
        ("keywords", keywords),
    ]
    parts = ['<?xml version="1.0" encoding="UTF-8"?>', "<article>"]
    for name, value in fields:
        if value is None:
            continue
        if name == "bodytext":
            parts.append(f"<bodytext><![CDATA[{value}]]></bodytext>")
        else:
            parts.append(f"<{name}>{value}</{name}>")
    parts.append("</article>")
    return "\n".join(parts).encode("utf-8")


# ============================================================================
# HTTP fakes
# ============================================================================


class FakeResponse:
    """Minimal streaming response."""

    def __init__(self, status_code: int = 200, body: bytes = b"", chunk_size: int = 4, fail_after: Optional[int] = None):
        self.status_code = status_code
        self.body = body
        self.chunk_size = chunk_size
        self.fail_after = fail_after
        self.closed = False

    def iter_content(self, chunk_size: int = 1):
        for index, start in enumerate(range(0, len(self.body), self.chunk_size)):
            if self.fail_after is not None and index >= self.fail_after:
                raise requests.exceptions.ChunkedEncodingError("connection dropped mid-body")
            yield self.body[start:start + self.chunk_size]

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class FakeHttpSession:
    """Serves registered URLs; anything else is a connection error.

    A resource is bytes (HTTP 200), a ``FakeResponse``, an exception
    instance to raise, or a list of those consumed one per request.
    """

    def __init__(self, resources: Optional[Dict[str, object]] = None):
        self.resources: Dict[str, object] = dict(resources or {})
        self.requests: List[str] = []

    def get(self, url, stream=False, timeout=None, verify=True):
        self.requests.append(url)
        resource = self.resources.get(url)
        if isinstance(resource, list):
            resource = resource.pop(0) if len(resource) > 1 else resource[0]
        if resource is None:
            raise requests.ConnectionError(f"No route to {url}")
        if isinstance(resource, Exception):
            raise resource
        if isinstance(resource, FakeResponse):
            return resource
        return FakeResponse(200, resource)


# ============================================================================
# Queue fake
# ============================================================================


class FakeQueueClient(RemoteQueueClient):
    """In-memory remote queue."""

    def __init__(self):
        self.items: Dict[str, QueueItemRef] = {}
        self.documents: Dict[str, FetchedDocument] = {}
        self.list_error: Optional[Exception] = None
        self.fetch_errors: Dict[str, Exception] = {}
        self.delete_errors: Dict[str, Exception] = {}
        self.deleted: List[str] = []
        self.fetch_calls: List[str] = []

    def add_item(self, uid: str, title: str, assets: Optional[List[AssetRef]] = None) -> str:
        """Queue an item; returns the document URL to register with the HTTP fake."""
        document_url = f"https://cdn.example.com/articles/{uid}.xml"
        self.items[uid] = QueueItemRef(uid=uid, title=title)
        self.documents[uid] = FetchedDocument(uid=uid, document_url=document_url, assets=assets or [])
        return document_url

    def list(self, max_results: int = 10, offset: int = 0) -> ContentListPage:
        if self.list_error:
            raise self.list_error
        refs = list(self.items.values())
        page = refs[offset:offset + max_results]
        return ContentListPage(
            items=page,
            total_in_queue=len(refs),
            more_results=offset + len(page) < len(refs),
            starting_offset=offset,
            ending_offset=offset + max(len(page) - 1, 0),
        )

    def fetch(self, uid: str) -> FetchedDocument:
        self.fetch_calls.append(uid)
        if uid in self.fetch_errors:
            raise self.fetch_errors[uid]
        if uid not in self.documents:
            raise NotFoundError(f"{uid} is not in queue", uid=uid)
        return self.documents[uid]

    def delete(self, uid: str) -> bool:
        if uid in self.delete_errors:
            raise self.delete_errors[uid]
        if uid not in self.items:
            return False
        del self.items[uid]
        self.deleted.append(uid)
        return True


# ============================================================================
# Settings, database and component fixtures
# ============================================================================


@pytest.fixture
def test_settings(tmp_path):
    """Settings pointing at a temporary database and staging area."""
    settings = StreamFeedSettings(
        feed=FeedSettings(username="test-user", password="test-password", feed_id="1001"),
        staging=StagingSettings(
            root=str(tmp_path / "content-stream"),
            asset_base_url="/uploads/content-stream/syndicationAssets",
        ),
        database=DatabaseSettings(path=str(tmp_path / "streamfeed_test.db"), pool_size=2),
        retry=RetrySettings(max_attempts=2, base_delay=0.0, max_delay=0.0),
        logging=LoggingSettings(file_path=None, console_logging=False),
    )
    set_settings(settings)
    yield settings
    set_settings(None)


@pytest.fixture
def db_connection(test_settings):
    """Database connection manager on a fresh schema."""
    DatabaseSchema(test_settings.database.path).create_tables()
    connection = DatabaseConnection(test_settings.database.path, pool_size=2)
    yield connection
    connection.close_all_connections()


@pytest.fixture
def content_store(db_connection):
    return SqliteContentStore(db_connection)


@pytest.fixture
def staging_store(test_settings):
    store = StagingStore(test_settings.staging)
    store.ensure_layout()
    return store


@pytest.fixture
def http_session():
    return FakeHttpSession()


@pytest.fixture
def asset_fetcher(test_settings, http_session):
    """Real fetcher over the fake HTTP session, without backoff sleeps."""
    retry_manager = RetryManager(
        RetryConfig(max_attempts=2, base_delay=0.0, max_delay=0.0, jitter=False),
        sleep=lambda seconds: None,
    )
    return AssetFetcher(test_settings, session=http_session, retry_manager=retry_manager)


@pytest.fixture
def fake_queue():
    return FakeQueueClient()


@pytest.fixture
def content_parser(test_settings, content_store):
    return ContentParser(content_store, test_settings.publishing, test_settings.staging)


@pytest.fixture
def coordinator(fake_queue, asset_fetcher, staging_store, content_parser, content_store, test_settings):
    return ImportCoordinator(
        queue_client=fake_queue,
        asset_fetcher=asset_fetcher,
        staging=staging_store,
        parser=content_parser,
        host_store=content_store,
        config=CycleConfig.from_settings(test_settings),
    )


def queue_article(
    fake_queue: FakeQueueClient,
    http_session: FakeHttpSession,
    uid: str,
    title: str,
    document: Union[bytes, Exception, None] = None,
    assets: Optional[Dict[str, object]] = None,
) -> None:
    """Put an item on the fake queue and serve its document and assets."""
    asset_refs = [
        AssetRef(url=url, filename=url.rsplit("/", 1)[-1]) for url in (assets or {})
    ]
    document_url = fake_queue.add_item(uid, title, asset_refs)
    http_session.resources[document_url] = (
        document if document is not None else make_article_xml(title=title, bodytext=f"<p>{title}</p>")
    )
    for url, body in (assets or {}).items():
        http_session.resources[url] = body


@pytest.fixture
def transient_error():
    return TransportError("temporary outage")


@pytest.fixture
def article_xml():
    """Builder for staged article documents."""
    return make_article_xml


@pytest.fixture
def enqueue(fake_queue, http_session):
    """Queue an item and serve its document: ``enqueue(uid, title, document=None, assets=None)``."""

    def _enqueue(uid, title, document=None, assets=None):
        queue_article(fake_queue, http_session, uid, title, document=document, assets=assets)

    return _enqueue
