"""
End-to-end import cycles.

A fake Content Stream service answers the JSON operations and serves
documents and assets over the same session, so the real queue client,
fetcher, staging store, parser and SQLite host store all take part.
"""

import json
import threading

import pytest

from conftest import FakeHttpSession, FakeResponse, make_article_xml
from streamfeed.database.models import RecordStatus
from streamfeed.ingestion.asset_fetcher import AssetFetcher
from streamfeed.parsing.content_parser import ContentParser
from streamfeed.pipeline.coordinator import CycleConfig, ImportCoordinator
from streamfeed.recovery.retry_logic import RetryConfig, RetryManager
from streamfeed.remote.queue_client import HttpQueueClient
from streamfeed.staging.store import StagingStore

pytestmark = pytest.mark.integration

ENDPOINT = "https://contentstream.example.com/api/"
CDN = "https://cdn.example.com"


class JsonResponse:

    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code
        self.url = ENDPOINT

    def json(self):
        return json.loads(json.dumps(self.payload))


class ContentStreamService(FakeHttpSession):
    """In-memory queue behind the Content Stream JSON operations."""

    def __init__(self, username="test-user", password="test-password"):
        super().__init__()
        self.username = username
        self.password = password
        self.queue = {}
        self.operations = []
        self.fail_operations = set()

    def publish(self, uid, title, assets=None, document=None):
        self.queue[uid] = {"title": title, "assets": list(assets or {})}
        self.resources[f"{CDN}/articles/{uid}.xml"] = document or make_article_xml(
            title=title,
            author="Newsroom",
            bodytext=f'<p>{title}</p><img src="syndicationAssets/{uid}.jpg"/>',
            keywords="Automation, Controls",
        )
        for url, body in (assets or {}).items():
            self.resources[url] = body

    def post(self, url, json=None, timeout=None, verify=True):
        operation = url.rsplit("/", 1)[-1]
        self.operations.append(operation)
        if operation in self.fail_operations:
            return JsonResponse({}, status_code=503)
        if json["username"] != self.username or json["password"] != self.password:
            return JsonResponse({"errorOccurred": True, "errorDescription": "Invalid username or password"})

        if operation == "getContentList":
            uids = list(self.queue)[json["offset"]:json["offset"] + json["maxNumberResultsRequested"]]
            return JsonResponse({
                "errorOccurred": False,
                "arrUid": uids,
                "arrTitle": [self.queue[uid]["title"] for uid in uids],
                "arrDateTime": ["2024-03-01 08:00:00"] * len(uids),
                "totalNumberInQueue": len(self.queue),
                "moreResults": json["offset"] + len(uids) < len(self.queue),
            })

        uid = json["uid"]
        if uid not in self.queue:
            return JsonResponse({"errorOccurred": True, "errorDescription": f"Article {uid} not found in queue"})

        if operation == "getArticle":
            return JsonResponse({
                "errorOccurred": False,
                "articleXMLURL": f"{CDN}/articles/{uid}.xml",
                "arrArticleAssetURL": self.queue[uid]["assets"],
                "arrArticleAssetFileName": [u.rsplit("/", 1)[-1] for u in self.queue[uid]["assets"]],
            })

        del self.queue[uid]
        return JsonResponse({"errorOccurred": False})


@pytest.fixture
def service():
    return ContentStreamService()


@pytest.fixture
def build(test_settings, content_store, service):
    """Coordinator factory over the fake service; each call shares staging and the host store."""

    def _build(**overrides):
        staging = StagingStore(test_settings.staging)
        staging.ensure_layout()
        fetcher = AssetFetcher(
            test_settings,
            session=service,
            retry_manager=RetryManager(RetryConfig(max_attempts=2, base_delay=0.0, jitter=False), sleep=lambda s: None),
        )
        feed = test_settings.feed.model_copy(update={"endpoint_url": ENDPOINT})
        return ImportCoordinator(
            queue_client=HttpQueueClient(feed, session=service),
            asset_fetcher=fetcher,
            staging=staging,
            parser=ContentParser(content_store, test_settings.publishing, test_settings.staging),
            host_store=content_store,
            config=overrides.get("config") or CycleConfig.from_settings(test_settings),
        )

    return _build


def test_full_cycle_publishes_and_drains_queue(build, service, content_store, staging_store):
    service.publish("a-1", "Edge computing on the plant floor", assets={f"{CDN}/img/a-1.jpg": b"JPEG"})
    service.publish("b-2", "Cybersecurity for OT networks")

    outcome = build().run_cycle(delete_after_download=True)

    assert outcome.success
    assert (outcome.downloaded, outcome.imported, outcome.remote_deleted) == (2, 2, 2)
    assert service.queue == {}

    record = content_store.find_record_by_title("Edge computing on the plant floor")
    assert record.status == RecordStatus.DRAFT
    assert record.tags == ["Automation", "Controls"]
    assert '/uploads/content-stream/syndicationAssets/a-1/a-1.jpg' in record.body_html
    assert '<span class="stream-meta">Author:</span> Newsroom' in record.body_html
    assert (staging_store.asset_dir("a-1") / "a-1.jpg").read_bytes() == b"JPEG"
    assert staging_store.archived_count() == 2


def test_repeat_cycles_are_idempotent(build, service, content_store):
    service.publish("a-1", "Edge computing on the plant floor")
    coordinator = build()

    coordinator.run_cycle(delete_after_download=False)
    second = coordinator.run_cycle(delete_after_download=False)
    third = coordinator.run_cycle(delete_after_download=True)

    assert second.skipped_duplicates == 1
    assert third.skipped_duplicates == 1
    assert third.remote_deleted == 1
    assert content_store.records.count_records() == 1
    assert content_store.tags.count_tags() == 2


def test_rejected_credentials_end_cycle_but_keep_staged_work(build, service, staging_store):
    staging_store.put("left-over", make_article_xml(title="Imported later"))
    service.password = "rotated"

    outcome = build().run_cycle(delete_after_download=True)

    assert [e.stage for e in outcome.errors] == ["list"]
    assert staging_store.pending_count() == 1


def test_delete_outage_does_not_block_import(build, service, content_store):
    service.publish("a-1", "Edge computing on the plant floor")
    service.fail_operations.add("deleteFromQueue")

    outcome = build().run_cycle(delete_after_download=True)

    assert outcome.imported == 1
    assert outcome.remote_deleted == 0
    assert "a-1" in service.queue

    service.fail_operations.clear()
    retry = build().run_cycle(delete_after_download=True)

    assert retry.skipped_duplicates == 1
    assert retry.remote_deleted == 1
    assert content_store.records.count_records() == 1


def test_broken_asset_does_not_block_document(build, service):
    service.publish("a-1", "Edge computing", assets={
        f"{CDN}/img/ok.png": b"PNG",
        f"{CDN}/img/gone.png": FakeResponse(404),
    })

    outcome = build().run_cycle(delete_after_download=True)

    assert outcome.imported == 1
    assert [e.stage for e in outcome.errors] == ["asset"]


def test_concurrent_triggers_run_one_cycle(build, service, content_store):
    for i in range(5):
        service.publish(f"u{i}", f"Story {i}")
    coordinator = build()
    outcomes = []
    start = threading.Barrier(3)

    def trigger():
        start.wait()
        outcomes.append(coordinator.run_cycle(delete_after_download=True))

    threads = [threading.Thread(target=trigger) for _ in range(3)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    ran = [o for o in outcomes if not o.skipped_run]
    assert sum(o.imported for o in ran) == 5
    assert content_store.records.count_records() == 5


def test_quarantine_after_repeated_parse_failures(build, service, staging_store):
    service.publish("bad", "Broken", document=b"<article><title>Broken")
    coordinator = build(config=CycleConfig(max_import_attempts=2))

    coordinator.run_cycle(delete_after_download=True)
    outcome = coordinator.run_cycle(delete_after_download=True)

    assert outcome.quarantined == 1
    assert staging_store.pending_count() == 0
    assert staging_store.quarantined_count() == 1
