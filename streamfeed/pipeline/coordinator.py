"""
Import Coordinator
==================

Runs one import cycle:

1. list the remote queue (a list failure ends the cycle)
2. download each listed item's document and assets into staging, and
   optionally delete it from the remote queue
3. import every staged document, including leftovers of earlier cycles,
   skipping titles the host store already has
4. archive consumed documents

Failures are isolated per item and per document and reported in the
returned ``ImportOutcome``; a failed document stays staged for the next
cycle. Cycles never overlap: a trigger arriving while a cycle runs is
dropped.
"""

import uuid
from dataclasses import dataclass
from typing import Optional

from ..config.settings import StreamFeedSettings
from ..database.models import ImportOutcome, ItemState, QueueItemRef, StagedDocument
from ..ingestion.asset_fetcher import AssetFetcher
from ..parsing.content_parser import ContentParser
from ..remote.queue_client import RemoteQueueClient
from ..staging.store import StagingStore
from ..storage.interfaces import HostContentStore
from ..utils.exceptions import StreamFeedError, handle_exception
from ..utils.logging import PerformanceLogger, get_logger_for_component
from ..utils.process_lock import CycleLock


@dataclass
class CycleConfig:
    """Per-cycle tunables."""
    page_size: int = 10
    max_import_attempts: int = 0  # 0 = never quarantine
    asset_workers: int = 1

    @classmethod
    def from_settings(cls, settings: StreamFeedSettings) -> "CycleConfig":
        return cls(
            page_size=settings.feed.page_size,
            max_import_attempts=settings.staging.max_import_attempts,
            asset_workers=settings.staging.asset_workers,
        )


class ImportCoordinator:
    """Drives download and import cycles over injected collaborators."""

    def __init__(
        self,
        queue_client: RemoteQueueClient,
        asset_fetcher: AssetFetcher,
        staging: StagingStore,
        parser: ContentParser,
        host_store: HostContentStore,
        config: Optional[CycleConfig] = None,
        run_lock: Optional[CycleLock] = None,
    ):
        self.queue = queue_client
        self.fetcher = asset_fetcher
        self.staging = staging
        self.parser = parser
        self.host = host_store
        self.config = config or CycleConfig()
        self.run_lock = run_lock or CycleLock.for_staging_root(
            staging.root, use_lock_file=staging.settings.lock_file
        )
        self.logger = get_logger_for_component("coordinator")

    def run_cycle(self, delete_after_download: bool, config: Optional[CycleConfig] = None) -> ImportOutcome:
        """Download queued items, then import everything staged.

        Args:
            delete_after_download: Delete each staged item from the remote queue
            config: Overrides the coordinator's config for this cycle

        Returns:
            Cycle outcome; ``skipped_run`` is set when another cycle was running
        """
        return self._locked_cycle(config or self.config, download=True, delete_after_download=delete_after_download)

    def import_staged(self, config: Optional[CycleConfig] = None) -> ImportOutcome:
        """Import already staged documents without contacting the remote queue."""
        return self._locked_cycle(config or self.config, download=False, delete_after_download=False)

    def _locked_cycle(self, config: CycleConfig, download: bool, delete_after_download: bool) -> ImportOutcome:
        if not self.run_lock.try_acquire():
            self.logger.info("Import cycle already running; trigger ignored")
            return ImportOutcome(skipped_run=True)

        cycle_id = uuid.uuid4().hex[:8]
        log = get_logger_for_component("coordinator", cycle_id=cycle_id)
        outcome = ImportOutcome()

        try:
            with PerformanceLogger(log, "import cycle", cycle_id=cycle_id) as perf:
                listed = True
                if download:
                    listed = self._download_phase(outcome, config, delete_after_download, cycle_id)
                if listed:
                    self._import_phase(outcome, config, cycle_id)
            outcome.duration_seconds = perf.duration_seconds
        finally:
            self.run_lock.release()

        level_log = log.warning if outcome.errors else log.info
        level_log(f"Import cycle finished: {outcome.summary()}")
        return outcome

    # Download phase

    def _download_phase(
        self, outcome: ImportOutcome, config: CycleConfig, delete_after_download: bool, cycle_id: str
    ) -> bool:
        try:
            page = self.queue.list(max_results=config.page_size, offset=0)
        except StreamFeedError as e:
            self.logger.error(f"Listing the remote queue failed: {e}", extra=e.to_dict())
            outcome.add_error("list", "list", e)
            return False

        outcome.total_in_queue = page.total_in_queue
        self.logger.info(f"{len(page.items)} of {page.total_in_queue} queued items listed")

        for item in page.items:
            self._download_item(item, outcome, config, delete_after_download, cycle_id)
        return True

    def _download_item(
        self,
        item: QueueItemRef,
        outcome: ImportOutcome,
        config: CycleConfig,
        delete_after_download: bool,
        cycle_id: str,
    ) -> None:
        log = get_logger_for_component("coordinator", uid=item.uid, cycle_id=cycle_id)
        log.debug(f"State {ItemState.DOWNLOADING.value}: {item.title}")

        try:
            fetched = self.queue.fetch(item.uid)
        except StreamFeedError as e:
            log.warning(f"Fetching item details failed: {e}")
            outcome.add_error(item.uid, "fetch", e)
            return

        try:
            self.fetcher.fetch_to_file(fetched.document_url, self.staging.document_path(item.uid))
        except StreamFeedError as e:
            log.warning(f"Document download failed: {e}")
            outcome.add_error(item.uid, "download", e)
            return

        outcome.downloaded += 1
        log.debug(f"State {ItemState.STAGED.value}")

        if fetched.assets:
            report = self.fetcher.fetch_assets(
                fetched.assets, self.staging.asset_dir(item.uid), max_workers=config.asset_workers
            )
            for asset, error in report.failures:
                outcome.add_error(item.uid, "asset", f"{asset.url}: {error}")

        if not delete_after_download:
            log.debug(f"State {ItemState.REMOTE_DELETE_SKIPPED_OR_FAILED.value}: delete not requested")
            return

        try:
            deleted = self.queue.delete(item.uid)
        except StreamFeedError as e:
            log.warning(f"Removing item from remote queue failed: {e}")
            log.debug(f"State {ItemState.REMOTE_DELETE_SKIPPED_OR_FAILED.value}")
            return

        if deleted:
            outcome.remote_deleted += 1
            log.debug(f"State {ItemState.REMOTE_DELETED.value}")

    # Import phase

    def _import_phase(self, outcome: ImportOutcome, config: CycleConfig, cycle_id: str) -> None:
        for doc in list(self.staging.list_unimported()):
            self._import_document(doc, outcome, config, cycle_id)

    def _import_document(
        self, doc: StagedDocument, outcome: ImportOutcome, config: CycleConfig, cycle_id: str
    ) -> None:
        log = get_logger_for_component("coordinator", path=str(doc.local_path), cycle_id=cycle_id)

        try:
            record = self.parser.parse(doc)
        except StreamFeedError as e:
            log.warning(f"Parsing failed: {e}")
            self._record_failure(doc, "parse", e, outcome, config)
            return
        log.debug(f"State {ItemState.PARSED.value}: {record.title}")

        try:
            existing = self.host.find_record_by_title(record.title)
            if existing is not None:
                outcome.skipped_duplicates += 1
                log.info(f"Skipping duplicate title {record.title!r} (record {existing.id})")
                log.debug(f"State {ItemState.SKIPPED_DUPLICATE.value}")
            else:
                record_id = self.host.create_record(record)
                outcome.imported += 1
                log.info(f"Imported {record.title!r} as record {record_id}")
                log.debug(f"State {ItemState.PUBLISHED.value}")
        except Exception as e:
            error = handle_exception(e, log, "publish", {"path": str(doc.local_path)})
            self._record_failure(doc, "publish", error, outcome, config)
            return

        try:
            self.staging.mark_imported(doc)
        except StreamFeedError as e:
            log.error(f"Archiving failed: {e}")
            outcome.add_error(str(doc.local_path), "archive", e)
            return
        log.debug(f"State {ItemState.ARCHIVED.value}")

        if config.max_import_attempts > 0:
            self._clear_failures(doc.local_path.name)

    def _record_failure(
        self,
        doc: StagedDocument,
        stage: str,
        error: Exception,
        outcome: ImportOutcome,
        config: CycleConfig,
    ) -> None:
        outcome.add_error(str(doc.local_path), stage, error)
        if config.max_import_attempts <= 0:
            return

        name = doc.local_path.name
        try:
            attempts = self.host.record_import_failure(name, str(error))
        except StreamFeedError as e:
            self.logger.warning(f"Could not count failed import of {name}: {e}")
            return

        if attempts < config.max_import_attempts:
            return

        try:
            self.staging.quarantine(doc)
        except StreamFeedError as e:
            outcome.add_error(str(doc.local_path), "archive", e)
            return

        outcome.quarantined += 1
        self._clear_failures(name)

    def _clear_failures(self, name: str) -> None:
        try:
            self.host.clear_import_failures(name)
        except StreamFeedError as e:
            self.logger.warning(f"Could not reset failed import count of {name}: {e}")
