"""
Asset Fetcher
=============

Downloads remote resources (documents and media assets) to local files.

A download is streamed into a hidden ``.<name>.<random>.part`` file in the
destination directory, fsynced, and renamed over the destination with
``os.replace``. A reader therefore sees either no file or the complete
file, never a partial one.
"""

import json
import os
import tempfile
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import requests

from ..config.settings import StreamFeedSettings, get_settings
from ..database.models import AssetRef
from ..recovery.retry_logic import RetryConfig, RetryManager
from ..remote.session import build_session, tls_verify_option
from ..utils.exceptions import ErrorCode, TransportError, WriteError
from ..utils.logging import get_logger_for_component
from ..utils.validators import filename_from_url, safe_path_component

CHUNK_SIZE = 64 * 1024
ASSET_NAME_MAP = ".asset-names.json"


@dataclass
class AssetFetchReport:
    """Per-asset results of ``fetch_assets``, in asset list order."""
    fetched: List[Path] = field(default_factory=list)
    failures: List[Tuple[AssetRef, Exception]] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failures


def unique_asset_names(assets: List[AssetRef]) -> List[str]:
    """Local file names for assets, resolving collisions in list order.

    ``photo.jpg`` twice becomes ``photo.jpg`` and ``photo-1.jpg``. Names are
    compared case-insensitively so the result is safe on any filesystem.
    """
    taken = set()
    names = []
    for asset in assets:
        base = safe_path_component(asset.filename, fallback_seed=asset.url)
        stem, ext = os.path.splitext(base)
        candidate = base
        counter = 1
        while candidate.lower() in taken:
            candidate = f"{stem}-{counter}{ext}"
            counter += 1
        taken.add(candidate.lower())
        names.append(candidate)
    return names


def renamed_assets(assets: List[AssetRef], names: List[str]) -> Dict[str, str]:
    """Original file name to local name, for assets stored under a different name.

    When several assets share an original name, references to it keep
    pointing at the first one.
    """
    renamed = {}
    seen = set()
    for asset, name in zip(assets, names):
        if asset.filename in seen:
            continue
        seen.add(asset.filename)
        if asset.filename and asset.filename != name:
            renamed[asset.filename] = name
    return renamed


def load_asset_name_map(asset_dir: Union[str, Path]) -> Dict[str, str]:
    """Read the rename map written by ``AssetFetcher.fetch_assets``; empty when absent."""
    path = Path(asset_dir) / ASSET_NAME_MAP
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return {}
    except (OSError, ValueError) as e:
        get_logger_for_component("asset_fetcher", path=str(path)).warning(f"Ignoring unreadable asset name map: {e}")
        return {}
    return {str(k): str(v) for k, v in data.items()} if isinstance(data, dict) else {}


class AssetFetcher:
    """Atomic, retrying HTTP downloader."""

    def __init__(
        self,
        settings: Optional[StreamFeedSettings] = None,
        session: Optional[requests.Session] = None,
        retry_manager: Optional[RetryManager] = None,
    ):
        """Initialize the fetcher.

        Args:
            settings: Application settings (defaults to the process settings)
            session: HTTP session, built with urllib3 retries when omitted
            retry_manager: Retry manager for transport failures
        """
        self.settings = settings or get_settings()
        self.logger = get_logger_for_component("asset_fetcher")
        self.timeout = self.settings.feed.request_timeout
        self.session = session or build_session(
            app_name=self.settings.app_name,
            version=self.settings.version,
            backoff_factor=self.settings.retry.base_delay,
        )
        self.retry_manager = retry_manager or RetryManager(RetryConfig.from_settings(self.settings.retry))
        self._verify = tls_verify_option(self.settings.feed.verify_tls, "asset_fetcher")

    @staticmethod
    def filename_from_url(url: str) -> str:
        return filename_from_url(url)

    def fetch_to_file(self, url: str, dest_path: Union[str, Path]) -> Path:
        """Download ``url`` to ``dest_path`` atomically.

        Transport failures are retried with backoff; write failures are not.

        Returns:
            The destination path

        Raises:
            TransportError: Network failure, timeout, or HTTP error status
            WriteError: The file could not be written or moved into place
        """
        return self.retry_manager.retry_sync(self._download_once, url, Path(dest_path))

    def fetch_assets(
        self,
        assets: List[AssetRef],
        dest_dir: Union[str, Path],
        max_workers: Optional[int] = None,
    ) -> AssetFetchReport:
        """Download a document's assets into ``dest_dir``.

        Each asset succeeds or fails on its own. With ``max_workers`` above 1
        downloads run on a thread pool.
        """
        dest_dir = Path(dest_dir)
        workers = max_workers if max_workers is not None else self.settings.staging.asset_workers
        names = unique_asset_names(assets)
        targets = [dest_dir / name for name in names]
        report = AssetFetchReport()
        self._write_name_map(dest_dir, renamed_assets(assets, names))

        if workers > 1 and len(assets) > 1:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="asset-fetch") as pool:
                futures = [
                    pool.submit(self.fetch_to_file, asset.url, target)
                    for asset, target in zip(assets, targets)
                ]
                outcomes = []
                for future in futures:
                    try:
                        outcomes.append(future.result())
                    except (TransportError, WriteError) as e:
                        outcomes.append(e)
        else:
            outcomes = []
            for asset, target in zip(assets, targets):
                try:
                    outcomes.append(self.fetch_to_file(asset.url, target))
                except (TransportError, WriteError) as e:
                    outcomes.append(e)

        for asset, outcome in zip(assets, outcomes):
            if isinstance(outcome, Exception):
                self.logger.warning(f"Asset download failed for {asset.url}: {outcome}")
                report.failures.append((asset, outcome))
            else:
                report.fetched.append(outcome)

        return report

    def _write_name_map(self, dest_dir: Path, renamed: Dict[str, str]) -> None:
        path = dest_dir / ASSET_NAME_MAP
        try:
            if renamed:
                dest_dir.mkdir(parents=True, exist_ok=True)
                path.write_text(json.dumps(renamed, indent=2, sort_keys=True), encoding="utf-8")
            elif path.exists():
                path.unlink()
        except OSError as e:
            self.logger.warning(f"Cannot write asset name map {path}: {e}")

    def _download_once(self, url: str, dest: Path) -> Path:
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise WriteError(f"Cannot create {dest.parent}: {e}", path=str(dest.parent)) from e

        try:
            response = self.session.get(url, stream=True, timeout=self.timeout, verify=self._verify)
        except requests.Timeout as e:
            raise TransportError(
                f"Timed out downloading {url}: {e}", url=url, error_code=ErrorCode.QUEUE_TIMEOUT
            ) from e
        except requests.RequestException as e:
            raise TransportError(f"Failed to download {url}: {e}", url=url) from e

        with response:
            if response.status_code >= 400:
                raise TransportError(
                    f"Download of {url} returned HTTP {response.status_code}",
                    url=url,
                    error_code=ErrorCode.QUEUE_SERVER_ERROR if response.status_code >= 500 else ErrorCode.QUEUE_NETWORK_ERROR,
                    recoverable=response.status_code >= 500 or response.status_code == 429,
                )

            try:
                fd, tmp_name = tempfile.mkstemp(prefix=f".{dest.name}.", suffix=".part", dir=dest.parent)
            except OSError as e:
                raise WriteError(f"Cannot create temporary file in {dest.parent}: {e}", path=str(dest)) from e

            try:
                with os.fdopen(fd, "wb") as fh:
                    for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                        if chunk:
                            fh.write(chunk)
                    fh.flush()
                    os.fsync(fh.fileno())
                os.replace(tmp_name, dest)
            # RequestException subclasses OSError, so it must be caught first
            except requests.RequestException as e:
                self._discard(tmp_name)
                raise TransportError(f"Download of {url} was interrupted: {e}", url=url) from e
            except OSError as e:
                self._discard(tmp_name)
                raise WriteError(f"Failed to write {dest}: {e}", path=str(dest)) from e
            except BaseException:
                self._discard(tmp_name)
                raise

        self.logger.debug(f"Downloaded {url} to {dest}")
        return dest

    def _discard(self, tmp_name: str) -> None:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        except OSError as e:
            self.logger.warning(f"Could not remove partial download {tmp_name}: {e}")
