"""
Staging Store
=============

Filesystem staging area between download and import::

    <root>/<uid>.xml                    staged documents
    <root>/<asset_folder>/<uid>/...     downloaded assets
    <root>/<imported_folder>/           consumed documents
    <root>/<failed_folder>/             documents over the attempt cap

A staged document stays under ``<root>`` until it has been imported or
skipped as a duplicate, so an interrupted run picks it up again.
"""

import hashlib
import os
import shutil
import tempfile
from pathlib import Path
from typing import BinaryIO, Iterator, Optional, Union

from ..config.settings import StagingSettings
from ..database.models import StagedDocument, StagedStatus
from ..utils.exceptions import ConflictError, ErrorCode, StagingError, WriteError
from ..utils.logging import get_logger_for_component
from ..utils.validators import safe_path_component

DOCUMENT_SUFFIX = ".xml"
MAX_ARCHIVE_SUFFIX = 999
COPY_CHUNK_SIZE = 64 * 1024


class StagingStore:
    """Local staging directory for downloaded documents and assets."""

    def __init__(self, settings: Optional[StagingSettings] = None):
        self.settings = settings or StagingSettings()
        self.root = Path(self.settings.root)
        self.assets_root = self.root / self.settings.asset_folder
        self.imported_dir = self.root / self.settings.imported_folder
        self.failed_dir = self.root / self.settings.failed_folder
        self.logger = get_logger_for_component("staging_store")

    def ensure_layout(self) -> None:
        """Create the staging directories."""
        for directory in (self.root, self.assets_root, self.imported_dir, self.failed_dir):
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise StagingError(
                    f"Cannot create staging directory {directory}: {e}",
                    path=str(directory),
                    error_code=ErrorCode.STAGING_PERMISSION_DENIED,
                ) from e

    # Paths

    @staticmethod
    def safe_uid(uid: str) -> str:
        """File name stem for a uid; distinct uids never share a stem.

        A uid that had to be sanitised gets a short hash of the raw uid
        appended, so ``a/b`` and ``a_b`` stage to different files.
        """
        cleaned = safe_path_component(uid)
        if cleaned == uid:
            return cleaned
        digest = hashlib.sha1(uid.encode('utf-8')).hexdigest()[:8]
        return f"{cleaned}-{digest}"

    def document_path(self, uid: str) -> Path:
        """Stable staged path for a queue item."""
        return self.root / f"{self.safe_uid(uid)}{DOCUMENT_SUFFIX}"

    def asset_dir(self, uid: str) -> Path:
        return self.assets_root / self.safe_uid(uid)

    # Writes

    def put(self, uid: str, data: Union[bytes, BinaryIO]) -> StagedDocument:
        """Stage a document atomically, replacing an earlier copy of the same uid.

        Args:
            uid: Queue item uid
            data: Document bytes or a readable binary stream

        Raises:
            WriteError: If the document cannot be written
        """
        dest = self.document_path(uid)
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{dest.name}.", suffix=".part", dir=self.root)
        except OSError as e:
            raise WriteError(f"Cannot stage {uid}: {e}", path=str(dest)) from e

        try:
            with os.fdopen(fd, "wb") as fh:
                if isinstance(data, (bytes, bytearray)):
                    fh.write(data)
                else:
                    shutil.copyfileobj(data, fh, COPY_CHUNK_SIZE)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, dest)
        except OSError as e:
            self._discard(tmp_name)
            raise WriteError(f"Cannot stage {uid}: {e}", path=str(dest)) from e
        except BaseException:
            self._discard(tmp_name)
            raise

        return StagedDocument(uid=dest.stem, local_path=dest)

    # Reads

    def list_unimported(self) -> Iterator[StagedDocument]:
        """Staged documents in name order.

        Temporary ``.part`` files, hidden files and subfolders are skipped.
        """
        if not self.root.is_dir():
            return

        for path in sorted(self.root.glob(f"*{DOCUMENT_SUFFIX}")):
            if path.name.startswith(".") or not path.is_file():
                continue
            yield StagedDocument(uid=path.stem, local_path=path)

    def pending_count(self) -> int:
        return sum(1 for _ in self.list_unimported())

    def archived_count(self) -> int:
        if not self.imported_dir.is_dir():
            return 0
        return sum(1 for p in self.imported_dir.iterdir() if p.is_file() and not p.name.startswith("."))

    def quarantined_count(self) -> int:
        if not self.failed_dir.is_dir():
            return 0
        return sum(1 for p in self.failed_dir.iterdir() if p.is_file() and not p.name.startswith("."))

    # Lifecycle

    def mark_imported(self, doc: StagedDocument) -> StagedDocument:
        """Move a consumed document into the archive folder.

        The original name is kept; when taken, ``-1``, ``-2``... is appended
        to the stem. An existing archive file is never overwritten.

        Raises:
            ConflictError: If no free archive name is left
            StagingError: If the move fails
        """
        target = self._relocate(doc, self.imported_dir)
        self.logger.debug(f"Archived {doc.local_path.name} as {target.name}")
        return StagedDocument(uid=doc.uid, local_path=target, status=StagedStatus.IMPORTED)

    def quarantine(self, doc: StagedDocument) -> StagedDocument:
        """Move a document that keeps failing into the failed folder."""
        target = self._relocate(doc, self.failed_dir)
        self.logger.warning(f"Quarantined {doc.local_path.name} as {self.failed_dir.name}/{target.name}")
        return StagedDocument(uid=doc.uid, local_path=target, status=StagedStatus.STAGED)

    def remove_document(self, uid: str) -> bool:
        """Delete a staged document and its assets.

        Returns:
            True if a staged document was removed
        """
        path = self.document_path(uid)
        removed = False
        try:
            path.unlink()
            removed = True
        except FileNotFoundError:
            pass
        except OSError as e:
            raise StagingError(f"Cannot remove {path}: {e}", path=str(path)) from e

        shutil.rmtree(self.asset_dir(uid), ignore_errors=True)
        return removed

    def purge(self) -> int:
        """Remove every staged document, asset and archive under the root.

        Returns:
            Number of staged (unimported) documents removed
        """
        count = 0
        for doc in list(self.list_unimported()):
            if self.remove_document(doc.uid):
                count += 1

        for directory in (self.assets_root, self.imported_dir, self.failed_dir):
            shutil.rmtree(directory, ignore_errors=True)

        self.ensure_layout()
        self.logger.info(f"Purged staging area {self.root} ({count} pending documents)")
        return count

    def _relocate(self, doc: StagedDocument, folder: Path) -> Path:
        source = doc.local_path
        try:
            folder.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StagingError(f"Cannot create {folder}: {e}", path=str(folder)) from e

        target = self._free_name(folder, source.name)
        try:
            os.rename(source, target)
        except OSError as e:
            raise StagingError(
                f"Cannot move {source} to {target}: {e}", path=str(source)
            ) from e
        return target

    @staticmethod
    def _free_name(folder: Path, name: str) -> Path:
        candidate = folder / name
        if not candidate.exists():
            return candidate

        stem, ext = os.path.splitext(name)
        for counter in range(1, MAX_ARCHIVE_SUFFIX + 1):
            candidate = folder / f"{stem}-{counter}{ext}"
            if not candidate.exists():
                return candidate

        raise ConflictError(
            f"No free name for {name} in {folder} after {MAX_ARCHIVE_SUFFIX} attempts",
            path=str(folder / name),
        )

    def _discard(self, tmp_name: str) -> None:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        except OSError as e:
            self.logger.warning(f"Could not remove temporary file {tmp_name}: {e}")
