"""
Process Lock Utilities
======================

Locks that keep import cycles from overlapping, within one process and
across processes that share a staging directory.
"""

import os
import fcntl
import logging
import threading
from pathlib import Path
from typing import Optional

from .exceptions import StreamFeedError, ErrorCode

logger = logging.getLogger(__name__)


class ProcessLock:
    """File-based process lock to prevent overlapping runs."""

    def __init__(self, lock_name: str, lock_dir: Optional[str] = None):
        """
        Initialize process lock.

        Args:
            lock_name: Name for the lock file (without extension)
            lock_dir: Directory for lock files (defaults to /tmp or system temp)
        """
        if lock_dir is None:
            lock_dir = "/tmp" if os.name == "posix" else os.environ.get("TEMP", ".")

        self.lock_file = Path(lock_dir) / f"{lock_name}.lock"
        self.lock_fd: Optional[int] = None
        self.acquired = False

    def acquire(self) -> bool:
        """
        Acquire the lock without blocking.

        Returns:
            True if lock was acquired successfully, False if already locked
        """
        try:
            self.lock_file.parent.mkdir(parents=True, exist_ok=True)

            self.lock_fd = os.open(str(self.lock_file), os.O_CREAT | os.O_RDWR)

            fcntl.flock(self.lock_fd, fcntl.LOCK_EX | fcntl.LOCK_NB)

            # Record the holder PID only once the lock is ours
            os.ftruncate(self.lock_fd, 0)
            os.write(self.lock_fd, f"{os.getpid()}\n".encode())
            os.fsync(self.lock_fd)

            self.acquired = True
            logger.debug(f"Process lock acquired: {self.lock_file}")
            return True

        except OSError:
            if self.lock_fd is not None:
                try:
                    os.close(self.lock_fd)
                except OSError:
                    pass
                self.lock_fd = None

            existing_pid = self._get_lock_holder_pid()
            if existing_pid:
                logger.warning(f"Process lock already held by PID {existing_pid}: {self.lock_file}")
            else:
                logger.warning(f"Process lock unavailable: {self.lock_file}")

            return False

    def release(self) -> None:
        """Release the lock."""
        if self.lock_fd is not None and self.acquired:
            try:
                fcntl.flock(self.lock_fd, fcntl.LOCK_UN)
                os.close(self.lock_fd)
                logger.debug(f"Process lock released: {self.lock_file}")
            except OSError as e:
                logger.warning(f"Error releasing lock: {e}")
            finally:
                self.lock_fd = None
                self.acquired = False

    def _get_lock_holder_pid(self) -> Optional[int]:
        """Get PID of the process holding the lock."""
        try:
            if self.lock_file.exists():
                content = self.lock_file.read_text().strip()
                return int(content)
        except (ValueError, OSError):
            pass
        return None

    def __enter__(self):
        if not self.acquire():
            raise StreamFeedError(
                f"Could not acquire process lock: {self.lock_file}",
                error_code=ErrorCode.RUN_ALREADY_ACTIVE,
                user_message="Another import is already running",
            )
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()


class CycleLock:
    """Non-blocking run lock for import cycles.

    Combines an in-process ``threading.Lock`` with an optional
    ``ProcessLock`` so two processes sharing one staging directory never
    run a cycle at the same time either.
    """

    def __init__(self, process_lock: Optional[ProcessLock] = None):
        self._thread_lock = threading.Lock()
        self._process_lock = process_lock

    @classmethod
    def for_staging_root(cls, root, use_lock_file: bool = True) -> "CycleLock":
        if not use_lock_file:
            return cls()
        return cls(ProcessLock(".streamfeed", lock_dir=str(root)))

    def try_acquire(self) -> bool:
        if not self._thread_lock.acquire(blocking=False):
            return False

        if self._process_lock is not None and not self._process_lock.acquire():
            self._thread_lock.release()
            return False

        return True

    def release(self) -> None:
        if self._process_lock is not None:
            self._process_lock.release()
        self._thread_lock.release()

    @property
    def locked(self) -> bool:
        return self._thread_lock.locked()
