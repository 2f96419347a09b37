"""
Concurrent access control for the xwinkit cache.

The SDK cache directory is shared by every xwinkit process on the machine and
by the per-target pipelines of a single invocation. This module provides the
file-based, per-key mutual exclusion that guarantees a single populating
writer for each cache entry.

Features:
- Cross-platform file locking (Windows, Linux, macOS)
- Cross-process and cross-thread locking
- Blocking acquisition by default (no internal timeouts)
- Automatic release on process death

Usage:
    from xwinkit.core.locking import LockManager

    lock_manager = LockManager(cache_dir / "locks")
    with lock_manager.key_lock("xwin-3f2a9c"):
        # This caller is the only writer for the entry
        populate_entry()
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

from filelock import FileLock, Timeout as LockTimeout

logger = logging.getLogger(__name__)


def sanitize_key(key: str) -> str:
    """Turn a cache key into a string safe to use as a file name."""
    return key.replace("/", "-").replace("\\", "-").replace(":", "-")


class LockManager:
    """
    Manages per-key locks for the xwinkit cache.

    Uses file-based locking with the `filelock` library so the same
    discipline holds across threads and across operating-system processes.

    Attributes:
        lock_dir: Directory where lock files are stored
    """

    def __init__(self, lock_dir: Path):
        """
        Initialize lock manager.

        Args:
            lock_dir: Directory for lock files (created if missing)
        """
        self.lock_dir = Path(lock_dir)
        self.lock_dir.mkdir(parents=True, exist_ok=True)

    def lock_path(self, key: str) -> Path:
        """Get the lock file path for a cache key."""
        return self.lock_dir / f"{sanitize_key(key)}.lock"

    @contextmanager
    def key_lock(self, key: str, timeout: Optional[float] = None):
        """
        Acquire the lock for one cache key.

        Blocks until the lock is free unless a timeout is given. A separate
        `FileLock` instance is created per call so that threads of the same
        process exclude each other as well.

        Args:
            key: Cache key to lock
            timeout: Maximum wait time in seconds (None blocks indefinitely)

        Yields:
            None

        Raises:
            LockTimeout: If a timeout was given and the lock was not acquired

        Example:
            >>> lock_manager = LockManager(Path("/tmp/locks"))
            >>> with lock_manager.key_lock("xwin-3f2a9c"):
            ...     populate()
        """
        lock_path = self.lock_path(key)
        lock = FileLock(lock_path, timeout=-1 if timeout is None else timeout)

        try:
            with lock:
                logger.debug(f"Acquired cache lock: {lock_path}")
                yield
                logger.debug(f"Released cache lock: {lock_path}")
        except LockTimeout:
            logger.error(
                f"Could not acquire cache lock for {key} after {timeout}s. "
                "Another process may be populating this entry."
            )
            raise


__all__ = [
    "LockManager",
    "LockTimeout",
    "sanitize_key",
]
