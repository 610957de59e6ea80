"""
Cross-process locking for crosskit's on-disk state.

Two resources under the global cache directory are shared between
concurrent crosskit processes: the snapshot index written by the execution
backends and the SDK archive downloads. Both are guarded by file locks from
the `filelock` library so that two pipelines started at once (for example
for different SDK versions) never corrupt each other's state.

Usage:
    from crosskit.core.locking import LockManager

    lock_manager = LockManager()
    with lock_manager.snapshot_lock(timeout=30):
        # Safely rewrite snapshots.json
        pass
"""

import logging
import platform
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

from filelock import FileLock, Timeout

from crosskit.core.exceptions import LockTimeout

logger = logging.getLogger(__name__)


def get_global_cache_dir() -> Path:
    """
    Get the global crosskit cache directory.

    Returns:
        ~/.crosskit, or %LOCALAPPDATA%\\crosskit on Windows
    """
    if platform.system() == "Windows":
        return Path.home() / "AppData" / "Local" / "crosskit"
    return Path.home() / ".crosskit"


class LockManager:
    """
    Manages file locks for crosskit resources.

    Attributes:
        lock_dir: Directory holding the .lock files
    """

    def __init__(self, lock_dir: Optional[Path] = None):
        """
        Initialize lock manager.

        Args:
            lock_dir: Where lock files live; defaults to <cache>/lock
        """
        if lock_dir is None:
            lock_dir = get_global_cache_dir() / "lock"

        self.lock_dir = Path(lock_dir)
        self.lock_dir.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def snapshot_lock(self, timeout: float = 30):
        """
        Acquire the snapshot index lock.

        Args:
            timeout: Seconds to wait before giving up

        Raises:
            LockTimeout: Another process held the lock for longer than timeout
        """
        lock_path = self.lock_dir / "snapshots.lock"
        lock = FileLock(lock_path, timeout=timeout)

        try:
            with lock:
                logger.debug(f"Acquired snapshot lock: {lock_path}")
                yield
                logger.debug(f"Released snapshot lock: {lock_path}")
        except Timeout as e:
            logger.error(f"Could not acquire snapshot lock after {timeout}s.")
            raise LockTimeout(
                f"Could not acquire snapshot lock after {timeout}s. "
                "Another crosskit process may be running."
            ) from e

    @contextmanager
    def download_lock(self, artifact_id: str, timeout: float = 600):
        """
        Acquire lock for a specific download.

        Prevents two processes from fetching the same archive into the same
        destination at once.

        Args:
            artifact_id: Unique download identifier (e.g., 'MacOSX15.0.sdk.tar.xz')
            timeout: Maximum wait time in seconds (default: 600 for large archives)

        Raises:
            LockTimeout: Another process held the lock for longer than timeout
        """
        safe_id = artifact_id.replace("/", "-").replace("\\", "-").replace(":", "-")
        lock_path = self.lock_dir / f"download-{safe_id}.lock"
        lock = FileLock(lock_path, timeout=timeout)

        try:
            with lock:
                logger.debug(f"Acquired download lock: {lock_path}")
                yield
                logger.debug(f"Released download lock: {lock_path}")
        except Timeout as e:
            logger.error(
                f"Could not acquire download lock for {artifact_id} after {timeout}s. "
                "Another process may be downloading this file."
            )
            raise LockTimeout(
                f"Could not acquire download lock for {artifact_id} after {timeout}s. "
                "Another process may be downloading this file."
            ) from e


__all__ = [
    "LockManager",
    "LockTimeout",
    "get_global_cache_dir",
]
