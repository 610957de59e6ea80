"""
Persistent snapshot index.

Maps environment fingerprints to backend snapshot handles (for Docker, the
committed image ID) so that a later run, or a concurrent one, can skip
every mutation that has already been materialized. This is what lets a
failed pipeline be re-run without rebuilding the branches that succeeded.

The index is a single JSON document written atomically under an
exclusive file lock.
"""

import json
import logging
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

from crosskit.core.exceptions import SnapshotStoreError
from crosskit.core.filesystem import atomic_write
from crosskit.core.locking import LockManager, LockTimeout, get_global_cache_dir

logger = logging.getLogger(__name__)


class SnapshotStore:
    """
    Fingerprint → snapshot handle index with cross-process locking.

    Example:
        >>> store = SnapshotStore(Path("~/.crosskit/snapshots.json").expanduser())
        >>> store.put("3fa1...", "sha256:9c2e...", output="")
        >>> store.get("3fa1...")["handle"]
        'sha256:9c2e...'
    """

    def __init__(self, index_path: Optional[Path] = None, lock_timeout: int = 30):
        """
        Initialize snapshot store.

        Args:
            index_path: Path to snapshots.json (default: global cache dir)
            lock_timeout: Timeout in seconds for acquiring the file lock
        """
        if index_path is None:
            index_path = get_global_cache_dir() / "snapshots.json"

        self.index_path = Path(index_path)
        self.lock_manager = LockManager(self.index_path.parent / "lock")
        self.lock_timeout = lock_timeout
        self._entries: Dict[str, dict] = {}

        logger.debug(f"Initialized snapshot store at {self.index_path}")

    def _load(self) -> dict:
        if not self.index_path.exists():
            return {"version": 1, "snapshots": {}}

        try:
            with open(self.index_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.error(f"Failed to load snapshot index: {e}")
            raise SnapshotStoreError(f"Failed to load snapshot index: {e}") from e

        if "version" not in data or "snapshots" not in data:
            logger.warning("Invalid snapshot index format, resetting")
            return {"version": 1, "snapshots": {}}

        return data

    def _save(self, data: dict):
        try:
            atomic_write(self.index_path, json.dumps(data, indent=2, sort_keys=True))
        except OSError as e:
            logger.error(f"Failed to save snapshot index: {e}")
            raise SnapshotStoreError(f"Failed to save snapshot index: {e}") from e

    @contextmanager
    def _lock(self):
        try:
            with self.lock_manager.snapshot_lock(timeout=self.lock_timeout):
                yield
        except LockTimeout as e:
            raise SnapshotStoreError(
                f"Could not acquire snapshot lock within {self.lock_timeout} seconds"
            ) from e

    def get(self, fingerprint: str) -> Optional[dict]:
        """
        Look up a snapshot entry.

        Falls back to re-reading the index on a miss, since another process
        may have recorded the snapshot after this store was loaded.
        """
        entry = self._entries.get(fingerprint)
        if entry is not None:
            return entry

        with self._lock():
            self._entries = self._load()["snapshots"]
        return self._entries.get(fingerprint)

    def put(self, fingerprint: str, handle: str, output: str = ""):
        """Record the snapshot handle (and captured output) for a fingerprint."""
        entry = {
            "handle": handle,
            "output": output,
            "created": datetime.now().isoformat(),
        }
        with self._lock():
            data = self._load()
            data["snapshots"][fingerprint] = entry
            self._save(data)
            self._entries = data["snapshots"]

    def forget(self, fingerprint: str) -> bool:
        """Drop an entry; returns True if it existed."""
        with self._lock():
            data = self._load()
            existed = data["snapshots"].pop(fingerprint, None) is not None
            if existed:
                self._save(data)
            self._entries = data["snapshots"]
        return existed

    def __len__(self) -> int:
        with self._lock():
            self._entries = self._load()["snapshots"]
        return len(self._entries)
