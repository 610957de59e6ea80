"""
Execution backend interface for crosskit.

An execution backend turns Environment snapshots into real filesystem
state. The abstract base class owns the parts that do not depend on the
isolation technology: walking a snapshot chain, reusing already
materialized prefixes by fingerprint, and making sure concurrent callers
never apply the same mutation twice. Subclasses only implement how to
start from a base image and how to apply one mutation.
"""

import logging
import posixpath
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from crosskit.backends.snapshots import SnapshotStore
from crosskit.env import Artifact, Environment, Mutation, MutationKind

logger = logging.getLogger(__name__)


class ExecutionBackend(ABC):
    """
    Abstract base class for execution backends.

    Attributes:
        store: Optional persistent snapshot index
        build_variables: Variables set for every command but not recorded in
            snapshots or fingerprints (job counts)
        applied: Number of mutations actually executed by this backend
    """

    name = "abstract"

    def __init__(
        self,
        store: Optional[SnapshotStore] = None,
        build_variables: Optional[Dict[str, str]] = None,
    ):
        self.store = store
        self.build_variables = dict(build_variables or {})
        self.applied = 0
        self._handles: Dict[str, Any] = {}
        self._outputs: Dict[str, str] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    # ------------------------------------------------------------------
    # Snapshot bookkeeping
    # ------------------------------------------------------------------

    def _node_lock(self, fingerprint: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(fingerprint)
            if lock is None:
                lock = self._locks[fingerprint] = threading.Lock()
            return lock

    def _lookup(self, node: Environment) -> Optional[Any]:
        handle = self._handles.get(node.fingerprint)
        if handle is not None or self.store is None:
            return handle

        entry = self.store.get(node.fingerprint)
        if entry is None:
            return None

        handle = self._decode_handle(entry["handle"])
        if not self._is_available(handle):
            logger.info(
                f"[{self.name}] snapshot {node.fingerprint[:12]} is gone, rebuilding"
            )
            self.store.forget(node.fingerprint)
            return None

        self._handles[node.fingerprint] = handle
        self._outputs[node.fingerprint] = entry.get("output", "")
        return handle

    def _remember(self, node: Environment, handle: Any, output: str):
        self._handles[node.fingerprint] = handle
        self._outputs[node.fingerprint] = output

        encoded = self._encode_handle(handle)
        if self.store is not None and encoded is not None:
            self.store.put(node.fingerprint, encoded, output)

    def _encode_handle(self, handle: Any) -> Optional[str]:
        """Serialize a handle for the snapshot store (None: not persistable)."""
        return handle if isinstance(handle, str) else None

    def _decode_handle(self, encoded: str) -> Any:
        return encoded

    def _is_available(self, handle: Any) -> bool:
        """True if a handle read from the snapshot store still exists."""
        return True

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def materialize(
        self, env: Environment, fresh_from: Optional[Environment] = None
    ) -> Any:
        """
        Make sure the snapshot for ``env`` exists and return its handle.

        Only the mutations after the deepest already-materialized ancestor
        are executed. Each node is guarded by its own lock, so two branches
        sharing a prefix wait for each other instead of repeating work.

        Args:
            env: Snapshot to materialize
            fresh_from: Ancestor after which known snapshots are ignored and
                every mutation is executed again (forced cache miss)

        Returns:
            Backend-specific snapshot handle

        Raises:
            CommandFailedError: If a command exits non-zero
        """
        if fresh_from is not None and not env.is_descendant_of(fresh_from):
            raise ValueError("fresh_from must be an ancestor of the environment")

        handle: Any = None
        for node in env.lineage():
            with self._node_lock(node.fingerprint):
                reuse = fresh_from is None or node.depth <= fresh_from.depth
                cached = self._lookup(node) if reuse else None
                if cached is not None:
                    handle = cached
                    continue

                if node.mutation is None:
                    logger.debug(f"[{self.name}] base {node.base}")
                    handle, output = self._from_base(node.base), ""
                else:
                    logger.debug(f"[{self.name}] {node.mutation.describe()}")
                    handle, output = self._apply(handle, node.mutation, node.parent)
                    with self._guard:
                        self.applied += 1

                self._remember(node, handle, output)

        return handle

    def stdout(self, env: Environment) -> str:
        """Captured output of the most recent command in ``env``."""
        self.materialize(env)
        node: Optional[Environment] = env
        while node is not None and node.mutation is not None:
            if node.mutation.kind == MutationKind.EXEC:
                return self._outputs.get(node.fingerprint, "")
            node = node.parent
        return ""

    def export(self, env: Environment, path: str, destination: Path) -> Path:
        """
        Copy a file or directory out of a snapshot to the host.

        Args:
            env: Snapshot to export from
            path: Path inside the snapshot (relative paths use its workdir)
            destination: Host destination path

        Returns:
            The destination path
        """
        handle = self.materialize(env)
        source = posixpath.normpath(posixpath.join(env.workdir, path))
        destination = Path(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)
        return self._export(handle, env, source, destination)

    def publish(self, env: Environment, reference: str, credentials) -> str:
        """
        Push a snapshot to a registry under ``reference``.

        Returns:
            Content digest reported by the registry
        """
        handle = self.materialize(env)
        return self._publish(handle, env, reference, credentials)

    def _source_handle(self, artifact: Artifact) -> Any:
        """Handle of the snapshot holding an environment-backed artifact."""
        return self.materialize(artifact.environment)

    # ------------------------------------------------------------------
    # Subclass hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def _from_base(self, image: str) -> Any:
        """Prepare the base image and return its handle."""
        pass

    @abstractmethod
    def _apply(
        self, handle: Any, mutation: Mutation, before: Environment
    ) -> Tuple[Any, str]:
        """
        Apply one mutation on top of ``handle``.

        Args:
            handle: Snapshot of ``before``
            mutation: Mutation to apply
            before: Environment the mutation is applied to (workdir, variables)

        Returns:
            (new handle, captured output)
        """
        pass

    @abstractmethod
    def _export(
        self, handle: Any, env: Environment, source: str, destination: Path
    ) -> Path:
        pass

    @abstractmethod
    def _publish(
        self, handle: Any, env: Environment, reference: str, credentials
    ) -> str:
        pass
