"""
Run-scoped artifact cache.

Keyed by step fingerprint. Lookups and insertions are atomic, and a
fingerprint that is being computed is tracked as an in-flight future so
that concurrent requesters wait for the single running execution instead
of starting their own.
"""

import logging
import threading
from concurrent.futures import Future
from typing import Callable, Dict, Optional, Tuple

from crosskit.env import Artifact

logger = logging.getLogger(__name__)


class ArtifactCache:
    """
    Thread-safe fingerprint → Artifact cache with in-flight deduplication.

    Attributes:
        enabled: When False nothing is stored, so every request executes
            (concurrent requests for the same fingerprint are still merged)
        hits: Requests served from the cache or from an in-flight execution
        misses: Requests that executed the factory
    """

    def __init__(self, enabled: bool = True):
        self.enabled = enabled
        self.hits = 0
        self.misses = 0
        self._artifacts: Dict[str, Artifact] = {}
        self._inflight: Dict[str, Future] = {}
        self._lock = threading.Lock()

    def get(self, fingerprint: str) -> Optional[Artifact]:
        with self._lock:
            return self._artifacts.get(fingerprint)

    def __contains__(self, fingerprint: str) -> bool:
        with self._lock:
            return fingerprint in self._artifacts

    def __len__(self) -> int:
        with self._lock:
            return len(self._artifacts)

    def get_or_create(
        self, fingerprint: str, factory: Callable[[], Artifact]
    ) -> Tuple[Artifact, bool]:
        """
        Return the artifact for ``fingerprint``, computing it at most once.

        Args:
            fingerprint: Step fingerprint
            factory: Produces the artifact on a miss

        Returns:
            (artifact, created) where created is True if this call ran factory

        Raises:
            Whatever the factory raised, for the owner and every waiter
        """
        with self._lock:
            if self.enabled and fingerprint in self._artifacts:
                self.hits += 1
                return self._artifacts[fingerprint], False

            future = self._inflight.get(fingerprint)
            owner = future is None
            if owner:
                future = self._inflight[fingerprint] = Future()
                self.misses += 1
            else:
                self.hits += 1

        if not owner:
            logger.debug(f"Waiting for in-flight artifact {fingerprint[:12]}")
            return future.result(), False

        try:
            artifact = factory()
        except BaseException as e:
            with self._lock:
                del self._inflight[fingerprint]
            future.set_exception(e)
            raise

        with self._lock:
            if self.enabled:
                self._artifacts[fingerprint] = artifact
            del self._inflight[fingerprint]
        future.set_result(artifact)
        return artifact, True
