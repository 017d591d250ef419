"""
Result cache for contentforge.

Memoises successful artifacts by fingerprint with a TTL and LRU bound, and
collapses concurrent identical work into one upstream call (singleflight).
"""

import logging
import time
from collections import OrderedDict
from concurrent.futures import Future
from threading import Lock
from typing import Callable, Optional

from contentforge.schemas import ArtifactResult, CacheEntry


logger = logging.getLogger(__name__)


class ResultCache:
    """
    Fingerprint-keyed artifact cache.

    Failures are never stored. Expired entries are dropped on read.
    """

    def __init__(
        self,
        max_entries: int = 2000,
        default_ttl: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_entries = max_entries
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._inflight: dict[str, Future] = {}
        self._lock = Lock()

        self._hits = 0
        self._misses = 0
        self._joins = 0
        self._evictions = 0

    def get(self, fingerprint: str) -> tuple[Optional[ArtifactResult], bool]:
        """Returns (artifact, True) on a live hit, else (None, False)."""
        with self._lock:
            artifact = self._lookup(fingerprint)
            if artifact is None:
                self._misses += 1
                return None, False
            self._hits += 1
            return artifact, True

    def put(self, fingerprint: str, artifact: ArtifactResult, ttl: Optional[float] = None) -> None:
        if artifact.is_degraded:
            return
        now = self._clock()
        ttl = self.default_ttl if ttl is None else ttl
        entry = CacheEntry(
            fingerprint=fingerprint,
            artifact=artifact,
            created_at=now,
            expires_at=now + ttl,
        )
        with self._lock:
            self._entries[fingerprint] = entry
            self._entries.move_to_end(fingerprint)
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                self._evictions += 1
                logger.debug("Evicted cache entry %s", evicted[:12])

    def do(
        self,
        fingerprint: str,
        fn: Callable[[], ArtifactResult],
        timeout: Optional[float] = None,
    ) -> tuple[ArtifactResult, bool]:
        """
        Run `fn` at most once concurrently per fingerprint.

        The first caller (leader) runs `fn`; concurrent callers wait on the
        leader's outcome for up to `timeout` seconds. The leader re-checks
        the cache before calling. An exception raised by `fn` is re-raised
        in the leader and in every current waiter.

        Returns:
            (artifact, shared). `shared` is True when the artifact came from
            the cache or from another caller's in-flight work.

        Raises:
            concurrent.futures.TimeoutError: If a waiter gives up first
        """
        with self._lock:
            cached = self._lookup(fingerprint)
            if cached is not None:
                self._hits += 1
                return cached, True

            future = self._inflight.get(fingerprint)
            if future is not None:
                self._joins += 1
                leader = False
            else:
                future = Future()
                self._inflight[fingerprint] = future
                leader = True

        if not leader:
            return future.result(timeout=timeout), True

        try:
            artifact = fn()
        except BaseException as exc:
            future.set_exception(exc)
            raise
        else:
            future.set_result(artifact)
            return artifact, False
        finally:
            with self._lock:
                self._inflight.pop(fingerprint, None)

    def invalidate(self, fingerprint: str) -> bool:
        with self._lock:
            return self._entries.pop(fingerprint, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def get_stats(self) -> dict:
        with self._lock:
            return {
                "hits": self._hits,
                "misses": self._misses,
                "single_flight_joins": self._joins,
                "evictions": self._evictions,
                "entries": len(self._entries),
                "inflight": len(self._inflight),
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _lookup(self, fingerprint: str) -> Optional[ArtifactResult]:
        """Caller must hold the lock."""
        entry = self._entries.get(fingerprint)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at:
            del self._entries[fingerprint]
            return None
        self._entries.move_to_end(fingerprint)
        return entry.artifact

