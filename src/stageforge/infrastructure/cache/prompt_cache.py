"""
In-memory prompt cache with single-flight computation.

At most one computation per key runs at a time across the process; other
callers with the same key wait for its result. Entries expire after a TTL
and the least recently used entry is evicted beyond the capacity bound.
"""

import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass

from stageforge.domain.cancellation import CancellationToken
from stageforge.domain.exceptions import OperationCancelled
from stageforge.domain.interfaces import PromptCacheInterface
from stageforge.domain.models import PromptCacheEntry, ProviderResponse

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheStats:
    """Counters for cache effectiveness."""

    hits: int
    misses: int
    evictions: int
    size: int


class _Flight:
    """A computation in progress for one key."""

    def __init__(self) -> None:
        self.done = threading.Event()
        self.response: ProviderResponse | None = None
        self.error: BaseException | None = None


class InMemoryPromptCache(PromptCacheInterface):
    """LRU + TTL memo of rendered prompt -> provider response."""

    def __init__(
        self,
        capacity: int = 1024,
        ttl: float | None = 3600.0,
        clock: Callable[[], float] = time.monotonic,
        poll_interval: float = 0.05,
    ):
        """
        Args:
            capacity: Maximum number of entries kept
            ttl: Seconds an entry stays valid (None for no expiry)
            clock: Monotonic time source
            poll_interval: How often waiters check their cancel token
        """
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._capacity = capacity
        self._ttl = ttl
        self._clock = clock
        self._poll_interval = poll_interval
        self._entries: OrderedDict[str, PromptCacheEntry] = OrderedDict()
        self._flights: dict[str, _Flight] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, key: str) -> ProviderResponse | None:
        """Return the cached response or None (expired entries count as absent)."""
        with self._lock:
            return self._lookup(key)

    def get_or_compute(
        self,
        key: str,
        compute: Callable[[], ProviderResponse],
        cancel_token: CancellationToken | None = None,
    ) -> tuple[ProviderResponse, bool]:
        """
        Return the response for key, computing it at most once concurrently.

        Callers that wait on another caller's computation receive hit=True:
        no upstream call was made on their behalf. A computation that fails
        is not cached and its error is raised to every waiter, except
        cancellation of the computing caller, after which a waiter takes over.
        """
        while True:
            with self._lock:
                cached = self._lookup(key)
                if cached is not None:
                    self._hits += 1
                    return cached, True
                flight = self._flights.get(key)
                leader = flight is None
                if flight is None:
                    flight = _Flight()
                    self._flights[key] = flight
                    self._misses += 1

            if leader:
                return self._lead(key, flight, compute), False

            self._await(flight, cancel_token)
            if isinstance(flight.error, OperationCancelled):
                logger.debug("Leader for %s was cancelled; retrying", key[:12])
                continue
            if flight.error is not None:
                raise flight.error
            if flight.response is None:
                continue
            with self._lock:
                self._hits += 1
            return flight.response, True

    def purge_expired(self) -> int:
        """Drop every expired entry; returns how many were dropped."""
        with self._lock:
            now = self._clock()
            expired = [k for k, e in self._entries.items() if e.is_expired(now)]
            for key in expired:
                del self._entries[key]
            self._evictions += len(expired)
            return len(expired)

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
                size=len(self._entries),
            )

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _lead(
        self,
        key: str,
        flight: _Flight,
        compute: Callable[[], ProviderResponse],
    ) -> ProviderResponse:
        try:
            response = compute()
        except BaseException as exc:
            flight.error = exc
            raise
        else:
            flight.response = response
            with self._lock:
                self._store(key, response)
            return response
        finally:
            with self._lock:
                self._flights.pop(key, None)
            flight.done.set()

    def _await(self, flight: _Flight, cancel_token: CancellationToken | None) -> None:
        if cancel_token is None:
            flight.done.wait()
            return
        while not flight.done.wait(self._poll_interval):
            cancel_token.raise_if_cancelled()

    def _lookup(self, key: str) -> ProviderResponse | None:
        """Lock must be held."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._entries[key]
            self._evictions += 1
            return None
        self._entries.move_to_end(key)
        return entry.response

    def _store(self, key: str, response: ProviderResponse) -> None:
        """Lock must be held. Existing live entries are never rewritten."""
        if key in self._entries:
            return
        self._entries[key] = PromptCacheEntry(
            key=key, response=response, created_at=self._clock(), ttl=self._ttl
        )
        while len(self._entries) > self._capacity:
            evicted, _ = self._entries.popitem(last=False)
            self._evictions += 1
            logger.debug("Evicted cache entry %s", evicted[:12])
