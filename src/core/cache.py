"""In-memory keyed result cache with TTL expiry, LRU eviction and single-flight.

Values are computed by an async callable on a miss, stored with an
expiration timestamp from an injectable clock, and evicted least-recently-used
first once capacity is exceeded. Concurrent misses on the same key share one
computation.

All bookkeeping runs without awaiting, so on a single event loop each
operation is atomic with respect to other tasks. Only the computation itself
is awaited, outside any bookkeeping.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Generic, Hashable, Optional, TypeVar, Union

from core.errors import ComputationError, InvalidConfigurationError

T = TypeVar("T")

Clock = Callable[[], float]

logger = logging.getLogger(__name__)


class _Miss:
    # Sentinel type so a cached None is still a hit
    _instance: Optional["_Miss"] = None

    def __new__(cls) -> "_Miss":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISS"

    def __bool__(self) -> bool:
        return False


MISS = _Miss()


@dataclass(frozen=True, slots=True)
class CacheEntry(Generic[T]):
    value: T
    created_at: float
    expires_at: float

    def is_live(self, now: float) -> bool:
        return now < self.expires_at


@dataclass(frozen=True, slots=True)
class CacheStats:
    hits: int
    misses: int
    waits: int
    evictions: int
    expirations: int
    failures: int
    size: int
    capacity: int


class _Flight(Generic[T]):
    # One in-flight computation; followers await the shared future
    __slots__ = ("future", "waiters")

    def __init__(self, future: "asyncio.Future[T]") -> None:
        self.future = future
        self.waiters = 0


def _validate_ttl(ttl: float, *, name: str) -> float:
    try:
        value = float(ttl)
    except (TypeError, ValueError) as e:
        raise InvalidConfigurationError(f"{name} must be a number, got {ttl!r}") from e
    if not math.isfinite(value) or value <= 0:
        raise InvalidConfigurationError(f"{name} must be positive and finite, got {ttl!r}")
    return value


class KeyedResultCache(Generic[T]):
    """Bounded TTL cache over an expensive keyed async computation.

    Usage:
      cache = KeyedResultCache(capacity=256, default_ttl=300.0)
      value = await cache.get_or_compute(key, lambda: fetch(key))

    Key behavior:
      - ``get`` never blocks and returns ``MISS`` for absent or expired keys.
      - ``get_or_compute`` runs at most one computation per key at a time;
        other callers for that key wait for it and share its outcome.
      - Failures are never cached and are raised to every waiter.
      - Expired entries are purged lazily on access, on insertion pressure,
        or by ``sweep`` / ``run_sweeper``.
    """

    def __init__(self, *, capacity: int, default_ttl: float, clock: Optional[Clock] = None) -> None:
        if isinstance(capacity, bool) or not isinstance(capacity, int) or capacity <= 0:
            raise InvalidConfigurationError(f"capacity must be a positive integer, got {capacity!r}")

        self._capacity = capacity
        self._default_ttl = _validate_ttl(default_ttl, name="default_ttl")
        self._clock: Clock = clock or time.monotonic

        self._store: "OrderedDict[Hashable, CacheEntry[T]]" = OrderedDict()
        self._in_flight: Dict[Hashable, _Flight[T]] = {}

        self._hits = 0
        self._misses = 0
        self._waits = 0
        self._evictions = 0
        self._expirations = 0
        self._failures = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def default_ttl(self) -> float:
        return self._default_ttl

    def get(self, key: Hashable) -> Union[T, _Miss]:
        """Return the live value for ``key`` or ``MISS``."""
        entry = self._live_entry(key)
        if entry is None:
            self._misses += 1
            return MISS
        self._hits += 1
        return entry.value

    async def get_or_compute(
        self,
        key: Hashable,
        compute_fn: Callable[[], Awaitable[T]],
        ttl: Optional[float] = None,
        *,
        timeout: Optional[float] = None,
    ) -> T:
        """Return the cached value for ``key``, computing it once on a miss.

        ``ttl`` overrides the default lifetime for a freshly computed entry.
        ``timeout`` bounds how long a follower waits for another caller's
        computation; it raises ``TimeoutError`` without disturbing that
        computation. The caller that computes is not bounded by it.
        """
        entry_ttl = self._default_ttl if ttl is None else _validate_ttl(ttl, name="ttl")

        entry = self._live_entry(key)
        if entry is not None:
            self._hits += 1
            return entry.value

        flight = self._in_flight.get(key)
        if flight is not None:
            self._waits += 1
            return await self._follow(flight, timeout)

        self._misses += 1
        flight = _Flight(asyncio.get_running_loop().create_future())
        self._in_flight[key] = flight
        logger.debug("cache flight started", extra={"cache_key": repr(key)})

        try:
            value = await compute_fn()
        except Exception as exc:
            self._finish_flight(key, flight)
            self._failures += 1
            logger.debug("cache flight failed", extra={"cache_key": repr(key)})
            self._reject(flight, exc)
            raise
        except BaseException as exc:
            # Cancellation or other non-Exception exits: followers get the cache's own error
            self._finish_flight(key, flight)
            self._failures += 1
            self._reject(flight, ComputationError(key, f"computation ended without a result ({type(exc).__name__})"))
            raise

        # An invalidation while computing detaches the flight; its waiters
        # still get the value but it is not published.
        if self._finish_flight(key, flight):
            now = self._clock()
            self._store[key] = CacheEntry(value=value, created_at=now, expires_at=now + entry_ttl)
            self._store.move_to_end(key, last=True)
            self._evict(keep=key, now=now)

        if not flight.future.done():
            flight.future.set_result(value)
        return value

    def invalidate(self, key: Hashable) -> None:
        """Drop ``key`` and detach any computation running for it."""
        removed = self._store.pop(key, None) is not None
        detached = self._in_flight.pop(key, None) is not None
        if removed or detached:
            logger.debug("cache key invalidated", extra={"cache_key": repr(key)})

    def invalidate_where(self, predicate: Callable[[Hashable], bool]) -> int:
        """Drop every entry and flight whose key matches; returns entries dropped."""
        keys = [k for k in self._store if predicate(k)]
        for k in keys:
            del self._store[k]
        for k in [k for k in self._in_flight if predicate(k)]:
            del self._in_flight[k]
        logger.debug("cache keys invalidated", extra={"removed": len(keys)})
        return len(keys)

    def invalidate_all(self) -> None:
        count = len(self._store)
        self._store.clear()
        self._in_flight.clear()
        logger.debug("cache cleared", extra={"removed": count})

    def size(self) -> int:
        now = self._clock()
        return sum(1 for entry in self._store.values() if entry.is_live(now))

    def sweep(self) -> int:
        """Remove all expired entries; returns how many were removed."""
        return self._purge_expired(self._clock())

    async def run_sweeper(self, interval: float) -> None:
        """Call ``sweep`` every ``interval`` seconds until cancelled."""
        period = _validate_ttl(interval, name="sweep interval")
        while True:
            await asyncio.sleep(period)
            removed = self.sweep()
            if removed:
                logger.debug("cache sweep removed expired entries", extra={"removed": removed})

    def stats(self) -> CacheStats:
        return CacheStats(
            hits=self._hits,
            misses=self._misses,
            waits=self._waits,
            evictions=self._evictions,
            expirations=self._expirations,
            failures=self._failures,
            size=self.size(),
            capacity=self._capacity,
        )

    # --- internals ---

    def _live_entry(self, key: Hashable) -> Optional[CacheEntry[T]]:
        entry = self._store.get(key)
        if entry is None:
            return None

        if not entry.is_live(self._clock()):
            self._store.pop(key, None)
            self._expirations += 1
            return None

        # Move to end to mark as recently used
        self._store.move_to_end(key, last=True)
        return entry

    async def _follow(self, flight: _Flight[T], timeout: Optional[float]) -> T:
        flight.waiters += 1
        try:
            # Shield so a follower timing out or being cancelled leaves the flight alone
            return await asyncio.wait_for(asyncio.shield(flight.future), timeout)
        finally:
            flight.waiters -= 1

    def _finish_flight(self, key: Hashable, flight: _Flight[T]) -> bool:
        # Clears the marker only if it is still ours
        if self._in_flight.get(key) is flight:
            del self._in_flight[key]
            return True
        return False

    def _reject(self, flight: _Flight[T], exc: BaseException) -> None:
        if flight.future.done():
            return
        flight.future.set_exception(exc)
        if flight.waiters == 0:
            # Nobody is listening; mark the exception retrieved
            flight.future.exception()

    def _purge_expired(self, now: float) -> int:
        expired = [k for k, entry in self._store.items() if not entry.is_live(now)]
        for k in expired:
            del self._store[k]
        self._expirations += len(expired)
        return len(expired)

    def _evict(self, *, keep: Hashable, now: float) -> None:
        if len(self._store) <= self._capacity:
            return

        # Expired entries go before any live one
        self._purge_expired(now)

        while len(self._store) > self._capacity:
            victim = next(k for k in self._store if k != keep)
            del self._store[victim]
            self._evictions += 1
            logger.debug("cache entry evicted", extra={"cache_key": repr(victim)})
