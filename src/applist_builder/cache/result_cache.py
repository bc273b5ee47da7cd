"""
Single-flight TTL cache for network lookups.

Concurrent requests for the same key share one in-flight fetch. Values
become visible only once a fetch succeeds, and expired entries are never
served. Failures are not cached.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from applist_builder.logger import get_logger

T = TypeVar("T")

DEFAULT_TTL_SECONDS = 30 * 60


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """A cached value and the monotonic time it stops being valid."""

    value: T
    expires_at: float

    def is_fresh(self, now: float) -> bool:
        return now < self.expires_at


class ResultCache:
    """
    Keyed cache with single-flight fetches and a fixed TTL.

    All bookkeeping happens on the event loop between awaits, so no lock
    is needed: a reader sees either no entry or a complete one.

    Example:
        >>> cache = ResultCache()
        >>> record = await cache.get_or_fetch("app:570", lambda: fetch(570))
    """

    def __init__(
        self,
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, CacheEntry[Any]] = {}
        self._in_flight: dict[str, asyncio.Task[Any]] = {}
        self._logger = get_logger(__name__, component="result_cache")

    def __len__(self) -> int:
        return len(self._entries)

    def peek(self, key: str) -> Any | None:
        """Return a fresh cached value without fetching, dropping stale ones."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if not entry.is_fresh(self._clock()):
            del self._entries[key]
            return None
        return entry.value

    def put(self, key: str, value: Any) -> None:
        """Store a value, replacing any previous entry for the key."""
        now = self._clock()
        self.purge_expired(now)
        self._entries[key] = CacheEntry(value=value, expires_at=now + self._ttl)

    def purge_expired(self, now: float | None = None) -> int:
        """
        Drop every expired entry.

        Returns:
            int: Number of entries removed
        """
        now = self._clock() if now is None else now
        expired = [key for key, entry in self._entries.items() if not entry.is_fresh(now)]
        for key in expired:
            del self._entries[key]
        if expired:
            self._logger.debug("Purged expired entries", count=len(expired))
        return len(expired)

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        """Drop all stored values. In-flight fetches still complete."""
        self._entries.clear()

    def is_fetching(self, key: str) -> bool:
        return key in self._in_flight

    async def get_or_fetch(self, key: str, fetch: Callable[[], Awaitable[T]]) -> T:
        """
        Return the cached value for ``key`` or run ``fetch`` once to get it.

        Args:
            key: Cache key
            fetch: Zero-argument coroutine factory producing the value

        Returns:
            The cached or freshly fetched value. ``None`` results are
            returned but not stored.

        Raises:
            Whatever ``fetch`` raises. Every waiter of that flight sees the
            same exception and nothing is cached.
        """
        cached = self.peek(key)
        if cached is not None:
            return cached  # type: ignore[no-any-return]

        # A cancelled waiter must not cancel the fetch other waiters share
        return await asyncio.shield(self.ensure_fetch(key, fetch))

    def ensure_fetch(self, key: str, fetch: Callable[[], Awaitable[T]]) -> "asyncio.Task[T]":
        """
        Return the in-flight fetch for ``key``, starting one if there is none.

        Registration happens before this returns, so callers can claim
        several keys without yielding to the event loop in between. Does
        not consult stored values; use ``peek`` first.
        """
        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._run_fetch(key, fetch))
            self._in_flight[key] = task
        else:
            self._logger.debug("Joining in-flight fetch", key=key)
        return task

    async def _run_fetch(self, key: str, fetch: Callable[[], Awaitable[T]]) -> T:
        try:
            value = await fetch()
        finally:
            self._in_flight.pop(key, None)

        if value is not None:
            self.put(key, value)
        return value
