"""
In-memory catalog index with fuzzy search.

Holds one snapshot of the full remote catalog, refreshed at most once
per refresh interval, and ranks names against free-text queries. Hits
from the store's own search are merged in ahead of local matches for
the same id.
"""

import asyncio
import time
from collections.abc import Callable
from typing import Protocol

from applist_builder.cache.result_cache import ResultCache
from applist_builder.catalog.entries import CatalogEntry, HitSource, SearchHit
from applist_builder.catalog.scoring import MIN_QUERY_LENGTH, normalize_query, score_name
from applist_builder.config import get_settings
from applist_builder.errors import CatalogError
from applist_builder.logger import get_logger


class CatalogSource(Protocol):
    async def fetch_all(self) -> list[CatalogEntry]: ...


class SearchSource(Protocol):
    async def search(self, term: str) -> list[CatalogEntry]: ...


class CatalogIndex:
    """
    Fuzzy-searchable snapshot of the remote catalog.

    Refresh failures never reach callers: the previous snapshot (or an
    empty one) keeps serving until a later refresh succeeds.

    Example:
        >>> index = CatalogIndex(AppListClient(), search_source=StoreSearchClient())
        >>> entries = await index.search("portal", max_results=10)
    """

    def __init__(
        self,
        source: CatalogSource,
        *,
        search_source: SearchSource | None = None,
        cache: ResultCache | None = None,
        refresh_interval_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        settings = get_settings()
        self._source = source
        self._search_source = search_source
        self._cache = cache or ResultCache(ttl_seconds=settings.cache.result_ttl_seconds)
        self._refresh_interval = (
            refresh_interval_seconds
            if refresh_interval_seconds is not None
            else settings.cache.catalog_refresh_hours * 3600
        )
        self._clock = clock
        self._snapshot: tuple[CatalogEntry, ...] = ()
        self._expires_at: float | None = None
        self._refresh_task: asyncio.Task[tuple[CatalogEntry, ...]] | None = None
        self._logger = get_logger(__name__, component="catalog_index")

    @property
    def snapshot(self) -> tuple[CatalogEntry, ...]:
        """Current catalog snapshot, possibly empty."""
        return self._snapshot

    def _is_fresh(self) -> bool:
        return self._expires_at is not None and self._clock() < self._expires_at

    def clear(self) -> None:
        """Forget the snapshot so the next lookup refreshes it."""
        self._snapshot = ()
        self._expires_at = None

    async def get_entries(self) -> tuple[CatalogEntry, ...]:
        """
        Return the catalog, refreshing it if it is missing or stale.

        Concurrent callers collapse into a single refresh. A cancelled
        caller stops waiting but the refresh keeps running for the others.
        """
        if self._is_fresh():
            return self._snapshot

        if self._refresh_task is None:
            self._refresh_task = asyncio.ensure_future(self._refresh())
        else:
            self._logger.debug("Joining in-flight catalog refresh")
        return await asyncio.shield(self._refresh_task)

    async def _refresh(self) -> tuple[CatalogEntry, ...]:
        try:
            entries = await self._source.fetch_all()
        except CatalogError as e:
            self._logger.error(
                "Catalog refresh failed, serving previous snapshot",
                error=str(e),
                snapshot_size=len(self._snapshot),
            )
            return self._snapshot
        finally:
            self._refresh_task = None

        if not entries:
            self._logger.warning(
                "Catalog refresh returned no apps, keeping previous snapshot",
                snapshot_size=len(self._snapshot),
            )
            return self._snapshot

        self._snapshot = tuple(entries)
        self._expires_at = self._clock() + self._refresh_interval
        self._logger.info("Catalog snapshot refreshed", total_apps=len(self._snapshot))
        return self._snapshot

    async def _store_search(self, query: str) -> list[CatalogEntry]:
        if self._search_source is None:
            return []
        search_source = self._search_source
        try:
            return await self._cache.get_or_fetch(
                f"store_search:{query}",
                lambda: search_source.search(query),
            )
        except CatalogError as e:
            self._logger.warning("Store search failed, using local matches only", error=str(e))
            return []

    async def rank(self, query: str, max_results: int = 50) -> list[SearchHit]:
        """
        Score and order catalog entries for ``query``.

        Args:
            query: Free-text search
            max_results: Upper bound on returned hits

        Returns:
            list[SearchHit]: Hits ordered by score, then shorter name
        """
        normalized = normalize_query(query)
        if len(normalized) < MIN_QUERY_LENGTH or max_results <= 0:
            return []

        remote_entries, entries = await asyncio.gather(
            self._store_search(normalized),
            self.get_entries(),
        )

        hits: dict[str, SearchHit] = {}
        for entry in remote_entries:
            if entry.id not in hits:
                hits[entry.id] = SearchHit(
                    entry=entry,
                    score=score_name(entry.name, normalized),
                    source=HitSource.STORE_SEARCH,
                )

        for entry in entries:
            if entry.id in hits:
                continue
            score = score_name(entry.name, normalized)
            if score > 0:
                hits[entry.id] = SearchHit(entry=entry, score=score, source=HitSource.LOCAL)

        ranked = sorted(hits.values(), key=lambda hit: hit.sort_key)[:max_results]
        self._logger.debug(
            "Search ranked",
            query=normalized,
            remote_hits=len(remote_entries),
            results=len(ranked),
        )
        return ranked

    async def search(self, query: str, max_results: int = 50) -> list[CatalogEntry]:
        """Return the best matching catalog entries for ``query``."""
        return [hit.entry for hit in await self.rank(query, max_results)]
