"""
Catalog service that wires the pipeline together.

Owns the HTTP clients, the shared result cache and concurrency limiter,
the product-info client, icon cache, catalog index and resolver, and
exposes the operations a front end needs: search, import resolution,
icon warm-up and cache pruning.
"""

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx

from applist_builder.cache.icons import IconCache
from applist_builder.cache.result_cache import ResultCache
from applist_builder.catalog.entries import CatalogEntry
from applist_builder.catalog.index import CatalogIndex, CatalogSource, SearchSource
from applist_builder.clients.app_list import AppListClient
from applist_builder.clients.base import USER_AGENT
from applist_builder.clients.store_search import StoreSearchClient
from applist_builder.config import Settings, get_settings
from applist_builder.logger import get_logger, log_context
from applist_builder.product_info.client import ProductInfoClient
from applist_builder.product_info.contracts import DisplayType, ProductRecord
from applist_builder.product_info.transport import ProductInfoTransport
from applist_builder.resolution.resolver import CatalogResolver, ImportResolution, OwnedItems
from applist_builder.utils.limiter import ConcurrencyLimiter, LimiterConfig


@dataclass
class EnrichedItem:
    """A search hit joined with its product record and icon."""

    id: str
    name: str
    display_type: DisplayType
    icon_path: Path | None = None
    tiny_image_url: str | None = None
    resolved: bool = False


class CatalogService:
    """
    Facade over the catalog pipeline.

    Example:
        >>> async with CatalogService() as service:
        ...     items = await service.search("half-life")
    """

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        transport: ProductInfoTransport | None = None,
        catalog_source: CatalogSource | None = None,
        search_source: SearchSource | None = None,
        http_client: httpx.AsyncClient | None = None,
        icon_dir: Path | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._logger = get_logger(__name__, component="service")

        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(self._settings.steam.timeout_seconds),
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
        )

        self._cache = ResultCache(ttl_seconds=self._settings.cache.result_ttl_seconds)
        self._limiter = ConcurrencyLimiter(
            LimiterConfig(max_concurrent=self._settings.network.max_concurrent_requests)
        )

        if transport is None:
            from applist_builder.product_info.steam_transport import SteamClientTransport

            transport = SteamClientTransport.from_config(self._settings.product_info)
        self._transport = transport
        self._products = ProductInfoClient(
            transport,
            config=self._settings.product_info,
            cache=self._cache,
        )

        self._icons = IconCache(
            icon_dir or self._settings.cache.icon_dir,
            config=self._settings.icons,
            client=self._http_client,
            limiter=self._limiter,
            record_lookup=self._products.get_record,
        )

        self._index = CatalogIndex(
            catalog_source
            or AppListClient(client=self._http_client, retry_config=self._settings.retry),
            search_source=search_source
            or StoreSearchClient(client=self._http_client, retry_config=self._settings.retry),
            cache=self._cache,
            refresh_interval_seconds=self._settings.cache.catalog_refresh_hours * 3600,
        )
        self._resolver = CatalogResolver(self._products, self._icons)
        self._active_search: asyncio.Task[list[EnrichedItem]] | None = None

    @property
    def index(self) -> CatalogIndex:
        return self._index

    @property
    def transport(self) -> ProductInfoTransport:
        return self._transport

    @property
    def products(self) -> ProductInfoClient:
        return self._products

    @property
    def icons(self) -> IconCache:
        return self._icons

    @property
    def resolver(self) -> CatalogResolver:
        return self._resolver

    async def start(self) -> None:
        """Start the product-info session loop."""
        await self._products.start()

    async def close(self) -> None:
        """Stop background work and release network resources."""
        if self._active_search is not None and not self._active_search.done():
            self._active_search.cancel()
        await self._products.stop()
        await self._icons.close()
        if self._owns_http_client and not self._http_client.is_closed:
            await self._http_client.aclose()
        close_transport = getattr(self._transport, "close", None)
        if callable(close_transport):
            close_transport()
        self._logger.info("Catalog service closed")

    async def __aenter__(self) -> "CatalogService":
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    # Search

    async def search(
        self,
        query: str,
        max_results: int = 50,
        *,
        with_icons: bool = True,
    ) -> list[EnrichedItem]:
        """
        Search the catalog and enrich hits with records and icons.

        Starting a new search cancels the one in flight; the superseded
        caller receives an empty list.
        """
        previous = self._active_search
        task = asyncio.ensure_future(self._run_search(query, max_results, with_icons))
        self._active_search = task
        if previous is not None and not previous.done():
            self._logger.debug("Superseding in-flight search")
            previous.cancel()

        try:
            return await task
        except asyncio.CancelledError:
            if task.cancelled() and self._active_search is not task:
                return []
            raise
        finally:
            if self._active_search is task:
                self._active_search = None

    async def _run_search(
        self,
        query: str,
        max_results: int,
        with_icons: bool,
    ) -> list[EnrichedItem]:
        with log_context(search_query=query):
            return await self._search_and_enrich(query, max_results, with_icons)

    async def _search_and_enrich(
        self,
        query: str,
        max_results: int,
        with_icons: bool,
    ) -> list[EnrichedItem]:
        entries = await self._index.search(query, max_results)
        if not entries:
            return []

        records = await self._products.get_records(entry.id for entry in entries)
        items = [self._enrich(entry, records.get(entry.id)) for entry in entries]

        if with_icons:
            lookup = [
                records.get(entry.id) or ProductRecord(id=entry.id, name=entry.name)
                for entry in entries
            ]
            thumbnails = {
                entry.id: [entry.tiny_image_url] for entry in entries if entry.tiny_image_url
            }
            paths = await self._icons.resolve_icons(lookup, thumbnails)
            for item in items:
                item.icon_path = paths.get(item.id)

        self._logger.info(
            "Search complete",
            query=query,
            results=len(items),
            resolved=sum(item.resolved for item in items),
        )
        return items

    @staticmethod
    def _enrich(entry: CatalogEntry, record: ProductRecord | None) -> EnrichedItem:
        if record is None:
            return EnrichedItem(
                id=entry.id,
                name=entry.name,
                display_type=DisplayType.GAME,
                tiny_image_url=entry.tiny_image_url,
            )
        return EnrichedItem(
            id=entry.id,
            name=record.name,
            display_type=record.display_type,
            tiny_image_url=entry.tiny_image_url,
            resolved=True,
        )

    # Import

    async def resolve_import(
        self,
        candidate_ids: Iterable[str],
        already_owned: OwnedItems = (),
    ) -> ImportResolution:
        return await self._resolver.resolve(candidate_ids, already_owned)

    # Icons

    async def resolve_icon(self, app_id: str) -> Path | None:
        """Icon for one id, fetching its record when nothing is cached."""
        cached = self._icons.get_cached_icon_path(app_id)
        if cached is not None:
            return cached
        record = await self._products.get_record(app_id)
        if record is None:
            self._logger.warning("No product record for icon", app_id=app_id)
            return None
        return await self._icons.resolve_icon(record)

    async def warm_icons(self, app_ids: Iterable[str]) -> dict[str, Path | None]:
        """
        Fetch icons for tracked ids that have no cached file yet.

        Returns:
            dict[str, Path | None]: Result per id that needed fetching
        """
        missing = [
            str(app_id)
            for app_id in dict.fromkeys(app_ids)
            if self._icons.get_cached_icon_path(str(app_id)) is None
        ]
        if not missing:
            return {}

        self._logger.info("Warming icon cache", missing=len(missing))
        records = await self._products.get_records(missing)
        unresolved = [app_id for app_id in missing if app_id not in records]
        if unresolved:
            self._logger.warning("Skipping icons without records", count=len(unresolved))

        paths: dict[str, Path | None] = dict.fromkeys(unresolved)
        paths.update(await self._icons.resolve_icons(records.values()))
        return paths

    def prune_icons(self, valid_ids: Iterable[str]) -> int:
        """Delete cached icons for ids no longer tracked."""
        return self._icons.delete_unused_icons(valid_ids)
