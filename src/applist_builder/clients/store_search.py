"""
Steam Store search client.

The store's own search ranks by relevance and popularity, which catches
matches a purely textual scorer misses (abbreviations, localized names).
"""

from typing import Any

import httpx

from applist_builder.catalog.entries import CatalogEntry
from applist_builder.clients.base import BaseHTTPClient
from applist_builder.config import RetryConfig, get_settings
from applist_builder.errors import ParseFailure


class StoreSearchClient(BaseHTTPClient):
    """Free-text search against the Steam Store."""

    source_name = "steam_store_search"

    def __init__(
        self,
        *,
        client: httpx.AsyncClient | None = None,
        retry_config: RetryConfig | None = None,
        url: str | None = None,
    ) -> None:
        super().__init__(client=client, retry_config=retry_config)
        settings = get_settings()
        self._url = url or settings.steam.store_search_url
        self._language = settings.steam.language
        self._country_code = settings.steam.country_code

    def _parse_response(self, data: Any) -> list[CatalogEntry]:
        # The endpoint answers {"total": n, "items": [...]}; a bare list is accepted too
        items = data.get("items") if isinstance(data, dict) else data
        if not isinstance(items, list):
            raise ParseFailure("Unexpected store search payload", source=self.source_name)

        entries = []
        for item in items:
            if not isinstance(item, dict):
                continue
            app_id = str(item.get("id", "")).strip()
            name = str(item.get("name") or "").strip()
            if not app_id or not name:
                continue
            entries.append(
                CatalogEntry(
                    id=app_id,
                    name=name,
                    tiny_image_url=item.get("tiny_image") or item.get("tinyImageUrl"),
                )
            )
        return entries

    async def search(self, term: str) -> list[CatalogEntry]:
        """
        Search the store for ``term``.

        Raises:
            NetworkFailure: Request failed after retries
            ParseFailure: Response body was not a search result list
        """
        data = await self._get_json(
            self._url,
            params={"term": term, "l": self._language, "cc": self._country_code},
        )
        entries = self._parse_response(data)
        self._logger.debug("Store search complete", term=term, results=len(entries))
        return entries
