"""
Steam App List client.

Drains the paginated IStoreService catalog into ``CatalogEntry`` values.
"""

from typing import Any

import httpx

from applist_builder.catalog.entries import CatalogEntry
from applist_builder.clients.base import BaseHTTPClient
from applist_builder.config import RetryConfig, get_settings
from applist_builder.errors import ParseFailure


class AppListClient(BaseHTTPClient):
    """
    Fetches the complete list of Steam apps.

    The endpoint pages with a ``last_appid`` cursor and reports
    ``have_more_results``. A snapshot is only complete once every page
    has been read, so any failed page fails the whole fetch.
    """

    source_name = "steam_app_list"

    def __init__(
        self,
        *,
        client: httpx.AsyncClient | None = None,
        retry_config: RetryConfig | None = None,
        url: str | None = None,
        page_size: int | None = None,
    ) -> None:
        super().__init__(client=client, retry_config=retry_config)
        settings = get_settings()
        self._url = url or settings.steam.app_list_url
        self._page_size = page_size or settings.steam.app_list_page_size
        self._api_key = settings.steam.api_key
        if self._api_key is None:
            self._logger.warning("STEAM_API_KEY not set, IStoreService calls may fail")

    def _params(self, last_appid: int) -> dict[str, Any]:
        params: dict[str, Any] = {
            "max_results": self._page_size,
            "last_appid": last_appid,
            "include_games": "true",
            "include_dlc": "true",
            "include_software": "true",
            "include_videos": "true",
            "include_hardware": "false",
        }
        if self._api_key is not None:
            params["key"] = self._api_key.get_secret_value()
        return params

    def _parse_page(self, data: Any) -> tuple[list[CatalogEntry], bool, int | None]:
        """Return (entries, have_more, next cursor) for one page."""
        if not isinstance(data, dict) or not isinstance(data.get("response", {}), dict):
            raise ParseFailure("Unexpected app list payload", source=self.source_name)

        body = data.get("response", {})
        apps = body.get("apps", [])
        if not isinstance(apps, list):
            raise ParseFailure("App list 'apps' is not a list", source=self.source_name)

        entries = []
        for item in apps:
            if not isinstance(item, dict):
                continue
            app_id = str(item.get("appid", "")).strip()
            name = str(item.get("name") or "").strip()
            # Nameless or id-less rows are unusable for search
            if app_id and name:
                entries.append(CatalogEntry(id=app_id, name=name))

        have_more = bool(body.get("have_more_results", False))
        cursor = body.get("last_appid")
        if cursor is None and apps and isinstance(apps[-1], dict):
            cursor = apps[-1].get("appid")
        try:
            next_cursor = int(cursor) if cursor is not None else None
        except (TypeError, ValueError) as e:
            raise ParseFailure(f"Invalid cursor {cursor!r}", source=self.source_name) from e
        return entries, have_more, next_cursor

    async def fetch_all(self) -> list[CatalogEntry]:
        """
        Fetch every page of the catalog.

        Returns:
            list[CatalogEntry]: The complete catalog

        Raises:
            NetworkFailure: A page could not be fetched
            ParseFailure: A page was malformed or the cursor stalled
        """
        self._logger.info("Fetching complete Steam app list")

        entries: list[CatalogEntry] = []
        last_appid = 0
        pages = 0

        while True:
            data = await self._get_json(self._url, params=self._params(last_appid))
            batch, have_more, cursor = self._parse_page(data)
            entries.extend(batch)
            pages += 1

            self._logger.debug("Fetched catalog page", page=pages, total_so_far=len(entries))

            if not have_more:
                break
            if cursor is None or cursor <= last_appid:
                raise ParseFailure(
                    f"Catalog cursor did not advance past {last_appid}",
                    source=self.source_name,
                    endpoint=self._url,
                )
            last_appid = cursor

        self._logger.info("Catalog fetch complete", total_apps=len(entries), pages=pages)
        return entries
