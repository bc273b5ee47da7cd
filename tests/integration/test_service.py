"""Integration tests for the catalog service facade."""

import asyncio
import os
from collections.abc import Mapping
from io import BytesIO
from pathlib import Path
from typing import Any

import httpx
import pytest
import respx
from PIL import Image

from applist_builder.catalog.entries import CatalogEntry
from applist_builder.config import ProductInfoConfig, Settings
from applist_builder.product_info.contracts import DisplayType
from applist_builder.product_info.steam_transport import SteamClientTransport
from applist_builder.service import CatalogService

TREES: dict[int, dict[str, Any]] = {
    400: {
        "common": {"name": "Portal", "type": "game"},
        "extended": {"listofdlc": "405"},
        "depots": {
            "401": {"manifests": {}},
            "406": {"manifests": {}, "dlcappid": "405"},
        },
    },
    405: {"common": {"name": "Portal Extras", "type": "dlc", "parent": "400"}},
    620: {"common": {"name": "Portal 2", "type": "game"}},
}

THUMBNAIL_URL = "https://shared.steamstatic.com/store_item_assets/steam/apps/620/capsule_sm_120.jpg"


class FakeTransport:
    async def connect(self) -> None:
        pass

    async def login_anonymous(self) -> None:
        pass

    async def query(self, app_ids: list[int]) -> Mapping[int, Any]:
        return {app_id: TREES[app_id] for app_id in app_ids if app_id in TREES}

    async def disconnect(self) -> None:
        pass


class GatedSource:
    """Catalog source that blocks until released."""

    def __init__(self, entries: list[CatalogEntry]) -> None:
        self.entries = entries
        self.gate = asyncio.Event()
        self.calls = 0

    async def fetch_all(self) -> list[CatalogEntry]:
        self.calls += 1
        await self.gate.wait()
        return list(self.entries)


class NoStoreSearch:
    async def search(self, term: str) -> list[CatalogEntry]:
        return []


class StoreSearchWithThumbnail:
    async def search(self, term: str) -> list[CatalogEntry]:
        return [CatalogEntry("620", "Portal 2", tiny_image_url=THUMBNAIL_URL)]


def jpeg_bytes() -> bytes:
    image = Image.frombytes("RGB", (64, 32), os.urandom(64 * 32 * 3))
    buffer = BytesIO()
    image.save(buffer, format="JPEG")
    return buffer.getvalue()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        product_info=ProductInfoConfig(
            request_timeout_seconds=1.0,
            retry_delay_seconds=0,
            reconnect_backoff_seconds=0,
            ready_timeout_seconds=2.0,
        )
    )


@pytest.fixture
def source() -> GatedSource:
    gated = GatedSource([CatalogEntry("400", "Portal"), CatalogEntry("620", "Portal 2")])
    gated.gate.set()
    return gated


def make_service(settings: Settings, source: GatedSource, icon_dir: Path) -> CatalogService:
    return CatalogService(
        settings=settings,
        transport=FakeTransport(),
        catalog_source=source,
        search_source=NoStoreSearch(),
        icon_dir=icon_dir,
    )


class TestWiring:
    """Tests for how the service assembles its components."""

    @pytest.mark.asyncio
    async def test_default_transport_uses_request_timeout(
        self,
        settings: Settings,
        source: GatedSource,
        tmp_path: Path,
    ) -> None:
        service = CatalogService(
            settings=settings,
            catalog_source=source,
            search_source=NoStoreSearch(),
            icon_dir=tmp_path,
        )
        try:
            assert isinstance(service.transport, SteamClientTransport)
            assert service.transport.query_timeout == settings.product_info.request_timeout_seconds
        finally:
            await service.close()


class TestSearch:
    """Tests for CatalogService.search."""

    @pytest.mark.asyncio
    async def test_enriched_results(self, settings: Settings, source: GatedSource, tmp_path: Path) -> None:
        async with make_service(settings, source, tmp_path) as service:
            items = await service.search("portal", with_icons=False)

        assert [item.id for item in items] == ["400", "620"]
        assert all(item.resolved for item in items)
        assert items[0].display_type is DisplayType.GAME

    @pytest.mark.asyncio
    async def test_superseded_search_returns_empty(
        self,
        settings: Settings,
        source: GatedSource,
        tmp_path: Path,
    ) -> None:
        """A newer search cancels the older one, whose caller gets []."""
        source.gate.clear()

        async with make_service(settings, source, tmp_path) as service:
            first = asyncio.create_task(service.search("portal", with_icons=False))
            await asyncio.sleep(0.01)
            second = asyncio.create_task(service.search("portal 2", with_icons=False))
            await asyncio.sleep(0.01)
            source.gate.set()

            assert await first == []
            results = await second

        assert [item.id for item in results] == ["620"]
        assert results[0].name == "Portal 2"
        # The catalog refresh started by the superseded search is reused
        assert source.calls == 1

    @respx.mock
    @pytest.mark.asyncio
    async def test_store_thumbnail_is_icon_fallback(
        self,
        settings: Settings,
        source: GatedSource,
        tmp_path: Path,
    ) -> None:
        """A hit without CDN art gets the store-search thumbnail."""
        thumbnail = respx.get(THUMBNAIL_URL).mock(
            return_value=httpx.Response(200, content=jpeg_bytes())
        )
        respx.route().mock(return_value=httpx.Response(404))

        service = CatalogService(
            settings=settings,
            transport=FakeTransport(),
            catalog_source=source,
            search_source=StoreSearchWithThumbnail(),
            icon_dir=tmp_path,
        )
        async with service:
            items = await service.search("portal 2")

        by_id = {item.id: item for item in items}
        assert by_id["620"].icon_path == tmp_path / "620.jpg"
        assert by_id["620"].tiny_image_url == THUMBNAIL_URL
        assert thumbnail.call_count == 1

    @pytest.mark.asyncio
    async def test_short_query(self, settings: Settings, source: GatedSource, tmp_path: Path) -> None:
        async with make_service(settings, source, tmp_path) as service:
            assert await service.search("p") == []


class TestImportAndIcons:
    """Tests for import resolution and icon maintenance."""

    @pytest.mark.asyncio
    async def test_resolve_import(self, settings: Settings, source: GatedSource, tmp_path: Path) -> None:
        async with make_service(settings, source, tmp_path) as service:
            with respx.mock:
                respx.route().mock(return_value=httpx.Response(404))
                resolution = await service.resolve_import(["400", "401", "405", "406"])

        by_id = {item.id: item for item in resolution.items}
        assert by_id["400"].depot_ids == ["401"]
        assert by_id["405"].depot_ids == ["406"]
        assert by_id["405"].icon_path is None

    @respx.mock
    @pytest.mark.asyncio
    async def test_warm_icons(self, settings: Settings, source: GatedSource, tmp_path: Path) -> None:
        """Only ids without a cached file are fetched."""
        (tmp_path / "620.jpg").write_bytes(b"cached")
        route = respx.get("https://cdn.cloudflare.steamstatic.com/steam/apps/400/header.jpg").mock(
            return_value=httpx.Response(200, content=jpeg_bytes())
        )

        async with make_service(settings, source, tmp_path) as service:
            warmed = await service.warm_icons(["400", "620"])

        assert warmed == {"400": tmp_path / "400.jpg"}
        assert route.call_count == 1

    @respx.mock
    @pytest.mark.asyncio
    async def test_dlc_icon_from_parent(self, settings: Settings, source: GatedSource, tmp_path: Path) -> None:
        respx.get("https://cdn.cloudflare.steamstatic.com/steam/apps/400/header.jpg").mock(
            return_value=httpx.Response(200, content=jpeg_bytes())
        )
        respx.route().mock(return_value=httpx.Response(404))

        async with make_service(settings, source, tmp_path) as service:
            path = await service.resolve_icon("405")

        assert path == tmp_path / "405.jpg"

    @pytest.mark.asyncio
    async def test_prune_icons(self, settings: Settings, source: GatedSource, tmp_path: Path) -> None:
        (tmp_path / "100.jpg").write_bytes(b"a")
        (tmp_path / "200.jpg").write_bytes(b"b")

        async with make_service(settings, source, tmp_path) as service:
            assert service.prune_icons({"100"}) == 1

        assert [p.name for p in tmp_path.iterdir()] == ["100.jpg"]
