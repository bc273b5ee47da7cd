"""
On-disk icon cache.

One image per app id in a flat directory (``{id}.{ext}``). Images are
fetched from an ordered list of CDN candidates; the first one that
downloads and validates is stored. DLCs without artwork of their own
borrow their parent's image.
"""

import asyncio
import os
import shutil
import tempfile
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import Any

import httpx
from PIL import Image, UnidentifiedImageError
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from applist_builder.clients.base import USER_AGENT
from applist_builder.config import IconConfig, get_settings
from applist_builder.errors import CatalogError, NetworkFailure, NotFound
from applist_builder.logger import get_logger
from applist_builder.product_info.contracts import ProductRecord
from applist_builder.utils.limiter import ConcurrencyLimiter, LimiterConfig

# Lookup order when checking the disk
IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif", ".webp", ".ico")

_FORMAT_EXTENSIONS = {
    "JPEG": ".jpg",
    "PNG": ".png",
    "GIF": ".gif",
    "WEBP": ".webp",
    "ICO": ".ico",
}

RecordLookup = Callable[[str], Awaitable[ProductRecord | None]]


@dataclass(frozen=True)
class IconCandidate:
    """A URL worth trying, and the minimum width it must decode to."""

    url: str
    min_pixel_width: int = 0

    @property
    def is_icon_class(self) -> bool:
        return self.min_pixel_width > 0


def extension_from_url(url: str) -> str:
    """Guess an image extension from a URL; defaults to ``.jpg``."""
    lower = url.lower()
    if ".jpg" in lower or "jpeg" in lower:
        return ".jpg"
    for ext in (".png", ".gif", ".webp", ".ico"):
        if ext in lower:
            return ext
    return ".jpg"


def inspect_image(data: bytes) -> tuple[str | None, int | None]:
    """Return (Pillow format, pixel width), or (None, None) if undecodable."""
    try:
        with Image.open(BytesIO(data)) as image:
            return image.format, image.width
    except (UnidentifiedImageError, OSError, ValueError):
        return None, None


class IconCache:
    """
    Resolves, downloads and persists app images.

    Example:
        >>> icons = IconCache(Path("~/.cache/icons").expanduser())
        >>> path = await icons.resolve_icon(record)
    """

    def __init__(
        self,
        cache_dir: Path | None = None,
        *,
        config: IconConfig | None = None,
        client: httpx.AsyncClient | None = None,
        limiter: ConcurrencyLimiter | None = None,
        record_lookup: RecordLookup | None = None,
    ) -> None:
        settings = get_settings()
        self._cache_dir = Path(cache_dir or settings.cache.icon_dir)
        self._config = config or settings.icons
        self._client = client
        self._owns_client = client is None
        self._limiter = limiter or ConcurrencyLimiter(
            LimiterConfig(max_concurrent=settings.network.max_concurrent_requests)
        )
        self._record_lookup = record_lookup
        self._in_flight: dict[str, asyncio.Task[Path | None]] = {}
        self._logger = get_logger(__name__, component="icon_cache")

    @property
    def cache_dir(self) -> Path:
        return self._cache_dir

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._config.download_timeout_seconds),
                follow_redirects=True,
                headers={"User-Agent": USER_AGENT},
            )
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        if self._owns_client and self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> "IconCache":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    # Disk

    def get_cached_icon_path(self, app_id: str) -> Path | None:
        """Cached non-empty file for ``app_id``, checking extensions in order."""
        if not app_id or not self._cache_dir.is_dir():
            return None
        for ext in IMAGE_EXTENSIONS:
            path = self._cache_dir / f"{app_id}{ext}"
            try:
                if path.is_file() and path.stat().st_size > 0:
                    return path
            except OSError:
                continue
        return None

    def delete_cached_icon(self, app_id: str) -> bool:
        """Delete every cached file for ``app_id``. Returns True if any existed."""
        deleted = False
        for ext in IMAGE_EXTENSIONS:
            path = self._cache_dir / f"{app_id}{ext}"
            try:
                path.unlink()
                deleted = True
            except FileNotFoundError:
                continue
            except OSError as e:
                self._logger.warning("Could not delete icon", path=str(path), error=str(e))
        return deleted

    def delete_unused_icons(self, valid_ids: Iterable[str]) -> int:
        """
        Delete cached files whose id is not in ``valid_ids``.

        Returns:
            int: Number of files deleted
        """
        if not self._cache_dir.is_dir():
            return 0

        keep = {str(app_id) for app_id in valid_ids}
        deleted = 0
        for path in self._cache_dir.iterdir():
            if not path.is_file() or path.stem in keep:
                continue
            try:
                path.unlink()
                deleted += 1
            except OSError as e:
                self._logger.warning("Could not delete icon", path=str(path), error=str(e))

        self._logger.info("Pruned icon cache", deleted=deleted, kept_ids=len(keep))
        return deleted

    def _write_atomic(self, app_id: str, data: bytes, ext: str) -> Path:
        self._cache_dir.mkdir(parents=True, exist_ok=True)
        target = self._cache_dir / f"{app_id}{ext}"
        fd, tmp_name = tempfile.mkstemp(dir=self._cache_dir, prefix=f".{app_id}-", suffix=".part")
        try:
            with os.fdopen(fd, "wb") as tmp:
                tmp.write(data)
            os.replace(tmp_name, target)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        self._drop_siblings(app_id, keep=target)
        return target

    def _copy_atomic(self, source: Path, app_id: str) -> Path:
        self._cache_dir.mkdir(parents=True, exist_ok=True)
        target = self._cache_dir / f"{app_id}{source.suffix}"
        fd, tmp_name = tempfile.mkstemp(dir=self._cache_dir, prefix=f".{app_id}-", suffix=".part")
        os.close(fd)
        try:
            shutil.copyfile(source, tmp_name)
            os.replace(tmp_name, target)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        self._drop_siblings(app_id, keep=target)
        return target

    def _drop_siblings(self, app_id: str, keep: Path) -> None:
        # A stale file with an earlier extension would shadow the new one
        for ext in IMAGE_EXTENSIONS:
            path = self._cache_dir / f"{app_id}{ext}"
            if path != keep:
                path.unlink(missing_ok=True)

    # Candidates

    def build_candidates(
        self,
        record: ProductRecord,
        extra_urls: Iterable[str] = (),
    ) -> list[IconCandidate]:
        """
        Ordered download candidates for ``record``.

        Hero capsule, main capsule, the published header image and the
        client icon come first (each on every mirror), then the generic
        ``header.jpg`` on mirrors and fallback hosts. ``extra_urls`` (such
        as a store-search thumbnail) follow, and the unhashed capsule and
        library art on every mirror close the list.
        """
        hosts = self._config.cdn_hosts
        app_id = record.id
        urls: list[IconCandidate] = []

        def per_host(path: str, min_width: int = 0) -> None:
            for host in hosts:
                urls.append(IconCandidate(f"{host}{path}", min_width))

        if record.hero_image_hash:
            per_host(f"/steam/apps/{app_id}/{record.hero_image_hash}/hero_capsule.jpg")
        if record.main_capsule_hash:
            per_host(f"/steam/apps/{app_id}/{record.main_capsule_hash}/capsule_616x353.jpg")
        if record.header_image_path:
            header = record.header_image_path
            if header.startswith(("http://", "https://")):
                urls.append(IconCandidate(header))
            else:
                per_host(f"/steam/apps/{app_id}/{header.lstrip('/')}")
        if record.client_icon_hash:
            per_host(
                f"/steamcommunity/public/images/apps/{app_id}/{record.client_icon_hash}.ico",
                self._config.min_icon_width,
            )
        for host in [*hosts, *self._config.fallback_hosts]:
            urls.append(IconCandidate(f"{host.rstrip('/')}/steam/apps/{app_id}/header.jpg"))
        for url in extra_urls:
            if url.startswith(("http://", "https://")):
                urls.append(IconCandidate(url))
        for art in ("capsule_231x87.jpg", "capsule_616x353.jpg", "library_600x900.jpg"):
            per_host(f"/steam/apps/{app_id}/{art}")

        seen: set[str] = set()
        unique = []
        for candidate in urls:
            if candidate.url not in seen:
                seen.add(candidate.url)
                unique.append(candidate)
        return unique

    # Download

    def _log_retry_attempt(self, retry_state: RetryCallState) -> None:
        self._logger.debug(
            "Retrying icon download",
            attempt=retry_state.attempt_number,
            exception=str(retry_state.outcome.exception()) if retry_state.outcome else None,
        )

    async def _fetch_once(self, url: str) -> httpx.Response:
        try:
            response = await self.client.get(url)
        except httpx.HTTPError as e:
            raise NetworkFailure(f"Download failed: {e}", endpoint=url, original_error=e) from e

        if response.status_code == 404:
            raise NotFound("No image at URL", endpoint=url, status_code=404)
        if response.status_code >= 400:
            raise NetworkFailure(
                f"CDN error: {response.status_code}",
                endpoint=url,
                status_code=response.status_code,
            )
        return response

    async def _download(self, candidate: IconCandidate) -> httpx.Response | None:
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(NetworkFailure),
            stop=stop_after_attempt(self._config.max_attempts),
            wait=wait_fixed(self._config.retry_delay_seconds),
            before_sleep=self._log_retry_attempt,
            reraise=True,
        )
        try:
            async with self._limiter:
                async for attempt in retrying:
                    with attempt:
                        return await self._fetch_once(candidate.url)
        except CatalogError as e:
            self._logger.debug("Candidate unavailable", url=candidate.url, error=str(e))
        return None

    def _accept(self, candidate: IconCandidate, response: httpx.Response) -> str | None:
        """Extension to store the payload under, or None if it is rejected."""
        data = response.content
        if len(data) < max(1, self._config.min_payload_bytes):
            self._logger.debug("Payload too small", url=candidate.url, size=len(data))
            return None

        image_format, width = inspect_image(data)
        if candidate.is_icon_class:
            if width is None or width < candidate.min_pixel_width:
                self._logger.debug(
                    "Icon below minimum width",
                    url=candidate.url,
                    width=width,
                    min_width=candidate.min_pixel_width,
                )
                return None
        elif image_format is None:
            content_type = response.headers.get("content-type", "")
            if not content_type.startswith("image/"):
                self._logger.debug("Payload is not an image", url=candidate.url)
                return None

        if image_format in _FORMAT_EXTENSIONS:
            return _FORMAT_EXTENSIONS[image_format]
        return extension_from_url(candidate.url)

    # Resolution

    async def resolve_icon(
        self,
        record: ProductRecord,
        extra_urls: Iterable[str] = (),
    ) -> Path | None:
        """
        Local image path for ``record``, downloading it if necessary.

        Concurrent calls for the same id share one resolution; a cancelled
        caller does not cancel it for the others.

        Returns:
            Path | None: Cached file, or None if no candidate worked
        """
        cached = self.get_cached_icon_path(record.id)
        if cached is not None:
            return cached
        return await asyncio.shield(self._shared_resolve(record, tuple(extra_urls)))

    async def resolve_icons(
        self,
        records: Iterable[ProductRecord],
        extra_urls: Mapping[str, Iterable[str]] | None = None,
    ) -> dict[str, Path | None]:
        """Resolve several records concurrently; downloads share the limiter."""
        records = list(records)
        extra_urls = extra_urls or {}
        paths = await asyncio.gather(
            *(self.resolve_icon(record, extra_urls.get(record.id, ())) for record in records)
        )
        return {record.id: path for record, path in zip(records, paths)}

    def _shared_resolve(
        self,
        record: ProductRecord,
        extra_urls: tuple[str, ...] = (),
    ) -> "asyncio.Task[Path | None]":
        task = self._in_flight.get(record.id)
        if task is not None:
            self._logger.debug("Joining in-flight icon resolution", app_id=record.id)
            return task

        async def run() -> Path | None:
            try:
                return await self._resolve(
                    record, depth=0, visited=frozenset(), extra_urls=extra_urls
                )
            finally:
                self._in_flight.pop(record.id, None)

        task = asyncio.ensure_future(run())
        self._in_flight[record.id] = task
        return task

    async def _resolve(
        self,
        record: ProductRecord,
        *,
        depth: int,
        visited: frozenset[str],
        extra_urls: Iterable[str] = (),
    ) -> Path | None:
        cached = self.get_cached_icon_path(record.id)
        if cached is not None:
            return cached

        for candidate in self.build_candidates(record, extra_urls):
            response = await self._download(candidate)
            if response is None:
                continue
            ext = self._accept(candidate, response)
            if ext is None:
                continue
            try:
                path = await asyncio.to_thread(self._write_atomic, record.id, response.content, ext)
            except OSError as e:
                self._logger.error("Could not write icon", app_id=record.id, error=str(e))
                return None
            self._logger.info("Icon cached", app_id=record.id, url=candidate.url)
            return path

        if record.is_dlc and record.parent_id:
            return await self._resolve_from_parent(record, depth=depth, visited=visited)

        self._logger.warning("No icon candidate succeeded", app_id=record.id)
        return None

    async def _resolve_from_parent(
        self,
        record: ProductRecord,
        *,
        depth: int,
        visited: frozenset[str],
    ) -> Path | None:
        parent_id = record.parent_id
        if (
            parent_id is None
            or self._record_lookup is None
            or depth >= self._config.parent_fallback_depth
            or parent_id in visited
            or parent_id == record.id
        ):
            return None

        try:
            parent = await self._record_lookup(parent_id)
        except CatalogError as e:
            self._logger.warning("Parent lookup failed", app_id=record.id, parent_id=parent_id, error=str(e))
            return None
        if parent is None:
            self._logger.warning("Parent record not found", app_id=record.id, parent_id=parent_id)
            return None

        if parent.is_dlc:
            parent_path = await self._resolve(
                parent, depth=depth + 1, visited=visited | {record.id}
            )
        else:
            # Non-DLC parents never fall back, so joining their flight cannot cycle
            parent_path = await asyncio.shield(self._shared_resolve(parent))
        if parent_path is None:
            return None

        try:
            path = await asyncio.to_thread(self._copy_atomic, parent_path, record.id)
        except OSError as e:
            self._logger.error("Could not copy parent icon", app_id=record.id, error=str(e))
            return None
        self._logger.info("Icon borrowed from parent", app_id=record.id, parent_id=parent_id)
        return path
