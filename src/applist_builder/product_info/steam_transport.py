"""
Steam CM transport backed by the ``steam`` package.

``steam.client.SteamClient`` is gevent based and blocking, so every call
runs on one dedicated worker thread. The client object is created on that
thread and never touched from anywhere else.
"""

import asyncio
from collections.abc import Callable, Mapping
from concurrent.futures import ThreadPoolExecutor
from typing import Any, TypeVar

from applist_builder.config import ProductInfoConfig
from applist_builder.errors import ConnectionLost, NetworkFailure
from applist_builder.logger import get_logger
from applist_builder.product_info.transport import KeyValueTree

T = TypeVar("T")

SOURCE = "steam_cm"


def _import_steam_client() -> Any:
    try:
        from steam.client import SteamClient
    except ImportError as exc:
        raise RuntimeError(
            "The 'steam' package is required for product-info lookups. "
            "Install it with 'pip install applist-builder[steam]'."
        ) from exc
    return SteamClient


class SteamClientTransport:
    """
    ``ProductInfoTransport`` over an anonymous Steam CM session.

    Example:
        >>> client = ProductInfoClient(SteamClientTransport())
        >>> await client.start()
    """

    def __init__(self, *, query_timeout_seconds: float = 5.0) -> None:
        self._query_timeout = query_timeout_seconds
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="steam-cm")
        self._client: Any = None
        self._logger = get_logger(__name__, component="steam_transport")

    @classmethod
    def from_config(cls, config: ProductInfoConfig) -> "SteamClientTransport":
        """
        Transport whose blocking query gives up no later than the client does.

        The worker thread is shared, so a query outliving the client's
        per-attempt timeout would hold up every retry queued behind it.
        """
        return cls(query_timeout_seconds=config.request_timeout_seconds)

    @property
    def query_timeout(self) -> float:
        return self._query_timeout

    async def _call(self, func: Callable[[], T]) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, func)

    def _ensure_client(self) -> Any:
        if self._client is None:
            self._client = _import_steam_client()()
        return self._client

    async def connect(self) -> None:
        def _connect() -> bool:
            return bool(self._ensure_client().connect(retry=1))

        if not await self._call(_connect):
            raise NetworkFailure("Could not reach a Steam CM server", source=SOURCE)
        self._logger.debug("Connected to Steam CM")

    async def login_anonymous(self) -> None:
        def _login() -> Any:
            from steam.enums import EResult

            result = self._ensure_client().anonymous_login()
            return result, result == EResult.OK

        result, ok = await self._call(_login)
        if not ok:
            raise NetworkFailure(f"Anonymous login failed: {result!r}", source=SOURCE)
        self._logger.debug("Logged in anonymously")

    async def query(self, app_ids: list[int]) -> Mapping[int, KeyValueTree]:
        def _query() -> Any:
            from gevent import Timeout

            client = self._ensure_client()
            if not client.connected or not client.logged_on:
                raise ConnectionLost("Steam CM session is not active", source=SOURCE)
            try:
                return client.get_product_info(apps=app_ids, timeout=self._query_timeout)
            except Timeout:
                return None

        data = await self._call(_query)
        if data is None:
            raise NetworkFailure("Product info request timed out", source=SOURCE)

        apps = data.get("apps", {}) if isinstance(data, Mapping) else {}
        return {int(app_id): tree for app_id, tree in apps.items() if isinstance(tree, Mapping)}

    async def disconnect(self) -> None:
        def _disconnect() -> None:
            client = self._client
            if client is None:
                return
            if client.logged_on:
                client.logout()
            client.disconnect()

        await self._call(_disconnect)

    def close(self) -> None:
        """Release the worker thread. Call after the last ``disconnect``."""
        self._executor.shutdown(wait=False, cancel_futures=True)
