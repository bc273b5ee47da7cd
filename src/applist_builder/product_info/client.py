"""
Product-info client.

Owns the session lifecycle against the product-info protocol and issues
batched lookups once the session is authenticated:

    DISCONNECTED -> CONNECTING -> CONNECTED -> AUTHENTICATED

A background task drives the state machine. When the session fails or
drops it returns to DISCONNECTED, waits the reconnect backoff and tries
again for as long as the client is running. Queries wait (bounded) for
the shared readiness event instead of opening sessions of their own.
"""

import asyncio
import contextlib
from functools import partial
from collections.abc import Iterable, Mapping
from enum import Enum
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from applist_builder.cache.result_cache import ResultCache
from applist_builder.config import ProductInfoConfig, get_settings
from applist_builder.errors import CatalogError, ConnectionLost, NetworkFailure
from applist_builder.logger import get_logger
from applist_builder.product_info.contracts import (
    PackageInfo,
    ProductRecord,
    parse_package_info,
    parse_product_record,
)
from applist_builder.product_info.transport import KeyValueTree, ProductInfoTransport


class ConnectionState(str, Enum):
    """Session state of the product-info client."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    AUTHENTICATED = "authenticated"


def _chunks(items: list[int], size: int) -> Iterable[list[int]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


class ProductInfoClient:
    """
    Batched product-info lookups over a self-healing session.

    Example:
        >>> async with ProductInfoClient(SteamClientTransport()) as client:
        ...     records = await client.fetch_batch([570, 730])
    """

    source_name = "product_info"

    def __init__(
        self,
        transport: ProductInfoTransport,
        *,
        config: ProductInfoConfig | None = None,
        cache: ResultCache | None = None,
    ) -> None:
        settings = get_settings()
        self._transport = transport
        self._config = config or settings.product_info
        self._cache = cache or ResultCache(ttl_seconds=settings.cache.result_ttl_seconds)
        self._state = ConnectionState.DISCONNECTED
        self._ready = asyncio.Event()
        self._lost = asyncio.Event()
        self._running = False
        self._task: asyncio.Task[None] | None = None
        self._logger = get_logger(__name__, component="product_info_client")

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._running

    def _set_state(self, state: ConnectionState) -> None:
        if state is not self._state:
            self._logger.debug("State change", previous=self._state.value, state=state.value)
            self._state = state

    # Lifecycle

    async def start(self) -> None:
        """Start the background connection loop. Idempotent."""
        if self._task is not None and not self._task.done():
            return
        self._running = True
        self._task = asyncio.create_task(self._connection_loop(), name="product-info-session")
        self._logger.info("Product-info client started")

    async def stop(self) -> None:
        """Cancel the connection loop and close the session."""
        self._running = False
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        self._ready.clear()
        self._set_state(ConnectionState.DISCONNECTED)
        await self._safe_disconnect()
        self._logger.info("Product-info client stopped")

    async def __aenter__(self) -> "ProductInfoClient":
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.stop()

    async def _safe_disconnect(self) -> None:
        try:
            await asyncio.wait_for(
                self._transport.disconnect(),
                timeout=self._config.connect_timeout_seconds,
            )
        except (CatalogError, asyncio.TimeoutError) as e:
            self._logger.debug("Disconnect failed", error=str(e))

    async def _establish_session(self) -> None:
        timeout = self._config.connect_timeout_seconds
        self._lost.clear()

        self._set_state(ConnectionState.CONNECTING)
        await asyncio.wait_for(self._transport.connect(), timeout=timeout)
        self._set_state(ConnectionState.CONNECTED)

        await asyncio.wait_for(self._transport.login_anonymous(), timeout=timeout)
        self._set_state(ConnectionState.AUTHENTICATED)
        self._ready.set()
        self._logger.info("Product-info session authenticated")

    async def _connection_loop(self) -> None:
        while self._running:
            try:
                await self._establish_session()
                await self._lost.wait()
                self._logger.warning("Product-info session lost")
            except (CatalogError, asyncio.TimeoutError) as e:
                self._logger.warning(
                    "Product-info session setup failed",
                    state=self._state.value,
                    error=str(e) or type(e).__name__,
                )
            except Exception:
                self._logger.exception("Unexpected error in product-info session")

            self._ready.clear()
            self._set_state(ConnectionState.DISCONNECTED)
            await self._safe_disconnect()

            if self._running:
                self._logger.info(
                    "Reconnecting after backoff",
                    backoff_seconds=self._config.reconnect_backoff_seconds,
                )
                await asyncio.sleep(self._config.reconnect_backoff_seconds)

    def _mark_lost(self) -> None:
        self._ready.clear()
        self._lost.set()

    async def wait_until_ready(self, timeout: float | None = None) -> bool:
        """
        Wait for an authenticated session.

        Returns:
            bool: False if the session was not ready within the timeout
        """
        if self._ready.is_set():
            return True
        if not self._running:
            self._logger.warning("Product-info client is not running")
        try:
            await asyncio.wait_for(
                self._ready.wait(),
                timeout=timeout if timeout is not None else self._config.ready_timeout_seconds,
            )
        except asyncio.TimeoutError:
            return False
        return True

    # Queries

    def _log_retry_attempt(self, retry_state: RetryCallState) -> None:
        exception = retry_state.outcome.exception() if retry_state.outcome else None
        self._logger.warning(
            "Retrying product-info query",
            attempt=retry_state.attempt_number,
            exception=(str(exception) or type(exception).__name__) if exception else None,
        )

    async def _query_once(self, chunk: list[int]) -> Mapping[int, KeyValueTree]:
        if not await self.wait_until_ready():
            raise NetworkFailure("Product-info session not ready", source=self.source_name)
        try:
            return await asyncio.wait_for(
                self._transport.query(chunk),
                timeout=self._config.request_timeout_seconds,
            )
        except ConnectionLost:
            self._mark_lost()
            raise

    async def _query_chunk(self, chunk: list[int]) -> Mapping[int, KeyValueTree]:
        retrying = AsyncRetrying(
            retry=retry_if_exception_type((CatalogError, asyncio.TimeoutError)),
            stop=stop_after_attempt(self._config.max_attempts),
            wait=wait_fixed(self._config.retry_delay_seconds),
            before_sleep=self._log_retry_attempt,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await self._query_once(chunk)
        except (CatalogError, asyncio.TimeoutError) as e:
            self._logger.error(
                "Product-info query failed after retries, omitting ids",
                ids=len(chunk),
                first_id=chunk[0],
                attempts=self._config.max_attempts,
                error=str(e) or type(e).__name__,
            )
        return {}

    def _normalize_ids(self, app_ids: Iterable[int | str]) -> list[int]:
        ids: list[int] = []
        seen: set[int] = set()
        for raw in app_ids:
            try:
                app_id = int(raw)
            except (TypeError, ValueError):
                self._logger.warning("Skipping non-numeric app id", app_id=raw)
                continue
            if app_id not in seen:
                seen.add(app_id)
                ids.append(app_id)
        return ids

    async def fetch_trees(self, app_ids: Iterable[int | str]) -> dict[int, KeyValueTree]:
        """Raw key-value trees for every id the upstream answered."""
        ids = self._normalize_ids(app_ids)
        trees: dict[int, KeyValueTree] = {}
        for chunk in _chunks(ids, self._config.batch_size):
            for app_id, tree in (await self._query_chunk(chunk)).items():
                trees[int(app_id)] = tree
        return trees

    async def fetch_batch(self, app_ids: Iterable[int | str]) -> dict[int, ProductRecord]:
        """
        Fetch product records for ``app_ids``.

        Ids the upstream did not answer, or whose batch failed every
        attempt, are absent from the result; use ``placeholder_name``
        for display.

        Returns:
            dict[int, ProductRecord]: Records keyed by numeric app id
        """
        ids = self._normalize_ids(app_ids)
        if not ids:
            return {}

        records: dict[int, ProductRecord] = {}
        for app_id, tree in (await self.fetch_trees(ids)).items():
            try:
                records[app_id] = parse_product_record(app_id, tree)
            except PydanticValidationError as e:
                self._logger.warning("Unparseable product record", app_id=app_id, error=str(e))

        self._logger.info(
            "Fetched product records",
            requested=len(ids),
            resolved=len(records),
            unresolved=len(ids) - len(records),
        )
        return records

    async def fetch_package_infos(self, app_ids: Iterable[int | str]) -> dict[int, PackageInfo]:
        """
        Fetch depot/DLC membership for ``app_ids``.

        Depot ids and unanswered ids are absent from the result.
        """
        packages: dict[int, PackageInfo] = {}
        for app_id, tree in (await self.fetch_trees(app_ids)).items():
            try:
                info = parse_package_info(app_id, tree)
            except PydanticValidationError as e:
                self._logger.warning("Unparseable package info", app_id=app_id, error=str(e))
                continue
            if info is not None:
                packages[app_id] = info
        return packages

    async def fetch_package_info(self, app_id: int | str) -> PackageInfo | None:
        packages = await self.fetch_package_infos([app_id])
        return next(iter(packages.values()), None)

    # Cached record lookups

    @staticmethod
    def _record_key(app_id: int) -> str:
        return f"product:{app_id}"

    async def get_records(self, app_ids: Iterable[int | str]) -> dict[str, ProductRecord]:
        """
        Cached record lookup keyed by string id.

        Ids without a fresh cache entry are fetched together in one batch;
        ids another caller is already fetching join that flight instead.
        """
        ids = self._normalize_ids(app_ids)
        if not ids:
            return {}

        missing = [
            app_id
            for app_id in ids
            if self._cache.peek(self._record_key(app_id)) is None
            and not self._cache.is_fetching(self._record_key(app_id))
        ]
        batch = asyncio.ensure_future(self.fetch_batch(missing)) if missing else None

        async def from_batch(app_id: int) -> ProductRecord | None:
            if batch is None:
                return None
            return (await batch).get(app_id)

        records: dict[str, ProductRecord] = {}
        flights: dict[int, asyncio.Task[ProductRecord | None]] = {}
        for app_id in ids:
            key = self._record_key(app_id)
            cached = self._cache.peek(key)
            if cached is not None:
                records[str(app_id)] = cached
            else:
                # Claimed before any await so concurrent callers join these flights
                flights[app_id] = self._cache.ensure_fetch(key, partial(from_batch, app_id))

        results = await asyncio.gather(*(asyncio.shield(task) for task in flights.values()))
        for app_id, record in zip(flights, results):
            if record is not None:
                records[str(app_id)] = record
        return records

    async def get_record(self, app_id: int | str) -> ProductRecord | None:
        records = await self.get_records([app_id])
        return next(iter(records.values()), None)
