"""
Base HTTP client with retry logic and error mapping.

Wraps an ``httpx.AsyncClient`` with tenacity retries and translates
transport and status failures into the pipeline's error taxonomy.
"""

from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from applist_builder.config import RetryConfig, get_settings
from applist_builder.errors import NetworkFailure, ParseFailure
from applist_builder.logger import get_logger

USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"


class BaseHTTPClient:
    """
    Shared plumbing for the catalog HTTP endpoints.

    Provides:
    - lazily created ``httpx.AsyncClient`` (or an injected one)
    - retries with exponential backoff on network failures
    - JSON decoding with ``ParseFailure`` on malformed bodies
    - structured logging bound to ``source_name``
    """

    source_name = "http"

    def __init__(
        self,
        *,
        client: httpx.AsyncClient | None = None,
        retry_config: RetryConfig | None = None,
        timeout: float | None = None,
    ) -> None:
        settings = get_settings()
        self._retry_config = retry_config or settings.retry
        self._timeout = timeout or settings.steam.timeout_seconds
        self._client = client
        self._owns_client = client is None
        self._logger = get_logger(
            self.__class__.__name__,
            component="http_client",
            source=self.source_name,
        )

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                follow_redirects=True,
                headers={
                    "User-Agent": USER_AGENT,
                    "Accept": "application/json",
                },
            )
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client and self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> "BaseHTTPClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def _log_retry_attempt(self, retry_state: RetryCallState) -> None:
        """Log retry attempts for observability."""
        self._logger.warning(
            "Retrying request",
            attempt=retry_state.attempt_number,
            wait_seconds=retry_state.next_action.sleep if retry_state.next_action else 0,
            exception=str(retry_state.outcome.exception()) if retry_state.outcome else None,
        )

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        self._logger.debug("Making request", method=method, url=url)
        try:
            response = await self.client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise NetworkFailure(
                f"Request failed: {e}",
                source=self.source_name,
                endpoint=url,
                original_error=e,
            ) from e

        if response.status_code >= 400:
            raise NetworkFailure(
                f"API error: {response.status_code}",
                source=self.source_name,
                endpoint=url,
                status_code=response.status_code,
            )
        return response

    async def _make_request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """
        Make HTTP request with retry logic.

        Raises:
            NetworkFailure: If every attempt failed
        """
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(NetworkFailure),
            stop=stop_after_attempt(self._retry_config.max_attempts),
            wait=wait_exponential(
                multiplier=self._retry_config.base_delay_seconds,
                max=self._retry_config.max_delay_seconds,
                exp_base=self._retry_config.exponential_base,
            ),
            before_sleep=self._log_retry_attempt,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await self._send(method, url, **kwargs)
        except NetworkFailure:
            self._logger.error(
                "Request failed after retries",
                url=url,
                attempts=self._retry_config.max_attempts,
            )
            raise
        raise AssertionError("unreachable")  # pragma: no cover

    async def _get_json(self, url: str, **kwargs: Any) -> Any:
        """GET ``url`` and decode the JSON body."""
        response = await self._make_request("GET", url, **kwargs)
        try:
            return response.json()
        except ValueError as e:
            raise ParseFailure(
                f"Invalid JSON response: {e}",
                source=self.source_name,
                endpoint=url,
                status_code=response.status_code,
                original_error=e,
            ) from e
