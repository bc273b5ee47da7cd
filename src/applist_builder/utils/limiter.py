"""
Concurrency limiter for network fan-out.

One limiter is shared by icon downloads and metadata resolution so the
combined number of in-flight requests stays bounded.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any

from applist_builder.logger import get_logger


@dataclass
class LimiterConfig:
    """Configuration for concurrency limiter."""

    max_concurrent: int = 6


@dataclass
class ConcurrencyLimiter:
    """
    Bounded slot pool for network operations.

    Example:
        >>> limiter = ConcurrencyLimiter(LimiterConfig(max_concurrent=6))
        >>> async with limiter:
        ...     await download()
    """

    config: LimiterConfig = field(default_factory=LimiterConfig)
    _semaphore: asyncio.Semaphore = field(init=False)
    _in_flight: int = field(init=False, default=0)
    _logger: Any = field(init=False)

    def __post_init__(self) -> None:
        """Initialize limiter state."""
        if self.config.max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self._semaphore = asyncio.Semaphore(self.config.max_concurrent)
        self._logger = get_logger(__name__, component="limiter")

    async def acquire(self) -> None:
        """Wait for a free slot."""
        if self._semaphore.locked():
            self._logger.debug(
                "Concurrency limit reached, waiting",
                max_concurrent=self.config.max_concurrent,
            )
        await self._semaphore.acquire()
        self._in_flight += 1

    def release(self) -> None:
        """Return a slot to the pool."""
        self._in_flight -= 1
        self._semaphore.release()

    async def __aenter__(self) -> "ConcurrencyLimiter":
        """Acquire slot on context entry."""
        await self.acquire()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Release slot on context exit."""
        self.release()

    @property
    def in_flight(self) -> int:
        """Operations currently holding a slot (for monitoring)."""
        return self._in_flight
