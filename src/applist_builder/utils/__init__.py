"""Shared helpers for network fan-out."""

from applist_builder.utils.limiter import ConcurrencyLimiter, LimiterConfig

__all__ = [
    "ConcurrencyLimiter",
    "LimiterConfig",
]
