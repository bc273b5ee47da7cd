"""In-memory result cache and on-disk icon cache."""

from applist_builder.cache.icons import IMAGE_EXTENSIONS, IconCache, IconCandidate
from applist_builder.cache.result_cache import CacheEntry, ResultCache

__all__ = [
    "IMAGE_EXTENSIONS",
    "CacheEntry",
    "IconCache",
    "IconCandidate",
    "ResultCache",
]
