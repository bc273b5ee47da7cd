"""Import-set resolution: depot and DLC attribution."""

from applist_builder.resolution.resolver import (
    CatalogResolver,
    ImportResolution,
    ResolvedItem,
    is_likely_top_level,
)

__all__ = [
    "CatalogResolver",
    "ImportResolution",
    "ResolvedItem",
    "is_likely_top_level",
]
