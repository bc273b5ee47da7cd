"""
Catalog search.

Keeps a snapshot of the full Steam catalog and ranks app names
against free-text queries.
"""

from applist_builder.catalog.entries import CatalogEntry, HitSource, SearchHit
from applist_builder.catalog.index import CatalogIndex
from applist_builder.catalog.scoring import score_name

__all__ = [
    "CatalogEntry",
    "CatalogIndex",
    "HitSource",
    "SearchHit",
    "score_name",
]
