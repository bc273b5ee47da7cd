"""Catalog value types."""

from dataclasses import dataclass
from enum import Enum


class HitSource(str, Enum):
    """Where a search hit came from."""

    STORE_SEARCH = "store_search"
    LOCAL = "local"


@dataclass(frozen=True)
class CatalogEntry:
    """One searchable app in the remote catalog."""

    id: str
    name: str
    tiny_image_url: str | None = None


@dataclass(frozen=True)
class SearchHit:
    """A scored catalog entry."""

    entry: CatalogEntry
    score: int
    source: HitSource

    @property
    def sort_key(self) -> tuple[int, int, str]:
        # Highest score first, then shorter names, then alphabetical
        return (-self.score, len(self.entry.name), self.entry.name.lower())
