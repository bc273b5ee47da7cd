"""
Import-set resolution.

A flat list of ids pasted by a user mixes top-level apps, DLCs and depots,
and a depot id looks like any other id. The resolver asks the product-info
client for package membership of the ids likely to be top-level apps,
materializes every id that is not a known depot, and hands each depot to
exactly one parent.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path

from applist_builder.cache.icons import IconCache
from applist_builder.logger import get_logger
from applist_builder.product_info.client import ProductInfoClient
from applist_builder.product_info.contracts import (
    DisplayType,
    PackageInfo,
    ProductRecord,
    placeholder_name,
)

OwnedItems = Iterable[str] | Mapping[str, Iterable[str]]


@dataclass
class ResolvedItem:
    """A materialized import item and the depots attributed to it."""

    id: str
    name: str
    display_type: DisplayType = DisplayType.GAME
    depot_ids: list[str] = field(default_factory=list)
    icon_path: Path | None = None
    resolved: bool = True

    def add_depot(self, depot_id: str) -> None:
        if depot_id not in self.depot_ids:
            self.depot_ids.append(depot_id)


@dataclass
class ImportResolution:
    """Resolver output: new items plus depots found for owned parents."""

    items: list[ResolvedItem] = field(default_factory=list)
    owned_depot_additions: dict[str, list[str]] = field(default_factory=dict)


def _id_sort_key(app_id: str) -> tuple[int, int, str]:
    if app_id.isdigit():
        return (0, int(app_id), app_id)
    return (1, 0, app_id)


def is_likely_top_level(app_id: str) -> bool:
    """Top-level app ids conventionally end in zero; depots rarely do."""
    return app_id.endswith("0")


class CatalogResolver:
    """
    Resolves import sets into items with attributed depots.

    Example:
        >>> resolver = CatalogResolver(products, icons)
        >>> items = await resolver.resolve_import_set({"400", "401"}, set())
    """

    def __init__(
        self,
        products: ProductInfoClient,
        icons: IconCache | None = None,
    ) -> None:
        self._products = products
        self._icons = icons
        self._logger = get_logger(__name__, component="resolver")

    async def resolve_import_set(
        self,
        candidate_ids: Iterable[str],
        already_owned: OwnedItems = (),
    ) -> list[ResolvedItem]:
        """Materialized items for ``candidate_ids``, sorted by name."""
        resolution = await self.resolve(candidate_ids, already_owned)
        return resolution.items

    async def resolve(
        self,
        candidate_ids: Iterable[str],
        already_owned: OwnedItems = (),
    ) -> ImportResolution:
        """
        Resolve an import set.

        Args:
            candidate_ids: Ids to import
            already_owned: Owned ids, or a mapping of owned id to the
                depot ids already recorded for it

        Returns:
            ImportResolution: Materialized items sorted by display name,
            and depots attributed to owned parents
        """
        owned_ids, recorded_depots = self._split_owned(already_owned)

        remaining = sorted(
            {
                str(app_id).strip()
                for app_id in candidate_ids
                if str(app_id).strip()
            }
            - owned_ids
            - recorded_depots,
            key=_id_sort_key,
        )
        if not remaining:
            return ImportResolution()

        packages = await self._query_packages(remaining, owned_ids)

        depot_union: set[str] = set()
        for package in packages:
            depot_union |= package.all_depot_ids

        to_materialize = [app_id for app_id in remaining if app_id not in depot_union]
        depots = [app_id for app_id in remaining if app_id in depot_union]
        items = await self._materialize(to_materialize)

        resolution = ImportResolution()
        remaining_set = set(remaining)
        claimed: set[str] = set()

        # DLCs with their own depots
        for package in packages:
            for dlc_id, dlc_depots in package.dlc_depot_map.items():
                item = items.get(dlc_id)
                if item is None:
                    continue
                for depot_id in sorted(dlc_depots & remaining_set - claimed, key=_id_sort_key):
                    item.add_depot(depot_id)
                    claimed.add(depot_id)

        for depot_id in depots:
            if depot_id in claimed:
                continue
            owner = self._depot_parent(depot_id, packages, items, owned_ids)
            if owner in items:
                items[owner].add_depot(depot_id)
            elif owner in owned_ids:
                additions = resolution.owned_depot_additions.setdefault(owner, [])
                if depot_id not in additions:
                    additions.append(depot_id)
            else:
                self._logger.warning(
                    "Depot parent is neither imported nor owned",
                    depot_id=depot_id,
                    parent_id=owner,
                )
                continue
            claimed.add(depot_id)

        resolution.items = sorted(items.values(), key=lambda item: (item.name.casefold(), item.id))
        self._logger.info(
            "Resolved import set",
            candidates=len(remaining),
            packages=len(packages),
            materialized=len(resolution.items),
            depots=len(claimed),
            owned_parents=len(resolution.owned_depot_additions),
        )
        return resolution

    @staticmethod
    def _split_owned(already_owned: OwnedItems) -> tuple[set[str], set[str]]:
        if isinstance(already_owned, Mapping):
            owned_ids = {str(app_id) for app_id in already_owned}
            recorded = {
                str(depot_id) for depots in already_owned.values() for depot_id in depots
            }
            return owned_ids, recorded
        return {str(app_id) for app_id in already_owned}, set()

    async def _query_packages(
        self,
        remaining: list[str],
        owned_ids: set[str],
    ) -> list[PackageInfo]:
        """Package infos in query order: likely top-level candidates, then owned ids."""
        query_ids = [app_id for app_id in remaining if is_likely_top_level(app_id)]
        if any(not is_likely_top_level(app_id) for app_id in remaining):
            # Depots of items imported earlier show up here too
            query_ids.extend(sorted(owned_ids, key=_id_sort_key))
        if not query_ids:
            return []

        packages = await self._products.fetch_package_infos(query_ids)
        ordered = []
        for app_id in query_ids:
            if app_id.isdigit() and int(app_id) in packages:
                ordered.append(packages[int(app_id)])
        return ordered

    @staticmethod
    def _depot_parent(
        depot_id: str,
        packages: list[PackageInfo],
        items: Mapping[str, ResolvedItem],
        owned_ids: set[str],
    ) -> str | None:
        """First package (query order) listing the depot wins."""
        for package in packages:
            owner = package.depot_owner(depot_id)
            if owner is None:
                continue
            if owner == package.app_id or owner in items or owner in owned_ids:
                return owner
            return package.app_id
        return None

    async def _materialize(self, app_ids: list[str]) -> dict[str, ResolvedItem]:
        if not app_ids:
            return {}

        records = await self._products.get_records(app_ids)
        lookup: list[ProductRecord] = [
            records.get(app_id) or ProductRecord(id=app_id, name=placeholder_name(app_id))
            for app_id in app_ids
        ]

        icon_paths: dict[str, Path | None] = {}
        if self._icons is not None:
            icon_paths = await self._icons.resolve_icons(lookup)

        unresolved = [app_id for app_id in app_ids if app_id not in records]
        if unresolved:
            self._logger.warning("Unresolved import ids", count=len(unresolved), ids=unresolved[:20])

        return {
            record.id: ResolvedItem(
                id=record.id,
                name=record.name,
                display_type=record.display_type,
                icon_path=icon_paths.get(record.id),
                resolved=record.id in records,
            )
            for record in lookup
        }
