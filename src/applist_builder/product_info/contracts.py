"""
Data contracts for product-info protocol responses.

The protocol answers each app id with a nested key-value tree. These
models normalize the parts the pipeline uses: display type, name, image
hashes and parent linkage for records, and depot/DLC membership for
package lookups.
"""

from collections.abc import Mapping
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class DisplayType(str, Enum):
    """User-facing item type."""

    GAME = "Game"
    DLC = "DLC"
    DEMO = "Demo"
    MOD = "Mod"
    VIDEO = "Video"
    SOUNDTRACK = "Soundtrack"
    BUNDLE = "Bundle"
    EPISODE = "Episode"
    SOFTWARE = "Software"


_TYPE_MAP: dict[str, DisplayType] = {
    "game": DisplayType.GAME,
    "dlc": DisplayType.DLC,
    "demo": DisplayType.DEMO,
    "mod": DisplayType.MOD,
    "video": DisplayType.VIDEO,
    "music": DisplayType.SOUNDTRACK,
    "bundle": DisplayType.BUNDLE,
    "episode": DisplayType.EPISODE,
    "tool": DisplayType.SOFTWARE,
    "advertising": DisplayType.SOFTWARE,
}


def map_display_type(raw_type: str | None) -> DisplayType:
    """Map a protocol type string to a display type; unknown types are games."""
    if not raw_type:
        return DisplayType.GAME
    return _TYPE_MAP.get(raw_type.strip().lower(), DisplayType.GAME)


def placeholder_name(app_id: int | str) -> str:
    """Name used for ids the protocol could not resolve."""
    return f"App {app_id}"


class ProductRecord(BaseModel):
    """Normalized metadata for one app id."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="App id")
    display_type: DisplayType = Field(default=DisplayType.GAME)
    name: str = Field(..., description="Display name")
    parent_id: str | None = Field(default=None, description="Parent app id for DLC")
    client_icon_hash: str | None = Field(default=None, description="Small client icon hash")
    hero_image_hash: str | None = Field(default=None, description="Library hero capsule hash")
    main_capsule_hash: str | None = Field(default=None, description="Store main capsule hash")
    header_image_path: str | None = Field(default=None, description="Header image file name")

    @property
    def is_dlc(self) -> bool:
        return self.display_type is DisplayType.DLC


class PackageInfo(BaseModel):
    """
    Depot and DLC membership for one top-level app.

    ``depot_ids`` holds depots shipped with the app itself; depots that
    belong to one of its DLCs live in ``dlc_depot_map`` instead.
    """

    model_config = ConfigDict(frozen=True)

    app_id: str
    dlc_ids: frozenset[str] = Field(default_factory=frozenset)
    depot_ids: frozenset[str] = Field(default_factory=frozenset)
    dlc_depot_map: dict[str, frozenset[str]] = Field(default_factory=dict)

    @property
    def all_depot_ids(self) -> frozenset[str]:
        """Own depots plus every DLC depot."""
        return self.depot_ids.union(*self.dlc_depot_map.values())

    def depot_owner(self, depot_id: str) -> str | None:
        """Id of the app or DLC that ships ``depot_id``, if this package lists it."""
        if depot_id in self.depot_ids:
            return self.app_id
        for dlc_id, depots in self.dlc_depot_map.items():
            if depot_id in depots:
                return dlc_id
        return None


def _child(node: Any, key: str) -> Mapping[str, Any]:
    if isinstance(node, Mapping):
        value = node.get(key)
        if isinstance(value, Mapping):
            return value
    return {}


def _text(value: Any) -> str | None:
    """Scalar node as a non-empty string."""
    if value is None or isinstance(value, Mapping):
        return None
    text = str(value).strip()
    return text or None


def _localized(value: Any) -> str | None:
    """Scalar node, or the english (else first) entry of a per-language node."""
    if isinstance(value, Mapping):
        english = _text(value.get("english"))
        if english:
            return english
        for item in value.values():
            text = _text(item)
            if text:
                return text
        return None
    return _text(value)


def _app_root(tree: Mapping[str, Any]) -> Mapping[str, Any]:
    # Some transports wrap the tree in an "appinfo" node
    root = tree.get("appinfo")
    return root if isinstance(root, Mapping) else tree


def parse_product_record(app_id: int | str, tree: Mapping[str, Any]) -> ProductRecord:
    """
    Build a ``ProductRecord`` from one app's key-value tree.

    Missing fields degrade to defaults: a nameless app gets the
    placeholder name and an untyped app is a game.
    """
    common = _child(_app_root(tree), "common")

    return ProductRecord(
        id=str(app_id),
        display_type=map_display_type(_text(common.get("type"))),
        name=_text(common.get("name")) or placeholder_name(app_id),
        parent_id=_text(common.get("parent")),
        client_icon_hash=_text(common.get("clienticon")),
        hero_image_hash=_localized(_child(common.get("library_assets"), "hero_capsule").get("image")),
        main_capsule_hash=_localized(_child(common.get("assets"), "main_capsule").get("image")),
        header_image_path=_localized(common.get("header_image")),
    )


def _split_id_list(value: str | None) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def parse_package_info(app_id: int | str, tree: Mapping[str, Any]) -> PackageInfo | None:
    """
    Build a ``PackageInfo`` from one app's key-value tree.

    Returns ``None`` when the id is itself a depot. Depot entries count
    only if they carry manifests or point at another app's depot, which
    skips config-only children such as ``branches``.
    """
    root = _app_root(tree)
    common = _child(root, "common")
    if (_text(common.get("type")) or "").lower() == "depot":
        return None

    owner_id = str(app_id)
    dlc_list = _text(_child(root, "extended").get("listofdlc")) or _text(
        _child(common, "extended").get("listofdlc")
    )
    dlc_ids = _split_id_list(dlc_list)
    dlc_depots: dict[str, set[str]] = {dlc_id: set() for dlc_id in dlc_ids}
    depot_ids: set[str] = set()

    for key, child in _child(root, "depots").items():
        depot_id = str(key)
        if not depot_id.isdigit() or depot_id == owner_id:
            continue
        if not isinstance(child, Mapping):
            continue
        if "manifests" not in child and "depotfromapp" not in child:
            continue

        dlc_app_id = _text(child.get("dlcappid"))
        if dlc_app_id and dlc_app_id in dlc_depots:
            dlc_depots[dlc_app_id].add(depot_id)
        else:
            depot_ids.add(depot_id)

    return PackageInfo(
        app_id=owner_id,
        dlc_ids=frozenset(dlc_ids),
        depot_ids=frozenset(depot_ids),
        dlc_depot_map={dlc_id: frozenset(depots) for dlc_id, depots in dlc_depots.items()},
    )
