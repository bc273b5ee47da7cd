"""Tests for product-info response contracts."""

from typing import Any

import pytest

from applist_builder.product_info.contracts import (
    DisplayType,
    PackageInfo,
    map_display_type,
    parse_package_info,
    parse_product_record,
    placeholder_name,
)


@pytest.fixture
def game_tree() -> dict[str, Any]:
    """Key-value tree for a top-level game with one DLC."""
    return {
        "appid": 400,
        "common": {
            "name": "Portal",
            "type": "Game",
            "clienticon": "abc123",
            "header_image": {"english": "header.jpg?t=1"},
            "library_assets": {"hero_capsule": {"image": {"english": "herohash"}}},
            "assets": {"main_capsule": {"image": {"schinese": "mainhash"}}},
        },
        "extended": {"listofdlc": "410, 420"},
        "depots": {
            "401": {"manifests": {"public": {"gid": "1"}}},
            "402": {"manifests": {"public": {"gid": "2"}}},
            "411": {"manifests": {"public": {"gid": "3"}}, "dlcappid": "410"},
            "228990": {"depotfromapp": "228980"},
            "403": {"config": {"oslist": "windows"}},
            "branches": {"public": {"buildid": "9"}},
            "400": {"manifests": {}},
        },
    }


class TestMapDisplayType:
    """Tests for protocol type mapping."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("game", DisplayType.GAME),
            ("DLC", DisplayType.DLC),
            ("demo", DisplayType.DEMO),
            ("mod", DisplayType.MOD),
            ("video", DisplayType.VIDEO),
            ("music", DisplayType.SOUNDTRACK),
            ("bundle", DisplayType.BUNDLE),
            ("episode", DisplayType.EPISODE),
            ("tool", DisplayType.SOFTWARE),
            ("advertising", DisplayType.SOFTWARE),
            ("config", DisplayType.GAME),
            (None, DisplayType.GAME),
        ],
    )
    def test_mapping(self, raw: str | None, expected: DisplayType) -> None:
        assert map_display_type(raw) is expected

    def test_placeholder_name(self) -> None:
        assert placeholder_name(123) == "App 123"


class TestParseProductRecord:
    """Tests for ProductRecord parsing."""

    def test_full_record(self, game_tree: dict[str, Any]) -> None:
        """Test all fields are extracted."""
        record = parse_product_record(400, game_tree)

        assert record.id == "400"
        assert record.name == "Portal"
        assert record.display_type is DisplayType.GAME
        assert record.client_icon_hash == "abc123"
        assert record.hero_image_hash == "herohash"
        assert record.main_capsule_hash == "mainhash"
        assert record.header_image_path == "header.jpg?t=1"
        assert record.parent_id is None
        assert not record.is_dlc

    def test_dlc_with_parent(self) -> None:
        """Test DLC type and parent linkage."""
        record = parse_product_record(
            "410",
            {"appinfo": {"common": {"name": "Portal DLC", "type": "DLC", "parent": "400"}}},
        )

        assert record.is_dlc
        assert record.parent_id == "400"

    def test_missing_common(self) -> None:
        """Test that an empty tree degrades to placeholder values."""
        record = parse_product_record(999, {})

        assert record.name == "App 999"
        assert record.display_type is DisplayType.GAME
        assert record.hero_image_hash is None


class TestParsePackageInfo:
    """Tests for PackageInfo parsing."""

    def test_depots_and_dlc(self, game_tree: dict[str, Any]) -> None:
        """Test depot filtering and DLC depot routing."""
        info = parse_package_info(400, game_tree)

        assert info is not None
        assert info.app_id == "400"
        assert info.dlc_ids == frozenset({"410", "420"})
        assert info.depot_ids == frozenset({"401", "402", "228990"})
        assert info.dlc_depot_map == {"410": frozenset({"411"}), "420": frozenset()}
        assert info.all_depot_ids == frozenset({"401", "402", "228990", "411"})

    def test_depot_owner(self, game_tree: dict[str, Any]) -> None:
        info = parse_package_info(400, game_tree)

        assert info is not None
        assert info.depot_owner("401") == "400"
        assert info.depot_owner("411") == "410"
        assert info.depot_owner("999") is None

    def test_depot_typed_app(self) -> None:
        """A depot id yields no package."""
        assert parse_package_info(401, {"common": {"type": "depot"}}) is None

    def test_listofdlc_under_common(self) -> None:
        info = parse_package_info(500, {"common": {"extended": {"listofdlc": "510"}}})

        assert info is not None
        assert info.dlc_ids == frozenset({"510"})
        assert info.depot_ids == frozenset()

    def test_frozen(self) -> None:
        """Test that package info is immutable."""
        info = PackageInfo(app_id="1")

        with pytest.raises(ValueError):
            info.app_id = "2"  # type: ignore[misc]
