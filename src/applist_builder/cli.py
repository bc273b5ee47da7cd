"""
Command-line interface for applist-builder.

Provides commands to search the catalog, resolve import sets and manage
the icon cache manually.
"""

import asyncio
import json
import sys
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field

from applist_builder.config import get_settings
from applist_builder.logger import get_logger, setup_logging

# Initialize logging
setup_logging()
logger = get_logger(__name__, component="cli")


class CLIOutput(BaseModel):
    """Structured output for CLI commands."""

    success: bool
    command: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    data: dict[str, Any] | list[Any] | None = None
    error: str | None = None


def print_json(output: CLIOutput) -> None:
    """Print output as formatted JSON."""
    print(json.dumps(output.model_dump(), indent=2, default=str))


def parse_ids(raw: str) -> list[str]:
    """Split a comma-separated id list, dropping blanks."""
    return [part.strip() for part in raw.split(",") if part.strip()]


def option_value(args: list[str], name: str) -> str | None:
    """Value following ``name`` in ``args``, if present."""
    if name in args:
        idx = args.index(name)
        if idx + 1 < len(args):
            return args[idx + 1]
    return None


async def cmd_test_config() -> None:
    """Test configuration loading."""
    settings = get_settings()

    output = CLIOutput(
        success=True,
        command="test-config",
        data={
            "environment": settings.environment,
            "app_list_url": settings.steam.app_list_url,
            "store_search_url": settings.steam.store_search_url,
            "api_key_configured": settings.steam.api_key is not None,
            "icon_dir": str(settings.cache.icon_dir),
            "cdn_hosts": settings.icons.cdn_hosts,
            "batch_size": settings.product_info.batch_size,
            "max_concurrent_requests": settings.network.max_concurrent_requests,
        },
    )
    print_json(output)


async def cmd_search(query: str, max_results: int = 20, with_icons: bool = True) -> None:
    """Search the catalog and print enriched hits."""
    from applist_builder.service import CatalogService

    logger.info("Searching catalog", query=query, max_results=max_results)

    async with CatalogService() as service:
        items = await service.search(query, max_results, with_icons=with_icons)

    output = CLIOutput(
        success=True,
        command="search",
        data=[
            {
                "id": item.id,
                "name": item.name,
                "type": item.display_type.value,
                "resolved": item.resolved,
                "icon_path": str(item.icon_path) if item.icon_path else None,
            }
            for item in items
        ],
    )
    print_json(output)


async def cmd_resolve(candidate_ids: list[str], owned_ids: list[str]) -> None:
    """Resolve an import set into items with attributed depots."""
    from applist_builder.service import CatalogService

    logger.info("Resolving import set", candidates=len(candidate_ids), owned=len(owned_ids))

    async with CatalogService() as service:
        resolution = await service.resolve_import(candidate_ids, owned_ids)

    output = CLIOutput(
        success=True,
        command="resolve",
        data={
            "items": [
                {
                    "id": item.id,
                    "name": item.name,
                    "type": item.display_type.value,
                    "depot_ids": item.depot_ids,
                    "resolved": item.resolved,
                    "icon_path": str(item.icon_path) if item.icon_path else None,
                }
                for item in resolution.items
            ],
            "owned_depot_additions": resolution.owned_depot_additions,
        },
    )
    print_json(output)


async def cmd_icon(app_id: str) -> None:
    """Resolve and cache the icon for one app."""
    from applist_builder.service import CatalogService

    async with CatalogService() as service:
        path = await service.resolve_icon(app_id)

    output = CLIOutput(
        success=path is not None,
        command="icon",
        data={"app_id": app_id, "icon_path": str(path) if path else None},
        error=None if path else "No icon candidate succeeded",
    )
    print_json(output)


async def cmd_prune_icons(valid_ids: list[str]) -> None:
    """Delete cached icons for ids not in ``valid_ids``."""
    from applist_builder.cache.icons import IconCache

    async with IconCache() as icons:
        deleted = icons.delete_unused_icons(valid_ids)

    output = CLIOutput(
        success=True,
        command="prune-icons",
        data={"deleted": deleted, "kept_ids": len(valid_ids)},
    )
    print_json(output)


def print_usage() -> None:
    """Print CLI usage information."""
    usage = """
applist-builder CLI
===================

Usage: applist-builder <command> [arguments]

Commands:
  test-config                 Test configuration loading
  search <query>              Fuzzy search the catalog
  resolve <ids>               Resolve comma-separated ids into items and depots
  icon <app_id>               Download and cache the icon for an app
  prune-icons <ids>           Delete cached icons not in the comma-separated ids

Options:
  --max <n>                   Maximum search results (default 20)
  --no-icons                  Skip icon downloads for search
  --owned <ids>               Comma-separated ids already owned (resolve)

Examples:
  applist-builder search "half life" --max 10
  applist-builder resolve 400,401,402 --owned 220
"""
    print(usage)


def main() -> None:
    """Main CLI entry point."""
    if len(sys.argv) < 2:
        print_usage()
        sys.exit(1)

    command = sys.argv[1]
    args = sys.argv[2:]

    try:
        if command == "test-config":
            asyncio.run(cmd_test_config())

        elif command == "search":
            if not args:
                print("Error: query required")
                sys.exit(1)
            max_results = int(option_value(args, "--max") or 20)
            asyncio.run(cmd_search(args[0], max_results, with_icons="--no-icons" not in args))

        elif command == "resolve":
            if not args:
                print("Error: app_ids required (comma-separated)")
                sys.exit(1)
            owned = parse_ids(option_value(args, "--owned") or "")
            asyncio.run(cmd_resolve(parse_ids(args[0]), owned))

        elif command == "icon":
            if not args:
                print("Error: app_id required")
                sys.exit(1)
            asyncio.run(cmd_icon(args[0].strip()))

        elif command == "prune-icons":
            if not args:
                print("Error: valid ids required (comma-separated)")
                sys.exit(1)
            asyncio.run(cmd_prune_icons(parse_ids(args[0])))

        elif command in ("help", "--help", "-h"):
            print_usage()

        else:
            print(f"Unknown command: {command}")
            print_usage()
            sys.exit(1)

    except KeyboardInterrupt:
        print("\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        logger.exception("CLI error", error=str(e))
        output = CLIOutput(
            success=False,
            command=command,
            error=str(e),
        )
        print_json(output)
        sys.exit(1)


if __name__ == "__main__":
    main()
