"""
Product-info lookups.

Normalized records and package membership fetched in batches over a
stateful product-info session.
"""

from applist_builder.product_info.client import ConnectionState, ProductInfoClient
from applist_builder.product_info.contracts import (
    DisplayType,
    PackageInfo,
    ProductRecord,
    map_display_type,
    parse_package_info,
    parse_product_record,
    placeholder_name,
)
from applist_builder.product_info.steam_transport import SteamClientTransport
from applist_builder.product_info.transport import KeyValueTree, ProductInfoTransport

__all__ = [
    "ConnectionState",
    "DisplayType",
    "KeyValueTree",
    "PackageInfo",
    "ProductInfoClient",
    "ProductInfoTransport",
    "ProductRecord",
    "SteamClientTransport",
    "map_display_type",
    "parse_package_info",
    "parse_product_record",
    "placeholder_name",
]
