"""
HTTP clients for the Steam catalog endpoints.

Both clients share retry logic, error mapping and structured
logging through ``BaseHTTPClient``.
"""

from applist_builder.clients.app_list import AppListClient
from applist_builder.clients.base import BaseHTTPClient
from applist_builder.clients.store_search import StoreSearchClient

__all__ = [
    "AppListClient",
    "BaseHTTPClient",
    "StoreSearchClient",
]
