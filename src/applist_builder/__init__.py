"""
applist-builder.

Catalog search, product-info lookups, icon caching and import-set
resolution for building Steam app lists.
"""

__version__ = "0.1.0"

__all__ = [
    "__version__",
]
