"""
Error taxonomy for the catalog pipeline.

Network and protocol layers raise these; the public operations of the
index, product client, icon cache and resolver catch them and degrade
to partial or empty results.
"""

from datetime import datetime, timezone


class CatalogError(Exception):
    """Base exception for catalog pipeline errors."""

    def __init__(
        self,
        message: str,
        *,
        source: str | None = None,
        endpoint: str | None = None,
        status_code: int | None = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.source = source
        self.endpoint = endpoint
        self.status_code = status_code
        self.original_error = original_error
        self.timestamp = datetime.now(timezone.utc)


class NetworkFailure(CatalogError):
    """Timeout, refused connection or non-success status."""

    pass


class ParseFailure(CatalogError):
    """Response arrived but could not be parsed."""

    pass


class NotFound(CatalogError):
    """Valid response that carries no data for the requested id."""

    pass


class ConnectionLost(CatalogError):
    """Protocol session dropped mid-flight; the client reconnects."""

    pass
