"""
Product-info transport interface.

The protocol itself is an external collaborator. The client only needs
to connect, log in anonymously and query app ids for their key-value
trees.
"""

from collections.abc import Mapping
from typing import Any, Protocol

KeyValueTree = Mapping[str, Any]


class ProductInfoTransport(Protocol):
    """
    Session-oriented product-info connection.

    Implementations raise ``NetworkFailure`` for failed operations and
    ``ConnectionLost`` when a query finds the session gone.
    """

    async def connect(self) -> None:
        """Open the connection."""
        ...

    async def login_anonymous(self) -> None:
        """Authenticate the open connection anonymously."""
        ...

    async def query(self, app_ids: list[int]) -> Mapping[int, KeyValueTree]:
        """Return the key-value tree of every id the upstream knows."""
        ...

    async def disconnect(self) -> None:
        """Close the connection. Must be safe to call when not connected."""
        ...
