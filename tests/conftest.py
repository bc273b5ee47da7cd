"""Shared test fixtures."""

from collections.abc import Iterator

import pytest

from applist_builder.config import get_settings


@pytest.fixture(autouse=True)
def fresh_settings() -> Iterator[None]:
    """Re-read settings for every test so patched env vars apply."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
