"""Pytest configuration and fixtures."""

from collections.abc import Iterator

import pytest

from transit_unify.config import get_settings


@pytest.fixture(autouse=True)
def fresh_settings(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Build settings from defaults for every test, ignoring the caller's environment."""
    for name in (
        "MERGE_CHECK_STOP_TYPE",
        "CHECK_STOP_TYPE",
        "MERGE_CHECK_STATIONS",
        "CHECK_STATIONS",
        "GTFS_LOAD_STRICT",
        "GTFS_IMPORT_STRICT",
    ):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
