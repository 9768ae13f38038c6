"""Unit test fixtures: auto-clear caches between tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from marketplace_service.config import clear_settings_cache
from marketplace_service.core.state import reset_app_state
from tests.helpers import Marketplace, build_marketplace

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture(autouse=True)
def _clear_caches():
    """Clear settings cache and app state between tests."""
    clear_settings_cache()
    reset_app_state()
    yield
    clear_settings_cache()
    reset_app_state()


@pytest.fixture
def market(tmp_path: Path) -> Iterator[Marketplace]:
    """A fully wired marketplace on a temporary database."""
    marketplace = build_marketplace(tmp_path)
    yield marketplace
    marketplace.close()
