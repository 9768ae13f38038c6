"""Router test fixtures: app with lifespan and async client."""

import os

import pytest
from httpx import ASGITransport, AsyncClient

from marketplace_service.app import create_app
from marketplace_service.config import clear_settings_cache
from marketplace_service.core.lifespan import lifespan
from marketplace_service.core.state import reset_app_state
from tests.helpers import config_yaml


@pytest.fixture
async def app(tmp_path):
    """Create a test app with a temporary database."""
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        config_yaml(str(tmp_path / "test.db"), str(tmp_path / "logs"), max_body_size=4096)
    )
    os.environ["CONFIG_PATH"] = str(config_path)

    clear_settings_cache()
    reset_app_state()

    test_app = create_app()
    async with lifespan(test_app):
        yield test_app

    reset_app_state()
    clear_settings_cache()
    os.environ.pop("CONFIG_PATH", None)


@pytest.fixture
async def client(app):
    """Create an async HTTP client for the test app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
