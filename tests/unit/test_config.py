"""Unit tests for configuration loading."""

import os

import pytest
from service_commons.config import ConfigurationError

from marketplace_service.config import Settings, clear_settings_cache, get_safe_config, get_settings
from tests.helpers import config_yaml


def _load(tmp_path, content: str) -> Settings:
    config_path = tmp_path / "config.yaml"
    config_path.write_text(content)
    os.environ["CONFIG_PATH"] = str(config_path)
    clear_settings_cache()
    try:
        return get_settings()
    finally:
        os.environ.pop("CONFIG_PATH", None)


@pytest.mark.unit
def test_config_loads_from_yaml(tmp_path):
    """Config loads correctly from a valid YAML file."""
    settings = _load(tmp_path, config_yaml("data/test.db", "data/logs"))

    assert isinstance(settings, Settings)
    assert settings.service.name == "marketplace"
    assert settings.database.path == "data/test.db"
    assert settings.platform.account_id == "u-platform"
    assert settings.commission.rate_percent == 5
    assert settings.pro.price == 990
    assert settings.limits.max_attachments == 3
    assert settings.limits.max_amount == 1_000_000_000


@pytest.mark.unit
def test_config_rejects_extra_fields(tmp_path):
    """Config with extra fields causes validation error."""
    content = config_yaml("data/test.db", "data/logs").replace(
        'version: "0.1.0"', 'version: "0.1.0"\n  extra_field: "should fail"'
    )
    with pytest.raises(ConfigurationError):
        _load(tmp_path, content)


@pytest.mark.unit
def test_config_rejects_missing_section(tmp_path):
    content = config_yaml("data/test.db", "data/logs").replace(
        "pro:\n  price: 990\n", ""
    )
    with pytest.raises(ConfigurationError, match="pro"):
        _load(tmp_path, content)


@pytest.mark.unit
@pytest.mark.parametrize(
    ("old", "new"),
    [
        ("rate_percent: 5", "rate_percent: 101"),
        ("xp_per_level: 1000", "xp_per_level: 0"),
        ("price: 990", "price: 0"),
        ("max_amount: 1000000000", "max_amount: 0"),
        ("max_amount: 1000000000", f"max_amount: {2**63 - 1}"),
    ],
)
def test_config_rejects_out_of_range_values(tmp_path, old, new):
    content = config_yaml("data/test.db", "data/logs").replace(old, new)
    with pytest.raises(ConfigurationError):
        _load(tmp_path, content)


@pytest.mark.unit
def test_missing_config_file(tmp_path):
    os.environ["CONFIG_PATH"] = str(tmp_path / "absent.yaml")
    clear_settings_cache()
    try:
        with pytest.raises(ConfigurationError, match="not found"):
            get_settings()
    finally:
        os.environ.pop("CONFIG_PATH", None)


@pytest.mark.unit
def test_safe_config_dump(tmp_path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(config_yaml("data/test.db", "data/logs"))
    os.environ["CONFIG_PATH"] = str(config_path)
    clear_settings_cache()
    try:
        safe = get_safe_config()
    finally:
        os.environ.pop("CONFIG_PATH", None)
    assert safe["commission"] == {"rate_percent": 5}
    assert safe["platform"]["account_id"] == "u-platform"
