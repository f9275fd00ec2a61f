# backend/tests/test_config.py

import pytest

from kaspi_review.kaspi.config import get_kaspi_settings
from kaspi_review.utils.config import (
    EnvVarMissingError,
    get_env,
    get_env_bool,
    get_env_float,
    get_env_int,
)
from kaspi_review.utils.phone import normalize_phone, to_international


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    get_kaspi_settings.cache_clear()
    yield
    get_kaspi_settings.cache_clear()


def test_required_variable_missing(monkeypatch):
    monkeypatch.delenv("SOME_REQUIRED_VALUE", raising=False)

    with pytest.raises(EnvVarMissingError) as exc_info:
        get_env("SOME_REQUIRED_VALUE")

    assert exc_info.value.name == "SOME_REQUIRED_VALUE"
    assert get_env("SOME_REQUIRED_VALUE", default="x", required=False) == "x"


def test_numeric_variables_fall_back_on_garbage(monkeypatch):
    monkeypatch.setenv("SOME_INT", "ten")
    monkeypatch.setenv("SOME_FLOAT", "1.5")

    assert get_env_int("SOME_INT", 10) == 10
    assert get_env_float("SOME_FLOAT", 0.0) == 1.5


@pytest.mark.parametrize("raw, expected", [("true", True), ("1", True), ("Yes", True), ("off", False), ("0", False)])
def test_bool_variables(monkeypatch, raw, expected):
    monkeypatch.setenv("SOME_FLAG", raw)
    assert get_env_bool("SOME_FLAG") is expected


def test_kaspi_settings_from_environment(monkeypatch):
    monkeypatch.setenv("KASPI_API_KEY", "key")
    monkeypatch.setenv("KASPI_API_URL", "https://kaspi.test/api/")
    monkeypatch.setenv("KASPI_PAGE_SIZE", "50")

    settings = get_kaspi_settings()

    assert settings.api_key == "key"
    assert settings.api_base_url == "https://kaspi.test/api"
    assert settings.page_size == 50
    assert settings.max_days_per_request == 14


def test_kaspi_settings_require_api_key(monkeypatch):
    monkeypatch.delenv("KASPI_API_KEY", raising=False)

    with pytest.raises(EnvVarMissingError):
        get_kaspi_settings()


@pytest.mark.parametrize(
    "raw, normalized, international",
    [
        ("+7 (701) 123-45-67", "77011234567", "77011234567"),
        ("8 701 123 45 67", "87011234567", "77011234567"),
        (None, "", ""),
    ],
)
def test_phone_helpers(raw, normalized, international):
    assert normalize_phone(raw) == normalized
    assert to_international(raw) == international
