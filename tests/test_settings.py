"""
Tests for environment-driven configuration.
"""
from pathlib import Path

import pytest
from pydantic import ValidationError

from settings import Settings

pytestmark = pytest.mark.unit


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Isolate from the developer's environment and any .env file."""
    for name in ("BITESPEED_DB_PATH", "BITESPEED_PORT", "BITESPEED_LOG_LEVEL",
                 "BITESPEED_API_PREFIX", "BITESPEED_CORS_ORIGINS", "BITESPEED_DB_TIMEOUT",
                 "BITESPEED_RESOLVE_RETRIES", "BITESPEED_HOST"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


def test_defaults():
    settings = Settings()

    assert settings.db_path == Path("contacts.db")
    assert settings.port == 8000
    assert settings.log_level == "INFO"
    assert settings.api_prefix == ""
    assert settings.cors_origins == ["*"]
    assert settings.resolve_retries == 1


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("BITESPEED_DB_PATH", "/var/lib/bitespeed/contacts.db")
    monkeypatch.setenv("BITESPEED_PORT", "3000")
    monkeypatch.setenv("BITESPEED_LOG_LEVEL", "debug")
    monkeypatch.setenv("BITESPEED_CORS_ORIGINS", '["https://bitespeed.co"]')

    settings = Settings()

    assert settings.db_path == Path("/var/lib/bitespeed/contacts.db")
    assert settings.port == 3000
    assert settings.log_level == "DEBUG"
    assert settings.cors_origins == ["https://bitespeed.co"]


def test_dotenv_file(tmp_path):
    (tmp_path / ".env").write_text("BITESPEED_API_PREFIX=api/v1\n")

    assert Settings().api_prefix == "/api/v1"


@pytest.mark.parametrize("name,value", [
    ("BITESPEED_PORT", "70000"),
    ("BITESPEED_PORT", "0"),
    ("BITESPEED_LOG_LEVEL", "chatty"),
    ("BITESPEED_DB_PATH", ":memory:"),
    ("BITESPEED_DB_TIMEOUT", "0"),
])
def test_invalid_values_rejected(monkeypatch, name, value):
    monkeypatch.setenv(name, value)

    with pytest.raises(ValidationError):
        Settings()
