"""Tests for environment-based settings."""

from pathlib import Path

import pytest
from proxyplane.config.settings import Settings, get_settings


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Run without a stray .env file and with the settings cache cleared."""
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_defaults():
    settings = Settings()

    assert settings.provider == "aws"
    assert settings.state_backend == "file"
    assert settings.state_path == Path("proxyplane.state.json")
    assert settings.max_workers == 8
    assert settings.retry_attempts == 5


def test_env_prefix_overrides(monkeypatch):
    monkeypatch.setenv("PROXYPLANE_MAX_WORKERS", "2")
    monkeypatch.setenv("PROXYPLANE_PROVIDER", "memory")
    monkeypatch.setenv("PROXYPLANE_STATE_PATH", "/tmp/other.json")

    settings = Settings()

    assert settings.max_workers == 2
    assert settings.provider == "memory"
    assert settings.state_path == Path("/tmp/other.json")


def test_default_tags_from_json(monkeypatch):
    monkeypatch.setenv("PROXYPLANE_DEFAULT_TAGS", '{"team": "data"}')

    assert Settings().default_tags == {"team": "data"}


def test_dotenv_file(tmp_path):
    (tmp_path / ".env").write_text("PROXYPLANE_AWS_REGION=eu-west-1\n")

    assert Settings().aws_region == "eu-west-1"


def test_get_settings_is_cached():
    assert get_settings() is get_settings()


def test_model_copy_overrides_without_mutating():
    base = Settings()

    updated = base.model_copy(update={"provider": "memory"})

    assert updated.provider == "memory"
    assert base.provider == "aws"
