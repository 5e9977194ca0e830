"""Tests for server and client configuration."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from aica.config import (
    MAX_PAGE_SIZE,
    ClientSettings,
    Environment,
    Settings,
    get_client_settings,
)


def _make_settings(**overrides) -> Settings:
    """Build a Settings instance with test defaults + overrides."""
    defaults = {
        "DATABASE_URL": "postgresql+psycopg://localhost/test",
        "AICA_ENV": "test",
    }
    defaults.update(overrides)
    return Settings(**defaults)


class TestServerSettings:
    def test_defaults(self):
        s = _make_settings()
        assert s.aica_env == Environment.TEST
        assert s.max_page_size == MAX_PAGE_SIZE
        assert s.log_json is True

    def test_smaller_page_size_accepted(self):
        assert _make_settings(AICA_MAX_PAGE_SIZE=25).max_page_size == 25

    def test_page_size_above_ceiling_rejected(self):
        with pytest.raises(ValidationError, match="AICA_MAX_PAGE_SIZE"):
            _make_settings(AICA_MAX_PAGE_SIZE=500)

    def test_zero_page_size_rejected(self):
        with pytest.raises(ValidationError, match="AICA_MAX_PAGE_SIZE"):
            _make_settings(AICA_MAX_PAGE_SIZE=0)

    def test_unknown_env_rejected(self):
        with pytest.raises(ValidationError):
            _make_settings(AICA_ENV="moon")


class TestClientSettings:
    def test_defaults(self, monkeypatch):
        for name in ("AICA_SERVER_URL", "AICA_DATA_DIR", "AICA_SYNC_PAGE_SIZE"):
            monkeypatch.delenv(name, raising=False)

        s = ClientSettings()
        assert s.normalized_server_url == "http://localhost:8000"
        assert s.resolved_data_dir == Path("~/.aica").expanduser()
        assert s.sync_page_size == MAX_PAGE_SIZE

    def test_reads_environment(self, monkeypatch, tmp_path):
        monkeypatch.setenv("AICA_SERVER_URL", "https://vault.example.com/")
        monkeypatch.setenv("AICA_DATA_DIR", str(tmp_path))

        s = get_client_settings()
        assert s.normalized_server_url == "https://vault.example.com"
        assert s.resolved_data_dir == tmp_path

    def test_sync_page_size_above_ceiling_rejected(self):
        with pytest.raises(ValidationError, match="AICA_SYNC_PAGE_SIZE"):
            ClientSettings(AICA_SYNC_PAGE_SIZE=101)
