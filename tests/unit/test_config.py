"""
Tests for environment-driven settings.
"""

from pathlib import Path

import pytest
from pydantic import ValidationError

from dazzle_data.config import DataSettings, get_settings


class TestDataSettings:
    """Tests for DataSettings."""

    def test_defaults(self, monkeypatch):
        for name in ("DATABASE_PATH", "DEFAULT_PAGE_SIZE", "MAX_PAGE_SIZE"):
            monkeypatch.delenv(f"DAZZLE_DATA_{name}", raising=False)
        settings = DataSettings()

        assert settings.database_path == Path(".dazzle/data.db")
        assert settings.default_page_size == 15
        assert settings.max_page_size == 1000

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("DAZZLE_DATA_DEFAULT_PAGE_SIZE", "25")
        monkeypatch.setenv("DAZZLE_DATA_DATABASE_PATH", "/tmp/app.db")

        settings = DataSettings()

        assert settings.default_page_size == 25
        assert settings.database_path == Path("/tmp/app.db")

    def test_page_size_must_be_positive(self, monkeypatch):
        monkeypatch.setenv("DAZZLE_DATA_DEFAULT_PAGE_SIZE", "0")

        with pytest.raises(ValidationError):
            DataSettings()

    def test_get_settings_cached(self):
        get_settings.cache_clear()

        assert get_settings() is get_settings()
