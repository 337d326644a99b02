"""Tests for application configuration."""
import pytest
from pydantic import ValidationError

from core.config import Settings, get_settings


class TestSettings:
    """Tests for settings loaded from environment variables."""

    def test__settings__defaults(self) -> None:
        """Only the database URL is required."""
        settings = Settings(_env_file=None, database_url="sqlite+aiosqlite:///:memory:")
        assert settings.db_echo is False
        assert settings.log_level == "INFO"
        assert settings.juncture_skip_unchanged_rows is True

    def test__settings__read_from_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Values are read from upper-case environment variables."""
        monkeypatch.setenv("DATABASE_URL", "postgresql+asyncpg://localhost/juncture")
        monkeypatch.setenv("JUNCTURE_SKIP_UNCHANGED_ROWS", "false")
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")
        settings = Settings(_env_file=None)
        assert settings.database_url == "postgresql+asyncpg://localhost/juncture"
        assert settings.juncture_skip_unchanged_rows is False
        assert settings.log_level == "DEBUG"

    def test__settings__missing_database_url(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Settings fail without a database URL."""
        monkeypatch.delenv("DATABASE_URL", raising=False)
        with pytest.raises(ValidationError):
            Settings(_env_file=None)


def test__get_settings__cached() -> None:
    """get_settings returns the same instance until the cache is cleared."""
    assert get_settings() is get_settings()
