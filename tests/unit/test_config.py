"""Unit tests for configuration defaults and sources."""

from __future__ import annotations

import platformdirs
import pytest

from titulky.config import _DEFAULT_DATA_DIR, _DEFAULT_DB_PATH, CacheSettings, Settings


class TestPlatformDefaults:
    """Verify config defaults use platformdirs instead of hardcoded Unix paths."""

    def test_default_data_dir_matches_platformdirs(self) -> None:
        expected = platformdirs.user_data_dir("titulky")
        assert expected == _DEFAULT_DATA_DIR

    def test_default_db_path_under_data_dir(self) -> None:
        assert _DEFAULT_DB_PATH.startswith(_DEFAULT_DATA_DIR)
        assert _DEFAULT_DB_PATH.endswith("subtitles.db")

    def test_cache_settings_uses_platform_default(self) -> None:
        assert CacheSettings().db_path == _DEFAULT_DB_PATH


class TestSettings:
    def test_defaults(self) -> None:
        settings = Settings()
        assert settings.server.port == 3000
        assert settings.site.base_url == "https://www.titulky.com"
        assert settings.site.login_ttl_minutes == 30
        assert settings.cache.memory_ttl_seconds == 3600
        assert settings.download.min_archive_bytes == 50

    def test_env_overrides_nested_fields(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TITULKY__SITE__USERNAME", "alice")
        monkeypatch.setenv("TITULKY__SERVER__PORT", "9090")
        settings = Settings()
        assert settings.site.username == "alice"
        assert settings.server.port == 9090

    def test_constructor_beats_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TITULKY__LOGGING__LEVEL", "DEBUG")
        settings = Settings(logging={"level": "ERROR"})
        assert settings.logging.level == "ERROR"
