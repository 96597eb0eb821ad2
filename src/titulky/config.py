"""Configuration loading.

Settings are loaded in priority order (highest first):
  1. Environment variables  (TITULKY__SITE__USERNAME=alice)
  2. titulky.yaml           (searched in cwd, then platform config dir)
  3. Hardcoded defaults

The config file is optional. All fields except the site credentials have
sensible defaults. Without a username every search degrades to no results.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import platformdirs
from pydantic import BaseModel
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

_DEFAULT_DATA_DIR = platformdirs.user_data_dir("titulky")
_DEFAULT_DB_PATH = str(Path(_DEFAULT_DATA_DIR) / "subtitles.db")

_BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


def _find_config_file() -> str | None:
    """Return the path of the first titulky.yaml found, or None."""
    candidates = [
        Path("titulky.yaml"),
        Path(platformdirs.user_config_dir("titulky")) / "titulky.yaml",
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class ServerSettings(BaseModel):
    host: str = "0.0.0.0"
    port: int = 3000
    cors_allow_origin: str = "*"


class SiteSettings(BaseModel):
    base_url: str = "https://www.titulky.com"
    username: str = ""
    password: str = ""
    timeout_seconds: float = 30.0
    login_ttl_minutes: int = 30
    user_agent: str = _BROWSER_USER_AGENT


class DownloadSettings(BaseModel):
    # Upper bound on the origin's CountDown(n) directive
    max_wait_seconds: float = 60.0
    min_archive_bytes: int = 50


class CacheSettings(BaseModel):
    memory_ttl_seconds: int = 60 * 60
    sweep_interval_seconds: int = 10 * 60
    db_path: str = _DEFAULT_DB_PATH


class LoggingSettings(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "json"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Double-underscore separates nesting: TITULKY__SERVER__PORT=9090
        env_prefix="TITULKY__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
    )

    server: ServerSettings = ServerSettings()
    site: SiteSettings = SiteSettings()
    download: DownloadSettings = DownloadSettings()
    cache: CacheSettings = CacheSettings()
    logging: LoggingSettings = LoggingSettings()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
        **kwargs: Any,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,  # Constructor args (highest priority)
            env_settings,  # Environment variables
            YamlConfigSettingsSource(settings_cls),  # YAML file
            # dotenv and file secrets intentionally excluded
        )
