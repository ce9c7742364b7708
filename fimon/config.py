"""Application configuration loaded from init args, environment, .env and YAML."""

from __future__ import annotations

import os

from pydantic import Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

from fimon.models.file_record import DEFAULT_HOST_IP

CONFIG_FILE_ENV = "FIMON_CONFIG_FILE"
DEFAULT_CONFIG_FILE = "fimon.yaml"


class Settings(BaseSettings):
    """fimon application settings."""

    model_config = SettingsConfigDict(
        env_prefix="FIMON_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Core
    debug: bool = False

    # Monitoring
    host_ip: str = Field(default=DEFAULT_HOST_IP, min_length=1)
    check_interval: float = Field(default=60.0, gt=0)
    watch_queue_size: int = Field(default=1000, ge=1)
    hash_chunk_size: int = Field(default=64 * 1024, ge=1)

    # Database
    database_url: str = "sqlite+aiosqlite:///data/fimon.db"
    database_busy_timeout: float = Field(default=5.0, ge=0)

    # Server
    host: str = "0.0.0.0"
    port: int = Field(default=8080, ge=1, le=65535)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Add the YAML config file as the lowest-priority source."""
        yaml_file = os.environ.get(CONFIG_FILE_ENV, DEFAULT_CONFIG_FILE)
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls, yaml_file=yaml_file),
            file_secret_settings,
        )
