"""Service configuration: FIELDOPS_* environment variables over config.yaml defaults."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config.yaml"


class Settings(BaseSettings):
    default_duration_minutes: int = Field(default=120, gt=0)
    active_statuses: list[str] = Field(
        default_factory=lambda: ["open", "scheduled", "in_progress"]
    )
    schedule_timezone: str = "UTC"
    parts_hold_summary: str = "Waiting for parts"
    log_level: str = "INFO"
    seed_demo_data: bool = False

    model_config = SettingsConfigDict(
        env_prefix="FIELDOPS_",
        env_file=".env",
        env_file_encoding="utf-8",
        yaml_file=_CONFIG_PATH,
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Earlier sources win: explicit kwargs, env, .env, then config.yaml.
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()
