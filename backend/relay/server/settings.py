"""Relay server configuration via environment variables."""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings

from shared.validators import StringListEnvSettingsSource, parse_string_list

if TYPE_CHECKING:
    from pydantic_settings.sources.base import PydanticBaseSettingsSource


class RelayServerSettings(BaseSettings):
    model_config = {"env_prefix": "RELAY_"}

    host: str = Field(default="0.0.0.0", min_length=1)  # noqa: S104
    # Hosting platforms inject a bare PORT, so it is honored next to RELAY_PORT.
    port: int = Field(default=3000, ge=1, le=65535, validation_alias=AliasChoices("PORT", "RELAY_PORT", "port"))
    cors_origins: list[str] = ["*"]
    log_dir: str | None = None
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_format: Literal["console", "json"] = "console"
    session_id_prefix: str = Field(default="rinascimento", min_length=1, max_length=50, pattern=r"^[a-zA-Z0-9_-]+$")
    janitor_interval_seconds: float = Field(default=3600, ge=0)  # 0 disables eviction
    session_idle_seconds: float = Field(default=3600, ge=0)
    heartbeat_timeout_seconds: float = Field(default=120, ge=0)  # 0 disables the liveness check

    @field_validator("cors_origins", mode="before")
    @classmethod
    def validate_cors_origins(cls, v: str | list[str]) -> list[str]:
        return parse_string_list(v)

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: object) -> object:
        return v.upper() if isinstance(v, str) else v

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,  # noqa: ARG003
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return init_settings, StringListEnvSettingsSource(settings_cls), dotenv_settings, file_secret_settings
