from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from .database import DatabaseConfig
from .integrations import LinkdingConfig
from .sync import HostCapabilitiesConfig, SyncEngineConfig

logger = logging.getLogger(__name__)


class RuntimeConfig(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    db_path: str = Field(default="/data/linkding_sync.db", validation_alias="DB_PATH")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_file: str | None = Field(default=None, validation_alias="LOG_FILE")
    log_use_loguru: bool = Field(default=True, validation_alias="LOG_USE_LOGURU")

    @field_validator("log_level", mode="before")
    @classmethod
    def _validate_log_level(cls, value: Any) -> str:
        log_level = str(value or "INFO").upper()
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if log_level not in valid_levels:
            msg = f"Invalid log level: {value}. Must be one of {valid_levels}"
            raise ValueError(msg)
        return log_level

    @field_validator("db_path", mode="before")
    @classmethod
    def _validate_db_path(cls, value: Any) -> str:
        raw = str(value or "/data/linkding_sync.db").strip()
        if "\x00" in raw:
            msg = "DB path contains invalid characters"
            raise ValueError(msg)
        return raw or "/data/linkding_sync.db"

    @field_validator("log_file", mode="before")
    @classmethod
    def _validate_log_file(cls, value: Any) -> str | None:
        if value is None:
            return None
        trimmed = str(value).strip()
        return trimmed or None


@dataclass(frozen=True)
class AppConfig:
    linkding: LinkdingConfig
    sync: SyncEngineConfig
    host: HostCapabilitiesConfig
    database: DatabaseConfig
    runtime: RuntimeConfig


class Settings(BaseSettings):
    """Application settings loaded automatically from environment variables.

    Nested models are populated by matching validation_alias on each field.
    """

    model_config = SettingsConfigDict(
        extra="ignore",
        populate_by_name=True,
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )

    linkding: LinkdingConfig = Field(default_factory=LinkdingConfig)
    sync: SyncEngineConfig = Field(default_factory=SyncEngineConfig)
    host: HostCapabilitiesConfig = Field(default_factory=HostCapabilitiesConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)

    @model_validator(mode="before")
    @classmethod
    def _build_nested_from_env(cls, data: dict[str, Any]) -> dict[str, Any]:
        """Build nested config objects from flat environment variables.

        Constructor arguments take precedence over ``os.environ``.
        """
        if not isinstance(data, dict):
            return data

        result = dict(data)
        merged_source = {**dict(os.environ), **data}

        for field_name, field_info in cls.model_fields.items():
            annotation = field_info.annotation
            if not isinstance(annotation, type) or not issubclass(annotation, BaseModel):
                continue

            nested_data: dict[str, Any] = {}
            for nested_field_name, nested_field in annotation.model_fields.items():
                env_value = cls._resolve_env_value(merged_source, nested_field)
                if env_value is not None:
                    nested_data[nested_field_name] = env_value

            if nested_data:
                if field_name in result and isinstance(result[field_name], dict):
                    result[field_name] = {**nested_data, **result[field_name]}
                else:
                    result[field_name] = nested_data

        return result

    @staticmethod
    def _resolve_env_value(data: dict[str, Any], field: Any) -> Any | None:
        aliases: list[str] = []
        alias = field.validation_alias
        if isinstance(alias, AliasChoices):
            aliases.extend(choice for choice in alias.choices if isinstance(choice, str))
        elif isinstance(alias, str):
            aliases.append(alias)
        if field.alias:
            aliases.append(field.alias)

        for name in aliases:
            if name in data:
                return data[name]
        return None

    def as_app_config(self) -> AppConfig:
        return AppConfig(
            linkding=self.linkding,
            sync=self.sync,
            host=self.host,
            database=self.database,
            runtime=self.runtime,
        )


def load_config(*, require_token: bool = False, **overrides: Any) -> AppConfig:
    """Load application configuration from environment variables and ``.env``.

    Args:
        require_token: Fail when ``LINKDING_TOKEN`` is missing. The CLI sets this
            for commands that talk to the server.
        **overrides: Section overrides (``linkding={...}``) that take precedence
            over the environment. Used by tests.

    Returns:
        Immutable AppConfig instance with all configuration sections.

    Raises:
        RuntimeError: If configuration validation fails.
    """
    try:
        settings = Settings(**overrides)
    except ValidationError as exc:
        msg = f"Configuration validation failed: {exc}"
        raise RuntimeError(msg) from exc

    if require_token and not settings.linkding.configured:
        msg = "LINKDING_TOKEN must be set to talk to the Linkding server"
        raise RuntimeError(msg)

    if not settings.host.cross_context_lock:
        logger.warning(
            "host_without_cross_context_lock",
            extra={"lock_name": settings.sync.lock_name},
        )

    return settings.as_app_config()
