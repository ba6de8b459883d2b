from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from typing import Self

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationInfo,
    field_validator,
    model_validator,
)

from ._validators import _parse_bounded_int, _parse_positive_float

MAX_ASSET_CONCURRENCY = 4


class SyncEngineConfig(BaseModel):
    """Sync engine tuning: paging, retries, keepalive and locking."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    engine_id: str = Field(default="default", validation_alias="SYNC_ENGINE_ID")
    page_size: int = Field(default=100, validation_alias="SYNC_PAGE_SIZE")
    asset_concurrency: int = Field(default=2, validation_alias="SYNC_ASSET_CONCURRENCY")
    max_retries: int = Field(
        default=4,
        validation_alias="SYNC_MAX_RETRIES",
        description="Retries per batch before the run fails",
    )
    retry_base_delay_sec: float = Field(default=5.0, validation_alias="SYNC_RETRY_BASE_DELAY_SEC")
    retry_max_delay_sec: float = Field(default=300.0, validation_alias="SYNC_RETRY_MAX_DELAY_SEC")
    keepalive_interval_sec: float = Field(
        default=10.0, validation_alias="SYNC_KEEPALIVE_INTERVAL_SEC"
    )
    lock_lease_sec: float = Field(default=60.0, validation_alias="SYNC_LOCK_LEASE_SEC")
    auto_sync_enabled: bool = Field(default=True, validation_alias="SYNC_AUTO_SYNC_ENABLED")
    interval_minutes: int = Field(default=60, validation_alias="SYNC_INTERVAL_MINUTES")
    lock_name: str = Field(default="linkding-sync", validation_alias="SYNC_LOCK_NAME")

    @field_validator("engine_id", "lock_name", mode="before")
    @classmethod
    def _validate_identifier(cls, value: Any, info: ValidationInfo) -> str:
        default = cls.model_fields[info.field_name].default
        raw = str(value or default).strip()
        if not raw:
            return str(default)
        if len(raw) > 64:
            msg = f"{info.field_name.replace('_', ' ')} is too long"
            raise ValueError(msg)
        if not all(c.isalnum() or c in "-_." for c in raw):
            msg = f"{info.field_name.replace('_', ' ')} contains invalid characters"
            raise ValueError(msg)
        return raw

    @field_validator("page_size", mode="before")
    @classmethod
    def _validate_page_size(cls, value: Any) -> int:
        return _parse_bounded_int(value, default=100, name="Page size", minimum=1, maximum=1000)

    @field_validator("asset_concurrency", mode="before")
    @classmethod
    def _validate_asset_concurrency(cls, value: Any) -> int:
        return _parse_bounded_int(
            value,
            default=2,
            name="Asset concurrency",
            minimum=1,
            maximum=MAX_ASSET_CONCURRENCY,
        )

    @field_validator("max_retries", mode="before")
    @classmethod
    def _validate_max_retries(cls, value: Any) -> int:
        return _parse_bounded_int(value, default=4, name="Sync max retries", minimum=0, maximum=20)

    @field_validator("interval_minutes", mode="before")
    @classmethod
    def _validate_interval(cls, value: Any) -> int:
        return _parse_bounded_int(
            value, default=60, name="Sync interval (minutes)", minimum=1, maximum=10080
        )

    @field_validator(
        "retry_base_delay_sec",
        "retry_max_delay_sec",
        "keepalive_interval_sec",
        "lock_lease_sec",
        mode="before",
    )
    @classmethod
    def _validate_seconds(cls, value: Any, info: ValidationInfo) -> float:
        default = float(cls.model_fields[info.field_name].default)
        return _parse_positive_float(
            value,
            default=default,
            name=info.field_name.replace("_", " ").capitalize(),
            maximum=3600,
        )

    @model_validator(mode="after")
    def _check_retry_delays(self) -> Self:
        if self.retry_max_delay_sec < self.retry_base_delay_sec:
            msg = "Sync retry max delay must not be smaller than the base delay"
            raise ValueError(msg)
        return self


class HostCapabilitiesConfig(BaseModel):
    """What the hosting environment can offer the engine.

    A host without a cross-context lock primitive gets the sole-owner lock,
    one without background execution runs without keepalive, and one without a
    periodic trigger only syncs on manual or lifecycle triggers.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    cross_context_lock: bool = Field(default=True, validation_alias="HOST_CROSS_CONTEXT_LOCK")
    background_execution: bool = Field(
        default=True, validation_alias="HOST_BACKGROUND_EXECUTION"
    )
    periodic_trigger: bool = Field(default=True, validation_alias="HOST_PERIODIC_TRIGGER")
