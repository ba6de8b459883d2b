from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ._validators import _parse_bounded_int, _parse_positive_float


class DatabaseConfig(BaseModel):
    """Local store operation limits."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    operation_timeout: float = Field(
        default=30.0,
        validation_alias="DB_OPERATION_TIMEOUT",
        description="Database operation timeout in seconds",
    )
    max_retries: int = Field(
        default=3,
        validation_alias="DB_MAX_RETRIES",
        description="Maximum retries when the database is locked or busy",
    )

    @field_validator("operation_timeout", mode="before")
    @classmethod
    def _validate_timeout(cls, value: Any) -> float:
        return _parse_positive_float(
            value, default=30.0, name="Database operation timeout", maximum=3600
        )

    @field_validator("max_retries", mode="before")
    @classmethod
    def _validate_max_retries(cls, value: Any) -> int:
        return _parse_bounded_int(
            value, default=3, name="Database max retries", minimum=0, maximum=20
        )
