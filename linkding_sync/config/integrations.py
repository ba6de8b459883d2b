from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ._validators import _ensure_token, _parse_positive_float

logger = logging.getLogger(__name__)


class LinkdingConfig(BaseModel):
    """Linkding server connection settings."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    url: str = Field(default="http://localhost:9090", validation_alias="LINKDING_URL")
    token: str = Field(default="", validation_alias="LINKDING_TOKEN")
    timeout_sec: float = Field(
        default=30.0,
        validation_alias="LINKDING_TIMEOUT_SEC",
        description="Timeout for listing and update calls in seconds",
    )
    asset_timeout_sec: float = Field(
        default=30.0,
        validation_alias="LINKDING_ASSET_TIMEOUT_SEC",
        description="Timeout for a single asset download in seconds",
    )

    @field_validator("url", mode="before")
    @classmethod
    def _validate_url(cls, value: Any) -> str:
        url = str(value or "http://localhost:9090").strip()
        if not url:
            return "http://localhost:9090"
        if not url.startswith(("http://", "https://")):
            msg = f"Linkding URL must start with http:// or https://: {url}"
            raise ValueError(msg)
        return url.rstrip("/")

    @field_validator("token", mode="before")
    @classmethod
    def _validate_token(cls, value: Any) -> str:
        if value in (None, ""):
            return ""
        return _ensure_token(str(value), name="Linkding")

    @field_validator("timeout_sec", mode="before")
    @classmethod
    def _validate_timeout(cls, value: Any) -> float:
        return _parse_positive_float(value, default=30.0, name="Linkding timeout", maximum=600)

    @field_validator("asset_timeout_sec", mode="before")
    @classmethod
    def _validate_asset_timeout(cls, value: Any) -> float:
        return _parse_positive_float(
            value, default=30.0, name="Linkding asset timeout", maximum=600
        )

    @property
    def configured(self) -> bool:
        return bool(self.token)
