from __future__ import annotations

from .database import DatabaseConfig
from .integrations import LinkdingConfig
from .settings import AppConfig, RuntimeConfig, Settings, load_config
from .sync import MAX_ASSET_CONCURRENCY, HostCapabilitiesConfig, SyncEngineConfig

__all__ = [
    "MAX_ASSET_CONCURRENCY",
    "AppConfig",
    "DatabaseConfig",
    "HostCapabilitiesConfig",
    "LinkdingConfig",
    "RuntimeConfig",
    "Settings",
    "SyncEngineConfig",
    "load_config",
]
