"""Configuration management module."""

from gapsync.core.config.settings import (
    ChunkSettings,
    ConfigManager,
    ControlConfig,
    GapSyncConfig,
    LoggingConfig,
    ProviderSettings,
    RateLimitSettings,
    StorageConfig,
    SyncConfig,
    load_config_from_env,
)

__all__ = [
    "ChunkSettings",
    "ConfigManager",
    "ControlConfig",
    "GapSyncConfig",
    "LoggingConfig",
    "ProviderSettings",
    "RateLimitSettings",
    "StorageConfig",
    "SyncConfig",
    "load_config_from_env",
]
