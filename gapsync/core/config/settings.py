"""Configuration management for the gapsync service."""

from __future__ import annotations

import os
import tomllib
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from gapsync.core.exceptions import ConfigurationError
from gapsync.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_MONITORED_SYMBOLS: tuple[str, ...] = (
    "AAPL",
    "MSFT",
    "KO",
    "JNJ",
    "TSLA",
    "GOOGL",
    "AMZN",
    "META",
    "NVDA",
    "NFLX",
    "V",
    "MA",
    "UNH",
    "HD",
    "PG",
    "BAC",
    "JPM",
    "WMT",
    "DIS",
    "ADBE",
)

DEFAULT_QUICK_SYMBOLS: tuple[str, ...] = ("AAPL", "MSFT", "GOOGL", "TSLA", "NVDA")


@dataclass
class RateLimitSettings:
    """Admission limits for one upstream provider."""

    max_calls_per_hour: int = 50
    max_calls_per_day: int = 1500
    min_delay_between_calls: float = 2.0


@dataclass
class ChunkSettings:
    """Calendar-day thresholds that pick the chunk span in months."""

    quarterly_above_days: int = 1000
    half_year_above_days: int = 500
    yearly_above_days: int = 100


@dataclass
class SyncConfig:
    """Orchestrator behaviour."""

    target_years: int = 5
    priority_threshold: float = 80.0
    complete_threshold: float = 95.0
    empty_symbol_weight: float = 2.0
    symbols: list[str] = field(default_factory=lambda: list(DEFAULT_MONITORED_SYMBOLS))
    quick_symbols: list[str] = field(default_factory=lambda: list(DEFAULT_QUICK_SYMBOLS))
    recent_days: int = 7
    full_cycle_interval: float = 6 * 3600.0
    quick_cycle_interval: float = 3600.0
    analysis_delay: float = 0.1
    chunk_delay: float = 2.0
    symbol_delay: float = 10.0
    symbol_error_delay: float = 15.0
    chunk_error_delay: float = 5.0
    rate_limit_error_delay: float = 30.0
    rate_limit_margin: float = 1.0
    quick_symbol_delay: float = 2.0
    restart_pause: float = 2.0
    auto_start: bool = True


@dataclass
class ControlConfig:
    """Remote control channel polling."""

    enabled: bool = True
    poll_interval: float = 120.0
    batch_size: int = 5


@dataclass
class StorageConfig:
    """DuckDB storage location.

    The database is opened per operation; ``lock_timeout`` is how long an open
    keeps retrying while another process holds the file.
    """

    database: str = str(Path.home() / ".gapsync" / "gapsync.duckdb")
    lock_timeout: float = 5.0


@dataclass
class ProviderSettings:
    """Upstream chart API client."""

    name: str = "yahoo"
    base_url: str = "https://query1.finance.yahoo.com"
    timeout: float = 30.0
    user_agent: str = "Mozilla/5.0 (compatible; gapsync/0.1)"


@dataclass
class LoggingConfig:
    """Logging settings."""

    level: str = "INFO"
    file: str | None = None


@dataclass
class GapSyncConfig:
    """Top level gapsync configuration."""

    sync: SyncConfig = field(default_factory=SyncConfig)
    rate_limit: RateLimitSettings = field(default_factory=RateLimitSettings)
    chunks: ChunkSettings = field(default_factory=ChunkSettings)
    control: ControlConfig = field(default_factory=ControlConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    provider: ProviderSettings = field(default_factory=ProviderSettings)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any]) -> GapSyncConfig:
        """Build a configuration from a nested dictionary."""

        sections = {
            "sync": SyncConfig,
            "rate_limit": RateLimitSettings,
            "chunks": ChunkSettings,
            "control": ControlConfig,
            "storage": StorageConfig,
            "provider": ProviderSettings,
            "logging": LoggingConfig,
        }
        unknown = sorted(set(config_dict) - set(sections))
        if unknown:
            raise ConfigurationError(f"unknown configuration sections: {', '.join(unknown)}", field=unknown[0])

        built: dict[str, Any] = {}
        for name, section_cls in sections.items():
            values = config_dict.get(name, {})
            if not isinstance(values, dict):
                raise ConfigurationError(f"section '{name}' must be a table", field=name)
            try:
                built[name] = section_cls(**values)
            except TypeError as exc:
                raise ConfigurationError(f"invalid options in section '{name}': {exc}", field=name) from exc
        return cls(**built)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a nested dictionary."""

        return asdict(self)

    def validate(self) -> None:
        """Raise :class:`ConfigurationError` when a setting is unusable."""

        sync = self.sync
        if sync.target_years <= 0:
            raise ConfigurationError("target_years must be positive", field="sync.target_years")
        if not 0 <= sync.priority_threshold <= 100:
            raise ConfigurationError("priority_threshold must be within [0, 100]", field="sync.priority_threshold")
        if not 0 <= sync.complete_threshold <= 100:
            raise ConfigurationError("complete_threshold must be within [0, 100]", field="sync.complete_threshold")
        if sync.empty_symbol_weight <= 0:
            raise ConfigurationError("empty_symbol_weight must be positive", field="sync.empty_symbol_weight")
        if not sync.symbols:
            raise ConfigurationError("at least one monitored symbol is required", field="sync.symbols")
        if sync.recent_days <= 0:
            raise ConfigurationError("recent_days must be positive", field="sync.recent_days")
        for name in ("full_cycle_interval", "quick_cycle_interval"):
            if getattr(sync, name) <= 0:
                raise ConfigurationError(f"{name} must be positive", field=f"sync.{name}")

        limits = self.rate_limit
        if limits.max_calls_per_hour <= 0 or limits.max_calls_per_day <= 0:
            raise ConfigurationError("rate limit caps must be positive", field="rate_limit")
        if limits.min_delay_between_calls < 0:
            raise ConfigurationError(
                "min_delay_between_calls cannot be negative", field="rate_limit.min_delay_between_calls"
            )

        chunks = self.chunks
        if not chunks.quarterly_above_days > chunks.half_year_above_days > chunks.yearly_above_days >= 0:
            raise ConfigurationError("chunk thresholds must be strictly decreasing", field="chunks")

        if self.control.poll_interval <= 0 or self.control.batch_size <= 0:
            raise ConfigurationError("control poll interval and batch size must be positive", field="control")
        if self.storage.lock_timeout < 0:
            raise ConfigurationError("lock_timeout cannot be negative", field="storage.lock_timeout")
        if not self.provider.base_url:
            raise ConfigurationError("provider base_url cannot be empty", field="provider.base_url")


class ConfigManager:
    """Loads configuration from a TOML file with environment overrides."""

    def __init__(self, config_path: Path | None = None):
        """Initialise the manager.

        Args:
            config_path: TOML file path, defaults to ``~/.gapsync/config.toml``
        """
        self.config_path = config_path or Path.home() / ".gapsync" / "config.toml"
        self.config = self._load_config()

    def _load_config(self) -> GapSyncConfig:
        config_dict: dict[str, Any] = {}
        if self.config_path.exists():
            try:
                with open(self.config_path, "rb") as f:
                    config_dict = tomllib.load(f)
            except tomllib.TOMLDecodeError as exc:
                raise ConfigurationError(f"cannot parse {self.config_path}: {exc}", field="config_path") from exc
            logger.debug(f"loaded configuration from {self.config_path}")

        _deep_update(config_dict, load_config_from_env())
        return GapSyncConfig.from_dict(config_dict)

    def get_config(self) -> GapSyncConfig:
        """Return the current configuration."""
        return self.config

    def update_config(self, **updates: Any) -> None:
        """Apply nested updates to the current configuration."""
        config_dict = self.config.to_dict()
        _deep_update(config_dict, updates)
        self.config = GapSyncConfig.from_dict(config_dict)


def _deep_update(d: dict[str, Any], u: dict[str, Any]) -> dict[str, Any]:
    for k, v in u.items():
        if isinstance(v, dict):
            d[k] = _deep_update(d.get(k, {}), v)
        else:
            d[k] = v
    return d


def _split_symbols(raw: str) -> list[str]:
    return [item.strip().upper() for item in raw.split(",") if item.strip()]


_ENV_OPTIONS: dict[str, tuple[str, str, Any]] = {
    "GAPSYNC_TARGET_YEARS": ("sync", "target_years", int),
    "GAPSYNC_PRIORITY_THRESHOLD": ("sync", "priority_threshold", float),
    "GAPSYNC_SYMBOLS": ("sync", "symbols", _split_symbols),
    "GAPSYNC_QUICK_SYMBOLS": ("sync", "quick_symbols", _split_symbols),
    "GAPSYNC_FULL_CYCLE_INTERVAL": ("sync", "full_cycle_interval", float),
    "GAPSYNC_QUICK_CYCLE_INTERVAL": ("sync", "quick_cycle_interval", float),
    "GAPSYNC_AUTO_START": ("sync", "auto_start", lambda raw: raw.lower() == "true"),
    "GAPSYNC_CALLS_PER_HOUR": ("rate_limit", "max_calls_per_hour", int),
    "GAPSYNC_MAX_DAILY_API_CALLS": ("rate_limit", "max_calls_per_day", int),
    "GAPSYNC_MIN_DELAY_BETWEEN_CALLS": ("rate_limit", "min_delay_between_calls", float),
    "GAPSYNC_CONTROL_POLL_INTERVAL": ("control", "poll_interval", float),
    "GAPSYNC_DATABASE": ("storage", "database", str),
    "GAPSYNC_LOCK_TIMEOUT": ("storage", "lock_timeout", float),
    "GAPSYNC_LOGGING_LEVEL": ("logging", "level", str),
    "GAPSYNC_LOGGING_FILE": ("logging", "file", str),
}


def load_config_from_env(environ: dict[str, str] | None = None) -> dict[str, Any]:
    """Collect ``GAPSYNC_*`` overrides into a nested dictionary."""
    source = os.environ if environ is None else environ
    config: dict[str, Any] = {}
    for variable, (section, option, parse) in _ENV_OPTIONS.items():
        raw = source.get(variable)
        if raw is None:
            continue
        try:
            value = parse(raw)
        except ValueError as exc:
            raise ConfigurationError(f"invalid value for {variable}: {raw!r}", field=f"{section}.{option}") from exc
        config.setdefault(section, {})[option] = value
    return config


__all__ = [
    "ChunkSettings",
    "ConfigManager",
    "ControlConfig",
    "DEFAULT_MONITORED_SYMBOLS",
    "DEFAULT_QUICK_SYMBOLS",
    "GapSyncConfig",
    "LoggingConfig",
    "ProviderSettings",
    "RateLimitSettings",
    "StorageConfig",
    "SyncConfig",
    "load_config_from_env",
]
