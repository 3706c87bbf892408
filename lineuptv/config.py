"""
Configuration management for LineupTV.

Handles loading, validation, and access to application configuration.
"""

import os
from pathlib import Path
from typing import Any, Literal, Optional

import yaml
from pydantic import BaseModel, Field

# Global configuration instance
_config: Optional["LineupTVConfig"] = None


class ServerConfig(BaseModel):
    """Server configuration."""
    host: str = "0.0.0.0"
    port: int = 8420
    debug: bool = False
    log_level: str = "INFO"


class DatabaseConfig(BaseModel):
    """Database configuration."""
    url: str = "sqlite:///./lineuptv.db"
    echo: bool = False


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "INFO"
    file: str = "logs/lineuptv.log"
    max_size: str = "10MB"
    backup_count: int = 5
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    to_console: bool = True
    to_file: bool = True


class SchedulingConfig(BaseModel):
    """Lineup building defaults for schedules that leave them unset."""
    default_pad_ms: int = 300_000
    default_filler_cooldown_ms: int = 30 * 60 * 1000
    filler_retry_attempts: int = 3
    max_days: int = 7


class InfiniteScheduleConfig(BaseModel):
    """Infinite schedule buffer configuration."""
    buffer_days: int = 7
    buffer_threshold_days: int = 2
    prune_after_hours: int = 24
    # round_robin: rotate through floating slots; weighted: draw by weight
    slot_selection: Literal["round_robin", "weighted"] = "round_robin"
    resolve_movie_and_smart_collection_pools: bool = False
    maintenance_interval_minutes: int = 60


class LineupTVConfig(BaseModel):
    """Main LineupTV configuration."""
    server: ServerConfig = Field(default_factory=ServerConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    scheduling: SchedulingConfig = Field(default_factory=SchedulingConfig)
    infinite: InfiniteScheduleConfig = Field(default_factory=InfiniteScheduleConfig)


def load_config(config_path: Optional[str] = None) -> LineupTVConfig:
    """
    Load configuration from file.

    Args:
        config_path: Path to config file. Defaults to config.yaml in project root.

    Returns:
        Loaded and validated configuration.
    """
    global _config

    if config_path is None:
        possible_paths = [
            Path("config.yaml"),
            Path(__file__).parent.parent / "config.yaml",
        ]
        for path in possible_paths:
            if path.exists():
                config_path = str(path)
                break

    config_data: dict[str, Any] = {}

    if config_path and Path(config_path).exists():
        with open(config_path) as f:
            config_data = yaml.safe_load(f) or {}

    # Apply environment variable overrides
    env_overrides = _get_env_overrides()
    _deep_merge(config_data, env_overrides)

    _config = LineupTVConfig(**config_data)
    return _config


def get_config() -> LineupTVConfig:
    """
    Get the current configuration.

    Returns:
        Current configuration (loads default if not yet loaded).
    """
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> LineupTVConfig:
    """
    Reload configuration from disk.

    Returns:
        Freshly loaded configuration.
    """
    global _config
    _config = None
    return load_config()


def parse_size(value: str) -> int:
    """Parse a size string such as "10MB" into bytes."""
    units = {"KB": 1024, "MB": 1024 ** 2, "GB": 1024 ** 3, "B": 1}
    text = value.strip().upper()
    for suffix, factor in units.items():
        if text.endswith(suffix):
            return int(float(text[: -len(suffix)]) * factor)
    return int(text)


def _get_env_overrides() -> dict[str, Any]:
    """Get configuration overrides from environment variables."""
    overrides: dict[str, Any] = {}

    env_map = {
        "LINEUPTV_HOST": ("server", "host"),
        "LINEUPTV_PORT": ("server", "port"),
        "LINEUPTV_DEBUG": ("server", "debug"),
        "LINEUPTV_DATABASE_URL": ("database", "url"),
        "LINEUPTV_LOG_LEVEL": ("logging", "level"),
        "LINEUPTV_DEFAULT_PAD_MS": ("scheduling", "default_pad_ms"),
        "LINEUPTV_MAX_DAYS": ("scheduling", "max_days"),
        "LINEUPTV_BUFFER_DAYS": ("infinite", "buffer_days"),
        "LINEUPTV_BUFFER_THRESHOLD_DAYS": ("infinite", "buffer_threshold_days"),
        "LINEUPTV_SLOT_SELECTION": ("infinite", "slot_selection"),
    }

    for env_var, path in env_map.items():
        value = os.environ.get(env_var)
        if value is not None:
            _set_nested(overrides, path, _parse_env_value(value))

    return overrides


def _parse_env_value(value: str) -> Any:
    """Parse environment variable value to appropriate type."""
    if value.lower() in ("true", "yes"):
        return True
    if value.lower() in ("false", "no"):
        return False

    try:
        return int(value)
    except ValueError:
        pass

    try:
        return float(value)
    except ValueError:
        pass

    return value


def _set_nested(d: dict[str, Any], path: tuple[str, ...], value: Any) -> None:
    """Set a nested dictionary value from a path tuple."""
    for key in path[:-1]:
        d = d.setdefault(key, {})
    d[path[-1]] = value


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> None:
    """Deep merge override into base dictionary."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value


class _ConfigProxy:
    """
    Proxy object that provides lazy access to configuration.

    Allows modules to import `config` directly and access it like:
        from lineuptv.config import config
        config.infinite.buffer_days
    """

    def __getattr__(self, name: str) -> Any:
        return getattr(get_config(), name)

    def __repr__(self) -> str:
        return f"<ConfigProxy for {get_config()}>"


config = _ConfigProxy()
