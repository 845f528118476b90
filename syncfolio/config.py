"""Configuration loading for syncfolio."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError


@dataclass
class RemoteConfig:
    """Configuration for the remote document store."""

    enabled: bool = False
    base_url: str = "http://localhost:8787"
    collection: str = "projects"
    team_collection: str = "teamMembers"
    timeout_seconds: float = 30.0
    poll_interval_seconds: float = 5.0


@dataclass
class SyncConfig:
    """Configuration for the sync coordinator."""

    write_timeout_seconds: float | None = 30.0  # None disables the bound


@dataclass
class CacheConfig:
    """Configuration for the local record cache."""

    enabled: bool = True
    db_path: str = "~/.syncfolio/cache.db"


@dataclass
class IdentityConfig:
    """Externally issued identity used to scope remote data."""

    uid: str = ""
    token: str = ""


@dataclass
class Config:
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    identity: IdentityConfig = field(default_factory=IdentityConfig)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with SYNCFOLIO_ prefix."""
    return os.environ.get(f"SYNCFOLIO_{key}", default)


def _is_true(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    # Remote overrides
    if enabled := _get_env("REMOTE_ENABLED"):
        config.remote.enabled = _is_true(enabled)
    if url := _get_env("REMOTE_URL"):
        config.remote.base_url = url
    if collection := _get_env("REMOTE_COLLECTION"):
        config.remote.collection = collection
    if team_collection := _get_env("REMOTE_TEAM_COLLECTION"):
        config.remote.team_collection = team_collection
    if timeout := _get_env("REMOTE_TIMEOUT"):
        config.remote.timeout_seconds = float(timeout)
    if interval := _get_env("POLL_INTERVAL"):
        config.remote.poll_interval_seconds = float(interval)

    # Sync overrides ("none" disables the write timeout)
    if write_timeout := _get_env("WRITE_TIMEOUT"):
        if write_timeout.lower() in ("none", "off", "0"):
            config.sync.write_timeout_seconds = None
        else:
            config.sync.write_timeout_seconds = float(write_timeout)

    # Cache overrides
    if cache_enabled := _get_env("CACHE_ENABLED"):
        config.cache.enabled = _is_true(cache_enabled)
    if db_path := _get_env("CACHE_DB_PATH"):
        config.cache.db_path = db_path

    # Identity overrides
    if uid := _get_env("UID"):
        config.identity.uid = uid
    if token := _get_env("TOKEN"):
        config.identity.token = token

    return config


def _validate(config: Config) -> None:
    if config.remote.timeout_seconds <= 0:
        raise ConfigError("remote.timeout_seconds must be positive")
    if config.remote.poll_interval_seconds <= 0:
        raise ConfigError("remote.poll_interval_seconds must be positive")
    timeout = config.sync.write_timeout_seconds
    if timeout is not None and timeout <= 0:
        raise ConfigError("sync.write_timeout_seconds must be positive or null")
    if not config.remote.collection:
        raise ConfigError("remote.collection must not be empty")
    if not config.remote.team_collection:
        raise ConfigError("remote.team_collection must not be empty")
    if config.remote.team_collection == config.remote.collection:
        raise ConfigError("remote.team_collection must differ from remote.collection")


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML config file. If None, uses default config.

    Returns:
        Loaded and validated Config object.

    Raises:
        ConfigError: If the file is malformed or values are out of range.
    """
    config = Config()

    if config_path:
        path = Path(config_path)
        if path.exists():
            try:
                with open(path) as f:
                    data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid config file {path}: {e}", cause=e) from e

            if not isinstance(data, dict):
                raise ConfigError(f"Config file {path} must contain a mapping")

            # Parse remote config
            if "remote" in data:
                remote_data = data["remote"] or {}
                config.remote = RemoteConfig(
                    enabled=remote_data.get("enabled", config.remote.enabled),
                    base_url=remote_data.get("base_url", config.remote.base_url),
                    collection=remote_data.get("collection", config.remote.collection),
                    team_collection=remote_data.get(
                        "team_collection", config.remote.team_collection
                    ),
                    timeout_seconds=remote_data.get(
                        "timeout_seconds", config.remote.timeout_seconds
                    ),
                    poll_interval_seconds=remote_data.get(
                        "poll_interval_seconds", config.remote.poll_interval_seconds
                    ),
                )

            # Parse sync config
            if "sync" in data:
                sync_data = data["sync"] or {}
                config.sync = SyncConfig(
                    write_timeout_seconds=sync_data.get(
                        "write_timeout_seconds", config.sync.write_timeout_seconds
                    ),
                )

            # Parse cache config
            if "cache" in data:
                cache_data = data["cache"] or {}
                config.cache = CacheConfig(
                    enabled=cache_data.get("enabled", config.cache.enabled),
                    db_path=cache_data.get("db_path", config.cache.db_path),
                )

            # Parse identity config
            if "identity" in data:
                identity_data = data["identity"] or {}
                config.identity = IdentityConfig(
                    uid=str(identity_data.get("uid") or ""),
                    token=str(identity_data.get("token") or ""),
                )

    # Apply environment variable overrides
    config = _apply_env_overrides(config)

    _validate(config)
    return config
