"""Configuration loader with type-safe dataclasses."""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .manifest import (
    DEFAULT_ASSET_MANIFEST,
    DEFAULT_CACHE_NAME,
    DEFAULT_CACHE_VERSION,
    DEFAULT_OFFLINE_URL,
    generation_id,
)
from .network import DEFAULT_USER_AGENT
from .submissions import DEFAULT_DONATION_ENDPOINT


class ConfigError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""

    pass


STORAGE_BACKENDS = ("sqlite", "memory")


@dataclass(frozen=True)
class SiteConfig:
    """The site whose requests are intercepted."""

    origin: str

    def __post_init__(self) -> None:
        if not self.origin:
            raise ConfigError("Site origin cannot be empty")
        if not self.origin.startswith(("http://", "https://")):
            raise ConfigError(f"Site origin must start with http:// or https://, got '{self.origin}'")
        object.__setattr__(self, "origin", self.origin.rstrip("/").lower())


@dataclass(frozen=True)
class CacheConfig:
    """Cache generation and the assets it must hold after install.

    The generation identifier is "<name>-v<version>". Bumping the version
    at deploy time discards every previously cached entry on activation.
    """

    name: str = DEFAULT_CACHE_NAME
    version: str = DEFAULT_CACHE_VERSION
    offline_url: str = DEFAULT_OFFLINE_URL
    manifest: tuple[str, ...] = DEFAULT_ASSET_MANIFEST

    def __post_init__(self) -> None:
        if not self.name:
            raise ConfigError("Cache name cannot be empty")
        if not self.version:
            raise ConfigError("Cache version cannot be empty")
        if not self.offline_url.startswith("/"):
            raise ConfigError(f"Offline URL must be root-relative, got '{self.offline_url}'")
        for entry in self.manifest:
            if not isinstance(entry, str) or not entry.startswith(("/", "http://", "https://")):
                raise ConfigError(f"Manifest entry must be a root-relative or absolute URL: {entry!r}")

    @property
    def generation(self) -> str:
        return generation_id(self.name, self.version)


def _get_default_db_path() -> str:
    """Get the default database path using XDG-compliant directory."""
    home = Path.home()
    return str(home / ".local" / "share" / "offlinecache" / "cache.db")


# Default database path (XDG-compliant user data directory)
DEFAULT_DB_PATH = _get_default_db_path()


@dataclass(frozen=True)
class StorageConfig:
    """Where cache stores and pending submissions are kept."""

    path: str = DEFAULT_DB_PATH
    backend: str = "sqlite"

    def __post_init__(self) -> None:
        if self.backend not in STORAGE_BACKENDS:
            raise ConfigError(f"Invalid storage backend '{self.backend}'. Must be one of: {STORAGE_BACKENDS}")
        if not self.path:
            raise ConfigError("Storage path cannot be empty")


@dataclass(frozen=True)
class NetworkConfig:
    """Outgoing HTTP settings."""

    timeout: float | None = None  # None waits indefinitely
    user_agent: str = DEFAULT_USER_AGENT

    def __post_init__(self) -> None:
        if self.timeout is not None and self.timeout <= 0:
            raise ConfigError(f"Network timeout must be positive (got {self.timeout})")
        if not self.user_agent:
            raise ConfigError("User-Agent cannot be empty")


@dataclass(frozen=True)
class ProxyConfig:
    """Configuration for the local offline proxy."""

    enabled: bool = True
    port: int = 8090

    def __post_init__(self) -> None:
        if self.port < 1 or self.port > 65535:
            raise ConfigError(f"Proxy port must be between 1 and 65535, got {self.port}")


@dataclass(frozen=True)
class SyncConfig:
    """Endpoints whose submissions are queued while offline."""

    donation_endpoint: str = DEFAULT_DONATION_ENDPOINT
    form_paths: tuple[str, ...] = ("/api/contact",)

    def __post_init__(self) -> None:
        if not self.donation_endpoint.startswith("/"):
            raise ConfigError(f"Donation endpoint must be root-relative, got '{self.donation_endpoint}'")
        for path in self.form_paths:
            if not path.startswith("/"):
                raise ConfigError(f"Form path must be root-relative, got '{path}'")
        if self.donation_endpoint in self.form_paths:
            raise ConfigError(f"'{self.donation_endpoint}' cannot be both a form path and the donation endpoint")


@dataclass(frozen=True)
class Config:
    """Main configuration container."""

    site: SiteConfig
    cache: CacheConfig = field(default_factory=CacheConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    network: NetworkConfig = field(default_factory=NetworkConfig)
    proxy: ProxyConfig = field(default_factory=ProxyConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)


def _section(data: dict, name: str) -> dict:
    section = data.get(name)
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise ConfigError(f"'{name}' section must be a dictionary")
    return section


def _string_list(value: object, name: str) -> tuple[str, ...]:
    if not isinstance(value, list):
        raise ConfigError(f"'{name}' must be a list")
    return tuple(str(item) for item in value)


def _parse_bool(value: object) -> bool:
    """Read a YAML or environment flag; strings other than true/1/yes are False."""
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


def _parse_site_config(data: dict) -> SiteConfig:
    """Parse site configuration section."""
    origin = data.get("origin")
    if origin is None:
        raise ConfigError("'site' section is missing 'origin' field")
    return SiteConfig(origin=str(origin))


def _parse_cache_config(data: dict) -> CacheConfig:
    """Parse cache configuration section."""
    manifest = data.get("manifest")
    return CacheConfig(
        name=str(data.get("name", DEFAULT_CACHE_NAME)),
        version=str(data.get("version", DEFAULT_CACHE_VERSION)),
        offline_url=str(data.get("offline_url", DEFAULT_OFFLINE_URL)),
        manifest=_string_list(manifest, "cache.manifest") if manifest is not None else DEFAULT_ASSET_MANIFEST,
    )


def _parse_storage_config(data: dict) -> StorageConfig:
    """Parse storage configuration section."""
    return StorageConfig(
        path=str(data.get("path", DEFAULT_DB_PATH)),
        backend=str(data.get("backend", "sqlite")),
    )


def _parse_network_config(data: dict) -> NetworkConfig:
    """Parse network configuration section."""
    timeout = data.get("timeout")
    try:
        return NetworkConfig(
            timeout=float(timeout) if timeout is not None else None,
            user_agent=str(data.get("user_agent", DEFAULT_USER_AGENT)),
        )
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid network timeout: {timeout!r}")


def _parse_proxy_config(data: dict) -> ProxyConfig:
    """Parse proxy configuration section."""
    try:
        port = int(data.get("port", 8090))
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid proxy port: {data.get('port')!r}")
    return ProxyConfig(enabled=_parse_bool(data.get("enabled", True)), port=port)


def _parse_sync_config(data: dict) -> SyncConfig:
    """Parse sync configuration section."""
    form_paths = data.get("form_paths")
    return SyncConfig(
        donation_endpoint=str(data.get("donation_endpoint", DEFAULT_DONATION_ENDPOINT)),
        form_paths=_string_list(form_paths, "sync.form_paths") if form_paths is not None else ("/api/contact",),
    )


def _apply_env_overrides(config_data: dict) -> dict:
    """Apply environment variable overrides to configuration.

    Supported overrides:
    - OFFLINECACHE_SITE_ORIGIN: Override site.origin
    - OFFLINECACHE_CACHE_VERSION: Override cache.version
    - OFFLINECACHE_STORAGE_PATH: Override storage.path
    - OFFLINECACHE_PROXY_PORT: Override proxy.port
    - OFFLINECACHE_PROXY_ENABLED: Override proxy.enabled (true/false)
    """
    for section in ("site", "cache", "storage", "proxy"):
        if config_data.get(section) is None:
            config_data[section] = {}

    origin = os.environ.get("OFFLINECACHE_SITE_ORIGIN")
    if origin is not None:
        config_data["site"]["origin"] = origin

    version = os.environ.get("OFFLINECACHE_CACHE_VERSION")
    if version is not None:
        config_data["cache"]["version"] = version

    storage_path = os.environ.get("OFFLINECACHE_STORAGE_PATH")
    if storage_path is not None:
        config_data["storage"]["path"] = storage_path

    proxy_port = os.environ.get("OFFLINECACHE_PROXY_PORT")
    if proxy_port is not None:
        config_data["proxy"]["port"] = proxy_port

    proxy_enabled = os.environ.get("OFFLINECACHE_PROXY_ENABLED")
    if proxy_enabled is not None:
        config_data["proxy"]["enabled"] = _parse_bool(proxy_enabled)

    return config_data


def load_config(config_path: str) -> Config:
    """Load and validate configuration from a YAML file.

    Args:
        config_path: Path to the YAML configuration file.

    Returns:
        Validated Config object.

    Raises:
        ConfigError: If the file cannot be read or configuration is invalid.
    """
    path = Path(config_path)

    if not path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse YAML configuration: {e}")
    except OSError as e:
        raise ConfigError(f"Failed to read configuration file: {e}")

    if data is None:
        raise ConfigError("Configuration file is empty")

    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a YAML dictionary")

    data = _apply_env_overrides(data)

    return Config(
        site=_parse_site_config(_section(data, "site")),
        cache=_parse_cache_config(_section(data, "cache")),
        storage=_parse_storage_config(_section(data, "storage")),
        network=_parse_network_config(_section(data, "network")),
        proxy=_parse_proxy_config(_section(data, "proxy")),
        sync=_parse_sync_config(_section(data, "sync")),
    )
