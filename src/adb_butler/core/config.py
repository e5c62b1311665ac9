"""
Configuration management for adb-butler.

Uses Pydantic Settings for environment variable validation and type safety.
Environment names follow the provider container's conventions
(RETHINKDB_*, STF_PROVIDER_*, HOSTNAME).
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

CONFIG_FILE_ENV = "ADB_BUTLER_CONFIG_FILE"


class DirectoryConfig(BaseSettings):
    """RethinkDB device-directory connection configuration."""

    url: str = Field(
        default="localhost",
        description="RethinkDB host"
    )
    port: int = Field(
        default=28015,
        description="RethinkDB driver port"
    )
    env_authkey: str = Field(
        default="",
        description="RethinkDB auth key"
    )
    db: str = Field(
        default="stf",
        description="Database holding the device collection"
    )
    table: str = Field(
        default="devices",
        description="Device collection name"
    )
    timeout: float = Field(
        default=10.0,
        gt=0,
        description="Connect and query timeout in seconds"
    )

    class Config:
        env_prefix = "RETHINKDB_"


class ProviderConfig(BaseSettings):
    """Identity of this provider host, used to scope directory records."""

    public_ip: Optional[str] = Field(
        default=None,
        description="Public IP the host's emulators are registered under"
    )
    note: Optional[str] = Field(
        default=None,
        description="Note stamped onto this host's directory records"
    )
    hostname: Optional[str] = Field(
        default=None,
        validation_alias="HOSTNAME",
        description="Provider name recorded on directory records"
    )
    emulator_ports: List[int] = Field(
        default_factory=lambda: [10001],
        description="Fixed ADB ports of ephemeral emulator serials"
    )
    ephemeral_serial_pattern: Optional[str] = Field(
        default=None,
        description="Regex overriding the host:port ephemeral identity pattern"
    )

    @field_validator("public_ip", "note", "hostname")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        """Treat empty environment values as unset."""
        if v is not None and not v.strip():
            return None
        return v

    class Config:
        env_prefix = "STF_PROVIDER_"
        populate_by_name = True


class AdbConfig(BaseSettings):
    """ADB client configuration."""

    path: str = Field(
        default="adb",
        description="adb binary (path or name on PATH)"
    )
    server_host: Optional[str] = Field(
        default=None,
        description="ADB server host (default: adb's own default)"
    )
    server_port: int = Field(
        default=5037,
        description="ADB server port"
    )
    command_timeout: float = Field(
        default=15.0,
        gt=0,
        description="Timeout for a single adb invocation in seconds"
    )
    settle_seconds: float = Field(
        default=2.0,
        ge=0,
        description="Wait after a reconnect before checking the device state"
    )

    class Config:
        env_prefix = "ADB_"


class UsbConfig(BaseSettings):
    """USB subsystem configuration."""

    enabled: bool = Field(
        default=True,
        description="Read the USB bus (disable on hosts without sysfs access)"
    )
    sysfs_root: str = Field(
        default="/sys/bus/usb",
        description="Root of the USB bus in sysfs"
    )
    timeout: float = Field(
        default=5.0,
        gt=0,
        description="Timeout for sysfs reads and driver writes in seconds"
    )

    class Config:
        env_prefix = "USB_"


class ReconcileConfig(BaseSettings):
    """Reconciliation pass configuration."""

    max_parallel_actions: int = Field(
        default=4,
        ge=1,
        description="Actions running concurrently against distinct devices"
    )
    retry_attempts: int = Field(
        default=3,
        ge=1,
        description="Attempts per action before it is reported failed"
    )
    retry_base_delay: float = Field(
        default=1.0,
        ge=0,
        description="Delay before the first retry in seconds"
    )
    retry_multiplier: float = Field(
        default=2.0,
        ge=1.0,
        description="Backoff factor between retries"
    )
    retry_max_delay: float = Field(
        default=30.0,
        ge=0,
        description="Upper bound for a single backoff delay in seconds"
    )
    inventory_timeout: float = Field(
        default=20.0,
        gt=0,
        description="Timeout for one authority's inventory read in seconds"
    )
    action_timeout: float = Field(
        default=60.0,
        gt=0,
        description="Timeout for one action attempt in seconds"
    )
    lock_file: Optional[str] = Field(
        default="/tmp/adb-butler.lock",
        description="Cross-process single-flight lock file (empty disables)"
    )
    dry_run: bool = Field(
        default=False,
        description="Log recovery actions without executing them"
    )

    @field_validator("lock_file")
    @classmethod
    def blank_lock_file(cls, v: Optional[str]) -> Optional[str]:
        """An empty lock file path disables the cross-process lock."""
        if v is not None and not v.strip():
            return None
        return v

    class Config:
        env_prefix = "RECONCILE_"


class AppConfig(BaseSettings):
    """Main application configuration."""

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )
    loki_url: Optional[str] = Field(
        default=None,
        description="Loki URL for pass summaries (unset disables pushing)"
    )

    # Nested configurations
    directory: DirectoryConfig = Field(default_factory=DirectoryConfig)
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    adb: AdbConfig = Field(default_factory=AdbConfig)
    usb: UsbConfig = Field(default_factory=UsbConfig)
    reconcile: ReconcileConfig = Field(default_factory=ReconcileConfig)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v = v.upper()
        if v not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"


def load_config_file(filepath: Path) -> Dict[str, Any]:
    """
    Load per-section overrides from a YAML file.

    Example YAML format:
        log_level: DEBUG
        provider:
          emulator_ports: [10001, 10003]
        reconcile:
          max_parallel_actions: 2

    Args:
        filepath: Path to the YAML file

    Returns:
        Mapping of section name to override values
    """
    with open(filepath, "r") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Config file {filepath} must contain a mapping")

    logger.info(f"Loaded configuration overrides from {filepath}")
    return data


def build_config(overrides: Optional[Dict[str, Any]] = None) -> AppConfig:
    """
    Build an AppConfig from the environment plus optional overrides.

    Override values win over environment values.
    """
    overrides = dict(overrides or {})
    sections = {
        "directory": DirectoryConfig,
        "provider": ProviderConfig,
        "adb": AdbConfig,
        "usb": UsbConfig,
        "reconcile": ReconcileConfig,
    }
    nested = {
        name: cls(**(overrides.pop(name, None) or {}))
        for name, cls in sections.items()
    }
    return AppConfig(**overrides, **nested)


# Global config instance
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """
    Get the global configuration instance.

    Lazily loads configuration on first access, applying the YAML file named
    by ADB_BUTLER_CONFIG_FILE when it exists.

    Returns:
        AppConfig: The global configuration instance
    """
    global _config
    if _config is None:
        overrides: Dict[str, Any] = {}
        config_file = os.getenv(CONFIG_FILE_ENV)
        if config_file:
            path = Path(config_file)
            if path.exists():
                overrides = load_config_file(path)
            else:
                logger.warning(f"Config file not found: {config_file}")
        _config = build_config(overrides)
    return _config


def reload_config() -> AppConfig:
    """
    Reload configuration from environment variables.

    Useful for testing or when environment changes.

    Returns:
        AppConfig: The reloaded configuration instance
    """
    global _config
    _config = None
    return get_config()
