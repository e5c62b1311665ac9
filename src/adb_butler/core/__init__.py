"""
Core module for adb-butler.

Contains configuration and the error taxonomy shared across all modules.
"""

from adb_butler.core.config import AppConfig, get_config, reload_config
from adb_butler.core.errors import (
    ActionFailed,
    AuthorityUnavailable,
    ButlerError,
    ConfigurationMissing,
    DeviceNotFound,
    PartialInventoryFailure,
    TransientError,
)

__all__ = [
    "AppConfig",
    "get_config",
    "reload_config",
    "ActionFailed",
    "AuthorityUnavailable",
    "ButlerError",
    "ConfigurationMissing",
    "DeviceNotFound",
    "PartialInventoryFailure",
    "TransientError",
]
