"""Core utilities for confkeeper.

This module provides:
- Custom exception hierarchy with ConfkeeperError as base
- Atomic file writes and transient I/O retry (io)
- Single-writer mutation lock (locking)
- Tool settings model and loader (settings)
"""

from confkeeper.core.exceptions import (
    BackupIntegrityError,
    BackupNotFoundError,
    ConfigIOError,
    ConfigParseError,
    ConfigValidationError,
    ConfkeeperError,
    MutationLockError,
    SettingsError,
)
from confkeeper.core.settings import Settings, load_settings

__all__ = [
    # Exceptions
    "BackupIntegrityError",
    "BackupNotFoundError",
    "ConfigIOError",
    "ConfigParseError",
    "ConfigValidationError",
    "ConfkeeperError",
    "MutationLockError",
    "SettingsError",
    # Settings
    "Settings",
    "load_settings",
]
