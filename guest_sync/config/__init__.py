"""
guest_sync.config - Configuration management module

Contains configuration loading, validation, and default settings.
"""

from guest_sync.config.loader import (
    ConfigError,
    ConfigLoader,
    resolve_credentials,
)

__all__ = [
    "ConfigError",
    "ConfigLoader",
    "resolve_credentials",
]
