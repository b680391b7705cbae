"""
guest_sync.utils - Utility module

Logging setup and the on-disk layout of the configuration directory.
"""

from guest_sync.utils.paths import (
    DEFAULT_CONFIG_DIR,
    resolve_config_dir,
    resolve_state_dir,
)

__all__ = ["resolve_config_dir", "resolve_state_dir", "DEFAULT_CONFIG_DIR"]
