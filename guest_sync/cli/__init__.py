"""CLI package for guest_sync."""

from guest_sync.cli.main import (
    DEFAULT_CONFIG_FILE,
    build_cursor_store,
    cli,
    get_config_dir,
    get_config_file,
    open_database,
)
from guest_sync.utils import DEFAULT_CONFIG_DIR

__all__ = [
    "DEFAULT_CONFIG_DIR",
    "DEFAULT_CONFIG_FILE",
    "build_cursor_store",
    "cli",
    "get_config_dir",
    "get_config_file",
    "open_database",
]
