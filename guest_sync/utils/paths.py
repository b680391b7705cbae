"""
Where guest-sync keeps its state on disk.

Everything lives under one configuration directory: the config file, the
sync database, the optional JSON cursor file, logs and run reports. The
logs and reports directories can be moved through the config file.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Mapping

DEFAULT_CONFIG_DIR = Path.home() / ".guest-sync"

CONFIG_DIR_ENV_VAR = "GUEST_SYNC_CONFIG_DIR"

CONFIG_FILENAME = "config.yaml"
DATABASE_FILENAME = "sync.db"
CURSOR_FILENAME = "cursors.json"
LOGS_DIRNAME = "logs"
REPORTS_DIRNAME = "reports"


def _absolute(path: Path | str) -> Path:
    return Path(path).expanduser().resolve()


def resolve_config_dir(config_dir: Path | str | None = None) -> Path:
    """
    Return the absolute configuration directory.

    An explicit ``config_dir`` wins, then GUEST_SYNC_CONFIG_DIR, then
    ``~/.guest-sync``.
    """
    if config_dir is not None:
        return _absolute(config_dir)
    return _absolute(os.environ.get(CONFIG_DIR_ENV_VAR) or DEFAULT_CONFIG_DIR)


def resolve_state_dir(
    config_dir: Path, config: Mapping[str, Any], key: str, default_name: str
) -> Path:
    """Return ``config[key]`` if set, else ``config_dir / default_name``."""
    configured = config.get(key)
    if configured:
        return Path(configured).expanduser()
    return config_dir / default_name
