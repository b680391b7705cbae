"""
YAML configuration for guest-sync.

The config file is optional: a missing or empty file yields an empty dict
and every command falls back to its CLI defaults. Known keys are checked
for type and range; unknown keys are ignored so that newer config files
still load. App registration credentials can also come from the
environment, see :func:`resolve_credentials`.
"""

import logging
import os
from pathlib import Path
from typing import Any

import yaml

from guest_sync.utils.paths import CONFIG_FILENAME, resolve_config_dir

DEFAULT_CONFIG_FILE = CONFIG_FILENAME

ENV_CLIENT_ID = "GUEST_SYNC_CLIENT_ID"
ENV_CLIENT_SECRET = "GUEST_SYNC_CLIENT_SECRET"
ENV_HOME_TENANT_ID = "GUEST_SYNC_HOME_TENANT_ID"

VALID_REMOVAL_POLICIES = ("any_marker", "deleted_only")
VALID_CURSOR_BACKENDS = ("sqlite", "file")

_NUMBER = (int, float)

KEY_TYPES: dict[str, type[Any] | tuple[type[Any], ...]] = {
    # Run flags
    "dry_run": bool,
    "verbose": bool,
    # App registration and tenants
    "client_id": str,
    "client_secret": str,
    "client_secret_env": str,
    "home_tenant_id": str,
    "authority_host": str,
    "graph_base_url": str,
    # Sync
    "removal_policy": str,
    "skip_already_invited": bool,
    "redirect_url_template": str,
    "max_workers": int,
    "cursor_backend": str,
    # Graph client
    "api_max_retries": int,
    "api_initial_retry_delay": _NUMBER,
    "api_max_retry_delay": _NUMBER,
    "api_timeout": _NUMBER,
    # Output
    "reports_dir": str,
    "report_retention_count": int,
    "log_dir": str,
    "log_retention_count": int,
}

KEY_CHOICES: dict[str, tuple[str, ...]] = {
    "removal_policy": VALID_REMOVAL_POLICIES,
    "cursor_backend": VALID_CURSOR_BACKENDS,
}

# key -> (lowest allowed value, whether the bound itself is allowed)
KEY_MINIMUMS: dict[str, tuple[float, bool]] = {
    "max_workers": (1, True),
    "api_max_retries": (1, True),
    "report_retention_count": (0, True),
    "log_retention_count": (0, True),
    "api_initial_retry_delay": (0, False),
    "api_max_retry_delay": (0, False),
    "api_timeout": (0, False),
}

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when the config file cannot be read or holds invalid values."""

    pass


def _type_label(expected: type[Any] | tuple[type[Any], ...]) -> str:
    if isinstance(expected, tuple):
        return " or ".join(t.__name__ for t in expected)
    return expected.__name__


def _check_type(key: str, value: Any) -> None:
    expected = KEY_TYPES[key]
    # bool is an int subclass; only bool keys accept True/False
    if isinstance(value, bool) and expected is not bool:
        raise ConfigError(f"Invalid type for '{key}': expected number, got bool")
    if not isinstance(value, expected):
        raise ConfigError(
            f"Invalid type for '{key}': expected {_type_label(expected)}, "
            f"got {type(value).__name__}"
        )


def _check_range(key: str, value: float) -> None:
    minimum, inclusive = KEY_MINIMUMS[key]
    if value < minimum or (value == minimum and not inclusive):
        op = ">=" if inclusive else ">"
        raise ConfigError(f"{key} must be {op} {minimum}, got {value}")


class ConfigLoader:
    """
    Reads ``config.yaml`` from the configuration directory.

    Example:
        loader = ConfigLoader()
        config = loader.load_and_validate()

        other = loader.load_from_file("/etc/guest-sync/tenant-b.yaml")
    """

    def __init__(
        self, config_dir: Path | None = None, config_file: str = DEFAULT_CONFIG_FILE
    ):
        """
        Args:
            config_dir: Configuration directory; see resolve_config_dir for
                the fallbacks when omitted.
            config_file: File name inside config_dir.
        """
        self.config_dir = resolve_config_dir(config_dir)
        self.config_file = config_file

    @property
    def config_path(self) -> Path:
        return self.config_dir / self.config_file

    def load(self) -> dict[str, Any]:
        """Load ``config_path``; see load_from_file."""
        return self.load_from_file(self.config_path)

    def load_from_file(self, path: Path | str) -> dict[str, Any]:
        """
        Parse a YAML config file into a dict.

        A missing file or a file with no content gives ``{}``.

        Raises:
            ConfigError: The file exists but cannot be read, is not valid
                YAML, or does not hold a mapping at the top level.
        """
        path = Path(path)
        if not path.exists():
            logger.debug(f"No config file at {path}, using defaults")
            return {}

        try:
            with open(path, encoding="utf-8") as handle:
                data = yaml.safe_load(handle)
        except yaml.YAMLError as e:
            raise ConfigError(f"Could not parse YAML in {path}: {e}") from e
        except OSError as e:
            raise ConfigError(f"Could not read config file {path}: {e}") from e

        if data is None:
            logger.debug(f"Config file {path} has no settings")
            return {}
        if not isinstance(data, dict):
            raise ConfigError(
                f"Config file {path} must hold a YAML dictionary at the top "
                f"level, got {type(data).__name__}"
            )

        logger.debug(f"Read {len(data)} setting(s) from {path}")
        return data

    def validate(self, config: dict[str, Any]) -> None:
        """
        Check types, allowed values and ranges of the known keys.

        Raises:
            ConfigError: On the first invalid value found.
        """
        if not isinstance(config, dict):
            raise ConfigError(
                f"Configuration must be a dictionary, got {type(config).__name__}"
            )

        known = {key: value for key, value in config.items() if key in KEY_TYPES}
        for key, value in known.items():
            _check_type(key, value)

        for key, choices in KEY_CHOICES.items():
            if key in known and known[key] not in choices:
                raise ConfigError(
                    f"Invalid {key} '{known[key]}'. "
                    f"Must be one of: {', '.join(choices)}"
                )

        template = known.get("redirect_url_template")
        if template is not None:
            if "{tenant_id}" not in template:
                raise ConfigError(
                    "redirect_url_template must contain the '{tenant_id}' placeholder"
                )
            try:
                template.format(tenant_id="tenant")
            except (KeyError, IndexError, ValueError) as e:
                raise ConfigError(
                    f"redirect_url_template may only use the '{{tenant_id}}' "
                    f"placeholder: {e!r}"
                ) from e

        for key in KEY_MINIMUMS:
            if key in known:
                _check_range(key, known[key])

    def load_and_validate(self) -> dict[str, Any]:
        """Load the config file and validate it before returning it."""
        config = self.load()
        if config:
            self.validate(config)
        return config


def resolve_credentials(config: dict[str, Any]) -> dict[str, str | None]:
    """
    Resolve app registration credentials from config with environment fallback.

    The client secret is looked up in this order: ``client_secret`` in the
    config (not recommended), the environment variable named by
    ``client_secret_env``, then GUEST_SYNC_CLIENT_SECRET.

    Returns:
        Dictionary with client_id, client_secret and home_tenant_id
        (values may be None when not configured anywhere)
    """
    client_secret = config.get("client_secret")
    if not client_secret:
        env_name = config.get("client_secret_env") or ENV_CLIENT_SECRET
        client_secret = os.environ.get(env_name)

    return {
        "client_id": config.get("client_id") or os.environ.get(ENV_CLIENT_ID),
        "client_secret": client_secret,
        "home_tenant_id": config.get("home_tenant_id")
        or os.environ.get(ENV_HOME_TENANT_ID),
    }
