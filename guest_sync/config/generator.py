"""
Configuration file generator for group guest synchronization.

Generates a default configuration file documenting every available option.
"""

import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def generate_default_config() -> str:
    """
    Generate default YAML configuration with all options documented.

    Returns:
        String containing YAML configuration with comments
    """
    return """# Group Guest Sync Configuration
# ==============================
#
# Default options for guest-sync. CLI arguments always override these values.
#
# To use this configuration:
#   1. Save as ~/.guest-sync/config.yaml (or custom location)
#   2. Uncomment and modify options as needed
#   3. Run guest-sync commands normally


# App Registration
# ----------------

# Application (client) ID of a multi-tenant app registration consented in
# both the home and the partner tenant.
# Can also be set with GUEST_SYNC_CLIENT_ID.
# client_id: 00000000-0000-0000-0000-000000000000

# Name of the environment variable holding the client secret.
# Default: GUEST_SYNC_CLIENT_SECRET
# client_secret_env: GUEST_SYNC_CLIENT_SECRET

# Home tenant (the tenant owning the source group).
# Can also be set with GUEST_SYNC_HOME_TENANT_ID.
# home_tenant_id: 00000000-0000-0000-0000-000000000000


# Sync Behavior
# -------------

# Which feed entries count as removals. Needs product-owner confirmation.
# Options:
#   - any_marker: every entry carrying a removal marker is a removal
#   - deleted_only: only markers with reason "deleted" are removals; other
#     reasons (e.g. dynamic membership rule exclusion) are treated as additions
# Default: any_marker
# removal_policy: any_marker

# Skip members that an earlier run already invited into the partner tenant.
# Default: false (every run invites every added member it sees)
# skip_already_invited: false

# Redirect URL for the invitation; {tenant_id} is the partner tenant id.
# Default: https://myapps.microsoft.com/?tenantid={tenant_id}
# redirect_url_template: https://myapps.microsoft.com/?tenantid={tenant_id}

# Parallel profile lookups / invitations (1 = sequential).
# Default: 1
# max_workers: 1

# Where resume cursors are kept: sqlite (sync.db) or file (cursors.json).
# Default: sqlite
# cursor_backend: sqlite

# Preview changes without inviting anyone or moving the cursor.
# Default: false
# dry_run: false


# API Options
# -----------

# api_max_retries: 5
# api_initial_retry_delay: 1.0
# api_max_retry_delay: 60.0
# api_timeout: 30


# Reports and Logging
# -------------------

# Default: ~/.guest-sync/reports
# reports_dir: /path/to/reports

# Number of run report directories to keep (0 = keep all).
# Default: 20
# report_retention_count: 20

# Enable verbose output with detailed logging.
# Default: false
# verbose: false

# Default: ~/.guest-sync/logs
# log_dir: /path/to/logs

# log_retention_count: 10
"""


def save_config_file(
    config_path: Path, overwrite: bool = False
) -> tuple[bool, str | None]:
    """
    Save default configuration file to specified path.

    Args:
        config_path: Path where the config file should be saved
        overwrite: If True, overwrite existing file

    Returns:
        Tuple of (success, error_message)
    """
    try:
        config_path = config_path.expanduser().resolve()

        if config_path.exists() and not overwrite:
            return (
                False,
                f"Configuration file already exists: {config_path}\n"
                "Use --force to overwrite.",
            )

        config_path.parent.mkdir(parents=True, mode=0o700, exist_ok=True)
        config_path.write_text(generate_default_config(), encoding="utf-8")

        # Owner-only: the file may end up holding a client secret
        config_path.chmod(0o600)

        logger.info(f"Created configuration file: {config_path}")
        return (True, None)

    except OSError as e:
        error_msg = f"Failed to create configuration file: {e}"
        logger.error(error_msg)
        return (False, error_msg)
