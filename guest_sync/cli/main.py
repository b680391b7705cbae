"""
Command-line interface for guest_sync.

Provides CLI commands for running a group sync, checking stored sync state
and resetting a group so the next run starts from a full baseline.

Usage:
    # Show help
    guest-sync --help

    # Run synchronization
    guest-sync sync <group-id> <partner-tenant-id>
    guest-sync sync <group-id> <partner-tenant-id> --dry-run
    guest-sync sync <group-id> <partner-tenant-id> --full --verbose

    # Check status
    guest-sync status

    # Force a full resync of one group
    guest-sync reset <group-id>
"""

import sys
from pathlib import Path
from typing import Any

import click

from guest_sync import __version__
from guest_sync.api.graph_api import GraphAPI
from guest_sync.auth.graph_auth import (
    DEFAULT_AUTHORITY_HOST,
    AuthError,
    GraphAuth,
    get_auth_status,
)
from guest_sync.config.generator import save_config_file
from guest_sync.config.loader import (
    VALID_REMOVAL_POLICIES,
    ConfigError,
    ConfigLoader,
    resolve_credentials,
)
from guest_sync.reports.csv_report import ReportWriter
from guest_sync.storage.cursor_store import (
    CursorStore,
    DatabaseCursorStore,
    FileCursorStore,
)
from guest_sync.storage.db import StorageError, SyncDatabase
from guest_sync.sync.changes import MembershipDiffEngine, RemovalPolicy
from guest_sync.sync.engine import RunStatus, SyncOrchestrator
from guest_sync.sync.fetcher import DeltaFetcher
from guest_sync.sync.inviter import InvitationIssuer
from guest_sync.sync.member import DEFAULT_REDIRECT_URL_TEMPLATE
from guest_sync.sync.resolver import ProfileResolver
from guest_sync.utils.logging import cleanup_old_logs, get_logger, setup_logging
from guest_sync.utils.paths import (
    CONFIG_FILENAME,
    CURSOR_FILENAME,
    DATABASE_FILENAME,
    DEFAULT_CONFIG_DIR,
    LOGS_DIRNAME,
    REPORTS_DIRNAME,
    resolve_config_dir,
    resolve_state_dir,
)

DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / CONFIG_FILENAME

DEFAULT_REMOVAL_POLICY = RemovalPolicy.ANY_MARKER.value
DEFAULT_CURSOR_BACKEND = "sqlite"
DEFAULT_REPORT_RETENTION = 20

# Exit code for Ctrl-C, as a shell reports SIGINT
EXIT_INTERRUPTED = 130


def get_config_dir(config_dir: str | None) -> Path:
    """Get the configuration directory path."""
    return resolve_config_dir(config_dir)


def get_config_file(config_file: str | None, config_dir: Path | None = None) -> Path:
    """Get the configuration file path."""
    if config_file:
        return Path(config_file)
    if config_dir is not None:
        return config_dir / CONFIG_FILENAME
    return DEFAULT_CONFIG_FILE


def open_database(config_dir: Path) -> SyncDatabase:
    """
    Open (and create if needed) the sync database in the config directory.

    Raises:
        StorageError: If the database cannot be initialised
    """
    config_dir.mkdir(parents=True, exist_ok=True)
    database = SyncDatabase(str(config_dir / DATABASE_FILENAME))
    database.initialize()
    return database


def build_cursor_store(
    config: dict[str, Any], config_dir: Path, database: SyncDatabase
) -> CursorStore:
    """Select the cursor backend named by cursor_backend."""
    if config.get("cursor_backend", DEFAULT_CURSOR_BACKEND) == "file":
        return FileCursorStore(config_dir / CURSOR_FILENAME)
    return DatabaseCursorStore(database)


def _api_options(config: dict[str, Any]) -> dict[str, Any]:
    options: dict[str, Any] = {}
    mapping = {
        "graph_base_url": "base_url",
        "api_max_retries": "max_retries",
        "api_initial_retry_delay": "initial_retry_delay",
        "api_max_retry_delay": "max_retry_delay",
        "api_timeout": "timeout",
    }
    for config_key, option in mapping.items():
        if config_key in config:
            options[option] = config[config_key]
    return options


@click.group()
@click.version_option(version=__version__, prog_name="guest-sync")
@click.option(
    "--verbose", "-v", is_flag=True, help="Enable verbose output with detailed logging."
)
@click.option(
    "--config-dir",
    "-c",
    type=click.Path(exists=False, file_okay=False, dir_okay=True),
    envvar="GUEST_SYNC_CONFIG_DIR",
    help="Configuration directory path (default: ~/.guest-sync).",
)
@click.option(
    "--config-file",
    "-f",
    type=click.Path(exists=False, file_okay=True, dir_okay=False),
    envvar="GUEST_SYNC_CONFIG_FILE",
    help="Configuration file path (default: <config-dir>/config.yaml).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    config_dir: str | None,
    config_file: str | None,
) -> None:
    """
    One-way group guest sync.

    Mirrors the membership of a home-tenant group into a partner tenant by
    issuing silent guest invitations for newly added members and reporting
    removals.
    """
    ctx.ensure_object(dict)

    resolved_config_dir = get_config_dir(config_dir)
    resolved_config_file = get_config_file(config_file, resolved_config_dir)

    ctx.obj["config_dir"] = resolved_config_dir
    ctx.obj["config_file"] = resolved_config_file

    config: dict[str, Any] = {}
    try:
        loader = ConfigLoader(config_dir=resolved_config_dir)
        config = loader.load_from_file(resolved_config_file)
        if config:
            loader.validate(config)
    except ConfigError as e:
        # Show error but don't fail - allow CLI to work without config file
        click.echo(
            click.style(f"Warning: Configuration error: {e}", fg="yellow"), err=True
        )
        config = {}

    ctx.obj["config"] = config

    # CLI flag takes precedence over config file
    effective_verbose = verbose or config.get("verbose", False)
    ctx.obj["verbose"] = effective_verbose

    log_dir = resolve_state_dir(resolved_config_dir, config, "log_dir", LOGS_DIRNAME)
    setup_logging(verbose=effective_verbose, log_dir=log_dir, enable_file_logging=True)

    log_retention = config.get("log_retention_count", 10)
    if log_retention > 0:
        cleanup_old_logs(log_dir=log_dir, keep_count=log_retention)


# =============================================================================
# Sync Command
# =============================================================================


@cli.command("sync")
@click.argument("group_id")
@click.argument("partner_tenant_id")
@click.option(
    "--dry-run",
    "-n",
    is_flag=True,
    help="Fetch, classify and report without inviting or moving the cursor.",
)
@click.option("--full", is_flag=True, help="Ignore the stored cursor (full resync).")
@click.option(
    "--removal-policy",
    type=click.Choice(VALID_REMOVAL_POLICIES, case_sensitive=False),
    default=None,
    help="Which removal markers count as removals (default: any_marker).",
)
@click.option(
    "--skip-already-invited",
    is_flag=True,
    help="Do not re-invite members recorded as invited by earlier runs.",
)
@click.pass_context
def sync_command(
    ctx: click.Context,
    group_id: str,
    partner_tenant_id: str,
    dry_run: bool,
    full: bool,
    removal_policy: str | None,
    skip_already_invited: bool,
) -> None:
    """
    Mirror new members of GROUP_ID into PARTNER_TENANT_ID.

    Reads the membership changes of the group since the last run, writes
    the added/removed CSV reports and sends a silent guest invitation to
    every added member with a mail address. The cursor is only advanced
    after the change feed has been read completely.

    Examples:

        # Preview without inviting anyone
        guest-sync sync <group-id> <partner-tenant-id> --dry-run

        # Re-read the whole group
        guest-sync sync <group-id> <partner-tenant-id> --full

        # Only treat deleted members as removed
        guest-sync sync <group-id> <partner-tenant-id> --removal-policy deleted_only
    """
    logger = get_logger(__name__)
    config_dir = ctx.obj["config_dir"]
    verbose = ctx.obj["verbose"]
    config = ctx.obj.get("config", {})

    # For boolean flags, if CLI is True, use it; otherwise check config
    effective_dry_run = dry_run or config.get("dry_run", False)
    effective_skip = skip_already_invited or config.get("skip_already_invited", False)
    effective_policy = RemovalPolicy(
        (removal_policy or config.get("removal_policy", DEFAULT_REMOVAL_POLICY)).lower()
    )
    max_workers = config.get("max_workers", 1)

    logger.info(f"Removal policy: {effective_policy.value}")

    credentials = resolve_credentials(config)
    missing = [k for k, ok in get_auth_status(credentials).items() if not ok]
    if missing:
        click.echo(
            click.style(
                f"Error: missing credentials: {', '.join(missing)}", fg="red"
            ),
            err=True,
        )
        click.echo(
            "Set them in the config file or via GUEST_SYNC_CLIENT_ID, "
            "GUEST_SYNC_CLIENT_SECRET and GUEST_SYNC_HOME_TENANT_ID.",
            err=True,
        )
        sys.exit(1)

    try:
        home_auth = GraphAuth(
            tenant_id=credentials["home_tenant_id"] or "",
            client_id=credentials["client_id"] or "",
            client_secret=credentials["client_secret"] or "",
            authority_host=config.get("authority_host") or DEFAULT_AUTHORITY_HOST,
        )
        partner_auth = home_auth.for_tenant(partner_tenant_id)

        api_options = _api_options(config)
        home_api = GraphAPI(home_auth, **api_options)
        partner_api = GraphAPI(partner_auth, **api_options)

        database = open_database(config_dir)
        cursor_store = build_cursor_store(config, config_dir, database)

        reports_dir = resolve_state_dir(
            config_dir, config, "reports_dir", REPORTS_DIRNAME
        )
        report_writer = ReportWriter(
            reports_dir,
            retention_count=config.get(
                "report_retention_count", DEFAULT_REPORT_RETENTION
            ),
        )

        orchestrator = SyncOrchestrator(
            fetcher=DeltaFetcher(home_api),
            diff_engine=MembershipDiffEngine(effective_policy),
            resolver=ProfileResolver(home_api, max_workers=max_workers),
            issuer=InvitationIssuer(
                partner_api,
                database=database,
                redirect_url_template=config.get(
                    "redirect_url_template", DEFAULT_REDIRECT_URL_TEMPLATE
                ),
                skip_already_invited=effective_skip,
                max_workers=max_workers,
            ),
            cursor_store=cursor_store,
            report_writer=report_writer,
        )

        if verbose:
            click.echo("\nSync configuration:")
            click.echo(f"  Group: {group_id}")
            click.echo(f"  Partner tenant: {partner_tenant_id}")
            click.echo(f"  Removal policy: {effective_policy.value}")
            click.echo(f"  Skip already invited: {effective_skip}")
            click.echo(f"  Cursor store: {cursor_store!r}")
            click.echo(f"  Reports: {reports_dir}")
            click.echo(f"  Full sync: {full}")
            click.echo(f"  Dry run: {effective_dry_run}")
            click.echo()

        mode = "Analyzing" if effective_dry_run else "Synchronizing"
        click.echo(f"{mode} group {group_id}...")

        result = orchestrator.run(
            group_id,
            partner_tenant_id,
            dry_run=effective_dry_run,
            full_sync=full,
        )

    except KeyboardInterrupt:
        logger.warning("Sync interrupted; cursor left unchanged")
        click.echo(click.style("\nInterrupted. Cursor was not updated.", fg="yellow"))
        sys.exit(EXIT_INTERRUPTED)
    except (AuthError, StorageError) as e:
        logger.error(f"Sync failed: {e}")
        click.echo(click.style(f"\nSync failed: {e}", fg="red"), err=True)
        sys.exit(1)
    except Exception as e:
        logger.exception(f"Sync failed: {e}")
        click.echo(click.style(f"\nSync failed: {e}", fg="red"), err=True)
        sys.exit(1)

    click.echo("\n" + "=" * 50)
    click.echo(result.summary())
    click.echo("=" * 50)

    if result.status is RunStatus.ABORTED:
        click.echo(click.style("\nSync aborted. Cursor was not updated.", fg="red"))
        sys.exit(1)

    if effective_dry_run:
        click.echo(click.style("\nDry run complete. No invitations sent.", fg="yellow"))
        click.echo("Run without --dry-run to send them.")
    elif result.status is RunStatus.COMPLETED_WITH_WARNINGS:
        click.echo(
            click.style(
                "\nSync completed with warnings. See the log for details.",
                fg="yellow",
            )
        )
    else:
        click.echo(click.style("\nSync completed successfully!", fg="green"))

    if verbose and result.invitation_results:
        click.echo("\n=== Invitations ===")
        for r in result.invitation_results:
            detail = f" ({r.error})" if r.error else ""
            click.echo(f"  {r.member_id}: {r.status.value}{detail}")


# =============================================================================
# Status Command
# =============================================================================


@cli.command("status")
@click.argument("group_id", required=False)
@click.pass_context
def status_command(ctx: click.Context, group_id: str | None) -> None:
    """
    Show configuration and stored sync state.

    Lists the stored cursors (or the cursor of GROUP_ID) and the number of
    recorded invitations.

    Example:

        guest-sync status
    """
    logger = get_logger(__name__)
    config_dir = ctx.obj["config_dir"]
    config = ctx.obj.get("config", {})

    try:
        click.echo("=== Group Guest Sync Status ===\n")
        click.echo(f"Configuration directory: {config_dir}")

        credentials = resolve_credentials(config)
        for name, configured in get_auth_status(credentials).items():
            text = (
                click.style("Configured", fg="green")
                if configured
                else click.style("Not configured", fg="red")
            )
            click.echo(f"{name}: {text}")
        click.echo()

        backend = config.get("cursor_backend", DEFAULT_CURSOR_BACKEND)
        db_path = config_dir / DATABASE_FILENAME
        if not db_path.exists() and backend == "sqlite":
            click.echo("Sync database: Not initialized (no syncs performed yet)")
            return

        # status must not create sync.db for the file backend
        database = open_database(config_dir) if db_path.exists() else None
        cursor_store: CursorStore
        if database is None:
            cursor_store = FileCursorStore(config_dir / CURSOR_FILENAME)
        else:
            cursor_store = build_cursor_store(config, config_dir, database)

        click.echo("=== Sync Status ===\n")
        click.echo(f"Cursor backend: {backend}")

        if group_id:
            cursor = cursor_store.get(group_id)
            cursors = [cursor] if cursor else []
            if not cursors:
                click.echo(f"{group_id}: Never synced")
        else:
            cursors = cursor_store.list_cursors()
            if not cursors:
                click.echo("No groups synced yet")

        for cursor in cursors:
            click.echo(
                f"{cursor.group_id}: Last sync: {cursor.updated_at or 'Unknown'}"
            )

        invitation_count = database.get_invitation_count() if database else 0
        click.echo(f"\nRecorded invitations: {invitation_count}")

    except StorageError as e:
        logger.error(f"Error reading sync state: {e}")
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)


# =============================================================================
# Reset Command
# =============================================================================


@cli.command("reset")
@click.argument("group_id")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt.")
@click.pass_context
def reset_command(ctx: click.Context, group_id: str, yes: bool) -> None:
    """
    Clear the stored cursor of GROUP_ID (forces full sync on next run).

    Recorded invitations are kept, and nothing is changed in either tenant.

    Example:

        guest-sync reset <group-id>
    """
    logger = get_logger(__name__)
    config_dir = ctx.obj["config_dir"]
    config = ctx.obj.get("config", {})

    if not yes:
        click.confirm(
            f"This will clear the cursor of group {group_id} and force a full "
            f"sync on next run.\nContinue?",
            abort=True,
        )

    try:
        database = open_database(config_dir)
        cursor_store = build_cursor_store(config, config_dir, database)

        if cursor_store.clear(group_id):
            click.echo(
                click.style(f"Cursor for {group_id} has been reset.", fg="green")
            )
            click.echo("Next sync will read the whole group.")
            logger.info(f"Cursor reset for group {group_id}")
        else:
            click.echo(f"No stored cursor for {group_id}. Nothing to reset.")

    except StorageError as e:
        logger.error(f"Reset failed: {e}")
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)


# =============================================================================
# Init-Config Command
# =============================================================================


@cli.command("init-config")
@click.option(
    "--force",
    is_flag=True,
    help="Overwrite existing configuration file if it exists.",
)
@click.pass_context
def init_config_command(ctx: click.Context, force: bool) -> None:
    """
    Generate a default configuration file.

    Creates a configuration file with all available options documented
    and commented out.

    Examples:

        # Create config file (fails if already exists)
        guest-sync init-config

        # Overwrite existing config file
        guest-sync init-config --force
    """
    logger = get_logger(__name__)
    config_file = ctx.obj["config_file"]

    click.echo(f"Creating configuration file: {config_file}")

    success, error = save_config_file(config_file, overwrite=force)

    if success:
        click.echo(click.style("Configuration file created successfully!", fg="green"))
        click.echo(f"\nLocation: {config_file}")
        click.echo("\nNext steps:")
        click.echo("1. Set client_id, home_tenant_id and client_secret_env")
        click.echo("2. Run 'guest-sync sync --dry-run <group-id> <partner-tenant-id>'")
        logger.info(f"Created configuration file: {config_file}")
    else:
        click.echo(click.style(f"Error: {error}", fg="red"), err=True)
        logger.error(f"Failed to create configuration file: {error}")
        sys.exit(1)


if __name__ == "__main__":
    cli()
