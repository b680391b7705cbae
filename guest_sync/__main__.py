"""
Entry point for running guest_sync as a module.

Usage:
    python -m guest_sync --help
    python -m guest_sync sync <group-id> <partner-tenant-id> --dry-run
    python -m guest_sync status
"""

from guest_sync.cli import cli

if __name__ == "__main__":
    cli()
