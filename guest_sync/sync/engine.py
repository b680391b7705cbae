"""
Sync orchestrator for one-way group guest synchronization.

Runs one pass for a group: fetch the membership delta, classify it, resolve
the profiles of added members, write the run reports, invite the
candidates into the partner tenant and finally persist the new cursor.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from guest_sync.api.graph_api import CursorExpiredError, GraphAPIError
from guest_sync.auth.graph_auth import AuthError
from guest_sync.reports.csv_report import ReportWriter
from guest_sync.storage.cursor_store import CursorStore
from guest_sync.storage.db import StorageError
from guest_sync.sync.changes import MembershipDiffEngine
from guest_sync.sync.fetcher import DeltaFetcher
from guest_sync.sync.inviter import InvitationIssuer
from guest_sync.sync.member import (
    Added,
    GuestCandidate,
    InvitationResult,
    InvitationStatus,
    RemovalRecord,
    Removed,
)
from guest_sync.sync.resolver import ProfileResolver, ResolutionFailure

logger = logging.getLogger(__name__)


class RunState(str, Enum):
    """Stage a run is in (or ended in)."""

    START = "start"
    FETCHING_DELTA = "fetching_delta"
    DIFFING = "diffing"
    RESOLVING_PROFILES = "resolving_profiles"
    REPORTING_CSV = "reporting_csv"
    INVITING = "inviting"
    PERSISTING_CURSOR = "persisting_cursor"
    DONE = "done"
    ABORTED = "aborted"


class RunStatus(str, Enum):
    """Overall outcome of a run."""

    COMPLETED = "completed"
    COMPLETED_WITH_WARNINGS = "completed_with_warnings"
    ABORTED = "aborted"


# Report status values for added members
REPORT_STATUS_RESOLVED = "resolved"
REPORT_STATUS_NO_MAIL = "no_mail"
REPORT_STATUS_NOT_FOUND = "not_found"
REPORT_STATUS_UNRESOLVED = "unresolved"


@dataclass
class SyncStats:
    """
    Statistics from a sync run.

    Per-item failures are counted here instead of stopping the run.
    """

    entries_fetched: int = 0
    added: int = 0
    removed: int = 0
    resolved: int = 0
    resolution_failures: int = 0
    not_found: int = 0
    invited: int = 0
    skipped_no_mail: int = 0
    skipped_already_invited: int = 0
    invitation_failures: int = 0
    report_failures: int = 0

    @property
    def has_warnings(self) -> bool:
        """Check if any per-item failure or skip occurred."""
        return bool(
            self.resolution_failures
            or self.skipped_no_mail
            or self.invitation_failures
            or self.report_failures
        )

    def record_invitations(self, results: list[InvitationResult]) -> None:
        for r in results:
            if r.status is InvitationStatus.INVITED:
                self.invited += 1
            elif r.status is InvitationStatus.SKIPPED_NO_MAIL:
                self.skipped_no_mail += 1
            elif r.status is InvitationStatus.SKIPPED_ALREADY_INVITED:
                self.skipped_already_invited += 1
            else:
                self.invitation_failures += 1


@dataclass
class SyncResult:
    """
    Result of a sync run.

    Contains the classified changes, per-member outcomes, report paths and
    statistics, plus the stage the run ended in.
    """

    group_id: str
    partner_tenant_id: str
    dry_run: bool = False

    state: RunState = RunState.START
    status: Optional[RunStatus] = None
    error: Optional[str] = None
    # Stage that was running when the run aborted
    aborted_in: Optional[RunState] = None

    # Whether the run resumed from a stored cursor
    resumed: bool = False
    # Delta link obtained from the fetch (persisted unless dry_run)
    cursor_token: Optional[str] = None
    cursor_persisted: bool = False

    added: list[Added] = field(default_factory=list)
    removed: list[Removed] = field(default_factory=list)
    candidates: list[GuestCandidate] = field(default_factory=list)
    resolution_failures: list[ResolutionFailure] = field(default_factory=list)
    invitation_results: list[InvitationResult] = field(default_factory=list)

    added_report: Optional[Path] = None
    removed_report: Optional[Path] = None

    stats: SyncStats = field(default_factory=SyncStats)

    @property
    def succeeded(self) -> bool:
        """True unless the run aborted."""
        return self.status is not None and self.status is not RunStatus.ABORTED

    def summary(self) -> str:
        """
        Generate a human-readable summary of the run.

        Returns:
            Formatted string summary of sync operations
        """
        mode = " (dry run)" if self.dry_run else ""
        lines = [
            f"Sync Summary{mode}:",
            f"  Group: {self.group_id}",
            f"  Partner tenant: {self.partner_tenant_id}",
            f"  Mode: {'incremental' if self.resumed else 'full'}",
            "",
        ]

        if self.status is RunStatus.ABORTED:
            lines.append(f"  Aborted during {self.aborted_in.value}: {self.error}")
            return "\n".join(lines)

        lines.extend(
            [
                "Membership changes:",
                f"  Added: {self.stats.added}",
                f"  Removed: {self.stats.removed}",
                "",
                "Profiles:",
                f"  Resolved: {self.stats.resolved}",
            ]
        )
        if self.stats.resolution_failures:
            lines.append(
                f"  Failed: {self.stats.resolution_failures} "
                f"({self.stats.not_found} not found)"
            )

        lines.append("")
        if self.dry_run:
            inviteable = sum(1 for c in self.candidates if c.is_inviteable)
            lines.append("Invitations:")
            lines.append(f"  Would invite: {inviteable}")
        else:
            lines.extend(
                [
                    "Invitations:",
                    f"  Invited: {self.stats.invited}",
                    f"  Skipped (no mail): {self.stats.skipped_no_mail}",
                ]
            )
            if self.stats.skipped_already_invited:
                lines.append(
                    f"  Skipped (already invited): "
                    f"{self.stats.skipped_already_invited}"
                )
            if self.stats.invitation_failures:
                lines.append(f"  Failed: {self.stats.invitation_failures}")

        if self.added_report or self.removed_report or self.stats.report_failures:
            lines.append("")
            lines.append("Reports:")
            if self.added_report:
                lines.append(f"  Added: {self.added_report}")
            if self.removed_report:
                lines.append(f"  Removed: {self.removed_report}")
            if self.stats.report_failures:
                lines.append(f"  Failed: {self.stats.report_failures}")

        if self.status is not None:
            lines.append("")
            lines.append(f"Status: {self.status.value}")

        return "\n".join(lines)


class SyncOrchestrator:
    """
    Runs the fetch, diff, resolve, report, invite and persist stages.

    The cursor is written only after the delta feed was drained without a
    fatal error, and only as the last stage of the run. Failures of single
    members in later stages are counted and never block the cursor.

    Usage:
        orchestrator = SyncOrchestrator(
            fetcher=DeltaFetcher(home_api),
            diff_engine=MembershipDiffEngine(RemovalPolicy.ANY_MARKER),
            resolver=ProfileResolver(home_api),
            issuer=InvitationIssuer(partner_api, database=db),
            cursor_store=DatabaseCursorStore(db),
            report_writer=ReportWriter(reports_dir),
        )
        result = orchestrator.run(group_id, partner_tenant_id)
        print(result.summary())
    """

    def __init__(
        self,
        fetcher: DeltaFetcher,
        diff_engine: MembershipDiffEngine,
        resolver: ProfileResolver,
        issuer: InvitationIssuer,
        cursor_store: CursorStore,
        report_writer: Optional[ReportWriter] = None,
    ):
        self.fetcher = fetcher
        self.diff_engine = diff_engine
        self.resolver = resolver
        self.issuer = issuer
        self.cursor_store = cursor_store
        self.report_writer = report_writer

    def _enter(self, result: SyncResult, state: RunState) -> None:
        logger.debug(
            f"Run for group {result.group_id}: {result.state.value} -> {state.value}"
        )
        result.state = state

    def _abort(self, result: SyncResult, error: str) -> SyncResult:
        logger.error(f"Sync of group {result.group_id} aborted: {error}")
        result.error = error
        result.aborted_in = result.state
        result.status = RunStatus.ABORTED
        result.state = RunState.ABORTED
        return result

    def _load_cursor(self, group_id: str, full_sync: bool) -> Optional[str]:
        if full_sync:
            logger.info(
                f"Full sync requested for group {group_id}, ignoring stored cursor"
            )
            return None

        try:
            cursor = self.cursor_store.get(group_id)
        except StorageError as e:
            logger.warning(
                f"Could not read cursor for group {group_id}, doing a full sync: {e}"
            )
            return None

        if cursor is None:
            logger.info(f"No stored cursor for group {group_id}, doing a full sync")
            return None
        return cursor.token

    def _fetch(
        self, group_id: str, token: Optional[str], dry_run: bool
    ) -> tuple[str, list[dict[str, Any]]]:
        """Fetch the delta, restarting from scratch once if the cursor expired."""
        try:
            return self.fetcher.fetch(group_id, token)
        except CursorExpiredError as e:
            if token is None:
                raise
            logger.warning(
                f"Stored cursor for group {group_id} expired, restarting: {e}"
            )

        if not dry_run:
            try:
                self.cursor_store.clear(group_id)
            except StorageError as e:
                logger.warning(
                    f"Could not clear expired cursor for group {group_id}: {e}"
                )

        return self.fetcher.fetch(group_id, None)

    def _added_report_rows(self, result: SyncResult) -> list[dict[str, str]]:
        """One row per added member, including those that failed to resolve."""
        candidates = {c.id: c for c in result.candidates}
        failures = {f.member_id: f for f in result.resolution_failures}
        rows: list[dict[str, str]] = []

        for member_id in dict.fromkeys(a.member_id for a in result.added):
            candidate = candidates.get(member_id)
            if candidate is not None:
                row = candidate.to_report_row()
                row["status"] = (
                    REPORT_STATUS_RESOLVED
                    if candidate.is_inviteable
                    else REPORT_STATUS_NO_MAIL
                )
            else:
                failure = failures.get(member_id)
                row = {"id": member_id}
                row["status"] = (
                    REPORT_STATUS_NOT_FOUND
                    if failure is not None and failure.not_found
                    else REPORT_STATUS_UNRESOLVED
                )
            rows.append(row)

        return rows

    def run(
        self,
        group_id: str,
        partner_tenant_id: str,
        dry_run: bool = False,
        full_sync: bool = False,
    ) -> SyncResult:
        """
        Perform one sync run for a group.

        Args:
            group_id: Object id of the home-tenant group to mirror
            partner_tenant_id: Tenant id the invitations are issued in
            dry_run: Fetch, classify, resolve and report only; no invitations
                are sent and the cursor is not written
            full_sync: Ignore the stored cursor and re-read the whole group

        Returns:
            SyncResult describing the run. A fatal fetch failure or a failed
            cursor write returns a result with status ABORTED.
        """
        result = SyncResult(
            group_id=group_id, partner_tenant_id=partner_tenant_id, dry_run=dry_run
        )
        logger.info(
            f"Starting sync of group {group_id} into tenant {partner_tenant_id} "
            f"(dry_run={dry_run}, full_sync={full_sync})"
        )

        token = self._load_cursor(group_id, full_sync)
        result.resumed = token is not None

        # Fetch: any failure here is fatal and leaves the cursor untouched
        self._enter(result, RunState.FETCHING_DELTA)
        try:
            new_token, entries = self._fetch(group_id, token, dry_run)
        except AuthError as e:
            return self._abort(result, f"Authentication failed: {e}")
        except GraphAPIError as e:
            return self._abort(result, str(e))

        result.cursor_token = new_token
        result.stats.entries_fetched = len(entries)

        self._enter(result, RunState.DIFFING)
        records = self.diff_engine.classify(entries)
        result.added, result.removed = self.diff_engine.partition(records)
        result.stats.added = len(result.added)
        result.stats.removed = len(result.removed)
        logger.info(
            f"Group {group_id}: {result.stats.added} added, "
            f"{result.stats.removed} removed"
        )

        self._enter(result, RunState.RESOLVING_PROFILES)
        member_ids = list(dict.fromkeys(a.member_id for a in result.added))
        if member_ids:
            result.candidates, result.resolution_failures = self.resolver.resolve_all(
                member_ids
            )
        result.stats.resolved = len(result.candidates)
        result.stats.resolution_failures = len(result.resolution_failures)
        result.stats.not_found = sum(
            1 for f in result.resolution_failures if f.not_found
        )

        self._enter(result, RunState.REPORTING_CSV)
        if self.report_writer is not None:
            result.added_report, result.removed_report = (
                self.report_writer.write_run_reports(
                    group_id,
                    self._added_report_rows(result),
                    [
                        RemovalRecord.from_change(r).to_report_row()
                        for r in result.removed
                    ],
                )
            )
            result.stats.report_failures = sum(
                1 for p in (result.added_report, result.removed_report) if p is None
            )

        self._enter(result, RunState.INVITING)
        if dry_run:
            logger.info("Dry run: no invitations sent")
        elif result.candidates:
            result.invitation_results = self.issuer.invite_all(
                result.candidates, partner_tenant_id
            )
            result.stats.record_invitations(result.invitation_results)

        self._enter(result, RunState.PERSISTING_CURSOR)
        if dry_run:
            logger.info("Dry run: cursor not updated")
        else:
            try:
                result.cursor_persisted = self.cursor_store.put(group_id, new_token)
            except StorageError as e:
                return self._abort(result, f"Failed to persist cursor: {e}")

        self._enter(result, RunState.DONE)
        result.status = (
            RunStatus.COMPLETED_WITH_WARNINGS
            if result.stats.has_warnings
            else RunStatus.COMPLETED
        )
        logger.info(f"Sync of group {group_id} finished: {result.status.value}")
        return result

    def __repr__(self) -> str:
        """Return a readable string representation."""
        return (
            f"SyncOrchestrator("
            f"removal_policy={self.diff_engine.removal_policy.value}, "
            f"cursor_store={self.cursor_store!r})"
        )
