"""
guest_sync.sync - Group guest synchronization

Delta fetching, change classification, profile resolution, invitation
issuance and the orchestrator that runs them in order.
"""

from guest_sync.sync.changes import MembershipDiffEngine, RemovalPolicy
from guest_sync.sync.engine import (
    RunState,
    RunStatus,
    SyncOrchestrator,
    SyncResult,
    SyncStats,
)
from guest_sync.sync.fetcher import DeltaFetcher
from guest_sync.sync.inviter import InvitationIssuer
from guest_sync.sync.member import (
    Added,
    ChangeRecord,
    GuestCandidate,
    InvitationRequest,
    InvitationResult,
    InvitationStatus,
    RemovalRecord,
    Removed,
)
from guest_sync.sync.resolver import ProfileResolver, ResolutionFailure

__all__ = [
    "Added",
    "ChangeRecord",
    "DeltaFetcher",
    "GuestCandidate",
    "InvitationIssuer",
    "InvitationRequest",
    "InvitationResult",
    "InvitationStatus",
    "MembershipDiffEngine",
    "ProfileResolver",
    "RemovalPolicy",
    "RemovalRecord",
    "Removed",
    "ResolutionFailure",
    "RunState",
    "RunStatus",
    "SyncOrchestrator",
    "SyncResult",
    "SyncStats",
]
