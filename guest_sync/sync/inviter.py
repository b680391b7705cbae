"""
Partner-tenant invitation issuance.

Sends one silent guest invitation per inviteable candidate. Candidates
without a mail address are skipped, and a rejected invitation is recorded
without stopping the remaining ones. Issued invitations can be recorded so
that later runs skip members that were already invited.
"""

import logging
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from guest_sync.api.graph_api import GraphAPI, GraphAPIError, InvitationError
from guest_sync.auth.graph_auth import AuthError
from guest_sync.storage.db import StorageError, SyncDatabase
from guest_sync.sync.member import (
    DEFAULT_REDIRECT_URL_TEMPLATE,
    GuestCandidate,
    InvitationRequest,
    InvitationResult,
    InvitationStatus,
)

logger = logging.getLogger(__name__)


class InvitationIssuer:
    """
    Issues invitations in the partner tenant.

    Attributes:
        api: GraphAPI authenticated against the partner tenant
        database: Optional SyncDatabase used to record issued invitations
        skip_already_invited: Skip members recorded as invited by earlier runs

    Usage:
        issuer = InvitationIssuer(partner_api, database=db)
        result = issuer.invite(candidate, partner_tenant_id)
        results = issuer.invite_all(candidates, partner_tenant_id)
    """

    def __init__(
        self,
        api: GraphAPI,
        database: Optional[SyncDatabase] = None,
        redirect_url_template: str = DEFAULT_REDIRECT_URL_TEMPLATE,
        skip_already_invited: bool = False,
        max_workers: int = 1,
    ):
        if skip_already_invited and database is None:
            raise ValueError("skip_already_invited requires a database")

        self.api = api
        self.database = database
        self.redirect_url_template = redirect_url_template
        self.skip_already_invited = skip_already_invited
        self.max_workers = max(1, max_workers)

    def invite(
        self, candidate: GuestCandidate, partner_tenant_id: str
    ) -> InvitationResult:
        """
        Invite one candidate.

        Returns a skipped_no_mail result without building a request when the
        candidate has no mail address.

        Raises:
            InvitationError: If the address is malformed or the service
                rejects the invitation
            AuthError: If the app may not invite in the partner tenant
            GraphAPIError: For transport failures that outlast retries
        """
        if not candidate.is_inviteable:
            logger.info(f"Member {candidate.id} has no mail address, not invited")
            return InvitationResult(
                member_id=candidate.id, status=InvitationStatus.SKIPPED_NO_MAIL
            )

        if self.skip_already_invited and self.database.is_invited(
            partner_tenant_id, candidate.id
        ):
            logger.info(f"Member {candidate.id} was invited by an earlier run")
            return InvitationResult(
                member_id=candidate.id,
                status=InvitationStatus.SKIPPED_ALREADY_INVITED,
                invited_email=candidate.mail,
            )

        try:
            request = InvitationRequest.from_candidate(
                candidate, partner_tenant_id, self.redirect_url_template
            )
        except ValueError as e:
            raise InvitationError(str(e)) from e

        response = self.api.create_invitation(request.to_api_format())
        invited_user = response.get("invitedUser") or {}

        result = InvitationResult(
            member_id=candidate.id,
            status=InvitationStatus.INVITED,
            invited_email=request.invited_email,
            invited_user_id=invited_user.get("id"),
            redeem_url=response.get("inviteRedeemUrl"),
        )

        if self.database is not None:
            try:
                self.database.record_invitation(
                    partner_tenant_id=partner_tenant_id,
                    member_id=candidate.id,
                    invited_email=request.invited_email,
                    invited_user_id=result.invited_user_id,
                )
            except StorageError as e:
                # The invitation exists; only the dedup record is missing
                logger.warning(f"Could not record invitation for {candidate.id}: {e}")

        return result

    def _invite_isolated(
        self, candidate: GuestCandidate, partner_tenant_id: str
    ) -> InvitationResult:
        try:
            return self.invite(candidate, partner_tenant_id)
        except (GraphAPIError, AuthError, StorageError) as e:
            logger.error(f"Failed to invite member {candidate.id}: {e}")
            return InvitationResult(
                member_id=candidate.id,
                status=InvitationStatus.FAILED,
                invited_email=candidate.mail,
                error=str(e),
            )

    def invite_all(
        self, candidates: Sequence[GuestCandidate], partner_tenant_id: str
    ) -> list[InvitationResult]:
        """
        Invite every candidate, isolating per-candidate failures.

        Results keep the order of candidates regardless of max_workers.
        """
        if self.max_workers > 1 and len(candidates) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                results = list(
                    pool.map(
                        lambda c: self._invite_isolated(c, partner_tenant_id),
                        candidates,
                    )
                )
        else:
            results = [self._invite_isolated(c, partner_tenant_id) for c in candidates]

        invited = sum(1 for r in results if r.status is InvitationStatus.INVITED)
        logger.info(f"Invited {invited} of {len(candidates)} candidate(s)")
        return results
