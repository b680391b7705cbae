"""
Profile resolution for added members.

Looks up the invitation-relevant profile of every added member. A failed
lookup is recorded against that member and never stops the batch.
"""

import logging
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

from guest_sync.api.graph_api import GraphAPI, GraphAPIError, NotFoundError
from guest_sync.auth.graph_auth import AuthError
from guest_sync.sync.member import GuestCandidate

logger = logging.getLogger(__name__)


@dataclass
class ResolutionFailure:
    """A member whose profile could not be resolved."""

    member_id: str
    error: str
    not_found: bool = False


class ProfileResolver:
    """
    Resolves member ids to GuestCandidates.

    Usage:
        resolver = ProfileResolver(home_api, max_workers=4)
        candidate = resolver.resolve(member_id)
        candidates, failures = resolver.resolve_all(member_ids)
    """

    def __init__(self, api: GraphAPI, max_workers: int = 1):
        self.api = api
        self.max_workers = max(1, max_workers)

    def resolve(self, member_id: str) -> GuestCandidate:
        """
        Resolve one member.

        Raises:
            NotFoundError: If the member is not a user in the home tenant
                (deleted since, or a non-user member such as a device)
            GraphAPIError: For other lookup failures
            AuthError: If the home tenant refuses the lookup
        """
        user = self.api.get_user(member_id)
        try:
            return GuestCandidate.from_api_response(user)
        except ValueError as e:
            raise NotFoundError(f"User {member_id} returned no usable profile") from e

    def _resolve_isolated(
        self, member_id: str
    ) -> GuestCandidate | ResolutionFailure:
        try:
            return self.resolve(member_id)
        except NotFoundError as e:
            logger.warning(f"Member {member_id} not found, excluded: {e}")
            return ResolutionFailure(member_id=member_id, error=str(e), not_found=True)
        except (GraphAPIError, AuthError) as e:
            logger.error(f"Failed to resolve member {member_id}: {e}")
            return ResolutionFailure(member_id=member_id, error=str(e))

    def resolve_all(
        self, member_ids: Sequence[str]
    ) -> tuple[list[GuestCandidate], list[ResolutionFailure]]:
        """
        Resolve every member, isolating per-member failures.

        Results keep the order of member_ids regardless of max_workers.

        Returns:
            Tuple of (resolved candidates, failures)
        """
        if self.max_workers > 1 and len(member_ids) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                outcomes = list(pool.map(self._resolve_isolated, member_ids))
        else:
            outcomes = [self._resolve_isolated(m) for m in member_ids]

        candidates = [o for o in outcomes if isinstance(o, GuestCandidate)]
        failures = [o for o in outcomes if isinstance(o, ResolutionFailure)]

        logger.info(
            f"Resolved {len(candidates)} of {len(member_ids)} added member(s)"
            + (f", {len(failures)} failed" if failures else "")
        )
        return candidates, failures
