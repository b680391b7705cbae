"""
Tests for profile resolution.
"""

from unittest.mock import MagicMock

import pytest

from guest_sync.api.graph_api import GraphAPIError, NotFoundError
from guest_sync.auth.graph_auth import AuthError
from guest_sync.sync.member import GuestCandidate
from guest_sync.sync.resolver import ProfileResolver, ResolutionFailure


def user(member_id, mail=None):
    return {
        "id": member_id,
        "userPrincipalName": f"{member_id}@contoso.com",
        "mail": mail if mail is not None else f"{member_id}@contoso.com",
        "displayName": member_id.upper(),
        "givenName": None,
        "surname": None,
    }


@pytest.fixture
def api():
    return MagicMock()


class TestResolve:
    """Tests for ProfileResolver.resolve."""

    def test_resolve_builds_candidate(self, api):
        """Test that a user object becomes a GuestCandidate."""
        api.get_user.return_value = user("u1")

        candidate = ProfileResolver(api).resolve("u1")

        api.get_user.assert_called_once_with("u1")
        assert isinstance(candidate, GuestCandidate)
        assert candidate.mail == "u1@contoso.com"

    def test_not_found_propagates(self, api):
        """Test that a missing user raises NotFoundError."""
        api.get_user.side_effect = NotFoundError("gone", status_code=404)

        with pytest.raises(NotFoundError):
            ProfileResolver(api).resolve("u1")

    def test_object_without_id_is_not_found(self, api):
        """Test that an unusable profile is reported as not found."""
        api.get_user.return_value = {}

        with pytest.raises(NotFoundError):
            ProfileResolver(api).resolve("u1")


class TestResolveAll:
    """Tests for ProfileResolver.resolve_all."""

    def test_failure_isolated(self, api):
        """Test that one failing member does not stop the others."""

        def get_user(member_id):
            if member_id == "X":
                raise GraphAPIError("server error", status_code=500)
            return user(member_id)

        api.get_user.side_effect = get_user

        candidates, failures = ProfileResolver(api).resolve_all(["A", "X", "C"])

        assert [c.id for c in candidates] == ["A", "C"]
        assert failures == [
            ResolutionFailure(member_id="X", error="server error", not_found=False)
        ]

    def test_not_found_flagged(self, api):
        """Test that not-found failures are flagged as such."""
        api.get_user.side_effect = NotFoundError("gone")

        _, failures = ProfileResolver(api).resolve_all(["u1"])

        assert failures[0].not_found is True

    def test_auth_error_is_per_member(self, api):
        """Test that an auth failure on one lookup is recorded, not raised."""
        api.get_user.side_effect = [AuthError("denied"), user("u2")]

        candidates, failures = ProfileResolver(api).resolve_all(["u1", "u2"])

        assert [c.id for c in candidates] == ["u2"]
        assert [f.member_id for f in failures] == ["u1"]

    def test_thread_pool_preserves_order(self, api):
        """Test that concurrent resolution keeps input order."""
        api.get_user.side_effect = lambda member_id: user(member_id)
        ids = [f"u{i}" for i in range(20)]

        candidates, failures = ProfileResolver(api, max_workers=4).resolve_all(ids)

        assert [c.id for c in candidates] == ids
        assert failures == []

    def test_empty_input(self, api):
        """Test that nothing is looked up for no members."""
        assert ProfileResolver(api).resolve_all([]) == ([], [])
        api.get_user.assert_not_called()

    def test_max_workers_floor(self, api):
        """Test that max_workers below one falls back to sequential."""
        assert ProfileResolver(api, max_workers=0).max_workers == 1
