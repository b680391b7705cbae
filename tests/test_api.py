"""
Unit tests for the Graph API module.

Tests the GraphAPI class with a mocked requests session and token provider.
"""

from unittest.mock import MagicMock, patch

import pytest
from requests.exceptions import ConnectionError as RequestsConnectionError
from requests.exceptions import Timeout

from guest_sync.api.graph_api import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_TIMEOUT,
    DELTA_LINK_KEY,
    GRAPH_BASE_URL,
    NEXT_LINK_KEY,
    USER_SELECT_FIELDS,
    CursorExpiredError,
    GraphAPI,
    GraphAPIError,
    InvitationError,
    MalformedResponseError,
    NotFoundError,
    TransientTransportError,
)
from guest_sync.auth.graph_auth import AuthError


def make_response(status_code=200, json_data=None, headers=None, text=None):
    """Build a mock requests.Response."""
    response = MagicMock()
    response.status_code = status_code
    response.headers = headers or {}
    if json_data is not None:
        response.json.return_value = json_data
        response.content = b"{...}"
        response.text = str(json_data)
    elif text is not None:
        response.json.side_effect = ValueError("not json")
        response.content = text.encode()
        response.text = text
    else:
        response.json.side_effect = ValueError("empty")
        response.content = b""
        response.text = ""
    return response


def error_body(code, message="failure"):
    return {"error": {"code": code, "message": message}}


@pytest.fixture
def auth():
    mock_auth = MagicMock()
    mock_auth.get_token.return_value = "token-123"
    return mock_auth


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def api(auth, session):
    return GraphAPI(auth, session=session, initial_retry_delay=0.01)


class TestGraphAPIInitialization:
    """Tests for GraphAPI initialization."""

    def test_defaults(self, auth):
        """Test default configuration values."""
        api = GraphAPI(auth)

        assert api.auth is auth
        assert api.base_url == GRAPH_BASE_URL
        assert api.max_retries == DEFAULT_MAX_RETRIES
        assert api.timeout == DEFAULT_TIMEOUT
        assert api._session is None

    def test_base_url_trailing_slash_stripped(self, auth):
        """Test that a trailing slash on the base URL is removed."""
        api = GraphAPI(auth, base_url="https://graph.example.com/beta/")
        assert api.base_url == "https://graph.example.com/beta"

    @patch("guest_sync.api.graph_api.requests.Session")
    def test_session_created_lazily(self, mock_session_class, auth):
        """Test that the session is created on first access and reused."""
        api = GraphAPI(auth)

        first = api.session
        second = api.session

        mock_session_class.assert_called_once()
        assert first is second


class TestRequest:
    """Tests for _request status handling."""

    def test_sends_bearer_token_and_timeout(self, api, session):
        """Test that each request carries the token and the timeout."""
        session.request.return_value = make_response(json_data={"ok": True})

        result = api._request("GET", "https://x/y", "op")

        assert result == {"ok": True}
        kwargs = session.request.call_args.kwargs
        assert kwargs["headers"]["Authorization"] == "Bearer token-123"
        assert kwargs["timeout"] == DEFAULT_TIMEOUT

    def test_no_content_returns_empty_dict(self, api, session):
        """Test that a 204 response yields an empty dict."""
        session.request.return_value = make_response(status_code=204)
        assert api._request("DELETE", "https://x/y", "op") == {}

    @patch("guest_sync.api.graph_api.time.sleep")
    def test_retries_throttling_then_succeeds(self, mock_sleep, api, session):
        """Test that 429 is retried and a later success is returned."""
        session.request.side_effect = [
            make_response(status_code=429),
            make_response(status_code=503),
            make_response(json_data={"value": []}),
        ]

        result = api._request("GET", "https://x/y", "op")

        assert result == {"value": []}
        assert session.request.call_count == 3
        assert mock_sleep.call_count == 2

    @patch("guest_sync.api.graph_api.time.sleep")
    def test_honours_retry_after(self, mock_sleep, api, session):
        """Test that the Retry-After header sets the wait time."""
        session.request.side_effect = [
            make_response(status_code=429, headers={"Retry-After": "7"}),
            make_response(json_data={}),
        ]

        api._request("GET", "https://x/y", "op")

        mock_sleep.assert_called_once_with(7.0)

    @patch("guest_sync.api.graph_api.time.sleep")
    def test_retry_after_capped_at_max_delay(self, mock_sleep, auth, session):
        """Test that an excessive Retry-After is capped."""
        api = GraphAPI(auth, session=session, max_retry_delay=5.0)
        session.request.side_effect = [
            make_response(status_code=429, headers={"Retry-After": "600"}),
            make_response(json_data={}),
        ]

        api._request("GET", "https://x/y", "op")

        mock_sleep.assert_called_once_with(5.0)

    @patch("guest_sync.api.graph_api.time.sleep")
    def test_exhausted_retries_raise_transient_error(self, mock_sleep, auth, session):
        """Test that persistent 5xx responses raise TransientTransportError."""
        api = GraphAPI(auth, session=session, max_retries=3)
        session.request.return_value = make_response(status_code=502)

        with pytest.raises(TransientTransportError) as exc_info:
            api._request("GET", "https://x/y", "op")

        assert exc_info.value.status_code == 502
        assert session.request.call_count == 3
        assert mock_sleep.call_count == 2

    @patch("guest_sync.api.graph_api.time.sleep")
    def test_connection_errors_retried(self, mock_sleep, api, session):
        """Test that connection errors and timeouts are retried."""
        session.request.side_effect = [
            RequestsConnectionError("reset"),
            Timeout("slow"),
            make_response(json_data={"id": "1"}),
        ]

        assert api._request("GET", "https://x/y", "op") == {"id": "1"}

    @patch("guest_sync.api.graph_api.time.sleep")
    def test_connection_errors_exhausted(self, mock_sleep, auth, session):
        """Test that persistent connection errors raise TransientTransportError."""
        api = GraphAPI(auth, session=session, max_retries=2)
        session.request.side_effect = RequestsConnectionError("down")

        with pytest.raises(TransientTransportError):
            api._request("GET", "https://x/y", "op")

    @pytest.mark.parametrize("status_code", [401, 403])
    def test_auth_failures_not_retried(self, api, session, status_code):
        """Test that 401/403 raise AuthError immediately."""
        session.request.return_value = make_response(
            status_code=status_code, json_data=error_body("Authorization_RequestDenied")
        )

        with pytest.raises(AuthError):
            api._request("GET", "https://x/y", "op")

        assert session.request.call_count == 1

    def test_gone_raises_cursor_expired(self, api, session):
        """Test that 410 raises CursorExpiredError."""
        session.request.return_value = make_response(
            status_code=410, json_data=error_body("resyncRequired")
        )

        with pytest.raises(CursorExpiredError):
            api._request("GET", "https://x/y", "op")

    def test_sync_state_not_found_raises_cursor_expired(self, api, session):
        """Test that the syncStateNotFound code raises CursorExpiredError."""
        session.request.return_value = make_response(
            status_code=400, json_data=error_body("syncStateNotFound")
        )

        with pytest.raises(CursorExpiredError):
            api._request("GET", "https://x/y", "op")

    def test_not_found(self, api, session):
        """Test that 404 raises NotFoundError."""
        session.request.return_value = make_response(
            status_code=404, json_data=error_body("Request_ResourceNotFound")
        )

        with pytest.raises(NotFoundError) as exc_info:
            api._request("GET", "https://x/y", "op")
        assert exc_info.value.status_code == 404

    def test_other_client_error(self, api, session):
        """Test that other 4xx responses raise GraphAPIError with details."""
        session.request.return_value = make_response(
            status_code=400, json_data=error_body("BadRequest", "bad filter")
        )

        with pytest.raises(GraphAPIError) as exc_info:
            api._request("GET", "https://x/y", "op")

        assert "bad filter" in str(exc_info.value)
        assert not isinstance(exc_info.value, CursorExpiredError)

    def test_non_json_body(self, api, session):
        """Test that a non-JSON success body raises MalformedResponseError."""
        session.request.return_value = make_response(text="<html>")

        with pytest.raises(MalformedResponseError):
            api._request("GET", "https://x/y", "op")

    def test_non_object_body(self, api, session):
        """Test that a JSON array body raises MalformedResponseError."""
        session.request.return_value = make_response(json_data=[1, 2])

        with pytest.raises(MalformedResponseError):
            api._request("GET", "https://x/y", "op")

    def test_token_failure_propagates(self, api, auth, session):
        """Test that token acquisition errors are not retried."""
        auth.get_token.side_effect = AuthError("no token")

        with pytest.raises(AuthError):
            api._request("GET", "https://x/y", "op")

        session.request.assert_not_called()


class TestDeltaFeed:
    """Tests for the delta feed operations."""

    def test_initial_delta_request_scoped_to_group(self, api):
        """Test that the baseline request filters on the group id."""
        url, params = api.initial_delta_request("g-1")

        assert url == f"{GRAPH_BASE_URL}/groups/delta"
        assert params == {"$filter": "id eq 'g-1'", "$select": "members"}

    @pytest.mark.parametrize("group_id", ["", "a'b"])
    def test_initial_delta_request_rejects_bad_ids(self, api, group_id):
        """Test that unusable group ids are rejected."""
        with pytest.raises(ValueError):
            api.initial_delta_request(group_id)

    def test_get_delta_page_with_next_link(self, api, session):
        """Test fetching an intermediate page."""
        page = {"value": [], NEXT_LINK_KEY: "https://next"}
        session.request.return_value = make_response(json_data=page)

        assert api.get_delta_page("https://first", {"a": "b"}) == page
        assert session.request.call_args.kwargs["params"] == {"a": "b"}

    def test_get_delta_page_with_delta_link(self, api, session):
        """Test fetching the terminal page."""
        page = {"value": [{"id": "g"}], DELTA_LINK_KEY: "https://delta"}
        session.request.return_value = make_response(json_data=page)

        assert api.get_delta_page("https://next") == page

    def test_get_delta_page_without_links(self, api, session):
        """Test that a page with neither link is malformed."""
        session.request.return_value = make_response(json_data={"value": []})

        with pytest.raises(MalformedResponseError):
            api.get_delta_page("https://first")

    def test_get_delta_page_value_not_list(self, api, session):
        """Test that a non-list value is malformed."""
        session.request.return_value = make_response(
            json_data={"value": {}, DELTA_LINK_KEY: "https://delta"}
        )

        with pytest.raises(MalformedResponseError):
            api.get_delta_page("https://first")


class TestUsers:
    """Tests for user lookup."""

    def test_get_user_selects_invitation_fields(self, api, session):
        """Test that get_user requests exactly the needed fields."""
        user = {"id": "u1", "mail": "u1@contoso.com"}
        session.request.return_value = make_response(json_data=user)

        assert api.get_user("u1") == user

        args = session.request.call_args
        assert args.args[1] == f"{GRAPH_BASE_URL}/users/u1"
        assert args.kwargs["params"] == {"$select": USER_SELECT_FIELDS}
        assert USER_SELECT_FIELDS == (
            "id,userPrincipalName,mail,displayName,givenName,surname"
        )


class TestInvitations:
    """Tests for invitation creation."""

    def test_create_invitation_posts_body(self, api, session):
        """Test that the payload is POSTed to /invitations."""
        body = {"invitedUserEmailAddress": "a@b.com", "sendInvitationMessage": False}
        session.request.return_value = make_response(
            status_code=201, json_data={"id": "inv-1"}
        )

        assert api.create_invitation(body) == {"id": "inv-1"}

        args = session.request.call_args
        assert args.args == ("POST", f"{GRAPH_BASE_URL}/invitations")
        assert args.kwargs["json"] == body

    def test_rejection_raises_invitation_error(self, api, session):
        """Test that a 400 rejection is reported as InvitationError."""
        session.request.return_value = make_response(
            status_code=400, json_data=error_body("BadRequest", "invalid address")
        )

        with pytest.raises(InvitationError) as exc_info:
            api.create_invitation({"invitedUserEmailAddress": "bad"})

        assert exc_info.value.status_code == 400

    @patch("guest_sync.api.graph_api.time.sleep")
    def test_transient_failure_not_wrapped(self, mock_sleep, auth, session):
        """Test that exhausted retries keep their own error type."""
        api = GraphAPI(auth, session=session, max_retries=2)
        session.request.return_value = make_response(status_code=503)

        with pytest.raises(TransientTransportError):
            api.create_invitation({"invitedUserEmailAddress": "a@b.com"})

    def test_forbidden_raises_auth_error(self, api, session):
        """Test that a missing invite permission surfaces as AuthError."""
        session.request.return_value = make_response(
            status_code=403, json_data=error_body("Authorization_RequestDenied")
        )

        with pytest.raises(AuthError):
            api.create_invitation({"invitedUserEmailAddress": "a@b.com"})
