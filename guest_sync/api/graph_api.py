"""
Microsoft Graph wrapper for group membership mirroring.

Provides a high-level interface to the Graph endpoints the sync needs:
- Paging the group delta feed (nextLink / deltaLink continuation)
- Point lookups of user profiles
- Creating partner-tenant invitations
- Exponential backoff retry logic for throttling and server errors
"""

import logging
import time
from typing import Any

import requests
from requests.exceptions import ConnectionError as RequestsConnectionError
from requests.exceptions import Timeout

from guest_sync.auth.graph_auth import AuthError, GraphAuth

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"

# Profile fields needed to build an invitation and the added-members report
USER_SELECT_FIELDS = ",".join(
    [
        "id",
        "userPrincipalName",
        "mail",
        "displayName",
        "givenName",
        "surname",
    ]
)

NEXT_LINK_KEY = "@odata.nextLink"
DELTA_LINK_KEY = "@odata.deltaLink"

# Throttling and transient server-side failures
RETRYABLE_STATUS_CODES = (429, 500, 502, 503, 504)

# Error codes Graph uses when a stored delta link can no longer be resumed
CURSOR_EXPIRED_CODES = ("syncStateNotFound", "resyncRequired", "syncStateInvalid")

# Retry configuration defaults
DEFAULT_MAX_RETRIES = 5
DEFAULT_INITIAL_RETRY_DELAY = 1.0  # seconds
DEFAULT_MAX_RETRY_DELAY = 60.0  # seconds

# HTTP timeout for every Graph request
DEFAULT_TIMEOUT = 30.0  # seconds

logger = logging.getLogger(__name__)


class GraphAPIError(Exception):
    """Raised when a Graph API operation fails."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class TransientTransportError(GraphAPIError):
    """Raised when throttling or transport failures outlast the retry budget."""

    pass


class NotFoundError(GraphAPIError):
    """Raised when a looked-up directory object does not exist."""

    pass


class InvitationError(GraphAPIError):
    """Raised when the service rejects an invitation request."""

    pass


class MalformedResponseError(GraphAPIError):
    """Raised when a response body is not what the endpoint promises."""

    pass


class CursorExpiredError(GraphAPIError):
    """Raised when a stored delta link is no longer accepted by the service."""

    pass


def _error_details(response: requests.Response) -> tuple[str, str]:
    """Extract (code, message) from a Graph error body, tolerating non-JSON."""
    try:
        body = response.json()
    except ValueError:
        return "", response.text[:200]

    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return str(error.get("code", "")), str(error.get("message", ""))
    return "", str(body)[:200]


class GraphAPI:
    """
    Microsoft Graph wrapper for one tenant.

    Attributes:
        auth: Token provider for the tenant
        base_url: Graph service root (default v1.0 endpoint)

    Usage:
        api = GraphAPI(GraphAuth(tenant_id, client_id, secret))

        # First page of a full baseline for one group
        url, params = api.initial_delta_request(group_id)
        page = api.get_delta_page(url, params)

        # Resume from a stored delta link
        page = api.get_delta_page(stored_delta_link)

        user = api.get_user(member_id)
        invitation = api.create_invitation(body)
    """

    def __init__(
        self,
        auth: GraphAuth,
        base_url: str = GRAPH_BASE_URL,
        max_retries: int = DEFAULT_MAX_RETRIES,
        initial_retry_delay: float = DEFAULT_INITIAL_RETRY_DELAY,
        max_retry_delay: float = DEFAULT_MAX_RETRY_DELAY,
        timeout: float = DEFAULT_TIMEOUT,
        session: requests.Session | None = None,
    ):
        """
        Initialize the Graph API wrapper.

        Args:
            auth: GraphAuth (or compatible) token provider
            base_url: Graph service root URL
            max_retries: Maximum attempts for a request (default 5)
            initial_retry_delay: Initial backoff delay in seconds (default 1.0)
            max_retry_delay: Maximum backoff delay in seconds (default 60.0)
            timeout: Per-request timeout in seconds (default 30.0)
            session: Optional requests session (created lazily otherwise)
        """
        self.auth = auth
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.initial_retry_delay = initial_retry_delay
        self.max_retry_delay = max_retry_delay
        self.timeout = timeout
        self._session = session

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def _retry_delay(self, response: requests.Response, delay: float) -> float:
        """Honour Retry-After when the service sends one, capped at max delay."""
        retry_after = response.headers.get("Retry-After")
        if retry_after:
            try:
                return min(max(float(retry_after), 0.0), self.max_retry_delay)
            except ValueError:
                pass
        return delay

    def _request(
        self,
        method: str,
        url: str,
        operation_name: str,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Execute a Graph request with exponential backoff retry.

        Args:
            method: HTTP method
            url: Absolute request URL
            operation_name: Name for logging purposes
            params: Optional query parameters
            json_body: Optional JSON request body

        Returns:
            Decoded JSON object (empty dict for bodiless responses)

        Raises:
            TransientTransportError: If retries are exhausted
            AuthError: On 401/403 or token acquisition failure
            NotFoundError: On 404
            CursorExpiredError: When a delta link can no longer be resumed
            MalformedResponseError: If the body is not a JSON object
            GraphAPIError: For other API errors
        """
        delay = self.initial_retry_delay

        for attempt in range(self.max_retries):
            headers = {
                "Authorization": f"Bearer {self.auth.get_token()}",
                "Accept": "application/json",
            }

            try:
                response = self.session.request(
                    method,
                    url,
                    params=params,
                    json=json_body,
                    headers=headers,
                    timeout=self.timeout,
                )
            except (RequestsConnectionError, Timeout) as e:
                if attempt < self.max_retries - 1:
                    logger.warning(
                        f"{operation_name} transport error ({e}), retrying in "
                        f"{delay:.1f}s (attempt {attempt + 1}/{self.max_retries})"
                    )
                    time.sleep(delay)
                    delay = min(delay * 2, self.max_retry_delay)
                    continue
                raise TransientTransportError(
                    f"{operation_name} failed after {self.max_retries} attempts: {e}"
                ) from e

            status_code = response.status_code

            if status_code in RETRYABLE_STATUS_CODES:
                if attempt < self.max_retries - 1:
                    wait = self._retry_delay(response, delay)
                    logger.warning(
                        f"{operation_name} returned {status_code}, retrying in "
                        f"{wait:.1f}s (attempt {attempt + 1}/{self.max_retries})"
                    )
                    time.sleep(wait)
                    delay = min(delay * 2, self.max_retry_delay)
                    continue
                raise TransientTransportError(
                    f"{operation_name} still failing with {status_code} "
                    f"after {self.max_retries} attempts",
                    status_code=status_code,
                )

            if status_code >= 400:
                code, message = _error_details(response)

                if status_code in (401, 403):
                    logger.error(f"{operation_name} was refused ({status_code})")
                    raise AuthError(
                        f"{operation_name} was refused ({status_code} {code}): "
                        f"{message}"
                    )
                if status_code == 410 or code in CURSOR_EXPIRED_CODES:
                    raise CursorExpiredError(
                        f"{operation_name}: delta link expired ({code or status_code})",
                        status_code=status_code,
                    )
                if status_code == 404:
                    raise NotFoundError(
                        f"{operation_name}: not found", status_code=status_code
                    )

                logger.error(f"{operation_name} failed with status {status_code}")
                raise GraphAPIError(
                    f"{operation_name} failed ({status_code} {code}): {message}",
                    status_code=status_code,
                )

            if status_code == 204 or not response.content:
                return {}

            try:
                data = response.json()
            except ValueError as e:
                raise MalformedResponseError(
                    f"{operation_name} returned a non-JSON body",
                    status_code=status_code,
                ) from e

            if not isinstance(data, dict):
                raise MalformedResponseError(
                    f"{operation_name} returned {type(data).__name__}, "
                    f"expected a JSON object",
                    status_code=status_code,
                )
            return data

        # Only reachable with max_retries < 1
        raise GraphAPIError(f"{operation_name} failed after all retries")

    # =========================================================================
    # Delta Feed
    # =========================================================================

    def initial_delta_request(self, group_id: str) -> tuple[str, dict[str, str]]:
        """
        Build the first request of a full baseline for a single group.

        Args:
            group_id: Object id of the home-tenant group

        Returns:
            Tuple of (url, query parameters)

        Raises:
            ValueError: If group_id is empty or would break the filter
        """
        if not group_id or "'" in group_id:
            raise ValueError(f"Invalid group id: {group_id!r}")

        return (
            f"{self.base_url}/groups/delta",
            {"$filter": f"id eq '{group_id}'", "$select": "members"},
        )

    def get_delta_page(
        self, url: str, params: dict[str, str] | None = None
    ) -> dict[str, Any]:
        """
        Fetch one page of the group delta feed.

        Continuation links are absolute URLs with their query string baked in,
        so params are only passed for the initial request.

        Returns:
            Page body containing ``value`` and exactly one continuation link

        Raises:
            MalformedResponseError: If the page has no list of entries or
                neither a nextLink nor a deltaLink
        """
        page = self._request("GET", url, "get_delta_page", params=params)

        value = page.get("value", [])
        if not isinstance(value, list):
            raise MalformedResponseError(
                f"Delta page 'value' is {type(value).__name__}, expected a list"
            )

        if not page.get(NEXT_LINK_KEY) and not page.get(DELTA_LINK_KEY):
            raise MalformedResponseError(
                "Delta page carries neither a nextLink nor a deltaLink"
            )

        return page

    # =========================================================================
    # Users
    # =========================================================================

    def get_user(self, member_id: str) -> dict[str, Any]:
        """
        Look up the profile fields needed for an invitation.

        Args:
            member_id: Directory object id of the member

        Returns:
            User object restricted to USER_SELECT_FIELDS

        Raises:
            NotFoundError: If no user exists with this id
        """
        logger.debug(f"Getting user: {member_id}")
        return self._request(
            "GET",
            f"{self.base_url}/users/{member_id}",
            f"get_user({member_id})",
            params={"$select": USER_SELECT_FIELDS},
        )

    # =========================================================================
    # Invitations
    # =========================================================================

    def create_invitation(self, body: dict[str, Any]) -> dict[str, Any]:
        """
        Create a guest invitation in this tenant.

        Args:
            body: Invitation payload in Graph format

        Returns:
            Created invitation resource

        Raises:
            InvitationError: If the service rejects the request
            AuthError: If the app may not invite in this tenant
            TransientTransportError: If retries are exhausted
        """
        email = body.get("invitedUserEmailAddress")
        try:
            response = self._request(
                "POST",
                f"{self.base_url}/invitations",
                f"create_invitation({email})",
                json_body=body,
            )
        except (TransientTransportError, MalformedResponseError):
            raise
        except GraphAPIError as e:
            raise InvitationError(
                f"Invitation for {email} rejected: {e}", status_code=e.status_code
            ) from e

        logger.info(f"Created invitation for {email}")
        return response

    def __repr__(self) -> str:
        return f"GraphAPI(base_url={self.base_url!r}, auth={self.auth!r})"
