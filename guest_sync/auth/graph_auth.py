"""
App-only authentication for Microsoft Graph.

Provides client-credentials authentication with support for:
- One MSAL confidential client per tenant (home and partner)
- Token reuse through the MSAL in-memory token cache
- Clear failure reporting when a tenant has not consented the app
"""

import logging
from typing import Any

import msal

# App-only access uses the permissions granted to the app registration
GRAPH_SCOPES = ["https://graph.microsoft.com/.default"]

DEFAULT_AUTHORITY_HOST = "https://login.microsoftonline.com"

# Timeout for token endpoint requests (in seconds)
DEFAULT_AUTH_TIMEOUT = 10

logger = logging.getLogger(__name__)


class AuthError(Exception):
    """Raised when a token cannot be acquired or the service rejects it."""

    pass


class GraphAuth:
    """
    Client-credentials token provider for a single tenant.

    Attributes:
        tenant_id: Directory (tenant) id the tokens are issued for
        client_id: Application (client) id of the app registration

    Usage:
        home_auth = GraphAuth(tenant_id, client_id, client_secret)
        token = home_auth.get_token()

        # Same multi-tenant app, partner directory
        partner_auth = home_auth.for_tenant(partner_tenant_id)
    """

    def __init__(
        self,
        tenant_id: str,
        client_id: str,
        client_secret: str,
        authority_host: str = DEFAULT_AUTHORITY_HOST,
        auth_timeout: int = DEFAULT_AUTH_TIMEOUT,
    ):
        if not tenant_id:
            raise AuthError("Tenant id is required")
        if not client_id or not client_secret:
            raise AuthError(
                "Client id and client secret are required for app-only access"
            )

        self.tenant_id = tenant_id
        self.client_id = client_id
        self._client_secret = client_secret
        self.authority_host = authority_host.rstrip("/")
        self.auth_timeout = auth_timeout
        self._app: msal.ConfidentialClientApplication | None = None

    @property
    def authority(self) -> str:
        return f"{self.authority_host}/{self.tenant_id}"

    @property
    def app(self) -> msal.ConfidentialClientApplication:
        """
        Get or create the MSAL confidential client for this tenant.

        Raises:
            AuthError: If the client cannot be created (e.g. unknown authority)
        """
        if self._app is None:
            try:
                self._app = msal.ConfidentialClientApplication(
                    self.client_id,
                    authority=self.authority,
                    client_credential=self._client_secret,
                    timeout=self.auth_timeout,
                )
            except ValueError as e:
                raise AuthError(
                    f"Failed to initialise authentication for tenant "
                    f"{self.tenant_id}: {e}"
                ) from e
        return self._app

    def get_token(self) -> str:
        """
        Acquire an access token, preferring the MSAL cache.

        Returns:
            Bearer access token for Microsoft Graph

        Raises:
            AuthError: If the token endpoint refuses to issue a token
        """
        result: dict[str, Any] | None = self.app.acquire_token_silent(
            GRAPH_SCOPES, account=None
        )
        if not result:
            logger.debug(f"No cached token for tenant {self.tenant_id}, requesting")
            result = self.app.acquire_token_for_client(scopes=GRAPH_SCOPES)

        if result and "access_token" in result:
            return str(result["access_token"])

        error = (result or {}).get("error", "unknown_error")
        description = (result or {}).get("error_description", "")
        logger.error(
            f"Failed to acquire token for tenant {self.tenant_id}: {error}"
        )
        raise AuthError(
            f"Failed to acquire token for tenant {self.tenant_id}: "
            f"{error} {description}".strip()
        )

    def for_tenant(self, tenant_id: str) -> "GraphAuth":
        """Return a provider for another tenant using the same app credentials."""
        return GraphAuth(
            tenant_id=tenant_id,
            client_id=self.client_id,
            client_secret=self._client_secret,
            authority_host=self.authority_host,
            auth_timeout=self.auth_timeout,
        )

    def __repr__(self) -> str:
        return f"GraphAuth(tenant_id={self.tenant_id!r}, client_id={self.client_id!r})"


def get_auth_status(credentials: dict[str, str | None]) -> dict[str, bool]:
    """
    Report which credential settings are present.

    Args:
        credentials: Output of config.resolve_credentials()

    Returns:
        Dictionary of setting name -> configured flag
    """
    return {
        "client_id": bool(credentials.get("client_id")),
        "client_secret": bool(credentials.get("client_secret")),
        "home_tenant_id": bool(credentials.get("home_tenant_id")),
    }
