"""App-only authentication against Entra ID tenants."""

from guest_sync.auth.graph_auth import AuthError, GraphAuth, get_auth_status

__all__ = ["AuthError", "GraphAuth", "get_auth_status"]
