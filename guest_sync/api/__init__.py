"""
Microsoft Graph API wrapper and its error types.
"""

from guest_sync.api.graph_api import (
    CursorExpiredError,
    GraphAPI,
    GraphAPIError,
    InvitationError,
    MalformedResponseError,
    NotFoundError,
    TransientTransportError,
)

__all__ = [
    "CursorExpiredError",
    "GraphAPI",
    "GraphAPIError",
    "InvitationError",
    "MalformedResponseError",
    "NotFoundError",
    "TransientTransportError",
]
