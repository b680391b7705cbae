"""
Member data model for group guest synchronization.

Provides the records that flow through a run:
- ChangeRecord variants (Added / Removed) decided once by classification
- GuestCandidate built from a resolved directory profile
- RemovalRecord kept for reporting
- InvitationRequest / InvitationResult for the provisioning step
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union

# Deliberately loose: the service does the real address validation
_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

DEFAULT_REDIRECT_URL_TEMPLATE = "https://myapps.microsoft.com/?tenantid={tenant_id}"


def render_redirect_url(template: str, tenant_id: str) -> str:
    """
    Fill ``{tenant_id}`` into a redirect URL template.

    Raises:
        ValueError: If the template has other placeholders or bad braces
    """
    try:
        return template.format(tenant_id=tenant_id)
    except (KeyError, IndexError, ValueError) as e:
        raise ValueError(
            f"Cannot render redirect URL template {template!r}: {e!r}"
        ) from e


@dataclass(frozen=True)
class Added:
    """A member that joined the group (or appeared in a baseline)."""

    member_id: str
    object_type: Optional[str] = None


@dataclass(frozen=True)
class Removed:
    """A member that left the group, with the reason the feed gave."""

    member_id: str
    reason: Optional[str] = None
    object_type: Optional[str] = None


ChangeRecord = Union[Added, Removed]


@dataclass
class GuestCandidate:
    """
    Directory profile of an added member.

    Attributes:
        id: Directory object id in the home tenant
        user_principal_name: Sign-in name in the home tenant
        mail: Primary SMTP address; required for an invitation
        display_name: Display name shown in the partner tenant
        given_name: First name
        surname: Last name
    """

    id: str
    user_principal_name: Optional[str] = None
    mail: Optional[str] = None
    display_name: Optional[str] = None
    given_name: Optional[str] = None
    surname: Optional[str] = None

    @classmethod
    def from_api_response(cls, user: dict[str, Any]) -> "GuestCandidate":
        """
        Create a GuestCandidate from a Graph user object.

        Example API response structure::

            {
                'id': '6e7b768e-...',
                'userPrincipalName': 'adele@contoso.com',
                'mail': 'adele@contoso.com',
                'displayName': 'Adele Vance',
                'givenName': 'Adele',
                'surname': 'Vance'
            }

        Raises:
            ValueError: If the object has no id
        """
        member_id = user.get("id")
        if not member_id:
            raise ValueError("User object has no id")

        mail = user.get("mail")
        if isinstance(mail, str):
            mail = mail.strip() or None

        return cls(
            id=member_id,
            user_principal_name=user.get("userPrincipalName"),
            mail=mail,
            display_name=user.get("displayName"),
            given_name=user.get("givenName"),
            surname=user.get("surname"),
        )

    @property
    def is_inviteable(self) -> bool:
        """True when the candidate has a mail address to invite."""
        return bool(self.mail)

    def to_report_row(self) -> dict[str, str]:
        """Row for the added-members CSV report."""
        return {
            "id": self.id,
            "userPrincipalName": self.user_principal_name or "",
            "mail": self.mail or "",
            "displayName": self.display_name or "",
            "givenName": self.given_name or "",
            "surname": self.surname or "",
        }


@dataclass
class RemovalRecord:
    """A removed member, kept for reporting only."""

    id: str
    reason: Optional[str] = None

    @classmethod
    def from_change(cls, record: Removed) -> "RemovalRecord":
        return cls(id=record.member_id, reason=record.reason)

    def to_report_row(self) -> dict[str, str]:
        return {"id": self.id, "reason": self.reason or ""}


@dataclass(frozen=True)
class InvitationRequest:
    """
    A silent guest invitation for one candidate.

    ``send_email`` is always False: the invited user is told out-of-band.
    """

    invited_email: str
    invited_display_name: str
    redirect_url: str
    send_email: bool = False

    @classmethod
    def from_candidate(
        cls,
        candidate: GuestCandidate,
        partner_tenant_id: str,
        redirect_url_template: str = DEFAULT_REDIRECT_URL_TEMPLATE,
    ) -> "InvitationRequest":
        """
        Build the request for a candidate.

        Raises:
            ValueError: If the candidate has no mail, the mail is malformed or
                the redirect template cannot be rendered
        """
        if not candidate.mail:
            raise ValueError(f"Candidate {candidate.id} has no mail address")
        if not _EMAIL_PATTERN.match(candidate.mail):
            raise ValueError(f"Malformed mail address: {candidate.mail!r}")

        return cls(
            invited_email=candidate.mail,
            invited_display_name=candidate.display_name or candidate.mail,
            redirect_url=render_redirect_url(redirect_url_template, partner_tenant_id),
        )

    def to_api_format(self) -> dict[str, Any]:
        """Convert to the Graph invitation payload."""
        return {
            "invitedUserEmailAddress": self.invited_email,
            "invitedUserDisplayName": self.invited_display_name,
            "inviteRedirectUrl": self.redirect_url,
            "sendInvitationMessage": self.send_email,
        }


class InvitationStatus(str, Enum):
    """Outcome of processing one candidate in the invitation step."""

    INVITED = "invited"
    SKIPPED_NO_MAIL = "skipped_no_mail"
    SKIPPED_ALREADY_INVITED = "skipped_already_invited"
    FAILED = "failed"


@dataclass
class InvitationResult:
    """Per-candidate result of the invitation step."""

    member_id: str
    status: InvitationStatus
    invited_email: Optional[str] = None
    invited_user_id: Optional[str] = None
    redeem_url: Optional[str] = None
    error: Optional[str] = None
