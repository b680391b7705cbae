"""
guest_sync - One-way group membership mirroring into a partner tenant.

Walks the incremental membership feed of a home-tenant group and issues
silent guest invitations in a partner tenant for newly added members.
"""

__version__ = "0.1.0"
