"""Repository layer.

Persistence for local accounts and their links to provider identities.
Reconciliation decisions live in `gatehouse.services`.
"""

from gatehouse.db.repos.identity_links import IdentityLinkRepository
from gatehouse.db.repos.users import UserRepository

__all__ = [
    "IdentityLinkRepository",
    "UserRepository",
]
