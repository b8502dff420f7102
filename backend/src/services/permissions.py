"""
Role-based permission checks for lifecycle and registry operations.

Role hierarchy (lowest to highest):
- viewer: read only
- requester: viewer + create and manage own reservations
- approver: requester + approve/reject reservations and edit requests,
  restore deleted events, manage locations
- admin: approver + everything else

An Actor is the caller identity attached to every mutating call.
"""

from dataclasses import dataclass
from typing import Optional

from backend.src.services.exceptions import PermissionDeniedError


ROLE_HIERARCHY = {
    "viewer": 0,
    "requester": 1,
    "approver": 2,
    "admin": 3,
}

SYSTEM_USER_ID = "system:sync"


@dataclass(frozen=True)
class Actor:
    """
    Identity of the caller performing an operation.

    Attributes:
        user_id: Stable user identifier
        email: User e-mail (recorded in audit entries)
        role: viewer | requester | approver | admin
    """

    user_id: str
    email: Optional[str] = None
    role: str = "requester"

    @property
    def level(self) -> int:
        return ROLE_HIERARCHY.get(self.role, 0)

    @property
    def is_approver(self) -> bool:
        return self.level >= ROLE_HIERARCHY["approver"]

    def has_role(self, role: str) -> bool:
        """Check if this actor's role is at least ``role``."""
        return self.level >= ROLE_HIERARCHY[role]


def system_actor() -> Actor:
    """Actor used for changes made by reconciliation."""
    return Actor(user_id=SYSTEM_USER_ID, email=None, role="admin")


def resolve_role(role: Optional[str], email: Optional[str], admin_domain: str) -> str:
    """
    Determine the effective role for a caller.

    Priority: explicit valid role, then admin e-mail domain, then requester.
    """
    if role and role.lower() in ROLE_HIERARCHY:
        return role.lower()
    if email and admin_domain and email.lower().endswith(admin_domain):
        return "admin"
    return "requester"


def require_role(actor: Actor, role: str, action: str) -> None:
    """
    Raise PermissionDeniedError unless the actor has at least ``role``.
    """
    if not actor.has_role(role):
        raise PermissionDeniedError(
            f"{role.capitalize()} role required to {action}",
            required_role=role,
        )


def require_owner_or_approver(actor: Actor, owner_id: Optional[str], action: str) -> None:
    """
    Raise PermissionDeniedError unless the actor owns the record or is an approver.
    """
    if actor.is_approver:
        return
    if owner_id is not None and actor.user_id == owner_id:
        return
    raise PermissionDeniedError(
        f"Only the owner or an approver can {action}",
        required_role="approver",
    )


def require_owner(actor: Actor, owner_id: Optional[str], action: str) -> None:
    """Raise PermissionDeniedError unless the actor owns the record."""
    if owner_id is None or actor.user_id != owner_id:
        raise PermissionDeniedError(f"Only the owner can {action}")
