"""Role-based authorization rules.

Handlers call these before invoking the core so the core operations stay
free of role checks. Ownership checks that belong to a state transition
(returning a loan) live with that transition instead.
"""
from typing import Dict, FrozenSet, Optional, Tuple, Union

from errors import ForbiddenError
from models import Role

STAFF = frozenset({Role.LIBRARIAN, Role.ADMIN})
ADMIN_ONLY = frozenset({Role.ADMIN})
EVERYONE = frozenset(Role)

ACTION_ROLES: Dict[str, FrozenSet[Role]] = {
    "book:create": STAFF,
    "book:update": STAFF,
    "book:delete": STAFF,
    "borrow:create": EVERYONE,
    "borrow:return": EVERYONE,
    "borrow:list_all": STAFF,
    "borrow:delete": ADMIN_ONLY,
    "fine:create": STAFF,
    "fine:update": STAFF,
    "fine:delete": ADMIN_ONLY,
    "user:list": STAFF,
    "user:create": ADMIN_ONLY,
    "user:update": ADMIN_ONLY,
    "user:delete": ADMIN_ONLY,
    "wishlist:manage": EVERYONE,
}


def is_allowed(role: Union[Role, str], action: str) -> bool:
    allowed = ACTION_ROLES.get(action)
    if allowed is None:
        raise ValueError(f"Unknown action: {action}")
    return Role.parse(role) in allowed


def require(role: Union[Role, str], action: str) -> None:
    if not is_allowed(role, action):
        raise ForbiddenError(f"Role {Role.parse(role).value} may not perform {action}")


def can_delete_user(requester_id: str, requester_role: Union[Role, str],
                    target_id: str, target_role: Union[Role, str]) -> Tuple[bool, Optional[str]]:
    """Decide whether requester may delete target. Returns (allowed, reason)."""
    requester_role = Role.parse(requester_role)
    target_role = Role.parse(target_role)

    if not is_allowed(requester_role, "user:delete"):
        return False, "Only administrators can delete users"
    if requester_id == target_id:
        return False, "Cannot delete your own account"
    if target_role is Role.ADMIN and requester_role is not Role.ADMIN:
        return False, "Only administrators can delete admin accounts"
    if target_role is Role.LIBRARIAN and requester_role is Role.LIBRARIAN:
        return False, "Only administrators can delete librarian accounts"
    return True, None


def authorize_user_deletion(requester_id: str, requester_role: Union[Role, str],
                            target_id: str, target_role: Union[Role, str]) -> None:
    allowed, reason = can_delete_user(requester_id, requester_role, target_id, target_role)
    if not allowed:
        raise ForbiddenError(reason)
