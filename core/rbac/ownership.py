"""
Ownership guard for mutations.

Admin-class callers bypass ownership; everyone else must be the creator of
the resource. Callers fetch only the creator id (see
DatabaseAdapter.get_book_meta) before asking.
"""

import logging
from typing import Optional

from core.errors import PermissionDenied
from core.types import Caller
from .roles import is_admin, is_super_admin

logger = logging.getLogger(__name__)


def is_owner_or_admin(owner_id: Optional[int], caller: Caller) -> bool:
    """
    Check whether a caller may mutate a resource owned by owner_id.

    An anonymous caller never owns anything, including resources whose
    creator has been removed.

    Examples:
        >>> from core.rbac.roles import Role
        >>> is_owner_or_admin(3, Caller(user_id=3, role=Role.USER))
        True
        >>> is_owner_or_admin(None, Caller(user_id=None, role=Role.ANONYMOUS))
        False
        >>> is_owner_or_admin(3, Caller(user_id=9, role=Role.ADMIN))
        True
    """
    if is_admin(caller.role):
        return True
    return caller.user_id is not None and owner_id == caller.user_id


def check_ownership(creator_id: Optional[int], caller_id: Optional[int], caller_role) -> None:
    """
    Permit a mutation or raise PermissionDenied.

    Args:
        creator_id: Creator of the resource being mutated
        caller_id: Requesting user id (None for anonymous)
        caller_role: Requesting user's role

    Raises:
        PermissionDenied: Caller is neither the creator nor admin-class
    """
    if is_admin(caller_role):
        return

    if caller_id is None or creator_id != caller_id:
        logger.info(
            f"Ownership check failed: creator={creator_id}, caller={caller_id}, role={caller_role}"
        )
        raise PermissionDenied("not the creator")


def require_admin(role, action: str) -> None:
    """Raise PermissionDenied unless role is admin-class."""
    if not is_admin(role):
        logger.info(f"Admin-only action refused: action={action}, role={role}")
        raise PermissionDenied(f"{action} requires admin")


def require_super_admin(role, action: str) -> None:
    """Raise PermissionDenied unless role is superadmin."""
    if not is_super_admin(role):
        logger.info(f"Superadmin-only action refused: action={action}, role={role}")
        raise PermissionDenied(f"{action} requires superadmin")
