"""
Role definitions and role-to-capability mappings.

Defines the closed set of catalog roles, the admin predicates every other
policy consults, and the capabilities each role carries.
"""

from enum import Enum
from typing import Dict, Optional, Set, Union
from .capabilities import (
    CAP_READ_CATALOG,
    CAP_CREATE_CONTENT,
    CAP_MODERATE_CONTENT,
    CAP_MANAGE_CATALOG,
    CAP_MANAGE_USERS,
    CAP_PURGE_USERS,
    CAP_VIEW_DEBUG,
)


# ============================================================================
# Role Constants
# ============================================================================

class Role(str, Enum):
    """Catalog roles, from least to most privileged."""

    ANONYMOUS = "anonymous"
    """Unauthenticated caller - sees visible books only."""

    NEW_USER = "new-user"
    """Freshly registered account awaiting promotion - sees no books."""

    USER = "user"
    """Regular member - sees visible and quarantined books."""

    ADMIN = "admin"
    """Moderator - sees everything and bypasses ownership checks."""

    SUPERADMIN = "superadmin"
    """Administrator who may also grant admin roles and purge users."""


ROLE_ANONYMOUS = Role.ANONYMOUS
ROLE_NEW_USER = Role.NEW_USER
ROLE_USER = Role.USER
ROLE_ADMIN = Role.ADMIN
ROLE_SUPERADMIN = Role.SUPERADMIN

# Complete set of all roles
ALL_ROLES = frozenset(Role)

# Roles that may be stored on a user record
ASSIGNABLE_ROLES = frozenset({
    ROLE_NEW_USER,
    ROLE_USER,
    ROLE_ADMIN,
    ROLE_SUPERADMIN,
})

ADMIN_ROLES = frozenset({ROLE_ADMIN, ROLE_SUPERADMIN})


# ============================================================================
# Role Predicates
# ============================================================================

def normalize_role(role: Union[Role, str, None]) -> Optional[Role]:
    """
    Convert a raw role value into a Role.

    Args:
        role: Role member, role string (case-insensitive) or None

    Returns:
        Matching Role, or None if the value is empty or unknown

    Examples:
        >>> normalize_role("Admin")
        <Role.ADMIN: 'admin'>
        >>> normalize_role("librarian") is None
        True
    """
    if isinstance(role, Role):
        return role
    if not role:
        return None
    try:
        return Role(str(role).strip().lower())
    except ValueError:
        return None


def is_admin(role: Union[Role, str, None]) -> bool:
    """True for admin and superadmin."""
    return normalize_role(role) in ADMIN_ROLES


def is_super_admin(role: Union[Role, str, None]) -> bool:
    """True for superadmin only."""
    return normalize_role(role) == ROLE_SUPERADMIN


def validate_role(role: Union[Role, str, None]) -> bool:
    """
    Check if a role can be assigned to a user record.

    Examples:
        >>> validate_role("user")
        True
        >>> validate_role("anonymous")
        False
    """
    return normalize_role(role) in ASSIGNABLE_ROLES


# ============================================================================
# Role-to-Capability Mapping
# ============================================================================

ROLE_CAPABILITIES: Dict[Role, Set[str]] = {
    # Anonymous: browse whatever the visibility policy lets through
    ROLE_ANONYMOUS: {
        CAP_READ_CATALOG,
    },

    # New user: authenticated, may contribute but sees no books yet
    ROLE_NEW_USER: {
        CAP_READ_CATALOG,
        CAP_CREATE_CONTENT,
    },

    ROLE_USER: {
        CAP_READ_CATALOG,
        CAP_CREATE_CONTENT,
    },

    # Admin: moderation and catalog/user management
    ROLE_ADMIN: {
        CAP_READ_CATALOG,
        CAP_CREATE_CONTENT,
        CAP_MODERATE_CONTENT,
        CAP_MANAGE_CATALOG,
        CAP_MANAGE_USERS,
        CAP_VIEW_DEBUG,
    },

    # Superadmin: everything an admin can do plus irreversible user removal
    ROLE_SUPERADMIN: {
        CAP_READ_CATALOG,
        CAP_CREATE_CONTENT,
        CAP_MODERATE_CONTENT,
        CAP_MANAGE_CATALOG,
        CAP_MANAGE_USERS,
        CAP_PURGE_USERS,
        CAP_VIEW_DEBUG,
    },
}
