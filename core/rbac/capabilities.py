"""
Capability constants and authorization functions.

Capabilities gate role-only decisions (who may moderate, manage the
catalog, manage users). Ownership and per-book visibility are handled in
ownership.py and visibility.py, not here.
"""

from typing import Sequence, Set
import logging

logger = logging.getLogger(__name__)

# ============================================================================
# Capability Constants
# ============================================================================

CAP_READ_CATALOG = "READ_CATALOG"
"""Browse books, categories, tags, authors and comments."""

CAP_CREATE_CONTENT = "CREATE_CONTENT"
"""Create books, comments, tags and authors; edit own content."""

CAP_MODERATE_CONTENT = "MODERATE_CONTENT"
"""Change book and comment statuses."""

CAP_MANAGE_CATALOG = "MANAGE_CATALOG"
"""Create, edit and delete categories; edit and delete tags and authors."""

CAP_MANAGE_USERS = "MANAGE_USERS"
"""List, create, edit and deactivate user accounts."""

CAP_PURGE_USERS = "PURGE_USERS"
"""Permanently delete user accounts."""

CAP_VIEW_DEBUG = "VIEW_DEBUG"
"""Access debug endpoints and metrics."""

# Complete set of all capabilities
ALL_CAPABILITIES = frozenset({
    CAP_READ_CATALOG,
    CAP_CREATE_CONTENT,
    CAP_MODERATE_CONTENT,
    CAP_MANAGE_CATALOG,
    CAP_MANAGE_USERS,
    CAP_PURGE_USERS,
    CAP_VIEW_DEBUG,
})


# ============================================================================
# Authorization Functions
# ============================================================================

def has_capability(role, capability: str) -> bool:
    """
    Check if a role has a specific capability.

    Args:
        role: Role member or role name
        capability: Capability constant (e.g., CAP_MANAGE_CATALOG)

    Returns:
        True if the role has the capability, False otherwise

    Examples:
        >>> has_capability("anonymous", CAP_READ_CATALOG)
        True
        >>> has_capability("user", CAP_MODERATE_CONTENT)
        False
        >>> has_capability("superadmin", CAP_PURGE_USERS)
        True
    """
    # Import here to avoid circular dependency
    from .roles import ROLE_CAPABILITIES, normalize_role

    if not role:
        logger.warning("has_capability called with empty role")
        return False

    if capability not in ALL_CAPABILITIES:
        logger.warning(f"Unknown capability: {capability}")
        return False

    normalized_role = normalize_role(role)

    if normalized_role is None:
        logger.warning(f"Unknown role: {role}")
        return False

    return capability in ROLE_CAPABILITIES[normalized_role]


def get_role_capabilities(role) -> Set[str]:
    """
    Get all capabilities for a role.

    Returns:
        Set of capability strings for the role, or empty set if role is unknown

    Examples:
        >>> sorted(get_role_capabilities("anonymous"))
        ['READ_CATALOG']
    """
    from .roles import ROLE_CAPABILITIES, normalize_role

    normalized_role = normalize_role(role)
    if normalized_role is None:
        return set()
    return set(ROLE_CAPABILITIES.get(normalized_role, set()))


def has_any_capability(role, capabilities: Sequence[str]) -> bool:
    """
    Check if a role has any of the specified capabilities.

    Examples:
        >>> has_any_capability("admin", [CAP_PURGE_USERS, CAP_MANAGE_USERS])
        True
        >>> has_any_capability("user", [CAP_PURGE_USERS, CAP_MANAGE_USERS])
        False
    """
    return any(has_capability(role, cap) for cap in capabilities)


def get_missing_capabilities(role, required_capabilities: Sequence[str]) -> Set[str]:
    """
    Get capabilities that a role is missing from a required set.

    Examples:
        >>> sorted(get_missing_capabilities("admin", [CAP_MANAGE_USERS, CAP_PURGE_USERS]))
        ['PURGE_USERS']
    """
    return {cap for cap in required_capabilities if not has_capability(role, cap)}
