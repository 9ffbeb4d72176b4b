"""
Role-Based Access Control (RBAC) module.

Provides role definitions, capability constants, the status visibility
policy, the ownership guard, and caller resolution from access tokens.
"""

from .roles import (
    Role,
    ROLE_ANONYMOUS,
    ROLE_NEW_USER,
    ROLE_USER,
    ROLE_ADMIN,
    ROLE_SUPERADMIN,
    ALL_ROLES,
    ASSIGNABLE_ROLES,
    ROLE_CAPABILITIES,
    normalize_role,
    is_admin,
    is_super_admin,
    validate_role,
)

from .capabilities import (
    # Capability constants
    CAP_READ_CATALOG,
    CAP_CREATE_CONTENT,
    CAP_MODERATE_CONTENT,
    CAP_MANAGE_CATALOG,
    CAP_MANAGE_USERS,
    CAP_PURGE_USERS,
    CAP_VIEW_DEBUG,
    ALL_CAPABILITIES,
    # Functions
    has_capability,
    get_role_capabilities,
)

from .visibility import (
    RESTRICTED_STATUSES,
    VisibilityFilter,
    viewable_statuses,
    passes_restriction,
    visibility_filter,
    viewable_comment_statuses,
)

from .ownership import (
    check_ownership,
    is_owner_or_admin,
    require_admin,
    require_super_admin,
)

from .tokens import (
    TokenClaims,
    TokenCodec,
)

from .resolve import (
    # Data classes
    ResolvedUser,
    RoleResolver,
    # Functions
    configure_resolver,
    get_resolver,
    reset_resolver,
)

__all__ = [
    # Roles
    "Role",
    "ROLE_ANONYMOUS",
    "ROLE_NEW_USER",
    "ROLE_USER",
    "ROLE_ADMIN",
    "ROLE_SUPERADMIN",
    "ALL_ROLES",
    "ASSIGNABLE_ROLES",
    "ROLE_CAPABILITIES",
    "normalize_role",
    "is_admin",
    "is_super_admin",
    "validate_role",
    # Capabilities
    "CAP_READ_CATALOG",
    "CAP_CREATE_CONTENT",
    "CAP_MODERATE_CONTENT",
    "CAP_MANAGE_CATALOG",
    "CAP_MANAGE_USERS",
    "CAP_PURGE_USERS",
    "CAP_VIEW_DEBUG",
    "ALL_CAPABILITIES",
    "has_capability",
    "get_role_capabilities",
    # Visibility
    "RESTRICTED_STATUSES",
    "VisibilityFilter",
    "viewable_statuses",
    "passes_restriction",
    "visibility_filter",
    "viewable_comment_statuses",
    # Ownership
    "check_ownership",
    "is_owner_or_admin",
    "require_admin",
    "require_super_admin",
    # Tokens
    "TokenClaims",
    "TokenCodec",
    # Resolver
    "ResolvedUser",
    "RoleResolver",
    "configure_resolver",
    "get_resolver",
    "reset_resolver",
]
