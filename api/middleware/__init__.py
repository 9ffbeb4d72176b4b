"""API middleware modules."""

from .roles import (
    RoleResolutionMiddleware,
    RequestContext,
    get_current_user,
    get_caller,
    get_request_scope,
)

__all__ = [
    "RoleResolutionMiddleware",
    "RequestContext",
    "get_current_user",
    "get_caller",
    "get_request_scope",
]
