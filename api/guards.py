"""
API endpoint guards for capability-based authorization.

Provides decorators to protect FastAPI routes based on RBAC capabilities.
Guards answer role-only questions; ownership and moderation rules that
depend on the resource are enforced by the services.
"""

import inspect
import logging
from functools import wraps
from typing import Callable, Any, Optional, Sequence
from fastapi import Request, HTTPException, status

from core.rbac.capabilities import get_missing_capabilities, has_any_capability
from api.middleware.roles import RequestContext, get_current_user
from core.metrics import record_rbac_check, audit_rbac_denial

logger = logging.getLogger(__name__)


# ============================================================================
# Guard Decorators
# ============================================================================

def require(capability: str) -> Callable:
    """
    Decorator to require a specific capability for a FastAPI route.

    Checks if the caller's role (from request.state.ctx) has the required
    capability. If not, raises HTTPException with 403 status.

    Args:
        capability: Capability constant (e.g., CAP_MANAGE_CATALOG)

    Returns:
        Decorator function

    Raises:
        HTTPException: 403 if caller lacks required capability

    Examples:
        >>> from api.guards import require
        >>> from core.rbac import CAP_MANAGE_CATALOG
        >>>
        >>> @router.delete("/tags/{tag_id}")
        >>> @require(CAP_MANAGE_CATALOG)
        >>> def delete_tag(request: Request, tag_id: int):
        >>>     # Only admin-class callers reach this point
        >>>     ...
    """
    return _guard((capability,), any_of=False)


def require_any(*capabilities: str) -> Callable:
    """
    Decorator to require ANY of the specified capabilities.

    Examples:
        >>> @router.get("/comments")
        >>> @require_any(CAP_MODERATE_CONTENT, CAP_MANAGE_USERS)
        >>> def list_comments(request: Request):
        >>>     ...
    """
    return _guard(capabilities, any_of=True)


def _guard(capabilities: Sequence[str], any_of: bool) -> Callable:
    label = capabilities[0] if len(capabilities) == 1 else "|".join(capabilities)

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def async_wrapper(*args, **kwargs) -> Any:
            _authorize(_extract_request_from_args(args, kwargs), capabilities, any_of, label)
            return await func(*args, **kwargs)

        @wraps(func)
        def sync_wrapper(*args, **kwargs) -> Any:
            _authorize(_extract_request_from_args(args, kwargs), capabilities, any_of, label)
            return func(*args, **kwargs)

        if inspect.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


def _authorize(
    request: Optional[Request],
    capabilities: Sequence[str],
    any_of: bool,
    label: str,
) -> RequestContext:
    if request is None:
        logger.error(f"@require({label}) decorator requires Request parameter")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error: Request not found"
        )

    try:
        ctx = get_current_user(request)
    except AttributeError:
        logger.error("Request context not available. Is RoleResolutionMiddleware configured?")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error: User context not available"
        )

    if any_of:
        allowed = has_any_capability(ctx.role, capabilities)
    else:
        allowed = not get_missing_capabilities(ctx.role, capabilities)
    # Label by the route template so ids in the path do not create new series
    matched = request.scope.get("route")
    route = getattr(matched, "path", request.url.path)

    record_rbac_check(
        allowed=allowed,
        capability=label,
        role=ctx.role.value,
        route=route,
    )

    if not allowed:
        audit_rbac_denial(
            capability=label,
            user_id=ctx.user_id,
            role=ctx.role.value,
            route=route,
            method=request.method,
            metadata={"is_authenticated": ctx.is_authenticated}
        )

        logger.warning(
            f"Access denied: user_id={ctx.user_id}, "
            f"role={ctx.role.value}, required_capability={label}"
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "error": "forbidden",
                "capability": label,
                "message": f"Capability '{label}' required",
            }
        )

    logger.debug(
        f"Access granted: user_id={ctx.user_id}, "
        f"role={ctx.role.value}, capability={label}"
    )
    return ctx


# ============================================================================
# Helper Functions
# ============================================================================

def _extract_request_from_args(args: tuple, kwargs: dict) -> Optional[Request]:
    """
    Extract Request object from function arguments.

    Returns:
        Request object if found, None otherwise
    """
    if 'request' in kwargs:
        return kwargs['request']

    for arg in args:
        if isinstance(arg, Request):
            return arg

    return None
