"""
FastAPI middleware for caller resolution and request context population.

Resolves the caller from the Authorization header and attaches it, together
with the request's deadline scope, to the request state for route handlers.
"""

import logging
from typing import Callable, Optional
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from api.errors import error_body, status_for
from core.errors import CatalogError, CredentialError
from core.metrics import record_error, record_rbac_resolution, record_role_distribution
from core.rbac.resolve import get_resolver, ResolvedUser
from core.rbac.roles import Role
from core.scope import RequestScope
from core.types import Caller

logger = logging.getLogger(__name__)


# ============================================================================
# Request State Extensions
# ============================================================================

class RequestContext:
    """
    Request context for caller identity and role.

    Attached to request.state by the RoleResolutionMiddleware.
    """

    def __init__(self, user: ResolvedUser):
        self.user_id: Optional[int] = user.user_id
        self.email: Optional[str] = user.email
        self.role: Role = user.role
        self.auth_method: str = user.auth_method
        self.is_authenticated: bool = user.is_authenticated
        self.caller: Caller = user.caller

    def __repr__(self) -> str:
        return (
            f"RequestContext(user_id={self.user_id}, "
            f"role={self.role.value}, auth_method={self.auth_method})"
        )


# ============================================================================
# Middleware
# ============================================================================

class RoleResolutionMiddleware(BaseHTTPMiddleware):
    """
    Middleware to resolve the caller from request headers.

    - No Authorization header: anonymous caller
    - Valid bearer token for an active user with a current token_version:
      that user, with the role stored on the user record
    - Anything else: 401 before the route runs

    Attaches the following to request.state:
    - ctx: RequestContext
    - scope: RequestScope carrying the request deadline
    """

    def __init__(self, app: ASGIApp, timeout_ms: Optional[int] = None):
        super().__init__(app)
        self.timeout_ms = timeout_ms

    async def dispatch(
        self,
        request: Request,
        call_next: Callable,
    ) -> Response:
        authorization = request.headers.get("Authorization")

        try:
            user = get_resolver().resolve_from_request(authorization_header=authorization)
        except CredentialError as e:
            record_rbac_resolution(success=False, auth_method="jwt")
            logger.info(
                f"Rejected credential for {request.method} {request.url.path}: "
                f"{type(e).__name__}"
            )
            return JSONResponse(status_code=401, content={"detail": e.public_message})
        except CatalogError as e:
            # Store failures during the user lookup get the same mapping as route errors
            record_rbac_resolution(success=False, auth_method="jwt")
            record_error(type(e).__name__)
            logger.error(f"Caller resolution failed for {request.method} {request.url.path}: {e.message}")
            return JSONResponse(status_code=status_for(e), content=error_body(e))

        record_rbac_resolution(success=True, auth_method=user.auth_method)
        record_role_distribution(user.role.value)

        request.state.ctx = RequestContext(user)
        scope = RequestScope.with_timeout(self.timeout_ms)
        request.state.scope = scope

        logger.debug(
            f"Resolved caller for {request.method} {request.url.path}: "
            f"user_id={user.user_id}, role={user.role.value}, method={user.auth_method}"
        )

        try:
            return await call_next(request)
        except BaseException:
            # Store calls still running for this request must stop
            scope.cancel()
            raise


# ============================================================================
# Helper Functions
# ============================================================================

def get_current_user(request: Request) -> RequestContext:
    """
    Get current caller context from request.

    Raises:
        AttributeError: If middleware has not been applied
    """
    if not hasattr(request.state, "ctx"):
        raise AttributeError(
            "Request state does not have 'ctx' attribute. "
            "Ensure RoleResolutionMiddleware is configured."
        )

    return request.state.ctx


def get_caller(request: Request) -> Caller:
    """Caller identity for the service layer."""
    return get_current_user(request).caller


def get_request_scope(request: Request) -> RequestScope:
    """Deadline scope of the request; unbounded when the middleware did not set one."""
    scope = getattr(request.state, "scope", None)
    return scope if scope is not None else RequestScope()

