"""
Caller resolution from request credentials.

Resolves the caller from the Authorization header:
- Bearer access token, checked against the stored user's token_version
- Anonymous fallback when no credential is presented

A presented but untrusted credential is an error, never a silent
downgrade to anonymous.
"""

import logging
from typing import Any, Callable, Dict, Optional
from dataclasses import dataclass, field

from core.errors import InvalidCredential, StaleCredential
from core.types import Caller, User
from .roles import Role
from .tokens import TokenCodec

logger = logging.getLogger(__name__)

UserLookup = Callable[[int], Optional[User]]


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class ResolvedUser:
    """Resolved caller identity and role."""
    user_id: Optional[int]
    email: Optional[str]
    role: Role
    auth_method: str  # 'jwt', 'anonymous'
    token_version: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_anonymous(self) -> bool:
        """Check if this is an anonymous caller."""
        return self.auth_method == 'anonymous'

    @property
    def is_authenticated(self) -> bool:
        """Check if caller is authenticated (not anonymous)."""
        return not self.is_anonymous

    @property
    def caller(self) -> Caller:
        """Identity handed to the service layer."""
        return Caller(user_id=self.user_id, role=self.role)


# ============================================================================
# Role Resolver
# ============================================================================

class RoleResolver:
    """
    Resolves caller identity from the Authorization header.

    The role is taken from the stored user, not from the token, so a role
    change is effective immediately; role changes also bump token_version
    which rejects the old token outright.
    """

    def __init__(self, token_codec: TokenCodec, user_lookup: UserLookup):
        """
        Initialize role resolver.

        Args:
            token_codec: Verifies access tokens
            user_lookup: Fetches a user by id (None when absent)
        """
        self.token_codec = token_codec
        self.user_lookup = user_lookup

    def resolve_from_request(self, authorization_header: Optional[str] = None) -> ResolvedUser:
        """
        Resolve the caller from request headers.

        Args:
            authorization_header: Authorization header value ("Bearer <token>")

        Returns:
            ResolvedUser for the token's user, or anonymous without a header

        Raises:
            InvalidCredential: Malformed header, bad token, missing or inactive user
            StaleCredential: Token issued before the user's last logout or role change
        """
        if not authorization_header:
            logger.debug("No credential presented, resolving anonymous caller")
            return self._resolve_anonymous()

        return self._resolve_from_jwt(authorization_header)

    def _resolve_from_jwt(self, authorization_header: str) -> ResolvedUser:
        scheme, _, token = authorization_header.partition(" ")
        if scheme.lower() != "bearer":
            logger.warning("Invalid Authorization header format (missing 'Bearer')")
            raise InvalidCredential("malformed authorization header")

        token = token.strip()
        if not token:
            logger.warning("Empty access token")
            raise InvalidCredential("empty token")

        claims = self.token_codec.verify(token)

        user = self.user_lookup(claims.user_id)
        if user is None or not user.is_active:
            logger.warning(f"Token presented for unknown or inactive user: user_id={claims.user_id}")
            raise InvalidCredential("user unavailable")

        if user.token_version != claims.token_version:
            logger.info(
                f"Stale token rejected: user_id={user.id}, "
                f"token_version={claims.token_version}, current={user.token_version}"
            )
            raise StaleCredential("token revoked")

        logger.debug(f"Resolved user from JWT: user_id={user.id}, role={user.role}")

        return ResolvedUser(
            user_id=user.id,
            email=user.email,
            role=Role(user.role),
            auth_method='jwt',
            token_version=user.token_version,
            metadata={'token_role': claims.role.value},
        )

    def _resolve_anonymous(self) -> ResolvedUser:
        return ResolvedUser(
            user_id=None,
            email=None,
            role=Role.ANONYMOUS,
            auth_method='anonymous',
        )


# ============================================================================
# Global Resolver Instance
# ============================================================================

# Global resolver instance (configured at app startup)
_global_resolver: Optional[RoleResolver] = None


def get_resolver() -> RoleResolver:
    """
    Get the global role resolver instance.

    Raises:
        RuntimeError: If resolver has not been configured
    """
    if _global_resolver is None:
        raise RuntimeError("Role resolver has not been configured")
    return _global_resolver


def configure_resolver(token_codec: TokenCodec, user_lookup: UserLookup) -> RoleResolver:
    """
    Configure the global role resolver.

    Returns:
        Configured RoleResolver instance
    """
    global _global_resolver

    _global_resolver = RoleResolver(token_codec=token_codec, user_lookup=user_lookup)

    logger.info("Configured global role resolver")
    return _global_resolver


def reset_resolver():
    """Reset the global resolver (useful for testing)."""
    global _global_resolver
    _global_resolver = None
