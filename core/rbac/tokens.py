"""
Access token issuance and verification.

Tokens are HS256 JWTs carrying the user id, role and the user's
token_version at issue time. Verification only checks the signature,
expiry and claim shapes; comparing token_version with the stored user is
the resolver's job.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import jwt

from core.errors import InvalidCredential
from .roles import Role, normalize_role

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenClaims:
    """Verified claims of an access token."""
    user_id: int
    role: Role
    token_version: int


class TokenCodec:
    """Issues and verifies signed access tokens."""

    def __init__(self, secret: str, algorithm: str = "HS256", expire_minutes: int = 43200):
        if not secret:
            raise ValueError("TokenCodec requires a non-empty secret")
        self.secret = secret
        self.algorithm = algorithm
        self.expire_minutes = expire_minutes

    def issue(self, user_id: int, role, token_version: int) -> str:
        """
        Issue a signed token.

        Args:
            user_id: Subject user id
            role: User's role at issue time
            token_version: User's current token_version

        Returns:
            Encoded JWT string
        """
        now = datetime.now(timezone.utc)
        normalized = normalize_role(role)
        payload: Dict[str, Any] = {
            "user_id": user_id,
            "role": normalized.value if normalized else str(role),
            "token_version": token_version,
            "iat": now,
            "exp": now + timedelta(minutes=self.expire_minutes),
        }
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def verify(self, token: str) -> TokenClaims:
        """
        Verify a token and extract its claims.

        Raises:
            InvalidCredential: Bad signature, expired, or malformed claims
        """
        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                options={"verify_exp": True, "require": ["exp"]},
            )
        except jwt.ExpiredSignatureError:
            logger.warning("Access token has expired")
            raise InvalidCredential("token expired")
        except jwt.InvalidTokenError as e:
            logger.warning(f"Invalid access token: {type(e).__name__}")
            raise InvalidCredential("token invalid")

        user_id = payload.get("user_id")
        token_version = payload.get("token_version")
        role = normalize_role(payload.get("role"))

        if not isinstance(user_id, int) or isinstance(user_id, bool):
            raise InvalidCredential("token missing user_id")
        if not isinstance(token_version, int) or isinstance(token_version, bool):
            raise InvalidCredential("token missing token_version")
        if role is None or role == Role.ANONYMOUS:
            raise InvalidCredential("token carries unknown role")

        return TokenClaims(user_id=user_id, role=role, token_version=token_version)
