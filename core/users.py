"""
User accounts and authentication.

token_version on the user record is bumped on logout, role change and
deactivation; tokens carrying an older version are rejected by the
resolver, which is how sessions are revoked.
"""

import logging
import re
from typing import Any, Dict, List, Optional

from core.errors import Conflict, InvalidCredential, NotFound, PermissionDenied, ValidationError
from core.passwords import hash_password, verify_password
from core.rbac.ownership import is_owner_or_admin, require_admin, require_super_admin
from core.rbac.roles import Role, is_admin, normalize_role, validate_role
from core.rbac.tokens import TokenCodec
from core.types import Caller, User

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 6

PROFILE_FIELDS = frozenset({"name", "bio", "password"})
ADMIN_FIELDS = frozenset({"name", "bio", "email", "role", "is_active"})


def normalize_email(email: Optional[str]) -> str:
    email = (email or "").strip().lower()
    if not EMAIL_PATTERN.match(email):
        raise ValidationError("valid email is required")
    return email


def _check_password(password: Optional[str]) -> str:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"password must be at least {MIN_PASSWORD_LENGTH} characters")
    return password


class UserService:
    """Account management for members and admins."""

    def __init__(self, adapter):
        self.adapter = adapter

    def get(self, user_id: int) -> User:
        user = self.adapter.get_user(user_id)
        if user is None:
            raise NotFound(f"user {user_id} not found")
        return user

    def list_active(self, limit: Optional[int] = None, offset: int = 0) -> List[User]:
        return self.adapter.list_users(active_only=True, limit=limit, offset=offset)

    def create(
        self,
        caller: Caller,
        email: str,
        password: str,
        name: Optional[str] = None,
        bio: Optional[str] = None,
        role=Role.NEW_USER,
    ) -> User:
        """
        Create an account on behalf of an admin.

        Creating an admin-class account requires a superadmin.
        """
        require_admin(caller.role, "create user")
        role = self._parse_role(role)
        if is_admin(role):
            require_super_admin(caller.role, "create admin user")
        return self._insert(email, password, name, bio, role)

    def update_profile(self, user_id: int, changes: Dict[str, Any], caller: Caller) -> User:
        """Owner (or admin) edits name, bio or password."""
        unknown = set(changes) - PROFILE_FIELDS
        if unknown:
            raise ValidationError(f"fields not editable: {', '.join(sorted(unknown))}")
        if not is_owner_or_admin(user_id, caller):
            raise PermissionDenied("profile of another user")
        self.get(user_id)

        changes = dict(changes)
        if "password" in changes:
            changes["password_hash"] = hash_password(_check_password(changes.pop("password")))
        return self.adapter.update_user(user_id, changes)

    def admin_update(self, user_id: int, changes: Dict[str, Any], caller: Caller) -> User:
        """
        Admin edit, including role and activation.

        Granting or revoking an admin-class role requires a superadmin.
        Role changes and deactivation revoke the user's tokens.
        """
        unknown = set(changes) - ADMIN_FIELDS
        if unknown:
            raise ValidationError(f"fields not editable: {', '.join(sorted(unknown))}")
        require_admin(caller.role, "update user")

        target = self.get(user_id)
        changes = dict(changes)
        revoke = False

        if is_admin(target.role):
            require_super_admin(caller.role, "update admin user")

        if "email" in changes:
            changes["email"] = normalize_email(changes["email"])
            if changes["email"] != target.email and self.adapter.get_user_by_email(changes["email"]):
                raise Conflict("email already registered")

        if "role" in changes:
            new_role = self._parse_role(changes["role"])
            if is_admin(new_role) or is_admin(target.role):
                require_super_admin(caller.role, "change admin role")
            changes["role"] = new_role
            revoke = revoke or new_role != target.role

        if changes.get("is_active") is False and target.is_active:
            revoke = True

        user = self.adapter.update_user(user_id, changes)
        if revoke:
            self.adapter.increment_token_version(user_id)
            user = self.get(user_id)
            logger.info(f"Tokens of user {user_id} revoked by admin {caller.user_id}")
        return user

    def soft_delete(self, user_id: int, caller: Caller) -> None:
        require_admin(caller.role, "deactivate user")
        target = self.get(user_id)
        if is_admin(target.role):
            require_super_admin(caller.role, "deactivate admin user")
        self.adapter.update_user(user_id, {"is_active": False})
        self.adapter.increment_token_version(user_id)
        logger.info(f"User {user_id} deactivated by {caller.user_id}")

    def hard_delete(self, user_id: int, caller: Caller) -> None:
        require_super_admin(caller.role, "delete user")
        if user_id == caller.user_id:
            raise ValidationError("cannot delete own account")
        if not self.adapter.delete_user(user_id):
            raise NotFound(f"user {user_id} not found")
        logger.warning(f"User {user_id} permanently deleted by {caller.user_id}")

    # ------------------------------------------------------------------

    def _insert(self, email, password, name, bio, role: Role) -> User:
        email = normalize_email(email)
        password = _check_password(password)
        if self.adapter.get_user_by_email(email) is not None:
            raise Conflict("email already registered")
        user = self.adapter.create_user(
            email=email, password_hash=hash_password(password), role=role, name=name, bio=bio,
        )
        logger.info(f"User {user.id} created with role {role.value}")
        return user

    @staticmethod
    def _parse_role(value) -> Role:
        if not validate_role(value):
            raise ValidationError(f"unknown role {value!r}")
        return normalize_role(value)


class AuthService:
    """Registration, login and logout."""

    def __init__(self, adapter, token_codec: TokenCodec):
        self.adapter = adapter
        self.token_codec = token_codec
        self.users = UserService(adapter)

    def register(self, email: str, password: str, name: Optional[str] = None, bio: Optional[str] = None) -> User:
        """Self-service signup; new accounts start as new-user."""
        return self.users._insert(email, password, name, bio, Role.NEW_USER)

    def login(self, email: str, password: str) -> str:
        """
        Exchange credentials for an access token.

        Unknown email, wrong password and deactivated account all fail the
        same way.

        Raises:
            InvalidCredential: "invalid credentials"
        """
        user = self.adapter.get_user_by_email((email or "").strip().lower())
        if user is None or not verify_password(password or "", user.password_hash) or not user.is_active:
            logger.info("Login rejected")
            raise InvalidCredential("invalid credentials")

        return self.token_codec.issue(user.id, user.role, user.token_version)

    def logout(self, caller: Caller) -> None:
        """Revoke every token issued to the caller so far."""
        if caller.is_anonymous:
            raise PermissionDenied("not logged in")
        self.adapter.increment_token_version(caller.user_id)
        logger.info(f"User {caller.user_id} logged out")

    def me(self, caller: Caller) -> User:
        if caller.is_anonymous:
            raise PermissionDenied("not logged in")
        return self.users.get(caller.user_id)

    def bootstrap_superadmin(self, email: str, password: str) -> Optional[User]:
        """Create the first superadmin if the email is not registered yet."""
        email = normalize_email(email)
        if self.adapter.get_user_by_email(email) is not None:
            return None
        user = self.users._insert(email, password, None, None, Role.SUPERADMIN)
        logger.info(f"Bootstrapped superadmin {user.id}")
        return user
