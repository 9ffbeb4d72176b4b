"""
Tests for the ownership guard.
"""

import pytest

from core.errors import PermissionDenied
from core.rbac.ownership import (
    check_ownership,
    is_owner_or_admin,
    require_admin,
    require_super_admin,
)
from core.rbac.roles import Role
from core.types import Caller


class TestCheckOwnership:

    def test_creator_passes(self):
        check_ownership(7, 7, Role.USER)
        check_ownership(7, 7, Role.NEW_USER)

    @pytest.mark.parametrize("role", [Role.ADMIN, Role.SUPERADMIN, "admin"])
    @pytest.mark.parametrize("creator", [7, None])
    def test_admin_class_always_passes(self, role, creator):
        check_ownership(creator, 99, role)

    def test_non_creator_is_denied(self):
        with pytest.raises(PermissionDenied) as exc_info:
            check_ownership(7, 8, Role.USER)
        assert exc_info.value.message == "not the creator"

    def test_anonymous_is_denied_even_for_orphaned_resources(self):
        with pytest.raises(PermissionDenied):
            check_ownership(None, None, Role.ANONYMOUS)

    def test_unknown_role_gets_no_bypass(self):
        with pytest.raises(PermissionDenied):
            check_ownership(7, 8, "librarian")


class TestIsOwnerOrAdmin:

    @pytest.mark.parametrize("owner,caller,expected", [
        (3, Caller(3, Role.USER), True),
        (3, Caller(4, Role.USER), False),
        (3, Caller(4, Role.ADMIN), True),
        (None, Caller(None, Role.ANONYMOUS), False),
        (None, Caller(4, Role.USER), False),
    ])
    def test_matrix(self, owner, caller, expected):
        assert is_owner_or_admin(owner, caller) is expected


class TestAdminRequirements:

    def test_require_admin(self):
        require_admin(Role.ADMIN, "moderate")
        require_admin(Role.SUPERADMIN, "moderate")
        with pytest.raises(PermissionDenied):
            require_admin(Role.USER, "moderate")

    def test_require_super_admin(self):
        require_super_admin(Role.SUPERADMIN, "purge")
        with pytest.raises(PermissionDenied) as exc_info:
            require_super_admin(Role.ADMIN, "purge")
        assert "superadmin" in exc_info.value.message
