"""
Shared fixtures: an in-memory SQLite store and one account per role.
"""

import itertools

import pytest

from adapters.db import DatabaseAdapter, create_engine_from_config
from core.metrics import reset_metrics
from core.passwords import hash_password
from core.rbac.resolve import reset_resolver
from core.rbac.roles import Role
from core.types import BookDraft, Caller, ContentStatus

TEST_PASSWORD = "secret-pass"

_emails = itertools.count(1)


@pytest.fixture(autouse=True)
def clean_globals():
    """Metrics and the resolver are process-wide; start every test clean."""
    reset_metrics()
    reset_resolver()
    yield
    reset_resolver()


@pytest.fixture
def engine():
    engine = create_engine_from_config({"DATABASE_URL": "sqlite://", "AUTO_CREATE_SCHEMA": True})
    yield engine
    engine.dispose()


@pytest.fixture
def adapter(engine):
    return DatabaseAdapter(engine)


@pytest.fixture
def make_user(adapter):
    """Factory: create a stored user with the given role."""
    def _make(role=Role.USER, email=None, password=TEST_PASSWORD, is_active=True):
        email = email or f"reader{next(_emails)}@example.org"
        # Low iteration count keeps the suite fast; verify_password reads it back from the hash
        user = adapter.create_user(
            email=email, password_hash=hash_password(password, iterations=1000), role=role,
        )
        if not is_active:
            user = adapter.update_user(user.id, {"is_active": False})
        return user
    return _make


@pytest.fixture
def users(make_user):
    return {
        "new_user": make_user(Role.NEW_USER),
        "user": make_user(Role.USER),
        "other_user": make_user(Role.USER),
        "admin": make_user(Role.ADMIN),
        "superadmin": make_user(Role.SUPERADMIN),
    }


@pytest.fixture
def callers(users):
    out = {name: Caller(user_id=u.id, role=u.role) for name, u in users.items()}
    out["anonymous"] = Caller(user_id=None, role=Role.ANONYMOUS)
    return out


@pytest.fixture
def make_book(adapter):
    """Factory: store a book directly, bypassing the create rules."""
    def _make(title="Book", status=ContentStatus.VISIBLE, created_by=None, **fields):
        return adapter.create_book(BookDraft(title=title, **fields), status=status, created_by=created_by)
    return _make
