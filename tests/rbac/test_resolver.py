"""
Tests for access tokens, caller resolution and the resolution middleware.

Covers JWT verification, token_version revocation and the anonymous
fallback.
"""

import pytest
import jwt
from datetime import datetime, timedelta, timezone
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from core.errors import InvalidCredential, RequestCancelled, StaleCredential, StorageError
from core.metrics import get_counter
from core.rbac.resolve import (
    RoleResolver,
    ResolvedUser,
    configure_resolver,
    get_resolver,
    reset_resolver,
)
from core.rbac.roles import Role
from core.rbac.tokens import TokenCodec
from core.types import User
from api.middleware.roles import (
    RoleResolutionMiddleware,
    RequestContext,
    get_current_user,
    get_request_scope,
)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def jwt_secret():
    """JWT secret for testing."""
    return "test-secret-key-12345"


@pytest.fixture
def codec(jwt_secret):
    return TokenCodec(jwt_secret)


@pytest.fixture
def user_store():
    """In-memory users keyed by id."""
    return {
        1: User(id=1, email="reader@example.org", password_hash="x", role=Role.USER, token_version=0),
        2: User(id=2, email="mod@example.org", password_hash="x", role=Role.ADMIN, token_version=3),
        3: User(id=3, email="gone@example.org", password_hash="x", role=Role.USER, is_active=False),
    }


@pytest.fixture
def resolver(codec, user_store):
    return RoleResolver(token_codec=codec, user_lookup=user_store.get)


def bearer(token: str) -> str:
    return f"Bearer {token}"


# ============================================================================
# Token Codec
# ============================================================================

class TestTokenCodec:

    def test_issue_and_verify(self, codec):
        claims = codec.verify(codec.issue(1, Role.USER, 4))
        assert claims.user_id == 1
        assert claims.role is Role.USER
        assert claims.token_version == 4

    def test_empty_secret_rejected(self):
        with pytest.raises(ValueError):
            TokenCodec("")

    def test_wrong_secret(self, codec):
        token = TokenCodec("another-secret").issue(1, Role.USER, 0)
        with pytest.raises(InvalidCredential):
            codec.verify(token)

    def test_expired_token(self, codec, jwt_secret):
        past = datetime.now(timezone.utc) - timedelta(hours=2)
        token = jwt.encode(
            {"user_id": 1, "role": "user", "token_version": 0, "iat": past, "exp": past + timedelta(hours=1)},
            jwt_secret,
            algorithm="HS256",
        )
        with pytest.raises(InvalidCredential) as exc_info:
            codec.verify(token)
        assert exc_info.value.message == "token expired"

    def test_token_without_expiry(self, codec, jwt_secret):
        token = jwt.encode({"user_id": 1, "role": "user", "token_version": 0}, jwt_secret, algorithm="HS256")
        with pytest.raises(InvalidCredential):
            codec.verify(token)

    @pytest.mark.parametrize("claims", [
        {"user_id": "1", "role": "user", "token_version": 0},
        {"user_id": 1, "role": "user"},
        {"user_id": 1, "role": "librarian", "token_version": 0},
        {"user_id": 1, "role": "anonymous", "token_version": 0},
    ])
    def test_malformed_claims(self, codec, jwt_secret, claims):
        exp = datetime.now(timezone.utc) + timedelta(hours=1)
        token = jwt.encode({**claims, "exp": exp}, jwt_secret, algorithm="HS256")
        with pytest.raises(InvalidCredential):
            codec.verify(token)

    def test_garbage(self, codec):
        with pytest.raises(InvalidCredential):
            codec.verify("not-a-jwt")


# ============================================================================
# Resolver
# ============================================================================

class TestRoleResolver:

    def test_no_header_is_anonymous(self, resolver):
        user = resolver.resolve_from_request(None)
        assert user.is_anonymous
        assert user.role is Role.ANONYMOUS
        assert user.caller.user_id is None

    def test_valid_token(self, resolver, codec):
        user = resolver.resolve_from_request(bearer(codec.issue(2, Role.ADMIN, 3)))
        assert user.user_id == 2
        assert user.role is Role.ADMIN
        assert user.auth_method == "jwt"
        assert user.is_authenticated

    def test_role_comes_from_stored_user(self, resolver, codec):
        # Token claims admin, the record says user
        user = resolver.resolve_from_request(bearer(codec.issue(1, Role.ADMIN, 0)))
        assert user.role is Role.USER

    def test_stale_token_version(self, resolver, codec, user_store):
        token = codec.issue(1, Role.USER, 0)
        user_store[1].token_version = 1  # logout
        with pytest.raises(StaleCredential):
            resolver.resolve_from_request(bearer(token))

    def test_inactive_user(self, resolver, codec):
        with pytest.raises(InvalidCredential):
            resolver.resolve_from_request(bearer(codec.issue(3, Role.USER, 0)))

    def test_unknown_user(self, resolver, codec):
        with pytest.raises(InvalidCredential):
            resolver.resolve_from_request(bearer(codec.issue(42, Role.USER, 0)))

    @pytest.mark.parametrize("header", ["Token abc", "Bearer", "Bearer   ", "Basic dXNlcjpwYXNz"])
    def test_malformed_header(self, resolver, header):
        with pytest.raises(InvalidCredential):
            resolver.resolve_from_request(header)

    def test_scheme_is_case_insensitive(self, resolver, codec):
        user = resolver.resolve_from_request(f"bearer {codec.issue(1, Role.USER, 0)}")
        assert user.user_id == 1


class TestGlobalResolver:

    def test_unconfigured(self):
        reset_resolver()
        with pytest.raises(RuntimeError):
            get_resolver()

    def test_configure_and_reset(self, codec, user_store):
        configured = configure_resolver(codec, user_store.get)
        assert get_resolver() is configured
        reset_resolver()
        with pytest.raises(RuntimeError):
            get_resolver()


# ============================================================================
# Middleware
# ============================================================================

@pytest.fixture
def client(codec, user_store):
    configure_resolver(codec, user_store.get)

    app = FastAPI()
    app.add_middleware(RoleResolutionMiddleware, timeout_ms=2000)

    @app.get("/whoami")
    def whoami(request: Request):
        ctx = get_current_user(request)
        scope = get_request_scope(request)
        return {
            "user_id": ctx.user_id,
            "role": ctx.role.value,
            "authenticated": ctx.is_authenticated,
            "has_deadline": scope.deadline is not None,
        }

    return TestClient(app)


class TestResolutionMiddleware:

    def test_anonymous_request(self, client):
        body = client.get("/whoami").json()
        assert body == {"user_id": None, "role": "anonymous", "authenticated": False, "has_deadline": True}

    def test_authenticated_request(self, client, codec):
        resp = client.get("/whoami", headers={"Authorization": bearer(codec.issue(1, Role.USER, 0))})
        assert resp.status_code == 200
        assert resp.json()["user_id"] == 1
        assert resp.json()["role"] == "user"

    def test_invalid_token_is_401_not_anonymous(self, client):
        resp = client.get("/whoami", headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 401
        assert resp.json() == {"detail": "unauthorized"}

    def test_stale_token_is_401(self, client, codec, user_store):
        token = codec.issue(2, Role.ADMIN, 3)
        user_store[2].token_version = 4
        resp = client.get("/whoami", headers={"Authorization": bearer(token)})
        assert resp.status_code == 401

    def test_request_context_repr(self):
        ctx = RequestContext(ResolvedUser(user_id=5, email=None, role=Role.USER, auth_method="jwt"))
        assert "user_id=5" in repr(ctx)
        assert ctx.caller.role is Role.USER


class TestMiddlewareFailures:

    def test_store_failure_during_lookup_is_mapped(self, codec):
        def broken_lookup(user_id):
            raise StorageError("get_user")

        configure_resolver(codec, broken_lookup)
        app = FastAPI()
        app.add_middleware(RoleResolutionMiddleware)

        @app.get("/whoami")
        def whoami(request: Request):
            return {"ok": True}

        resp = TestClient(app).get("/whoami", headers={"Authorization": bearer(codec.issue(1, Role.USER, 0))})
        assert resp.status_code == 500
        assert resp.json() == {"detail": "storage error"}
        assert get_counter("errors_total", {"error_type": "StorageError"}) == 1
        assert get_counter("rbac.resolutions", {"success": "false"}) == 1

    def test_scope_is_cancelled_when_the_route_crashes(self, codec, user_store):
        configure_resolver(codec, user_store.get)
        app = FastAPI()
        app.add_middleware(RoleResolutionMiddleware, timeout_ms=2000)
        seen = []

        @app.get("/crash")
        def crash(request: Request):
            seen.append(get_request_scope(request))
            raise RuntimeError("boom")

        @app.get("/fine")
        def fine(request: Request):
            seen.append(get_request_scope(request))
            return {"ok": True}

        client = TestClient(app, raise_server_exceptions=False)
        assert client.get("/crash").status_code == 500
        assert client.get("/fine").status_code == 200

        crashed, finished = seen
        assert crashed.cancelled
        with pytest.raises(RequestCancelled):
            crashed.check("list_books")
        assert not finished.cancelled
