"""
End-to-end tests through the HTTP surface: auth flow, guards, visibility
and error mapping.
"""

import pytest
from fastapi.testclient import TestClient

from app import create_app
from core.metrics import get_counter
from core.rbac.roles import Role

PASSWORD = "secret-pass"

CONFIG = {
    "DATABASE_URL": "sqlite://",
    "JWT_SECRET": "api-test-secret",
    "JWT_ALGO": "HS256",
    "ACCESS_TOKEN_EXPIRE_MINUTES": 60,
    "REQUEST_TIMEOUT_MS": 5000,
    "DEFAULT_PAGE_LIMIT": 20,
    "MAX_PAGE_LIMIT": 100,
    "LIST_OWNERSHIP_REFINEMENT": False,
    "AUTO_CREATE_SCHEMA": True,
    "LOG_LEVEL": "INFO",
    "PORT": 8000,
    "CORS_ALLOW_ORIGINS": ["*"],
    "BOOTSTRAP_SUPERADMIN_EMAIL": None,
    "BOOTSTRAP_SUPERADMIN_PASSWORD": None,
}


@pytest.fixture
def client(adapter):
    return TestClient(create_app(dict(CONFIG), adapter))


@pytest.fixture
def login(client, users):
    """Returns auth headers for one of the conftest users."""
    def _login(who):
        resp = client.post("/auth/login", json={"email": users[who].email, "password": PASSWORD})
        assert resp.status_code == 200, resp.text
        return {"Authorization": f"Bearer {resp.json()['access_token']}"}
    return _login


# ============================================================================
# Application
# ============================================================================

class TestApplication:

    def test_health(self, client):
        assert client.get("/healthz").json() == {"status": "ok"}
        assert get_counter("api_calls_total", {"endpoint": "/healthz", "method": "GET", "status": "200"}) == 1

    def test_all_routers_mounted(self, client):
        body = client.get("/debug/routers").json()
        assert body["failures"] == []
        assert set(body["mounted"]) == {"books", "categories", "tags", "authors", "comments", "users", "debug"}

    def test_bootstrap_superadmin(self, adapter):
        cfg = {
            **CONFIG,
            "BOOTSTRAP_SUPERADMIN_EMAIL": "root@example.org",
            "BOOTSTRAP_SUPERADMIN_PASSWORD": "rootpass",
        }
        create_app(cfg, adapter)
        create_app(cfg, adapter)
        assert adapter.get_user_by_email("root@example.org").role is Role.SUPERADMIN


# ============================================================================
# Authentication
# ============================================================================

class TestAuthFlow:

    def test_register_login_me(self, client):
        resp = client.post("/auth/register", json={"email": "New@Example.org", "password": "longenough"})
        assert resp.status_code == 201
        assert resp.json()["role"] == "new-user"
        assert "password_hash" not in resp.json()

        token = client.post("/auth/login", json={"email": "new@example.org", "password": "longenough"}).json()
        assert token["token_type"] == "bearer"

        me = client.get("/auth/me", headers={"Authorization": f"Bearer {token['access_token']}"})
        assert me.json()["email"] == "new@example.org"
        assert me.json()["capabilities"] == ["CREATE_CONTENT", "READ_CATALOG"]

    def test_register_validation(self, client):
        assert client.post("/auth/register", json={"email": "x@example.org", "password": "123"}).status_code == 422
        resp = client.post("/auth/register", json={"email": "not-an-email", "password": "longenough"})
        assert resp.status_code == 400
        assert resp.json() == {"detail": "valid email is required"}

    def test_duplicate_registration(self, client, users):
        resp = client.post("/auth/register", json={"email": users["user"].email, "password": "longenough"})
        assert resp.status_code == 409
        assert resp.json() == {"detail": "conflict"}

    def test_bad_credentials(self, client, users):
        resp = client.post("/auth/login", json={"email": users["user"].email, "password": "nope-nope"})
        assert resp.status_code == 401
        assert resp.json() == {"detail": "unauthorized"}

    def test_me_requires_login(self, client):
        assert client.get("/auth/me").status_code == 403

    def test_logout_revokes_token(self, client, login):
        headers = login("user")
        assert client.get("/auth/me", headers=headers).status_code == 200

        assert client.post("/auth/logout", headers=headers).status_code == 204
        resp = client.get("/auth/me", headers=headers)
        assert resp.status_code == 401
        assert resp.json() == {"detail": "unauthorized"}

    def test_garbage_token_is_401_even_on_public_routes(self, client):
        resp = client.get("/books", headers={"Authorization": "Bearer garbage"})
        assert resp.status_code == 401


# ============================================================================
# Books
# ============================================================================

class TestBooks:

    def test_anonymous_cannot_create(self, client):
        resp = client.post("/books", json={"title": "Nope"})
        assert resp.status_code == 403
        assert resp.json()["detail"]["error"] == "forbidden"

    def test_member_book_lifecycle(self, client, login):
        owner, other, admin = login("user"), login("other_user"), login("admin")

        created = client.post("/books", json={"title": "Draft", "publish_year": 2024}, headers=owner)
        assert created.status_code == 201
        book = created.json()
        assert book["status"] == "quarantine"
        book_id = book["id"]

        # Restricted: owner sees it, another member is refused, anonymous never learns it exists
        assert client.get(f"/books/{book_id}", headers=owner).status_code == 200
        refused = client.get(f"/books/{book_id}", headers=other)
        assert refused.status_code == 403
        assert refused.json() == {"detail": "access denied"}
        missing = client.get(f"/books/{book_id}")
        assert missing.status_code == 404
        assert missing.json() == {"detail": "not found"}

        assert client.patch(f"/books/{book_id}", json={"title": "Stolen"}, headers=other).status_code == 403
        assert client.put(f"/books/{book_id}/status", json={"status": "visible"}, headers=owner).status_code == 403

        promoted = client.put(f"/books/{book_id}/status", json={"status": "VISIBLE"}, headers=admin)
        assert promoted.json() == {"id": book_id, "status": "visible"}
        assert client.get(f"/books/{book_id}").json()["title"] == "Draft"

        assert client.delete(f"/books/{book_id}", headers=owner).status_code == 204
        assert client.get(f"/books/{book_id}", headers=admin).status_code == 404

    def test_invalid_status_body(self, client, login, make_book):
        book = make_book()
        resp = client.put(f"/books/{book.id}/status", json={"status": "published"}, headers=login("admin"))
        assert resp.status_code == 422

    def test_listing_and_paging(self, client, make_book):
        for i in range(5):
            make_book(f"Book {i}")

        page = client.get("/books", params={"limit": 2, "offset": 1, "sort": "title"}).json()
        assert [b["title"] for b in page["items"]] == ["Book 1", "Book 2"]
        assert page["limit"] == 2

        clamped = client.get("/books", params={"limit": 1000}).json()
        assert clamped["limit"] == 100
        assert client.get("/books", params={"limit": 0}).status_code == 422

    def test_unknown_sort_is_400(self, client):
        resp = client.get("/books", params={"sort": "random"})
        assert resp.status_code == 400
        assert "random" in resp.json()["detail"]

    def test_associations(self, client, login, users, make_book, adapter):
        owner = login("user")
        book = make_book(created_by=users["user"].id)
        author = adapter.create_author("Author")
        tag = adapter.create_tag("sf")

        assert client.put(f"/books/{book.id}/authors", json={"ids": [author.id]}, headers=owner).status_code == 204
        resp = client.put(
            f"/books/{book.id}/tags",
            json={"tags": [{"tag_id": tag.id, "weight": 5}]},
            headers=owner,
        )
        assert resp.status_code == 204

        view = client.get(f"/books/{book.id}").json()
        assert [a["name"] for a in view["authors"]] == ["Author"]
        assert view["tags"] == [{"id": tag.id, "name": "sf", "color": "", "weight": 5}]

        unknown = client.put(f"/books/{book.id}/authors", json={"ids": [404]}, headers=owner)
        assert unknown.status_code == 400
        assert unknown.json() == {"detail": "unknown authors: 404"}

    def test_favorites(self, client, login, make_book):
        reader = login("user")
        book = make_book("Liked")

        assert client.put(f"/books/{book.id}/favorite", headers=reader).status_code == 204
        assert [b["id"] for b in client.get("/books/favorites", headers=reader).json()["items"]] == [book.id]
        assert client.get(f"/books/{book.id}/extras", headers=reader).json()["in_favorites"] is True
        assert client.get("/books/favorites").status_code == 403


# ============================================================================
# Categories & comments
# ============================================================================

class TestCategories:

    def test_manage_and_browse(self, client, login, make_book, adapter):
        admin = login("admin")
        root = client.post("/categories", json={"name": "Fiction", "slug": "fiction"}, headers=admin).json()
        child = client.post("/categories", json={"name": "Sci-Fi", "parent_id": root["id"]}, headers=admin).json()

        book = make_book("Dune")
        adapter.add_book_category(book.id, child["id"])

        tree = client.get("/categories/tree").json()["items"]
        assert tree[0]["children"][0]["name"] == "Sci-Fi"

        crumbs = client.get(f"/categories/{child['id']}/breadcrumbs").json()["items"]
        assert [c["name"] for c in crumbs] == ["Fiction", "Sci-Fi"]

        books = client.get(f"/categories/{root['id']}/books").json()["items"]
        assert [b["title"] for b in books] == ["Dune"]

    def test_members_cannot_manage(self, client, login):
        assert client.post("/categories", json={"name": "x"}, headers=login("user")).status_code == 403

    def test_validation_message_is_echoed(self, client, login):
        resp = client.post("/categories", json={"name": "Orphan", "parent_id": 999}, headers=login("admin"))
        assert resp.status_code == 400
        assert resp.json() == {"detail": "parent category 999 not found"}

    def test_cycle_in_stored_data_is_409(self, client, adapter):
        a = adapter.create_category("a")
        b = adapter.create_category("b", parent_id=a.id)
        adapter.update_category(a.id, {"parent_id": b.id})

        resp = client.get("/categories/tree")
        assert resp.status_code == 409
        assert resp.json() == {"detail": "category graph malformed"}


class TestComments:

    def test_comment_flow(self, client, login, make_book):
        book = make_book("Discussed")
        author, admin = login("other_user"), login("admin")

        created = client.post(f"/books/{book.id}/comments", json={"text": "Great"}, headers=author)
        assert created.status_code == 201
        comment_id = created.json()["id"]

        assert client.get(f"/books/{book.id}/comments/count").json() == {"book_id": book.id, "count": 1}
        assert client.put(f"/comments/{comment_id}/status", json={"status": "hidden"}, headers=author).status_code == 403
        assert client.put(f"/comments/{comment_id}/status", json={"status": "hidden"}, headers=admin).status_code == 200

        public = client.get(f"/books/{book.id}/comments", params={"status": "hidden"}).json()
        assert public["items"] == []
        moderated = client.get(f"/books/{book.id}/comments", params={"status": "hidden"}, headers=admin).json()
        assert [c["id"] for c in moderated["items"]] == [comment_id]

    def test_anonymous_cannot_comment(self, client, make_book):
        book = make_book()
        assert client.post(f"/books/{book.id}/comments", json={"text": "hi"}).status_code == 403

    def test_own_comments(self, client, login, users):
        headers = login("user")
        assert client.get(f"/users/{users['user'].id}/comments", headers=headers).status_code == 200
        assert client.get(f"/users/{users['other_user'].id}/comments", headers=headers).status_code == 403


# ============================================================================
# Users & debug
# ============================================================================

class TestAdministration:

    def test_user_management_is_admin_only(self, client, login):
        assert client.get("/users", headers=login("user")).status_code == 403
        listed = client.get("/users", headers=login("admin")).json()
        assert len(listed["items"]) == 5

    def test_role_change_revokes_tokens(self, client, login, users):
        member = login("new_user")
        target = users["new_user"].id

        resp = client.patch(f"/users/{target}", json={"role": "user"}, headers=login("admin"))
        assert resp.json()["role"] == "user"
        assert client.get("/auth/me", headers=member).status_code == 401

    def test_purge_is_superadmin_only(self, client, login, users):
        target = users["other_user"].id
        assert client.delete(f"/users/{target}/purge", headers=login("admin")).status_code == 403
        assert client.delete(f"/users/{target}/purge", headers=login("superadmin")).status_code == 204

    def test_debug_endpoints(self, client, login):
        assert client.get("/debug/metrics", headers=login("user")).status_code == 403

        admin = login("admin")
        metrics = client.get("/debug/metrics", headers=admin).json()
        assert metrics["counters"]["rbac_denied"] == 1
        assert "store" in metrics["performance"]

        config = client.get("/debug/config", headers=admin).json()
        assert "JWT_SECRET" not in config
        assert config["DATABASE_URL"] == "sqlite://"
