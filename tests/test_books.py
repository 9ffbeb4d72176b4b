"""
Tests for BookService: visibility on reads, ownership on writes,
moderation, associations and favorites.
"""

import pytest

from core.books import BookService
from core.errors import Forbidden, NotFound, PermissionDenied, ValidationError
from core.metrics import get_counter
from core.types import BookDraft, BookFilter, BookTag, ContentStatus


V = ContentStatus.VISIBLE
A = ContentStatus.ARCHIVED
Q = ContentStatus.QUARANTINE
P = ContentStatus.PRIVATE


@pytest.fixture
def books(adapter):
    return BookService(adapter)


@pytest.fixture
def refined_books(adapter):
    return BookService(adapter, refine_lists=True)


@pytest.fixture
def shelf(make_book, users):
    """One book per status, all created by `user`."""
    owner = users["user"].id
    return {status: make_book(f"{status.value} book", status=status, created_by=owner) for status in ContentStatus}


# ============================================================================
# Single-book reads
# ============================================================================

class TestGetVisibleBook:

    def test_anonymous_sees_visible_only(self, books, shelf, callers):
        anon = callers["anonymous"]
        assert books.get_visible_book(shelf[V].id, anon).id == shelf[V].id
        for status in (A, Q, P):
            with pytest.raises(NotFound):
                books.get_visible_book(shelf[status].id, anon)

    def test_new_user_sees_nothing(self, books, shelf, callers):
        with pytest.raises(NotFound):
            books.get_visible_book(shelf[V].id, callers["new_user"])

    def test_quarantine_visible_to_creator(self, books, shelf, callers):
        assert books.get_visible_book(shelf[Q].id, callers["user"]).status is Q

    def test_quarantine_forbidden_for_other_user(self, books, shelf, callers):
        with pytest.raises(Forbidden):
            books.get_visible_book(shelf[Q].id, callers["other_user"])
        assert get_counter("visibility.refused", {"outcome": "forbidden"}) == 1
        assert get_counter("visibility.refused.by_role", {"role": "user"}) == 1

    def test_private_is_outside_user_tier(self, books, shelf, callers):
        # Even the creator: private is not in the user tier at all
        with pytest.raises(NotFound):
            books.get_visible_book(shelf[P].id, callers["user"])

    def test_private_of_another_creator(self, books, make_book, callers, users):
        book = make_book("secret", status=P, created_by=users["other_user"].id)
        with pytest.raises(NotFound):
            books.get_visible_book(book.id, callers["user"])
        assert books.get_visible_book(book.id, callers["admin"]).status is P

    @pytest.mark.parametrize("who", ["admin", "superadmin"])
    def test_admins_see_everything(self, books, shelf, callers, who):
        for book in shelf.values():
            assert books.get_visible_book(book.id, callers[who]).id == book.id

    def test_absent_book(self, books, callers):
        with pytest.raises(NotFound):
            books.get_visible_book(999, callers["admin"])

    def test_book_view(self, books, shelf, adapter, callers):
        book_id = shelf[V].id
        author = adapter.create_author("Ursula K. Le Guin")
        sf = adapter.create_tag("sf")
        classic = adapter.create_tag("classic")
        adapter.set_book_authors(book_id, [author.id])
        adapter.set_book_tags(book_id, [BookTag(book_id, sf.id, None), BookTag(book_id, classic.id, 4)])
        adapter.add_book_image(book_id, "https://img.example.org/b.png", order_index=2)
        adapter.add_book_image(book_id, "https://img.example.org/a.png", order_index=1)
        adapter.add_book_file(book_id, "epub", "https://files.example.org/b.epub", file_size=10)

        view = books.get_book_view(book_id, callers["anonymous"])
        assert [a.name for a in view.authors] == ["Ursula K. Le Guin"]
        assert [(t.name, t.weight) for t in view.tags] == [("classic", 4), ("sf", 1)]
        assert [i.url for i in view.images][0].endswith("a.png")
        assert view.files[0].format == "epub"

        data = view.to_dict()
        assert data["title"] == shelf[V].title
        assert data["tags"][0]["name"] == "classic"

    def test_extras(self, books, shelf, adapter, callers, users):
        book_id = shelf[V].id
        adapter.add_favorite(users["user"].id, book_id)
        adapter.create_comment(book_id, users["user"].id, "great")
        adapter.create_comment(book_id, users["user"].id, "hidden", status="hidden")

        extras = books.get_book_extras(book_id, callers["user"])
        assert extras.in_favorites is True
        assert [c.text for c in extras.comments] == ["great"]
        assert books.get_book_extras(book_id, callers["anonymous"]).in_favorites is False


# ============================================================================
# Listings
# ============================================================================

class TestListings:

    def test_statuses_per_role(self, books, shelf, callers):
        def statuses(who):
            return {b.status for b in books.list_visible_books(None, callers[who])}

        assert statuses("anonymous") == {V}
        assert statuses("new_user") == set()
        assert statuses("user") == {V, Q}
        assert statuses("admin") == {V, A, Q, P}

    def test_unrefined_lists_show_others_quarantine(self, books, shelf, callers):
        listed = books.list_visible_books(None, callers["other_user"])
        assert shelf[Q].id in {b.id for b in listed}

    def test_refined_lists_hide_others_quarantine(self, refined_books, shelf, callers):
        listed = {b.id for b in refined_books.list_visible_books(None, callers["other_user"])}
        assert shelf[Q].id not in listed
        assert shelf[V].id in listed

        own = {b.id for b in refined_books.list_visible_books(None, callers["user"])}
        assert shelf[Q].id in own

    def test_search_and_sort(self, books, make_book, callers):
        make_book("Dune", description="desert planet", rating=5)
        make_book("Neuromancer", description="cyberspace", rating=4)
        make_book("The Left Hand of Darkness", rating=3)

        anon = callers["anonymous"]
        assert [b.title for b in books.list_visible_books(BookFilter(query="PLANET"), anon)] == ["Dune"]
        by_title = books.list_visible_books(BookFilter(sort="title"), anon)
        assert [b.title for b in by_title] == ["Dune", "Neuromancer", "The Left Hand of Darkness"]
        by_rating = books.list_visible_books(BookFilter(sort="rating"), anon, limit=1)
        assert [b.title for b in by_rating] == ["Dune"]

    def test_unknown_sort(self, books, callers):
        with pytest.raises(ValidationError):
            books.list_visible_books(BookFilter(sort="random"), callers["anonymous"])

    def test_by_author_and_tag(self, books, make_book, adapter, callers):
        first, second = make_book("first"), make_book("second")
        author = adapter.create_author("Author")
        tag = adapter.create_tag("tag")
        adapter.add_book_author(first.id, author.id)
        adapter.add_book_tag(BookTag(second.id, tag.id))

        assert [b.id for b in books.books_by_author(author.id, callers["anonymous"])] == [first.id]
        assert [b.id for b in books.books_by_tag(tag.id, callers["anonymous"])] == [second.id]

    def test_new_releases_newest_first(self, books, make_book, callers):
        ids = [make_book(f"b{i}").id for i in range(4)]
        latest = books.new_releases(callers["anonymous"], limit=2)
        assert [b.id for b in latest] == ids[::-1][:2]

    def test_duplicates(self, books, make_book, callers):
        make_book("The Hobbit")
        make_book("the hobbit (illustrated)")
        make_book("Silmarillion")

        found = books.duplicate_books("HOBBIT", callers["anonymous"])
        assert len(found) == 2
        with pytest.raises(ValidationError):
            books.duplicate_books("  ", callers["anonymous"])

    def test_user_books_include_every_status(self, books, shelf, make_book, callers, users):
        make_book("someone else's", created_by=users["other_user"].id)
        mine = books.user_books(callers["user"])
        assert {b.id for b in mine} == {b.id for b in shelf.values()}

        with pytest.raises(PermissionDenied):
            books.user_books(callers["anonymous"])


# ============================================================================
# Favorites
# ============================================================================

class TestFavorites:

    def test_add_list_remove(self, books, shelf, callers):
        reader = callers["other_user"]
        books.add_favorite(shelf[V].id, reader)
        books.add_favorite(shelf[V].id, reader)

        assert [b.id for b in books.list_favorites(reader)] == [shelf[V].id]
        books.remove_favorite(shelf[V].id, reader)
        assert books.list_favorites(reader) == []

    def test_cannot_favorite_hidden_book(self, books, shelf, callers):
        with pytest.raises(NotFound):
            books.add_favorite(shelf[A].id, callers["other_user"])

    def test_anonymous(self, books, shelf, callers):
        with pytest.raises(PermissionDenied):
            books.add_favorite(shelf[V].id, callers["anonymous"])
        with pytest.raises(PermissionDenied):
            books.list_favorites(callers["anonymous"])

    def test_favorites_follow_visibility(self, books, shelf, adapter, callers):
        reader = callers["other_user"]
        books.add_favorite(shelf[V].id, reader)
        adapter.update_book_status(shelf[V].id, A)
        assert books.list_favorites(reader) == []


# ============================================================================
# Mutations
# ============================================================================

class TestCreateBook:

    @pytest.mark.parametrize("who,expected", [
        ("new_user", Q),
        ("user", Q),
        ("admin", V),
        ("superadmin", V),
    ])
    def test_initial_status(self, books, callers, who, expected):
        book = books.create_book(BookDraft(title="Fresh"), callers[who])
        assert book.status is expected
        assert book.created_by == callers[who].user_id

    def test_requires_title(self, books, callers):
        with pytest.raises(ValidationError):
            books.create_book(BookDraft(title="  "), callers["user"])

    def test_anonymous(self, books, callers):
        with pytest.raises(PermissionDenied):
            books.create_book(BookDraft(title="x"), callers["anonymous"])


class TestUpdateAndDelete:

    def test_creator_updates(self, books, shelf, callers):
        updated = books.update_book(shelf[V].id, {"title": "Renamed", "rating": None}, callers["user"])
        assert updated.title == "Renamed"
        assert updated.rating == 0

    def test_non_creator_is_denied(self, books, shelf, callers):
        with pytest.raises(PermissionDenied):
            books.update_book(shelf[V].id, {"title": "x"}, callers["other_user"])
        with pytest.raises(PermissionDenied):
            books.delete_book(shelf[V].id, callers["other_user"])

    def test_admin_bypasses_ownership(self, books, shelf, callers):
        books.delete_book(shelf[V].id, callers["admin"])
        with pytest.raises(NotFound):
            books.get_visible_book(shelf[V].id, callers["admin"])

    def test_status_is_not_editable(self, books, shelf, callers):
        with pytest.raises(ValidationError):
            books.update_book(shelf[Q].id, {"status": "visible"}, callers["user"])

    def test_missing_book(self, books, callers):
        with pytest.raises(NotFound):
            books.update_book(404, {"title": "x"}, callers["admin"])

    def test_orphaned_book_needs_admin(self, books, make_book, users, adapter, callers):
        book = make_book("orphan", created_by=users["other_user"].id)
        adapter.delete_user(users["other_user"].id)

        assert adapter.get_book_meta(book.id).created_by is None
        with pytest.raises(PermissionDenied):
            books.update_book(book.id, {"title": "mine now"}, callers["user"])
        books.update_book(book.id, {"title": "moderated"}, callers["admin"])


class TestUpdateBookStatus:

    def test_user_denied(self, books, shelf, callers):
        with pytest.raises(PermissionDenied):
            books.update_book_status(shelf[Q].id, V, callers["user"])

    def test_admin_persists(self, books, shelf, callers):
        books.update_book_status(shelf[Q].id, "visible", callers["admin"])
        assert books.get_visible_book(shelf[Q].id, callers["anonymous"]).status is V

    def test_any_transition(self, books, shelf, callers):
        books.update_book_status(shelf[V].id, P, callers["superadmin"])
        books.update_book_status(shelf[V].id, A, callers["superadmin"])
        assert books.get_visible_book(shelf[V].id, callers["admin"]).status is A

    def test_unknown_status(self, books, shelf, callers):
        with pytest.raises(ValidationError):
            books.update_book_status(shelf[V].id, "published", callers["admin"])

    def test_missing_book(self, books, callers):
        with pytest.raises(NotFound):
            books.update_book_status(404, V, callers["admin"])


# ============================================================================
# Associations
# ============================================================================

class TestAssociations:

    @pytest.fixture
    def book_id(self, shelf):
        return shelf[V].id

    def test_set_authors_replaces_and_dedupes(self, books, book_id, adapter, callers):
        a, b, c = (adapter.create_author(n) for n in ("A", "B", "C"))
        books.set_book_authors(book_id, [a.id, b.id], callers["user"])
        books.set_book_authors(book_id, [c.id, b.id, c.id], callers["user"])
        assert [x.name for x in books.book_authors(book_id, callers["user"])] == ["B", "C"]

    def test_unknown_author(self, books, book_id, adapter, callers):
        a = adapter.create_author("A")
        books.set_book_authors(book_id, [a.id], callers["user"])
        with pytest.raises(ValidationError) as exc_info:
            books.set_book_authors(book_id, [a.id, 555], callers["user"])
        assert "555" in exc_info.value.message
        assert [x.id for x in adapter.list_book_authors(book_id)] == [a.id]

    def test_add_remove_author(self, books, book_id, adapter, callers):
        a = adapter.create_author("A")
        books.add_book_author(book_id, a.id, callers["user"])
        books.add_book_author(book_id, a.id, callers["user"])
        assert len(adapter.list_book_authors(book_id)) == 1
        books.remove_book_author(book_id, a.id, callers["user"])
        assert adapter.list_book_authors(book_id) == []

    def test_set_tags_last_weight_wins(self, books, book_id, adapter, callers):
        sf = adapter.create_tag("sf")
        noir = adapter.create_tag("noir")
        books.set_book_tags(book_id, [(sf.id, 2), (noir.id, None), (sf.id, 9)], callers["user"])

        tags = books.book_tags(book_id, callers["anonymous"])
        assert [(t.name, t.weight) for t in tags] == [("sf", 9), ("noir", 1)]

    def test_add_tag_overwrites_weight(self, books, book_id, adapter, callers):
        sf = adapter.create_tag("sf")
        books.add_book_tag(book_id, sf.id, callers["user"], weight=3)
        books.add_book_tag(book_id, sf.id, callers["user"])
        assert adapter.list_book_tag_links(book_id)[0].weight == 3
        books.add_book_tag(book_id, sf.id, callers["user"], weight=6)
        assert adapter.list_book_tag_links(book_id)[0].weight == 6

    def test_unknown_tag(self, books, book_id, callers):
        with pytest.raises(ValidationError):
            books.add_book_tag(book_id, 42, callers["user"])

    def test_categories(self, books, book_id, adapter, callers):
        root = adapter.create_category("Root")
        child = adapter.create_category("Child", parent_id=root.id)
        books.set_book_categories(book_id, [child.id, root.id], callers["user"])
        assert [c.id for c in books.book_categories(book_id, callers["user"])] == [root.id, child.id]

        books.remove_book_category(book_id, root.id, callers["user"])
        books.add_book_category(book_id, child.id, callers["user"])
        assert [c.id for c in adapter.list_book_categories(book_id)] == [child.id]

        with pytest.raises(ValidationError):
            books.add_book_category(book_id, 999, callers["user"])

    def test_associations_need_ownership(self, books, book_id, adapter, callers):
        a = adapter.create_author("A")
        with pytest.raises(PermissionDenied):
            books.add_book_author(book_id, a.id, callers["other_user"])

    def test_images_and_files(self, books, book_id, callers):
        image = books.add_book_image(book_id, " https://img.example.org/c.png ", callers["user"], order_index=3)
        assert image.url == "https://img.example.org/c.png"
        assert image.order_index == 3

        f = books.add_book_file(book_id, "pdf", "https://files.example.org/b.pdf", callers["user"], file_size=99)
        assert f.file_size == 99

        with pytest.raises(ValidationError):
            books.add_book_image(book_id, "", callers["user"])
        with pytest.raises(ValidationError):
            books.add_book_file(book_id, "", "https://x", callers["user"])
