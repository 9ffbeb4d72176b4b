"""
Book access orchestration.

BookService composes the visibility policy, the ownership guard and the
tag weight merge in front of the store:

- Reads go through viewable_statuses, and single-book reads additionally
  refuse private/quarantine books the caller neither created nor moderates.
- Mutations fetch only the book's creator (get_book_meta) and run
  check_ownership before delegating.
- Status changes are admin-only.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from core.errors import Forbidden, NotFound, PermissionDenied, ValidationError
from core.metrics import record_visibility_filtered
from core.rbac.ownership import check_ownership, require_admin
from core.rbac.roles import is_admin
from core.rbac.visibility import (
    PUBLIC_COMMENT_STATUSES,
    VisibilityFilter,
    passes_restriction,
    viewable_statuses,
    visibility_filter,
)
from core.tags import merge_tags_with_weight
from core.types import (
    ALL_CONTENT_STATUSES,
    BOOK_SORTS,
    Author,
    Book,
    BookDraft,
    BookExtras,
    BookFile,
    BookFilter,
    BookImage,
    BookMeta,
    BookTag,
    BookView,
    Caller,
    Category,
    ContentStatus,
    WeightedTag,
)

logger = logging.getLogger(__name__)

# Fields a creator may change; status is moderated separately
EDITABLE_BOOK_FIELDS = frozenset({
    "title", "description", "publish_year", "pages", "language",
    "publisher", "type", "rating", "cover_url",
})


def _dedupe(ids: Iterable[int]) -> List[int]:
    seen = set()
    ordered = []
    for item in ids:
        if item not in seen:
            seen.add(item)
            ordered.append(item)
    return ordered


class BookService:
    """
    Answers "can this caller see / change book X" and assembles book views.

    Args:
        adapter: Store (DatabaseAdapter or compatible)
        refine_lists: Apply the private/quarantine refinement to listings
            as well as to single-book reads. Off by default, in which case a
            `user` sees other members' quarantined books in lists.
    """

    def __init__(self, adapter, refine_lists: bool = False):
        self.adapter = adapter
        self.refine_lists = refine_lists

    # ========================================================================
    # Single-book reads
    # ========================================================================

    def get_visible_book(self, book_id: int, caller: Caller) -> Book:
        """
        Fetch a book the caller may see.

        Raises:
            NotFound: Book absent or its status is outside the caller's set
            Forbidden: Book is private/quarantine and not the caller's own
        """
        allowed = viewable_statuses(caller.role)
        book = self.adapter.get_book(book_id, VisibilityFilter(statuses=allowed))

        if book is None:
            record_visibility_filtered("not_found", caller.role.value)
            raise NotFound(f"book {book_id} not found")

        if not passes_restriction(book.status, book.created_by, caller):
            record_visibility_filtered("forbidden", caller.role.value)
            logger.info(
                f"Restricted book {book_id} refused: status={book.status.value}, "
                f"caller={caller.user_id}, role={caller.role.value}"
            )
            raise Forbidden(f"book {book_id} is restricted")

        return book

    def get_book_view(self, book_id: int, caller: Caller) -> BookView:
        """Book plus authors, weighted tags, images and files."""
        book = self.get_visible_book(book_id, caller)
        return BookView(
            book=book,
            authors=self.adapter.list_book_authors(book_id),
            tags=self._weighted_tags(book_id),
            images=self.adapter.list_book_images(book_id),
            files=self.adapter.list_book_files(book_id),
        )

    def get_book_extras(self, book_id: int, caller: Caller) -> BookExtras:
        """Favorite flag and active comments for the caller."""
        self.get_visible_book(book_id, caller)
        in_favorites = (
            not caller.is_anonymous
            and self.adapter.is_favorite(caller.user_id, book_id)
        )
        comments = self.adapter.list_comments(book_id=book_id, statuses=PUBLIC_COMMENT_STATUSES)
        return BookExtras(in_favorites=in_favorites, comments=comments)

    def book_tags(self, book_id: int, caller: Caller) -> List[WeightedTag]:
        self.get_visible_book(book_id, caller)
        return self._weighted_tags(book_id)

    def book_authors(self, book_id: int, caller: Caller) -> List[Author]:
        self.get_visible_book(book_id, caller)
        return self.adapter.list_book_authors(book_id)

    def book_categories(self, book_id: int, caller: Caller) -> List[Category]:
        self.get_visible_book(book_id, caller)
        return self.adapter.list_book_categories(book_id)

    def _weighted_tags(self, book_id: int) -> List[WeightedTag]:
        links = self.adapter.list_book_tag_links(book_id)
        catalog = self.adapter.list_tags_by_ids([link.tag_id for link in links])
        return merge_tags_with_weight(catalog, links)

    # ========================================================================
    # Listings
    # ========================================================================

    def list_visible_books(
        self,
        criteria: Optional[BookFilter],
        caller: Caller,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Book]:
        """
        List books through the caller's visibility filter.

        Per-row private/quarantine refinement only applies when the service
        was built with refine_lists=True.
        """
        criteria = criteria or BookFilter()
        if criteria.sort not in BOOK_SORTS:
            raise ValidationError(f"unknown sort {criteria.sort!r}")

        vf = visibility_filter(caller, refine_restricted=self.refine_lists)
        return self.adapter.list_books(vf, criteria, limit=limit, offset=offset)

    def books_by_author(self, author_id: int, caller: Caller, limit=None, offset=0) -> List[Book]:
        return self.list_visible_books(BookFilter(author_id=author_id), caller, limit, offset)

    def books_by_tag(self, tag_id: int, caller: Caller, limit=None, offset=0) -> List[Book]:
        return self.list_visible_books(BookFilter(tag_ids=[tag_id]), caller, limit, offset)

    def new_releases(self, caller: Caller, limit: Optional[int] = None) -> List[Book]:
        return self.list_visible_books(BookFilter(sort="newest"), caller, limit, 0)

    def duplicate_books(self, title: str, caller: Caller) -> List[Book]:
        """Books whose title contains `title`, case-insensitively."""
        if not title or not title.strip():
            raise ValidationError("title is required")
        return self.list_visible_books(BookFilter(title=title.strip(), sort="title"), caller)

    def user_books(self, caller: Caller, limit=None, offset=0) -> List[Book]:
        """The caller's own books in every status."""
        self._require_authenticated(caller, "list own books")
        vf = VisibilityFilter(statuses=frozenset(ALL_CONTENT_STATUSES))
        return self.adapter.list_books(
            vf, BookFilter(creator_id=caller.user_id), limit=limit, offset=offset,
        )

    # ========================================================================
    # Favorites
    # ========================================================================

    def list_favorites(self, caller: Caller) -> List[Book]:
        self._require_authenticated(caller, "list favorites")
        vf = visibility_filter(caller, refine_restricted=self.refine_lists)
        return self.adapter.list_favorite_books(caller.user_id, vf)

    def add_favorite(self, book_id: int, caller: Caller) -> None:
        self._require_authenticated(caller, "add favorite")
        self.get_visible_book(book_id, caller)
        self.adapter.add_favorite(caller.user_id, book_id)

    def remove_favorite(self, book_id: int, caller: Caller) -> None:
        self._require_authenticated(caller, "remove favorite")
        self.adapter.remove_favorite(caller.user_id, book_id)

    # ========================================================================
    # Mutations
    # ========================================================================

    def create_book(self, draft: BookDraft, caller: Caller) -> Book:
        """
        Create a book owned by the caller.

        Admin-class creators publish immediately (visible); everyone else
        starts in quarantine until a moderator promotes the book.
        """
        self._require_authenticated(caller, "create book")
        if not draft.title or not draft.title.strip():
            raise ValidationError("book title is required")

        status = ContentStatus.VISIBLE if is_admin(caller.role) else ContentStatus.QUARANTINE
        book = self.adapter.create_book(draft, status=status, created_by=caller.user_id)

        logger.info(f"Book {book.id} created by user {caller.user_id} with status {status.value}")
        return book

    def update_book(self, book_id: int, changes: Dict[str, Any], caller: Caller) -> Book:
        unknown = set(changes) - EDITABLE_BOOK_FIELDS
        if unknown:
            raise ValidationError(f"fields not editable: {', '.join(sorted(unknown))}")
        if "title" in changes and (not changes["title"] or not changes["title"].strip()):
            raise ValidationError("book title is required")
        if changes.get("rating", 0) is None:
            changes = {**changes, "rating": 0}

        self._authorize_mutation(book_id, caller)
        return self.adapter.update_book(book_id, changes)

    def delete_book(self, book_id: int, caller: Caller) -> None:
        self._authorize_mutation(book_id, caller)
        self.adapter.delete_book(book_id)
        logger.info(f"Book {book_id} deleted by user {caller.user_id}")

    def update_book_status(self, book_id: int, new_status, caller: Caller) -> None:
        """
        Set a book's status. Admin-class only; any transition is allowed.

        Raises:
            PermissionDenied: Caller is not admin-class
            ValidationError: Unknown status
            NotFound: Book absent
        """
        require_admin(caller.role, "update book status")
        try:
            status = ContentStatus(new_status)
        except ValueError:
            raise ValidationError(f"unknown status {new_status!r}")

        if not self.adapter.update_book_status(book_id, status):
            raise NotFound(f"book {book_id} not found")
        logger.info(f"Book {book_id} status set to {status.value} by user {caller.user_id}")

    # ------------------------------------------------------------------
    # Authors
    # ------------------------------------------------------------------

    def set_book_authors(self, book_id: int, author_ids: Sequence[int], caller: Caller) -> None:
        """Replace the author list atomically."""
        self._authorize_mutation(book_id, caller)
        author_ids = _dedupe(author_ids)
        self._require_existing("authors", author_ids)
        self.adapter.set_book_authors(book_id, author_ids)

    def add_book_author(self, book_id: int, author_id: int, caller: Caller) -> None:
        self._authorize_mutation(book_id, caller)
        self._require_existing("authors", [author_id])
        self.adapter.add_book_author(book_id, author_id)

    def remove_book_author(self, book_id: int, author_id: int, caller: Caller) -> None:
        self._authorize_mutation(book_id, caller)
        self.adapter.remove_book_author(book_id, author_id)

    # ------------------------------------------------------------------
    # Tags
    # ------------------------------------------------------------------

    def set_book_tags(
        self,
        book_id: int,
        tags: Sequence[Tuple[int, Optional[int]]],
        caller: Caller,
    ) -> None:
        """
        Replace the tag list atomically.

        Args:
            tags: (tag_id, weight) pairs; weight None stores no override.
                A repeated tag id keeps its last weight.
        """
        self._authorize_mutation(book_id, caller)

        weights: Dict[int, Optional[int]] = {}
        for tag_id, weight in tags:
            weights[tag_id] = weight
        self._require_existing("tags", list(weights))

        links = [BookTag(book_id=book_id, tag_id=tag_id, weight=w) for tag_id, w in weights.items()]
        self.adapter.set_book_tags(book_id, links)

    def add_book_tag(self, book_id: int, tag_id: int, caller: Caller, weight: Optional[int] = None) -> None:
        self._authorize_mutation(book_id, caller)
        self._require_existing("tags", [tag_id])
        self.adapter.add_book_tag(BookTag(book_id=book_id, tag_id=tag_id, weight=weight))

    def remove_book_tag(self, book_id: int, tag_id: int, caller: Caller) -> None:
        self._authorize_mutation(book_id, caller)
        self.adapter.remove_book_tag(book_id, tag_id)

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------

    def set_book_categories(self, book_id: int, category_ids: Sequence[int], caller: Caller) -> None:
        self._authorize_mutation(book_id, caller)
        category_ids = _dedupe(category_ids)
        self._require_existing("categories", category_ids)
        self.adapter.set_book_categories(book_id, category_ids)

    def add_book_category(self, book_id: int, category_id: int, caller: Caller) -> None:
        self._authorize_mutation(book_id, caller)
        self._require_existing("categories", [category_id])
        self.adapter.add_book_category(book_id, category_id)

    def remove_book_category(self, book_id: int, category_id: int, caller: Caller) -> None:
        self._authorize_mutation(book_id, caller)
        self.adapter.remove_book_category(book_id, category_id)

    # ------------------------------------------------------------------
    # Images & files
    # ------------------------------------------------------------------

    def add_book_image(self, book_id: int, url: str, caller: Caller, order_index: int = 0) -> BookImage:
        if not url or not url.strip():
            raise ValidationError("image url is required")
        self._authorize_mutation(book_id, caller)
        return self.adapter.add_book_image(book_id, url.strip(), order_index)

    def add_book_file(self, book_id: int, format: str, url: str, caller: Caller, **details) -> BookFile:
        if not format or not url:
            raise ValidationError("file format and url are required")
        self._authorize_mutation(book_id, caller)
        return self.adapter.add_book_file(book_id, format, url, **details)

    # ========================================================================
    # Helpers
    # ========================================================================

    def _authorize_mutation(self, book_id: int, caller: Caller) -> BookMeta:
        meta = self.adapter.get_book_meta(book_id)
        if meta is None:
            raise NotFound(f"book {book_id} not found")
        check_ownership(meta.created_by, caller.user_id, caller.role)
        return meta

    def _require_existing(self, entity: str, ids: List[int]) -> None:
        missing = self.adapter.missing_ids(entity, ids)
        if missing:
            raise ValidationError(f"unknown {entity}: {', '.join(str(i) for i in sorted(missing))}")

    @staticmethod
    def _require_authenticated(caller: Caller, action: str) -> None:
        if caller.is_anonymous:
            raise PermissionDenied(f"{action} requires an account")
