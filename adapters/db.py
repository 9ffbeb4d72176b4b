# adapters/db.py — relational store for the catalog (SQLAlchemy 2.x)

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, List, Optional, Set

from sqlalchemy import and_, create_engine, delete, event, func, or_, select, text, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from adapters.models import (
    AuthorRow,
    Base,
    BookAuthorRow,
    BookCategoryRow,
    BookFavoriteRow,
    BookFileRow,
    BookImageRow,
    BookRow,
    BookTagRow,
    CategoryRow,
    CommentRow,
    TagRow,
    UserRow,
    utcnow,
)
from core.errors import CatalogError, DeadlineExceeded, NotFound, StorageError
from core.metrics import record_storage_error, time_operation
from core.rbac.roles import Role
from core.rbac.visibility import VisibilityFilter
from core.scope import RequestScope
from core.types import (
    Author,
    Book,
    BookDraft,
    BookFile,
    BookFilter,
    BookImage,
    BookMeta,
    BookTag,
    Category,
    Comment,
    CommentStatus,
    ContentStatus,
    Tag,
    User,
)

logger = logging.getLogger(__name__)

# Entities whose ids callers may reference in association lists
_ID_TABLES = {
    "authors": AuthorRow,
    "tags": TagRow,
    "categories": CategoryRow,
}

_BOOK_ORDER = {
    "newest": (BookRow.created_at.desc(), BookRow.id.desc()),
    "oldest": (BookRow.created_at.asc(), BookRow.id.asc()),
    "title": (BookRow.title.asc(), BookRow.id.asc()),
    "rating": (BookRow.rating.desc(), BookRow.id.asc()),
    "year": (BookRow.publish_year.is_(None), BookRow.publish_year.desc(), BookRow.id.asc()),
}


# ============================================================================
# Row conversion
# ============================================================================

def _book(row: BookRow) -> Book:
    return Book(
        id=row.id,
        title=row.title,
        status=ContentStatus(row.status),
        created_by=row.created_by,
        created_at=row.created_at,
        description=row.description,
        publish_year=row.publish_year,
        pages=row.pages,
        language=row.language,
        publisher=row.publisher,
        type=row.type,
        rating=row.rating,
        cover_url=row.cover_url,
    )


def _author(row: AuthorRow) -> Author:
    return Author(id=row.id, name=row.name, bio=row.bio, photo_url=row.photo_url)


def _tag(row: TagRow) -> Tag:
    return Tag(id=row.id, name=row.name, color=row.color or "")


def _category(row: CategoryRow) -> Category:
    return Category(
        id=row.id, name=row.name, parent_id=row.parent_id, slug=row.slug, description=row.description,
    )


def _comment(row: CommentRow) -> Comment:
    return Comment(
        id=row.id,
        book_id=row.book_id,
        user_id=row.user_id,
        text=row.text,
        status=CommentStatus(row.status),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _user(row: UserRow) -> User:
    return User(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        role=Role(row.role),
        name=row.name,
        bio=row.bio,
        registered_at=row.registered_at,
        token_version=row.token_version,
        is_active=row.is_active,
    )


def _visibility_clause(vf: VisibilityFilter):
    """status IN allowed AND (status NOT IN owner_only OR created_by = owner)."""
    clause = BookRow.status.in_([s.value for s in vf.statuses])
    if vf.owner_only_statuses:
        owner_only = BookRow.status.not_in([s.value for s in vf.owner_only_statuses])
        if vf.owner_id is not None:
            owner_only = or_(owner_only, BookRow.created_by == vf.owner_id)
        clause = and_(clause, owner_only)
    return clause


def _storable(changes: Dict[str, Any]) -> Dict[str, Any]:
    # Enum members are stored by value
    return {k: getattr(v, "value", v) for k, v in changes.items()}


def _paginate(stmt, limit: Optional[int], offset: int):
    if offset:
        stmt = stmt.offset(offset)
    if limit is not None:
        stmt = stmt.limit(limit)
    return stmt


# ============================================================================
# Adapter
# ============================================================================

class DatabaseAdapter:
    """
    Store operations for the catalog.

    Every public method runs in its own transaction. Before each call the
    request scope (if any) is checked, so an expired or cancelled request
    never reaches the database. Failures surface as StorageError tagged
    with the operation name; no retries.
    """

    def __init__(self, engine: Engine, scope: Optional[RequestScope] = None, session_factory=None):
        self.engine = engine
        self.scope = scope
        self._sessions = session_factory or sessionmaker(bind=engine, expire_on_commit=False)

    def with_scope(self, scope: Optional[RequestScope]) -> "DatabaseAdapter":
        """Same store, bound to one request's deadline."""
        return DatabaseAdapter(self.engine, scope=scope, session_factory=self._sessions)

    @contextmanager
    def _session(self, operation: str) -> Iterator[Session]:
        if self.scope is not None:
            self.scope.check(operation)

        session = self._sessions()
        try:
            with time_operation("store", {"operation": operation}):
                with session.begin():
                    self._apply_deadline(session)
                    yield session
        except CatalogError:
            raise
        except SQLAlchemyError as e:
            record_storage_error(operation, type(e).__name__)
            logger.error(f"Storage failure during {operation}: {type(e).__name__}")
            if self.scope is not None and self.scope.expired:
                raise DeadlineExceeded(operation) from e
            raise StorageError(operation) from e
        finally:
            session.close()

    def _apply_deadline(self, session: Session) -> None:
        if self.scope is None or self.engine.dialect.name != "postgresql":
            return
        remaining = self.scope.remaining_ms()
        if remaining is not None:
            session.execute(text(f"SET LOCAL statement_timeout = {max(1, int(remaining))}"))

    # ========================================================================
    # Books
    # ========================================================================

    def get_book(self, book_id: int, vf: Optional[VisibilityFilter] = None) -> Optional[Book]:
        """Get a book, or None if absent or outside the filter."""
        if vf is not None and vf.is_empty:
            return None
        with self._session("get_book") as session:
            stmt = select(BookRow).where(BookRow.id == book_id)
            if vf is not None:
                stmt = stmt.where(_visibility_clause(vf))
            row = session.scalars(stmt).first()
            return _book(row) if row else None

    def get_book_meta(self, book_id: int) -> Optional[BookMeta]:
        """Only id and creator, for ownership checks."""
        with self._session("get_book_meta") as session:
            row = session.execute(
                select(BookRow.id, BookRow.created_by).where(BookRow.id == book_id)
            ).first()
            return BookMeta(id=row.id, created_by=row.created_by) if row else None

    def list_books(
        self,
        vf: VisibilityFilter,
        criteria: BookFilter,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Book]:
        if vf.is_empty:
            return []
        with self._session("list_books") as session:
            stmt = select(BookRow).where(_visibility_clause(vf))

            if criteria.query:
                needle = criteria.query.lower()
                stmt = stmt.where(or_(
                    func.lower(BookRow.title).contains(needle, autoescape=True),
                    func.lower(func.coalesce(BookRow.description, "")).contains(needle, autoescape=True),
                ))
            if criteria.title:
                stmt = stmt.where(func.lower(BookRow.title).contains(criteria.title.lower(), autoescape=True))
            if criteria.tag_ids:
                stmt = stmt.where(BookRow.id.in_(
                    select(BookTagRow.book_id).where(BookTagRow.tag_id.in_(criteria.tag_ids))
                ))
            if criteria.author_id is not None:
                stmt = stmt.where(BookRow.id.in_(
                    select(BookAuthorRow.book_id).where(BookAuthorRow.author_id == criteria.author_id)
                ))
            if criteria.category_ids:
                stmt = stmt.where(BookRow.id.in_(
                    select(BookCategoryRow.book_id).where(BookCategoryRow.category_id.in_(criteria.category_ids))
                ))
            if criteria.creator_id is not None:
                stmt = stmt.where(BookRow.created_by == criteria.creator_id)

            stmt = stmt.order_by(*_BOOK_ORDER.get(criteria.sort, _BOOK_ORDER["newest"]))
            return [_book(row) for row in session.scalars(_paginate(stmt, limit, offset))]

    def books_in_categories(
        self,
        category_ids: List[int],
        vf: VisibilityFilter,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Book]:
        """Distinct books attached to any of the categories, in one query."""
        if not category_ids or vf.is_empty:
            return []
        with self._session("books_in_categories") as session:
            stmt = (
                select(BookRow)
                .where(BookRow.id.in_(
                    select(BookCategoryRow.book_id).where(BookCategoryRow.category_id.in_(category_ids))
                ))
                .where(_visibility_clause(vf))
                .order_by(BookRow.id)
            )
            return [_book(row) for row in session.scalars(_paginate(stmt, limit, offset))]

    def create_book(self, draft: BookDraft, status: ContentStatus, created_by: Optional[int]) -> Book:
        with self._session("create_book") as session:
            row = BookRow(
                title=draft.title,
                description=draft.description,
                publish_year=draft.publish_year,
                pages=draft.pages,
                language=draft.language,
                publisher=draft.publisher,
                type=draft.type,
                rating=draft.rating or 0,
                cover_url=draft.cover_url,
                status=ContentStatus(status).value,
                created_by=created_by,
            )
            session.add(row)
            session.flush()
            return _book(row)

    def update_book(self, book_id: int, changes: Dict[str, Any]) -> Book:
        with self._session("update_book") as session:
            row = session.get(BookRow, book_id)
            if row is None:
                raise NotFound(f"book {book_id} not found")
            for key, value in _storable(changes).items():
                setattr(row, key, value)
            session.flush()
            return _book(row)

    def delete_book(self, book_id: int) -> bool:
        with self._session("delete_book") as session:
            result = session.execute(delete(BookRow).where(BookRow.id == book_id))
            return result.rowcount > 0

    def update_book_status(self, book_id: int, status: ContentStatus) -> bool:
        with self._session("update_book_status") as session:
            result = session.execute(
                update(BookRow).where(BookRow.id == book_id).values(status=ContentStatus(status).value)
            )
            return result.rowcount > 0

    def missing_ids(self, entity: str, ids: Iterable[int]) -> Set[int]:
        """Ids from `ids` with no row in the entity's table."""
        wanted = set(ids)
        if not wanted:
            return set()
        model = _ID_TABLES[entity]
        with self._session(f"missing_{entity}") as session:
            found = set(session.scalars(select(model.id).where(model.id.in_(wanted))))
            return wanted - found

    # ------------------------------------------------------------------
    # Book associations
    # ------------------------------------------------------------------

    def list_book_authors(self, book_id: int) -> List[Author]:
        with self._session("list_book_authors") as session:
            stmt = (
                select(AuthorRow)
                .join(BookAuthorRow, BookAuthorRow.author_id == AuthorRow.id)
                .where(BookAuthorRow.book_id == book_id)
                .order_by(AuthorRow.name, AuthorRow.id)
            )
            return [_author(row) for row in session.scalars(stmt)]

    def set_book_authors(self, book_id: int, author_ids: List[int]) -> None:
        """Replace all authors in one transaction."""
        with self._session("set_book_authors") as session:
            session.execute(delete(BookAuthorRow).where(BookAuthorRow.book_id == book_id))
            session.add_all(BookAuthorRow(book_id=book_id, author_id=a) for a in author_ids)
            session.flush()

    def add_book_author(self, book_id: int, author_id: int) -> None:
        with self._session("add_book_author") as session:
            if session.get(BookAuthorRow, (book_id, author_id)) is None:
                session.add(BookAuthorRow(book_id=book_id, author_id=author_id))

    def remove_book_author(self, book_id: int, author_id: int) -> None:
        with self._session("remove_book_author") as session:
            session.execute(delete(BookAuthorRow).where(
                BookAuthorRow.book_id == book_id, BookAuthorRow.author_id == author_id,
            ))

    def list_book_tag_links(self, book_id: int) -> List[BookTag]:
        with self._session("list_book_tag_links") as session:
            stmt = select(BookTagRow).where(BookTagRow.book_id == book_id).order_by(BookTagRow.tag_id)
            return [
                BookTag(book_id=row.book_id, tag_id=row.tag_id, weight=row.weight)
                for row in session.scalars(stmt)
            ]

    def set_book_tags(self, book_id: int, links: List[BookTag]) -> None:
        """Replace all tag links in one transaction."""
        with self._session("set_book_tags") as session:
            session.execute(delete(BookTagRow).where(BookTagRow.book_id == book_id))
            session.add_all(
                BookTagRow(book_id=book_id, tag_id=link.tag_id, weight=link.weight) for link in links
            )
            session.flush()

    def add_book_tag(self, link: BookTag) -> None:
        """Attach a tag; an explicit weight overwrites an existing link's weight."""
        with self._session("add_book_tag") as session:
            row = session.get(BookTagRow, (link.book_id, link.tag_id))
            if row is None:
                session.add(BookTagRow(book_id=link.book_id, tag_id=link.tag_id, weight=link.weight))
            elif link.weight is not None:
                row.weight = link.weight

    def remove_book_tag(self, book_id: int, tag_id: int) -> None:
        with self._session("remove_book_tag") as session:
            session.execute(delete(BookTagRow).where(
                BookTagRow.book_id == book_id, BookTagRow.tag_id == tag_id,
            ))

    def list_book_categories(self, book_id: int) -> List[Category]:
        with self._session("list_book_categories") as session:
            stmt = (
                select(CategoryRow)
                .join(BookCategoryRow, BookCategoryRow.category_id == CategoryRow.id)
                .where(BookCategoryRow.book_id == book_id)
                .order_by(CategoryRow.id)
            )
            return [_category(row) for row in session.scalars(stmt)]

    def set_book_categories(self, book_id: int, category_ids: List[int]) -> None:
        with self._session("set_book_categories") as session:
            session.execute(delete(BookCategoryRow).where(BookCategoryRow.book_id == book_id))
            session.add_all(BookCategoryRow(book_id=book_id, category_id=c) for c in category_ids)
            session.flush()

    def add_book_category(self, book_id: int, category_id: int) -> None:
        with self._session("add_book_category") as session:
            if session.get(BookCategoryRow, (book_id, category_id)) is None:
                session.add(BookCategoryRow(book_id=book_id, category_id=category_id))

    def remove_book_category(self, book_id: int, category_id: int) -> None:
        with self._session("remove_book_category") as session:
            session.execute(delete(BookCategoryRow).where(
                BookCategoryRow.book_id == book_id, BookCategoryRow.category_id == category_id,
            ))

    def list_book_images(self, book_id: int) -> List[BookImage]:
        with self._session("list_book_images") as session:
            stmt = (
                select(BookImageRow)
                .where(BookImageRow.book_id == book_id)
                .order_by(BookImageRow.order_index, BookImageRow.id)
            )
            return [
                BookImage(id=r.id, book_id=r.book_id, url=r.url, order_index=r.order_index)
                for r in session.scalars(stmt)
            ]

    def add_book_image(self, book_id: int, url: str, order_index: int = 0) -> BookImage:
        with self._session("add_book_image") as session:
            row = BookImageRow(book_id=book_id, url=url, order_index=order_index)
            session.add(row)
            session.flush()
            return BookImage(id=row.id, book_id=row.book_id, url=row.url, order_index=row.order_index)

    def list_book_files(self, book_id: int) -> List[BookFile]:
        with self._session("list_book_files") as session:
            stmt = select(BookFileRow).where(BookFileRow.book_id == book_id).order_by(BookFileRow.id)
            return [self._book_file(r) for r in session.scalars(stmt)]

    def add_book_file(self, book_id: int, format: str, url: str, file_size: int = 0,
                      hash: str = "", description: str = "") -> BookFile:
        with self._session("add_book_file") as session:
            row = BookFileRow(
                book_id=book_id, format=format, url=url,
                file_size=file_size, hash=hash, description=description,
            )
            session.add(row)
            session.flush()
            return self._book_file(row)

    @staticmethod
    def _book_file(row: BookFileRow) -> BookFile:
        return BookFile(
            id=row.id, book_id=row.book_id, format=row.format, url=row.url,
            file_size=row.file_size, hash=row.hash, description=row.description,
            created_at=row.created_at,
        )

    # ------------------------------------------------------------------
    # Favorites
    # ------------------------------------------------------------------

    def list_favorite_books(self, user_id: int, vf: VisibilityFilter) -> List[Book]:
        if vf.is_empty:
            return []
        with self._session("list_favorite_books") as session:
            stmt = (
                select(BookRow)
                .join(BookFavoriteRow, BookFavoriteRow.book_id == BookRow.id)
                .where(BookFavoriteRow.user_id == user_id)
                .where(_visibility_clause(vf))
                .order_by(BookFavoriteRow.created_at.desc(), BookRow.id.desc())
            )
            return [_book(row) for row in session.scalars(stmt)]

    def is_favorite(self, user_id: int, book_id: int) -> bool:
        with self._session("is_favorite") as session:
            return session.get(BookFavoriteRow, (user_id, book_id)) is not None

    def add_favorite(self, user_id: int, book_id: int) -> None:
        with self._session("add_favorite") as session:
            if session.get(BookFavoriteRow, (user_id, book_id)) is None:
                session.add(BookFavoriteRow(user_id=user_id, book_id=book_id))

    def remove_favorite(self, user_id: int, book_id: int) -> None:
        with self._session("remove_favorite") as session:
            session.execute(delete(BookFavoriteRow).where(
                BookFavoriteRow.user_id == user_id, BookFavoriteRow.book_id == book_id,
            ))

    # ========================================================================
    # Authors
    # ========================================================================

    def list_authors(self, limit: Optional[int] = None, offset: int = 0) -> List[Author]:
        with self._session("list_authors") as session:
            stmt = select(AuthorRow).order_by(AuthorRow.name, AuthorRow.id)
            return [_author(row) for row in session.scalars(_paginate(stmt, limit, offset))]

    def get_author(self, author_id: int) -> Optional[Author]:
        with self._session("get_author") as session:
            row = session.get(AuthorRow, author_id)
            return _author(row) if row else None

    def create_author(self, name: str, bio: Optional[str] = None, photo_url: Optional[str] = None) -> Author:
        with self._session("create_author") as session:
            row = AuthorRow(name=name, bio=bio, photo_url=photo_url)
            session.add(row)
            session.flush()
            return _author(row)

    def update_author(self, author_id: int, changes: Dict[str, Any]) -> Author:
        with self._session("update_author") as session:
            row = session.get(AuthorRow, author_id)
            if row is None:
                raise NotFound(f"author {author_id} not found")
            for key, value in changes.items():
                setattr(row, key, value)
            session.flush()
            return _author(row)

    def delete_author(self, author_id: int) -> bool:
        with self._session("delete_author") as session:
            return session.execute(delete(AuthorRow).where(AuthorRow.id == author_id)).rowcount > 0

    # ========================================================================
    # Tags
    # ========================================================================

    def list_tags(self, query: Optional[str] = None) -> List[Tag]:
        with self._session("list_tags") as session:
            stmt = select(TagRow).order_by(TagRow.name, TagRow.id)
            if query:
                stmt = stmt.where(func.lower(TagRow.name).contains(query.lower(), autoescape=True))
            return [_tag(row) for row in session.scalars(stmt)]

    def list_tags_by_ids(self, tag_ids: List[int]) -> List[Tag]:
        if not tag_ids:
            return []
        with self._session("list_tags_by_ids") as session:
            stmt = select(TagRow).where(TagRow.id.in_(tag_ids))
            return [_tag(row) for row in session.scalars(stmt)]

    def get_tag(self, tag_id: int) -> Optional[Tag]:
        with self._session("get_tag") as session:
            row = session.get(TagRow, tag_id)
            return _tag(row) if row else None

    def get_tag_by_name(self, name: str) -> Optional[Tag]:
        with self._session("get_tag_by_name") as session:
            row = session.scalars(select(TagRow).where(TagRow.name == name)).first()
            return _tag(row) if row else None

    def create_tag(self, name: str, color: str = "") -> Tag:
        with self._session("create_tag") as session:
            row = TagRow(name=name, color=color)
            session.add(row)
            session.flush()
            return _tag(row)

    def update_tag(self, tag_id: int, changes: Dict[str, Any]) -> Tag:
        with self._session("update_tag") as session:
            row = session.get(TagRow, tag_id)
            if row is None:
                raise NotFound(f"tag {tag_id} not found")
            for key, value in changes.items():
                setattr(row, key, value)
            session.flush()
            return _tag(row)

    def delete_tag(self, tag_id: int) -> bool:
        with self._session("delete_tag") as session:
            return session.execute(delete(TagRow).where(TagRow.id == tag_id)).rowcount > 0

    # ========================================================================
    # Categories
    # ========================================================================

    def list_categories(self) -> List[Category]:
        with self._session("list_categories") as session:
            return [_category(row) for row in session.scalars(select(CategoryRow).order_by(CategoryRow.id))]

    def list_child_categories(self, parent_id: Optional[int]) -> List[Category]:
        """Direct children of parent_id; roots when parent_id is None."""
        with self._session("list_child_categories") as session:
            if parent_id is None:
                condition = CategoryRow.parent_id.is_(None)
            else:
                condition = CategoryRow.parent_id == parent_id
            stmt = select(CategoryRow).where(condition).order_by(CategoryRow.name, CategoryRow.id)
            return [_category(row) for row in session.scalars(stmt)]

    def get_category(self, category_id: int) -> Optional[Category]:
        with self._session("get_category") as session:
            row = session.get(CategoryRow, category_id)
            return _category(row) if row else None

    def get_category_by_slug(self, slug: str) -> Optional[Category]:
        with self._session("get_category_by_slug") as session:
            row = session.scalars(select(CategoryRow).where(CategoryRow.slug == slug)).first()
            return _category(row) if row else None

    def create_category(self, name: str, parent_id: Optional[int] = None, slug: Optional[str] = None,
                        description: Optional[str] = None) -> Category:
        with self._session("create_category") as session:
            row = CategoryRow(name=name, parent_id=parent_id, slug=slug, description=description)
            session.add(row)
            session.flush()
            return _category(row)

    def update_category(self, category_id: int, changes: Dict[str, Any]) -> Category:
        with self._session("update_category") as session:
            row = session.get(CategoryRow, category_id)
            if row is None:
                raise NotFound(f"category {category_id} not found")
            for key, value in changes.items():
                setattr(row, key, value)
            session.flush()
            return _category(row)

    def delete_category(self, category_id: int) -> bool:
        with self._session("delete_category") as session:
            return session.execute(delete(CategoryRow).where(CategoryRow.id == category_id)).rowcount > 0

    # ========================================================================
    # Comments
    # ========================================================================

    def create_comment(self, book_id: int, user_id: int, text: str,
                       status: CommentStatus = CommentStatus.ACTIVE) -> Comment:
        with self._session("create_comment") as session:
            row = CommentRow(book_id=book_id, user_id=user_id, text=text, status=CommentStatus(status).value)
            session.add(row)
            session.flush()
            return _comment(row)

    def get_comment(self, comment_id: int) -> Optional[Comment]:
        with self._session("get_comment") as session:
            row = session.get(CommentRow, comment_id)
            return _comment(row) if row else None

    def update_comment_text(self, comment_id: int, text: str) -> Comment:
        with self._session("update_comment_text") as session:
            row = session.get(CommentRow, comment_id)
            if row is None:
                raise NotFound(f"comment {comment_id} not found")
            row.text = text
            row.updated_at = utcnow()
            session.flush()
            return _comment(row)

    def set_comment_status(self, comment_id: int, status: CommentStatus) -> bool:
        with self._session("set_comment_status") as session:
            result = session.execute(
                update(CommentRow)
                .where(CommentRow.id == comment_id)
                .values(status=CommentStatus(status).value, updated_at=utcnow())
            )
            return result.rowcount > 0

    def list_comments(
        self,
        book_id: Optional[int] = None,
        user_id: Optional[int] = None,
        statuses: Optional[Iterable[CommentStatus]] = None,
        book_filter: Optional[VisibilityFilter] = None,
        limit: Optional[int] = None,
        offset: int = 0,
        newest_first: bool = False,
    ) -> List[Comment]:
        """
        List comments.

        Args:
            statuses: Allowed statuses; an empty collection yields nothing
            book_filter: Only comments on books passing this filter
        """
        status_values = None if statuses is None else [CommentStatus(s).value for s in statuses]
        if status_values is not None and not status_values:
            return []
        if book_filter is not None and book_filter.is_empty:
            return []

        with self._session("list_comments") as session:
            stmt = select(CommentRow)
            if book_id is not None:
                stmt = stmt.where(CommentRow.book_id == book_id)
            if user_id is not None:
                stmt = stmt.where(CommentRow.user_id == user_id)
            if status_values is not None:
                stmt = stmt.where(CommentRow.status.in_(status_values))
            if book_filter is not None:
                stmt = stmt.join(BookRow, BookRow.id == CommentRow.book_id).where(_visibility_clause(book_filter))

            if newest_first:
                stmt = stmt.order_by(CommentRow.created_at.desc(), CommentRow.id.desc())
            else:
                stmt = stmt.order_by(CommentRow.created_at.asc(), CommentRow.id.asc())

            return [_comment(row) for row in session.scalars(_paginate(stmt, limit, offset))]

    def count_comments(self, book_id: int, statuses: Iterable[CommentStatus]) -> int:
        values = [CommentStatus(s).value for s in statuses]
        if not values:
            return 0
        with self._session("count_comments") as session:
            stmt = (
                select(func.count(CommentRow.id))
                .where(CommentRow.book_id == book_id)
                .where(CommentRow.status.in_(values))
            )
            return session.scalar(stmt) or 0

    # ========================================================================
    # Users
    # ========================================================================

    def get_user(self, user_id: int) -> Optional[User]:
        with self._session("get_user") as session:
            row = session.get(UserRow, user_id)
            return _user(row) if row else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._session("get_user_by_email") as session:
            row = session.scalars(select(UserRow).where(UserRow.email == email)).first()
            return _user(row) if row else None

    def create_user(self, email: str, password_hash: str, role: Role,
                    name: Optional[str] = None, bio: Optional[str] = None) -> User:
        with self._session("create_user") as session:
            row = UserRow(
                email=email, password_hash=password_hash, role=Role(role).value, name=name, bio=bio,
            )
            session.add(row)
            session.flush()
            return _user(row)

    def update_user(self, user_id: int, changes: Dict[str, Any]) -> User:
        with self._session("update_user") as session:
            row = session.get(UserRow, user_id)
            if row is None:
                raise NotFound(f"user {user_id} not found")
            for key, value in _storable(changes).items():
                setattr(row, key, value)
            session.flush()
            return _user(row)

    def list_users(self, active_only: bool = True, limit: Optional[int] = None, offset: int = 0) -> List[User]:
        with self._session("list_users") as session:
            stmt = select(UserRow).order_by(UserRow.id)
            if active_only:
                stmt = stmt.where(UserRow.is_active.is_(True))
            return [_user(row) for row in session.scalars(_paginate(stmt, limit, offset))]

    def increment_token_version(self, user_id: int) -> bool:
        with self._session("increment_token_version") as session:
            result = session.execute(
                update(UserRow)
                .where(UserRow.id == user_id)
                .values(token_version=UserRow.token_version + 1)
            )
            return result.rowcount > 0

    def delete_user(self, user_id: int) -> bool:
        with self._session("delete_user") as session:
            return session.execute(delete(UserRow).where(UserRow.id == user_id)).rowcount > 0


# ============================================================================
# Engine setup
# ============================================================================

def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_engine_from_config(config: Dict[str, Any]) -> Engine:
    """
    Build the engine for DATABASE_URL.

    SQLite gets foreign keys switched on (cascades and SET NULL rely on
    them) and a single shared connection when in-memory.
    """
    url = config["DATABASE_URL"]
    kwargs: Dict[str, Any] = {}

    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in url or url.rstrip("/") in ("sqlite:", "sqlite+pysqlite:"):
            kwargs["poolclass"] = StaticPool

    engine = create_engine(url, **kwargs)

    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)

    if config.get("AUTO_CREATE_SCHEMA", True):
        Base.metadata.create_all(engine)
        logger.info("Database schema ensured")

    return engine
