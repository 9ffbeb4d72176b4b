"""
Book comments.

Comments carry their author directly, so ownership is checked inline with
is_owner_or_admin instead of a separate metadata fetch. Deleting is a soft
delete (status -> deleted); only admins change statuses otherwise.
"""

import logging
from typing import Iterable, List, Optional

from core.errors import NotFound, PermissionDenied, ValidationError
from core.rbac.ownership import is_owner_or_admin, require_admin
from core.rbac.roles import is_admin
from core.rbac.visibility import (
    PUBLIC_COMMENT_STATUSES,
    viewable_comment_statuses,
    visibility_filter,
)
from core.types import ALL_COMMENT_STATUSES, Caller, Comment, CommentStatus

logger = logging.getLogger(__name__)

MAX_COMMENT_LENGTH = 5000


def _clean_text(text: Optional[str]) -> str:
    text = (text or "").strip()
    if not text:
        raise ValidationError("comment text is required")
    if len(text) > MAX_COMMENT_LENGTH:
        raise ValidationError(f"comment text exceeds {MAX_COMMENT_LENGTH} characters")
    return text


class CommentService:

    def __init__(self, adapter, books):
        """
        Args:
            adapter: Store
            books: BookService used to check the caller can see the book
        """
        self.adapter = adapter
        self.books = books

    def create(self, book_id: int, text: str, caller: Caller) -> Comment:
        if caller.is_anonymous:
            raise PermissionDenied("commenting requires an account")
        text = _clean_text(text)
        self.books.get_visible_book(book_id, caller)
        comment = self.adapter.create_comment(
            book_id=book_id, user_id=caller.user_id, text=text, status=CommentStatus.ACTIVE,
        )
        logger.debug(f"Comment {comment.id} added to book {book_id} by user {caller.user_id}")
        return comment

    def get(self, comment_id: int, caller: Caller) -> Comment:
        """
        Fetch one comment.

        Non-active comments are only shown to their author and to admins;
        the book itself must be visible to the caller.
        """
        comment = self._load(comment_id)
        if comment.status != CommentStatus.ACTIVE and not is_owner_or_admin(comment.user_id, caller):
            raise NotFound(f"comment {comment_id} not found")
        self.books.get_visible_book(comment.book_id, caller)
        return comment

    def update_text(self, comment_id: int, text: str, caller: Caller) -> Comment:
        comment = self._load(comment_id)
        if not is_owner_or_admin(comment.user_id, caller):
            raise PermissionDenied("not the comment author")
        return self.adapter.update_comment_text(comment_id, _clean_text(text))

    def delete(self, comment_id: int, caller: Caller) -> None:
        comment = self._load(comment_id)
        if not is_owner_or_admin(comment.user_id, caller):
            raise PermissionDenied("not the comment author")
        self.adapter.set_comment_status(comment_id, CommentStatus.DELETED)
        logger.info(f"Comment {comment_id} deleted by user {caller.user_id}")

    def set_status(self, comment_id: int, status, caller: Caller) -> None:
        require_admin(caller.role, "set comment status")
        try:
            status = CommentStatus(status)
        except ValueError:
            raise ValidationError(f"unknown comment status {status!r}")
        if not self.adapter.set_comment_status(comment_id, status):
            raise NotFound(f"comment {comment_id} not found")

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    def by_book(
        self,
        book_id: int,
        caller: Caller,
        statuses: Optional[Iterable[str]] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Comment]:
        """
        Comments on a visible book.

        Only admins may ask for statuses other than active; for everyone
        else the request is narrowed to active comments.
        """
        self.books.get_visible_book(book_id, caller)
        allowed = viewable_comment_statuses(caller.role, self._parse_statuses(statuses))
        return self.adapter.list_comments(book_id=book_id, statuses=allowed, limit=limit, offset=offset)

    def by_user(self, user_id: int, caller: Caller, limit: Optional[int] = None, offset: int = 0) -> List[Comment]:
        if not is_owner_or_admin(user_id, caller):
            raise PermissionDenied("comments of another user")
        return self.adapter.list_comments(
            user_id=user_id, statuses=ALL_COMMENT_STATUSES, limit=limit, offset=offset,
        )

    def latest(self, caller: Caller, limit: int = 10) -> List[Comment]:
        """Most recent active comments on books the caller can see."""
        vf = visibility_filter(caller, refine_restricted=self.books.refine_lists)
        return self.adapter.list_comments(
            statuses=PUBLIC_COMMENT_STATUSES, book_filter=vf, limit=limit, newest_first=True,
        )

    def count_by_book(self, book_id: int, caller: Caller) -> int:
        self.books.get_visible_book(book_id, caller)
        statuses = ALL_COMMENT_STATUSES if is_admin(caller.role) else PUBLIC_COMMENT_STATUSES
        return self.adapter.count_comments(book_id, statuses)

    # ------------------------------------------------------------------

    def _load(self, comment_id: int) -> Comment:
        comment = self.adapter.get_comment(comment_id)
        if comment is None:
            raise NotFound(f"comment {comment_id} not found")
        return comment

    @staticmethod
    def _parse_statuses(statuses: Optional[Iterable[str]]) -> Optional[List[CommentStatus]]:
        if not statuses:
            return None
        try:
            return [CommentStatus(s) for s in statuses]
        except ValueError as e:
            raise ValidationError(str(e))
