"""
Per-request service wiring for the routers.

The adapter, config and token codec live on app.state (set by create_app);
every request gets services bound to an adapter that carries the request's
deadline scope.
"""

from typing import Optional, Tuple

from fastapi import Query, Request

from api.middleware.roles import get_request_scope
from core.authors import AuthorService
from core.books import BookService
from core.categories import CategoryService
from core.comments import CommentService
from core.tags import TagService
from core.users import AuthService, UserService


class Services:
    """Services for one request, all sharing one scoped adapter."""

    def __init__(self, adapter, config: dict, token_codec=None):
        refine = bool(config.get("LIST_OWNERSHIP_REFINEMENT", False))
        self.adapter = adapter
        self.books = BookService(adapter, refine_lists=refine)
        self.categories = CategoryService(adapter, refine_lists=refine)
        self.tags = TagService(adapter)
        self.authors = AuthorService(adapter)
        self.comments = CommentService(adapter, self.books)
        self.users = UserService(adapter)
        self.auth = AuthService(adapter, token_codec) if token_codec is not None else None


def get_services(request: Request) -> Services:
    state = request.app.state
    adapter = state.adapter.with_scope(get_request_scope(request))
    return Services(adapter, state.config, state.token_codec)


def page_params(
    request: Request,
    limit: Optional[int] = Query(None, ge=1),
    offset: int = Query(0, ge=0),
) -> Tuple[int, int]:
    """(limit, offset) with limit defaulted and clamped to the configured bounds."""
    cfg = request.app.state.config
    if limit is None:
        limit = cfg["DEFAULT_PAGE_LIMIT"]
    return min(limit, cfg["MAX_PAGE_LIMIT"]), offset
