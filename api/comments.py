"""Comment endpoints."""

from dataclasses import asdict
from typing import List, Optional, Tuple

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel, Field, field_validator

from api.deps import Services, get_services, page_params
from api.guards import require, require_any
from api.middleware.roles import get_caller
from core.rbac import (
    CAP_CREATE_CONTENT,
    CAP_MODERATE_CONTENT,
    CAP_READ_CATALOG,
)
from core.types import ALL_COMMENT_STATUSES

router = APIRouter(tags=["comments"])


class CommentRequest(BaseModel):
    text: str = Field(..., min_length=1, max_length=5000)


class CommentStatusRequest(BaseModel):
    status: str

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in {s.value for s in ALL_COMMENT_STATUSES}:
            raise ValueError(f"Invalid comment status: {v}")
        return v


# ============================================================================
# Per-book
# ============================================================================

@router.get("/books/{book_id}/comments")
@require(CAP_READ_CATALOG)
def book_comments(
    request: Request,
    book_id: int,
    comment_status: List[str] = Query([], alias="status"),
    page: Tuple[int, int] = Depends(page_params),
    services: Services = Depends(get_services),
):
    """
    Comments on a book.

    `status` is honoured for admins only; everyone else sees active comments.
    """
    limit, offset = page
    comments = services.comments.by_book(
        book_id, get_caller(request), statuses=comment_status, limit=limit, offset=offset,
    )
    return {"items": [asdict(c) for c in comments], "limit": limit, "offset": offset}


@router.get("/books/{book_id}/comments/count")
@require(CAP_READ_CATALOG)
def count_book_comments(request: Request, book_id: int, services: Services = Depends(get_services)):
    return {"book_id": book_id, "count": services.comments.count_by_book(book_id, get_caller(request))}


@router.post("/books/{book_id}/comments", status_code=status.HTTP_201_CREATED)
@require(CAP_CREATE_CONTENT)
def create_comment(request: Request, book_id: int, body: CommentRequest, services: Services = Depends(get_services)):
    return asdict(services.comments.create(book_id, body.text, get_caller(request)))


# ============================================================================
# Single comment
# ============================================================================

@router.get("/comments/latest")
@require(CAP_READ_CATALOG)
def latest_comments(
    request: Request,
    limit: int = Query(10, ge=1, le=100),
    services: Services = Depends(get_services),
):
    return {"items": [asdict(c) for c in services.comments.latest(get_caller(request), limit)]}


@router.get("/comments/{comment_id}")
@require(CAP_READ_CATALOG)
def get_comment(request: Request, comment_id: int, services: Services = Depends(get_services)):
    return asdict(services.comments.get(comment_id, get_caller(request)))


@router.patch("/comments/{comment_id}")
@require(CAP_CREATE_CONTENT)
def update_comment(request: Request, comment_id: int, body: CommentRequest, services: Services = Depends(get_services)):
    return asdict(services.comments.update_text(comment_id, body.text, get_caller(request)))


@router.delete("/comments/{comment_id}", status_code=status.HTTP_204_NO_CONTENT)
@require(CAP_CREATE_CONTENT)
def delete_comment(request: Request, comment_id: int, services: Services = Depends(get_services)):
    services.comments.delete(comment_id, get_caller(request))


@router.put("/comments/{comment_id}/status")
@require(CAP_MODERATE_CONTENT)
def set_comment_status(
    request: Request,
    comment_id: int,
    body: CommentStatusRequest,
    services: Services = Depends(get_services),
):
    services.comments.set_status(comment_id, body.status, get_caller(request))
    return {"id": comment_id, "status": body.status}


@router.get("/users/{user_id}/comments")
@require_any(CAP_CREATE_CONTENT, CAP_MODERATE_CONTENT)
def user_comments(
    request: Request,
    user_id: int,
    page: Tuple[int, int] = Depends(page_params),
    services: Services = Depends(get_services),
):
    """Every comment of a user, in any status; owner or admin only."""
    limit, offset = page
    comments = services.comments.by_user(user_id, get_caller(request), limit, offset)
    return {"items": [asdict(c) for c in comments], "limit": limit, "offset": offset}
