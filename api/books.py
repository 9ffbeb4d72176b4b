"""
Book endpoints.

Routes are thin: capability guards decide role-only questions, BookService
applies the visibility policy and the ownership guard.
"""

import logging
from dataclasses import asdict
from typing import Any, Dict, List, Optional, Tuple

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel, Field, field_validator

from api.deps import Services, get_services, page_params
from api.guards import require
from api.middleware.roles import get_caller
from core.rbac import (
    CAP_CREATE_CONTENT,
    CAP_MODERATE_CONTENT,
    CAP_READ_CATALOG,
)
from core.types import ALL_CONTENT_STATUSES, BOOK_SORTS, BookDraft, BookFilter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/books", tags=["books"])


# ============================================================================
# Request/Response Models
# ============================================================================

class BookCreateRequest(BaseModel):
    """Fields for a new book. Status is decided by the server."""
    title: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = None
    publish_year: Optional[int] = None
    pages: Optional[int] = Field(None, ge=0)
    language: Optional[str] = None
    publisher: Optional[str] = None
    type: Optional[str] = None
    rating: int = Field(0, ge=0)
    cover_url: Optional[str] = None

    model_config = {
        "json_schema_extra": {
            "example": {
                "title": "The Left Hand of Darkness",
                "publish_year": 1969,
                "language": "en",
            }
        }
    }


class BookUpdateRequest(BaseModel):
    """Partial update; only fields present in the body are applied."""
    title: Optional[str] = Field(None, max_length=500)
    description: Optional[str] = None
    publish_year: Optional[int] = None
    pages: Optional[int] = Field(None, ge=0)
    language: Optional[str] = None
    publisher: Optional[str] = None
    type: Optional[str] = None
    rating: Optional[int] = Field(None, ge=0)
    cover_url: Optional[str] = None


class BookStatusRequest(BaseModel):
    status: str

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in {s.value for s in ALL_CONTENT_STATUSES}:
            raise ValueError(f"Invalid status: {v}")
        return v


class IdListRequest(BaseModel):
    ids: List[int] = Field(default_factory=list)


class TagLink(BaseModel):
    tag_id: int
    weight: Optional[int] = None


class BookTagsRequest(BaseModel):
    tags: List[TagLink] = Field(default_factory=list)


class BookTagAddRequest(BaseModel):
    weight: Optional[int] = None


class BookImageRequest(BaseModel):
    url: str = Field(..., min_length=1)
    order_index: int = 0


class BookFileRequest(BaseModel):
    format: str = Field(..., min_length=1, max_length=20)
    url: str = Field(..., min_length=1)
    file_size: int = Field(0, ge=0)
    hash: str = ""
    description: str = ""


def _books(books) -> List[Dict[str, Any]]:
    return [b.to_dict() for b in books]


# ============================================================================
# Listings
# ============================================================================

@router.get("")
@require(CAP_READ_CATALOG)
def list_books(
    request: Request,
    q: Optional[str] = None,
    tag_id: List[int] = Query([]),
    author_id: Optional[int] = None,
    category_id: List[int] = Query([]),
    sort: str = Query("newest", description=f"One of {', '.join(BOOK_SORTS)}"),
    page: Tuple[int, int] = Depends(page_params),
    services: Services = Depends(get_services),
):
    """Search the catalog through the caller's visibility filter."""
    limit, offset = page
    criteria = BookFilter(
        query=q,
        tag_ids=tag_id,
        author_id=author_id,
        category_ids=category_id,
        sort=sort,
    )
    books = services.books.list_visible_books(criteria, get_caller(request), limit, offset)
    return {"items": _books(books), "limit": limit, "offset": offset}


@router.get("/mine")
@require(CAP_CREATE_CONTENT)
def my_books(
    request: Request,
    page: Tuple[int, int] = Depends(page_params),
    services: Services = Depends(get_services),
):
    """The caller's own books in every status."""
    limit, offset = page
    books = services.books.user_books(get_caller(request), limit, offset)
    return {"items": _books(books), "limit": limit, "offset": offset}


@router.get("/new-releases")
@require(CAP_READ_CATALOG)
def new_releases(
    request: Request,
    limit: int = Query(10, ge=1, le=100),
    services: Services = Depends(get_services),
):
    return {"items": _books(services.books.new_releases(get_caller(request), limit))}


@router.get("/duplicates/{title}")
@require(CAP_READ_CATALOG)
def duplicate_books(request: Request, title: str, services: Services = Depends(get_services)):
    """Books whose title contains `title`; used to warn before creating a duplicate."""
    return {"items": _books(services.books.duplicate_books(title, get_caller(request)))}


@router.get("/favorites")
@require(CAP_CREATE_CONTENT)
def list_favorites(request: Request, services: Services = Depends(get_services)):
    return {"items": _books(services.books.list_favorites(get_caller(request)))}


@router.get("/by-author/{author_id}")
@require(CAP_READ_CATALOG)
def books_by_author(
    request: Request,
    author_id: int,
    page: Tuple[int, int] = Depends(page_params),
    services: Services = Depends(get_services),
):
    limit, offset = page
    books = services.books.books_by_author(author_id, get_caller(request), limit, offset)
    return {"items": _books(books), "limit": limit, "offset": offset}


@router.get("/by-tag/{tag_id}")
@require(CAP_READ_CATALOG)
def books_by_tag(
    request: Request,
    tag_id: int,
    page: Tuple[int, int] = Depends(page_params),
    services: Services = Depends(get_services),
):
    limit, offset = page
    books = services.books.books_by_tag(tag_id, get_caller(request), limit, offset)
    return {"items": _books(books), "limit": limit, "offset": offset}


# ============================================================================
# Single Book
# ============================================================================

@router.get("/{book_id}")
@require(CAP_READ_CATALOG)
def get_book(request: Request, book_id: int, services: Services = Depends(get_services)):
    """Book with authors, weighted tags, images and files."""
    return services.books.get_book_view(book_id, get_caller(request)).to_dict()


@router.get("/{book_id}/extras")
@require(CAP_READ_CATALOG)
def get_book_extras(request: Request, book_id: int, services: Services = Depends(get_services)):
    return services.books.get_book_extras(book_id, get_caller(request)).to_dict()


@router.get("/{book_id}/tags")
@require(CAP_READ_CATALOG)
def get_book_tags(request: Request, book_id: int, services: Services = Depends(get_services)):
    return {"items": [asdict(t) for t in services.books.book_tags(book_id, get_caller(request))]}


@router.get("/{book_id}/authors")
@require(CAP_READ_CATALOG)
def get_book_authors(request: Request, book_id: int, services: Services = Depends(get_services)):
    return {"items": [asdict(a) for a in services.books.book_authors(book_id, get_caller(request))]}


@router.get("/{book_id}/categories")
@require(CAP_READ_CATALOG)
def get_book_categories(request: Request, book_id: int, services: Services = Depends(get_services)):
    return {"items": [asdict(c) for c in services.books.book_categories(book_id, get_caller(request))]}


@router.post("", status_code=status.HTTP_201_CREATED)
@require(CAP_CREATE_CONTENT)
def create_book(request: Request, body: BookCreateRequest, services: Services = Depends(get_services)):
    """Create a book; admins publish immediately, everyone else starts in quarantine."""
    book = services.books.create_book(BookDraft(**body.model_dump()), get_caller(request))
    return book.to_dict()


@router.patch("/{book_id}")
@require(CAP_CREATE_CONTENT)
def update_book(
    request: Request,
    book_id: int,
    body: BookUpdateRequest,
    services: Services = Depends(get_services),
):
    changes = body.model_dump(exclude_unset=True)
    return services.books.update_book(book_id, changes, get_caller(request)).to_dict()


@router.delete("/{book_id}", status_code=status.HTTP_204_NO_CONTENT)
@require(CAP_CREATE_CONTENT)
def delete_book(request: Request, book_id: int, services: Services = Depends(get_services)):
    services.books.delete_book(book_id, get_caller(request))


@router.put("/{book_id}/status")
@require(CAP_MODERATE_CONTENT)
def update_book_status(
    request: Request,
    book_id: int,
    body: BookStatusRequest,
    services: Services = Depends(get_services),
):
    services.books.update_book_status(book_id, body.status, get_caller(request))
    return {"id": book_id, "status": body.status}


# ============================================================================
# Favorites
# ============================================================================

@router.put("/{book_id}/favorite", status_code=status.HTTP_204_NO_CONTENT)
@require(CAP_CREATE_CONTENT)
def add_favorite(request: Request, book_id: int, services: Services = Depends(get_services)):
    services.books.add_favorite(book_id, get_caller(request))


@router.delete("/{book_id}/favorite", status_code=status.HTTP_204_NO_CONTENT)
@require(CAP_CREATE_CONTENT)
def remove_favorite(request: Request, book_id: int, services: Services = Depends(get_services)):
    services.books.remove_favorite(book_id, get_caller(request))


# ============================================================================
# Associations
# ============================================================================

@router.put("/{book_id}/authors", status_code=status.HTTP_204_NO_CONTENT)
@require(CAP_CREATE_CONTENT)
def set_book_authors(
    request: Request,
    book_id: int,
    body: IdListRequest,
    services: Services = Depends(get_services),
):
    services.books.set_book_authors(book_id, body.ids, get_caller(request))


@router.post("/{book_id}/authors/{author_id}", status_code=status.HTTP_204_NO_CONTENT)
@require(CAP_CREATE_CONTENT)
def add_book_author(request: Request, book_id: int, author_id: int, services: Services = Depends(get_services)):
    services.books.add_book_author(book_id, author_id, get_caller(request))


@router.delete("/{book_id}/authors/{author_id}", status_code=status.HTTP_204_NO_CONTENT)
@require(CAP_CREATE_CONTENT)
def remove_book_author(request: Request, book_id: int, author_id: int, services: Services = Depends(get_services)):
    services.books.remove_book_author(book_id, author_id, get_caller(request))


@router.put("/{book_id}/tags", status_code=status.HTTP_204_NO_CONTENT)
@require(CAP_CREATE_CONTENT)
def set_book_tags(
    request: Request,
    book_id: int,
    body: BookTagsRequest,
    services: Services = Depends(get_services),
):
    links = [(link.tag_id, link.weight) for link in body.tags]
    services.books.set_book_tags(book_id, links, get_caller(request))


@router.post("/{book_id}/tags/{tag_id}", status_code=status.HTTP_204_NO_CONTENT)
@require(CAP_CREATE_CONTENT)
def add_book_tag(
    request: Request,
    book_id: int,
    tag_id: int,
    body: Optional[BookTagAddRequest] = None,
    services: Services = Depends(get_services),
):
    weight = body.weight if body is not None else None
    services.books.add_book_tag(book_id, tag_id, get_caller(request), weight=weight)


@router.delete("/{book_id}/tags/{tag_id}", status_code=status.HTTP_204_NO_CONTENT)
@require(CAP_CREATE_CONTENT)
def remove_book_tag(request: Request, book_id: int, tag_id: int, services: Services = Depends(get_services)):
    services.books.remove_book_tag(book_id, tag_id, get_caller(request))


@router.put("/{book_id}/categories", status_code=status.HTTP_204_NO_CONTENT)
@require(CAP_CREATE_CONTENT)
def set_book_categories(
    request: Request,
    book_id: int,
    body: IdListRequest,
    services: Services = Depends(get_services),
):
    services.books.set_book_categories(book_id, body.ids, get_caller(request))


@router.post("/{book_id}/categories/{category_id}", status_code=status.HTTP_204_NO_CONTENT)
@require(CAP_CREATE_CONTENT)
def add_book_category(request: Request, book_id: int, category_id: int, services: Services = Depends(get_services)):
    services.books.add_book_category(book_id, category_id, get_caller(request))


@router.delete("/{book_id}/categories/{category_id}", status_code=status.HTTP_204_NO_CONTENT)
@require(CAP_CREATE_CONTENT)
def remove_book_category(request: Request, book_id: int, category_id: int, services: Services = Depends(get_services)):
    services.books.remove_book_category(book_id, category_id, get_caller(request))


@router.post("/{book_id}/images", status_code=status.HTTP_201_CREATED)
@require(CAP_CREATE_CONTENT)
def add_book_image(
    request: Request,
    book_id: int,
    body: BookImageRequest,
    services: Services = Depends(get_services),
):
    image = services.books.add_book_image(book_id, body.url, get_caller(request), body.order_index)
    return asdict(image)


@router.post("/{book_id}/files", status_code=status.HTTP_201_CREATED)
@require(CAP_CREATE_CONTENT)
def add_book_file(
    request: Request,
    book_id: int,
    body: BookFileRequest,
    services: Services = Depends(get_services),
):
    details = body.model_dump(exclude={"format", "url"})
    book_file = services.books.add_book_file(book_id, body.format, body.url, get_caller(request), **details)
    return asdict(book_file)
