"""Author endpoints."""

from dataclasses import asdict
from typing import Optional, Tuple

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel, Field

from api.deps import Services, get_services, page_params
from api.guards import require
from core.rbac import CAP_CREATE_CONTENT, CAP_MANAGE_CATALOG, CAP_READ_CATALOG

router = APIRouter(prefix="/authors", tags=["authors"])


class AuthorCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    bio: Optional[str] = None
    photo_url: Optional[str] = None


class AuthorUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, max_length=255)
    bio: Optional[str] = None
    photo_url: Optional[str] = None


@router.get("")
@require(CAP_READ_CATALOG)
def list_authors(
    request: Request,
    page: Tuple[int, int] = Depends(page_params),
    services: Services = Depends(get_services),
):
    limit, offset = page
    authors = services.authors.list(limit, offset)
    return {"items": [asdict(a) for a in authors], "limit": limit, "offset": offset}


@router.get("/{author_id}")
@require(CAP_READ_CATALOG)
def get_author(request: Request, author_id: int, services: Services = Depends(get_services)):
    return asdict(services.authors.get(author_id))


@router.post("", status_code=status.HTTP_201_CREATED)
@require(CAP_CREATE_CONTENT)
def create_author(request: Request, body: AuthorCreateRequest, services: Services = Depends(get_services)):
    return asdict(services.authors.create(body.name, body.bio, body.photo_url))


@router.patch("/{author_id}")
@require(CAP_CREATE_CONTENT)
def update_author(
    request: Request,
    author_id: int,
    body: AuthorUpdateRequest,
    services: Services = Depends(get_services),
):
    return asdict(services.authors.update(author_id, body.model_dump(exclude_unset=True)))


@router.delete("/{author_id}", status_code=status.HTTP_204_NO_CONTENT)
@require(CAP_MANAGE_CATALOG)
def delete_author(request: Request, author_id: int, services: Services = Depends(get_services)):
    services.authors.delete(author_id)
