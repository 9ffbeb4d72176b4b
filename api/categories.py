"""Category tree endpoints."""

import logging
from dataclasses import asdict
from typing import Optional, Tuple

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel, Field

from api.deps import Services, get_services, page_params
from api.guards import require
from api.middleware.roles import get_caller
from core.rbac import CAP_MANAGE_CATALOG, CAP_READ_CATALOG

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/categories", tags=["categories"])


class CategoryCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    parent_id: Optional[int] = None
    slug: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None


class CategoryUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, max_length=255)
    parent_id: Optional[int] = None
    slug: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None


# ============================================================================
# Reads
# ============================================================================

@router.get("/tree")
@require(CAP_READ_CATALOG)
def category_tree(request: Request, services: Services = Depends(get_services)):
    """The whole category forest, children nested under their parents."""
    return {"items": [node.to_dict() for node in services.categories.tree()]}


@router.get("")
@require(CAP_READ_CATALOG)
def root_categories(request: Request, services: Services = Depends(get_services)):
    return {"items": [asdict(c) for c in services.categories.roots()]}


@router.get("/{category_id}")
@require(CAP_READ_CATALOG)
def get_category(request: Request, category_id: int, services: Services = Depends(get_services)):
    return asdict(services.categories.get(category_id))


@router.get("/{category_id}/children")
@require(CAP_READ_CATALOG)
def category_children(request: Request, category_id: int, services: Services = Depends(get_services)):
    return {"items": [asdict(c) for c in services.categories.children(category_id)]}


@router.get("/{category_id}/breadcrumbs")
@require(CAP_READ_CATALOG)
def category_breadcrumbs(request: Request, category_id: int, services: Services = Depends(get_services)):
    """Path from the root category down to this one."""
    return {"items": [asdict(b) for b in services.categories.breadcrumbs(category_id)]}


@router.get("/{category_id}/books")
@require(CAP_READ_CATALOG)
def category_books(
    request: Request,
    category_id: int,
    page: Tuple[int, int] = Depends(page_params),
    services: Services = Depends(get_services),
):
    """Distinct visible books of the category and all of its descendants."""
    limit, offset = page
    books = services.categories.descendant_books(category_id, get_caller(request), limit, offset)
    return {"items": [b.to_dict() for b in books], "limit": limit, "offset": offset}


# ============================================================================
# Management
# ============================================================================

@router.post("", status_code=status.HTTP_201_CREATED)
@require(CAP_MANAGE_CATALOG)
def create_category(request: Request, body: CategoryCreateRequest, services: Services = Depends(get_services)):
    category = services.categories.create(
        name=body.name,
        parent_id=body.parent_id,
        slug=body.slug,
        description=body.description,
    )
    return asdict(category)


@router.patch("/{category_id}")
@require(CAP_MANAGE_CATALOG)
def update_category(
    request: Request,
    category_id: int,
    body: CategoryUpdateRequest,
    services: Services = Depends(get_services),
):
    changes = body.model_dump(exclude_unset=True)
    return asdict(services.categories.update(category_id, changes))


@router.delete("/{category_id}", status_code=status.HTTP_204_NO_CONTENT)
@require(CAP_MANAGE_CATALOG)
def delete_category(request: Request, category_id: int, services: Services = Depends(get_services)):
    """Delete a category; its subtree goes with it."""
    services.categories.delete(category_id)
