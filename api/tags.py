"""Tag endpoints."""

from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel, Field

from api.deps import Services, get_services
from api.guards import require
from core.rbac import CAP_CREATE_CONTENT, CAP_MANAGE_CATALOG, CAP_READ_CATALOG

router = APIRouter(prefix="/tags", tags=["tags"])


class TagCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    color: str = Field("", max_length=20)


class TagUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, max_length=100)
    color: Optional[str] = Field(None, max_length=20)


@router.get("")
@require(CAP_READ_CATALOG)
def list_tags(request: Request, q: Optional[str] = None, services: Services = Depends(get_services)):
    return {"items": [asdict(t) for t in services.tags.list(q)]}


@router.get("/{tag_id}")
@require(CAP_READ_CATALOG)
def get_tag(request: Request, tag_id: int, services: Services = Depends(get_services)):
    return asdict(services.tags.get(tag_id))


@router.post("", status_code=status.HTTP_201_CREATED)
@require(CAP_CREATE_CONTENT)
def create_tag(request: Request, body: TagCreateRequest, services: Services = Depends(get_services)):
    return asdict(services.tags.create(body.name, body.color))


@router.patch("/{tag_id}")
@require(CAP_MANAGE_CATALOG)
def update_tag(request: Request, tag_id: int, body: TagUpdateRequest, services: Services = Depends(get_services)):
    return asdict(services.tags.update(tag_id, body.model_dump(exclude_unset=True)))


@router.delete("/{tag_id}", status_code=status.HTTP_204_NO_CONTENT)
@require(CAP_MANAGE_CATALOG)
def delete_tag(request: Request, tag_id: int, services: Services = Depends(get_services)):
    services.tags.delete(tag_id)
