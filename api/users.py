"""
User management and authentication endpoints.

Role changes, deactivation and logout bump the user's token_version, which
invalidates every access token issued before.
"""

import logging
from typing import Optional, Tuple

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel, Field, field_validator

from api.deps import Services, get_services, page_params
from api.guards import require
from api.middleware.roles import get_caller
from core.rbac import (
    CAP_CREATE_CONTENT,
    CAP_MANAGE_USERS,
    CAP_PURGE_USERS,
    get_role_capabilities,
    validate_role,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["users"])


# ============================================================================
# Request/Response Models
# ============================================================================

class RegisterRequest(BaseModel):
    email: str = Field(..., max_length=255)
    password: str = Field(..., min_length=6)
    name: Optional[str] = Field(None, max_length=255)
    bio: Optional[str] = None


class LoginRequest(BaseModel):
    email: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


def _check_role(v: Optional[str]) -> Optional[str]:
    if v is not None and not validate_role(v):
        raise ValueError(f"Invalid role key: {v}")
    return v.lower() if v is not None else v


class UserCreateRequest(RegisterRequest):
    """Admin-created account."""
    role: str = "new-user"

    @field_validator("role")
    @classmethod
    def validate_role_key(cls, v: str) -> str:
        return _check_role(v)

    model_config = {
        "json_schema_extra": {
            "example": {
                "email": "reader@example.org",
                "password": "correct-horse",
                "role": "user",
            }
        }
    }


class ProfileUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, max_length=255)
    bio: Optional[str] = None
    password: Optional[str] = Field(None, min_length=6)


class AdminUserUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, max_length=255)
    bio: Optional[str] = None
    email: Optional[str] = Field(None, max_length=255)
    role: Optional[str] = None
    is_active: Optional[bool] = None

    @field_validator("role")
    @classmethod
    def validate_role_key(cls, v: Optional[str]) -> Optional[str]:
        return _check_role(v)


# ============================================================================
# Authentication
# ============================================================================

@router.post("/auth/register", status_code=status.HTTP_201_CREATED)
def register(body: RegisterRequest, services: Services = Depends(get_services)):
    """Self-service signup. New accounts start as new-user."""
    user = services.auth.register(body.email, body.password, body.name, body.bio)
    return user.to_public_dict()


@router.post("/auth/login", response_model=TokenResponse)
def login(body: LoginRequest, services: Services = Depends(get_services)):
    return TokenResponse(access_token=services.auth.login(body.email, body.password))


@router.post("/auth/logout", status_code=status.HTTP_204_NO_CONTENT)
@require(CAP_CREATE_CONTENT)
def logout(request: Request, services: Services = Depends(get_services)):
    services.auth.logout(get_caller(request))


@router.get("/auth/me")
def me(request: Request, services: Services = Depends(get_services)):
    """Profile of the caller plus what the current role allows."""
    user = services.auth.me(get_caller(request))
    return {**user.to_public_dict(), "capabilities": sorted(get_role_capabilities(user.role))}


# ============================================================================
# Users
# ============================================================================

@router.get("/users")
@require(CAP_MANAGE_USERS)
def list_users(
    request: Request,
    page: Tuple[int, int] = Depends(page_params),
    services: Services = Depends(get_services),
):
    limit, offset = page
    users = services.users.list_active(limit, offset)
    return {"items": [u.to_public_dict() for u in users], "limit": limit, "offset": offset}


@router.post("/users", status_code=status.HTTP_201_CREATED)
@require(CAP_MANAGE_USERS)
def create_user(request: Request, body: UserCreateRequest, services: Services = Depends(get_services)):
    user = services.users.create(
        get_caller(request),
        email=body.email,
        password=body.password,
        name=body.name,
        bio=body.bio,
        role=body.role,
    )
    return user.to_public_dict()


@router.get("/users/{user_id}")
@require(CAP_MANAGE_USERS)
def get_user(request: Request, user_id: int, services: Services = Depends(get_services)):
    return services.users.get(user_id).to_public_dict()


@router.patch("/users/{user_id}/profile")
@require(CAP_CREATE_CONTENT)
def update_profile(
    request: Request,
    user_id: int,
    body: ProfileUpdateRequest,
    services: Services = Depends(get_services),
):
    changes = body.model_dump(exclude_unset=True)
    return services.users.update_profile(user_id, changes, get_caller(request)).to_public_dict()


@router.patch("/users/{user_id}")
@require(CAP_MANAGE_USERS)
def admin_update_user(
    request: Request,
    user_id: int,
    body: AdminUserUpdateRequest,
    services: Services = Depends(get_services),
):
    changes = body.model_dump(exclude_unset=True)
    return services.users.admin_update(user_id, changes, get_caller(request)).to_public_dict()


@router.delete("/users/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
@require(CAP_MANAGE_USERS)
def deactivate_user(request: Request, user_id: int, services: Services = Depends(get_services)):
    """Soft delete: the account is deactivated and its tokens revoked."""
    services.users.soft_delete(user_id, get_caller(request))


@router.delete("/users/{user_id}/purge", status_code=status.HTTP_204_NO_CONTENT)
@require(CAP_PURGE_USERS)
def purge_user(request: Request, user_id: int, services: Services = Depends(get_services)):
    services.users.hard_delete(user_id, get_caller(request))
