from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from src.infrastructure.api.dependencies import get_cache, get_current_user, get_profile_repo
from src.infrastructure.cache.memory_cache import EphemeralCache, profile_key
from src.infrastructure.database.repositories.profile_repository import ProfileRepository
from src.infrastructure.database.supabase_client import UserInfo

router = APIRouter(
    prefix="/auth",
    tags=["Authentication"],
    responses={
        401: {"description": "Unauthorized - Invalid or missing authentication token"},
        422: {"description": "Validation Error - Invalid request format"},
    },
)


class ValidateTokenResponse(BaseModel):
    """Identity resolved from a bearer token."""
    user_id: str = Field(..., description="Identity used as owner of uploaded images")
    email: str | None = Field(None, description="Email reported by the auth provider", example="user@example.com")


class UserProfileResponse(BaseModel):
    """Stored profile of the caller."""
    id: str = Field(..., description="Identity of the caller")
    email: str | None = Field(None, description="Last known email", example="user@example.com")
    name: str | None = Field(None, description="Display name, if one was set", example="Ada Lovelace")
    created_at: datetime | None = Field(None, description="When the profile was first recorded")


class UpdateProfileBody(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, description="New display name", example="Ada Lovelace")


class UpdateProfileResponse(BaseModel):
    id: str = Field(..., description="Identity of the caller")
    email: str | None = Field(None, description="Last known email")
    name: str = Field(..., description="Display name now stored")


@router.post(
    "/validate",
    response_model=ValidateTokenResponse,
    status_code=status.HTTP_200_OK,
    summary="Validate Token",
    description="""
    Resolve the bearer token to an identity and record a profile for it.
    Clients call this once after sign-in; the identity returned is the one
    that owns everything the client uploads.

    **Authentication required**: Yes (Bearer token)
    """,
    response_description="Resolved identity",
)
async def validate_token(
    user: UserInfo = Depends(get_current_user),
    profiles: ProfileRepository = Depends(get_profile_repo),
    cache: EphemeralCache = Depends(get_cache),
):
    """Resolve the caller and remember their profile."""
    prof = await profiles.upsert(user.id, user.email)
    cache.set(profile_key(user.id), prof)
    return ValidateTokenResponse(user_id=prof.id, email=prof.email)


@router.get(
    "/me",
    response_model=UserProfileResponse,
    status_code=status.HTTP_200_OK,
    summary="Current Profile",
    description="""
    Profile of the caller. Served from a short-lived cache that is dropped
    whenever the display name changes.

    **Authentication required**: Yes (Bearer token)
    """,
    response_description="Profile of the caller",
)
async def get_me(
    user: UserInfo = Depends(get_current_user),
    profiles: ProfileRepository = Depends(get_profile_repo),
    cache: EphemeralCache = Depends(get_cache),
):
    async def load():
        return await profiles.get(user.id) or await profiles.upsert(user.id, user.email)

    prof = await cache.get_or_compute(profile_key(user.id), load)
    return UserProfileResponse(id=prof.id, email=prof.email, name=prof.display_name, created_at=prof.created_at)


@router.patch(
    "/profile",
    response_model=UpdateProfileResponse,
    status_code=status.HTTP_200_OK,
    summary="Rename Profile",
    description="""
    Set the display name of the caller. Surrounding whitespace is trimmed
    and a blank name is rejected.

    **Authentication required**: Yes (Bearer token)
    """,
    response_description="Updated profile",
    responses={400: {"description": "Bad Request - Blank display name"}},
)
async def update_profile(
    body: UpdateProfileBody,
    user: UserInfo = Depends(get_current_user),
    profiles: ProfileRepository = Depends(get_profile_repo),
    cache: EphemeralCache = Depends(get_cache),
):
    """Change the caller's display name."""
    name = body.name.strip()
    if not name:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Display name cannot be empty")
    prof = await profiles.set_display_name(user.id, name)
    cache.delete(profile_key(user.id))
    return UpdateProfileResponse(id=prof.id, email=prof.email, name=prof.display_name)
