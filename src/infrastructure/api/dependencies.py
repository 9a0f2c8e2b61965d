from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, HTTPException, Request, Security, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from supabase import AsyncClient

from src.application.services.metadata_service import MetadataService
from src.application.use_cases.list_images import ListImagesUseCase
from src.application.use_cases.list_tags import DEFAULT_TAGS_TTL_SECONDS, ListTagsUseCase
from src.application.use_cases.manage_images import (
    DeleteImageUseCase,
    GetImageUseCase,
    UpdateVisibilityUseCase,
)
from src.application.use_cases.search_metadata import (
    DEFAULT_SEARCH_TTL_SECONDS,
    FilterOptionsUseCase,
    SearchMetadataUseCase,
)
from src.application.use_cases.upload_image import UploadImageUseCase
from src.domain.services.access_guard import AccessGuard
from src.infrastructure.cache.memory_cache import DEFAULT_TTL_SECONDS, EphemeralCache
from src.infrastructure.database.postgres_client import PostgresClient
from src.infrastructure.database.repositories.image_repository import ImageRepository
from src.infrastructure.database.repositories.metadata_version_repository import (
    MetadataVersionRepository,
)
from src.infrastructure.database.repositories.profile_repository import ProfileRepository
from src.infrastructure.database.supabase_client import SupabaseAuthAdapter, UserInfo
from src.infrastructure.storage.supabase_storage import SupabaseStorage

_bearer_scheme = HTTPBearer(auto_error=False)


@dataclass
class Container:
    """Process-scoped collaborators, built once in the application lifespan."""

    cache: EphemeralCache
    auth: SupabaseAuthAdapter
    storage: SupabaseStorage
    image_repo: ImageRepository
    version_repo: MetadataVersionRepository
    profile_repo: ProfileRepository
    metadata_service: MetadataService
    tags_ttl: float = DEFAULT_TAGS_TTL_SECONDS
    search_ttl: float = DEFAULT_SEARCH_TTL_SECONDS


def build_container(client: AsyncClient | None, pg_client: PostgresClient | None = None) -> Container:
    cache = EphemeralCache(default_ttl=float(os.getenv("CACHE_DEFAULT_TTL_SECONDS", str(DEFAULT_TTL_SECONDS))))
    image_repo = ImageRepository(client, pg_client)
    version_repo = MetadataVersionRepository(client, pg_client)
    return Container(
        cache=cache,
        auth=SupabaseAuthAdapter(client),
        storage=SupabaseStorage(client),
        image_repo=image_repo,
        version_repo=version_repo,
        profile_repo=ProfileRepository(client, pg_client),
        metadata_service=MetadataService(image_repo, version_repo, AccessGuard(), cache),
        tags_ttl=float(os.getenv("TAGS_CACHE_TTL_SECONDS", str(DEFAULT_TAGS_TTL_SECONDS))),
        search_ttl=float(os.getenv("SEARCH_CACHE_TTL_SECONDS", str(DEFAULT_SEARCH_TTL_SECONDS))),
    )


def get_container(request: Request) -> Container:
    return request.app.state.container


ContainerDep = Annotated[Container, Depends(get_container)]


async def get_optional_user(
    container: ContainerDep,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Security(_bearer_scheme)] = None,
) -> UserInfo | None:
    """Caller identity for reads; anonymous when no bearer token is sent."""
    if not credentials or not credentials.credentials:
        return None
    if not credentials.scheme or credentials.scheme.lower() != "bearer":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
    try:
        return await container.auth.validate_token(credentials.credentials)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc


async def get_current_user(
    user: Annotated[UserInfo | None, Depends(get_optional_user)],
) -> UserInfo:
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
    return user


def get_cache(container: ContainerDep) -> EphemeralCache:
    return container.cache


def get_image_repo(container: ContainerDep) -> ImageRepository:
    return container.image_repo


def get_profile_repo(container: ContainerDep) -> ProfileRepository:
    return container.profile_repo


def get_metadata_service(container: ContainerDep) -> MetadataService:
    return container.metadata_service


def get_upload_use_case(container: ContainerDep) -> UploadImageUseCase:
    return UploadImageUseCase(
        storage=container.storage,
        image_repo=container.image_repo,
        metadata_service=container.metadata_service,
        cache=container.cache,
    )


def get_list_images_use_case(container: ContainerDep) -> ListImagesUseCase:
    return ListImagesUseCase(image_repo=container.image_repo)


def get_image_use_case(container: ContainerDep) -> GetImageUseCase:
    return GetImageUseCase(image_repo=container.image_repo)


def get_visibility_use_case(container: ContainerDep) -> UpdateVisibilityUseCase:
    return UpdateVisibilityUseCase(image_repo=container.image_repo, cache=container.cache)


def get_delete_use_case(container: ContainerDep) -> DeleteImageUseCase:
    return DeleteImageUseCase(
        image_repo=container.image_repo,
        version_repo=container.version_repo,
        storage=container.storage,
        cache=container.cache,
    )


def get_tags_use_case(container: ContainerDep) -> ListTagsUseCase:
    return ListTagsUseCase(image_repo=container.image_repo, cache=container.cache, ttl=container.tags_ttl)


def get_search_metadata_use_case(container: ContainerDep) -> SearchMetadataUseCase:
    return SearchMetadataUseCase(
        image_repo=container.image_repo,
        metadata_service=container.metadata_service,
        cache=container.cache,
        ttl=container.search_ttl,
    )


def get_filter_options_use_case(container: ContainerDep) -> FilterOptionsUseCase:
    return FilterOptionsUseCase(
        image_repo=container.image_repo,
        metadata_service=container.metadata_service,
        cache=container.cache,
        ttl=container.search_ttl,
    )
