from __future__ import annotations

import logging
from dataclasses import dataclass, field

from src.domain.entities.image import ImageEntity, Visibility
from src.domain.errors import IMAGE_UNAVAILABLE, NotAuthorizedError, NotFoundError, ValidationError
from src.domain.services.access_guard import AccessGuard
from src.infrastructure.cache.memory_cache import SEARCH_PREFIX, TAGS_PREFIX, EphemeralCache
from src.infrastructure.database.repositories.image_repository import ImageRepository
from src.infrastructure.database.repositories.metadata_version_repository import (
    MetadataVersionRepository,
)
from src.infrastructure.storage.supabase_storage import SupabaseStorage

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 100


@dataclass
class GetImageUseCase:
    image_repo: ImageRepository
    guard: AccessGuard = field(default_factory=AccessGuard)

    async def execute(self, identity: str | None, image_id: str) -> ImageEntity:
        image = await self.image_repo.get(image_id)
        if image is None:
            raise NotFoundError(IMAGE_UNAVAILABLE)
        if not self.guard.can_read(identity, image):
            raise NotAuthorizedError(f"Not authorized to view image {image_id}")
        return image


@dataclass
class UpdateVisibilityUseCase:
    """Batch visibility change, limited to the caller's own images."""

    image_repo: ImageRepository
    cache: EphemeralCache

    async def execute(self, identity: str, image_ids: list[str], visibility: Visibility) -> int:
        ids = list(dict.fromkeys(i for i in image_ids if i))
        if not ids:
            raise ValidationError("No image IDs provided")
        if len(ids) > MAX_BATCH_SIZE:
            raise ValidationError(f"At most {MAX_BATCH_SIZE} images can be updated at once")
        updated = await self.image_repo.set_visibility(ids, identity, visibility)
        if updated == 0:
            raise NotFoundError("No matching images found")
        self.cache.delete_prefix(TAGS_PREFIX)
        self.cache.delete_prefix(SEARCH_PREFIX)
        logger.info(
            "Visibility updated",
            extra={"event": "image", "count": updated, "visibility": visibility.value},
        )
        return updated


@dataclass
class DeleteImageUseCase:
    """Remove an image, its metadata history and its stored bytes."""

    image_repo: ImageRepository
    version_repo: MetadataVersionRepository
    storage: SupabaseStorage
    cache: EphemeralCache
    guard: AccessGuard = field(default_factory=AccessGuard)

    async def execute(self, identity: str, image_id: str) -> None:
        image = await self.image_repo.get(image_id)
        if image is None:
            raise NotFoundError(IMAGE_UNAVAILABLE)
        if not self.guard.can_write(identity, image):
            raise NotAuthorizedError(f"Not authorized to delete image {image_id}")
        removed = await self.version_repo.delete_by_image(image.id)
        await self.image_repo.delete(image.id)
        if image.path:
            await self.storage.delete(image.path)
        self.cache.delete_prefix(TAGS_PREFIX)
        self.cache.delete_prefix(SEARCH_PREFIX)
        logger.info(
            "Image deleted",
            extra={"event": "image", "image_id": image.id, "versions_removed": removed},
        )
