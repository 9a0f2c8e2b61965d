from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import PurePath

from src.application.services.metadata_service import MetadataService
from src.domain.entities.image import ImageEntity, Visibility
from src.domain.entities.metadata_bundle import MetadataBundle
from src.domain.errors import DomainError, ValidationError
from src.infrastructure.cache.memory_cache import SEARCH_PREFIX, TAGS_PREFIX, EphemeralCache
from src.infrastructure.database.repositories.image_repository import ImageRepository
from src.infrastructure.extraction.pillow_extractor import extract_raw_metadata_async
from src.infrastructure.storage.supabase_storage import SupabaseStorage

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 200


def normalize_tags(tags: list[str] | tuple[str, ...] | None) -> tuple[str, ...]:
    """Strip, lower-case and de-duplicate tags, keeping first-seen order."""
    seen: dict[str, None] = {}
    for tag in tags or ():
        cleaned = tag.strip().lower()
        if cleaned:
            seen.setdefault(cleaned, None)
    return tuple(seen)


@dataclass
class UploadImageUseCase:
    storage: SupabaseStorage
    image_repo: ImageRepository
    metadata_service: MetadataService
    cache: EphemeralCache

    async def execute(
        self,
        owner_id: str,
        data: bytes,
        original_filename: str | None,
        *,
        title: str | None = None,
        description: str | None = None,
        tags: list[str] | None = None,
        visibility: Visibility = Visibility.PRIVATE,
        content_type: str | None = None,
    ) -> ImageEntity:
        """
        Store the bytes, register the image and write its ``initial`` metadata version.

        The initial bundle is the normalized extraction result with the
        caller-supplied title, description and tags layered on ``basic``.
        """
        raw = await extract_raw_metadata_async(data, original_filename)
        bundle = self.metadata_service.normalize_metadata(raw)

        fmt = raw.get("format") or PurePath(original_filename or "").suffix.lstrip(".").lower()
        if not fmt:
            raise ValidationError("Could not determine the image format")
        title = (title or "").strip() or PurePath(original_filename or "untitled").stem
        if len(title) > MAX_TITLE_LENGTH:
            raise ValidationError(f"Title must be at most {MAX_TITLE_LENGTH} characters")
        clean_tags = normalize_tags(tags)

        stored = await self.storage.upload_bytes(owner_id, data, ext=fmt, content_type=content_type)
        try:
            image = await self.image_repo.create(
                owner_id=owner_id,
                title=title,
                format=fmt,
                size=len(data),
                width=int(raw.get("width") or 0),
                height=int(raw.get("height") or 0),
                visibility=visibility,
                description=description,
                tags=clean_tags,
                path=stored.path,
                original_filename=original_filename,
            )
        except DomainError:
            await self.storage.delete(stored.path)
            raise

        basic = dict(bundle.basic)
        basic.update({"title": image.title, "format": image.format, "size": image.size})
        if description:
            basic["description"] = description
        if clean_tags:
            basic["tags"] = list(clean_tags)
        initial = MetadataBundle.from_dict({**bundle.to_dict(), "basic": basic})
        try:
            await self.metadata_service.create_initial_version(image, initial)
        except DomainError:
            # no image without its initial version
            await self.image_repo.delete(image.id)
            await self.storage.delete(stored.path)
            raise

        self.cache.delete_prefix(TAGS_PREFIX)
        self.cache.delete_prefix(SEARCH_PREFIX)
        logger.info(
            "Image uploaded",
            extra={"event": "image", "image_id": image.id, "format": image.format, "size": image.size},
        )
        return image
