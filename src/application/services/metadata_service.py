from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from src.domain.entities.image import ImageEntity
from src.domain.entities.metadata_bundle import MetadataBundle
from src.domain.entities.metadata_version import ChangeType, MetadataVersionEntity
from src.domain.errors import IMAGE_UNAVAILABLE, NotAuthorizedError, NotFoundError, ValidationError
from src.domain.services.access_guard import AccessGuard
from src.domain.services.metadata_normalizer import normalize_metadata
from src.infrastructure.cache.memory_cache import SEARCH_PREFIX, EphemeralCache
from src.infrastructure.database.repositories.image_repository import ImageRepository
from src.infrastructure.database.repositories.metadata_version_repository import (
    MetadataVersionRepository,
)

logger = logging.getLogger(__name__)

EXPORT_FORMATS = ("json",)


@dataclass(frozen=True)
class MetadataView:
    image: ImageEntity
    version: MetadataVersionEntity
    metadata: MetadataBundle


@dataclass(frozen=True)
class VersionPage:
    versions: list[MetadataVersionEntity]
    total: int  # length of the whole history, not of this page


@dataclass(frozen=True)
class MetadataExport:
    content: str
    content_type: str
    filename: str


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def initial_bundle(image: ImageEntity) -> MetadataBundle:
    """Bundle derived from the image's descriptive attributes."""
    basic: dict[str, Any] = {
        "title": image.title,
        "width": image.width,
        "height": image.height,
        "format": image.format,
        "size": image.size,
    }
    if image.description:
        basic["description"] = image.description
    if image.tags:
        basic["tags"] = list(image.tags)
    return MetadataBundle(basic=basic)


@dataclass
class MetadataService:
    """Read, edit, strip, restore and export an image's metadata history.

    Every operation resolves the image first, then checks the caller against
    the AccessGuard. This is the only writer of the version log.
    """

    image_repo: ImageRepository
    version_repo: MetadataVersionRepository
    guard: AccessGuard = field(default_factory=AccessGuard)
    cache: EphemeralCache | None = None

    async def _resolve(self, image_id: str, identity: str | None, *, write: bool) -> ImageEntity:
        image = await self.image_repo.get(image_id)
        if image is None:
            raise NotFoundError(IMAGE_UNAVAILABLE)
        allowed = self.guard.can_write(identity, image) if write else self.guard.can_read(identity, image)
        if not allowed:
            action = "modify" if write else "view"
            raise NotAuthorizedError(f"Not authorized to {action} metadata of image {image_id}")
        return image

    async def _append(
        self,
        image: ImageEntity,
        bundle: MetadataBundle,
        change_type: ChangeType,
        author: str | None = None,
        description: str | None = None,
    ) -> MetadataVersionEntity:
        version = await self.version_repo.append(
            image.id, bundle, change_type, author=author, description=description
        )
        self._after_append(version)
        return version

    def _after_append(self, version: MetadataVersionEntity) -> None:
        if self.cache is not None:
            self.cache.delete_prefix(SEARCH_PREFIX)
        logger.info(
            "Metadata version appended",
            extra={
                "event": "metadata",
                "image_id": version.image_id,
                "version_id": version.id,
                "change_type": version.change_type.value,
            },
        )

    async def _current(self, image: ImageEntity) -> MetadataVersionEntity:
        version = await self.version_repo.latest(image.id)
        if version is None:
            version = await self.create_initial_version(image)
        return version

    async def current_bundles(self, images: list[ImageEntity]) -> list[tuple[ImageEntity, MetadataBundle]]:
        """Pair each image with its current bundle, in the order given.

        Images without a history yet read as their initial bundle; nothing is
        written here.
        """
        current = await self.version_repo.current_for_images([image.id for image in images])
        return [
            (image, current[image.id].metadata if image.id in current else initial_bundle(image))
            for image in images
        ]

    async def create_initial_version(
        self, image: ImageEntity, bundle: MetadataBundle | Mapping[str, Any] | None = None
    ) -> MetadataVersionEntity:
        """Write the image's ``initial`` version, or return the one already there."""
        if bundle is None:
            bundle = initial_bundle(image)
        version, created = await self.version_repo.append_initial(
            image.id, MetadataBundle.from_dict(bundle), description="Initial metadata"
        )
        if created:
            self._after_append(version)
        return version

    async def get_metadata(
        self, image_id: str, identity: str | None = None, version_id: str | None = None
    ) -> MetadataView:
        image = await self._resolve(image_id, identity, write=False)
        if version_id:
            version = await self.version_repo.get(image.id, version_id)
            if version is None:
                raise NotFoundError(f"Metadata version {version_id} not found")
        else:
            version = await self._current(image)
        return MetadataView(image=image, version=version, metadata=version.metadata)

    async def update_metadata(
        self,
        image_id: str,
        identity: str | None,
        new_bundle: MetadataBundle | Mapping[str, Any] | None = None,
        restore_from_version_id: str | None = None,
    ) -> MetadataVersionEntity:
        """Append an ``edit`` of ``new_bundle``, or a ``restore`` copy of an older version.

        When ``restore_from_version_id`` is given, ``new_bundle`` is ignored.
        """
        image = await self._resolve(image_id, identity, write=True)
        if restore_from_version_id:
            source = await self.version_repo.get(image.id, restore_from_version_id)
            if source is None:
                raise NotFoundError(f"Metadata version {restore_from_version_id} not found")
            return await self._append(
                image,
                source.metadata.copy(),
                ChangeType.RESTORE,
                author=identity,
                description=f"Metadata restored from version {restore_from_version_id}",
            )
        if new_bundle is None:
            raise ValidationError("Either metadata or restore_from_version_id is required")
        # make sure the log has its initial entry before the first edit
        await self._current(image)
        return await self._append(
            image,
            MetadataBundle.from_dict(new_bundle),
            ChangeType.EDIT,
            author=identity,
            description="Metadata updated by user",
        )

    async def strip_metadata(self, image_id: str, identity: str | None) -> MetadataVersionEntity:
        image = await self._resolve(image_id, identity, write=True)
        current = await self._current(image)
        return await self._append(
            image,
            current.metadata.stripped(),
            ChangeType.STRIP,
            author=identity,
            description="Metadata stripped",
        )

    async def list_versions(
        self,
        image_id: str,
        identity: str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> VersionPage:
        """Newest-first slice of the history plus the history length."""
        image = await self._resolve(image_id, identity, write=False)
        versions = await self.version_repo.list_by_image(image.id)
        if not versions:
            versions = [await self.create_initial_version(image)]
        end = None if limit is None else offset + limit
        return VersionPage(versions=versions[offset:end], total=len(versions))

    async def get_versions(
        self,
        image_id: str,
        identity: str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[MetadataVersionEntity]:
        page = await self.list_versions(image_id, identity, limit=limit, offset=offset)
        return page.versions

    async def export_metadata(
        self,
        image_id: str,
        identity: str | None = None,
        version_id: str | None = None,
        fmt: str = "json",
    ) -> MetadataExport:
        fmt = (fmt or "json").lower()
        if fmt not in EXPORT_FORMATS:
            raise ValidationError(f"Unsupported export format: {fmt}")
        view = await self.get_metadata(image_id, identity, version_id)
        image, version = view.image, view.version
        document = {
            "id": image.id,
            "title": image.title,
            "width": image.width,
            "height": image.height,
            "format": image.format,
            "size": image.size,
            "owner": image.owner_id,
            "visibility": image.visibility,
            "created_at": image.created_at,
            "updated_at": image.updated_at,
            "version_id": version.id,
            "change_type": version.change_type.value,
            "version_created_at": version.created_at,
            "metadata": view.metadata.to_dict(),
        }
        suffix = f"_version_{version_id}" if version_id else ""
        return MetadataExport(
            content=json.dumps(document, indent=2, default=_json_default, allow_nan=False),
            content_type="application/json",
            filename=f"metadata_{image.id}{suffix}.json",
        )

    @staticmethod
    def normalize_metadata(raw: Mapping[str, Any]) -> MetadataBundle:
        return normalize_metadata(raw)
