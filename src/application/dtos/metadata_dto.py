"""Request and response models of the metadata endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from src.domain.entities.image import Visibility
from src.domain.entities.metadata_version import ChangeType, MetadataVersionEntity


class MetadataBundleModel(BaseModel):
    """Categorized metadata payload. Only ``basic`` is always present."""
    basic: dict[str, Any] = Field(default_factory=dict, description="Simple descriptive fields", example={"title": "Harbour"})
    exif: dict[str, Any] | None = Field(None, description="Camera fields", example={"camera": "Canon EOS R5", "aperture": "f/2.8"})
    iptc: dict[str, Any] | None = Field(None, description="Editorial fields")
    xmp: dict[str, Any] | None = Field(None, description="Rights and tooling fields")
    custom: dict[str, Any] | None = Field(None, description="User-defined fields")


class VersionSummary(BaseModel):
    id: str = Field(..., description="Unique identifier of the version")
    image_id: str = Field(..., description="Image the version belongs to")
    change_type: ChangeType = Field(..., description="Operation that produced the version", example="edit")
    created_at: datetime = Field(..., description="When the version was appended")
    author: str | None = Field(None, description="Identity that made the change; empty for system versions")
    description: str | None = Field(None, description="Free-text note", example="Metadata updated by user")

    @classmethod
    def from_entity(cls, entity: MetadataVersionEntity) -> VersionSummary:
        return cls(
            id=entity.id,
            image_id=entity.image_id,
            change_type=entity.change_type,
            created_at=entity.created_at,
            author=entity.author,
            description=entity.description,
        )


class ImageBasicInfo(BaseModel):
    id: str
    title: str
    width: int
    height: int
    format: str
    size: int
    owner_id: str
    visibility: Visibility
    url: str | None = None
    created_at: datetime
    updated_at: datetime


class MetadataResponse(BaseModel):
    """Bundle of one version plus the image's basic info."""
    image: ImageBasicInfo = Field(..., description="Basic information about the image")
    version: VersionSummary = Field(..., description="Version the bundle was read from")
    metadata: MetadataBundleModel = Field(..., description="The metadata bundle")


class UpdateMetadataRequest(BaseModel):
    """Either a new bundle to append as an edit, or a version to restore."""
    metadata: dict[str, Any] | None = Field(
        None,
        description="New bundle; ignored when restore_from_version_id is set",
        example={"basic": {"title": "Harbour at dusk"}, "custom": {"album": "Lisbon"}},
    )
    restore_from_version_id: str | None = Field(None, description="Version whose bundle becomes current again")


class MetadataChangeResponse(BaseModel):
    ok: bool = Field(True, description="Indicates the version was appended")
    message: str = Field(..., description="Human readable outcome", example="Metadata updated successfully")
    version: VersionSummary = Field(..., description="The new version")


class VersionListResponse(BaseModel):
    versions: list[VersionSummary] = Field(..., description="Versions, newest first")
    total: int = Field(..., description="Length of the whole version history, independent of paging", ge=0)


class ExtractMetadataResponse(BaseModel):
    """Normalized preview of what an upload would record; nothing is stored."""
    filename: str | None = Field(None, description="Name of the inspected file")
    metadata: MetadataBundleModel = Field(..., description="Normalized bundle")
