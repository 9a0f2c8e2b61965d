from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from src.domain.entities.image import ImageEntity, Visibility


class ImageSummary(BaseModel):
    """Image as returned by upload, lookup, listing and search."""
    id: str = Field(..., description="Unique identifier of the image", example="img_3f2a9c1b7d4e")
    owner_id: str = Field(..., description="ID of the user who owns this image")
    visibility: Visibility = Field(..., description="Read gate of the image", example="private")
    title: str = Field(..., description="Title of the image", example="Sunset over the harbour")
    description: str | None = Field(None, description="Optional free-text description")
    tags: list[str] = Field(default_factory=list, description="Lower-case tags", example=["sunset", "sea"])
    format: str = Field(..., description="Lower-case file format", example="jpeg")
    size: int = Field(..., description="Size of the image file in bytes", example=2048576, ge=0)
    width: int = Field(..., description="Width of the image in pixels", example=1920, ge=0)
    height: int = Field(..., description="Height of the image in pixels", example=1080, ge=0)
    original_filename: str | None = Field(None, description="Original filename when uploaded", example="photo.jpg")
    url: str | None = Field(None, description="URL to access the image bytes", example="/local-storage/u1/3f2a.jpeg")
    created_at: datetime = Field(..., description="ISO timestamp when the image was uploaded")
    updated_at: datetime = Field(..., description="ISO timestamp of the last change to the image record")

    @classmethod
    def from_entity(cls, entity: ImageEntity, url: str | None = None) -> ImageSummary:
        return cls(
            id=entity.id,
            owner_id=entity.owner_id,
            visibility=entity.visibility,
            title=entity.title,
            description=entity.description,
            tags=list(entity.tags),
            format=entity.format,
            size=entity.size,
            width=entity.width,
            height=entity.height,
            original_filename=entity.original_filename,
            url=url,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
        )


class UploadImageResponse(BaseModel):
    """Response model for successful image upload."""
    image: ImageSummary = Field(..., description="The registered image")


class ListImagesResponse(BaseModel):
    """One page of images visible to the caller."""
    images: list[ImageSummary] = Field(..., description="Images on this page")
    total: int = Field(..., description="Total number of matching images", example=150, ge=0)
    page: int = Field(..., description="1-based page number", example=1, ge=1)
    page_size: int = Field(..., description="Maximum number of images per page", example=20, ge=1, le=100)
    pages: int = Field(..., description="Number of pages available", example=8, ge=0)


class UpdateVisibilityRequest(BaseModel):
    """Batch visibility change of the caller's images."""
    image_ids: list[str] = Field(..., min_length=1, description="IDs of the images to update", example=["img_3f2a9c1b7d4e"])
    visibility: Visibility = Field(..., description="New visibility", example="public")


class UpdateVisibilityResponse(BaseModel):
    updated: int = Field(..., description="Number of images whose visibility was set", example=3, ge=0)
    visibility: Visibility = Field(..., description="Visibility now applied")


class DeleteImageResponse(BaseModel):
    """Response model for image deletion."""
    ok: bool = Field(True, description="Indicates whether the deletion was successful")


class TagCount(BaseModel):
    tag: str = Field(..., description="Tag value", example="sunset")
    count: int = Field(..., description="Number of visible images carrying the tag", example=12, ge=1)


class TagsResponse(BaseModel):
    """Tags used by the images the caller can see, most frequent first."""
    tags: list[TagCount] = Field(..., description="Tags with their usage counts")
    total: int = Field(..., description="Number of tags returned", ge=0)
