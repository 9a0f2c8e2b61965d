from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from src.application.dtos.image_dto import ImageSummary


class MetadataSearchResult(ImageSummary):
    """Image matched by a metadata search, with the fields most searches look at."""
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Camera, lens, capture date and GPS position from the current bundle, where present",
        example={"camera": "Canon EOS R5", "captureDate": "2024:05:01 18:30:00"},
    )


class MetadataSearchResponse(BaseModel):
    results: list[MetadataSearchResult] = Field(..., description="Matches on this page")
    total: int = Field(..., description="Total number of matching images", example=12, ge=0)
    page: int = Field(..., description="1-based page number", example=1, ge=1)
    page_size: int = Field(..., description="Maximum number of results per page", example=20, ge=1, le=100)
    pages: int = Field(..., description="Number of pages available", example=1, ge=0)


class OptionCount(BaseModel):
    value: str | int | float = Field(..., description="Distinct value", example="Canon EOS R5")
    count: int = Field(..., description="Number of visible images carrying it", example=4, ge=1)


class DimensionCount(BaseModel):
    value: str = Field(..., description="Shape key", example="landscape")
    label: str = Field(..., description="Display label", example="Landscape")
    count: int = Field(..., description="Number of visible images with that shape", ge=0)


class FilterOptionsResponse(BaseModel):
    """Values for the search filters, most frequent first."""
    cameras: list[OptionCount] = Field(default_factory=list)
    lenses: list[OptionCount] = Field(default_factory=list)
    locations: list[OptionCount] = Field(default_factory=list)
    formats: list[OptionCount] = Field(default_factory=list)
    dimensions: list[DimensionCount] = Field(default_factory=list)


class FieldOptionsResponse(BaseModel):
    """Values of one field, most frequent first."""
    field: str = Field(..., description="Requested field", example="camera")
    values: list[OptionCount] = Field(..., description="Distinct values with their counts")
