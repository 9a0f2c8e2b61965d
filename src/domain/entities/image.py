from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Visibility(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"


@dataclass(frozen=True)
class ImageEntity:
    id: str
    owner_id: str  # immutable after creation
    visibility: Visibility
    title: str
    format: str  # lower-case extension, e.g. "jpeg", "svg"
    size: int  # bytes
    width: int
    height: int
    created_at: datetime
    updated_at: datetime
    description: str | None = None
    tags: tuple[str, ...] = ()
    path: str | None = None  # storage path {owner_id}/{uuid}.{ext}
    original_filename: str | None = None

    @property
    def is_public(self) -> bool:
        return self.visibility == Visibility.PUBLIC

    def to_document(self) -> dict:
        """Field view used by the in-memory filter matcher."""
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "visibility": Visibility(self.visibility).value,
            "title": self.title,
            "description": self.description,
            "tags": list(self.tags),
            "format": self.format,
            "size": self.size,
            "width": self.width,
            "height": self.height,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
