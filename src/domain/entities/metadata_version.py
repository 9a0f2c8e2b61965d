from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from src.domain.entities.metadata_bundle import MetadataBundle


class ChangeType(str, Enum):
    INITIAL = "initial"
    EDIT = "edit"
    STRIP = "strip"
    RESTORE = "restore"


@dataclass(frozen=True)
class MetadataVersionEntity:
    id: str
    image_id: str
    created_at: datetime
    change_type: ChangeType
    metadata: MetadataBundle  # full snapshot, never a diff
    sequence: int  # strictly increasing insertion key, breaks created_at ties
    author: str | None = None  # None for system-generated initial versions
    description: str | None = None

    @property
    def order_key(self) -> tuple[datetime, int]:
        return (self.created_at, self.sequence)
