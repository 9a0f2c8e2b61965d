from __future__ import annotations

import json
import logging
from collections import Counter
from dataclasses import dataclass
from typing import Any

from src.application.services.metadata_service import MetadataService
from src.domain.entities.image import ImageEntity
from src.domain.entities.metadata_bundle import MetadataBundle
from src.domain.errors import ValidationError
from src.domain.services.image_query_builder import ImageQueryBuilder
from src.domain.services.metadata_search import (
    MetadataCriteria,
    check_field_path,
    flatten_bundle,
    search_document,
)
from src.infrastructure.cache.memory_cache import EphemeralCache, search_key
from src.infrastructure.database.filters import matches
from src.infrastructure.database.repositories.image_repository import ImageRepository

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_TTL_SECONDS = 60.0
MAX_PAGE_SIZE = 100
MAX_OPTIONS_LIMIT = 100

SUMMARY_FIELDS = ("camera", "lens", "captureDate", "gps")
DIMENSIONS = (("landscape", "Landscape"), ("portrait", "Portrait"), ("square", "Square"), ("panorama", "Panorama"))

# shorthand names accepted by the options lookup
OPTION_FIELDS = {
    "camera": "exif.camera",
    "lens": "exif.lens",
    "make": "exif.make",
    "location": "iptc.city",
}


@dataclass(frozen=True)
class MetadataHit:
    image: ImageEntity
    summary: dict[str, Any]


@dataclass(frozen=True)
class MetadataSearchPage:
    items: list[MetadataHit]
    total: int
    page: int
    page_size: int

    @property
    def pages(self) -> int:
        return (self.total + self.page_size - 1) // self.page_size


def _summary(bundle: MetadataBundle) -> dict[str, Any]:
    exif = bundle.exif or {}
    return {name: exif[name] for name in SUMMARY_FIELDS if exif.get(name) is not None}


def _shape(image: ImageEntity) -> list[str]:
    if image.width <= 0 or image.height <= 0:
        return []
    shapes = []
    if image.width > image.height * 1.1:
        shapes.append("landscape")
    elif image.height > image.width * 1.1:
        shapes.append("portrait")
    else:
        shapes.append("square")
    if image.width > image.height * 2:
        shapes.append("panorama")
    return shapes


def _ranked(values: list[Any], limit: int) -> list[tuple[Any, int]]:
    counts: Counter = Counter()
    for value in values:
        # list values such as keywords count once per element
        for item in value if isinstance(value, list) else [value]:
            if isinstance(item, (str, int, float)) and item != "":
                counts[item] += 1
    return sorted(counts.items(), key=lambda item: (-item[1], str(item[0])))[:limit]


@dataclass
class SearchMetadataUseCase:
    """Search visible images by fields of their current metadata bundle.

    The matching set is cached briefly per caller and criteria; any image or
    metadata write drops every cached search.
    """

    image_repo: ImageRepository
    metadata_service: MetadataService
    cache: EphemeralCache
    ttl: float = DEFAULT_SEARCH_TTL_SECONDS

    async def execute(
        self,
        identity: str | None,
        criteria: MetadataCriteria,
        text: str | None = None,
        tags: list[str] | None = None,
        sort_name: str | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> MetadataSearchPage:
        if page < 1:
            raise ValidationError("page must be >= 1")
        if not 1 <= page_size <= MAX_PAGE_SIZE:
            raise ValidationError(f"page_size must be between 1 and {MAX_PAGE_SIZE}")
        query = ImageQueryBuilder.for_search(identity, text, tags, sort_name=sort_name)
        predicate = criteria.predicate()

        async def produce() -> tuple[MetadataHit, ...]:
            images = await self.image_repo.find(query, limit=None)
            hits = tuple(
                MetadataHit(image=image, summary=_summary(bundle))
                for image, bundle in await self.metadata_service.current_bundles(images)
                if matches(search_document(bundle), predicate, open_fields=True)
            )
            logger.info(
                "Metadata search",
                extra={"event": "search", "candidates": len(images), "matches": len(hits)},
            )
            return hits

        params = json.dumps(
            {
                "q": (text or "").strip().lower(),
                "tags": sorted(t.strip().lower() for t in tags or [] if t.strip()),
                "sort": sort_name or "",
                "criteria": criteria.cache_token(),
            },
            sort_keys=True,
        )
        hits = await self.cache.get_or_compute(search_key("metadata", identity, params), produce, self.ttl)
        offset = (page - 1) * page_size
        return MetadataSearchPage(
            items=list(hits[offset : offset + page_size]),
            total=len(hits),
            page=page,
            page_size=page_size,
        )


@dataclass
class FilterOptionsUseCase:
    """Distinct metadata values among visible images, most frequent first."""

    image_repo: ImageRepository
    metadata_service: MetadataService
    cache: EphemeralCache
    ttl: float = DEFAULT_SEARCH_TTL_SECONDS

    async def execute(self, identity: str | None, field: str | None = None, limit: int = 30) -> dict[str, Any]:
        if not 1 <= limit <= MAX_OPTIONS_LIMIT:
            raise ValidationError(f"limit must be between 1 and {MAX_OPTIONS_LIMIT}")
        name = (field or "").strip()
        path = None
        if name and name != "format":
            path = OPTION_FIELDS.get(name) or check_field_path(name)
        query = ImageQueryBuilder.for_listing(identity)

        async def produce() -> dict[str, Any]:
            images = await self.image_repo.find(query, limit=None)
            if name == "format":
                return {"field": name, "values": _ranked([i.format for i in images], limit)}
            pairs = await self.metadata_service.current_bundles(images)
            documents = [flatten_bundle(bundle) for _, bundle in pairs]
            if path:
                return {"field": name, "values": _ranked([d.get(path) for d in documents], limit)}
            shapes = Counter(shape for image in images for shape in _shape(image))
            return {
                "cameras": _ranked([d.get("exif.camera") for d in documents], limit),
                "lenses": _ranked([d.get("exif.lens") for d in documents], limit),
                "locations": _ranked([d.get("iptc.city") for d in documents], limit),
                "formats": _ranked([i.format for i in images], limit),
                "dimensions": [
                    {"value": value, "label": label, "count": shapes[value]} for value, label in DIMENSIONS
                ],
            }

        return await self.cache.get_or_compute(
            search_key("options", identity, f"{name}:{limit}"), produce, self.ttl
        )
