from __future__ import annotations

from dataclasses import dataclass

from src.domain.errors import ValidationError
from src.domain.services.image_query_builder import ImageQueryBuilder
from src.infrastructure.cache.memory_cache import EphemeralCache, tags_key
from src.infrastructure.database.repositories.image_repository import ImageRepository

DEFAULT_TAGS_TTL_SECONDS = 60.0
MAX_TAGS_LIMIT = 200


@dataclass
class ListTagsUseCase:
    """Distinct tags visible to the caller, most used first, cached briefly."""

    image_repo: ImageRepository
    cache: EphemeralCache
    ttl: float = DEFAULT_TAGS_TTL_SECONDS

    async def execute(
        self, identity: str | None, text: str | None = None, limit: int = 50
    ) -> list[tuple[str, int]]:
        if not 1 <= limit <= MAX_TAGS_LIMIT:
            raise ValidationError(f"limit must be between 1 and {MAX_TAGS_LIMIT}")
        query = ImageQueryBuilder.for_listing(identity)

        async def produce() -> list[tuple[str, int]]:
            return await self.image_repo.tag_counts(query, text=text, limit=limit)

        return await self.cache.get_or_compute(tags_key(identity, text, limit), produce, self.ttl)
