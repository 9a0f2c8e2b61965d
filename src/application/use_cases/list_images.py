from __future__ import annotations

from dataclasses import dataclass

from src.domain.entities.image import ImageEntity
from src.domain.errors import ValidationError
from src.domain.services.image_query_builder import ImageQuery, ImageQueryBuilder
from src.infrastructure.database.repositories.image_repository import ImageRepository

MAX_PAGE_SIZE = 100


@dataclass(frozen=True)
class ImagePage:
    items: list[ImageEntity]
    total: int
    page: int
    page_size: int

    @property
    def pages(self) -> int:
        return (self.total + self.page_size - 1) // self.page_size


@dataclass
class ListImagesUseCase:
    """Gallery listing and search, both scoped by the caller's visibility rules."""

    image_repo: ImageRepository

    async def _page(self, query: ImageQuery, page: int, page_size: int) -> ImagePage:
        if page < 1:
            raise ValidationError("page must be >= 1")
        if not 1 <= page_size <= MAX_PAGE_SIZE:
            raise ValidationError(f"page_size must be between 1 and {MAX_PAGE_SIZE}")
        offset = (page - 1) * page_size
        items = await self.image_repo.find(query, offset=offset, limit=page_size)
        total = await self.image_repo.count(query)
        return ImagePage(items=items, total=total, page=page, page_size=page_size)

    async def execute(
        self,
        identity: str | None,
        filter_name: str = "all",
        sort_name: str | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> ImagePage:
        query = ImageQueryBuilder.for_listing(identity, filter_name, sort_name)
        return await self._page(query, page, page_size)

    async def search(
        self,
        identity: str | None,
        text: str | None = None,
        tags: list[str] | None = None,
        filter_name: str = "all",
        sort_name: str | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> ImagePage:
        query = ImageQueryBuilder.for_search(identity, text, tags, filter_name, sort_name)
        return await self._page(query, page, page_size)
