from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from src.application.dtos.image_dto import TagCount, TagsResponse
from src.application.use_cases.list_tags import MAX_TAGS_LIMIT, ListTagsUseCase
from src.infrastructure.api.dependencies import get_optional_user, get_tags_use_case
from src.infrastructure.database.supabase_client import UserInfo

router = APIRouter(prefix="/tags", tags=["Tags"])


@router.get(
    "",
    response_model=TagsResponse,
    summary="List Tags",
    description="""
    Distinct tags of the images visible to the caller, most used first.
    Results are cached for a short time and refreshed whenever an image is
    uploaded, deleted or changes visibility.

    **Authentication required**: No (Bearer token optional)
    """,
    response_description="Tags with usage counts",
)
async def list_tags(
    q: str | None = Query(None, max_length=100, description="Only tags containing this text"),
    limit: int = Query(50, ge=1, le=MAX_TAGS_LIMIT, description="Maximum number of tags"),
    user: UserInfo | None = Depends(get_optional_user),
    uc: ListTagsUseCase = Depends(get_tags_use_case),
):
    """Get tags visible to the caller."""
    ranked = await uc.execute(user.id if user else None, q, limit)
    return TagsResponse(tags=[TagCount(tag=tag, count=count) for tag, count in ranked], total=len(ranked))
