from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Query, Request

from src.application.dtos.image_dto import ImageSummary
from src.application.dtos.search_dto import (
    FieldOptionsResponse,
    FilterOptionsResponse,
    MetadataSearchResponse,
    MetadataSearchResult,
)
from src.application.use_cases.search_metadata import (
    MAX_OPTIONS_LIMIT,
    FilterOptionsUseCase,
    SearchMetadataUseCase,
)
from src.domain.services.metadata_search import MetadataCriteria
from src.infrastructure.api.dependencies import (
    get_filter_options_use_case,
    get_image_repo,
    get_optional_user,
    get_search_metadata_use_case,
)
from src.infrastructure.database.repositories.image_repository import ImageRepository
from src.infrastructure.database.supabase_client import UserInfo

SEARCH_PARAMS = {"q", "tags", "date_from", "date_to", "sort", "page", "page_size"}

router = APIRouter(
    prefix="/search",
    tags=["Search"],
    responses={422: {"description": "Validation Error - Invalid request format"}},
)

filters_router = APIRouter(prefix="/filters", tags=["Search"])


@router.get(
    "/metadata",
    response_model=MetadataSearchResponse,
    summary="Search Metadata",
    description="""
    Find visible images by the fields of their current metadata bundle.

    Any query parameter besides `q`, `tags`, `date_from`, `date_to`, `sort`,
    `page` and `page_size` is read as a dotted metadata path and matched as a
    case-insensitive substring, e.g. `exif.camera=canon` or `iptc.city=lisbon`.
    The first segment must be one of `basic`, `exif`, `iptc`, `xmp` or `custom`.

    `date_from` and `date_to` bound `exif.captureDate`; both ends are inclusive
    whole days. Images without a readable capture date never match a date range.

    Results are cached for a short time and refreshed whenever an image or its
    metadata changes.

    **Authentication required**: No (Bearer token optional)
    """,
    response_description="Paginated list of matching images",
    responses={400: {"description": "Bad Request - Unknown field, sort or an inverted date range"}},
)
async def search_metadata(
    request: Request,
    q: str | None = Query(None, max_length=200, description="Text to look for in title and description"),
    tags: str | None = Query(None, description="Comma separated tags"),
    date_from: date | None = Query(None, description="Earliest capture day (YYYY-MM-DD)"),
    date_to: date | None = Query(None, description="Latest capture day (YYYY-MM-DD)"),
    sort: str = Query("newest", description="Sort order"),
    page: int = Query(1, ge=1, description="1-based page number"),
    page_size: int = Query(20, ge=1, le=100, description="Results per page (1-100)"),
    user: UserInfo | None = Depends(get_optional_user),
    uc: SearchMetadataUseCase = Depends(get_search_metadata_use_case),
    images: ImageRepository = Depends(get_image_repo),
):
    """Search images by metadata fields."""
    fields = {k: v for k, v in request.query_params.items() if k not in SEARCH_PARAMS}
    criteria = MetadataCriteria(fields=fields, captured_from=date_from, captured_to=date_to)
    result = await uc.execute(
        user.id if user else None,
        criteria,
        text=q,
        tags=[t for t in (tags or "").split(",") if t.strip()],
        sort_name=sort,
        page=page,
        page_size=page_size,
    )
    return MetadataSearchResponse(
        results=[
            MetadataSearchResult(
                **ImageSummary.from_entity(hit.image, images.get_public_url(hit.image.path)).model_dump(),
                metadata=hit.summary,
            )
            for hit in result.items
        ],
        total=result.total,
        page=result.page,
        page_size=result.page_size,
        pages=result.pages,
    )


@filters_router.get(
    "/options",
    response_model=FieldOptionsResponse | FilterOptionsResponse,
    summary="Filter Options",
    description="""
    Distinct values found among the images visible to the caller, most
    frequent first.

    Without `field` the response carries cameras, lenses, locations, formats
    and the landscape/portrait/square/panorama distribution. With `field` it
    carries the values of that one field: `camera`, `lens`, `make`, `location`,
    `format` or any dotted metadata path such as `exif.software`.

    **Authentication required**: No (Bearer token optional)
    """,
    response_description="Filter values with counts",
    responses={400: {"description": "Bad Request - Unknown field"}},
)
async def filter_options(
    field: str | None = Query(None, max_length=100, description="Single field to list"),
    limit: int = Query(30, ge=1, le=MAX_OPTIONS_LIMIT, description="Maximum values per field"),
    user: UserInfo | None = Depends(get_optional_user),
    uc: FilterOptionsUseCase = Depends(get_filter_options_use_case),
):
    """Get values for the search filters."""
    options = await uc.execute(user.id if user else None, field, limit)
    if "field" in options:
        return FieldOptionsResponse(
            field=options["field"],
            values=[{"value": value, "count": count} for value, count in options["values"]],
        )
    return FilterOptionsResponse(
        **{
            key: [{"value": value, "count": count} for value, count in options[key]]
            for key in ("cameras", "lenses", "locations", "formats")
        },
        dimensions=options["dimensions"],
    )
