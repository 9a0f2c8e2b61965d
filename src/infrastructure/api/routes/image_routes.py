from __future__ import annotations

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status

from src.application.dtos.image_dto import (
    DeleteImageResponse,
    ImageSummary,
    ListImagesResponse,
    UpdateVisibilityRequest,
    UpdateVisibilityResponse,
    UploadImageResponse,
)
from src.application.use_cases.list_images import ImagePage, ListImagesUseCase
from src.application.use_cases.manage_images import (
    DeleteImageUseCase,
    GetImageUseCase,
    UpdateVisibilityUseCase,
)
from src.application.use_cases.upload_image import UploadImageUseCase
from src.domain.entities.image import Visibility
from src.infrastructure.api.dependencies import (
    get_current_user,
    get_delete_use_case,
    get_image_repo,
    get_image_use_case,
    get_list_images_use_case,
    get_optional_user,
    get_upload_use_case,
    get_visibility_use_case,
)
from src.infrastructure.database.repositories.image_repository import ImageRepository
from src.infrastructure.database.supabase_client import UserInfo

MAX_UPLOAD_BYTES = 20 * 1024 * 1024

router = APIRouter(
    prefix="/images",
    tags=["Image Management"],
    responses={
        401: {"description": "Unauthorized - Invalid or missing authentication token"},
        404: {"description": "Not Found - Image does not exist or user doesn't have access"},
        422: {"description": "Validation Error - Invalid request format"},
    },
)


def _identity(user: UserInfo | None) -> str | None:
    return user.id if user else None


def _page_response(result: ImagePage, images: ImageRepository) -> ListImagesResponse:
    return ListImagesResponse(
        images=[ImageSummary.from_entity(e, images.get_public_url(e.path)) for e in result.items],
        total=result.total,
        page=result.page,
        page_size=result.page_size,
        pages=result.pages,
    )


def _split_tags(raw: str | None) -> list[str]:
    return [t for t in (raw or "").split(",") if t.strip()]


@router.post(
    "/upload",
    response_model=UploadImageResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Upload Image",
    description="""
    Upload a new image file and register it.

    **Supported formats**: JPEG, PNG, GIF, WEBP, TIFF and SVG
    **Maximum file size**: 20 MB
    **Authentication required**: Yes (Bearer token)

    The upload:
    - Stores the original bytes unchanged in the owner's storage space
    - Extracts EXIF/IPTC/XMP fields and normalizes them into a metadata bundle
    - Records that bundle as the image's `initial` metadata version
    - Is private unless `visibility=public` is sent
    """,
    response_description="The registered image",
    responses={
        400: {"description": "Bad Request - Invalid image file or unsupported format"},
        413: {"description": "Payload Too Large - File size exceeds limit"},
    },
)
async def upload_image(
    file: UploadFile = File(..., description="Image file to upload"),
    title: str | None = Form(None, max_length=200, description="Title; defaults to the file name"),
    description: str | None = Form(None, max_length=2000, description="Optional description"),
    tags: str | None = Form(None, description="Comma separated tags", example="sunset,sea"),
    visibility: Visibility = Form(Visibility.PRIVATE, description="public or private"),
    user: UserInfo = Depends(get_current_user),
    uc: UploadImageUseCase = Depends(get_upload_use_case),
    images: ImageRepository = Depends(get_image_repo),
):
    """Upload a new image file and create its initial metadata version."""
    data = await file.read()
    if len(data) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail="File too large")
    entity = await uc.execute(
        user.id,
        data,
        file.filename,
        title=title,
        description=description,
        tags=_split_tags(tags),
        visibility=visibility,
        content_type=file.content_type,
    )
    return UploadImageResponse(image=ImageSummary.from_entity(entity, images.get_public_url(entity.path)))


@router.get(
    "",
    response_model=ListImagesResponse,
    summary="List Images",
    description="""
    Retrieve one page of the images visible to the caller.

    **Visibility rules:**
    - Anonymous callers only ever see public images, whatever filter is requested
    - Authenticated callers see their own images plus every public image

    **Filters**: `all`, `public`, `private` (own private images), `recent` (own images),
    `photos` (jpg, jpeg, png, gif, webp), `vectors` (svg, ai, eps)

    **Sorts**: `newest` (default), `oldest`, `a-z`, `z-a`, `largest`, `smallest`

    **Authentication required**: No (Bearer token optional)
    """,
    response_description="Paginated list of images",
    responses={400: {"description": "Bad Request - Unknown filter or sort"}},
)
async def list_images(
    filter: str = Query("all", description="Gallery filter"),
    sort: str = Query("newest", description="Sort order"),
    page: int = Query(1, ge=1, description="1-based page number"),
    page_size: int = Query(20, ge=1, le=100, description="Images per page (1-100)"),
    user: UserInfo | None = Depends(get_optional_user),
    uc: ListImagesUseCase = Depends(get_list_images_use_case),
    images: ImageRepository = Depends(get_image_repo),
):
    """Get a page of images visible to the caller."""
    result = await uc.execute(_identity(user), filter, sort, page, page_size)
    return _page_response(result, images)


@router.get(
    "/search",
    response_model=ListImagesResponse,
    summary="Search Images",
    description="""
    Case-insensitive text search over title and description, optionally
    restricted to images carrying any of the given tags. The same visibility
    rules, filters and sorts as the listing apply.

    **Authentication required**: No (Bearer token optional)
    """,
    response_description="Paginated list of matching images",
    responses={400: {"description": "Bad Request - Unknown filter or sort"}},
)
async def search_images(
    q: str | None = Query(None, max_length=200, description="Text to look for"),
    tags: str | None = Query(None, description="Comma separated tags"),
    filter: str = Query("all", description="Gallery filter"),
    sort: str = Query("newest", description="Sort order"),
    page: int = Query(1, ge=1, description="1-based page number"),
    page_size: int = Query(20, ge=1, le=100, description="Images per page (1-100)"),
    user: UserInfo | None = Depends(get_optional_user),
    uc: ListImagesUseCase = Depends(get_list_images_use_case),
    images: ImageRepository = Depends(get_image_repo),
):
    """Search images visible to the caller."""
    result = await uc.search(_identity(user), q, _split_tags(tags), filter, sort, page, page_size)
    return _page_response(result, images)


@router.patch(
    "/visibility",
    response_model=UpdateVisibilityResponse,
    summary="Change Visibility",
    description="""
    Set the visibility of several of the caller's images at once. IDs of
    images the caller does not own are ignored; when none match the request
    fails with 404.

    **Authentication required**: Yes (Bearer token)
    """,
    response_description="Number of images updated",
    responses={400: {"description": "Bad Request - Empty or oversized batch"}},
)
async def update_visibility(
    body: UpdateVisibilityRequest,
    user: UserInfo = Depends(get_current_user),
    uc: UpdateVisibilityUseCase = Depends(get_visibility_use_case),
):
    """Batch visibility change of the caller's images."""
    updated = await uc.execute(user.id, body.image_ids, body.visibility)
    return UpdateVisibilityResponse(updated=updated, visibility=body.visibility)


@router.get(
    "/{image_id}",
    response_model=ImageSummary,
    summary="Get Image",
    description="""
    Retrieve a single image record. Private images are only returned to
    their owner; anyone else receives the same 404 as for a missing image.

    **Authentication required**: No (Bearer token optional)
    """,
    response_description="The image record",
)
async def get_image(
    image_id: str,
    user: UserInfo | None = Depends(get_optional_user),
    uc: GetImageUseCase = Depends(get_image_use_case),
    images: ImageRepository = Depends(get_image_repo),
):
    """Get one image visible to the caller."""
    entity = await uc.execute(_identity(user), image_id)
    return ImageSummary.from_entity(entity, images.get_public_url(entity.path))


@router.delete(
    "/{image_id}",
    response_model=DeleteImageResponse,
    summary="Delete Image",
    description="""
    Permanently delete an image, its stored bytes and its whole metadata
    version history.

    **Warning**: This action cannot be undone!

    **Authentication required**: Yes (Bearer token, owner only)
    """,
    response_description="Confirmation of successful deletion",
)
async def delete_image(
    image_id: str,
    user: UserInfo = Depends(get_current_user),
    uc: DeleteImageUseCase = Depends(get_delete_use_case),
):
    """Delete an image owned by the caller."""
    await uc.execute(user.id, image_id)
    return DeleteImageResponse(ok=True)
