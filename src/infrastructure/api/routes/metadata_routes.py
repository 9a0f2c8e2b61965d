from __future__ import annotations

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status
from fastapi.responses import Response

from src.application.dtos.common_dto import ErrorResponse
from src.application.dtos.metadata_dto import (
    ExtractMetadataResponse,
    ImageBasicInfo,
    MetadataBundleModel,
    MetadataChangeResponse,
    MetadataResponse,
    UpdateMetadataRequest,
    VersionListResponse,
    VersionSummary,
)
from src.application.services.metadata_service import MetadataService
from src.infrastructure.api.dependencies import (
    get_current_user,
    get_image_repo,
    get_metadata_service,
    get_optional_user,
)
from src.infrastructure.api.routes.image_routes import MAX_UPLOAD_BYTES
from src.infrastructure.database.repositories.image_repository import ImageRepository
from src.infrastructure.database.supabase_client import UserInfo
from src.infrastructure.extraction.pillow_extractor import extract_raw_metadata_async

router = APIRouter(
    prefix="/images/{image_id}/metadata",
    tags=["Image Metadata"],
    responses={
        401: {"description": "Unauthorized - Invalid authentication token"},
        404: {"model": ErrorResponse, "description": "Not Found - Image or version does not exist, or the caller has no access"},
        422: {"description": "Validation Error - Invalid request format"},
    },
)

extract_router = APIRouter(
    prefix="/metadata",
    tags=["Image Metadata"],
    responses={401: {"description": "Unauthorized - Invalid or missing authentication token"}},
)


def _identity(user: UserInfo | None) -> str | None:
    return user.id if user else None


@router.get(
    "",
    response_model=MetadataResponse,
    summary="Get Image Metadata",
    description="""
    Read the metadata bundle of an image.

    Without `version_id` the current version is returned (the one appended
    last). With `version_id` that version is returned even if it is not
    current, so older history can be previewed without restoring it.

    **Authentication required**: No for public images; private images are
    only readable by their owner.
    """,
    response_description="Metadata bundle plus basic image information",
)
async def get_metadata(
    image_id: str,
    version_id: str | None = Query(None, description="Read this version instead of the current one"),
    user: UserInfo | None = Depends(get_optional_user),
    service: MetadataService = Depends(get_metadata_service),
    images: ImageRepository = Depends(get_image_repo),
):
    """Get the current or a specific metadata version."""
    view = await service.get_metadata(image_id, _identity(user), version_id)
    image = view.image
    return MetadataResponse(
        image=ImageBasicInfo(
            id=image.id,
            title=image.title,
            width=image.width,
            height=image.height,
            format=image.format,
            size=image.size,
            owner_id=image.owner_id,
            visibility=image.visibility,
            url=images.get_public_url(image.path),
            created_at=image.created_at,
            updated_at=image.updated_at,
        ),
        version=VersionSummary.from_entity(view.version),
        metadata=MetadataBundleModel(**view.metadata.to_dict()),
    )


@router.put(
    "",
    response_model=MetadataChangeResponse,
    summary="Update or Restore Metadata",
    description="""
    Append a new metadata version.

    - With `restore_from_version_id`: the bundle of that version becomes
      current again (change type `restore`); `metadata` is ignored
    - Otherwise `metadata` is appended as an `edit`

    Nothing is changed in place; every call adds exactly one version.

    **Authentication required**: Yes (Bearer token, owner only)
    """,
    response_description="The appended version",
    responses={400: {"description": "Bad Request - Neither metadata nor a version to restore, or malformed bundle"}},
)
async def update_metadata(
    image_id: str,
    body: UpdateMetadataRequest,
    user: UserInfo = Depends(get_current_user),
    service: MetadataService = Depends(get_metadata_service),
):
    """Edit metadata or restore an earlier version."""
    version = await service.update_metadata(
        image_id,
        user.id,
        new_bundle=body.metadata,
        restore_from_version_id=body.restore_from_version_id,
    )
    message = "Metadata restored successfully" if body.restore_from_version_id else "Metadata updated successfully"
    return MetadataChangeResponse(message=message, version=VersionSummary.from_entity(version))


@router.post(
    "/strip",
    response_model=MetadataChangeResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Strip Metadata",
    description="""
    Append a version with EXIF, IPTC, XMP and custom fields cleared. Only
    the basic fields title, width, height, format and size are kept.
    Earlier versions stay available for restore.

    **Authentication required**: Yes (Bearer token, owner only)
    """,
    response_description="The appended `strip` version",
)
async def strip_metadata(
    image_id: str,
    user: UserInfo = Depends(get_current_user),
    service: MetadataService = Depends(get_metadata_service),
):
    """Clear every non-essential metadata field."""
    version = await service.strip_metadata(image_id, user.id)
    return MetadataChangeResponse(message="Metadata stripped successfully", version=VersionSummary.from_entity(version))


@router.get(
    "/versions",
    response_model=VersionListResponse,
    summary="List Metadata Versions",
    description="""
    Version history of an image, newest first.

    **Authentication required**: No for public images; private images are
    only readable by their owner.
    """,
    response_description="Version summaries, newest first",
)
async def list_versions(
    image_id: str,
    limit: int | None = Query(None, ge=1, le=500, description="Maximum number of versions"),
    offset: int = Query(0, ge=0, description="Number of newest versions to skip"),
    user: UserInfo | None = Depends(get_optional_user),
    service: MetadataService = Depends(get_metadata_service),
):
    """List metadata versions of an image."""
    page = await service.list_versions(image_id, _identity(user), limit=limit, offset=offset)
    return VersionListResponse(
        versions=[VersionSummary.from_entity(v) for v in page.versions],
        total=page.total,
    )


@router.get(
    "/export",
    summary="Export Metadata",
    description="""
    Download the metadata of the current version, or of `version_id`, as a
    JSON attachment named `metadata_<imageId>[_version_<versionId>].json`.
    Exporting never appends a version.

    **Authentication required**: No for public images; private images are
    only readable by their owner.
    """,
    response_description="JSON file download",
    responses={
        200: {"content": {"application/json": {}}, "description": "Metadata document"},
        400: {"description": "Bad Request - Unsupported export format"},
    },
)
async def export_metadata(
    image_id: str,
    version_id: str | None = Query(None, description="Export this version instead of the current one"),
    format: str = Query("json", description="Export format; only json is supported"),
    user: UserInfo | None = Depends(get_optional_user),
    service: MetadataService = Depends(get_metadata_service),
):
    """Export metadata as a downloadable file."""
    exported = await service.export_metadata(image_id, _identity(user), version_id, fmt=format)
    return Response(
        content=exported.content,
        media_type=exported.content_type,
        headers={"Content-Disposition": f'attachment; filename="{exported.filename}"'},
    )


@extract_router.post(
    "/extract",
    response_model=ExtractMetadataResponse,
    summary="Preview Extracted Metadata",
    description="""
    Extract and normalize the metadata of an image file without storing
    anything. Useful to show what an upload would record.

    **Authentication required**: Yes (Bearer token)
    """,
    response_description="Normalized metadata bundle",
    responses={
        400: {"description": "Bad Request - Invalid image file or unsupported format"},
        413: {"description": "Payload Too Large - File size exceeds limit"},
    },
)
async def extract_metadata(
    file: UploadFile = File(..., description="Image file to inspect"),
    user: UserInfo = Depends(get_current_user),
    service: MetadataService = Depends(get_metadata_service),
):
    """Normalize the metadata of an uploaded file."""
    data = await file.read()
    if len(data) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail="File too large")
    raw = await extract_raw_metadata_async(data, file.filename)
    bundle = service.normalize_metadata(raw)
    return ExtractMetadataResponse(filename=file.filename, metadata=MetadataBundleModel(**bundle.to_dict()))
