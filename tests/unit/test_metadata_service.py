import asyncio
import json

import pytest

from src.application.services.metadata_service import MetadataService
from src.domain.entities.image import Visibility
from src.domain.entities.metadata_version import ChangeType
from src.domain.errors import NotAuthorizedError, NotFoundError, StorageFailure, ValidationError
from src.infrastructure.database.repositories.image_repository import ImageRepository
from src.infrastructure.database.repositories.metadata_version_repository import (
    MetadataVersionRepository,
)

OWNER = "owner-1"
STRANGER = "stranger-1"

UPLOADED = {
    "basic": {"title": "Harbour", "width": 640, "height": 480, "format": "jpeg", "size": 1234},
    "exif": {"camera": "Canon EOS R5", "focalLength": "50mm"},
    "iptc": {"Keywords": ["sea"]},
}


@pytest.fixture()
def service():
    return MetadataService(ImageRepository(None), MetadataVersionRepository(None))


async def _image(service, visibility=Visibility.PRIVATE, with_version=True):
    image = await service.image_repo.create(
        owner_id=OWNER, title="Harbour", format="jpeg", size=1234, width=640, height=480, visibility=visibility
    )
    if with_version:
        await service.create_initial_version(image, UPLOADED)
    return image


async def test_edit_strip_restore_history(service):
    image = await _image(service)
    versions = await service.get_versions(image.id, OWNER)
    assert len(versions) == 1
    initial = versions[0]
    assert initial.change_type == ChangeType.INITIAL
    assert initial.author is None

    edited = {**UPLOADED, "custom": {"note": "fixed"}}
    edit = await service.update_metadata(image.id, OWNER, new_bundle=edited)
    assert edit.change_type == ChangeType.EDIT
    assert len(await service.get_versions(image.id, OWNER)) == 2

    strip = await service.strip_metadata(image.id, OWNER)
    assert strip.metadata.exif == {}
    assert strip.metadata.custom == {}
    assert strip.metadata.basic == UPLOADED["basic"]
    assert len(await service.get_versions(image.id, OWNER)) == 3

    restored = await service.update_metadata(image.id, OWNER, restore_from_version_id=initial.id)
    assert restored.change_type == ChangeType.RESTORE
    assert restored.description == f"Metadata restored from version {initial.id}"
    assert restored.metadata == initial.metadata

    history = await service.get_versions(image.id, OWNER)
    assert [v.change_type for v in history] == [
        ChangeType.RESTORE,
        ChangeType.STRIP,
        ChangeType.EDIT,
        ChangeType.INITIAL,
    ]
    assert all(a.order_key > b.order_key for a, b in zip(history, history[1:]))
    current = await service.get_metadata(image.id, OWNER)
    assert current.version.id == restored.id


async def test_restore_ignores_supplied_bundle(service):
    image = await _image(service)
    initial = (await service.get_versions(image.id, OWNER))[0]
    restored = await service.update_metadata(
        image.id, OWNER, new_bundle={"basic": {"title": "ignored"}}, restore_from_version_id=initial.id
    )
    assert restored.metadata.basic["title"] == "Harbour"


async def test_restored_bundle_is_independent_copy(service):
    image = await _image(service)
    initial = (await service.get_versions(image.id, OWNER))[0]
    restored = await service.update_metadata(image.id, OWNER, restore_from_version_id=initial.id)
    restored.metadata.basic["title"] = "mutated"
    again = await service.get_metadata(image.id, OWNER, initial.id)
    assert again.metadata.basic["title"] == "Harbour"


async def test_anonymous_cannot_read_private(service):
    image = await _image(service)
    with pytest.raises(NotAuthorizedError):
        await service.get_metadata(image.id, None)
    with pytest.raises(NotAuthorizedError):
        await service.get_versions(image.id, STRANGER)


async def test_public_image_is_readable_but_not_writable(service):
    image = await _image(service, visibility=Visibility.PUBLIC)
    view = await service.get_metadata(image.id, None)
    assert view.metadata.exif["camera"] == "Canon EOS R5"
    with pytest.raises(NotAuthorizedError):
        await service.update_metadata(image.id, STRANGER, new_bundle={"basic": {}})
    with pytest.raises(NotAuthorizedError):
        await service.strip_metadata(image.id, None)
    assert len(await service.get_versions(image.id, None)) == 1


async def test_unknown_image_and_version(service):
    with pytest.raises(NotFoundError):
        await service.get_metadata("missing", OWNER)
    image = await _image(service)
    with pytest.raises(NotFoundError):
        await service.get_metadata(image.id, OWNER, "no-such-version")
    with pytest.raises(NotFoundError):
        await service.update_metadata(image.id, OWNER, restore_from_version_id="no-such-version")


async def test_update_requires_bundle_or_restore(service):
    image = await _image(service)
    with pytest.raises(ValidationError):
        await service.update_metadata(image.id, OWNER)
    with pytest.raises(ValidationError):
        await service.update_metadata(image.id, OWNER, new_bundle={"secret": {}})


async def test_initial_version_is_created_lazily(service):
    image = await _image(service, with_version=False)
    view = await service.get_metadata(image.id, OWNER)
    assert view.version.change_type == ChangeType.INITIAL
    assert view.metadata.basic["title"] == "Harbour"
    assert len(await service.get_versions(image.id, OWNER)) == 1


async def test_first_edit_keeps_initial_version(service):
    image = await _image(service, with_version=False)
    await service.update_metadata(image.id, OWNER, new_bundle={"basic": {"title": "Renamed"}})
    history = await service.get_versions(image.id, OWNER)
    assert [v.change_type for v in history] == [ChangeType.EDIT, ChangeType.INITIAL]


async def test_preview_older_version_without_changing_current(service):
    image = await _image(service)
    initial = (await service.get_versions(image.id, OWNER))[0]
    await service.update_metadata(image.id, OWNER, new_bundle={"basic": {"title": "Renamed"}})
    preview = await service.get_metadata(image.id, OWNER, initial.id)
    assert preview.metadata.basic["title"] == "Harbour"
    current = await service.get_metadata(image.id, OWNER)
    assert current.metadata.basic["title"] == "Renamed"


async def test_version_paging(service):
    image = await _image(service)
    for n in range(3):
        await service.update_metadata(image.id, OWNER, new_bundle={"basic": {"title": f"t{n}"}})
    page = await service.get_versions(image.id, OWNER, limit=2, offset=1)
    assert [v.metadata.basic["title"] for v in page] == ["t1", "t0"]
    listed = await service.list_versions(image.id, OWNER, limit=2, offset=1)
    assert listed.versions == page
    assert listed.total == 4


async def test_export_document_and_filename(service):
    image = await _image(service)
    initial = (await service.get_versions(image.id, OWNER))[0]

    exported = await service.export_metadata(image.id, OWNER)
    assert exported.filename == f"metadata_{image.id}.json"
    assert exported.content_type == "application/json"
    document = json.loads(exported.content)
    assert document["id"] == image.id
    assert document["owner"] == OWNER
    assert document["visibility"] == "private"
    assert document["metadata"] == UPLOADED

    by_version = await service.export_metadata(image.id, OWNER, initial.id)
    assert by_version.filename == f"metadata_{image.id}_version_{initial.id}.json"
    assert len(await service.get_versions(image.id, OWNER)) == 1


async def test_export_rejects_unknown_format(service):
    image = await _image(service)
    with pytest.raises(ValidationError):
        await service.export_metadata(image.id, OWNER, fmt="xml")


class UnavailableVersionRepository(MetadataVersionRepository):
    async def append(self, *args, **kwargs):
        raise StorageFailure("PostgreSQL insert metadata version failed: connection refused")

    async def latest(self, image_id):
        raise StorageFailure("PostgreSQL latest metadata version failed: connection refused")


async def test_storage_failures_propagate_unchanged():
    service = MetadataService(ImageRepository(None), UnavailableVersionRepository(None))
    image = await _image(service, with_version=False)
    with pytest.raises(StorageFailure, match="connection refused"):
        await service.get_metadata(image.id, OWNER)
    with pytest.raises(StorageFailure, match="insert metadata version failed"):
        await service.create_initial_version(image)


async def test_only_one_initial_version_per_image(service):
    image = await _image(service, with_version=False)
    views = await asyncio.gather(*(service.get_metadata(image.id, OWNER) for _ in range(5)))
    assert len({view.version.id for view in views}) == 1

    again = await service.create_initial_version(image, {"basic": {"title": "other"}})
    assert again.id == views[0].version.id
    history = await service.get_versions(image.id, OWNER)
    assert [v.change_type for v in history] == [ChangeType.INITIAL]
