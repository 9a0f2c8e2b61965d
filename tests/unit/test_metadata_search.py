from datetime import date, datetime

import pytest

from src.application.services.metadata_service import MetadataService
from src.application.use_cases.search_metadata import FilterOptionsUseCase, SearchMetadataUseCase
from src.domain.entities.image import Visibility
from src.domain.entities.metadata_bundle import MetadataBundle
from src.domain.errors import ValidationError
from src.domain.services.metadata_search import (
    MetadataCriteria,
    flatten_bundle,
    parse_capture_date,
    search_document,
)
from src.infrastructure.cache.memory_cache import EphemeralCache
from src.infrastructure.database.repositories.image_repository import ImageRepository
from src.infrastructure.database.repositories.metadata_version_repository import (
    MetadataVersionRepository,
)

OWNER = "owner-1"
STRANGER = "stranger-1"


def test_flatten_uses_dotted_paths():
    bundle = MetadataBundle.from_dict(
        {"basic": {"title": "x"}, "exif": {"camera": "Canon", "gps": {"latitude": 38.7}}}
    )
    assert flatten_bundle(bundle) == {"basic.title": "x", "exif.camera": "Canon", "exif.gps.latitude": 38.7}


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("2024:05:01 18:30:00", datetime(2024, 5, 1, 18, 30)),
        ("2024:05:01", datetime(2024, 5, 1)),
        ("2024-05-01T18:30:00+02:00", datetime(2024, 5, 1, 18, 30)),
        ("2024-05-01T18:30:00Z", datetime(2024, 5, 1, 18, 30)),
        ("0000:00:00 00:00:00", None),
        ("yesterday", None),
        (None, None),
        (20240501, None),
    ],
)
def test_parse_capture_date(raw, expected):
    assert parse_capture_date(raw) == expected


def test_unreadable_capture_date_is_left_out_of_the_document():
    bundle = MetadataBundle.from_dict({"exif": {"captureDate": "someday"}})
    assert "exif.captureDate" not in search_document(bundle)


@pytest.mark.parametrize("path", ["camera", "gps.latitude", "exif.", "exif..camera", "secret.value"])
def test_criteria_rejects_unknown_paths(path):
    with pytest.raises(ValidationError):
        MetadataCriteria(fields={path: "x"})


def test_criteria_rejects_inverted_range():
    with pytest.raises(ValidationError):
        MetadataCriteria(captured_from=date(2024, 5, 2), captured_to=date(2024, 5, 1))


def test_blank_values_are_ignored():
    criteria = MetadataCriteria(fields={"exif.camera": "  "})
    assert criteria.is_empty
    assert criteria.predicate() == {}


def test_last_day_is_included():
    predicate = MetadataCriteria(captured_from=date(2024, 5, 1), captured_to=date(2024, 5, 1)).predicate()
    window = predicate["exif.captureDate"]
    assert window["$gte"] == datetime(2024, 5, 1)
    assert window["$lte"] >= datetime(2024, 5, 1, 23, 59, 59)


def test_cache_token_ignores_case_and_order():
    a = MetadataCriteria(fields={"exif.camera": "Canon", "exif.lens": "50mm"})
    b = MetadataCriteria(fields={"exif.lens": "50MM", "exif.camera": "canon"})
    assert a.cache_token() == b.cache_token()


# -- use cases ------------------------------------------------------------


@pytest.fixture()
def cache():
    return EphemeralCache()


@pytest.fixture()
def service(cache):
    return MetadataService(ImageRepository(None), MetadataVersionRepository(None), cache=cache)


@pytest.fixture()
def search(service, cache):
    return SearchMetadataUseCase(service.image_repo, service, cache)


@pytest.fixture()
def options(service, cache):
    return FilterOptionsUseCase(service.image_repo, service, cache)


async def _image(service, title, exif=None, owner=OWNER, visibility=Visibility.PRIVATE, width=640, height=480):
    image = await service.image_repo.create(
        owner_id=owner, title=title, format="jpeg", size=100, width=width, height=height, visibility=visibility
    )
    bundle = {"basic": {"title": title, "width": width, "height": height, "format": "jpeg"}}
    if exif is not None:
        bundle["exif"] = exif
    await service.create_initial_version(image, bundle)
    return image


async def test_field_match_is_case_insensitive_substring(service, search):
    canon = await _image(service, "harbour", {"camera": "Canon EOS R5"})
    await _image(service, "forest", {"camera": "Nikon Z6"})
    page = await search.execute(OWNER, MetadataCriteria(fields={"exif.camera": "eos"}))
    assert [hit.image.id for hit in page.items] == [canon.id]
    assert page.items[0].summary == {"camera": "Canon EOS R5"}
    assert page.total == 1


async def test_only_the_current_bundle_is_searched(service, search, cache):
    image = await _image(service, "harbour", {"camera": "Canon EOS R5"})
    criteria = MetadataCriteria(fields={"exif.camera": "canon"})
    assert (await search.execute(OWNER, criteria)).total == 1

    await service.strip_metadata(image.id, OWNER)
    assert (await search.execute(OWNER, criteria)).total == 0

    first = (await service.get_versions(image.id, OWNER))[-1]
    await service.update_metadata(image.id, OWNER, restore_from_version_id=first.id)
    assert (await search.execute(OWNER, criteria)).total == 1


async def test_results_are_cached_until_a_write(service, search, cache):
    await _image(service, "harbour", {"camera": "Canon"})
    criteria = MetadataCriteria(fields={"exif.camera": "canon"})
    await search.execute(OWNER, criteria)
    assert len(cache) == 1

    calls = []
    original = service.version_repo.current_for_images

    async def counting(image_ids):
        calls.append(image_ids)
        return await original(image_ids)

    service.version_repo.current_for_images = counting
    await search.execute(OWNER, criteria, page=1, page_size=5)
    assert calls == []

    await _image(service, "forest", {"camera": "Canon R6"})
    assert len(cache) == 0
    assert (await search.execute(OWNER, criteria)).total == 2
    assert len(calls) == 1


async def test_capture_date_range(service, search):
    may = await _image(service, "may", {"captureDate": "2024:05:01 23:59:00"})
    await _image(service, "june", {"captureDate": "2024:06:01 08:00:00"})
    await _image(service, "undated", {"camera": "Canon"})

    page = await search.execute(
        OWNER, MetadataCriteria(captured_from=date(2024, 4, 1), captured_to=date(2024, 5, 1))
    )
    assert [hit.image.id for hit in page.items] == [may.id]

    open_ended = await search.execute(OWNER, MetadataCriteria(captured_from=date(2024, 5, 1)))
    assert open_ended.total == 2


async def test_visibility_scope_applies(service, search):
    await _image(service, "private", {"camera": "Canon"})
    shared = await _image(service, "shared", {"camera": "Canon"}, visibility=Visibility.PUBLIC)
    criteria = MetadataCriteria(fields={"exif.camera": "canon"})

    assert (await search.execute(OWNER, criteria)).total == 2
    for identity in (STRANGER, None):
        page = await search.execute(identity, criteria)
        assert [hit.image.id for hit in page.items] == [shared.id]


async def test_text_tags_and_paging_combine(service, search):
    for i in range(3):
        await _image(service, f"harbour {i}", {"camera": "Canon"})
    await _image(service, "forest", {"camera": "Canon"})
    page = await search.execute(
        OWNER, MetadataCriteria(fields={"exif.camera": "canon"}), text="harbour", sort_name="a-z", page=2, page_size=2
    )
    assert [hit.image.title for hit in page.items] == ["harbour 2"]
    assert (page.total, page.pages) == (3, 2)


async def test_images_without_history_read_as_their_initial_bundle(service, search):
    image = await service.image_repo.create(
        owner_id=OWNER, title="Lighthouse", format="png", size=10, width=4, height=4
    )
    page = await search.execute(OWNER, MetadataCriteria(fields={"basic.title": "light"}))
    assert [hit.image.id for hit in page.items] == [image.id]
    assert await service.version_repo.list_by_image(image.id) == []


async def test_paging_is_validated(search):
    with pytest.raises(ValidationError):
        await search.execute(OWNER, MetadataCriteria(), page=0)
    with pytest.raises(ValidationError):
        await search.execute(OWNER, MetadataCriteria(), page_size=101)


async def test_options_rank_by_frequency(service, options):
    await _image(service, "a", {"camera": "Nikon Z6", "lens": "50mm"})
    await _image(service, "b", {"camera": "Canon R6"})
    await _image(service, "c", {"camera": "Canon R6"}, width=2000, height=600)
    await _image(service, "d", {"camera": "Sony A7"}, owner=STRANGER)

    result = await options.execute(OWNER)
    assert result["cameras"] == [("Canon R6", 2), ("Nikon Z6", 1)]
    assert result["lenses"] == [("50mm", 1)]
    assert result["formats"] == [("jpeg", 3)]
    dimensions = {d["value"]: d["count"] for d in result["dimensions"]}
    assert dimensions == {"landscape": 3, "portrait": 0, "square": 0, "panorama": 1}

    assert (await options.execute(OWNER, limit=1))["cameras"] == [("Canon R6", 2)]


async def test_options_for_one_field(service, options):
    await _image(service, "a", {"camera": "Canon", "software": "Lightroom"})
    assert await options.execute(OWNER, "exif.software") == {"field": "exif.software", "values": [("Lightroom", 1)]}
    assert await options.execute(OWNER, "camera") == {"field": "camera", "values": [("Canon", 1)]}
    assert await options.execute(OWNER, "format") == {"field": "format", "values": [("jpeg", 1)]}
    with pytest.raises(ValidationError):
        await options.execute(OWNER, "shutter")
    with pytest.raises(ValidationError):
        await options.execute(OWNER, limit=0)
