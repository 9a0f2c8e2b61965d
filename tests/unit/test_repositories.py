from datetime import datetime

import pytest

from src.domain.entities.image import Visibility
from src.domain.entities.metadata_bundle import MetadataBundle
from src.domain.entities.metadata_version import ChangeType
from src.domain.services.image_query_builder import ImageQueryBuilder
from src.infrastructure.database.repositories import metadata_version_repository as version_module
from src.infrastructure.database.repositories.image_repository import ImageRepository
from src.infrastructure.database.repositories.metadata_version_repository import (
    MetadataVersionRepository,
)
from src.infrastructure.database.repositories.profile_repository import ProfileRepository


@pytest.fixture()
def images():
    return ImageRepository(None)


async def _seed(images):
    created = []
    for owner, title, fmt, size, visibility, tags in [
        ("alice", "Bravo", "jpeg", 300, Visibility.PUBLIC, ("sea", "dusk")),
        ("alice", "alpha", "svg", 100, Visibility.PRIVATE, ("logo",)),
        ("bob", "Charlie", "png", 200, Visibility.PUBLIC, ("sea",)),
        ("bob", "delta", "png", 400, Visibility.PRIVATE, ("secret",)),
    ]:
        created.append(
            await images.create(
                owner_id=owner, title=title, format=fmt, size=size, width=1, height=1,
                visibility=visibility, tags=tags,
            )
        )
    return created


async def test_find_applies_visibility_and_sort(images):
    await _seed(images)
    query = ImageQueryBuilder.for_listing("alice", "all", "largest")
    found = await images.find(query)
    assert [img.title for img in found] == ["Bravo", "Charlie", "alpha"]
    assert await images.count(query) == 3

    anonymous = await images.find(ImageQueryBuilder.for_listing(None, "private"))
    assert {img.visibility for img in anonymous} == {Visibility.PUBLIC}


async def test_find_paginates(images):
    await _seed(images)
    query = ImageQueryBuilder.for_listing("alice", "all", "smallest")
    assert [img.size for img in await images.find(query, offset=1, limit=1)] == [200]
    assert await images.find(query, offset=10, limit=5) == []
    assert [img.size for img in await images.find(query, offset=1, limit=None)] == [200, 300]


async def test_search_matches_title_or_description(images):
    await _seed(images)
    query = ImageQueryBuilder.for_search("alice", text="ALP")
    assert [img.title for img in await images.find(query)] == ["alpha"]
    by_tag = ImageQueryBuilder.for_search(None, tags=["SEA"])
    assert await images.count(by_tag) == 2


async def test_tag_counts_rank_and_filter(images):
    await _seed(images)
    query = ImageQueryBuilder.for_listing("alice")
    assert await images.tag_counts(query) == [("sea", 2), ("dusk", 1), ("logo", 1)]
    assert await images.tag_counts(query, text="LO") == [("logo", 1)]
    assert await images.tag_counts(query, limit=1) == [("sea", 2)]


async def test_set_visibility_is_owner_scoped(images):
    seeded = await _seed(images)
    ids = [img.id for img in seeded]
    assert await images.set_visibility(ids, "alice", Visibility.PRIVATE) == 2
    assert (await images.get(seeded[2].id)).visibility == Visibility.PUBLIC
    assert (await images.get(seeded[0].id)).visibility == Visibility.PRIVATE


async def test_delete_and_public_url(images):
    seeded = await _seed(images)
    assert await images.delete(seeded[0].id) is True
    assert await images.delete(seeded[0].id) is False
    assert await images.get(seeded[0].id) is None
    assert images.get_public_url("alice/x.jpg") == "/local-storage/alice/x.jpg"
    assert images.get_public_url(None) == ""


async def test_version_log_is_newest_first_and_cascades():
    versions = MetadataVersionRepository(None)
    first = await versions.append("img", MetadataBundle(basic={"n": 1}), ChangeType.INITIAL)
    second = await versions.append("img", MetadataBundle(basic={"n": 2}), ChangeType.EDIT, author="alice")
    await versions.append("other", MetadataBundle(), ChangeType.INITIAL)

    assert second.created_at >= first.created_at
    assert second.sequence > first.sequence
    assert (await versions.latest("img")).id == second.id
    assert [v.id for v in await versions.list_by_image("img")] == [second.id, first.id]
    assert await versions.get("other", first.id) is None

    await versions.delete_by_image("img")
    assert await versions.list_by_image("img") == []
    assert await versions.latest("other") is not None


async def test_stored_bundles_are_not_aliased():
    versions = MetadataVersionRepository(None)
    bundle = MetadataBundle(basic={"title": "a"})
    stored = await versions.append("img", bundle, ChangeType.INITIAL)
    bundle.basic["title"] = "changed"
    stored.metadata.basic["title"] = "changed too"
    assert (await versions.get("img", stored.id)).metadata.basic["title"] == "a"


async def test_profile_upsert_keeps_display_name():
    profiles = ProfileRepository(None)
    await profiles.upsert("u1", "u1@example.com")
    await profiles.set_display_name("u1", "Ada")
    await profiles.upsert("u1", None)
    profile = await profiles.get("u1")
    assert profile.email == "u1@example.com"
    assert profile.display_name == "Ada"


class FrozenDatetime(datetime):
    @classmethod
    def now(cls, tz=None):
        return cls(2024, 5, 1, 12, 0, tzinfo=tz)


async def test_equal_timestamps_follow_insertion_order(monkeypatch):
    monkeypatch.setattr(version_module, "datetime", FrozenDatetime)
    versions = MetadataVersionRepository(None)
    appended = [
        await versions.append("img", MetadataBundle(basic={"n": n}), ChangeType.EDIT) for n in range(4)
    ]
    assert len({v.created_at for v in appended}) == 1

    assert (await versions.latest("img")).id == appended[-1].id
    listed = await versions.list_by_image("img")
    assert [v.id for v in listed] == [v.id for v in reversed(appended)]


async def test_append_initial_is_idempotent():
    versions = MetadataVersionRepository(None)
    first, created = await versions.append_initial("img", MetadataBundle(basic={"n": 1}))
    await versions.append("img", MetadataBundle(basic={"n": 2}), ChangeType.EDIT)
    second, created_again = await versions.append_initial("img", MetadataBundle(basic={"n": 3}))
    assert (created, created_again) == (True, False)
    assert second.id == first.id
    assert len(await versions.list_by_image("img")) == 2


async def test_current_for_images_picks_the_newest_version():
    versions = MetadataVersionRepository(None)
    await versions.append("a", MetadataBundle(basic={"n": 1}), ChangeType.INITIAL)
    newest = await versions.append("a", MetadataBundle(basic={"n": 2}), ChangeType.EDIT)
    only = await versions.append("b", MetadataBundle(basic={"n": 3}), ChangeType.INITIAL)

    current = await versions.current_for_images(["a", "b", "missing"])
    assert {k: v.id for k, v in current.items()} == {"a": newest.id, "b": only.id}
    assert current["a"].metadata.basic == {"n": 2}
    assert await versions.current_for_images([]) == {}
