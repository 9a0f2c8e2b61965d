import pytest

from src.domain.errors import ValidationError
from src.domain.services.image_query_builder import ImageQueryBuilder


def test_anonymous_sees_only_public_for_every_filter():
    public = ImageQueryBuilder.for_listing(None, "public")
    for name in ("all", "private", "recent", "photos", "vectors"):
        assert ImageQueryBuilder.for_listing(None, name).filter == public.filter
    assert public.filter == {"visibility": "public"}


def test_identified_base_predicate():
    query = ImageQueryBuilder.for_listing("u1")
    assert query.filter == {"$or": [{"owner_id": "u1"}, {"visibility": "public"}]}
    assert query.sort == ("created_at", -1)


def test_private_filter_narrows_to_own_private_images():
    query = ImageQueryBuilder.for_listing("u1", "private")
    assert query.filter["visibility"] == "private"
    assert query.filter["owner_id"] == "u1"


def test_format_filters():
    photos = ImageQueryBuilder.for_listing("u1", "photos").filter
    vectors = ImageQueryBuilder.for_listing("u1", "vectors").filter
    assert photos["format"] == {"$in": ["jpg", "jpeg", "png", "gif", "webp"]}
    assert vectors["format"] == {"$in": ["svg", "ai", "eps"]}


def test_recent_is_own_images():
    assert ImageQueryBuilder.for_listing("u1", "recent").filter["owner_id"] == "u1"


@pytest.mark.parametrize(
    "name,expected",
    [
        ("newest", ("created_at", -1)),
        ("oldest", ("created_at", 1)),
        ("a-z", ("title", 1)),
        ("z-a", ("title", -1)),
        ("largest", ("size", -1)),
        ("smallest", ("size", 1)),
        (None, ("created_at", -1)),
    ],
)
def test_sort_mapping(name, expected):
    assert ImageQueryBuilder.resolve_sort(name) == expected


def test_unknown_filter_and_sort_are_rejected():
    with pytest.raises(ValidationError):
        ImageQueryBuilder.for_listing("u1", "favourites")
    with pytest.raises(ValidationError):
        ImageQueryBuilder.for_listing("u1", "all", "random")


def test_add_condition_overwrites_but_groups_accumulate():
    builder = ImageQueryBuilder()
    builder.add_condition("format", "png").add_condition("format", "svg")
    builder.add_or([{"owner_id": "a"}]).add_or([{"owner_id": "b"}])
    built = builder.build()
    assert built["format"] == "svg"
    assert built["$or"] == [{"owner_id": "a"}, {"owner_id": "b"}]


def test_range_and_exists_helpers():
    built = (
        ImageQueryBuilder()
        .add_numeric_range("size", minimum=10)
        .add_numeric_range("width")
        .add_exists_condition("description")
        .add_in_condition("tags", [])
        .build()
    )
    assert built == {"size": {"$gte": 10}, "description": {"$exists": True}}


def test_search_escapes_text_and_lowercases_tags():
    query = ImageQueryBuilder.for_search("u1", text="a.b", tags=[" Sea ", ""])
    text_group = query.filter["$and"][0]["$or"]
    assert text_group[0] == {"title": {"$regex": r"a\.b", "$options": "i"}}
    assert query.filter["tags"] == {"$in": ["sea"]}
