from datetime import UTC, datetime

import pytest

from src.domain.errors import ValidationError
from src.infrastructure.database.filters import apply_postgrest, compile_sql, matches, sql_order

DOC = {
    "id": "img1",
    "owner_id": "u1",
    "visibility": "private",
    "title": "Harbour at dusk",
    "description": None,
    "tags": ["sea", "dusk"],
    "format": "jpeg",
    "size": 2048,
    "width": 10,
    "height": 5,
    "created_at": datetime(2024, 5, 1, tzinfo=UTC),
    "updated_at": datetime(2024, 5, 1, tzinfo=UTC),
}


def test_matches_or_and_equality():
    query = {"$or": [{"owner_id": "u1"}, {"visibility": "public"}]}
    assert matches(DOC, query)
    assert not matches(DOC, {"$or": [{"owner_id": "u2"}, {"visibility": "public"}]})


def test_matches_array_membership_and_overlap():
    assert matches(DOC, {"tags": "sea"})
    assert matches(DOC, {"tags": {"$in": ["forest", "dusk"]}})
    assert not matches(DOC, {"tags": {"$in": ["forest"]}})


def test_matches_regex_ranges_exists():
    assert matches(DOC, {"title": {"$regex": "harbour", "$options": "i"}})
    assert not matches(DOC, {"title": {"$regex": "harbour"}})
    assert matches(DOC, {"size": {"$gte": 1024, "$lte": 4096}})
    assert not matches(DOC, {"size": {"$gt": 4096}})
    assert matches(DOC, {"description": {"$exists": False}})
    assert matches(DOC, {"format": {"$ne": "png"}})


def test_unknown_field_is_rejected():
    with pytest.raises(ValidationError):
        matches(DOC, {"password": "x"})
    with pytest.raises(ValidationError):
        compile_sql({"password": "x"})


def test_open_fields_accept_metadata_paths():
    document = {"exif.camera": "Canon EOS R5", "exif.captureDate": datetime(2024, 5, 1, 12)}
    query = {
        "exif.camera": {"$regex": "eos", "$options": "i"},
        "exif.captureDate": {"$gte": datetime(2024, 5, 1), "$lte": datetime(2024, 5, 1, 23, 59)},
    }
    assert matches(document, query, open_fields=True)
    assert not matches(document, {"$or": [{"exif.lens": {"$regex": "50"}}]}, open_fields=True)


def test_compile_sql_parameterizes_values():
    clause, params = compile_sql(
        {"$or": [{"owner_id": "u1"}, {"visibility": "public"}], "format": {"$in": ["png", "jpeg"]}}
    )
    assert clause == "(((owner_id = %s) OR (visibility = %s)) AND format = ANY(%s))"
    assert params == ("u1", "public", ["png", "jpeg"])


def test_compile_sql_arrays_and_regex():
    clause, params = compile_sql({"tags": {"$in": ["sea"]}, "title": {"$regex": "dusk", "$options": "i"}})
    assert clause == "(tags && %s AND title ~* %s)"
    assert params == (["sea"], "dusk")


def test_empty_query_is_true():
    assert compile_sql({}) == ("TRUE", ())


def test_sql_order_has_stable_tiebreak():
    assert sql_order(("size", -1)) == "size DESC, id ASC"


class RecordingRequest:
    def __init__(self):
        self.calls = []

    def or_(self, expression):
        self.calls.append(("or", expression))
        return self

    def filter(self, column, op, criteria):
        self.calls.append((column, op, criteria))
        return self


def test_apply_postgrest_renders_groups_and_operators():
    request = apply_postgrest(
        RecordingRequest(),
        {
            "$or": [{"owner_id": "u1"}, {"visibility": "public"}],
            "format": {"$in": ["png", "jpeg"]},
            "tags": {"$in": ["sea"]},
        },
    )
    assert request.calls == [
        ("or", "owner_id.eq.u1,visibility.eq.public"),
        ("format", "in", "(png,jpeg)"),
        ("tags", "ov", "{sea}"),
    ]


def test_apply_postgrest_quotes_reserved_characters():
    request = apply_postgrest(
        RecordingRequest(),
        {"$and": [{"$or": [{"title": {"$regex": "a.b", "$options": "i"}}, {"description": {"$regex": "a.b", "$options": "i"}}]}]},
    )
    assert request.calls == [("or", 'title.imatch."a.b",description.imatch."a.b"')]
