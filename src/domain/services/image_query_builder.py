from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from src.domain.entities.image import Visibility
from src.domain.errors import ValidationError

PHOTO_FORMATS = ("jpg", "jpeg", "png", "gif", "webp")
VECTOR_FORMATS = ("svg", "ai", "eps")

LISTING_FILTERS = ("all", "public", "private", "recent", "photos", "vectors")

ASCENDING = 1
DESCENDING = -1

SORT_OPTIONS: dict[str, tuple[str, int]] = {
    "newest": ("created_at", DESCENDING),
    "oldest": ("created_at", ASCENDING),
    "a-z": ("title", ASCENDING),
    "z-a": ("title", DESCENDING),
    "largest": ("size", DESCENDING),
    "smallest": ("size", ASCENDING),
}
DEFAULT_SORT = "newest"


@dataclass(frozen=True)
class ImageQuery:
    """Composed predicate plus sort order, executed by the image repository."""

    filter: dict[str, Any]
    sort: tuple[str, int] = SORT_OPTIONS[DEFAULT_SORT]


class ImageQueryBuilder:
    """Builds Mongo-style predicates over image documents.

    Plain conditions are keyed by field, so adding the same field twice
    overwrites it. ``$or`` and ``$and`` groups accumulate.
    """

    def __init__(self) -> None:
        self._query: dict[str, Any] = {}

    def add_condition(self, field: str, value: Any) -> ImageQueryBuilder:
        self._query[field] = value
        return self

    def add_or(self, conditions: list[dict[str, Any]]) -> ImageQueryBuilder:
        self._query.setdefault("$or", []).extend(conditions)
        return self

    def add_and(self, conditions: list[dict[str, Any]]) -> ImageQueryBuilder:
        self._query.setdefault("$and", []).extend(conditions)
        return self

    def add_in_condition(self, field: str, values: list[Any] | tuple[Any, ...]) -> ImageQueryBuilder:
        if values:
            self._query[field] = {"$in": list(values)}
        return self

    def add_regex_search(self, field: str, term: str, options: str = "i") -> ImageQueryBuilder:
        self._query[field] = {"$regex": re.escape(term), "$options": options}
        return self

    def add_date_range(
        self, field: str, start: datetime | None = None, end: datetime | None = None
    ) -> ImageQueryBuilder:
        return self._add_range(field, start, end)

    def add_numeric_range(
        self, field: str, minimum: float | None = None, maximum: float | None = None
    ) -> ImageQueryBuilder:
        return self._add_range(field, minimum, maximum)

    def add_exists_condition(self, field: str, exists: bool = True) -> ImageQueryBuilder:
        self._query[field] = {"$exists": exists}
        return self

    def _add_range(self, field: str, lower: Any, upper: Any) -> ImageQueryBuilder:
        if lower is None and upper is None:
            return self
        condition: dict[str, Any] = {}
        if lower is not None:
            condition["$gte"] = lower
        if upper is not None:
            condition["$lte"] = upper
        self._query[field] = condition
        return self

    def build(self) -> dict[str, Any]:
        return {k: (list(v) if k in ("$or", "$and") else v) for k, v in self._query.items()}

    # -- composed queries -------------------------------------------------

    def apply_visibility_scope(self, identity: str | None, filter_name: str = "all") -> ImageQueryBuilder:
        """Base visibility predicate narrowed by a gallery filter.

        Anonymous callers only ever see public images whatever filter they
        ask for, so ``private`` cannot leak anything.
        """
        if filter_name not in LISTING_FILTERS:
            raise ValidationError(f"Unsupported filter: {filter_name}")
        if not identity:
            return self.add_condition("visibility", Visibility.PUBLIC.value)

        self.add_or([{"owner_id": identity}, {"visibility": Visibility.PUBLIC.value}])
        if filter_name == "public":
            self.add_condition("visibility", Visibility.PUBLIC.value)
        elif filter_name == "private":
            self.add_condition("visibility", Visibility.PRIVATE.value)
            self.add_condition("owner_id", identity)
        elif filter_name == "recent":
            self.add_condition("owner_id", identity)
        elif filter_name == "photos":
            self.add_in_condition("format", PHOTO_FORMATS)
        elif filter_name == "vectors":
            self.add_in_condition("format", VECTOR_FORMATS)
        return self

    @staticmethod
    def resolve_sort(sort_name: str | None) -> tuple[str, int]:
        key = sort_name or DEFAULT_SORT
        if key not in SORT_OPTIONS:
            raise ValidationError(f"Unsupported sort: {key}")
        return SORT_OPTIONS[key]

    @classmethod
    def for_listing(
        cls, identity: str | None, filter_name: str = "all", sort_name: str | None = DEFAULT_SORT
    ) -> ImageQuery:
        builder = cls().apply_visibility_scope(identity, filter_name)
        return ImageQuery(filter=builder.build(), sort=cls.resolve_sort(sort_name))

    @classmethod
    def for_search(
        cls,
        identity: str | None,
        text: str | None = None,
        tags: list[str] | None = None,
        filter_name: str = "all",
        sort_name: str | None = DEFAULT_SORT,
    ) -> ImageQuery:
        builder = cls().apply_visibility_scope(identity, filter_name)
        term = (text or "").strip()
        if term:
            pattern = {"$regex": re.escape(term), "$options": "i"}
            builder.add_and([{"$or": [{"title": pattern}, {"description": pattern}]}])
        if tags:
            builder.add_in_condition("tags", [t.strip().lower() for t in tags if t.strip()])
        return ImageQuery(filter=builder.build(), sort=cls.resolve_sort(sort_name))
