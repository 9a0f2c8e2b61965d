"""Metadata search criteria and the flattened documents they run against.

A bundle is flattened into dotted paths (``exif.camera``, ``exif.gps.latitude``)
so field conditions use the same predicate language as image queries.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Any

from src.domain.entities.metadata_bundle import CATEGORIES, MetadataBundle
from src.domain.errors import ValidationError
from src.domain.services.image_query_builder import ImageQueryBuilder

CAPTURE_DATE_PATH = "exif.captureDate"
MAX_FIELD_CONDITIONS = 10

_PATH = re.compile(r"^[A-Za-z0-9_:-]+(\.[A-Za-z0-9_:-]+)+$")
_EXIF_DATE_FORMATS = ("%Y:%m:%d %H:%M:%S", "%Y:%m:%d %H:%M", "%Y:%m:%d")


def flatten_bundle(bundle: MetadataBundle) -> dict[str, Any]:
    flat: dict[str, Any] = {}

    def walk(prefix: str, value: Any) -> None:
        if isinstance(value, dict):
            for key, item in value.items():
                walk(f"{prefix}.{key}", item)
        else:
            flat[prefix] = value

    for category, fields in bundle.to_dict().items():
        walk(category, fields)
    return flat


def parse_capture_date(value: Any) -> datetime | None:
    """EXIF ``YYYY:MM:DD HH:MM:SS`` or ISO-8601 text as a naive wall-clock datetime."""
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip().rstrip("\x00")
    for fmt in _EXIF_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).replace(tzinfo=None)
    except ValueError:
        return None


def search_document(bundle: MetadataBundle) -> dict[str, Any]:
    document = flatten_bundle(bundle)
    captured = parse_capture_date(document.get(CAPTURE_DATE_PATH))
    if captured is None:
        document.pop(CAPTURE_DATE_PATH, None)
    else:
        document[CAPTURE_DATE_PATH] = captured
    return document


def check_field_path(path: str) -> str:
    path = path.strip()
    if not _PATH.match(path) or path.split(".", 1)[0] not in CATEGORIES:
        raise ValidationError(f"Unsupported metadata field: {path}")
    return path


@dataclass(frozen=True)
class MetadataCriteria:
    """What a metadata search asks for, beyond the image-level text and tags."""

    fields: dict[str, str] = field(default_factory=dict)
    captured_from: date | None = None
    captured_to: date | None = None

    def __post_init__(self) -> None:
        if len(self.fields) > MAX_FIELD_CONDITIONS:
            raise ValidationError(f"At most {MAX_FIELD_CONDITIONS} metadata fields can be searched at once")
        checked = {}
        for path, value in self.fields.items():
            value = str(value).strip()
            if value:
                checked[check_field_path(path)] = value
        object.__setattr__(self, "fields", checked)
        if self.captured_from and self.captured_to and self.captured_from > self.captured_to:
            raise ValidationError("date_from must not be after date_to")

    @property
    def is_empty(self) -> bool:
        return not self.fields and self.captured_from is None and self.captured_to is None

    def predicate(self) -> dict[str, Any]:
        """Predicate over a :func:`search_document`; field values match as case-insensitive substrings."""
        builder = ImageQueryBuilder()
        for path, value in self.fields.items():
            builder.add_regex_search(path, value)
        # the whole of the last day is included
        builder.add_date_range(
            CAPTURE_DATE_PATH,
            datetime.combine(self.captured_from, time.min) if self.captured_from else None,
            datetime.combine(self.captured_to, time.max) if self.captured_to else None,
        )
        return builder.build()

    def cache_token(self) -> str:
        parts = [f"{path}={value.lower()}" for path, value in sorted(self.fields.items())]
        parts.append(f"from={self.captured_from or ''}")
        parts.append(f"to={self.captured_to or ''}")
        return "&".join(parts)
