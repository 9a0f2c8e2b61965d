from __future__ import annotations

import copy
import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from src.domain.errors import ValidationError

OPTIONAL_CATEGORIES = ("exif", "iptc", "xmp", "custom")
CATEGORIES = ("basic", *OPTIONAL_CATEGORIES)

# basic fields that survive a strip
PRESERVED_BASIC_FIELDS = frozenset({"title", "width", "height", "format", "size"})


def _check_storable(value: Any, where: str) -> None:
    """Reject values JSON and JSONB cannot hold: NaN/Infinity and NUL characters."""
    if isinstance(value, float) and not math.isfinite(value):
        raise ValidationError(f"Metadata value at {where} must be a finite number")
    if isinstance(value, str) and "\x00" in value:
        raise ValidationError(f"Metadata value at {where} contains a NUL character")
    if isinstance(value, Mapping):
        for key, item in value.items():
            _check_storable(str(key), where)
            _check_storable(item, f"{where}.{key}")
    elif isinstance(value, (list, tuple)):
        for index, item in enumerate(value):
            _check_storable(item, f"{where}[{index}]")


@dataclass(frozen=True)
class MetadataBundle:
    """Categorized metadata payload stored inside one version.

    The version log never looks inside a bundle; only the metadata service
    interprets the categories.
    """

    basic: dict[str, Any] = field(default_factory=dict)
    exif: dict[str, Any] | None = None
    iptc: dict[str, Any] | None = None
    xmp: dict[str, Any] | None = None
    custom: dict[str, Any] | None = None

    @classmethod
    def from_dict(cls, data: Any) -> MetadataBundle:
        if isinstance(data, MetadataBundle):
            return data.copy()
        if not isinstance(data, Mapping):
            raise ValidationError("Metadata must be an object")
        unknown = set(data) - set(CATEGORIES)
        if unknown:
            raise ValidationError(f"Unknown metadata categories: {', '.join(sorted(unknown))}")
        values: dict[str, dict[str, Any] | None] = {}
        for name in CATEGORIES:
            value = data.get(name)
            if value is None:
                values[name] = {} if name == "basic" else None
                continue
            if not isinstance(value, Mapping):
                raise ValidationError(f"Metadata category '{name}' must be an object")
            _check_storable(value, name)
            values[name] = copy.deepcopy(dict(value))
        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"basic": copy.deepcopy(self.basic)}
        for name in OPTIONAL_CATEGORIES:
            value = getattr(self, name)
            if value is not None:
                out[name] = copy.deepcopy(value)
        return out

    def copy(self) -> MetadataBundle:
        return copy.deepcopy(self)

    def stripped(self) -> MetadataBundle:
        basic = {k: copy.deepcopy(v) for k, v in self.basic.items() if k in PRESERVED_BASIC_FIELDS}
        return MetadataBundle(basic=basic, exif={}, iptc={}, xmp={}, custom={})
