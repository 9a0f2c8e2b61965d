"""Mapping of provider-specific metadata fields into the bundle taxonomy.

The extraction collaborator reports fields under the names its parser uses
(EXIF tag names, IPTC dataset names, ``xmp:``-prefixed XMP properties). The
table below is fixed; any field it does not know lands in ``custom`` so the
mapping is total.
"""
from __future__ import annotations

import math
from collections.abc import Mapping
from datetime import datetime
from fractions import Fraction
from typing import Any

from src.domain.entities.metadata_bundle import MetadataBundle

FIELD_TABLE: dict[str, tuple[str, str]] = {
    # basic
    "width": ("basic", "width"),
    "height": ("basic", "height"),
    "format": ("basic", "format"),
    "size": ("basic", "size"),
    "title": ("basic", "title"),
    "description": ("basic", "description"),
    "ImageDescription": ("basic", "description"),
    "Orientation": ("basic", "orientation"),
    # exif
    "Make": ("exif", "make"),
    "Model": ("exif", "model"),
    "LensModel": ("exif", "lens"),
    "Lens": ("exif", "lens"),
    "FocalLength": ("exif", "focalLength"),
    "FNumber": ("exif", "aperture"),
    "ExposureTime": ("exif", "exposureTime"),
    "ISOSpeedRatings": ("exif", "iso"),
    "ISO": ("exif", "iso"),
    "PhotographicSensitivity": ("exif", "iso"),
    "DateTimeOriginal": ("exif", "captureDate"),
    "DateTime": ("exif", "modifyDate"),
    "Software": ("exif", "software"),
    "Flash": ("exif", "flash"),
    "WhiteBalance": ("exif", "whiteBalance"),
    "Artist": ("exif", "artist"),
    "Copyright": ("exif", "copyright"),
    "GPSLatitude": ("exif", "gps.latitude"),
    "GPSLongitude": ("exif", "gps.longitude"),
    "GPSAltitude": ("exif", "gps.altitude"),
    # iptc
    "ObjectName": ("iptc", "title"),
    "Headline": ("iptc", "headline"),
    "Caption-Abstract": ("iptc", "caption"),
    "Keywords": ("iptc", "keywords"),
    "By-line": ("iptc", "byline"),
    "Credit": ("iptc", "credit"),
    "Source": ("iptc", "source"),
    "CopyrightNotice": ("iptc", "copyright"),
    "City": ("iptc", "city"),
    "Province-State": ("iptc", "state"),
    "Country-PrimaryLocationName": ("iptc", "country"),
    # xmp
    "xmp:creator": ("xmp", "creator"),
    "xmp:rights": ("xmp", "rights"),
    "xmp:title": ("xmp", "title"),
    "xmp:description": ("xmp", "description"),
    "xmp:subject": ("xmp", "subject"),
    "xmp:CreatorTool": ("xmp", "creatorTool"),
    "xmp:Rating": ("xmp", "rating"),
    "xmp:Label": ("xmp", "label"),
    "xmp:CreateDate": ("xmp", "createDate"),
}


def _number(value: Any) -> float | None:
    """Finite float value of ``value``, or None. 0/0 rationals read as NaN."""
    try:
        number = float(value)
    except (TypeError, ValueError, ZeroDivisionError):
        return None
    return number if math.isfinite(number) else None


def _non_finite(value: Any) -> bool:
    try:
        return not math.isfinite(float(value))
    except (TypeError, ValueError, ZeroDivisionError):
        return False


def _trim(number: float) -> str:
    return f"{number:g}"


def _format_exposure(value: Any) -> Any:
    seconds = _number(value)
    if seconds is None:
        return _plain(value)
    if 0 < seconds < 1:
        return f"1/{round(1 / seconds)}"
    return _trim(seconds)


def _format_field(key: str, value: Any) -> Any:
    if key == "focalLength":
        number = _number(value)
        return f"{_trim(number)}mm" if number is not None else _plain(value)
    if key == "aperture":
        number = _number(value)
        return f"f/{_trim(number)}" if number is not None else _plain(value)
    if key == "exposureTime":
        return _format_exposure(value)
    return _plain(value)


def _plain(value: Any) -> Any:
    """Coerce parser values into JSON-friendly types.

    JSONB accepts neither NaN/Infinity nor NUL characters, so both are dropped.
    """
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace").replace("\x00", "").strip()
    if isinstance(value, str):
        return value.replace("\x00", "")
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Fraction):
        return _number(value)
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if isinstance(value, Mapping):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (int, bool)) or value is None:
        return value
    if _non_finite(value):  # 0/0 IFDRational
        return None
    number = _number(value)  # IFDRational and friends
    return number if number is not None else str(value)


def normalize_metadata(raw: Mapping[str, Any]) -> MetadataBundle:
    categories: dict[str, dict[str, Any]] = {
        "basic": {},
        "exif": {},
        "iptc": {},
        "xmp": {},
        "custom": {},
    }
    for field_name, value in raw.items():
        if value is None:
            continue
        target = FIELD_TABLE.get(field_name)
        if target is None:
            plain = _plain(value)
            if plain is not None:
                categories["custom"][str(field_name)] = plain
            continue
        category, key = target
        if "." in key:
            group, sub_key = key.split(".", 1)
            plain = _plain(value)
            if plain is not None:
                categories[category].setdefault(group, {})[sub_key] = plain
            continue
        formatted = _format_field(key, value)
        if formatted is not None:
            categories[category].setdefault(key, formatted)

    exif = categories["exif"]
    camera = " ".join(str(exif[k]) for k in ("make", "model") if exif.get(k))
    if camera:
        exif["camera"] = camera

    return MetadataBundle(
        basic=categories["basic"],
        exif=exif or None,
        iptc=categories["iptc"] or None,
        xmp=categories["xmp"] or None,
        custom=categories["custom"] or None,
    )
