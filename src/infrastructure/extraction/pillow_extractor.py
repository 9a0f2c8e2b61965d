"""Raw metadata extraction from image bytes.

Returns a flat mapping keyed by the names the parsers use (EXIF tag names,
IPTC dataset names, ``xmp:``-prefixed XMP properties) plus the basic
``width``/``height``/``format``/``size`` keys. Interpretation of those names
belongs to ``normalize_metadata``.
"""
from __future__ import annotations

import asyncio
import logging
import math
import re
from io import BytesIO
from typing import Any

from defusedxml import DefusedXmlException, ElementTree
from PIL import ExifTags, Image, IptcImagePlugin, UnidentifiedImageError

from src.domain.errors import ValidationError

logger = logging.getLogger(__name__)

# (record, dataset) -> IPTC-IIM dataset name
IPTC_DATASETS: dict[tuple[int, int], str] = {
    (2, 5): "ObjectName",
    (2, 25): "Keywords",
    (2, 80): "By-line",
    (2, 90): "City",
    (2, 95): "Province-State",
    (2, 101): "Country-PrimaryLocationName",
    (2, 105): "Headline",
    (2, 110): "Credit",
    (2, 115): "Source",
    (2, 116): "CopyrightNotice",
    (2, 120): "Caption-Abstract",
}

XMP_PROPERTIES = (
    "creator",
    "rights",
    "title",
    "description",
    "subject",
    "CreatorTool",
    "Rating",
    "Label",
    "CreateDate",
)

_SVG_LENGTH = re.compile(r"^\s*(\d+(?:\.\d+)?|\.\d+)")


def _float_or_none(value: Any) -> float | None:
    try:
        number = float(value)
    except (TypeError, ValueError, ZeroDivisionError):
        return None
    return number if math.isfinite(number) else None


def _dms_to_decimal(dms: Any, ref: Any) -> float | None:
    try:
        degrees, minutes, seconds = (_float_or_none(part) for part in dms)
    except (TypeError, ValueError):
        return None
    if degrees is None or minutes is None or seconds is None:
        return None
    value = degrees + minutes / 60.0 + seconds / 3600.0
    if isinstance(ref, bytes):
        ref = ref.decode("ascii", errors="ignore")
    if ref in ("S", "W"):
        value = -value
    return round(value, 6)


def _read_exif(img: Image.Image) -> dict[str, Any]:
    exif = img.getexif()
    if not exif:
        return {}
    fields: dict[str, Any] = {}
    for tag_id, value in exif.items():
        name = ExifTags.TAGS.get(tag_id)
        if name and name not in ("ExifOffset", "GPSInfo"):
            fields[name] = value
    for tag_id, value in exif.get_ifd(ExifTags.IFD.Exif).items():
        name = ExifTags.TAGS.get(tag_id)
        if name and name != "MakerNote":
            fields[name] = value

    gps = exif.get_ifd(ExifTags.IFD.GPSInfo)
    if gps:
        named = {ExifTags.GPSTAGS.get(k, k): v for k, v in gps.items()}
        if "GPSLatitude" in named:
            fields["GPSLatitude"] = _dms_to_decimal(named["GPSLatitude"], named.get("GPSLatitudeRef"))
        if "GPSLongitude" in named:
            fields["GPSLongitude"] = _dms_to_decimal(named["GPSLongitude"], named.get("GPSLongitudeRef"))
        if "GPSAltitude" in named:
            fields["GPSAltitude"] = _float_or_none(named["GPSAltitude"])
    return fields


def _iptc_text(value: Any) -> Any:
    if isinstance(value, list):
        return [_iptc_text(v) for v in value]
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


def _read_iptc(img: Image.Image) -> dict[str, Any]:
    info = IptcImagePlugin.getiptcinfo(img)
    if not info:
        return {}
    fields: dict[str, Any] = {}
    for key, value in info.items():
        name = IPTC_DATASETS.get(key)
        if name is None:
            continue
        fields[name] = _iptc_text(value)
    if isinstance(fields.get("Keywords"), str):
        fields["Keywords"] = [fields["Keywords"]]
    return fields


def _xmp_value(value: Any) -> Any:
    """Collapse rdf:Alt/Seq/Bag containers into plain text or lists."""
    if isinstance(value, dict):
        for container in ("Alt", "Seq", "Bag"):
            if container in value:
                return _xmp_value(value[container].get("li") if isinstance(value[container], dict) else None)
        if "text" in value:
            return value["text"]
        if "li" in value:
            return _xmp_value(value["li"])
        return {k: _xmp_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_xmp_value(v) for v in value]
    return value


def _read_xmp(img: Image.Image) -> dict[str, Any]:
    reader = getattr(img, "getxmp", None)
    if reader is None:
        return {}
    xmp = reader()
    descriptions = xmp.get("xmpmeta", {}).get("RDF", {}).get("Description", [])
    if isinstance(descriptions, dict):
        descriptions = [descriptions]
    fields: dict[str, Any] = {}
    for description in descriptions:
        if not isinstance(description, dict):
            continue
        for name in XMP_PROPERTIES:
            if name in description and f"xmp:{name}" not in fields:
                fields[f"xmp:{name}"] = _xmp_value(description[name])
    return fields


def _svg_length(value: str | None) -> int:
    match = _SVG_LENGTH.match(value or "")
    return int(float(match.group(1))) if match else 0


def _extract_svg(data: bytes) -> dict[str, Any]:
    try:
        root = ElementTree.fromstring(data)
    except (ElementTree.ParseError, DefusedXmlException) as exc:
        raise ValidationError(f"Unreadable SVG document: {exc}") from exc
    width = _svg_length(root.get("width"))
    height = _svg_length(root.get("height"))
    if not (width and height) and root.get("viewBox"):
        parts = root.get("viewBox").replace(",", " ").split()
        if len(parts) == 4:
            width, height = _svg_length(parts[2]), _svg_length(parts[3])
    return {"width": width, "height": height, "format": "svg", "size": len(data)}


def _looks_like_svg(data: bytes, filename: str | None) -> bool:
    if filename and filename.lower().endswith(".svg"):
        return True
    head = data[:512].lstrip().lower()
    return head.startswith(b"<svg") or (head.startswith(b"<?xml") and b"<svg" in head)


def extract_raw_metadata(data: bytes, filename: str | None = None) -> dict[str, Any]:
    """Read dimensions, format and every EXIF/IPTC/XMP field Pillow can see."""
    if not data:
        raise ValidationError("Empty file")
    if _looks_like_svg(data, filename):
        return _extract_svg(data)
    try:
        with Image.open(BytesIO(data)) as img:
            raw: dict[str, Any] = {
                "width": img.width,
                "height": img.height,
                "format": (img.format or "").lower(),
                "size": len(data),
            }
            raw.update(_read_exif(img))
            raw.update(_read_iptc(img))
            raw.update(_read_xmp(img))
    except (UnidentifiedImageError, OSError) as exc:
        raise ValidationError(f"Unsupported or corrupt image: {exc}") from exc
    logger.debug("Extracted %d raw metadata fields", len(raw), extra={"event": "metadata"})
    return raw


async def extract_raw_metadata_async(data: bytes, filename: str | None = None) -> dict[str, Any]:
    return await asyncio.to_thread(extract_raw_metadata, data, filename)
