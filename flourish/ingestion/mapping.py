"""
Payload Mapping Module
======================

Turns upstream catalog payloads (Trefle and Perenual dialects) into
``CatalogEntry`` and ``CatalogDetails``. Every key is optional: a missing
key becomes None, and nested objects or arrays are kept as compact JSON
strings so new upstream fields never break ingestion.
"""

from __future__ import annotations

import json
from typing import Any

from pydantic import ValidationError

from flourish.core.results import Parsed, Skipped
from flourish.core.schema import CatalogDetails, CatalogEntry

# Detail keys copied as plain text
TEXT_FIELDS = [
    "common_name",
    "type",
    "cycle",
    "watering",
    "care_level",
    "maintenance",
    "growth_rate",
    "care_guides",
    "flowering_season",
    "harvest_season",
    "description",
    "species_epithet",
]

# Detail keys holding arrays/objects, kept as JSON blobs
BLOB_FIELDS = [
    "sunlight",
    "soil",
    "pruning_month",
    "pruning_count",
    "propagation",
    "dimensions",
    "origin",
    "attracts",
    "pest_susceptibility",
    "plant_anatomy",
]

BOOL_FIELDS = [
    "indoor",
    "tropical",
    "flowers",
    "fruits",
    "edible_fruit",
    "edible_leaf",
    "cuisine",
    "medicinal",
    "poisonous_to_humans",
    "poisonous_to_pets",
    "drought_tolerant",
    "salt_tolerant",
    "thorny",
    "invasive",
    "cones",
    "seeds",
    "leaf",
]

# default_image sub-key -> CatalogDetails field
IMAGE_FIELDS = {
    "license_name": "image_license_name",
    "license_url": "image_license_url",
    "original_url": "image_original_url",
    "regular_url": "image_regular_url",
    "medium_url": "image_medium_url",
    "small_url": "image_small_url",
    "thumbnail": "image_thumbnail_url",
}

TRUE_STRINGS = {"true", "yes", "1"}
FALSE_STRINGS = {"false", "no", "0"}


def to_blob(value: Any) -> str:
    """Serialize a nested value as compact JSON."""
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _as_text(value: Any) -> str | None:
    """Plain text for scalars, a JSON blob for anything nested."""
    if value is None:
        return None
    if isinstance(value, (dict, list)):
        return to_blob(value)
    text = str(value).strip()
    return text or None


def _as_blob(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, (dict, list)):
        return to_blob(value)
    return _as_text(value)


def _as_bool(value: Any) -> bool | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    text = str(value).strip().lower()
    if text in TRUE_STRINGS:
        return True
    if text in FALSE_STRINGS:
        return False
    return None


def _as_str_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    if isinstance(value, list):
        names = []
        for item in value:
            if isinstance(item, dict):
                item = item.get("name")
            if item is not None and str(item).strip():
                names.append(str(item).strip())
        return names
    return []


def _name_of(value: Any) -> str | None:
    """Taxon name from either a plain string or a ``{"name": ...}`` object."""
    if isinstance(value, dict):
        return _as_text(value.get("name"))
    return _as_text(value)


def _image_url(item: dict[str, Any]) -> str | None:
    if item.get("image_url"):
        return _as_text(item["image_url"])
    image = item.get("default_image")
    if isinstance(image, dict):
        for key in ("regular_url", "original_url", "medium_url", "small_url", "thumbnail"):
            if image.get(key):
                return _as_text(image[key])
    return None


def map_list_item(item: dict[str, Any]) -> Parsed[CatalogEntry] | Skipped:
    """
    Map one item of a list response to a catalog entry.

    Scientific names given as a list are joined with ", "; other names
    come from ``other_name`` (Perenual) or ``common_names`` (Trefle).
    """
    entry_id = _as_int(item.get("id"))
    if entry_id is None or entry_id <= 0:
        return Skipped(f"missing or invalid id: {item.get('id')!r}")

    scientific = item.get("scientific_name")
    if isinstance(scientific, list):
        scientific_name = ", ".join(_as_str_list(scientific))
    else:
        scientific_name = _as_text(scientific) or ""

    other_names = _as_str_list(item.get("other_name"))
    if not other_names:
        other_names = _as_str_list(item.get("common_names"))

    try:
        entry = CatalogEntry(
            id=entry_id,
            common_name=_as_text(item.get("common_name")) or "",
            scientific_name=scientific_name,
            other_names=other_names,
            family=_name_of(item.get("family")),
            genus=_name_of(item.get("genus")),
            image_url=_image_url(item),
            synonyms=set(_as_str_list(item.get("synonyms"))),
        )
    except ValidationError as e:
        return Skipped(f"invalid entry {entry_id}: {e.error_count()} validation errors")
    return Parsed(entry)


def map_details(payload: dict[str, Any]) -> Parsed[CatalogDetails] | Skipped:
    """
    Map a decoded detail payload to catalog details.

    Trefle wraps the species in ``data``; that wrapper is removed first.
    """
    if "id" not in payload and isinstance(payload.get("data"), dict):
        payload = payload["data"]

    details_id = _as_int(payload.get("id"))
    if details_id is None or details_id <= 0:
        return Skipped(f"missing or invalid id: {payload.get('id')!r}")

    values: dict[str, Any] = {"id": details_id}
    for key in TEXT_FIELDS:
        values[key] = _as_text(payload.get(key))
    for key in BLOB_FIELDS:
        values[key] = _as_blob(payload.get(key))
    for key in BOOL_FIELDS:
        values[key] = _as_bool(payload.get(key))

    scientific = payload.get("scientific_name")
    if isinstance(scientific, list):
        values["scientific_name"] = ", ".join(_as_str_list(scientific)) or None
    else:
        values["scientific_name"] = _as_text(scientific)
    other_names = _as_str_list(payload.get("other_name"))
    values["other_names"] = ", ".join(other_names) or None
    values["family"] = _name_of(payload.get("family"))
    values["genus"] = _name_of(payload.get("genus"))

    image = payload.get("default_image")
    if isinstance(image, dict):
        for key, field_name in IMAGE_FIELDS.items():
            values[field_name] = _as_text(image.get(key))
    elif payload.get("image_url"):
        values["image_original_url"] = _as_text(payload.get("image_url"))

    hardiness = payload.get("hardiness")
    if isinstance(hardiness, dict):
        values["hardiness_min"] = _as_text(hardiness.get("min"))
        values["hardiness_max"] = _as_text(hardiness.get("max"))
    location = payload.get("hardiness_location")
    if isinstance(location, dict):
        values["hardiness_location_url"] = _as_text(location.get("full_url"))

    try:
        return Parsed(CatalogDetails(**values))
    except ValidationError as e:
        return Skipped(f"invalid details {details_id}: {e.error_count()} validation errors")


def parse_details_response(text: str | None) -> Parsed[CatalogDetails] | Skipped:
    """
    Decode and map a raw detail response body.

    Anything that is not a JSON object (empty body, HTML error page,
    truncated JSON) is skipped rather than raised.
    """
    if text is None or not text.strip():
        return Skipped("empty response")
    if not text.lstrip().startswith("{"):
        return Skipped("response is not a JSON object")
    try:
        payload = json.loads(text)
    except ValueError as e:
        return Skipped(f"malformed JSON: {e}")
    if not isinstance(payload, dict):
        return Skipped("response is not a JSON object")
    return map_details(payload)
