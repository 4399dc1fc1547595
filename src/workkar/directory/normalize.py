"""
Backend row normalization.

The directory views return loosely-typed rows (`full_name`, `service_category`,
`location_coordinates_geojson`, ...). We turn each row into a `WorkerRecord`
independently: a bad row is logged and skipped, never allowed to abort the batch.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable

from pydantic import TypeAdapter, ValidationError

from workkar.core.geo import GeoPoint, extract_point
from workkar.domain.models import WorkerRecord

logger = logging.getLogger(__name__)

GEOJSON_FIELD = "location_coordinates_geojson"
WKT_FIELD = "location_coordinates"

_DATETIME = TypeAdapter(datetime)


def _str_or_none(value: Any) -> str | None:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def _subcategories(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [s for s in (p.strip() for p in value.split(",")) if s]
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value if v is not None]
    return []


def _timestamp(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    try:
        return _DATETIME.validate_python(value)
    except ValidationError:
        logger.debug("Unparsable created_at treated as absent: %r", value)
        return None


def row_location(
    row: dict[str, Any],
    *,
    geojson_field: str = GEOJSON_FIELD,
    wkt_field: str = WKT_FIELD,
) -> GeoPoint | None:
    """Pick the row's location from the GeoJSON column, falling back to the WKT column."""
    raw = row.get(geojson_field)
    if raw is None:
        raw = row.get(wkt_field)
    return extract_point(raw)


def normalize_worker(
    row: dict[str, Any],
    *,
    geojson_field: str = GEOJSON_FIELD,
    wkt_field: str = WKT_FIELD,
) -> WorkerRecord | None:
    """Convert one raw row into a `WorkerRecord`, or None if the row is unusable."""
    if not isinstance(row, dict):
        logger.warning("Skipping non-object worker row: %r", row)
        return None

    raw_id = row.get("id")
    name = _str_or_none(row.get("full_name") or row.get("name"))
    if raw_id is None or str(raw_id).strip() == "" or not name:
        logger.warning("Skipping worker row without id/name: id=%r", raw_id)
        return None

    try:
        return WorkerRecord(
            id=str(raw_id),
            user_id=_str_or_none(row.get("user_id")),
            name=name,
            category=_str_or_none(row.get("service_category") or row.get("category")) or "",
            subcategories=_subcategories(row.get("service_subcategories")),
            coordinates=row_location(row, geojson_field=geojson_field, wkt_field=wkt_field),
            address=_str_or_none(row.get("location_address")),
            rating=float(row.get("rating") or 0),
            review_count=int(row.get("total_reviews") or 0),
            is_active=bool(row.get("is_active", True)),
            verification_status=_str_or_none(row.get("verification_status")),
            mobile=_str_or_none(row.get("mobile_number")),
            business_name=_str_or_none(row.get("business_name")),
            created_at=_timestamp(row.get("created_at")),
        )
    except (ValidationError, TypeError, ValueError) as exc:
        logger.warning("Skipping malformed worker row id=%r: %s", raw_id, exc)
        return None


def normalize_workers(rows: Iterable[dict[str, Any]], **fields: str) -> list[WorkerRecord]:
    """Normalize a batch, preserving backend order and dropping bad rows."""
    out: list[WorkerRecord] = []
    for row in rows:
        record = normalize_worker(row, **fields)
        if record is not None:
            out.append(record)
    return out
