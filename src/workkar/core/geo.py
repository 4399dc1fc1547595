from __future__ import annotations

import json
import logging
import math
import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from workkar.domain.errors import InvalidCoordinatesError

"""
Geospatial helpers.

We keep a tiny geometry layer here so the ranking pipeline and the location
resolver can do distance calculations without pulling in heavier GIS dependencies.

Storage hands us points in two shapes, both longitude-first:
- GeoJSON `{"type": "Point", "coordinates": [lon, lat]}`
- WKT `POINT(lon lat)`

`extract_point` is the only place that reads either shape; everything past it
works with `GeoPoint` and its named fields.
"""

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0

_NUMBER = r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)"
_WKT_POINT_RE = re.compile(
    rf"^\s*POINT\s*\(\s*(?P<lon>{_NUMBER})\s+(?P<lat>{_NUMBER})\s*\)\s*$",
    re.IGNORECASE,
)


class GeoPoint(BaseModel):
    """A latitude/longitude pair in decimal degrees."""

    model_config = ConfigDict(frozen=True)

    latitude: float = Field(..., ge=-90, le=90, allow_inf_nan=False)
    longitude: float = Field(..., ge=-180, le=180, allow_inf_nan=False)


def _require_finite(point: GeoPoint) -> tuple[float, float]:
    try:
        lat = float(point.latitude)
        lon = float(point.longitude)
    except (AttributeError, TypeError, ValueError) as exc:
        raise InvalidCoordinatesError(f"not a coordinate: {point!r}") from exc
    if not (math.isfinite(lat) and math.isfinite(lon)):
        raise InvalidCoordinatesError(f"non-finite coordinate: lat={lat} lon={lon}")
    return lat, lon


def distance_km(a: GeoPoint, b: GeoPoint) -> float:
    """Great-circle (Haversine) distance in kilometres.

    Raises:
        InvalidCoordinatesError: if either point has a non-finite latitude or longitude.
    """
    lat1, lon1 = _require_finite(a)
    lat2, lon2 = _require_finite(b)

    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    h = math.sin(dlat / 2) ** 2 + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(dlon / 2) ** 2
    h = min(1.0, max(0.0, h))
    return 2 * EARTH_RADIUS_KM * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def _as_number(value: Any) -> float | None:
    # bool is an int subclass; `[true, false]` is not a coordinate.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    f = float(value)
    return f if math.isfinite(f) else None


def _point_or_none(lat: float | None, lon: float | None) -> GeoPoint | None:
    if lat is None or lon is None:
        return None
    if not (-90 <= lat <= 90 and -180 <= lon <= 180):
        return None
    return GeoPoint(latitude=lat, longitude=lon)


def point_from_geojson(value: Any) -> GeoPoint | None:
    """Parse a GeoJSON point mapping (`coordinates` is `[lon, lat]`)."""
    if not isinstance(value, dict):
        return None
    coords = value.get("coordinates")
    if not isinstance(coords, (list, tuple)) or len(coords) < 2:
        return None
    return _point_or_none(_as_number(coords[1]), _as_number(coords[0]))


def parse_wkt_point(text: str) -> GeoPoint | None:
    """Parse `POINT(lon lat)`; anything else yields None."""
    m = _WKT_POINT_RE.match(text)
    if not m:
        return None
    return _point_or_none(_as_number(float(m.group("lat"))), _as_number(float(m.group("lon"))))


def extract_point(raw: Any) -> GeoPoint | None:
    """Normalize a stored location into a `GeoPoint`, or None when absent/malformed.

    Never raises and never substitutes a default point.
    """
    if raw is None:
        return None
    if isinstance(raw, GeoPoint):
        return raw

    point: GeoPoint | None = None
    if isinstance(raw, dict):
        point = point_from_geojson(raw)
    elif isinstance(raw, str):
        text = raw.strip()
        if not text:
            return None
        if text.startswith("{"):
            try:
                point = point_from_geojson(json.loads(text))
            except ValueError:
                point = None
        else:
            point = parse_wkt_point(text)

    if point is None:
        logger.warning("Malformed coordinates treated as absent: %r", raw)
    return point


def format_coordinates(point: GeoPoint, precision: int = 4) -> str:
    """Render `lat, lon` with a fixed number of decimals."""
    return f"{point.latitude:.{precision}f}, {point.longitude:.{precision}f}"


def coordinate_label(prefix: str, point: GeoPoint, precision: int = 4) -> str:
    """E.g. `Current Location (17.3850, 78.4867)`."""
    return f"{prefix} ({format_coordinates(point, precision)})"
