"""
Reverse geocoding (Nominatim).

Used when a viewer picks a point on the map or taps "use current location": we try
to turn the point into a readable address and a city name. This is best-effort:
any failure falls back to the formatted coordinates and an empty city.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from workkar.config.settings import Settings
from workkar.core.cache import FileCache
from workkar.core.geo import GeoPoint, format_coordinates
from workkar.core.http import get_json

logger = logging.getLogger(__name__)

_CITY_KEYS = ("city", "town", "village", "hamlet")


@dataclass(frozen=True)
class PlaceLabel:
    address: str
    city: str = ""
    resolved: bool = False


def _city_from(address: Any) -> str:
    if not isinstance(address, dict):
        return ""
    for key in _CITY_KEYS:
        value = address.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


class ReverseGeocoder:
    """Nominatim reverse lookups with an on-disk cache."""

    def __init__(self, settings: Settings, cache: FileCache | None = None):
        self._settings = settings
        self._cache = cache

    def fallback(self, point: GeoPoint) -> PlaceLabel:
        return PlaceLabel(address=format_coordinates(point, self._settings.geocoding.coordinate_precision))

    def _cached(self, cache_key: str) -> PlaceLabel | None:
        if self._cache is None:
            return None
        try:
            cached = self._cache.get("geocode", cache_key, ttl_seconds=self._settings.geocoding.cache_ttl_seconds)
        except OSError as exc:
            logger.warning("Geocode cache read failed: %s", exc)
            return None
        if isinstance(cached, dict) and cached.get("address"):
            return PlaceLabel(address=str(cached["address"]), city=str(cached.get("city") or ""), resolved=True)
        return None

    def _remember(self, cache_key: str, label: PlaceLabel) -> None:
        if self._cache is None:
            return
        try:
            self._cache.set(
                "geocode",
                cache_key,
                {"address": label.address, "city": label.city},
                ttl_seconds=self._settings.geocoding.cache_ttl_seconds,
            )
        except OSError as exc:
            logger.warning("Geocode cache write failed: %s", exc)

    async def lookup(self, point: GeoPoint) -> PlaceLabel:
        """Return an address + city for `point`; never raises."""
        cfg = self._settings.geocoding
        cache_key = f"nominatim:{point.latitude:.5f}:{point.longitude:.5f}"
        cached = self._cached(cache_key)
        if cached is not None:
            return cached

        try:
            payload = await get_json(
                cfg.reverse_url,
                params={"format": "json", "lat": point.latitude, "lon": point.longitude},
                headers={"User-Agent": cfg.user_agent},
                timeout_seconds=self._settings.app.http_timeout_seconds,
            )
        except (httpx.HTTPError, httpx.InvalidURL, ValueError, OSError) as exc:
            logger.warning("Reverse geocoding failed for %s: %s", format_coordinates(point), exc)
            return self.fallback(point)

        if not isinstance(payload, dict):
            return self.fallback(point)
        display_name = payload.get("display_name")
        if not isinstance(display_name, str) or not display_name.strip():
            return self.fallback(point)

        label = PlaceLabel(address=display_name.strip(), city=_city_from(payload.get("address")), resolved=True)
        self._remember(cache_key, label)
        return label

    async def reverse_geocode(self, latitude: float, longitude: float) -> str:
        """Display address for a coordinate pair (coordinates string on failure)."""
        label = await self.lookup(GeoPoint(latitude=latitude, longitude=longitude))
        return label.address
