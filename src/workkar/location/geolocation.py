"""
Device geolocation capability.

`GeolocationProvider` mirrors the browser's one-shot `getCurrentPosition`: it either
returns a position or raises a `GeolocationError` subclass. `request_position`
bounds the wait so a prompt nobody answers cannot stall location resolution.
"""

from __future__ import annotations

import asyncio
from typing import Protocol

from workkar.core.geo import GeoPoint
from workkar.domain.errors import GeolocationDenied, GeolocationTimeout, GeolocationUnavailable


class GeolocationProvider(Protocol):
    async def current_position(self) -> GeoPoint: ...


class ReportedGeolocation:
    """Position (or denial) reported by the client, e.g. a browser calling the API."""

    def __init__(self, point: GeoPoint | None = None, *, denied: bool = False):
        self._point = point
        self._denied = denied

    async def current_position(self) -> GeoPoint:
        if self._denied:
            raise GeolocationDenied("Location permission denied.")
        if self._point is None:
            raise GeolocationUnavailable("No device position was reported.")
        return self._point


class NoGeolocation:
    """For environments without any positioning capability (CLI without --lat/--lon)."""

    async def current_position(self) -> GeoPoint:
        raise GeolocationUnavailable("Geolocation is not supported here.")


async def request_position(provider: GeolocationProvider, *, timeout_seconds: float) -> GeoPoint:
    """Ask `provider` for a position, giving up after `timeout_seconds`."""
    try:
        return await asyncio.wait_for(provider.current_position(), timeout=timeout_seconds)
    except asyncio.TimeoutError as exc:
        raise GeolocationTimeout(f"No position within {timeout_seconds:g}s.") from exc
