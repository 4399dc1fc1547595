"""
API routes.

Endpoints:
- GET  `/api/workers`: ranked, filtered, paginated worker list for the current viewer.
- GET  `/api/categories`: category facets of the active worker set.
- GET  `/api/location/reverse`: best-effort address for a coordinate pair.
- POST `/api/location/pending`: store a one-shot location (e.g. right after sign-up).
- GET  `/api/settings`: public settings for the web UI (backend key redacted).

The browser reports its own geolocation outcome (`lat`/`lon`, or `geolocation=denied`);
the viewer id comes from the `X-Viewer-Id` header set by the auth layer. Anonymous
clients identify their own pending location with `X-Pending-Token`.

When the backend is down, `/api/workers` answers 503 and, if a worker list was saved
earlier, includes it ranked under `detail.stale`.
"""

from __future__ import annotations

import secrets
from functools import lru_cache
from typing import Any, Literal

from fastapi import APIRouter, Header, HTTPException, Query

from workkar.config.settings import get_settings
from workkar.core.cache import FileCache
from workkar.core.geo import GeoPoint
from workkar.directory.client import WorkerDirectory
from workkar.domain.errors import FetchFailure
from workkar.domain.models import RankFilters, SortMode, Viewer, WorkerRecord
from workkar.location.cache import LocationCache, build_file_cache, build_location_cache, pending_key
from workkar.location.geocoding import ReverseGeocoder
from workkar.location.geolocation import ReportedGeolocation
from workkar.location.resolver import LocationResolver, ResolverState, default_strategies
from workkar.ranking.pipeline import derive_categories, rank

router = APIRouter()


@lru_cache
def _cache() -> FileCache:
    return build_file_cache(get_settings())


@lru_cache
def _directory() -> WorkerDirectory:
    return WorkerDirectory(get_settings(), _cache())


@lru_cache
def _location_cache() -> LocationCache:
    return build_location_cache(get_settings(), _cache())


@lru_cache
def _geocoder() -> ReverseGeocoder:
    return ReverseGeocoder(get_settings(), _cache())


def _fetch_failed(exc: FetchFailure, stale: dict[str, Any] | None = None) -> HTTPException:
    detail: dict[str, Any] = {"code": "FETCH_FAILED", "message": str(exc), "retryable": exc.retryable}
    if stale is not None:
        detail["stale"] = stale
    return HTTPException(status_code=503, detail=detail)


def _reported_point(lat: float | None, lon: float | None) -> GeoPoint | None:
    if lat is None and lon is None:
        return None
    if lat is None or lon is None:
        raise ValueError("lat and lon must be provided together")
    return GeoPoint(latitude=lat, longitude=lon)


async def _resolve(viewer: Viewer, point: GeoPoint | None, denied: bool) -> ResolverState:
    resolver = LocationResolver(
        default_strategies(
            get_settings(),
            directory=_directory(),
            geolocation=ReportedGeolocation(point, denied=denied),
            cache=_location_cache(),
        )
    )
    return await resolver.resolve(viewer)


@router.get("/api/workers")
async def get_workers(
    sort: SortMode | None = None,
    q: str | None = None,
    location: str | None = None,
    category: str | None = None,
    page: int = Query(1, ge=1),
    lat: float | None = Query(None, ge=-90, le=90),
    lon: float | None = Query(None, ge=-180, le=180),
    geolocation: Literal["granted", "denied"] | None = None,
    x_viewer_id: str | None = Header(default=None),
    x_pending_token: str | None = Header(default=None),
) -> dict[str, Any]:
    """Resolve the viewer's reference location, then rank the active workers."""
    settings = get_settings()
    try:
        point = _reported_point(lat, lon)
    except ValueError as e:
        raise HTTPException(status_code=400, detail={"code": "VALIDATION_ERROR", "message": str(e)}) from e

    viewer = Viewer(user_id=x_viewer_id or None, pending_token=x_pending_token or None)
    state = await _resolve(viewer, point, geolocation == "denied")

    def ranked(records: list[WorkerRecord]) -> dict[str, Any]:
        result = rank(
            records,
            state.point,
            sort or SortMode(settings.ranking.default_sort),
            RankFilters(query=q, location=location, category=category),
            page=page,
            page_size=settings.ranking.page_size,
            location_source=state.location.source.value if state.location else None,
        )
        return result.model_dump(mode="json")

    try:
        records = await _directory().fetch_active_workers()
    except FetchFailure as e:
        stale = None
        if e.snapshot is not None:
            stale = {**ranked(e.snapshot), "stale": True}
        raise _fetch_failed(e, stale) from e

    payload = ranked(records)
    payload["location"] = {
        "status": state.status.value,
        "available": state.point is not None,
        "label": state.location.display_label if state.location else None,
        "geolocation_error": state.geolocation_error,
    }
    return payload


@router.get("/api/categories")
async def get_categories() -> dict[str, Any]:
    """Return category facets over the unfiltered active worker set."""
    try:
        records = await _directory().fetch_active_workers()
    except FetchFailure as e:
        raise _fetch_failed(e) from e
    return {"categories": [f.model_dump(mode="json") for f in derive_categories(records)]}


@router.get("/api/location/reverse")
async def get_reverse_geocode(
    lat: float = Query(..., ge=-90, le=90),
    lon: float = Query(..., ge=-180, le=180),
) -> dict[str, Any]:
    label = await _geocoder().lookup(GeoPoint(latitude=lat, longitude=lon))
    return {"address": label.address, "city": label.city, "resolved": label.resolved}


@router.post("/api/location/pending", status_code=201)
def post_pending_location(
    point: GeoPoint,
    x_viewer_id: str | None = Header(default=None),
    x_pending_token: str | None = Header(default=None),
) -> dict[str, Any]:
    """Remember a location for the next resolution only.

    Anonymous callers get a `pending_token` back and must send it as `X-Pending-Token`
    on their next `/api/workers` call; without it nobody else can read the value.
    """
    settings = get_settings()
    token = None
    if not x_viewer_id:
        token = x_pending_token or secrets.token_urlsafe(16)
    key = pending_key(x_viewer_id or None, token)
    _location_cache().set(key, point, settings.location_cache.pending_ttl_seconds)
    return {"stored": True, "point": point.model_dump(mode="json"), "pending_token": token}


@router.get("/api/settings")
def get_public_settings() -> dict[str, Any]:
    """Return safe-to-expose settings for UI defaults (backend key removed)."""
    data = get_settings().model_dump(mode="json")
    data.get("backend", {}).pop("api_key", None)
    return {
        "app": {"name": data.get("app", {}).get("name", "WorkKar")},
        "ranking": data.get("ranking", {}),
        "geolocation": data.get("geolocation", {}),
        "backend": {"base_url": data.get("backend", {}).get("base_url")},
    }
