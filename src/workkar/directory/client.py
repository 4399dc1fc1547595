"""
Worker directory client (Supabase REST / PostgREST).

This module is responsible only for:
- fetching active worker rows (newest first) from the workers view,
- looking up a signed-in viewer's stored location (worker row first, then profile row),
- normalizing rows into `WorkerRecord` / `GeoPoint`,
- keeping the last good worker list on disk so an offline viewer still has something to show.

Anything that keeps us from getting a usable payload becomes `FetchFailure`, so the
UI layer can offer a retry instead of ranking an empty or partial list. The saved
list rides along on that failure as `snapshot`; it never replaces the error.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from workkar.config.settings import Settings
from workkar.core.cache import FileCache
from workkar.core.geo import GeoPoint
from workkar.core.http import get_json
from workkar.directory.normalize import normalize_workers, row_location
from workkar.domain.errors import FetchFailure
from workkar.domain.models import WorkerRecord

logger = logging.getLogger(__name__)

SNAPSHOT_NAMESPACE = "directory"
SNAPSHOT_KEY = "active_workers"


class WorkerDirectory:
    """Read-only access to the worker directory and viewer locations."""

    def __init__(self, settings: Settings, cache: FileCache | None = None):
        self._settings = settings
        self._cache = cache

    def _headers(self) -> dict[str, str]:
        key = self._settings.backend.api_key
        if not key:
            return {}
        return {"apikey": key, "Authorization": f"Bearer {key}"}

    def _view_url(self, view: str) -> str:
        return f"{self._settings.backend.base_url.rstrip('/')}/rest/v1/{view}"

    async def _get_rows(self, view: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        url = self._view_url(view)
        try:
            payload = await get_json(
                url,
                params=params,
                headers=self._headers(),
                timeout_seconds=self._settings.app.http_timeout_seconds,
            )
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            logger.warning("Directory request to %s failed with status=%s", view, status)
            raise FetchFailure(f"Backend returned HTTP {status} for {view}.", retryable=status >= 500 or status == 429) from exc
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.warning("Directory request to %s failed: %s", view, exc)
            raise FetchFailure(f"Backend unreachable while reading {view}.") from exc
        except ValueError as exc:
            raise FetchFailure(f"Backend returned invalid JSON for {view}.") from exc

        if not isinstance(payload, list):
            raise FetchFailure(f"Backend returned an unexpected payload for {view}.")
        return payload

    async def fetch_active_workers(self) -> list[WorkerRecord]:
        """Return active workers, newest first; malformed rows are dropped.

        Raises:
            FetchFailure: with `snapshot` set to the last saved list, if any.
        """
        backend = self._settings.backend
        try:
            rows = await self._get_rows(
                backend.workers_view,
                {"select": "*", "is_active": "eq.true", "order": "created_at.desc"},
            )
        except FetchFailure as exc:
            exc.snapshot = self.last_snapshot()
            raise
        workers = normalize_workers(
            rows, geojson_field=backend.location_field, wkt_field=backend.wkt_location_field
        )
        if len(workers) != len(rows):
            logger.info("Dropped %s of %s worker rows during normalization.", len(rows) - len(workers), len(rows))
        self._save_snapshot(workers)
        return workers

    def _save_snapshot(self, workers: list[WorkerRecord]) -> None:
        if self._cache is None:
            return
        try:
            self._cache.set(
                SNAPSHOT_NAMESPACE,
                SNAPSHOT_KEY,
                [w.model_dump(mode="json") for w in workers],
                ttl_seconds=self._settings.backend.snapshot_ttl_seconds,
            )
        except OSError as exc:
            logger.warning("Could not save worker snapshot: %s", exc)

    def last_snapshot(self) -> list[WorkerRecord] | None:
        """The last successfully fetched worker list, or None if nothing usable is saved."""
        if self._cache is None:
            return None
        raw = self._cache.get(SNAPSHOT_NAMESPACE, SNAPSHOT_KEY)
        if not isinstance(raw, list):
            return None
        workers: list[WorkerRecord] = []
        for item in raw:
            try:
                workers.append(WorkerRecord.model_validate(item))
            except ValidationError:
                logger.warning("Skipping corrupt worker in saved snapshot.")
        return workers

    async def _first_row_location(self, view: str, column: str, user_id: str) -> GeoPoint | None:
        backend = self._settings.backend
        rows = await self._get_rows(view, {"select": "*", column: f"eq.{user_id}", "limit": "1"})
        if not rows or not isinstance(rows[0], dict):
            return None
        return row_location(rows[0], geojson_field=backend.location_field, wkt_field=backend.wkt_location_field)

    async def fetch_viewer_location(self, user_id: str) -> GeoPoint | None:
        """Return the viewer's stored location: their worker listing first, then their profile."""
        backend = self._settings.backend
        point = await self._first_row_location(backend.workers_view, "user_id", user_id)
        if point is not None:
            return point
        return await self._first_row_location(backend.profiles_view, "id", user_id)
