"""
Browse session: one viewer's worker list over time.

A refresh runs a full fetch-and-rank cycle (resolve location, fetch workers,
derive facets). Cycles are numbered; starting a new one cancels the previous task,
and a cycle that finishes after a newer one started is dropped instead of
committed. Sorting, filtering and paging work on the committed snapshot only.

When a fetch fails the session goes to `error`; if the directory had a saved list,
`stale_view()` ranks it (marked stale) while the error stays visible.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Protocol

from workkar.core.geo import GeoPoint
from workkar.domain.errors import FetchFailure, SessionNotReady, StaleResultDiscarded
from workkar.domain.models import CategoryFacet, RankedPage, RankFilters, SortMode, Viewer, WorkerRecord
from workkar.location.resolver import LocationResolver, ResolverState
from workkar.ranking.pipeline import DEFAULT_PAGE_SIZE, derive_categories, matches_filters, page_count, rank

logger = logging.getLogger(__name__)


class WorkerSource(Protocol):
    async def fetch_active_workers(self) -> list[WorkerRecord]: ...


class SessionStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


class BrowseSession:
    def __init__(
        self,
        directory: WorkerSource,
        resolver: LocationResolver,
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
        sort: SortMode = SortMode.DISTANCE,
    ):
        self._directory = directory
        self._resolver = resolver
        self._page_size = page_size

        self._cycle = 0
        self._task: asyncio.Task | None = None
        self._viewer = Viewer()

        self.status = SessionStatus.IDLE
        self.error: str | None = None
        self.retryable = False

        self._records: tuple[WorkerRecord, ...] = ()
        self._location: ResolverState = resolver.state
        self._categories: list[CategoryFacet] = []
        self._stale_records: tuple[WorkerRecord, ...] | None = None

        self._sort = sort
        self._filters = RankFilters()
        self._page = 1

    # ---- state accessors ----

    @property
    def sort(self) -> SortMode:
        return self._sort

    @property
    def filters(self) -> RankFilters:
        return self._filters

    @property
    def page(self) -> int:
        return self._page

    @property
    def reference(self) -> GeoPoint | None:
        return self._location.point

    @property
    def location(self) -> ResolverState:
        return self._location

    @property
    def categories(self) -> list[CategoryFacet]:
        return list(self._categories)

    @property
    def records(self) -> tuple[WorkerRecord, ...]:
        return self._records

    # ---- fetch-and-rank cycles ----

    async def refresh(self, viewer: Viewer | None = None) -> SessionStatus:
        """Resolve the viewer's location and refetch workers."""
        if viewer is not None:
            self._viewer = viewer
        return await self._start_cycle(resolve=True)

    async def retry(self) -> SessionStatus:
        return await self._start_cycle(resolve=True)

    async def update_location(self, point: GeoPoint, label: str | None = None) -> SessionStatus:
        """Manual location change: adopt it and re-annotate over a fresh fetch."""
        self._resolver.set_manual(point, label)
        return await self._start_cycle(resolve=False)

    async def _start_cycle(self, *, resolve: bool) -> SessionStatus:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._cycle += 1
        cycle = self._cycle
        self.status = SessionStatus.LOADING

        task = asyncio.ensure_future(self._run_cycle(cycle, self._viewer, resolve=resolve))
        self._task = task
        try:
            await task
        except asyncio.CancelledError:
            if cycle == self._cycle:
                raise
            logger.debug("Cycle %s cancelled by cycle %s.", cycle, self._cycle)
        return self.status

    async def _run_cycle(self, cycle: int, viewer: Viewer, *, resolve: bool) -> None:
        location = await self._resolver.resolve(viewer) if resolve else self._resolver.state
        try:
            records = await self._directory.fetch_active_workers()
        except FetchFailure as exc:
            try:
                self._ensure_current(cycle)
            except StaleResultDiscarded:
                return
            logger.warning("Worker fetch failed: %s", exc)
            self.status = SessionStatus.ERROR
            self.error = str(exc)
            self.retryable = exc.retryable
            self._stale_records = tuple(exc.snapshot) if exc.snapshot is not None else None
            return

        try:
            self._ensure_current(cycle)
        except StaleResultDiscarded as exc:
            logger.debug("Dropping stale fetch-and-rank result: %s", exc)
            return

        self._records = tuple(records)
        self._location = location
        self._categories = derive_categories(self._records)
        self._page = 1
        self.status = SessionStatus.READY
        self.error = None
        self.retryable = False
        self._stale_records = None

    def _ensure_current(self, cycle: int) -> None:
        if cycle != self._cycle:
            raise StaleResultDiscarded(cycle, self._cycle)

    # ---- view controls ----

    def set_sort(self, mode: SortMode | str) -> None:
        mode = SortMode(mode)
        if mode != self._sort:
            self._sort = mode
            self._page = 1

    def set_filters(self, filters: RankFilters) -> None:
        if filters != self._filters:
            self._filters = filters
            self._page = 1

    def search(self, query: str = "", location: str = "") -> None:
        self.set_filters(RankFilters(query=query, location=location))

    def select_category(self, category: str) -> None:
        self.set_filters(RankFilters(category=category))

    def clear_filters(self) -> None:
        self.set_filters(RankFilters())

    def total_pages(self) -> int:
        filtered = sum(1 for r in self._records if matches_filters(r, self._filters))
        return page_count(filtered, self._page_size)

    def set_page(self, page: int) -> int:
        self._page = min(max(1, int(page)), self.total_pages())
        return self._page

    def next_page(self) -> int:
        return self.set_page(self._page + 1)

    def previous_page(self) -> int:
        return self.set_page(self._page - 1)

    def view(self) -> RankedPage:
        """Rank the committed snapshot with the current sort, filters and page."""
        if self.status != SessionStatus.READY:
            raise SessionNotReady(f"No ranked data available (status={self.status.value}).")
        return self._rank(self._records, self._location)

    @property
    def has_stale_snapshot(self) -> bool:
        return self.status == SessionStatus.ERROR and self._stale_records is not None

    def stale_view(self) -> RankedPage:
        """After a failed fetch, rank the last saved worker list; the page is marked `stale`."""
        if not self.has_stale_snapshot:
            raise SessionNotReady("No saved worker list to show.")
        page = self._rank(self._stale_records or (), self._resolver.state)
        return page.model_copy(update={"stale": True})

    def _rank(self, records: tuple[WorkerRecord, ...], location_state: ResolverState) -> RankedPage:
        location = location_state.location
        return rank(
            records,
            location_state.point,
            self._sort,
            self._filters,
            page=self._page,
            page_size=self._page_size,
            location_source=location.source.value if location else None,
        )
