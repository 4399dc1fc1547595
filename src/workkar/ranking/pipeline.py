"""
Ranking & filtering pipeline.

rank(records, reference, sort, filters):
  1. annotate each worker with its distance from the reference (or none)
  2. apply text / address / category filters (case-insensitive)
  3. stable sort by distance (unknown last) or by rating (ties keep input order)
  4. slice one fixed-size page

Category facets are derived from the unfiltered records so they stay put while
the viewer narrows the list.
"""

from __future__ import annotations

import logging
import math
from typing import Iterable, Sequence, TypeVar

from workkar.core.geo import GeoPoint, distance_km
from workkar.domain.errors import InvalidCoordinatesError
from workkar.domain.models import (
    AnnotatedWorker,
    CategoryFacet,
    RankedPage,
    RankFilters,
    SortMode,
    WorkerRecord,
)

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 6

T = TypeVar("T")


def annotate(records: Iterable[WorkerRecord], reference: GeoPoint | None) -> list[AnnotatedWorker]:
    out: list[AnnotatedWorker] = []
    for record in records:
        distance: float | None = None
        if reference is not None and record.coordinates is not None:
            try:
                distance = distance_km(reference, record.coordinates)
            except InvalidCoordinatesError as exc:
                logger.warning("No distance for worker %s: %s", record.id, exc)
        out.append(AnnotatedWorker(worker=record, distance_km=distance))
    return out


def _norm(value: str | None) -> str:
    return (value or "").strip().lower()


def matches_filters(worker: WorkerRecord, filters: RankFilters) -> bool:
    query = _norm(filters.query)
    if query:
        haystack = [worker.name, worker.category, *worker.subcategories]
        if not any(query in _norm(h) for h in haystack):
            return False

    location = _norm(filters.location)
    if location and location not in _norm(worker.address):
        return False

    category = _norm(filters.category)
    if category and _norm(worker.category) != category:
        return False

    return True


def apply_filters(items: Sequence[AnnotatedWorker], filters: RankFilters | None) -> list[AnnotatedWorker]:
    if filters is None or not filters.active:
        return list(items)
    return [a for a in items if matches_filters(a.worker, filters)]


def _distance_key(item: AnnotatedWorker) -> float:
    return item.distance_km if item.distance_km is not None else math.inf


def sort_workers(items: Sequence[AnnotatedWorker], mode: SortMode) -> list[AnnotatedWorker]:
    """Stable sort; `sorted` keeps equal keys in their input order."""
    if mode == SortMode.RATING:
        return sorted(items, key=lambda a: -a.worker.rating)
    return sorted(items, key=_distance_key)


def _category_label(category: str) -> str:
    return category[:1].upper() + category[1:].lower()


def derive_categories(records: Iterable[WorkerRecord]) -> list[CategoryFacet]:
    """Case-insensitive dedup of categories; the first casing seen picks the label."""
    facets: dict[str, CategoryFacet] = {}
    for record in records:
        raw = (record.category or "").strip()
        if not raw:
            continue
        key = raw.lower()
        facet = facets.get(key)
        if facet is None:
            facets[key] = CategoryFacet(key=key, label=_category_label(raw), count=1)
        else:
            facet.count += 1
    return list(facets.values())


def page_count(total_items: int, page_size: int) -> int:
    if page_size < 1:
        raise ValueError("page_size must be >= 1")
    return max(1, math.ceil(total_items / page_size))


def paginate(items: Sequence[T], page: int, page_size: int = DEFAULT_PAGE_SIZE) -> tuple[list[T], int, int]:
    """Return (page items, effective 1-based page, total pages); `page` is clamped into range."""
    total_pages = page_count(len(items), page_size)
    page = min(max(1, int(page)), total_pages)
    start = (page - 1) * page_size
    return list(items[start : start + page_size]), page, total_pages


def rank(
    records: Sequence[WorkerRecord],
    reference: GeoPoint | None,
    sort_mode: SortMode = SortMode.DISTANCE,
    filters: RankFilters | None = None,
    *,
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
    location_source: str | None = None,
) -> RankedPage:
    filters = filters or RankFilters()
    annotated = annotate(records, reference)
    filtered = apply_filters(annotated, filters)
    ordered = sort_workers(filtered, sort_mode)
    items, page, total_pages = paginate(ordered, page, page_size)
    return RankedPage(
        items=items,
        page=page,
        page_size=page_size,
        total_items=len(ordered),
        total_pages=total_pages,
        sort=sort_mode,
        filters=filters,
        categories=derive_categories(records),
        reference=reference,
        location_source=location_source,
    )
