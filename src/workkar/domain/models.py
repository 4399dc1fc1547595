"""
Domain models (Pydantic).

These types are the stable "contract" between layers:
- backend rows normalized into `WorkerRecord`
- ranking output (`AnnotatedWorker`, `CategoryFacet`, `RankedPage`)
- request inputs (`RankFilters`, `SortMode`, `Viewer`)

`GeoPoint` lives in `workkar.core.geo` and is re-exported here for convenience.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from workkar.core.geo import GeoPoint

__all__ = [
    "AnnotatedWorker",
    "CategoryFacet",
    "GeoPoint",
    "RankFilters",
    "RankedPage",
    "SortMode",
    "Viewer",
    "WorkerRecord",
]


class SortMode(str, Enum):
    DISTANCE = "distance"
    RATING = "rating"


class Viewer(BaseModel):
    """Whoever is browsing; `user_id` is None for anonymous visitors.

    `pending_token` identifies an anonymous client's own one-shot location slot.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str | None = None
    pending_token: str | None = None

    @property
    def signed_in(self) -> bool:
        return bool(self.user_id)


class WorkerRecord(BaseModel):
    """A worker listing as held in memory after normalization."""

    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str | None = None
    name: str
    category: str = ""
    subcategories: list[str] = Field(default_factory=list)
    coordinates: GeoPoint | None = None
    address: str | None = None
    rating: float = Field(0.0, ge=0, le=5)
    review_count: int = Field(0, ge=0)
    is_active: bool = True
    verification_status: str | None = None
    mobile: str | None = None
    business_name: str | None = None
    created_at: datetime | None = None

    @field_validator("subcategories")
    @classmethod
    def _strip_subcategories(cls, values: list[str]) -> list[str]:
        return [v.strip() for v in values if v and v.strip()]


class AnnotatedWorker(BaseModel):
    """A worker plus its distance from the reference location (when both are known)."""

    model_config = ConfigDict(frozen=True)

    worker: WorkerRecord
    distance_km: float | None = None


class CategoryFacet(BaseModel):
    key: str
    label: str
    count: int = 0


class RankFilters(BaseModel):
    """Active browse filters; blank values are inactive."""

    query: str | None = None
    location: str | None = None
    category: str | None = None

    @field_validator("query", "location", "category")
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        return value or None

    @property
    def active(self) -> bool:
        return any((self.query, self.location, self.category))


class RankedPage(BaseModel):
    """One page of ranked workers plus the facets and reference used to build it."""

    items: list[AnnotatedWorker]
    page: int = Field(..., ge=1)
    page_size: int = Field(..., ge=1)
    total_items: int = Field(..., ge=0)
    total_pages: int = Field(..., ge=1)
    sort: SortMode
    filters: RankFilters = Field(default_factory=RankFilters)
    categories: list[CategoryFacet] = Field(default_factory=list)
    reference: GeoPoint | None = None
    location_source: str | None = None
    stale: bool = False
