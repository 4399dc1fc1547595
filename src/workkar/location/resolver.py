from __future__ import annotations

# Location resolution decides what "distance" means for the current viewer.
#
# The fallback chain is data, not control flow: an ordered list of named strategies,
# each an async function returning a location or None, run by `first_success`.
# Default order:
#   1. profile      - signed-in viewer's stored worker/profile location (cached for reuse)
#   2. geolocation  - device position, bounded by a timeout
#   3. pending      - one-shot value left by a just-completed sign-up
# If nothing answers, the viewer resolves to "no location", which is a valid end state.
#
# `LocationResolver` wraps the chain in a small state machine with a generation
# counter, so a slow resolution can never overwrite a newer one.

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, NamedTuple, Optional, Protocol, Sequence

from workkar.config.settings import Settings
from workkar.core.geo import GeoPoint, coordinate_label
from workkar.domain.errors import FetchFailure, GeolocationError, StaleResultDiscarded
from workkar.domain.models import Viewer
from workkar.location.cache import LocationCache, pending_key, viewer_key
from workkar.location.geolocation import GeolocationProvider, request_position

logger = logging.getLogger(__name__)


class LocationSource(str, Enum):
    PROFILE = "profile"
    GEOLOCATION = "geolocation"
    PENDING = "pending"
    MANUAL = "manual"


_LABEL_PREFIXES = {
    LocationSource.PROFILE: "Saved Location",
    LocationSource.GEOLOCATION: "Current Location",
    LocationSource.PENDING: "Saved Location",
    LocationSource.MANUAL: "Selected Location",
}


@dataclass(frozen=True)
class ResolvedLocation:
    point: GeoPoint
    source: LocationSource
    label: str | None = None

    @property
    def display_label(self) -> str:
        """The explicit label, else e.g. `Current Location (17.3850, 78.4867)`."""
        return self.label or coordinate_label(_LABEL_PREFIXES[self.source], self.point)


class ResolverStatus(str, Enum):
    UNRESOLVED = "unresolved"
    RESOLVING = "resolving"
    RESOLVED = "resolved"


@dataclass(frozen=True)
class ResolverState:
    status: ResolverStatus = ResolverStatus.UNRESOLVED
    location: ResolvedLocation | None = None
    generation: int = 0
    geolocation_error: str | None = None

    @property
    def point(self) -> GeoPoint | None:
        return self.location.point if self.location else None


StrategyFn = Callable[[Viewer], Awaitable[Optional[ResolvedLocation]]]


class Strategy(NamedTuple):
    name: str
    run: StrategyFn


@dataclass
class ChainOutcome:
    location: ResolvedLocation | None = None
    skipped: dict[str, str] = field(default_factory=dict)


class ViewerLocationSource(Protocol):
    async def fetch_viewer_location(self, user_id: str) -> GeoPoint | None: ...


async def first_success(strategies: Sequence[Strategy], viewer: Viewer) -> ChainOutcome:
    """Run strategies in order and stop at the first one that yields a location.

    Strategy failures never escape: geolocation errors are recorded by reason,
    anything else is logged and the chain moves on.
    """
    outcome = ChainOutcome()
    for strategy in strategies:
        try:
            result = await strategy.run(viewer)
        except GeolocationError as exc:
            logger.info("Location strategy %s skipped (%s): %s", strategy.name, exc.reason, exc)
            outcome.skipped[strategy.name] = exc.reason
            continue
        except Exception:
            logger.exception("Location strategy %s failed; trying next.", strategy.name)
            outcome.skipped[strategy.name] = "error"
            continue
        if result is not None:
            outcome.location = result
            return outcome
    return outcome


def profile_strategy(
    directory: ViewerLocationSource,
    cache: LocationCache | None = None,
    *,
    ttl_seconds: int | None = None,
) -> Strategy:
    async def run(viewer: Viewer) -> ResolvedLocation | None:
        if not viewer.signed_in:
            return None
        key = viewer_key(str(viewer.user_id))
        if cache is not None:
            cached = cache.get(key)
            if cached is not None:
                return ResolvedLocation(point=cached, source=LocationSource.PROFILE)
        try:
            point = await directory.fetch_viewer_location(str(viewer.user_id))
        except FetchFailure as exc:
            logger.info("Could not read stored location for viewer %s: %s", viewer.user_id, exc)
            return None
        if point is None:
            logger.info("No stored location for viewer %s; falling back.", viewer.user_id)
            return None
        if cache is not None:
            cache.set(key, point, ttl_seconds)
        return ResolvedLocation(point=point, source=LocationSource.PROFILE)

    return Strategy("profile", run)


def geolocation_strategy(provider: GeolocationProvider, *, timeout_seconds: float = 5.0) -> Strategy:
    async def run(viewer: Viewer) -> ResolvedLocation | None:
        point = await request_position(provider, timeout_seconds=timeout_seconds)
        return ResolvedLocation(point=point, source=LocationSource.GEOLOCATION)

    return Strategy("geolocation", run)


def pending_strategy(cache: LocationCache) -> Strategy:
    async def run(viewer: Viewer) -> ResolvedLocation | None:
        key = pending_key(viewer.user_id, viewer.pending_token)
        if key is None:
            return None
        point = cache.get(key)
        if point is None:
            return None
        # One-shot: consumed on first read.
        cache.clear(key)
        return ResolvedLocation(point=point, source=LocationSource.PENDING)

    return Strategy("pending", run)


def default_strategies(
    settings: Settings,
    *,
    directory: ViewerLocationSource,
    geolocation: GeolocationProvider,
    cache: LocationCache,
) -> list[Strategy]:
    return [
        profile_strategy(directory, cache, ttl_seconds=settings.location_cache.profile_ttl_seconds),
        geolocation_strategy(geolocation, timeout_seconds=settings.geolocation.timeout_seconds),
        pending_strategy(cache),
    ]


class LocationResolver:
    """Generation-guarded state machine over a strategy chain."""

    def __init__(self, strategies: Sequence[Strategy]):
        self._strategies = list(strategies)
        self._generation = 0
        self._state = ResolverState()

    @property
    def state(self) -> ResolverState:
        return self._state

    @property
    def generation(self) -> int:
        return self._generation

    def is_current(self, generation: int) -> bool:
        return generation == self._generation

    def _begin(self) -> int:
        self._generation += 1
        return self._generation

    def _commit(self, state: ResolverState) -> None:
        if not self.is_current(state.generation):
            raise StaleResultDiscarded(state.generation, self._generation)
        self._state = state

    async def resolve(self, viewer: Viewer | None = None) -> ResolverState:
        """Run the chain and publish its result unless a newer resolution started meanwhile."""
        viewer = viewer or Viewer()
        generation = self._begin()
        self._state = ResolverState(status=ResolverStatus.RESOLVING, generation=generation)

        outcome = await first_success(self._strategies, viewer)
        try:
            self._commit(
                ResolverState(
                    status=ResolverStatus.RESOLVED,
                    location=outcome.location,
                    generation=generation,
                    geolocation_error=outcome.skipped.get("geolocation"),
                )
            )
        except StaleResultDiscarded as exc:
            logger.debug("Discarding stale location resolution: %s", exc)
        else:
            if outcome.location is None:
                logger.info("No reference location for this viewer; distances disabled.")
            else:
                logger.info("Reference location resolved from %s.", outcome.location.source.value)
        return self._state

    def set_manual(self, point: GeoPoint, label: str | None = None) -> ResolverState:
        """Adopt an explicitly chosen location; supersedes any in-flight resolution."""
        generation = self._begin()
        self._state = ResolverState(
            status=ResolverStatus.RESOLVED,
            location=ResolvedLocation(point=point, source=LocationSource.MANUAL, label=label),
            generation=generation,
        )
        return self._state

    def reset(self) -> ResolverState:
        generation = self._begin()
        self._state = ResolverState(generation=generation)
        return self._state
