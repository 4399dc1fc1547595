"""
Error taxonomy.

Only `FetchFailure` is meant to reach users (as a retryable error state). The
geolocation errors steer the location resolver to its next fallback step, and
`StaleResultDiscarded` never leaves the resolver/session that raised it.
"""

from __future__ import annotations


class WorkKarError(Exception):
    """Base class for all WorkKar errors."""


class InvalidCoordinatesError(WorkKarError, ValueError):
    """A coordinate is not a finite latitude/longitude, so no distance exists."""


class GeolocationError(WorkKarError):
    """Device geolocation produced no position."""

    reason = "unavailable"


class GeolocationDenied(GeolocationError):
    reason = "denied"


class GeolocationTimeout(GeolocationError):
    reason = "timeout"


class GeolocationUnavailable(GeolocationError):
    reason = "unavailable"


class FetchFailure(WorkKarError):
    """The backend could not be reached or returned an unusable payload.

    `snapshot` carries the last successfully fetched worker list, when one was saved.
    """

    def __init__(self, message: str, *, retryable: bool = True, snapshot: list | None = None):
        super().__init__(message)
        self.retryable = retryable
        self.snapshot = snapshot


class StaleResultDiscarded(WorkKarError):
    """A superseded async cycle finished after a newer one started."""

    def __init__(self, generation: int, current: int):
        super().__init__(f"generation {generation} superseded by {current}")
        self.generation = generation
        self.current = current


class SessionNotReady(WorkKarError):
    """The browse session has no successfully fetched snapshot to rank."""
