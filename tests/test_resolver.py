import asyncio

import pytest

from workkar.core.geo import GeoPoint
from workkar.domain.errors import FetchFailure, GeolocationDenied
from workkar.domain.models import Viewer
from workkar.location.cache import MemoryLocationCache, pending_key, viewer_key
from workkar.location.geolocation import NoGeolocation, ReportedGeolocation
from workkar.location.resolver import (
    LocationResolver,
    LocationSource,
    ResolvedLocation,
    ResolverStatus,
    Strategy,
    first_success,
    geolocation_strategy,
    pending_strategy,
    profile_strategy,
)

PROFILE_POINT = GeoPoint(latitude=17.385, longitude=78.4867)
DEVICE_POINT = GeoPoint(latitude=17.44, longitude=78.50)
PENDING_POINT = GeoPoint(latitude=12.97, longitude=77.59)


class _StubDirectory:
    def __init__(self, point=None, *, fail=False):
        self.point = point
        self.fail = fail
        self.calls = 0

    async def fetch_viewer_location(self, user_id):
        self.calls += 1
        if self.fail:
            raise FetchFailure("backend down")
        return self.point


class _HangingGeolocation:
    async def current_position(self):
        await asyncio.sleep(10)
        return DEVICE_POINT


def _chain(directory, geolocation, cache, timeout=0.5):
    return [
        profile_strategy(directory, cache),
        geolocation_strategy(geolocation, timeout_seconds=timeout),
        pending_strategy(cache),
    ]


def test_signed_in_viewer_uses_profile_location():
    cache = MemoryLocationCache()
    resolver = LocationResolver(_chain(_StubDirectory(PROFILE_POINT), ReportedGeolocation(DEVICE_POINT), cache))

    state = asyncio.run(resolver.resolve(Viewer(user_id="u-1")))

    assert state.status == ResolverStatus.RESOLVED
    assert state.location.source == LocationSource.PROFILE
    assert state.point == PROFILE_POINT


def test_profile_location_is_cached_for_reuse():
    cache = MemoryLocationCache()
    directory = _StubDirectory(PROFILE_POINT)
    strategy = profile_strategy(directory, cache, ttl_seconds=60)

    first = asyncio.run(strategy.run(Viewer(user_id="u-1")))
    second = asyncio.run(strategy.run(Viewer(user_id="u-1")))

    assert first.point == second.point == PROFILE_POINT
    assert directory.calls == 1
    assert cache.get(viewer_key("u-1")) == PROFILE_POINT


def test_anonymous_viewer_skips_profile_lookup():
    directory = _StubDirectory(PROFILE_POINT)
    resolver = LocationResolver(_chain(directory, ReportedGeolocation(DEVICE_POINT), MemoryLocationCache()))

    state = asyncio.run(resolver.resolve(Viewer()))

    assert directory.calls == 0
    assert state.location.source == LocationSource.GEOLOCATION
    assert state.point == DEVICE_POINT


def test_profile_fetch_failure_falls_through():
    resolver = LocationResolver(
        _chain(_StubDirectory(fail=True), ReportedGeolocation(DEVICE_POINT), MemoryLocationCache())
    )
    state = asyncio.run(resolver.resolve(Viewer(user_id="u-1")))
    assert state.location.source == LocationSource.GEOLOCATION


def test_denied_geolocation_falls_through_to_pending():
    cache = MemoryLocationCache()
    cache.set(pending_key(None, "tok-1"), PENDING_POINT)
    resolver = LocationResolver(_chain(_StubDirectory(), ReportedGeolocation(denied=True), cache))

    state = asyncio.run(resolver.resolve(Viewer(pending_token="tok-1")))

    assert state.location.source == LocationSource.PENDING
    assert state.point == PENDING_POINT
    assert state.geolocation_error == "denied"


def test_geolocation_timeout_falls_through_to_no_location():
    resolver = LocationResolver(_chain(_StubDirectory(), _HangingGeolocation(), MemoryLocationCache(), timeout=0.05))

    state = asyncio.run(resolver.resolve())

    assert state.status == ResolverStatus.RESOLVED
    assert state.location is None
    assert state.point is None
    assert state.geolocation_error == "timeout"


def test_no_capability_resolves_to_no_location():
    resolver = LocationResolver(_chain(_StubDirectory(), NoGeolocation(), MemoryLocationCache()))
    state = asyncio.run(resolver.resolve())
    assert state.status == ResolverStatus.RESOLVED
    assert state.location is None
    assert state.geolocation_error == "unavailable"


def test_pending_location_is_consumed_once():
    cache = MemoryLocationCache()
    cache.set(pending_key("u-9"), PENDING_POINT)
    strategy = pending_strategy(cache)

    first = asyncio.run(strategy.run(Viewer(user_id="u-9")))
    second = asyncio.run(strategy.run(Viewer(user_id="u-9")))

    assert first.point == PENDING_POINT
    assert second is None


def test_first_success_contains_unexpected_errors():
    async def boom(viewer):
        raise RuntimeError("kaboom")

    async def ok(viewer):
        return ResolvedLocation(point=DEVICE_POINT, source=LocationSource.GEOLOCATION)

    async def denied(viewer):
        raise GeolocationDenied("no")

    outcome = asyncio.run(
        first_success([Strategy("boom", boom), Strategy("denied", denied), Strategy("ok", ok)], Viewer())
    )
    assert outcome.location.point == DEVICE_POINT
    assert outcome.skipped == {"boom": "error", "denied": "denied"}


def test_slow_resolution_never_overwrites_newer_one():
    async def scenario():
        release_slow = asyncio.Event()
        calls = {"n": 0}

        async def gated(viewer):
            calls["n"] += 1
            if calls["n"] == 1:
                await release_slow.wait()
                return ResolvedLocation(point=PROFILE_POINT, source=LocationSource.PROFILE)
            return ResolvedLocation(point=DEVICE_POINT, source=LocationSource.GEOLOCATION)

        resolver = LocationResolver([Strategy("gated", gated)])
        slow = asyncio.ensure_future(resolver.resolve())
        await asyncio.sleep(0)
        fast_state = await resolver.resolve()
        release_slow.set()
        slow_state = await slow
        return resolver, fast_state, slow_state

    resolver, fast_state, slow_state = asyncio.run(scenario())

    assert fast_state.point == DEVICE_POINT
    assert slow_state.point == DEVICE_POINT
    assert resolver.state.point == DEVICE_POINT
    assert resolver.state.generation == 2


def test_manual_location_supersedes_in_flight_resolution():
    async def scenario():
        release = asyncio.Event()

        async def slow(viewer):
            await release.wait()
            return ResolvedLocation(point=PROFILE_POINT, source=LocationSource.PROFILE)

        resolver = LocationResolver([Strategy("slow", slow)])
        pending = asyncio.ensure_future(resolver.resolve())
        await asyncio.sleep(0)
        assert resolver.state.status == ResolverStatus.RESOLVING
        resolver.set_manual(PENDING_POINT, label="Bengaluru")
        release.set()
        await pending
        return resolver

    resolver = asyncio.run(scenario())

    assert resolver.state.location.source == LocationSource.MANUAL
    assert resolver.state.location.label == "Bengaluru"
    assert resolver.state.point == PENDING_POINT


def test_reset_returns_to_unresolved_and_bumps_generation():
    resolver = LocationResolver([])
    asyncio.run(resolver.resolve())
    before = resolver.generation
    state = resolver.reset()
    assert state.status == ResolverStatus.UNRESOLVED
    assert state.generation == before + 1
    assert not resolver.is_current(before)


@pytest.mark.parametrize("viewer", [Viewer(), Viewer(user_id="u-1")])
def test_empty_chain_resolves_to_no_location(viewer):
    state = asyncio.run(LocationResolver([]).resolve(viewer))
    assert state.status == ResolverStatus.RESOLVED
    assert state.location is None


def test_anonymous_pending_location_needs_the_matching_token():
    cache = MemoryLocationCache()
    cache.set(pending_key(None, "tok-a"), PENDING_POINT)
    strategy = pending_strategy(cache)

    assert asyncio.run(strategy.run(Viewer())) is None
    assert asyncio.run(strategy.run(Viewer(pending_token="tok-b"))) is None
    assert asyncio.run(strategy.run(Viewer(pending_token="tok-a"))).point == PENDING_POINT


def test_display_label_defaults_to_source_and_coordinates():
    point = GeoPoint(latitude=17.385, longitude=78.4867)
    current = ResolvedLocation(point=point, source=LocationSource.GEOLOCATION)
    chosen = ResolvedLocation(point=point, source=LocationSource.MANUAL)
    named = ResolvedLocation(point=point, source=LocationSource.MANUAL, label="Bengaluru")

    assert current.display_label == "Current Location (17.3850, 78.4867)"
    assert chosen.display_label == "Selected Location (17.3850, 78.4867)"
    assert named.display_label == "Bengaluru"
