"""
WorkKar CLI entrypoint.

This CLI is intended for quick local checks without the web client:
- `workers`: resolve a reference location, fetch and rank workers
- `distance`: Haversine distance between two points
- `reverse`: reverse-geocode a point
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any

from workkar.config.settings import get_settings
from workkar.core.geo import GeoPoint, distance_km
from workkar.core.logging import configure_logging
from workkar.directory.client import WorkerDirectory
from workkar.domain.models import RankedPage, RankFilters, SortMode, Viewer
from workkar.location.cache import build_file_cache, build_location_cache
from workkar.location.geocoding import ReverseGeocoder
from workkar.location.geolocation import NoGeolocation, ReportedGeolocation
from workkar.location.resolver import LocationResolver, ResolvedLocation, default_strategies
from workkar.ranking.session import BrowseSession, SessionStatus


def _point(lat: float | None, lon: float | None) -> GeoPoint | None:
    if lat is None and lon is None:
        return None
    if lat is None or lon is None:
        raise ValueError("--lat and --lon must be given together")
    return GeoPoint(latitude=lat, longitude=lon)


def _print_page(page: RankedPage, location: ResolvedLocation | None) -> None:
    if page.stale:
        print("Offline: showing the last saved list of professionals.")
    if location is None:
        print("Location unknown: set your location to see distances.")
    else:
        print(f"Reference: {location.display_label} [{location.source.value}]")
    print(f"{page.total_items} professionals found (page {page.page}/{page.total_pages}, sort={page.sort.value})")
    start = (page.page - 1) * page.page_size
    for i, item in enumerate(page.items, start=start + 1):
        w = item.worker
        distance = f"{item.distance_km:.1f} km away" if item.distance_km is not None else "distance unknown"
        print(f"{i:>3}. {w.name} [{w.category}]  rating={w.rating:.1f} ({w.review_count})  {distance}")
    if page.categories:
        print("Categories: " + ", ".join(f"{c.label} ({c.count})" for c in page.categories))


def _emit(page: RankedPage, location: ResolvedLocation | None, as_json: bool) -> None:
    if as_json:
        print(json.dumps(page.model_dump(mode="json"), ensure_ascii=False, indent=2))
    else:
        _print_page(page, location)


async def _run_workers(args: argparse.Namespace) -> int:
    settings = get_settings()
    point = _point(args.lat, args.lon)
    geolocation = ReportedGeolocation(point) if point is not None else NoGeolocation()
    file_cache = build_file_cache(settings)
    directory = WorkerDirectory(settings, file_cache)
    resolver = LocationResolver(
        default_strategies(
            settings,
            directory=directory,
            geolocation=geolocation,
            cache=build_location_cache(settings, file_cache),
        )
    )
    session = BrowseSession(
        directory,
        resolver,
        page_size=args.page_size or settings.ranking.page_size,
        sort=SortMode(args.sort or settings.ranking.default_sort),
    )

    status = await session.refresh(Viewer(user_id=args.viewer))
    session.set_filters(RankFilters(query=args.query, location=args.location, category=args.category))
    if status != SessionStatus.READY:
        print(f"Could not load workers: {session.error} (retry later)", file=sys.stderr if args.json else sys.stdout)
        if session.has_stale_snapshot:
            _emit(session.stale_view(), resolver.state.location, args.json)
        return 2

    session.set_page(args.page)
    _emit(session.view(), session.location.location, args.json)
    return 0


def _cmd_workers(args: argparse.Namespace) -> int:
    try:
        return asyncio.run(_run_workers(args))
    except ValueError as e:
        print(f"Invalid arguments: {e}")
        return 2


def _cmd_distance(args: argparse.Namespace) -> int:
    a = GeoPoint(latitude=args.lat1, longitude=args.lon1)
    b = GeoPoint(latitude=args.lat2, longitude=args.lon2)
    print(f"{distance_km(a, b):.3f} km")
    return 0


def _cmd_reverse(args: argparse.Namespace) -> int:
    settings = get_settings()
    geocoder = ReverseGeocoder(settings, build_file_cache(settings))
    label = asyncio.run(geocoder.lookup(GeoPoint(latitude=args.lat, longitude=args.lon)))
    if args.json:
        print(json.dumps({"address": label.address, "city": label.city, "resolved": label.resolved}, ensure_ascii=False))
        return 0
    print(label.address)
    if label.city:
        print(f"City: {label.city}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the WorkKar CLI."""
    parser = argparse.ArgumentParser(prog="workkar")
    sub = parser.add_subparsers(dest="command", required=True)

    w = sub.add_parser("workers", help="List active workers ranked by distance or rating.")
    w.add_argument("--lat", type=float, default=None, help="Device latitude (used when no stored location)")
    w.add_argument("--lon", type=float, default=None, help="Device longitude")
    w.add_argument("--viewer", type=str, default=None, help="Signed-in user id (enables stored location)")
    w.add_argument("--sort", choices=[m.value for m in SortMode], default=None)
    w.add_argument("--query", type=str, default=None, help="Match name, category or subcategory")
    w.add_argument("--location", type=str, default=None, help="Match the worker's address")
    w.add_argument("--category", type=str, default=None)
    w.add_argument("--page", type=int, default=1)
    w.add_argument("--page-size", dest="page_size", type=int, default=None)
    w.add_argument("--json", action="store_true", help="Output machine-readable JSON")
    w.set_defaults(func=_cmd_workers)

    d = sub.add_parser("distance", help="Great-circle distance in km between two points.")
    d.add_argument("lat1", type=float)
    d.add_argument("lon1", type=float)
    d.add_argument("lat2", type=float)
    d.add_argument("lon2", type=float)
    d.set_defaults(func=_cmd_distance)

    r = sub.add_parser("reverse", help="Reverse-geocode a point (falls back to coordinates).")
    r.add_argument("--lat", required=True, type=float)
    r.add_argument("--lon", required=True, type=float)
    r.add_argument("--json", action="store_true")
    r.set_defaults(func=_cmd_reverse)
    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint callable used by `python -m workkar.cli`."""
    configure_logging()
    parser = build_parser()
    args = parser.parse_args(argv)
    func: Any = getattr(args, "func")
    return int(func(args))


if __name__ == "__main__":
    raise SystemExit(main())
