from workkar.core.cache import FileCache
from workkar.core.geo import GeoPoint
from workkar.location.cache import (
    NAMESPACE,
    FileLocationCache,
    MemoryLocationCache,
    build_location_cache,
    pending_key,
    viewer_key,
)
from workkar.config.settings import get_settings

POINT = GeoPoint(latitude=17.385, longitude=78.4867)


class _Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_keys_are_scoped_per_viewer():
    assert viewer_key("u-1") == "viewer:u-1"
    assert pending_key("u-1") == "pending:u-1"
    assert pending_key(None, "tok-1") == "pending:anonymous:tok-1"
    assert pending_key(None) is None
    assert pending_key("u-1", "tok-1") == "pending:u-1"


def test_memory_cache_expires_entries():
    clock = _Clock()
    cache = MemoryLocationCache(default_ttl_seconds=60, clock=clock)
    cache.set("k", POINT)
    cache.set("short", POINT, ttl_seconds=5)

    clock.now += 10
    assert cache.get("k") == POINT
    assert cache.get("short") is None

    clock.now += 60
    assert cache.get("k") is None


def test_memory_cache_clear():
    cache = MemoryLocationCache()
    cache.set("k", POINT)
    cache.clear("k")
    cache.clear("missing")
    assert cache.get("k") is None


def test_file_cache_round_trip_and_clear(tmp_path):
    cache = FileLocationCache(FileCache(tmp_path), default_ttl_seconds=60)
    cache.set(viewer_key("u-1"), POINT)
    assert cache.get(viewer_key("u-1")) == POINT
    assert cache.get(viewer_key("u-2")) is None

    cache.clear(viewer_key("u-1"))
    assert cache.get(viewer_key("u-1")) is None


def test_file_cache_discards_corrupt_entries(tmp_path):
    files = FileCache(tmp_path)
    files.set(NAMESPACE, "bad", {"latitude": 123, "longitude": 0})
    cache = FileLocationCache(files)

    assert cache.get("bad") is None
    assert files.get(NAMESPACE, "bad") is None


def test_disabled_file_cache_stores_nothing(tmp_path):
    cache = FileLocationCache(FileCache(tmp_path, enabled=False))
    cache.set("k", POINT)
    assert cache.get("k") is None


def test_build_location_cache_honours_backend_setting(tmp_path):
    settings = get_settings()
    memory = settings.model_copy(
        update={"location_cache": settings.location_cache.model_copy(update={"backend": "memory"})}
    )
    assert isinstance(build_location_cache(memory), MemoryLocationCache)
    assert isinstance(build_location_cache(settings, FileCache(tmp_path)), FileLocationCache)
