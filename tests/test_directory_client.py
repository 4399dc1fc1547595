import asyncio

import httpx
import pytest

import workkar.directory.client as client_mod
from workkar.config.settings import get_settings
from workkar.core.cache import FileCache
from workkar.core.geo import GeoPoint
from workkar.directory.client import WorkerDirectory
from workkar.domain.errors import FetchFailure


def _status_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "http://backend/rest/v1/workers_with_geojson")
    response = httpx.Response(status, request=request)
    return httpx.HTTPStatusError(f"HTTP {status}", request=request, response=response)


def _settings_with_key():
    settings = get_settings()
    return settings.model_copy(
        update={"backend": settings.backend.model_copy(update={"base_url": "http://backend/", "api_key": "k"})}
    )


class _FakeGetJson:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    async def __call__(self, url, *, params=None, headers=None, timeout_seconds=15):
        self.calls.append({"url": url, "params": params, "headers": headers})
        result = self.responses.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


def test_fetch_active_workers_queries_newest_active_first(monkeypatch):
    fake = _FakeGetJson(
        [
            [
                {"id": 2, "full_name": "B", "service_category": "Plumbing", "is_active": True},
                {"id": None, "full_name": "broken"},
                {
                    "id": 1,
                    "full_name": "A",
                    "service_category": "Electrical",
                    "location_coordinates_geojson": {"type": "Point", "coordinates": [78.49, 17.39]},
                },
            ]
        ]
    )
    monkeypatch.setattr(client_mod, "get_json", fake)

    workers = asyncio.run(WorkerDirectory(_settings_with_key()).fetch_active_workers())

    assert [w.id for w in workers] == ["2", "1"]
    assert workers[1].coordinates == GeoPoint(latitude=17.39, longitude=78.49)
    call = fake.calls[0]
    assert call["url"] == "http://backend/rest/v1/workers_with_geojson"
    assert call["params"]["is_active"] == "eq.true"
    assert call["params"]["order"] == "created_at.desc"
    assert call["headers"] == {"apikey": "k", "Authorization": "Bearer k"}


@pytest.mark.parametrize(
    "error,retryable",
    [
        (_status_error(503), True),
        (_status_error(429), True),
        (_status_error(400), False),
        (httpx.ConnectError("refused"), True),
        (ValueError("bad json"), True),
    ],
)
def test_transport_errors_become_fetch_failure(monkeypatch, error, retryable):
    monkeypatch.setattr(client_mod, "get_json", _FakeGetJson([error]))
    with pytest.raises(FetchFailure) as excinfo:
        asyncio.run(WorkerDirectory(_settings_with_key()).fetch_active_workers())
    assert excinfo.value.retryable is retryable


def test_non_list_payload_is_a_fetch_failure(monkeypatch):
    monkeypatch.setattr(client_mod, "get_json", _FakeGetJson([{"message": "oops"}]))
    with pytest.raises(FetchFailure):
        asyncio.run(WorkerDirectory(_settings_with_key()).fetch_active_workers())


def test_viewer_location_prefers_worker_row(monkeypatch):
    fake = _FakeGetJson([[{"location_coordinates": "POINT(78.49 17.39)"}]])
    monkeypatch.setattr(client_mod, "get_json", fake)

    point = asyncio.run(WorkerDirectory(_settings_with_key()).fetch_viewer_location("u-1"))

    assert point == GeoPoint(latitude=17.39, longitude=78.49)
    assert len(fake.calls) == 1
    assert fake.calls[0]["params"]["user_id"] == "eq.u-1"


def test_viewer_location_falls_back_to_profile(monkeypatch):
    fake = _FakeGetJson(
        [
            [],
            [{"location_coordinates_geojson": {"type": "Point", "coordinates": [77.59, 12.97]}}],
        ]
    )
    monkeypatch.setattr(client_mod, "get_json", fake)

    point = asyncio.run(WorkerDirectory(_settings_with_key()).fetch_viewer_location("u-1"))

    assert point == GeoPoint(latitude=12.97, longitude=77.59)
    assert fake.calls[1]["url"].endswith("/profiles_with_geojson")
    assert fake.calls[1]["params"]["id"] == "eq.u-1"


def test_viewer_without_any_location(monkeypatch):
    monkeypatch.setattr(client_mod, "get_json", _FakeGetJson([[{"location_coordinates": None}], []]))
    assert asyncio.run(WorkerDirectory(_settings_with_key()).fetch_viewer_location("u-1")) is None


def test_invalid_backend_url_is_a_fetch_failure(monkeypatch):
    monkeypatch.setattr(client_mod, "get_json", _FakeGetJson([httpx.InvalidURL("no host")]))
    with pytest.raises(FetchFailure):
        asyncio.run(WorkerDirectory(_settings_with_key()).fetch_active_workers())


def test_failed_fetch_carries_last_saved_list(monkeypatch, tmp_path):
    fake = _FakeGetJson(
        [
            [{"id": 1, "full_name": "A", "service_category": "Plumbing"}],
            _status_error(503),
        ]
    )
    monkeypatch.setattr(client_mod, "get_json", fake)
    directory = WorkerDirectory(_settings_with_key(), FileCache(tmp_path))

    asyncio.run(directory.fetch_active_workers())
    with pytest.raises(FetchFailure) as excinfo:
        asyncio.run(directory.fetch_active_workers())

    assert [w.id for w in excinfo.value.snapshot] == ["1"]
    assert excinfo.value.retryable is True


def test_failed_fetch_without_saved_list(monkeypatch, tmp_path):
    monkeypatch.setattr(client_mod, "get_json", _FakeGetJson([_status_error(503)]))
    with pytest.raises(FetchFailure) as excinfo:
        asyncio.run(WorkerDirectory(_settings_with_key(), FileCache(tmp_path)).fetch_active_workers())
    assert excinfo.value.snapshot is None
