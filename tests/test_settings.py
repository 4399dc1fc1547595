import pytest
from pydantic import ValidationError

from workkar.config.settings import Settings, _apply_env_overrides, get_logging_config, get_settings


def test_default_settings_load():
    settings = get_settings()
    assert settings.ranking.page_size == 6
    assert settings.ranking.default_sort == "distance"
    assert settings.geolocation.timeout_seconds > 0
    assert settings.backend.workers_view == "workers_with_geojson"
    assert settings.backend.location_field == "location_coordinates_geojson"


def test_env_overrides_are_whitelisted(monkeypatch):
    monkeypatch.setenv("WORKKAR_BACKEND_URL", "https://example.supabase.co")
    monkeypatch.setenv("WORKKAR_BACKEND_KEY", "anon-key")
    monkeypatch.setenv("WORKKAR_LOG_LEVEL", "DEBUG")
    monkeypatch.setenv("WORKKAR_CACHE_DIR", "/tmp/workkar-cache")

    data = _apply_env_overrides({"backend": {"base_url": "http://localhost:54321"}})

    assert data["backend"] == {"base_url": "https://example.supabase.co", "api_key": "anon-key"}
    assert data["app"]["log_level"] == "DEBUG"
    assert data["cache"]["dir"] == "/tmp/workkar-cache"


def test_settings_validation_rejects_bad_knobs():
    base = get_settings().model_dump()
    base["ranking"]["page_size"] = 0
    with pytest.raises(ValidationError):
        Settings.model_validate(base)

    base = get_settings().model_dump()
    base["ranking"]["default_sort"] = "price"
    with pytest.raises(ValidationError):
        Settings.model_validate(base)


def test_logging_config_is_dictconfig_shaped():
    config = get_logging_config()
    assert config["version"] == 1
    assert "console" in config["handlers"]
