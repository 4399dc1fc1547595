# src/workkar/config/settings.py
"""
Application settings (Pydantic).

Settings are loaded from `src/workkar/config/defaults.yaml`, then optionally overridden by:
- environment variables (e.g., `WORKKAR_BACKEND_URL`, `WORKKAR_BACKEND_KEY`)
- an external YAML file via `WORKKAR_CONFIG_PATH`

Design rule:
- Tuning knobs (page size, timeouts, TTLs) live in YAML, not hard-coded in business logic.
"""

from __future__ import annotations

import os
from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Any, Literal
from workkar.core.env import load_dotenv_if_present

import yaml
from pydantic import BaseModel, Field


def _read_package_yaml(filename: str) -> dict[str, Any]:
    """Read a YAML file packaged inside `workkar.config`."""
    text = resources.files("workkar.config").joinpath(filename).read_text(encoding="utf-8")
    data = yaml.safe_load(text) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid YAML root object for {filename}; expected a mapping.")
    return data


def _read_yaml_file(path: str | Path) -> dict[str, Any]:
    """Read a YAML file from disk and return its mapping root."""
    data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid YAML root object for {path}; expected a mapping.")
    return data


class AppSettings(BaseModel):
    name: str = "WorkKar"
    http_timeout_seconds: float = 15
    log_level: str = "INFO"


class CacheSettings(BaseModel):
    enabled: bool = True
    dir: str = ".cache/workkar"
    default_ttl_seconds: int = 60 * 60 * 24


class BackendSettings(BaseModel):
    """Hosted backend (Supabase REST) used as the worker directory store."""

    base_url: str
    api_key: str | None = None
    workers_view: str = "workers_with_geojson"
    profiles_view: str = "profiles_with_geojson"
    location_field: str = "location_coordinates_geojson"
    wkt_location_field: str = "location_coordinates"
    snapshot_ttl_seconds: int = Field(60 * 60 * 24 * 7, ge=0)


class GeolocationSettings(BaseModel):
    timeout_seconds: float = Field(5.0, gt=0)


class LocationCacheSettings(BaseModel):
    backend: Literal["memory", "file"] = "file"
    profile_ttl_seconds: int = Field(60 * 30, ge=0)
    pending_ttl_seconds: int = Field(60 * 10, ge=0)


class GeocodingSettings(BaseModel):
    reverse_url: str
    user_agent: str = "workkar/0.1.0 (+https://local)"
    cache_ttl_seconds: int = 60 * 60 * 24 * 7
    coordinate_precision: int = Field(4, ge=0, le=8)


class RankingSettings(BaseModel):
    page_size: int = Field(6, ge=1, le=100)
    default_sort: Literal["distance", "rating"] = "distance"


class Settings(BaseModel):
    app: AppSettings = Field(default_factory=AppSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    backend: BackendSettings
    geolocation: GeolocationSettings = Field(default_factory=GeolocationSettings)
    location_cache: LocationCacheSettings = Field(default_factory=LocationCacheSettings)
    geocoding: GeocodingSettings
    ranking: RankingSettings = Field(default_factory=RankingSettings)


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Overlay selected environment variables onto raw settings payload.

    Note: We intentionally keep this whitelist small to avoid exposing unsafe overrides.
    """
    load_dotenv_if_present()
    data = dict(data)
    cache_dir = os.getenv("WORKKAR_CACHE_DIR")
    if cache_dir:
        data.setdefault("cache", {})["dir"] = cache_dir

    log_level = os.getenv("WORKKAR_LOG_LEVEL")
    if log_level:
        data.setdefault("app", {})["log_level"] = log_level

    backend_url = os.getenv("WORKKAR_BACKEND_URL")
    backend_key = os.getenv("WORKKAR_BACKEND_KEY")
    if backend_url:
        data.setdefault("backend", {})["base_url"] = backend_url
    if backend_key:
        data.setdefault("backend", {})["api_key"] = backend_key

    return data


@lru_cache
def get_settings() -> Settings:
    """Load and validate settings (cached)."""
    load_dotenv_if_present()
    config_path = os.getenv("WORKKAR_CONFIG_PATH")
    raw = _read_yaml_file(config_path) if config_path else _read_package_yaml("defaults.yaml")
    raw = _apply_env_overrides(raw)
    return Settings.model_validate(raw)


@lru_cache
def get_logging_config() -> dict[str, Any]:
    """Load logging configuration (cached)."""
    return _read_package_yaml("logging.yaml")
