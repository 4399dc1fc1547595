"""
`.env` loading and cache-dir path resolution.

Backend credentials (`WORKKAR_BACKEND_URL`, `WORKKAR_BACKEND_KEY`) usually live in a
`.env` next to `pyproject.toml`. Relative settings paths (the cache dir) are
anchored at that same directory so the API, CLI and tests share one cache.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from dotenv import find_dotenv, load_dotenv


@lru_cache
def get_project_root() -> Path:
    """`WORKKAR_PROJECT_ROOT`, else the nearest parent of cwd holding `pyproject.toml`, else cwd."""
    override = os.getenv("WORKKAR_PROJECT_ROOT")
    if override:
        return Path(override).expanduser().resolve()
    cwd = Path.cwd().resolve()
    for candidate in (cwd, *cwd.parents):
        if (candidate / "pyproject.toml").is_file():
            return candidate
    return cwd


@lru_cache
def load_dotenv_if_present() -> Path | None:
    """Load `.env` once (`WORKKAR_ENV_FILE` or the nearest one up from cwd); env vars already set win."""
    explicit = os.getenv("WORKKAR_ENV_FILE")
    found = Path(explicit).expanduser() if explicit else Path(find_dotenv(usecwd=True) or os.devnull)
    if not found.is_file():
        return None
    load_dotenv(dotenv_path=found, override=False)
    return found.resolve()


def resolve_project_path(path: str | Path) -> Path:
    p = Path(path).expanduser()
    if p.is_absolute():
        return p
    return (get_project_root() / p).resolve()
