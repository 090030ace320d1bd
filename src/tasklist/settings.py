from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List

BACKENDS = ("json", "sqlite", "memory")

_DEFAULT_PATHS = {
    "json": "./data/tasks.json",
    "sqlite": "./data/tasks.db",
    "memory": "",
}


@dataclass(frozen=True)
class Settings:
    """
    Application settings loaded from environment variables.

    Env vars:
    - TASKLIST_BACKEND: 'json' (default), 'sqlite' or 'memory'
    - TASKLIST_DATA_PATH: storage file. Default './data/tasks.json' (json) or './data/tasks.db' (sqlite)
    - CORS_ALLOW_ORIGINS: comma-separated list of allowed origins; '*' by default
    - LOG_LEVEL: logging level name, 'INFO' by default
    """

    persistence_backend: str = "json"
    data_path: str = _DEFAULT_PATHS["json"]
    cors_allow_origins: List[str] = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"


def _get_env(name: str, default: str) -> str:
    value = os.getenv(name, default)
    if value is None or value == "":
        return default
    return value


def _parse_origins(origins_value: str) -> List[str]:
    """
    Parse CORS origins from env. Supports:
    - '*' to allow all origins
    - Comma-separated list of origins
    """
    value = origins_value.strip()
    if value == "*":
        return ["*"]
    return [o.strip() for o in value.split(",") if o.strip()]


# PUBLIC_INTERFACE
def get_settings() -> Settings:
    """Return application settings loaded from environment variables."""
    backend = _get_env("TASKLIST_BACKEND", "json").strip().lower()
    if backend not in BACKENDS:
        raise ValueError(
            f"TASKLIST_BACKEND must be one of {', '.join(BACKENDS)}; got {backend!r}"
        )

    data_path = _get_env("TASKLIST_DATA_PATH", _DEFAULT_PATHS[backend]).strip()
    origins = _parse_origins(_get_env("CORS_ALLOW_ORIGINS", "*"))
    log_level = _get_env("LOG_LEVEL", "INFO").strip().upper()

    return Settings(
        persistence_backend=backend,
        data_path=data_path,
        cors_allow_origins=origins,
        log_level=log_level,
    )
