"""
Runtime configuration read from environment variables.

Variables are loaded from the project-root .env file by app.main before
the settings are first requested.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path

TRUE_VALUES = {"1", "true", "yes", "on"}


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in TRUE_VALUES


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}") from None


@dataclass(frozen=True)
class Settings:
    environment: str = "development"
    store_backend: str = "firestore"
    local_data_dir: Path = field(
        default_factory=lambda: Path(__file__).resolve().parents[2] / "data"
    )
    default_currency: str = "EUR"
    apply_rules_on_import: bool = True
    max_rows_per_file: int = 10000
    log_level: str = "INFO"
    frontend_origins: tuple[str, ...] = ()

    @classmethod
    def from_env(cls) -> "Settings":
        defaults = cls()
        data_dir = os.environ.get("LOCAL_DATA_DIR")
        origins = os.environ.get("FRONTEND_ORIGINS", "")
        store_backend = os.environ.get("STORE_BACKEND", defaults.store_backend).strip().lower()
        if store_backend not in {"firestore", "local"}:
            raise ValueError(f"Unsupported STORE_BACKEND: {store_backend!r}")

        return cls(
            environment=os.environ.get("ENVIRONMENT", defaults.environment),
            store_backend=store_backend,
            local_data_dir=Path(data_dir) if data_dir else defaults.local_data_dir,
            default_currency=os.environ.get("DEFAULT_CURRENCY", defaults.default_currency),
            apply_rules_on_import=_env_bool("APPLY_RULES_ON_IMPORT", defaults.apply_rules_on_import),
            max_rows_per_file=_env_int("MAX_ROWS_PER_FILE", defaults.max_rows_per_file),
            log_level=os.environ.get("LOG_LEVEL", defaults.log_level).upper(),
            frontend_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()
