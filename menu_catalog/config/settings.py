"""Configuration loading for the menu catalog service.

Rules:
- Primary source: ``catalog_config.json`` at the working directory root.
- Overrides: environment variables, then optional text files under ``config/``.
- Validation: Pydantic models enforce required fields and value constraints.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, field_validator


CONFIG_DIR = Path("config")
ROOT_CATALOG_CONFIG = Path("catalog_config.json")
DEFAULT_DSN = "sqlite+pysqlite:///./menu_catalog.db"
logger = logging.getLogger(__name__)


def _read_config_file(rel_path: str) -> Optional[str]:
    path = CONFIG_DIR / rel_path
    try:
        if path.exists():
            return path.read_text(encoding="utf-8").strip()
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("Failed to read override %s: %s", path, e)
        return None
    return None


def _env(key: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(key, default)


def _truthy(text: Optional[str]) -> bool:
    return str(text).strip().lower() in {"1", "true", "yes", "on"}


class DatabaseConfig(BaseModel):
    dsn: str
    auto_apply_migrations: bool = Field(default=True)
    sqlite_busy_timeout_s: float = Field(default=30.0, gt=0)

    @field_validator("dsn")
    @classmethod
    def dsn_must_be_non_empty(cls, v: str) -> str:
        if not isinstance(v, str) or not v.strip():
            raise ValueError("database.dsn must be a non-empty string")
        return v


class OrderingConfig(BaseModel):
    max_retries: int = Field(default=3, ge=0)
    retry_backoff_ms: int = Field(default=25, ge=0)
    verify_invariants: bool = Field(default=True)


class EventsConfig(BaseModel):
    buffer_size: int = Field(default=1000, ge=1)


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = Field(default=4000, gt=0, lt=65536)


class AppConfig(BaseModel):
    database: DatabaseConfig
    ordering: OrderingConfig
    server: ServerConfig
    events: EventsConfig = Field(default_factory=EventsConfig)


def _read_json_file(path: Path) -> dict:
    try:
        if path.exists():
            return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.error("Failed to read JSON config %s: %s", path, e)
    return {}


def load_config() -> AppConfig:
    """Load configuration with validation.

    Precedence (highest first):
    1) Environment variables
    2) Text files in ``config/`` (optional)
    3) catalog_config.json at project root
    4) Defaults suitable for local development
    """

    base = _read_json_file(ROOT_CATALOG_CONFIG)

    def _base(path: str, default: Optional[str] = None) -> Optional[str]:
        cur: object = base
        for key in path.split("."):
            if not isinstance(cur, dict) or key not in cur:
                return default
            cur = cur[key]
        return str(cur) if cur is not None else default

    dsn = (
        _env("TEST_DATABASE_URL")
        or _env("DATABASE_URL")
        or _read_config_file("database.url")
        or _base("database.dsn")
        or DEFAULT_DSN
    )
    auto_migrate = _env("AUTO_APPLY_MIGRATIONS") or _read_config_file("database.auto_apply_migrations") or _base("database.auto_apply_migrations", "true")
    busy_timeout = _env("SQLITE_BUSY_TIMEOUT_S") or _base("database.sqlite_busy_timeout_s", "30")

    max_retries = _env("ORDERING_MAX_RETRIES") or _read_config_file("ordering.max_retries") or _base("ordering.max_retries", "3")
    backoff_ms = _env("ORDERING_RETRY_BACKOFF_MS") or _base("ordering.retry_backoff_ms", "25")
    verify = _env("ORDERING_VERIFY_INVARIANTS") or _base("ordering.verify_invariants", "true")

    event_buffer = _env("EVENT_BUFFER_SIZE") or _base("events.buffer_size", "1000")

    host = _env("HOST") or _base("server.host", "0.0.0.0")
    port = _env("PORT") or _base("server.port", "4000")

    try:
        return AppConfig(
            database=DatabaseConfig(
                dsn=dsn,
                auto_apply_migrations=_truthy(auto_migrate),
                sqlite_busy_timeout_s=float(str(busy_timeout).strip()),
            ),
            ordering=OrderingConfig(
                max_retries=int(str(max_retries).strip()),
                retry_backoff_ms=int(str(backoff_ms).strip()),
                verify_invariants=_truthy(verify),
            ),
            server=ServerConfig(host=str(host), port=int(str(port).strip())),
            events=EventsConfig(buffer_size=int(str(event_buffer).strip())),
        )
    except PydanticValidationError as e:
        logger.error("Invalid application configuration: %s", e)
        raise


__all__ = [
    "AppConfig",
    "DatabaseConfig",
    "OrderingConfig",
    "ServerConfig",
    "EventsConfig",
    "load_config",
]
