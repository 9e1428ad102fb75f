# config.py

"""Application configuration utilities.

Values are primarily loaded from ``config.json`` and may be overridden by
environment variables. The :func:`get_settings` helper merges the two sources
and caches the result.
"""

from __future__ import annotations

import json
import os
from enum import Enum
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict


class StoreBackend(str, Enum):
    """Select where table, order, menu and payment documents live.

    ``MEMORY`` keeps everything in-process and is used for demos and tests.
    ``SQL`` persists documents through SQLAlchemy into ``database_url``.
    """

    MEMORY = "memory"
    SQL = "sql"


class TableArea(BaseModel):
    """One seating area of the venue and how many tables it holds."""

    id: str
    name: str
    total_tables: int


DEFAULT_AREAS = [
    TableArea(id="tang1", name="Tầng 1", total_tables=12),
    TableArea(id="tang2", name="Tầng 2", total_tables=8),
    TableArea(id="sanvuon", name="Sân vườn", total_tables=6),
    TableArea(id="vip", name="VIP", total_tables=4),
]


class Settings(BaseSettings):
    """Application settings merged from JSON and environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    store_backend: StoreBackend = StoreBackend.MEMORY
    database_url: str = "sqlite+aiosqlite:///./smartorder.db"
    redis_url: str | None = None
    payos_client_id: str | None = None
    payos_api_key: str | None = None
    payos_checksum_key: str | None = None
    payos_api_base_url: str = "https://api-merchant.payos.vn"
    payos_return_url: str = "smartorder://payment-result?status=success"
    payos_cancel_url: str = "smartorder://payment-result?status=cancel"
    payos_timeout_secs: float = 10.0
    log_level: str = "INFO"
    error_dsn: str | None = None
    table_areas: list[TableArea] = DEFAULT_AREAS

    @property
    def gateway_configured(self) -> bool:
        return bool(
            self.payos_client_id and self.payos_api_key and self.payos_checksum_key
        )


# Cached singleton to avoid repeated file reads
@lru_cache
def get_settings() -> Settings:
    """Return merged settings with environment variable precedence.

    The configuration is read from ``config.json`` located alongside this file
    and fed into :class:`Settings`. Environment variables override any values
    from the JSON file. The result is cached to prevent repeated disk reads.
    """

    config_path = Path(__file__).with_name("config.json")
    data = json.loads(config_path.read_text()) if config_path.exists() else {}
    env_override = {
        k.lower(): v
        for k, v in os.environ.items()
        if k.lower() in Settings.model_fields
    }
    merged = {**data, **env_override}
    # Environment variables override values from the JSON file.
    return Settings(**merged)
