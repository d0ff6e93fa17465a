from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic import AnyHttpUrl, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """App configuration (env-friendly).

    Tip: create a .env file and override settings there.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    app_name: str = "Farmers Market Search API"
    version: str = "0.1.0"
    log_level: str = "INFO"

    # "postgrest" talks to the hosted Postgres REST endpoint, "memory" serves a local JSON dump.
    store_backend: Literal["postgrest", "memory"] = "postgrest"

    postgrest_url: AnyHttpUrl = "http://localhost:54321/rest/v1"
    postgrest_api_key: Optional[str] = None
    markets_table: str = "markets"
    http_timeout_s: float = 10.0

    market_data_path: Optional[str] = None

    # Rows requested from the store when a radius search has to filter in process.
    geo_overfetch_cap: int = Field(2000, ge=1)
    geo_bbox_pushdown: bool = False

    # When true, a partial or malformed lat/lng/radius triple is a 400 instead of being ignored.
    strict_geo: bool = False


@lru_cache
def get_settings() -> Settings:
    return Settings()
