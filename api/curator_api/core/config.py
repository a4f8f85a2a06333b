from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "cardshow-curator-api"
    environment: str = "dev"
    api_key_header: str = "X-API-Key"
    storage_backend: Literal["auto", "postgres", "memory"] = "auto"
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 10
    database_command_timeout_seconds: float = 15.0
    ingest_max_candidates_per_request: int = 200
    rescore_batch_limit: int = 500
    batch_max_ids: int = 100
    duplicate_scan_limit: int = 1000
    dev_module_id: str | None = None
    dev_module_api_key: str | None = None
    supabase_url: str | None = None
    supabase_anon_key: str | None = None
    auth_timeout_seconds: float = 5.0
    log_level: str = "INFO"
    otel_enabled: bool = True
    otel_service_name: str = "cardshow-curator-api"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0

    model_config = SettingsConfigDict(env_prefix="CC_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
