from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    environment: str = "dev"
    api_base_url: str = "http://localhost:8000"
    module_id: str = "local-ingestor"
    api_key: str = "local-ingestor-key"
    api_timeout_seconds: float = 10.0
    extraction_api_key: str | None = None
    extraction_base_url: str | None = "https://generativelanguage.googleapis.com/v1beta/openai/"
    extraction_model: str = "gemini-2.0-flash"
    extraction_timeout_seconds: float = 60.0
    extraction_max_tokens: int = 8000
    batch_size: int = 7
    fetch_timeout_seconds: float = 20.0
    max_document_chars: int = 200_000
    upload_chunk_size: int = 200
    source_registry_path: str | None = None
    source_registry_json: str | None = None
    run_interval_seconds: float = 21600.0
    max_backoff_seconds: float = 900.0
    otel_enabled: bool = True
    otel_service_name: str = "cardshow-curator-worker"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="CC_WORKER_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
