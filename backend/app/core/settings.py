from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "incremental-gloss"
    api_prefix: str = "/v1"
    log_level: str = "INFO"
    storage_backend: Literal["memory", "redis"] = "memory"
    redis_url: str = "redis://redis:6379/0"
    sync_scope_prefix: str = "gloss:sync:"
    local_scope_prefix: str = "gloss:local:"

    # page-side scheduling
    max_units_per_batch: int = Field(default=15, ge=1)
    max_chars_per_batch: int = Field(default=10000, ge=1)
    max_concurrent_batches: int = Field(default=3, ge=1)
    in_flight_timeout_sec: float = 60.0
    stale_sweep_interval_sec: float = 10.0
    debounce_delay_sec: float = 0.3
    prefetch_margin_px: float = 800.0
    min_unit_chars: int = 50

    # fingerprint cache
    cache_max_entries: int = Field(default=500, ge=1)
    cache_ttl_sec: float = 7 * 24 * 60 * 60
    cache_version: int = 1
    cache_evict_trigger_ratio: float = 0.95
    cache_evict_fraction: float = 0.1
    cache_persist_delay_sec: float = 1.0
    cache_storage_key: str = "paragraph_cache"
    cache_maintenance_interval_sec: float = 3600.0

    # provider
    provider_id: str = "openai"
    provider_api_format: Literal["openai", "anthropic"] = "openai"
    provider_model: str = "gpt-4o-mini"
    provider_api_key: str | None = None
    provider_base_url: str | None = None
    provider_timeout_sec: int = 60
    translation_temperature: float = 0.3
    retry_max_attempts: int = Field(default=4, ge=1)
    retry_initial_delay_sec: float = 1.5
    retry_backoff_multiplier: float = 2.0
    retry_max_delay_sec: float = 20.0

    # local filter
    filter_policy: Literal["any", "ratio"] = "any"
    filter_min_ratio: float = 0.05
    cjk_skip_ratio: float = 0.2
    vocabulary_bands: list[tuple[int, int]] = Field(default_factory=lambda: [(3000, 2), (5000, 3), (8000, 5)])
    vocabulary_top_threshold: int = 7


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    settings = Settings()
    settings.vocabulary_bands = sorted(settings.vocabulary_bands)
    settings.cache_evict_trigger_ratio = max(0.1, min(1.0, settings.cache_evict_trigger_ratio))
    return settings
