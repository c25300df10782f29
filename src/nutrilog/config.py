"""Application configuration."""

import logging
import os
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic_settings import BaseSettings, SettingsConfigDict

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")

_logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    supabase_url: str
    supabase_service_key: str
    openai_api_key: str
    openai_model: str = "gpt-5.2"
    openai_reasoning_effort: str = "low"
    openai_store: bool = False
    off_base_url: str = "https://world.openfoodfacts.org"
    timezone: str = "UTC"
    log_level: str = "INFO"
    branded_barcode_min_confidence: float = 95.0
    branded_only_min_confidence: float = 90.0
    strong_brand_min_confidence: float = 95.0
    generic_weak_max_confidence: float = 70.0
    fallback_confidence: float = 0.4
    step_timeout_seconds: float = 30.0
    pipeline_timeout_seconds: float = 90.0
    dedup_window_seconds: float = 10.0
    reconnect_base_seconds: float = 1.0
    reconnect_cap_seconds: float = 30.0
    resolution_cache_ttl_seconds: int = 3600
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )


def parse_timezone(raw: str | None) -> ZoneInfo:
    """Return a ZoneInfo for the configured name, falling back to UTC."""
    if raw is None or not raw.strip():
        return ZoneInfo("UTC")
    try:
        return ZoneInfo(raw.strip())
    except (ZoneInfoNotFoundError, ValueError):
        _logger.warning("Unknown timezone %r, using UTC", raw)
        return ZoneInfo("UTC")
