"""Application configuration helpers.

Runtime settings come from the environment (optionally via a `.env` file).
Algorithm constants that tests need to tune live in the small frozen
`NormalizerConfig` / `MatcherConfig` dataclasses and are handed to the
normalizer and matcher at construction time.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional, Tuple

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

ALL_SOURCES: Tuple[str, ...] = ("maps", "directory", "eventbrite", "punch")
DEFAULT_REGIONS: Tuple[str, ...] = ("Lagos", "FCT", "Rivers", "Oyo", "Kano")


class ConfigError(RuntimeError):
    """Raised when mandatory configuration is missing."""


@dataclass(frozen=True)
class Settings:
    database_url: str = ""
    serpapi_api_key: str = ""
    notify_webhook_url: str = ""
    export_dir: str = "data/exports"
    worker_port: int = 9000
    collector_concurrency: int = 4
    collector_timeout_seconds: float = 900.0
    request_timeout_seconds: float = 30.0
    request_delay_seconds: float = 1.5
    max_pages: int = 3
    queue_workers: int = 1
    job_max_attempts: int = 3
    job_backoff_seconds: float = 60.0
    retention_days: int = 7
    schedule_timezone: str = "Africa/Lagos"
    default_sources: Tuple[str, ...] = ALL_SOURCES
    default_regions: Tuple[str, ...] = DEFAULT_REGIONS
    enrich_websites: bool = False
    user_agent: str = "SupplierDirectoryBot/1.0 (+https://example.com/bot)"


@dataclass(frozen=True)
class NormalizerConfig:
    """Phone rules, confidence increments and approval threshold.

    Defaults reproduce the production scoring: a supplier with explicit
    wholesale language, a phone and a resolved state lands around 0.8.
    """

    country_code: str = "234"
    national_number_length: int = 10
    base_confidence: float = 0.5
    professional_language_bonus: float = 0.2
    moq_bonus: float = 0.1
    phone_bonus: float = 0.05
    whatsapp_bonus: float = 0.05
    email_bonus: float = 0.05
    region_bonus: float = 0.05
    registration_bonus: float = 0.1
    multi_category_bonus: float = 0.05
    no_trade_terms_penalty: float = 0.1
    professional_language_cutoff: float = 0.3
    approval_threshold: float = 0.6
    max_evidence_snippets: int = 10
    event_base_confidence: float = 0.6
    event_date_bonus: float = 0.1
    event_venue_bonus: float = 0.05
    event_contact_bonus: float = 0.15
    event_region_bonus: float = 0.05
    event_confidence_cap: float = 0.95


@dataclass(frozen=True)
class MatcherConfig:
    name_weight: float = 0.4
    phone_weight: float = 0.3
    region_weight: float = 0.1
    web_or_email_weight: float = 0.2
    auto_merge_threshold: float = 0.95
    review_threshold: float = 0.70


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("%s=%r is not an integer; using %s", name, raw, default)
        return default


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("%s=%r is not a number; using %s", name, raw, default)
        return default


def _get_list(name: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    raw = os.getenv(name)
    if not raw:
        return default
    values = tuple(part.strip() for part in raw.split(",") if part.strip())
    return values or default


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    load_dotenv()

    database_url = os.getenv("DATABASE_URL", "")
    serpapi_api_key = os.getenv("SERPAPI_API_KEY", "")
    notify_webhook_url = os.getenv("NOTIFY_WEBHOOK_URL", "")

    if not database_url:
        logger.warning("DATABASE_URL is not set; records will be kept in memory only.")
    if not serpapi_api_key:
        logger.warning("SERPAPI_API_KEY is not configured; the maps collector will fail.")
    if not notify_webhook_url:
        logger.warning("NOTIFY_WEBHOOK_URL is not configured; run notifications will be skipped.")

    return Settings(
        database_url=database_url,
        serpapi_api_key=serpapi_api_key,
        notify_webhook_url=notify_webhook_url,
        export_dir=os.getenv("EXPORT_DIR", "data/exports"),
        worker_port=_get_int("WORKER_PORT", 9000),
        collector_concurrency=max(1, _get_int("COLLECTOR_CONCURRENCY", 4)),
        collector_timeout_seconds=_get_float("COLLECTOR_TIMEOUT_SECONDS", 900.0),
        request_timeout_seconds=_get_float("REQUEST_TIMEOUT_SECONDS", 30.0),
        request_delay_seconds=_get_float("REQUEST_DELAY_SECONDS", 1.5),
        max_pages=_get_int("WORKER_MAX_PAGES", 3),
        queue_workers=max(1, _get_int("QUEUE_WORKERS", 1)),
        job_max_attempts=max(1, _get_int("JOB_MAX_ATTEMPTS", 3)),
        job_backoff_seconds=_get_float("JOB_BACKOFF_SECONDS", 60.0),
        retention_days=_get_int("RETENTION_DAYS", 7),
        schedule_timezone=os.getenv("SCHEDULE_TIMEZONE", "Africa/Lagos"),
        default_sources=_get_list("DEFAULT_SOURCES", ALL_SOURCES),
        default_regions=_get_list("DEFAULT_REGIONS", DEFAULT_REGIONS),
        enrich_websites=os.getenv("ENRICH_WEBSITES", "false").lower() in {"1", "true", "yes"},
        user_agent=os.getenv("USER_AGENT") or Settings.user_agent,
    )


def require_serpapi_key(settings: Optional[Settings] = None) -> str:
    settings = settings or get_settings()
    if not settings.serpapi_api_key:
        raise ConfigError("SERPAPI_API_KEY must be set in the environment for the maps collector to run.")
    return settings.serpapi_api_key
