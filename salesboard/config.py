"""
Centralized configuration for the Salesboard sync pipeline.

This module provides a single source of truth for all configuration values.
Configuration is loaded from environment variables with sensible defaults.

Usage:
    from salesboard.config import config

    page_size = config.crm.page_size
    ttl = config.cache.memory_ttl_seconds
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, FrozenSet

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


@dataclass(frozen=True)
class CRMConfig:
    """OneUp CRM API configuration."""

    base_url: str = field(
        default_factory=lambda: os.getenv("ONEUP_BASE_URL", "https://api.oneup.com/v1")
    )
    api_email: str = field(default_factory=lambda: os.getenv("ONEUP_API_EMAIL", ""))
    api_key: str = field(default_factory=lambda: os.getenv("ONEUP_API_KEY", ""))
    page_size: int = field(default_factory=lambda: _env_int("ONEUP_PAGE_SIZE", 100))
    request_timeout: float = field(
        default_factory=lambda: _env_float("ONEUP_REQUEST_TIMEOUT", 60.0)
    )
    max_concurrent_requests: int = field(
        default_factory=lambda: _env_int("ONEUP_MAX_CONCURRENT_REQUESTS", 2)
    )
    max_attempts: int = field(default_factory=lambda: _env_int("ONEUP_MAX_ATTEMPTS", 3))
    retry_base_delay: float = 2.0
    retry_max_delay: float = 30.0
    employee_cache_minutes: int = field(
        default_factory=lambda: _env_int("ONEUP_EMPLOYEE_CACHE_MINUTES", 30)
    )
    employee_roster_limit: int = 1000


@dataclass(frozen=True)
class StoreConfig:
    """Local DuckDB store configuration."""

    db_path: str = field(
        default_factory=lambda: os.getenv("SALESBOARD_DB_PATH", "data/salesboard.duckdb")
    )
    query_timeout: float = 30.0
    long_query_timeout: float = 120.0


@dataclass(frozen=True)
class SyncConfig:
    """Sync orchestrator configuration."""

    # Older "running" entries are treated as orphaned and no longer block new runs
    lease_timeout_seconds: int = field(
        default_factory=lambda: _env_int("SYNC_LEASE_TIMEOUT_SECONDS", 3600)
    )
    page_delay_seconds: float = field(
        default_factory=lambda: _env_float("SYNC_PAGE_DELAY_SECONDS", 0.5)
    )
    max_pages: int = field(default_factory=lambda: _env_int("SYNC_MAX_PAGES", 10000))
    interval_minutes: int = field(default_factory=lambda: _env_int("SYNC_INTERVAL_MINUTES", 60))
    history_limit: int = 10
    sync_type: str = "invoices"


@dataclass(frozen=True)
class CacheConfig:
    """Client-side response cache configuration."""

    memory_ttl_seconds: int = field(
        default_factory=lambda: _env_int("CACHE_MEMORY_TTL_SECONDS", 1800)
    )
    memory_max_entries: int = field(
        default_factory=lambda: _env_int("CACHE_MEMORY_MAX_ENTRIES", 500)
    )
    session_ttl_seconds: int = field(
        default_factory=lambda: _env_int("CACHE_SESSION_TTL_SECONDS", 3600)
    )
    session_max_entries: int = field(
        default_factory=lambda: _env_int("CACHE_SESSION_MAX_ENTRIES", 50)
    )
    sweep_interval_seconds: int = field(
        default_factory=lambda: _env_int("CACHE_SWEEP_INTERVAL_SECONDS", 120)
    )
    compression_threshold: int = field(
        default_factory=lambda: _env_int("CACHE_COMPRESSION_THRESHOLD", 1000)
    )


@dataclass(frozen=True)
class CurrencyConfig:
    """Currency handling and conversion into the reference currency."""

    supported: FrozenSet[str] = frozenset({"USD", "PKR", "AED"})
    default: str = "USD"
    reference: str = field(default_factory=lambda: os.getenv("REFERENCE_CURRENCY", "PKR"))
    usd_to_pkr: Decimal = field(
        default_factory=lambda: Decimal(os.getenv("USD_TO_PKR_RATE", "280"))
    )
    aed_to_usd: Decimal = field(
        default_factory=lambda: Decimal(os.getenv("AED_TO_USD_RATE", "0.27"))
    )

    @property
    def rates(self) -> Dict[str, Decimal]:
        """Units of PKR per one unit of each supported currency."""
        return {
            "PKR": Decimal("1"),
            "USD": self.usd_to_pkr,
            "AED": self.aed_to_usd * self.usd_to_pkr,
        }


@dataclass(frozen=True)
class QueryConfig:
    """Query layer configuration."""

    default_page_size: int = field(default_factory=lambda: _env_int("DEFAULT_PAGE_SIZE", 100))
    max_page_size: int = 1000
    # Page size that explicitly requests every stored invoice
    all_records: int = -1


@dataclass(frozen=True)
class WebConfig:
    """Query surface (FastAPI) and dashboard client configuration."""

    host: str = "0.0.0.0"
    port: int = field(default_factory=lambda: _env_int("PORT", 8080))
    api_url: str = field(
        default_factory=lambda: os.getenv("DASHBOARD_API_URL", "http://localhost:8080/api")
    )
    api_token: str = field(default_factory=lambda: os.getenv("DASHBOARD_API_TOKEN", ""))
    client_timeout: float = 30.0
    request_timeout: float = field(default_factory=lambda: _env_float("REQUEST_TIMEOUT_SECONDS", 30.0))
    # Routes that read the whole store
    slow_request_timeout: float = 120.0


@dataclass(frozen=True)
class AppConfig:
    """Main application configuration."""

    version: str = "1.0.0"
    crm: CRMConfig = field(default_factory=CRMConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    currency: CurrencyConfig = field(default_factory=CurrencyConfig)
    query: QueryConfig = field(default_factory=QueryConfig)
    web: WebConfig = field(default_factory=WebConfig)


# Global config instance
config = AppConfig()


# ─── Convenience Exports ──────────────────────────────────────────────────────
VERSION = config.version
ALL_RECORDS = config.query.all_records
REFERENCE_CURRENCY = config.currency.reference


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""
    pass


def validate_config(app_config: AppConfig = None, require_crm: bool = True) -> None:
    """
    Validate that all required configuration is present.

    Call this on application startup to fail fast with clear error messages
    instead of cryptic runtime failures.

    Args:
        app_config: Configuration to check (defaults to the global config)
        require_crm: If True, validate CRM credentials (for the sync backend)

    Raises:
        ConfigurationError: If required configuration is missing
    """
    cfg = app_config or config
    errors = []

    if require_crm:
        if not cfg.crm.api_email:
            errors.append("ONEUP_API_EMAIL is required but not set")
        if not cfg.crm.api_key:
            errors.append("ONEUP_API_KEY is required but not set")

    if cfg.crm.page_size <= 0:
        errors.append("ONEUP_PAGE_SIZE must be greater than 0")

    if cfg.crm.max_concurrent_requests <= 0:
        errors.append("ONEUP_MAX_CONCURRENT_REQUESTS must be greater than 0")

    if cfg.crm.max_attempts <= 0:
        errors.append("ONEUP_MAX_ATTEMPTS must be greater than 0")

    if cfg.sync.lease_timeout_seconds <= 0:
        errors.append("SYNC_LEASE_TIMEOUT_SECONDS must be greater than 0")

    if cfg.currency.reference not in cfg.currency.rates:
        errors.append(
            f"REFERENCE_CURRENCY {cfg.currency.reference!r} has no conversion rate"
        )

    if errors:
        error_msg = "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        raise ConfigurationError(error_msg)
