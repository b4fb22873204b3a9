from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from fintrack.currency_conversion import (
    CompositeRateProvider,
    FrankfurterRateProvider,
    RateProvider,
    StaticRateProvider,
    normalize_currency,
)
from fintrack.history import DEFAULT_HISTORY_MONTHS


@dataclass(frozen=True)
class Settings:
    default_currency: str = "USD"
    fx_provider: str = "frankfurter"
    fx_base_url: str = "https://api.frankfurter.app"
    fx_cache_ttl_seconds: int = 12 * 60 * 60
    history_months: int = DEFAULT_HISTORY_MONTHS
    frontend_origin: str = "http://localhost:3000"
    log_level: str = "INFO"
    log_json: bool = True


def get_system_default_currency() -> str:
    raw = os.getenv("DEFAULT_CURRENCY", "USD")
    try:
        return normalize_currency(raw)
    except ValueError:
        return "USD"


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


@lru_cache
def get_settings() -> Settings:
    return Settings(
        default_currency=get_system_default_currency(),
        fx_provider=os.getenv("FX_PROVIDER", "frankfurter").strip().lower(),
        fx_base_url=os.getenv("FX_BASE_URL", "https://api.frankfurter.app"),
        fx_cache_ttl_seconds=_int_env("FX_CACHE_TTL_SECONDS", 12 * 60 * 60),
        history_months=_int_env("HISTORY_MONTHS", DEFAULT_HISTORY_MONTHS),
        frontend_origin=os.getenv("FRONTEND_ORIGIN", "http://localhost:3000"),
        log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper(),
        log_json=os.getenv("LOG_JSON", "true").strip().lower() not in {"0", "false", "no"},
    )


def build_rate_provider(settings: Settings) -> RateProvider:
    fallback = StaticRateProvider()
    if settings.fx_provider == "static":
        return fallback
    return CompositeRateProvider(
        primary=FrankfurterRateProvider(
            base_url=settings.fx_base_url,
            cache_ttl_seconds=settings.fx_cache_ttl_seconds,
        ),
        fallback=fallback,
    )
