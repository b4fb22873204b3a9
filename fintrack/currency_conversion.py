from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal, DecimalException
import json
import time
from types import MappingProxyType
from typing import Callable, Iterable, Mapping, Protocol
from urllib.error import HTTPError, URLError
from urllib.request import urlopen

import structlog

from fintrack.money import coerce_decimal, round_money
from fintrack.months import month_key, month_start, normalize_month_key, parse_month_value

logger = structlog.get_logger(__name__)

DEFAULT_RATES: dict[str, Decimal] = {
    "USD": Decimal("1"),
    "EUR": Decimal("0.92"),
    "GBP": Decimal("0.79"),
    "JPY": Decimal("147.50"),
    "CAD": Decimal("1.34"),
    "AUD": Decimal("1.52"),
    "NZD": Decimal("1.64"),
    "CHF": Decimal("0.88"),
    "SEK": Decimal("10.45"),
}


class RateProviderUnavailable(RuntimeError):
    """Raised when a rate provider cannot fetch live rates."""


class ExchangeRateIntegrityError(ArithmeticError):
    """Raised when a conversion would produce a non-finite amount."""


@dataclass(frozen=True)
class RateCache:
    """Rate snapshot for one as-of month.

    Rates are expressed as units of each currency per 1 unit of
    ``base_currency``. A missing currency is reported as ``None`` by
    ``rate_for`` so callers can degrade instead of failing.
    """

    as_of: date
    base_currency: str = "USD"
    rates: Mapping[str, Decimal] | None = None
    fetched_at: datetime | None = None

    def __post_init__(self) -> None:
        base_currency = normalize_currency(self.base_currency)
        parsed = {
            normalize_currency(code): coerce_decimal(value)
            for code, value in (self.rates or {}).items()
        }
        parsed.setdefault(base_currency, Decimal("1"))
        object.__setattr__(self, "as_of", parse_month_value(self.as_of))
        object.__setattr__(self, "base_currency", base_currency)
        object.__setattr__(self, "rates", MappingProxyType(parsed))

    @property
    def month_key(self) -> str:
        return month_key(self.as_of)

    def rate_for(self, currency: str) -> Decimal | None:
        return self.rates.get(normalize_currency(currency))


class RateProvider(Protocol):
    def build_rate_cache(self, month: str | date) -> RateCache: ...


@dataclass(frozen=True)
class StaticRateProvider:
    """Deterministic, in-memory FX rates.

    Rates are expressed as target currency per 1 USD.
    """

    rates: Mapping[str, Decimal] | None = None
    base_currency: str = "USD"

    def __post_init__(self) -> None:
        object.__setattr__(self, "rates", dict(self.rates or DEFAULT_RATES))

    def build_rate_cache(self, month: str | date) -> RateCache:
        return RateCache(
            as_of=parse_month_value(month),
            base_currency=self.base_currency,
            rates=self.rates,
        )


@dataclass(frozen=True)
class CachedRates:
    rates: Mapping[str, Decimal]
    fetched_at: datetime
    expires_at: float | None


@dataclass
class FrankfurterRateProvider:
    base_currency: str = "USD"
    base_url: str = "https://api.frankfurter.app"
    cache_ttl_seconds: int = 12 * 60 * 60
    today: Callable[[], date] = date.today
    _cache: dict[tuple[str, str], CachedRates] = field(default_factory=dict)

    def build_rate_cache(self, month: str | date) -> RateCache:
        base_currency = normalize_currency(self.base_currency)
        month_date = parse_month_value(month)
        # The running month has no first-of-month snapshot worth pinning yet.
        date_key = None if month_date >= month_start(self.today()) else month_date.isoformat()
        cached = self._get_rates(base_currency, date_key)
        return RateCache(
            as_of=month_date,
            base_currency=base_currency,
            rates=cached.rates,
            fetched_at=cached.fetched_at,
        )

    def _get_rates(self, base_currency: str, date_key: str | None) -> CachedRates:
        cache_key = (base_currency, date_key or "latest")
        cached = self._cache.get(cache_key)
        now = time.monotonic()
        if cached and (cached.expires_at is None or cached.expires_at > now):
            return cached

        rates = self._fetch_rates(base_currency, date_key)
        expires_at = None
        if date_key is None:
            expires_at = now + self.cache_ttl_seconds
        cached = CachedRates(
            rates=rates,
            fetched_at=datetime.now(timezone.utc),
            expires_at=expires_at,
        )
        self._cache[cache_key] = cached
        return cached

    def _fetch_rates(self, base_currency: str, date_key: str | None) -> Mapping[str, Decimal]:
        endpoint = date_key or "latest"
        url = f"{self.base_url}/{endpoint}?from={base_currency}"
        try:
            with urlopen(url, timeout=8) as response:
                payload = json.load(response)
        except (HTTPError, URLError, TimeoutError, json.JSONDecodeError) as exc:
            raise RateProviderUnavailable("Frankfurter API unavailable") from exc

        rates = payload.get("rates")
        if not isinstance(rates, dict):
            raise RateProviderUnavailable("Frankfurter response missing rates")

        parsed = {normalize_currency(code): Decimal(str(value)) for code, value in rates.items()}
        parsed[base_currency] = Decimal("1")
        return parsed


@dataclass(frozen=True)
class CompositeRateProvider:
    primary: RateProvider
    fallback: StaticRateProvider

    def build_rate_cache(self, month: str | date) -> RateCache:
        try:
            return self.primary.build_rate_cache(month)
        except RateProviderUnavailable as exc:
            logger.warning(
                "fx_provider_fallback",
                month=normalize_month_key(month),
                reason=str(exc),
            )
            return self.fallback.build_rate_cache(month)


@dataclass(frozen=True)
class MonthlyRates:
    """One rate cache per distinct month, with the current month as fallback."""

    current_month: str
    caches: Mapping[str, RateCache] | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "current_month", normalize_month_key(self.current_month))
        caches = {
            normalize_month_key(key): cache for key, cache in (self.caches or {}).items()
        }
        object.__setattr__(self, "caches", MappingProxyType(caches))

    @property
    def current(self) -> RateCache | None:
        return self.caches.get(self.current_month)

    @property
    def last_updated(self) -> datetime | None:
        stamps = [cache.fetched_at for cache in self.caches.values() if cache.fetched_at]
        return max(stamps) if stamps else None

    def for_month(self, month: str | date | None) -> RateCache | None:
        if month is None:
            return self.current
        return self.caches.get(normalize_month_key(month)) or self.current

    def convert(
        self,
        amount: Decimal | int | float | str,
        source_currency: str,
        target_currency: str | None,
        month: str | date | None = None,
    ) -> Decimal:
        cache = self.for_month(month)
        fallback = self.current if cache is not self.current else None
        return convert_amount(
            amount,
            source_currency,
            target_currency,
            cache,
            fallback=fallback,
        )


async def load_monthly_rates(
    provider: RateProvider,
    months: Iterable[str | date],
    current_month: str | date,
    preloaded: Mapping[str, RateCache] | None = None,
) -> MonthlyRates:
    """Build exactly one cache per distinct month key.

    Snapshots already present in ``preloaded`` are reused rather than
    requested again. Missing months are fetched concurrently, each in a
    worker thread since providers block on I/O.
    """
    current_key = normalize_month_key(current_month)
    caches = {normalize_month_key(key): cache for key, cache in (preloaded or {}).items()}
    keys = sorted({normalize_month_key(value) for value in months} | {current_key})
    missing = [key for key in keys if key not in caches]
    fetched = await asyncio.gather(
        *(asyncio.to_thread(provider.build_rate_cache, key) for key in missing)
    )
    caches.update(zip(missing, fetched))
    logger.debug("rate_caches_loaded", months=keys, fetched=missing)
    return MonthlyRates(current_month=current_key, caches=caches)


def convert_amount(
    amount: Decimal | int | float | str,
    source_currency: str,
    target_currency: str | None,
    cache: RateCache | None,
    fallback: RateCache | None = None,
) -> Decimal:
    """Convert a monetary amount using a rate snapshot.

    Identity when the target is unset or matches the source. When neither
    ``cache`` nor ``fallback`` knows both currencies the amount is returned
    unconverted.
    """
    coerced_amount = coerce_decimal(amount)
    if not target_currency:
        return coerced_amount

    normalized_source = normalize_currency(source_currency)
    normalized_target = normalize_currency(target_currency)
    if normalized_source == normalized_target:
        return coerced_amount

    for candidate in (cache, fallback):
        if candidate is None:
            continue
        source_rate = candidate.rate_for(normalized_source)
        target_rate = candidate.rate_for(normalized_target)
        if source_rate is None or target_rate is None:
            continue
        return _apply_rates(coerced_amount, source_rate, target_rate, candidate)

    logger.warning(
        "fx_rate_missing",
        source_currency=normalized_source,
        target_currency=normalized_target,
        month=cache.month_key if cache else None,
    )
    return coerced_amount


def normalize_currency(value: str) -> str:
    normalized = value.strip().upper()
    if len(normalized) != 3 or not normalized.isalpha():
        raise ValueError("Currency must be a 3-letter ISO 4217 code.")
    return normalized


def _apply_rates(
    amount: Decimal,
    source_rate: Decimal,
    target_rate: Decimal,
    cache: RateCache,
) -> Decimal:
    for rate in (source_rate, target_rate):
        if not rate.is_finite() or rate <= 0:
            raise ExchangeRateIntegrityError(
                f"Invalid exchange rate {rate} in snapshot for {cache.month_key}."
            )
    try:
        converted = amount / source_rate * target_rate
    except DecimalException as exc:
        raise ExchangeRateIntegrityError(
            f"Conversion failed for snapshot {cache.month_key}."
        ) from exc
    if not converted.is_finite():
        raise ExchangeRateIntegrityError(
            f"Conversion produced a non-finite amount for {cache.month_key}."
        )
    return round_money(converted)
