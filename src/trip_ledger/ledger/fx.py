"""Historical FX rate resolution with a memory + durable cache.

Rates are historical facts: once resolved for a (date, from, to) key they are
reused from the cache. The memory tier lives for the lifetime of the cache
object; the durable tier keeps entries for a TTL measured from insertion.
"""

import logging
from collections.abc import Callable
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from typing import Protocol

from ..clients.frankfurter import FrankfurterClient
from ..config import Settings
from ..currency import quantize
from ..exceptions import ConversionError, FXRateAPIError
from ..models import (
    CachedRate,
    ConversionFailure,
    ConversionResult,
    Currency,
    FXRate,
    RateSource,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


class RateStore(Protocol):
    """Durable storage for cached rates (Database implements this)."""

    def get_cached_rate(self, cache_key: str) -> CachedRate | None: ...

    def save_cached_rate(self, cache_key: str, cached: CachedRate) -> None: ...

    def delete_cached_rate(self, cache_key: str) -> None: ...

    def clear_cached_rates(self) -> int: ...


class InMemoryRateStore:
    """Dict-backed RateStore, for tests and throwaway sessions."""

    def __init__(self):
        self.entries: dict[str, CachedRate] = {}

    def get_cached_rate(self, cache_key: str) -> CachedRate | None:
        return self.entries.get(cache_key)

    def save_cached_rate(self, cache_key: str, cached: CachedRate) -> None:
        self.entries[cache_key] = cached

    def delete_cached_rate(self, cache_key: str) -> None:
        self.entries.pop(cache_key, None)

    def clear_cached_rates(self) -> int:
        count = len(self.entries)
        self.entries.clear()
        return count


def cache_key(on_date: date, from_currency: Currency, to_currency: Currency) -> str:
    """Generate the cache key for an FX rate."""
    return f"{on_date.isoformat()}_{from_currency}_{to_currency}"


class FXRateCache:
    """Two-tier FX rate cache: session memory in front of a durable store."""

    def __init__(
        self,
        store: RateStore,
        ttl: timedelta = timedelta(hours=24),
        clock: Clock | None = None,
    ):
        """Initialize an empty cache over the given durable store."""
        self.store = store
        self.ttl = ttl
        self.clock = clock or utc_now
        self._memory: dict[str, FXRate] = {}

    def get(self, key: str) -> FXRate | None:
        """
        Look up a rate, memory tier first.

        A durable entry older than the TTL is treated as absent and purged.
        Durable hits are promoted into the memory tier.
        """
        memory_rate = self._memory.get(key)
        if memory_rate:
            logger.debug(f"Memory cache hit for {key}")
            return memory_rate

        cached = self.store.get_cached_rate(key)
        if cached is None:
            logger.debug(f"Cache miss for {key}")
            return None

        age = self.clock() - cached.cached_at
        if age >= self.ttl:
            logger.warning(f"Purging expired cached rate {key} (age {age})")
            self.store.delete_cached_rate(key)
            return None

        rate = FXRate(
            rate=cached.rate,
            date=cached.date,
            from_currency=cached.from_currency,
            to_currency=cached.to_currency,
            source=RateSource.CACHED,
        )
        self._memory[key] = rate
        logger.info(f"Durable cache hit for {key}")
        return rate

    def put(self, key: str, rate: FXRate):
        """Store a rate in both tiers. An existing entry is replaced."""
        stored = rate.model_copy(update={"source": RateSource.CACHED})
        self._memory[key] = stored
        self.store.save_cached_rate(
            key,
            CachedRate(
                rate=rate.rate,
                date=rate.date,
                from_currency=rate.from_currency,
                to_currency=rate.to_currency,
                cached_at=self.clock(),
            ),
        )

    def clear(self) -> int:
        """Wipe both tiers. Returns the number of durable entries removed."""
        self._memory.clear()
        removed = self.store.clear_cached_rates()
        logger.info(f"Cleared FX cache ({removed} durable entries)")
        return removed


class FXRateResolver:
    """Resolves historical rates through the cache, falling back to the FX service."""

    def __init__(
        self,
        client: FrankfurterClient,
        cache: FXRateCache,
        clock: Clock | None = None,
    ):
        """Initialize the resolver."""
        self.client = client
        self.cache = cache
        self.clock = clock or cache.clock

    def close(self):
        """Close the underlying HTTP client."""
        self.client.close()

    def resolve(
        self,
        on_date: date,
        from_currency: Currency,
        to_currency: Currency,
    ) -> FXRate | ConversionFailure:
        """
        Get the FX rate for a date.

        Args:
            on_date: Payment date the rate should apply to
            from_currency: Source currency
            to_currency: Target currency

        Returns:
            The rate, or a ConversionFailure when the service is unreachable,
            returns an error, or lacks the requested currency. Callers decide
            whether to fall back, retry or abort.
        """
        if from_currency == to_currency:
            return FXRate(
                rate=Decimal("1"),
                date=on_date,
                from_currency=from_currency,
                to_currency=to_currency,
                source=RateSource.IDENTITY,
            )

        key = cache_key(on_date, from_currency, to_currency)
        cached = self.cache.get(key)
        if cached:
            return cached

        fetch_date: date | None = on_date
        today = self.clock().date()
        if on_date > today:
            logger.info(
                f"Cannot get FX rate for future date {on_date}. "
                f"Using latest available rate instead."
            )
            fetch_date = None

        try:
            rate_value, rate_date = self.client.get_rate(
                fetch_date, from_currency, to_currency
            )
        except FXRateAPIError as e:
            logger.error(
                f"Failed to resolve {from_currency}->{to_currency} on {on_date}: {e}"
            )
            return ConversionFailure(
                reason=str(e),
                requested_date=on_date,
                from_currency=from_currency,
                to_currency=to_currency,
            )

        rate = FXRate(
            rate=rate_value,
            date=rate_date,
            from_currency=from_currency,
            to_currency=to_currency,
            source=RateSource.LIVE,
        )

        # Cache under the requested key; the service date is a fact too
        self.cache.put(key, rate)
        if rate_date != on_date:
            self.cache.put(cache_key(rate_date, from_currency, to_currency), rate)

        logger.info(
            f"Resolved {from_currency}->{to_currency} = {rate_value} "
            f"(requested {on_date}, rate date {rate_date})"
        )
        return rate

    def convert(
        self,
        amount: Decimal,
        from_currency: Currency,
        on_date: date,
        to_currency: Currency,
    ) -> ConversionResult | ConversionFailure:
        """Convert an amount using the rate for a date."""
        rate = self.resolve(on_date, from_currency, to_currency)
        if isinstance(rate, ConversionFailure):
            return rate
        return ConversionResult(
            converted_amount=quantize(amount * rate.rate, to_currency), rate=rate
        )

    def convert_strict(
        self,
        amount: Decimal,
        from_currency: Currency,
        on_date: date,
        to_currency: Currency,
    ) -> ConversionResult:
        """Like convert(), but raises ConversionError instead of returning a failure."""
        result = self.convert(amount, from_currency, on_date, to_currency)
        if isinstance(result, ConversionFailure):
            raise ConversionError(
                f"Could not convert {from_currency} to {to_currency} "
                f"on {on_date}: {result.reason}"
            )
        return result

    def clear_cache(self) -> int:
        """Wipe both cache tiers."""
        return self.cache.clear()


def build_resolver(settings: Settings, store: RateStore) -> FXRateResolver:
    """Create a resolver wired to the configured FX service and durable store."""
    client = FrankfurterClient(
        base_url=settings.fx_api_base_url, timeout=settings.fx_timeout_seconds
    )
    cache = FXRateCache(store, ttl=timedelta(hours=settings.fx_cache_ttl_hours))
    return FXRateResolver(client, cache)
