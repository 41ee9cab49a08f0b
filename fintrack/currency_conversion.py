from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
import json
import logging
import time
from typing import Mapping, Optional
from urllib.error import HTTPError, URLError
from urllib.request import urlopen

logger = logging.getLogger(__name__)

PRIMARY_CURRENCY = "CAD"

# Multipliers: 1 unit of the keyed currency = x units of PRIMARY_CURRENCY.
DEFAULT_RATES: dict[str, Decimal] = {
    "CAD": Decimal("1"),
    "USD": Decimal("1.38"),
    "EUR": Decimal("1.50"),
    "GBP": Decimal("1.75"),
    "AUD": Decimal("0.91"),
    "JPY": Decimal("0.0092"),
    "CNY": Decimal("0.19"),
    "INR": Decimal("0.016"),
    "CHF": Decimal("1.55"),
    "MXN": Decimal("0.08"),
}


class RateProviderUnavailable(RuntimeError):
    """Raised when a rate provider cannot fetch live rates."""


@dataclass(frozen=True)
class StaticRateProvider:
    """Fixed multiplier table, used offline and as the live fallback."""

    rates: Optional[Mapping[str, Decimal]] = None

    def __post_init__(self) -> None:
        table = self.rates if self.rates is not None else DEFAULT_RATES
        object.__setattr__(self, "rates", {normalize_currency(code): rate for code, rate in table.items()})

    def get_rates(self) -> Mapping[str, Decimal]:
        return self.rates


@dataclass
class FrankfurterRateProvider:
    """Latest ECB rates from frankfurter.app, cached for ``cache_ttl_seconds``."""

    base_currency: str = PRIMARY_CURRENCY
    base_url: str = "https://api.frankfurter.app"
    cache_ttl_seconds: int = 12 * 60 * 60
    _cached: Optional[Mapping[str, Decimal]] = field(default=None, repr=False)
    _expires_at: float = field(default=0.0, repr=False)

    def get_rates(self) -> Mapping[str, Decimal]:
        now = time.monotonic()
        if self._cached is not None and self._expires_at > now:
            return self._cached
        base_currency = normalize_currency(self.base_currency)
        self._cached = invert_quote_rates(self._fetch_quotes(base_currency), base_currency)
        self._expires_at = now + self.cache_ttl_seconds
        logger.info("Fetched %d FX rates against %s", len(self._cached), base_currency)
        return self._cached

    def _fetch_quotes(self, base_currency: str) -> Mapping[str, object]:
        url = f"{self.base_url}/latest?from={base_currency}"
        try:
            with urlopen(url, timeout=8) as response:
                payload = json.load(response)
        except (HTTPError, URLError, TimeoutError, json.JSONDecodeError) as exc:
            raise RateProviderUnavailable("Frankfurter API unavailable") from exc

        quotes = payload.get("rates")
        if not isinstance(quotes, dict):
            raise RateProviderUnavailable("Frankfurter response missing rates")
        return quotes


@dataclass(frozen=True)
class CompositeRateProvider:
    primary: StaticRateProvider | FrankfurterRateProvider
    fallback: StaticRateProvider

    def get_rates(self) -> Mapping[str, Decimal]:
        try:
            return self.primary.get_rates()
        except RateProviderUnavailable:
            logger.warning("Live FX rates unavailable, using fallback rates")
            return self.fallback.get_rates()


def invert_quote_rates(quotes: Mapping[str, object], base_currency: str) -> dict[str, Decimal]:
    """Turn "1 base = x foreign" quotes into "1 foreign = x base" multipliers."""
    multipliers: dict[str, Decimal] = {normalize_currency(base_currency): Decimal("1")}
    for code, value in quotes.items():
        try:
            quote = Decimal(str(value))
        except InvalidOperation:
            continue
        if not quote.is_finite() or quote == 0:
            continue
        multipliers[normalize_currency(code)] = Decimal("1") / quote
    return multipliers


def convert_to_base(
    amount: Decimal | int | float | str,
    currency: str | None = PRIMARY_CURRENCY,
    rates: Mapping[str, Decimal] | None = None,
) -> Decimal:
    """Convert an amount into the base currency.

    Unknown or blank currency codes convert at 1 so that a mistyped cell
    never drops a balance from the totals.
    """
    value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    code = (currency or "").strip().upper()
    if not code:
        return value
    multiplier = (rates if rates is not None else DEFAULT_RATES).get(code)
    if multiplier is None:
        return value
    return value * Decimal(str(multiplier))


def normalize_currency(value: str) -> str:
    normalized = value.strip().upper()
    if len(normalized) != 3 or not normalized.isalpha():
        raise ValueError("Currency must be a 3-letter ISO 4217 code.")
    return normalized
