from __future__ import annotations

import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Mapping, Optional

from fintrack.portfolio import normalize_ticker

DEFAULT_TTL_SECONDS = 300


@dataclass(frozen=True)
class CachedQuote:
    value: Decimal
    expires_at: float


class PriceCache:
    """Ticker quotes with a time-to-live, owned by whoever fetches prices.

    Keys are normalized tickers. ``clock`` returns seconds and defaults to a
    monotonic clock; tests pass their own.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive.")
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, CachedQuote] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, ticker: str) -> Optional[Decimal]:
        key = normalize_ticker(ticker)
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            del self._entries[key]
            return None
        return entry.value

    def put(self, ticker: str, value: Decimal | int | float | str) -> CachedQuote:
        entry = CachedQuote(value=Decimal(str(value)), expires_at=self._clock() + self.ttl_seconds)
        self._entries[normalize_ticker(ticker)] = entry
        return entry

    def put_many(self, quotes: Mapping[str, Decimal | int | float | str]) -> None:
        for ticker, value in quotes.items():
            self.put(ticker, value)

    def snapshot(self) -> dict[str, Decimal]:
        """Live quotes only, as a plain price map."""
        now = self._clock()
        return {key: entry.value for key, entry in self._entries.items() if entry.expires_at > now}

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)
