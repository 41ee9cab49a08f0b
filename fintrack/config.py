from __future__ import annotations

import logging
import os

from fintrack.currency_conversion import PRIMARY_CURRENCY, normalize_currency
from fintrack.price_cache import DEFAULT_TTL_SECONDS

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./fintrack.db")
FRONTEND_ORIGIN = os.getenv("FRONTEND_ORIGIN", "http://localhost:3000")


def get_base_currency() -> str:
    raw = os.getenv("BASE_CURRENCY", PRIMARY_CURRENCY)
    try:
        return normalize_currency(raw)
    except ValueError:
        return PRIMARY_CURRENCY


def get_price_cache_ttl() -> float:
    raw = os.getenv("PRICE_CACHE_TTL", str(DEFAULT_TTL_SECONDS))
    try:
        ttl = float(raw)
    except ValueError:
        return DEFAULT_TTL_SECONDS
    return ttl if ttl > 0 else DEFAULT_TTL_SECONDS


def get_log_level() -> int:
    level = logging.getLevelName(os.getenv("LOG_LEVEL", "INFO").strip().upper())
    return level if isinstance(level, int) else logging.INFO


BASE_CURRENCY = get_base_currency()
PRICE_CACHE_TTL = get_price_cache_ttl()
