from __future__ import annotations

import logging
import re
from typing import Iterable, Mapping

from fintrack.sanitizer import parse_csv_line

logger = logging.getLogger(__name__)

FLAT_HEADER_SCAN_LIMIT = 15
MIN_HEADER_CELLS = 2

HEADER_KEYWORDS: dict[str, tuple[str, ...]] = {
    "assets": ("name", "value", "amount", "balance", "asset", "account"),
    "investments": ("ticker", "symbol", "quantity", "qty", "avg", "cost"),
    "trades": ("date", "ticker", "symbol", "qty", "price", "type"),
    "subscriptions": ("name", "service", "cost", "price", "period", "active"),
    "accounts": ("institution", "bank", "account", "type", "card"),
    "log_data": ("date", "worth", "total", "balance", "net"),
    "debt": ("name", "owed", "rate", "payment", "loan"),
    "tax": ("record", "account", "fund", "transaction", "date", "value", "contribution"),
}


def normalize_header(value: str | None) -> str:
    return re.sub(r"[^a-z0-9]", "", (value or "").strip().lower())


def score_header_row(
    lines: list[str],
    keywords: Iterable[str],
    limit: int = FLAT_HEADER_SCAN_LIMIT,
) -> int:
    """Pick the row most likely to hold column headers.

    A candidate row has at least two non-empty cells and at least one cell
    containing a keyword. The candidate with the most keyword cells wins and
    ties keep the earliest row. Without candidates the first non-blank line
    is used; ``-1`` means every line is blank.
    """
    lowered_keywords = tuple(keyword.lower() for keyword in keywords)
    best_index = -1
    best_score = 0
    for index, line in enumerate(lines[:limit]):
        if not line.strip():
            continue
        values = [value.lower() for value in parse_csv_line(line)]
        non_empty = [value for value in values if value]
        if len(non_empty) < MIN_HEADER_CELLS:
            continue
        score = sum(
            1 for value in non_empty if any(keyword in value for keyword in lowered_keywords)
        )
        if score > best_score:
            best_score = score
            best_index = index

    if best_index != -1:
        return best_index

    for index, line in enumerate(lines):
        if line.strip():
            logger.debug("No header row matched keywords, falling back to line %d", index)
            return index
    return -1


def resolve_column_index(headers: list[str], candidates: Iterable[str]) -> int:
    normalized = [normalize_header(name) for name in headers]
    candidate_keys = [normalize_header(candidate) for candidate in candidates]
    for cand_norm in candidate_keys:
        if not cand_norm:
            continue
        for index, norm in enumerate(normalized):
            if norm == cand_norm:
                return index
    for cand_norm in candidate_keys:
        if not cand_norm:
            continue
        for index, norm in enumerate(normalized):
            if cand_norm in norm:
                return index
    return -1


def resolve_indices(headers: list[str], mapping: Mapping[str, Iterable[str]]) -> dict[str, int]:
    return {field: resolve_column_index(headers, candidates) for field, candidates in mapping.items()}
