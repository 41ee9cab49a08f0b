from __future__ import annotations

import csv
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation, getcontext

ZERO = Decimal("0")

MONTH_NAMES = ("jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec")

ISO_DATE_RE = re.compile(r"^(\d{4})[-/.](\d{1,2})[-/.](\d{1,2})")
US_DATE_RE = re.compile(r"^(\d{1,2})[-/.](\d{1,2})[-/.](\d{4})")
LINE_SPLIT_RE = re.compile(r"\r?\n")
CURRENCY_MARKERS_RE = re.compile(r"[$€£¥₹]|\b(?:CAD|USD|EUR|GBP|JPY|AUD|CHF|CA\$|US\$)\b", re.IGNORECASE)
NUMBER_PREFIX_RE = re.compile(r"^-?(?:\d+\.?\d*|\.\d+)")

FALLBACK_DATE_FORMATS = (
    "%d %b %Y",
    "%d %B %Y",
    "%b %d %Y",
    "%B %d %Y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%d-%b-%Y",
    "%Y%m%d",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M:%S",
)
MIN_FALLBACK_YEAR = 1990


def split_lines(raw: str | None) -> list[str]:
    if not raw:
        return []
    return LINE_SPLIT_RE.split(raw)


def parse_csv_line(line: str, delimiter: str = ",") -> list[str]:
    if '"' not in line:
        return [value.strip() for value in line.split(delimiter)]
    reader = csv.reader([line], delimiter=delimiter, skipinitialspace=True)
    try:
        values = next(reader)
    except (StopIteration, csv.Error):
        return [value.strip() for value in line.split(delimiter)]
    return [value.strip() for value in values]


def split_rows(raw: str | None, delimiter: str = ",") -> list[list[str]]:
    return [parse_csv_line(line, delimiter) for line in split_lines(raw)]


def clean_text(value: str | None) -> str:
    return value.strip() if value else ""


def is_blank_row(values: list[str]) -> bool:
    return all(not clean_text(value) for value in values)


def cell(values: list[str], index: int) -> str:
    if index < 0 or index >= len(values):
        return ""
    return clean_text(values[index])


def parse_number(value: str | int | float | Decimal | None) -> Decimal:
    """Parse a user-entered spreadsheet number.

    Currency symbols, thousands separators and whitespace are ignored and a
    value wrapped in parentheses is negative. Text that is not a number as a
    whole is read by its leading number, so ``500-`` is 500. Anything that
    is not finite or falls outside the decimal context's exponent range is
    ``0``.
    """
    if isinstance(value, Decimal):
        return value if _is_usable(value) else ZERO
    if isinstance(value, (int, float)):
        return _finite_or_zero(str(value))

    cleaned = clean_text(value)
    if not cleaned:
        return ZERO

    negative = False
    if cleaned.startswith("(") and cleaned.endswith(")"):
        negative = True
        cleaned = cleaned[1:-1]

    cleaned = CURRENCY_MARKERS_RE.sub("", cleaned)
    cleaned = cleaned.replace(",", "")
    cleaned = re.sub(r"\s+", "", cleaned)

    amount = _decimal_or_none(cleaned)
    if amount is None:
        prefix = NUMBER_PREFIX_RE.match(re.sub(r"[^0-9.\-]", "", cleaned))
        amount = _decimal_or_none(prefix.group()) if prefix else None
    if amount is None or not _is_usable(amount):
        return ZERO
    return -amount if negative else amount


def _decimal_or_none(cleaned: str) -> Decimal | None:
    if not cleaned:
        return None
    try:
        return Decimal(cleaned)
    except InvalidOperation:
        return None


def _is_usable(amount: Decimal) -> bool:
    if not amount.is_finite():
        return False
    context = getcontext()
    return context.Emin <= amount.adjusted() <= context.Emax


def _finite_or_zero(cleaned: str) -> Decimal:
    amount = _decimal_or_none(cleaned)
    return amount if amount is not None and _is_usable(amount) else ZERO


def parse_flexible_date(value: str | None, today: date | None = None) -> str | None:
    """Parse a spreadsheet date cell into an ISO ``YYYY-MM-DD`` string.

    Accepts ISO-like and US-like numeric dates, month names with an optional
    2 or 4 digit year (``Jan-24``) and a handful of free-text layouts.
    Returns ``None`` when nothing matches; callers skip such cells.
    """
    cleaned = clean_text(value)
    if len(cleaned) < 2:
        return None

    iso_match = ISO_DATE_RE.match(cleaned)
    if iso_match:
        year, month, day = (int(part) for part in iso_match.groups())
        parsed = _safe_date(year, month, day)
        if parsed is not None:
            return parsed.isoformat()

    us_match = US_DATE_RE.match(cleaned)
    if us_match:
        month, day, year = (int(part) for part in us_match.groups())
        parsed = _safe_date(year, month, day)
        if parsed is not None:
            return parsed.isoformat()

    normalized = re.sub(r"[\s,]+", "-", cleaned.lower())
    month_name = next((name for name in MONTH_NAMES if normalized.startswith(name)), None)
    if month_name is not None:
        remainder = re.sub(r"[^0-9]", "", normalized[len(month_name):])
        year = (today or date.today()).year
        if len(remainder) == 2:
            year = 2000 + int(remainder)
        elif len(remainder) == 4:
            year = int(remainder)
        parsed = _safe_date(year, MONTH_NAMES.index(month_name) + 1, 1)
        return parsed.isoformat() if parsed is not None else None

    for fmt in FALLBACK_DATE_FORMATS:
        try:
            parsed_dt = datetime.strptime(cleaned, fmt)
        except ValueError:
            continue
        if parsed_dt.year > MIN_FALLBACK_YEAR:
            return parsed_dt.date().isoformat()
    return None


def _safe_date(year: int, month: int, day: int) -> date | None:
    if not 1 <= month <= 12 or not 1 <= day <= 31:
        return None
    try:
        return date(year, month, day)
    except ValueError:
        return None
