"""
Grid ledger parsing.

A grid ledger is a sheet with categories and subcategories as rows and months
as columns. Parsing finds the month header row, walks the rows below it and
builds a category -> subcategory -> monthly values tree, keeping the source
row numbers so the originating cells can be located again.
"""

from __future__ import annotations

import logging
import re
from collections import OrderedDict
from datetime import date
from decimal import Decimal
from typing import Mapping, Optional

from fintrack.records import (
    ExpenseEntry,
    FlowType,
    IncomeAndExpenses,
    IncomeEntry,
    LedgerCategory,
    LedgerData,
    LedgerItem,
    NormalizedTransaction,
)
from fintrack.sanitizer import (
    MONTH_NAMES,
    ZERO,
    cell,
    parse_csv_line,
    parse_flexible_date,
    parse_number,
    split_lines,
)

logger = logging.getLogger(__name__)

MONTH_COLUMNS = 12
EXPENSE_HEADER_SCAN_LIMIT = 50
INCOME_HEADER_SCAN_LIMIT = 10
MIN_MONTH_HEADER_CELLS = 2
EXPENSE_TITLE_MARKER = "expense categorie"
INCOME_CATEGORY_NAME = "Income Sources"

RESERVED_KEYS = frozenset(
    {
        "__proto__",
        "constructor",
        "prototype",
        "toString",
        "valueOf",
        "toLocaleString",
        "hasOwnProperty",
        "isPrototypeOf",
        "propertyIsEnumerable",
    }
)
DUNDER_RE = re.compile(r"^__\w+__$")

EXPENSE_SKIP_LABELS = ("net income", "total monthly", EXPENSE_TITLE_MARKER)
INCOME_STOP_MARKERS = ("expense", "outgoing", "liabilities")
SUMMARY_EXCLUDED_LABELS = ("net income", "total", "monthly savings", "balance", EXPENSE_TITLE_MARKER)

LEDGER_KEY_RE = re.compile(r"detailed_(income|expenses)_(\d{4})")

SANKEY_ROOT_NAME = "Total Spending"
SANKEY_MAX_SUBCATEGORIES = 8
SANKEY_FOCUSED_SUBCATEGORIES = 25


class ReservedKeyError(KeyError):
    """Raised when a reserved label is inserted into a SafeKeyDict."""


def is_safe_key(key: str | None) -> bool:
    if not key or not key.strip():
        return False
    stripped = key.strip()
    return stripped not in RESERVED_KEYS and not DUNDER_RE.match(stripped)


class SafeKeyDict(OrderedDict):
    """Ordered mapping keyed by user labels that refuses reserved names.

    Labels come straight from spreadsheet cells and end up as keys of chart
    rows, so names such as ``__proto__`` or ``constructor`` are rejected on
    insertion. ``add`` is the lenient variant: it drops reserved labels and
    reports whether the value was stored.
    """

    def __setitem__(self, key: str, value: object) -> None:
        if not is_safe_key(key):
            raise ReservedKeyError(key)
        super().__setitem__(key, value)

    def add(self, key: str, value: Decimal) -> bool:
        if not is_safe_key(key):
            logger.debug("Dropping reserved label %r", key)
            return False
        self[key] = self.get(key, ZERO) + value
        return True


def count_month_cells(row: list[str]) -> int:
    count = 0
    for column in range(1, MONTH_COLUMNS + 1):
        value = cell(row, column).lower()
        if value and any(value.startswith(name) for name in MONTH_NAMES):
            count += 1
    return count


def detect_month_header(
    rows: list[list[str]],
    limit: int,
    title_marker: Optional[str] = None,
) -> tuple[int, int]:
    """Return ``(header_index, month_count)`` for the best month header row."""
    header_index = -1
    best_count = 0
    for index, row in enumerate(rows[:limit]):
        count = count_month_cells(row)
        is_title_row = bool(title_marker) and title_marker in cell(row, 0).lower()
        if count > best_count:
            best_count = count
            header_index = index
        elif count == best_count and count > 0 and is_title_row:
            header_index = index
    return header_index, best_count


def month_labels(header_row: list[str]) -> list[str]:
    return [cell(header_row, column) or f"Month {column}" for column in range(1, MONTH_COLUMNS + 1)]


def monthly_values(row: list[str]) -> list[Decimal]:
    return [parse_number(cell(row, column)) for column in range(1, MONTH_COLUMNS + 1)]


def _category(name: str, items: list[LedgerItem], row_index: int | None) -> LedgerCategory:
    return LedgerCategory(
        name=name,
        sub_categories=items,
        total=sum((item.total for item in items), ZERO),
        row_index=row_index,
    )


def parse_detailed_expenses(raw: str | None) -> LedgerData:
    """Parse the month-by-category expense grid.

    A labelled row without any non-zero month opens a new category, a labelled
    row with data is a subcategory of the open category, and a row with an
    empty label closes the open category.
    """
    lines = split_lines(raw)
    if len(lines) < 2:
        return LedgerData()
    rows = [parse_csv_line(line) for line in lines]

    header_index, best_count = detect_month_header(rows, EXPENSE_HEADER_SCAN_LIMIT, EXPENSE_TITLE_MARKER)
    if header_index == -1 or best_count < MIN_MONTH_HEADER_CELLS:
        for index, row in enumerate(rows):
            if EXPENSE_TITLE_MARKER in cell(row, 0).lower():
                header_index = index if cell(row, 1) else index + 1
                break
    if header_index == -1 or header_index >= len(rows) - 1:
        return LedgerData()

    months = month_labels(rows[header_index])
    categories: list[LedgerCategory] = []
    open_name: Optional[str] = None
    open_row: Optional[int] = None
    open_items: list[LedgerItem] = []

    def flush() -> None:
        nonlocal open_name, open_row, open_items
        if open_name is not None:
            categories.append(_category(open_name, open_items, open_row))
        open_name, open_row, open_items = None, None, []

    for index in range(header_index + 1, len(rows)):
        row = rows[index]
        name = cell(row, 0)
        if not name:
            flush()
            continue
        if not is_safe_key(name):
            logger.debug("Skipping reserved ledger label %r at row %d", name, index)
            continue
        lowered = name.lower()
        if name.upper() == "TOTAL" or any(label in lowered for label in EXPENSE_SKIP_LABELS):
            continue

        values = monthly_values(row)
        if not any(values):
            flush()
            open_name, open_row = name, index
            continue

        item = LedgerItem(name=name, monthly_values=values, total=sum(values, ZERO), row_index=index)
        if open_name is not None:
            open_items.append(item)
        else:
            categories.append(_category(name, [item], index))

    flush()
    return LedgerData(months=months, categories=categories)


def parse_detailed_income(raw: str | None) -> LedgerData:
    """Parse the income grid into a single "Income Sources" category.

    Parsing stops at the first total row, at an expense section marker, or at
    the first blank label once data has been collected.
    """
    lines = split_lines(raw)
    if len(lines) < 2:
        return LedgerData()
    rows = [parse_csv_line(line) for line in lines]

    header_index, _ = detect_month_header(rows, INCOME_HEADER_SCAN_LIMIT)
    if header_index == -1 or header_index >= len(rows) - 1:
        return LedgerData()

    months = month_labels(rows[header_index])
    items: list[LedgerItem] = []
    for index in range(header_index + 1, len(rows)):
        row = rows[index]
        name = cell(row, 0)
        if not name:
            if items:
                break
            continue
        if not is_safe_key(name):
            continue
        lowered = name.lower()
        if lowered == "total" or "total income" in lowered:
            break
        if any(marker in lowered for marker in INCOME_STOP_MARKERS):
            break

        values = monthly_values(row)
        if any(values):
            items.append(LedgerItem(name=name, monthly_values=values, total=sum(values, ZERO), row_index=index))

    if not items:
        return LedgerData(months=months, categories=[])
    return LedgerData(months=months, categories=[_category(INCOME_CATEGORY_NAME, items, header_index)])


def parse_income_and_expenses(raw: str | None, today: date | None = None) -> IncomeAndExpenses:
    """Parse the summary sheet: date header rows with an income row and expense rows."""
    lines = split_lines(raw)
    if len(lines) < 2:
        return IncomeAndExpenses()
    rows = [parse_csv_line(line) for line in lines]

    date_rows: list[int] = []
    best_income_row = -1
    best_income_priority = 0
    expense_rows: list[int] = []

    for index, row in enumerate(rows):
        first = cell(row, 0)
        lowered = first.lower()
        date_count = sum(
            1 for column in range(1, min(len(row), 6)) if parse_flexible_date(row[column], today)
        )
        if date_count >= 2:
            date_rows.append(index)
            continue
        has_data = any(parse_number(value) != 0 for value in row[1:])
        if "income" in lowered and "net" not in lowered:
            if has_data:
                priority = 2 if "total" in lowered else 1
                if priority > best_income_priority:
                    best_income_row = index
                    best_income_priority = priority
            continue
        if lowered and not any(label in lowered for label in SUMMARY_EXCLUDED_LABELS) and has_data:
            expense_rows.append(index)

    income: list[IncomeEntry] = []
    if best_income_row != -1:
        income_date_row = next((index for index in reversed(date_rows) if index < best_income_row), -1)
        if income_date_row != -1:
            header = rows[income_date_row]
            values = rows[best_income_row]
            for column in range(1, min(len(header), len(values))):
                iso = parse_flexible_date(header[column], today)
                if iso:
                    income.append(IncomeEntry(date=iso, month_str=header[column], amount=parse_number(values[column])))

    expenses: list[ExpenseEntry] = []
    if expense_rows and date_rows:
        header = rows[date_rows[0]]
        for column in range(1, len(header)):
            iso = parse_flexible_date(header[column], today)
            if not iso:
                continue
            breakdown = SafeKeyDict()
            for row_index in expense_rows:
                breakdown.add(cell(rows[row_index], 0), abs(parse_number(cell(rows[row_index], column))))
            total = sum(breakdown.values(), ZERO)
            if total > 0:
                expenses.append(
                    ExpenseEntry(date=iso, month_str=header[column], categories=dict(breakdown), total=total)
                )

    return IncomeAndExpenses(
        income=sorted(income, key=lambda entry: entry.date),
        expenses=sorted(expenses, key=lambda entry: entry.date),
    )


def parse_month_label(label: str, year_hint: str | int) -> str:
    parts = (label or "").strip().lower().split("-")
    month_index = next((i for i, name in enumerate(MONTH_NAMES) if parts[0].startswith(name)), -1)
    month = 1 if month_index == -1 else month_index + 1
    year = str(year_hint)
    if len(parts) > 1 and parts[1].strip().isdigit():
        suffix = parts[1].strip()
        year = f"20{suffix}" if len(suffix) == 2 else suffix
    return f"{year}-{month:02d}-01"


def flatten_ledger(
    ledger: LedgerData,
    flow_type: FlowType,
    year: str | int,
    source: str = "ledger",
) -> list[NormalizedTransaction]:
    transactions: list[NormalizedTransaction] = []
    for category in ledger.categories:
        for item in category.sub_categories:
            for month_index, value in enumerate(item.monthly_values):
                if value == 0 or month_index >= len(ledger.months):
                    continue
                transactions.append(
                    NormalizedTransaction(
                        id=f"{source}-{category.name}-{item.name}-{month_index}",
                        date=parse_month_label(ledger.months[month_index], year),
                        category=category.name,
                        sub_category=item.name,
                        amount=abs(value),
                        type=flow_type,
                    )
                )
    return transactions


def build_unified_timeline(ledgers: Mapping[str, LedgerData]) -> list[NormalizedTransaction]:
    """Flatten stored ledgers into one timeline, newest first.

    Keys follow ``detailed_{income|expenses}_{year}``; other keys are ignored.
    """
    timeline: list[NormalizedTransaction] = []
    for key, ledger in ledgers.items():
        match = LEDGER_KEY_RE.search(key)
        if not match or ledger is None:
            continue
        flow_type = FlowType.INCOME if match.group(1) == "income" else FlowType.EXPENSE
        timeline.extend(flatten_ledger(ledger, flow_type, match.group(2), source=key))
    return sorted(timeline, key=lambda transaction: transaction.date, reverse=True)


def ledger_trend_rows(ledger: LedgerData) -> list[dict[str, object]]:
    """Per-month chart rows with category totals nested under ``categories``."""
    rows: list[dict[str, object]] = []
    for month_index, month in enumerate(ledger.months):
        totals = SafeKeyDict()
        for category in ledger.categories:
            month_total = sum(
                (item.monthly_values[month_index] for item in category.sub_categories
                 if month_index < len(item.monthly_values)),
                ZERO,
            )
            totals.add(category.name, month_total)
        rows.append({"name": month, "categories": dict(totals)})
    return rows


def sankey_flows(
    ledger: LedgerData,
    month_index: int,
    category_name: Optional[str] = None,
) -> dict[str, list[dict[str, object]]]:
    """Spending flow for one month: total -> category -> subcategory.

    Node 0 is the month's total. Each category with positive spend links from
    it, and its largest subcategories link from the category; the rest are
    folded into a single "<category> (Other)" node. Selecting a category
    drops the others and widens the subcategory limit.
    """
    nodes: list[dict[str, object]] = [{"name": SANKEY_ROOT_NAME}]
    links: list[dict[str, object]] = []
    limit = SANKEY_FOCUSED_SUBCATEGORIES if category_name else SANKEY_MAX_SUBCATEGORIES

    for category in ledger.categories:
        if category_name and category.name != category_name:
            continue
        active = [
            (item.name, item.monthly_values[month_index])
            for item in category.sub_categories
            if 0 <= month_index < len(item.monthly_values) and item.monthly_values[month_index] > 0
        ]
        if not active:
            continue
        active.sort(key=lambda pair: pair[1], reverse=True)

        category_node = len(nodes)
        nodes.append({"name": category.name})
        links.append({"source": 0, "target": category_node, "value": sum((value for _, value in active), ZERO)})

        for name, value in active[:limit]:
            links.append({"source": category_node, "target": len(nodes), "value": value})
            nodes.append({"name": name})

        other_total = sum((value for _, value in active[limit:]), ZERO)
        if other_total > 0:
            links.append({"source": category_node, "target": len(nodes), "value": other_total})
            nodes.append({"name": f"{category.name} (Other)"})

    if not links:
        return {"nodes": [], "links": []}
    return {"nodes": nodes, "links": links}


def ledger_key(kind: str, year: str | int) -> str:
    return f"detailed_{kind}_{year}"
