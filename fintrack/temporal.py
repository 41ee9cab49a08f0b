from __future__ import annotations

from calendar import monthrange
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from enum import Enum
from itertools import zip_longest
from typing import Iterable, List, Optional, Sequence, TypeVar

from fintrack.ledger import is_safe_key
from fintrack.records import FlowType, NormalizedTransaction

ZERO = Decimal("0")
HUNDRED = Decimal("100")
FIXED_CATEGORY = "fixed"
WEEKS_PER_MONTH = Decimal("4.33")
MONTHS_PER_YEAR = Decimal("12")

T = TypeVar("T")


class TimeFocus(str, Enum):
    MTD = "MTD"
    QTD = "QTD"
    YTD = "YTD"
    ROLLING_12M = "ROLLING_12M"
    FULL_HISTORY = "FULL_HISTORY"
    CUSTOM = "CUSTOM"


@dataclass(frozen=True)
class DateWindow:
    start: date
    end: date

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def contains(self, value: date | str) -> bool:
        if isinstance(value, str):
            value = date.fromisoformat(value[:10])
        return self.start <= value <= self.end


@dataclass(frozen=True)
class TemporalWindows:
    current: DateWindow
    shadow: DateWindow
    label: str


@dataclass(frozen=True)
class DimensionTotal:
    name: str
    total: Decimal
    count: int


@dataclass(frozen=True)
class VarianceRow:
    name: str
    current_total: Decimal
    prev_total: Decimal
    delta: Decimal
    pct: Decimal


@dataclass(frozen=True)
class TrendPoint:
    date: str
    amount: Decimal


@dataclass(frozen=True)
class ComparativePoint:
    period: int
    label: str
    current: Decimal
    shadow: Decimal


@dataclass(frozen=True)
class ComparisonResult:
    current: Decimal
    previous: Decimal
    delta: Decimal
    pct: Decimal


def month_start(value: date) -> date:
    return value.replace(day=1)


def month_end(value: date) -> date:
    return value.replace(day=monthrange(value.year, value.month)[1])


def shift_months(value: date, months: int) -> date:
    total = value.year * 12 + (value.month - 1) + months
    year, month_index = divmod(total, 12)
    day = min(value.day, monthrange(year, month_index + 1)[1])
    return date(year, month_index + 1, day)


def quarter_start(value: date) -> date:
    return date(value.year, (value.month - 1) // 3 * 3 + 1, 1)


def _preceding_window(current: DateWindow) -> DateWindow:
    shadow_end = current.start - timedelta(days=1)
    return DateWindow(start=shadow_end - timedelta(days=current.days - 1), end=shadow_end)


def get_temporal_windows(
    focus: TimeFocus,
    today: Optional[date] = None,
    custom_start: Optional[date] = None,
    custom_end: Optional[date] = None,
    history_start: Optional[date] = None,
) -> TemporalWindows:
    """Resolve the focus window and the comparison (shadow) window.

    The shadow window has the same number of days as the current window and
    ends the day before it starts. Rolling 12 months compares against the
    12 calendar months before it.
    """
    today = today or date.today()
    focus = TimeFocus(focus)

    if focus == TimeFocus.MTD:
        start = month_start(today)
        current = DateWindow(start, today)
        return TemporalWindows(current, _preceding_window(current), "vs last month")

    if focus == TimeFocus.QTD:
        start = quarter_start(today)
        current = DateWindow(start, today)
        return TemporalWindows(current, _preceding_window(current), "vs last quarter")

    if focus == TimeFocus.YTD:
        start = date(today.year, 1, 1)
        current = DateWindow(start, today)
        return TemporalWindows(current, _preceding_window(current), "vs last year")

    if focus == TimeFocus.ROLLING_12M:
        start = shift_months(today, -12)
        current = DateWindow(start, today)
        shadow = DateWindow(shift_months(today, -24), start - timedelta(days=1))
        return TemporalWindows(current, shadow, "vs prior 12 months")

    if focus == TimeFocus.FULL_HISTORY:
        start = history_start or date(today.year, 1, 1)
        current = DateWindow(min(start, today), today)
        return TemporalWindows(current, _preceding_window(current), "vs prior period")

    if custom_start is None or custom_end is None:
        raise ValueError("custom focus requires start and end dates.")
    if custom_start > custom_end:
        custom_start, custom_end = custom_end, custom_start
    current = DateWindow(custom_start, custom_end)
    return TemporalWindows(current, _preceding_window(current), "vs prior period")


def is_date_within_focus(
    value: str,
    focus: TimeFocus,
    today: Optional[date] = None,
    custom_start: Optional[date] = None,
    custom_end: Optional[date] = None,
    history_start: Optional[date] = None,
) -> bool:
    windows = get_temporal_windows(focus, today, custom_start, custom_end, history_start)
    try:
        return windows.current.contains(value)
    except ValueError:
        return False


def filter_by_window(items: Iterable[T], window: DateWindow) -> List[T]:
    start, end = window.start.isoformat(), window.end.isoformat()
    return [item for item in items if start <= getattr(item, "date", "")[:10] <= end]


def _matches_type(transaction: NormalizedTransaction, flow_type: FlowType | str) -> bool:
    return transaction.type == FlowType(flow_type)


def _dimension_label(transaction: NormalizedTransaction, path: Sequence[str]) -> Optional[str]:
    if len(path) == 0:
        return transaction.category
    if len(path) == 1 and transaction.category == path[0]:
        return transaction.sub_category
    return None


def aggregate_dimensions(
    transactions: Iterable[NormalizedTransaction],
    path: Sequence[str],
    flow_type: FlowType | str,
) -> List[DimensionTotal]:
    """Group a timeline by the next level of the drill path.

    An empty path groups by category, a one element path groups the
    subcategories of that category, and deeper paths match nothing.
    """
    totals: dict[str, Decimal] = {}
    counts: dict[str, int] = {}
    for transaction in transactions:
        if not _matches_type(transaction, flow_type):
            continue
        label = _dimension_label(transaction, path)
        if label is None or not is_safe_key(label):
            continue
        totals[label] = totals.get(label, ZERO) + transaction.amount
        counts[label] = counts.get(label, 0) + 1

    groups = [DimensionTotal(name=name, total=total, count=counts[name]) for name, total in totals.items()]
    return sorted(groups, key=lambda group: group.total, reverse=True)


def _filter_path(
    transactions: Iterable[NormalizedTransaction],
    path: Sequence[str],
    flow_type: FlowType | str,
) -> List[NormalizedTransaction]:
    filtered = [transaction for transaction in transactions if _matches_type(transaction, flow_type)]
    if len(path) > 0:
        filtered = [transaction for transaction in filtered if transaction.category == path[0]]
    if len(path) > 1:
        filtered = [transaction for transaction in filtered if transaction.sub_category == path[1]]
    return filtered


def aggregate_temporal_trend(
    transactions: Iterable[NormalizedTransaction],
    path: Sequence[str],
    flow_type: FlowType | str,
) -> List[TrendPoint]:
    by_month: dict[str, Decimal] = {}
    for transaction in _filter_path(transactions, path, flow_type):
        key = transaction.date[:7]
        by_month[key] = by_month.get(key, ZERO) + transaction.amount
    return [TrendPoint(date=key, amount=by_month[key]) for key in sorted(by_month)]


def aggregate_comparative_trend(
    current: Iterable[NormalizedTransaction],
    shadow: Iterable[NormalizedTransaction],
    path: Sequence[str],
    flow_type: FlowType | str,
) -> List[ComparativePoint]:
    """Cumulative month-by-month totals of both windows aligned by position."""
    current_trend = aggregate_temporal_trend(current, path, flow_type)
    shadow_trend = aggregate_temporal_trend(shadow, path, flow_type)
    points: List[ComparativePoint] = []
    running_current = ZERO
    running_shadow = ZERO
    for index, (current_point, shadow_point) in enumerate(zip_longest(current_trend, shadow_trend)):
        if current_point is not None:
            running_current += current_point.amount
        if shadow_point is not None:
            running_shadow += shadow_point.amount
        label = current_point.date if current_point is not None else shadow_point.date
        points.append(ComparativePoint(period=index + 1, label=label, current=running_current, shadow=running_shadow))
    return points


def calculate_temporal_variance(
    current: Iterable[NormalizedTransaction],
    shadow: Iterable[NormalizedTransaction],
    path: Sequence[str],
    flow_type: FlowType | str,
    exclude_fixed: bool = False,
) -> List[VarianceRow]:
    """Period-over-period change per dimension, largest movers first.

    A dimension missing from the comparison window has a previous total of 0
    and reports 100 percent.
    """
    previous = {group.name: group.total for group in aggregate_dimensions(shadow, path, flow_type)}
    rows: List[VarianceRow] = []
    for group in aggregate_dimensions(current, path, flow_type):
        if exclude_fixed and group.name.strip().lower() == FIXED_CATEGORY:
            continue
        prev_total = previous.get(group.name, ZERO)
        delta = group.total - prev_total
        pct = (delta / abs(prev_total)) * HUNDRED if prev_total != 0 else HUNDRED
        rows.append(
            VarianceRow(name=group.name, current_total=group.total, prev_total=prev_total, delta=delta, pct=pct)
        )
    return sorted(rows, key=lambda row: abs(row.delta), reverse=True)


def get_comparison_stats(current: Decimal, previous: Decimal) -> ComparisonResult:
    delta = current - previous
    pct = (delta / abs(previous)) * HUNDRED if previous != 0 else ZERO
    return ComparisonResult(current=current, previous=previous, delta=delta, pct=pct)


def calculate_monthly_burn(cost: Decimal, period: str) -> Decimal:
    normalized = (period or "").strip().lower()
    if normalized == "monthly":
        return cost
    if normalized == "yearly":
        return cost / MONTHS_PER_YEAR
    if normalized == "weekly":
        return cost * WEEKS_PER_MONTH
    return ZERO
