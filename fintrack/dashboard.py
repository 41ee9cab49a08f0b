from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, List, Mapping, Optional, Sequence

from fintrack.analytics import NetWorthAttribution, calculate_net_worth_attribution
from fintrack.classification import is_cash_asset, is_investment_asset
from fintrack.currency_conversion import convert_to_base
from fintrack.ledger import SafeKeyDict
from fintrack.records import Asset, ExpenseEntry, IncomeEntry, NetWorthEntry, Subscription, TaxRecord
from fintrack.temporal import TimeFocus, calculate_monthly_burn, get_temporal_windows

ZERO = Decimal("0")
HUNDRED = Decimal("100")

TAX_ACCOUNTS = ("TFSA", "RRSP", "FHSA", "LAPP", "RESP")
TAX_LIMIT_TYPES = {"LIMIT", "LIMIT INCREASE", "OPENING BALANCE", "INCREASE"}
TAX_CONTRIBUTION_TYPES = {"CONTRIBUTION", "DEPOSIT"}
TAX_WITHDRAWAL_TYPES = {"WITHDRAWAL", "WITHDRAW"}


@dataclass(frozen=True)
class AllocationSlice:
    name: str
    value: Decimal


@dataclass(frozen=True)
class DashboardAggregates:
    net_worth: Decimal
    total_investments: Decimal
    total_cash: Decimal
    allocation: List[AllocationSlice]


@dataclass(frozen=True)
class PeriodTotals:
    ytd_income: Decimal
    ytd_expenses: Decimal
    total_income: Decimal
    total_expenses: Decimal
    savings: Decimal
    savings_rate: Decimal


@dataclass(frozen=True)
class NetIncomePoint:
    date: str
    month_str: str
    income: Decimal
    expense: Decimal
    net: Decimal


@dataclass(frozen=True)
class TaxRoom:
    used: Decimal
    total_limit: Decimal
    remaining: Decimal


def calculate_dashboard_aggregates(
    assets: Iterable[Asset],
    rates: Optional[Mapping[str, Decimal]] = None,
) -> DashboardAggregates:
    """Net worth, investment and cash totals in the base currency plus allocation by asset type."""
    net_worth = ZERO
    investments = ZERO
    cash = ZERO
    groups = SafeKeyDict()

    for asset in assets:
        base_value = convert_to_base(asset.value, asset.currency, rates)
        net_worth += base_value
        if is_investment_asset(asset):
            investments += base_value
        if is_cash_asset(asset):
            cash += base_value
        groups.add(asset.type or "Other", base_value)

    allocation = [AllocationSlice(name=name, value=value) for name, value in groups.items()]
    allocation.sort(key=lambda item: item.value, reverse=True)
    return DashboardAggregates(
        net_worth=net_worth,
        total_investments=investments,
        total_cash=cash,
        allocation=allocation,
    )


def calculate_period_totals(
    income: Iterable[IncomeEntry],
    expenses: Iterable[ExpenseEntry],
    year: int,
    today: Optional[date] = None,
) -> PeriodTotals:
    """Year-to-date and full-year income/expense totals with the savings rate.

    For the current year, year-to-date sums stop at ``today``; for other years
    they cover the whole year.
    """
    today = today or date.today()
    prefix = str(year)
    cutoff = today.isoformat() if year == today.year else None

    year_income = [entry for entry in income if entry.date.startswith(prefix)]
    year_expenses = [entry for entry in expenses if entry.date.startswith(prefix)]

    ytd_income = sum((entry.amount for entry in year_income if cutoff is None or entry.date <= cutoff), ZERO)
    ytd_expenses = sum((entry.total for entry in year_expenses if cutoff is None or entry.date <= cutoff), ZERO)
    savings = ytd_income - ytd_expenses
    rate = savings / ytd_income * HUNDRED if ytd_income > 0 else ZERO

    return PeriodTotals(
        ytd_income=ytd_income,
        ytd_expenses=ytd_expenses,
        total_income=sum((entry.amount for entry in year_income), ZERO),
        total_expenses=sum((entry.total for entry in year_expenses), ZERO),
        savings=savings,
        savings_rate=rate,
    )


def net_income_trend(
    income: Iterable[IncomeEntry],
    expenses: Iterable[ExpenseEntry],
    year: int,
) -> List[NetIncomePoint]:
    """Monthly income, expense and net for ``year``, oldest first, at most the last 12 months.

    Entries are merged per calendar month; a month keeps the date and label of
    the first entry seen for it.
    """
    prefix = str(year)
    months: dict[str, list] = {}

    def merge(on: str, label: str, earned: Decimal, spent: Decimal) -> None:
        if not on.startswith(prefix):
            return
        slot = months.setdefault(on[:7], [on, label, ZERO, ZERO])
        slot[2] += earned
        slot[3] += spent

    for entry in income:
        merge(entry.date, entry.month_str, entry.amount, ZERO)
    for entry in expenses:
        merge(entry.date, entry.month_str, ZERO, entry.total)

    points = [
        NetIncomePoint(date=on, month_str=label, income=earned, expense=spent, net=earned - spent)
        for on, label, earned, spent in months.values()
    ]
    points.sort(key=lambda point: point.date)
    return points[-12:]


def calculate_tax_stats(records: Iterable[TaxRecord]) -> dict[str, TaxRoom]:
    """Contribution room per registered account from limit, contribution and withdrawal rows."""
    records = list(records)
    stats: dict[str, TaxRoom] = {}
    for account in TAX_ACCOUNTS:
        limit = contributions = withdrawals = ZERO
        for record in records:
            if account not in (record.record_type or "").upper():
                continue
            kind = (record.transaction_type or "").upper().strip()
            value = abs(record.value)
            if kind in TAX_LIMIT_TYPES:
                limit += value
            elif kind in TAX_CONTRIBUTION_TYPES:
                contributions += value
            elif kind in TAX_WITHDRAWAL_TYPES:
                withdrawals += value
        used = contributions - withdrawals
        stats[account] = TaxRoom(used=used, total_limit=limit, remaining=max(ZERO, limit - used))
    return stats


def calculate_subscription_burn(subscriptions: Iterable[Subscription]) -> Decimal:
    return sum(
        (calculate_monthly_burn(item.cost, item.period) for item in subscriptions if item.active),
        ZERO,
    )


def get_anchor_date(
    focus: TimeFocus,
    history: Sequence[NetWorthEntry],
    today: Optional[date] = None,
) -> date:
    """Start of the focus window; full history anchors on the oldest log entry."""
    oldest = min((entry.date for entry in history), default=None)
    history_start = date.fromisoformat(oldest[:10]) if oldest else None
    if TimeFocus(focus) == TimeFocus.CUSTOM:
        focus = TimeFocus.FULL_HISTORY
    return get_temporal_windows(focus, today, history_start=history_start).current.start


def resolve_attribution(
    current_net_worth: Decimal,
    history: Sequence[NetWorthEntry],
    income: Iterable[IncomeEntry],
    expenses: Iterable[ExpenseEntry],
    focus: TimeFocus,
    today: Optional[date] = None,
) -> NetWorthAttribution:
    anchor = get_anchor_date(focus, history, today)
    return calculate_net_worth_attribution(current_net_worth, history, income, expenses, anchor)
