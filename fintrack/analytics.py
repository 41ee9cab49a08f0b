from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Iterable, List, Mapping, Optional, Sequence

from fintrack.records import ExpenseEntry, IncomeEntry, NetWorthEntry, Trade, TradeSide
from fintrack.temporal import DateWindow, filter_by_window

ZERO = Decimal("0")
HUNDRED = Decimal("100")
TWO = Decimal("2")
MIN_DIETZ_DIVISOR = Decimal("1")
DAYS_PER_YEAR = Decimal("365")


@dataclass(frozen=True)
class PortfolioLogEntry:
    date: str
    accounts: Mapping[str, Decimal] = field(default_factory=dict)


@dataclass(frozen=True)
class ValuationPoint:
    date: str
    total_value: Decimal
    percent_change: Decimal = ZERO
    accounts: Mapping[str, Decimal] = field(default_factory=dict)


@dataclass(frozen=True)
class DietzReturn:
    gain: Decimal
    percentage: Decimal


@dataclass(frozen=True)
class PortfolioAttribution:
    start_value: Decimal
    end_value: Decimal
    total_growth: Decimal
    contributions: Decimal
    withdrawals: Decimal
    market_alpha: Decimal
    alpha_percentage: Decimal

    @property
    def net_flow(self) -> Decimal:
        return self.contributions - self.withdrawals


@dataclass(frozen=True)
class NetWorthAttribution:
    start_value: Decimal
    end_value: Decimal
    net_contributions: Decimal
    market_gain: Decimal
    percentage_return: Decimal


@dataclass(frozen=True)
class BenchmarkPoint:
    date: str
    portfolio: Decimal
    benchmark: Decimal


@dataclass(frozen=True)
class VolatilityPoint:
    date: str
    volatility: Decimal


def process_portfolio_history(
    history: Sequence[PortfolioLogEntry],
    window: Optional[DateWindow] = None,
) -> tuple[List[ValuationPoint], List[str]]:
    """Sum account balances per log entry and express growth against the first entry."""
    if not history:
        return [], []
    ordered = sorted(history, key=lambda entry: entry.date)
    if window is not None:
        ordered = filter_by_window(ordered, window)
    if not ordered:
        return [], []

    account_keys = sorted({key for entry in ordered for key in entry.accounts})
    anchor_total = sum((value or ZERO for value in ordered[0].accounts.values()), ZERO)

    points: List[ValuationPoint] = []
    for entry in ordered:
        total = sum((value or ZERO for value in entry.accounts.values()), ZERO)
        change = (total - anchor_total) / anchor_total * HUNDRED if anchor_total > 0 else ZERO
        points.append(ValuationPoint(date=entry.date, total_value=total, percent_change=change, accounts=entry.accounts))
    return points, account_keys


def net_worth_series(entries: Iterable[NetWorthEntry]) -> List[ValuationPoint]:
    return [ValuationPoint(date=entry.date, total_value=entry.value) for entry in sorted(entries, key=lambda e: e.date)]


def calculate_dietz_return(start_value: Decimal, end_value: Decimal, net_flow: Decimal) -> DietzReturn:
    """Simple Dietz: (end - start - flow) / (start + flow / 2).

    When the average capital is within 1 of zero the start value is used as
    the divisor instead, and a non-positive start value yields 0 percent.
    """
    gain = end_value - start_value - net_flow
    average_capital = start_value + net_flow / TWO
    if abs(average_capital) > MIN_DIETZ_DIVISOR:
        percentage = gain / abs(average_capital) * HUNDRED
    elif start_value > 0:
        percentage = gain / start_value * HUNDRED
    else:
        percentage = ZERO
    if not percentage.is_finite():
        percentage = ZERO
    return DietzReturn(gain=gain, percentage=percentage)


def calculate_portfolio_attribution(
    series: Sequence[ValuationPoint],
    trades: Iterable[Trade],
    window: Optional[DateWindow] = None,
) -> Optional[PortfolioAttribution]:
    """Split portfolio growth into contributions, withdrawals and market gain.

    BUY settlement totals count as contributions and SELL totals as
    withdrawals. Without a window, the span of the series is used. Returns
    ``None`` when fewer than two valuations fall in the window.
    """
    points = sorted(series, key=lambda point: point.date)
    if window is not None:
        points = filter_by_window(points, window)
    if len(points) < 2:
        return None

    start, end = points[0], points[-1]
    span = window or DateWindow(date.fromisoformat(start.date[:10]), date.fromisoformat(end.date[:10]))
    window_trades = filter_by_window(trades, span)
    contributions = sum((abs(trade.total) for trade in window_trades if trade.type == TradeSide.BUY), ZERO)
    withdrawals = sum((abs(trade.total) for trade in window_trades if trade.type == TradeSide.SELL), ZERO)

    total_growth = end.total_value - start.total_value
    dietz = calculate_dietz_return(start.total_value, end.total_value, contributions - withdrawals)
    return PortfolioAttribution(
        start_value=start.total_value,
        end_value=end.total_value,
        total_growth=total_growth,
        contributions=contributions,
        withdrawals=withdrawals,
        market_alpha=dietz.gain,
        alpha_percentage=dietz.percentage,
    )


def calculate_net_worth_attribution(
    current_net_worth: Decimal,
    history: Sequence[NetWorthEntry],
    income: Iterable[IncomeEntry],
    expenses: Iterable[ExpenseEntry],
    anchor: date,
) -> NetWorthAttribution:
    """Attribute net worth change since ``anchor`` to savings versus markets.

    Savings (income minus expenses logged since the anchor) are the new
    capital; whatever growth they do not explain is market gain.
    """
    anchor_iso = anchor.isoformat()
    newest_first = sorted(history, key=lambda entry: entry.date, reverse=True)
    start_entry = next((entry for entry in newest_first if entry.date <= anchor_iso), None)
    if start_entry is None and newest_first:
        start_entry = newest_first[-1]
    start_value = start_entry.value if start_entry is not None else ZERO

    period_income = sum((entry.amount for entry in income if entry.date >= anchor_iso), ZERO)
    period_expense = sum((entry.total for entry in expenses if entry.date >= anchor_iso), ZERO)
    net_savings = period_income - period_expense

    dietz = calculate_dietz_return(start_value, current_net_worth, net_savings)
    return NetWorthAttribution(
        start_value=start_value,
        end_value=current_net_worth,
        net_contributions=net_savings,
        market_gain=dietz.gain,
        percentage_return=dietz.percentage,
    )


def calculate_max_drawdown(series: Sequence[ValuationPoint]) -> Decimal:
    """Deepest peak-to-trough decline, as a non-positive percentage."""
    if len(series) < 2:
        return ZERO
    max_drawdown = ZERO
    peak = series[0].total_value
    for point in series:
        if point.total_value > peak:
            peak = point.total_value
        drawdown = (point.total_value - peak) / peak * HUNDRED if peak > 0 else ZERO
        if drawdown < max_drawdown:
            max_drawdown = drawdown
    return max_drawdown


def _days_between(start: str, end: str) -> int:
    return (date.fromisoformat(end[:10]) - date.fromisoformat(start[:10])).days


def calculate_velocity(series: Sequence[ValuationPoint]) -> Decimal:
    """Average change in value per day across the series."""
    if len(series) < 2:
        return ZERO
    start, end = series[0], series[-1]
    days = max(1, _days_between(start.date, end.date))
    return (end.total_value - start.total_value) / Decimal(days)


def calculate_volatility(series: Sequence[ValuationPoint]) -> Decimal:
    """Annualized volatility of log returns, in percent."""
    if len(series) < 3:
        return ZERO

    returns: List[Decimal] = []
    for previous, current in zip(series, series[1:]):
        if previous.total_value > 0 and current.total_value > 0:
            returns.append((current.total_value / previous.total_value).ln())
    if len(returns) < 2:
        return ZERO

    mean = sum(returns, ZERO) / len(returns)
    variance = sum(((value - mean) ** 2 for value in returns), ZERO) / (len(returns) - 1)
    deviation = variance.sqrt()

    average_gap = Decimal(_days_between(series[0].date, series[-1].date)) / (len(series) - 1)
    annualization = (DAYS_PER_YEAR / max(Decimal("1"), average_gap)).sqrt()
    return deviation * annualization * HUNDRED


def calculate_rolling_volatility(series: Sequence[ValuationPoint], window_size: int = 4) -> List[VolatilityPoint]:
    if len(series) < window_size:
        return []
    return [
        VolatilityPoint(date=series[end - 1].date, volatility=calculate_volatility(series[end - window_size:end]))
        for end in range(window_size, len(series) + 1)
    ]


def benchmark_comparison(
    series: Sequence[ValuationPoint],
    benchmark: Mapping[str, Decimal],
) -> List[BenchmarkPoint]:
    """Cumulative percent return of the portfolio next to a benchmark price series."""
    if len(series) < 2 or len(benchmark) < 2:
        return []
    first_benchmark = benchmark[min(benchmark)]
    first_value = series[0].total_value
    points: List[BenchmarkPoint] = []
    for point in series:
        price = benchmark.get(point.date)
        portfolio = (point.total_value / first_value - 1) * HUNDRED if first_value > 0 else ZERO
        relative = (price / first_benchmark - 1) * HUNDRED if price is not None and first_benchmark > 0 else ZERO
        points.append(BenchmarkPoint(date=point.date, portfolio=portfolio, benchmark=relative))
    return points


def waterfall_steps(attribution: Optional[PortfolioAttribution]) -> List[dict]:
    if attribution is None:
        return []
    start = attribution.start_value
    peak = start + attribution.contributions
    after_sells = peak - attribution.withdrawals
    end = attribution.end_value
    return [
        {"name": "Start", "range": [ZERO, start], "actual": start, "type": "anchor"},
        {"name": "Inflow", "range": [start, peak], "actual": attribution.contributions, "type": "inflow"},
        {"name": "Outflow", "range": [after_sells, peak], "actual": -attribution.withdrawals, "type": "outflow"},
        {
            "name": "Yield",
            "range": [min(after_sells, end), max(after_sells, end)],
            "actual": attribution.market_alpha,
            "type": "yield",
        },
        {"name": "Current", "range": [ZERO, end], "actual": end, "type": "anchor"},
    ]
