from __future__ import annotations

import logging
import re
from decimal import Decimal
from typing import Iterable, Mapping, Optional

from fintrack.classification import registered_account_for
from fintrack.currency_conversion import convert_to_base
from fintrack.records import Asset, Investment, Trade, TradeSide

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
QUANTITY_EPSILON = Decimal("0.000001")
UNKNOWN_TICKER = "UNKNOWN"

TICKER_ALIASES: dict[str, str] = {
    "ETHERUM": "ETH",
    "ETHERIUM": "ETH",
    "ETHEREUM": "ETH",
    "ETHER": "ETH",
    "BITCOIN": "BTC",
    "LITECOIN": "LTC",
    "SOLANA": "SOL",
    "CARDANO": "ADA",
    "RIPPLE": "XRP",
    "DOGECOIN": "DOGE",
}
CRYPTO_TICKERS = {"BTC", "ETH", "SOL", "ADA", "XRP", "DOGE", "LTC", "DOT", "USDT", "USDC"}

CRYPTO_ACCOUNT = "Crypto Wallet"
DEFAULT_ACCOUNT = "Uncategorized"
CASH_TICKER = "CASH"
CASH_ASSET_CLASS = "Cash & Summary"
CASH_LINE_KEYWORDS = ("cash", "uninvested")

PARENTHETICAL_RE = re.compile(r"\s*\(.*?\)\s*")
SEPARATOR_RE = re.compile(r"[-./]")


def normalize_ticker(ticker: str | None) -> str:
    if not ticker or not ticker.strip():
        return UNKNOWN_TICKER
    clean = ticker.upper().strip()
    if "(" in clean:
        clean = PARENTHETICAL_RE.sub("", clean)

    prefix = SEPARATOR_RE.split(clean, maxsplit=1)[0]
    if prefix:
        clean = prefix

    clean = clean.strip()
    if not clean:
        return UNKNOWN_TICKER
    if clean in TICKER_ALIASES:
        return TICKER_ALIASES[clean]
    for alias, symbol in TICKER_ALIASES.items():
        if clean.startswith(alias):
            return symbol
    return clean


def is_crypto_ticker(ticker: str) -> bool:
    return normalize_ticker(ticker) in CRYPTO_TICKERS


def signed_quantity(trade: Trade) -> Decimal:
    quantity = abs(trade.quantity)
    return -quantity if trade.type == TradeSide.SELL else quantity


def net_trade_quantities(trades: Iterable[Trade]) -> dict[str, Decimal]:
    holdings: dict[str, Decimal] = {}
    for trade in trades:
        if trade.quantity == 0:
            continue
        ticker = normalize_ticker(trade.ticker)
        holdings[ticker] = holdings.get(ticker, ZERO) + signed_quantity(trade)
    return holdings


def group_trades_by_ticker(trades: Iterable[Trade]) -> dict[str, list[Trade]]:
    grouped: dict[str, list[Trade]] = {}
    for trade in trades:
        ticker = normalize_ticker(trade.ticker)
        if ticker == UNKNOWN_TICKER:
            continue
        grouped.setdefault(ticker, []).append(trade)
    return grouped


def latest_trade(trades: list[Trade]) -> Trade:
    # Stable for equal dates, so the first listed row wins ties.
    return max(trades, key=lambda trade: trade.date)


def build_synthetic_portfolio(
    sheet_investments: list[Investment],
    trades: list[Trade],
    assets: list[Asset],
    rates: Mapping[str, Decimal] | None = None,
) -> list[Investment]:
    """Merge sheet holdings with positions implied by trades and cash balances.

    Tickers that only appear in the trade history become synthetic holdings.
    Registered-account balances from the assets sheet become cash holdings,
    unless that account already carries real holdings and the asset is not an
    explicit cash line.
    """
    sheet_tickers = {normalize_ticker(investment.ticker) for investment in sheet_investments}
    unified: list[Investment] = list(sheet_investments)

    for ticker, ticker_trades in group_trades_by_ticker(trades).items():
        if ticker in sheet_tickers:
            continue
        holding = _synthesize_holding(ticker, ticker_trades)
        if holding is not None:
            unified.append(holding)

    active_accounts = {(holding.account_name or "").upper().strip() for holding in unified}
    for asset in assets:
        account = registered_account_for(asset.name or "", asset.type or "")
        if account is None:
            continue
        name = (asset.name or "").lower()
        is_cash_line = any(keyword in name for keyword in CASH_LINE_KEYWORDS) or (
            (asset.type or "").lower().strip() == "cash"
        )
        if account.upper() in active_accounts and not is_cash_line:
            logger.debug("Skipping %s balance for %s, holdings already present", asset.name, account)
            continue
        base_value = convert_to_base(asset.value, asset.currency, rates)
        unified.append(
            Investment(
                id=f"asset-{asset.id}",
                ticker=CASH_TICKER,
                name=asset.name,
                quantity=Decimal("1"),
                avg_price=base_value,
                current_price=base_value,
                account_name=account,
                asset_class=CASH_ASSET_CLASS,
                market_value=base_value,
            )
        )
    return unified


def _synthesize_holding(ticker: str, ticker_trades: list[Trade]) -> Optional[Investment]:
    net_quantity = sum((signed_quantity(trade) for trade in ticker_trades), ZERO)
    if abs(net_quantity) <= QUANTITY_EPSILON:
        return None

    buys = [trade for trade in ticker_trades if trade.type == TradeSide.BUY]
    total_cost = sum((abs(trade.total) for trade in buys), ZERO)
    total_buy_quantity = sum((abs(trade.quantity) for trade in buys), ZERO)
    avg_price = total_cost / total_buy_quantity if total_buy_quantity > 0 else ZERO

    recent = latest_trade(ticker_trades)
    latest_price = recent.market_price or abs(recent.price)

    if ticker in CRYPTO_TICKERS:
        account, asset_class = CRYPTO_ACCOUNT, "Crypto"
    else:
        account, asset_class = DEFAULT_ACCOUNT, "Trade Derived"

    return Investment(
        id=f"synthetic-{ticker}",
        ticker=ticker,
        name=ticker,
        quantity=net_quantity,
        avg_price=avg_price,
        current_price=latest_price,
        account_name=account,
        asset_class=asset_class,
        market_value=net_quantity * latest_price,
    )


def reconcile_investments(investments: list[Investment], trades: list[Trade]) -> list[Investment]:
    """Rescale sheet lots so each ticker sums to its trade-implied quantity.

    Lots keep their relative proportions; the last lot absorbs the rounding
    remainder so the sum matches exactly.
    """
    if not investments:
        return []

    trade_holdings = net_trade_quantities(trades)
    by_ticker: dict[str, list[Investment]] = {}
    for investment in investments:
        by_ticker.setdefault(normalize_ticker(investment.ticker), []).append(investment)

    result: list[Investment] = []
    for ticker, lots in by_ticker.items():
        trade_quantity = trade_holdings.get(ticker)
        if trade_quantity is None:
            result.extend(lots)
            continue

        sheet_total = sum((lot.quantity for lot in lots), ZERO)
        if sheet_total == 0:
            result.append(lots[0].model_copy(update={"quantity": trade_quantity}))
            result.extend(lot.model_copy(update={"quantity": ZERO}) for lot in lots[1:])
            continue

        remaining = trade_quantity
        for index, lot in enumerate(lots):
            if index == len(lots) - 1:
                new_quantity = remaining
            else:
                new_quantity = trade_quantity * (lot.quantity / sheet_total)
                remaining -= new_quantity
            result.append(lot.model_copy(update={"quantity": new_quantity}))
    return result


def resolve_current_price(
    ticker: str,
    live_prices: Mapping[str, Decimal],
    trades: list[Trade],
    sheet_price: Decimal | None,
) -> Decimal:
    live = live_prices.get(ticker) or live_prices.get(normalize_ticker(ticker))
    if live:
        return Decimal(str(live))
    if trades:
        with_market_price = next((trade for trade in trades if trade.market_price > 0), None)
        if with_market_price is not None:
            return with_market_price.market_price
        if trades[0].price:
            return abs(trades[0].price)
    return sheet_price or ZERO


def calculate_holding_value(
    quantity: Decimal,
    price: Decimal,
    market_value: Decimal | None = None,
    is_live: bool = False,
) -> Decimal:
    if abs(quantity) < QUANTITY_EPSILON:
        return ZERO
    if is_live:
        return quantity * price
    if market_value is not None and market_value > 0:
        return market_value
    return quantity * price


def value_holdings(
    holdings: list[Investment],
    live_prices: Mapping[str, Decimal] | None = None,
) -> dict[str, Decimal]:
    """Market value of each holding keyed by id, preferring live quotes."""
    quotes = live_prices or {}
    values: dict[str, Decimal] = {}
    for holding in holdings:
        ticker = normalize_ticker(holding.ticker)
        live = quotes.get(ticker)
        if live:
            values[holding.id] = calculate_holding_value(
                holding.quantity, Decimal(str(live)), holding.market_value, is_live=True
            )
        else:
            values[holding.id] = calculate_holding_value(
                holding.quantity, holding.current_price, holding.market_value
            )
    return values
