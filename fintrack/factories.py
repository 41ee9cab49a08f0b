from __future__ import annotations

import logging
import re
import uuid
from datetime import date
from decimal import Decimal
from typing import ClassVar, Optional, Union

from fintrack.classification import (
    classify_asset_type,
    classify_card_transaction_type,
    is_active_flag,
)
from fintrack.headers import HEADER_KEYWORDS, resolve_indices, score_header_row
from fintrack.portfolio import UNKNOWN_TICKER, normalize_ticker
from fintrack.records import (
    Asset,
    BankAccount,
    DebtEntry,
    Investment,
    NetWorthEntry,
    Subscription,
    TaxRecord,
    Trade,
    TradeSide,
)
from fintrack.sanitizer import (
    cell,
    is_blank_row,
    parse_csv_line,
    parse_flexible_date,
    parse_number,
    split_lines,
)

logger = logging.getLogger(__name__)

SheetRecord = Union[Asset, Investment, Trade, Subscription, BankAccount, NetWorthEntry, DebtEntry, TaxRecord]

SELL_MARKERS = ("SELL", "SOLD", "OUT")
NUMERIC_NAME_RE = re.compile(r"^\$?\d")


def generate_id() -> str:
    return uuid.uuid4().hex


class RecordFactory:
    """Turns raw sheet rows into one record type.

    Column indices are resolved once from the header row; ``build`` then maps
    each data row to a record, or ``None`` when the row carries no real data.
    """

    sheet_type: ClassVar[str] = ""
    columns: ClassVar[dict[str, tuple[str, ...]]] = {}
    stamps_row_index: ClassVar[bool] = False

    def __init__(self, headers: list[str], today: date | None = None) -> None:
        self.headers = headers
        self.today = today or date.today()
        self.indices = resolve_indices(headers, self.columns)

    def text(self, values: list[str], field: str) -> str:
        return cell(values, self.indices[field])

    def number(self, values: list[str], field: str) -> Decimal:
        return parse_number(self.text(values, field))

    def build(self, values: list[str], row_index: int | None = None) -> Optional[SheetRecord]:
        raise NotImplementedError

    def row_index(self, row_index: int | None) -> int | None:
        return row_index if self.stamps_row_index else None


class AssetFactory(RecordFactory):
    sheet_type = "assets"
    stamps_row_index = True
    columns = {
        "name": ("name", "account", "asset", "item", "description", "holding", "security"),
        "type": ("type", "category", "class", "asset type", "kind"),
        "value": ("value", "amount", "balance", "current value", "market value", "total", "market val"),
        "currency": ("currency", "curr", "ccy"),
        "last_updated": ("last updated", "date", "updated", "as of"),
    }

    def build(self, values: list[str], row_index: int | None = None) -> Optional[Asset]:
        name = self.text(values, "name") or "Unknown Asset"
        value = self.number(values, "value")
        if name == "Unknown Asset" and value == 0:
            return None
        last_updated = self.text(values, "last_updated")
        return Asset(
            id=generate_id(),
            name=name,
            type=classify_asset_type(name, self.text(values, "type")),
            value=value,
            currency=(self.text(values, "currency") or "CAD").upper(),
            last_updated=parse_flexible_date(last_updated, self.today) or last_updated or None,
            row_index=self.row_index(row_index),
        )


class InvestmentFactory(RecordFactory):
    sheet_type = "investments"
    columns = {
        "name": ("name", "description", "investment", "security", "company"),
        "ticker": ("ticker", "symbol", "code", "stock", "instrument"),
        "quantity": ("quantity", "qty", "units", "shares", "count"),
        "avg_price": ("avg price", "average price", "cost", "avg cost", "book value", "acb", "unit cost"),
        "current_price": ("current price", "price", "market price", "unit price", "last price"),
        "account": ("account", "account name", "location", "held in", "portfolio"),
        "asset_class": ("asset class", "class", "type", "category", "sector"),
        "market_value": ("market value", "value", "total value", "market val"),
    }

    def build(self, values: list[str], row_index: int | None = None) -> Optional[Investment]:
        name = self.text(values, "name") or "Unknown Investment"
        ticker = self.text(values, "ticker") or name
        quantity = self.number(values, "quantity")
        if ticker == "Unknown Investment" and quantity == 0:
            return None
        current_price = self.number(values, "current_price")
        market_value = self.number(values, "market_value")
        if current_price == 0 and quantity != 0 and market_value != 0:
            current_price = market_value / quantity
        return Investment(
            id=generate_id(),
            ticker=ticker,
            name=name,
            quantity=quantity,
            avg_price=self.number(values, "avg_price"),
            current_price=current_price,
            account_name=self.text(values, "account") or "Uncategorized",
            asset_class=self.text(values, "asset_class") or "Other",
            market_value=market_value or None,
        )


class TradeFactory(RecordFactory):
    sheet_type = "trades"
    stamps_row_index = True
    columns = {
        "date": ("date", "time", "trade date", "executed"),
        "ticker": ("ticker", "symbol", "code", "asset", "product", "security", "instrument"),
        "quantity": ("quantity", "qty", "shares", "units", "volume"),
        "type": ("type", "action", "side", "transaction", "buy/sell"),
        "price": (
            "purchase price",
            "buy price",
            "execution price",
            "exec price",
            "unit cost",
            "cost",
            "unit price",
            "fill price",
            "price",
            "amount",
            "rate",
        ),
        "market_price": ("current price", "market price", "last price", "current", "close", "live price", "mark"),
        "total": ("total", "value", "total value", "net amount", "settlement"),
        "fee": ("fee", "commission", "transaction fee"),
    }

    def build(self, values: list[str], row_index: int | None = None) -> Optional[Trade]:
        raw_ticker = self.text(values, "ticker")
        ticker = normalize_ticker(raw_ticker)
        if ticker == UNKNOWN_TICKER:
            return None

        raw_date = self.text(values, "date")
        trade_date = parse_flexible_date(raw_date, self.today) or self.today.isoformat()

        quantity = self.number(values, "quantity")
        raw_type = self.text(values, "type").upper()
        side = TradeSide.BUY
        if any(marker in raw_type for marker in SELL_MARKERS) or quantity < 0:
            side = TradeSide.SELL

        price = self.number(values, "price")
        total = self.number(values, "total")
        if total == 0 and quantity != 0 and price != 0:
            total = quantity * price
        if price == 0 and quantity != 0 and total != 0:
            price = total / quantity

        return Trade(
            id=generate_id(),
            date=trade_date,
            ticker=ticker,
            type=side,
            quantity=abs(quantity),
            price=abs(price),
            total=abs(total),
            fee=self.number(values, "fee"),
            market_price=abs(self.number(values, "market_price")),
            row_index=self.row_index(row_index),
        )


class SubscriptionFactory(RecordFactory):
    sheet_type = "subscriptions"
    stamps_row_index = True
    columns = {
        "name": ("name", "service", "subscription", "item", "merchant", "description"),
        "cost": ("cost", "price", "amount", "monthly cost", "value", "payment"),
        "period": ("period", "frequency", "billing cycle"),
        "category": ("category", "type", "kind"),
        "active": ("active", "status"),
        "method": ("payment method", "account", "card", "source"),
    }

    def build(self, values: list[str], row_index: int | None = None) -> Optional[Subscription]:
        name = self.text(values, "name") or "Unknown Service"
        cost = self.number(values, "cost")
        if cost <= 0 and name == "Unknown Service":
            return None
        return Subscription(
            id=generate_id(),
            name=name,
            cost=cost,
            period=self.text(values, "period") or "Monthly",
            category=self.text(values, "category") or "General",
            active=is_active_flag(self.text(values, "active")),
            payment_method=self.text(values, "method"),
            row_index=self.row_index(row_index),
        )


class AccountFactory(RecordFactory):
    sheet_type = "accounts"
    stamps_row_index = True
    columns = {
        "institution": ("institution", "bank", "provider", "financial institution", "source"),
        "name": ("name", "account name", "nickname", "label", "account"),
        "type": ("type", "category", "account type"),
        "payment_type": ("payment type", "method", "network", "card type"),
        "number": ("account number", "number", "last 4", "card number"),
        "transaction_type": ("transaction type", "class"),
        "currency": ("currency", "curr", "ccy"),
        "purpose": ("purpose", "description", "usage", "merchant"),
    }

    def build(self, values: list[str], row_index: int | None = None) -> Optional[BankAccount]:
        institution = self.text(values, "institution") or "Unknown Bank"
        name = self.text(values, "name") or "Account"
        if institution == "Unknown Bank" and name == "Account":
            return None
        account_type = self.text(values, "type") or "Checking"
        payment_type = self.text(values, "payment_type") or "Card"
        account_number = self.text(values, "number") or "****"
        if len(account_number) > 4:
            account_number = account_number[-4:]
        transaction_type = self.text(values, "transaction_type") or classify_card_transaction_type(
            account_type, payment_type, name
        )
        return BankAccount(
            id=generate_id(),
            institution=institution,
            name=name,
            type=account_type,
            payment_type=payment_type,
            account_number=account_number,
            transaction_type=transaction_type,
            currency=(self.text(values, "currency") or "CAD").upper(),
            purpose=self.text(values, "purpose") or "General",
            row_index=self.row_index(row_index),
        )


class NetWorthFactory(RecordFactory):
    sheet_type = "log_data"
    columns = {
        "date": ("date", "time", "timestamp", "week ending"),
        "value": ("net worth", "total", "value", "amount", "balance", "equity"),
    }

    def build(self, values: list[str], row_index: int | None = None) -> Optional[NetWorthEntry]:
        raw_date = self.text(values, "date") if self.indices["date"] != -1 else cell(values, 0)
        raw_value = self.text(values, "value") if self.indices["value"] != -1 else cell(values, 1)
        value = parse_number(raw_value)
        if not raw_date and value == 0:
            return None
        entry_date = parse_flexible_date(raw_date, self.today)
        if entry_date is None:
            return None
        return NetWorthEntry(date=entry_date, value=value)


class DebtFactory(RecordFactory):
    sheet_type = "debt"
    columns = {
        "name": ("name", "debt name", "loan", "description", "type", "account", "student loan"),
        "owed": ("remaining", "loan remaining", "debt owed", "amount", "balance", "principal", "debt"),
        "rate": ("interest rate", "rate", "apr", "interest"),
        "payment": ("monthly payment", "payment", "min payment", "monthly"),
        "date": ("date", "as of", "updated"),
    }

    def build(self, values: list[str], row_index: int | None = None) -> Optional[DebtEntry]:
        name = self.text(values, "name") or "Loan"
        if NUMERIC_NAME_RE.match(name) and parse_number(name) != 0:
            name = "Loan"
        amount_owed = self.number(values, "owed")
        interest_rate = self.number(values, "rate")
        monthly_payment = self.number(values, "payment")
        if amount_owed == 0 and monthly_payment == 0 and interest_rate == 0:
            return None
        return DebtEntry(
            id=generate_id(),
            name=name,
            amount_owed=amount_owed,
            interest_rate=interest_rate,
            monthly_payment=monthly_payment,
            date=parse_flexible_date(self.text(values, "date"), self.today),
        )


class TaxRecordFactory(RecordFactory):
    sheet_type = "tax"
    stamps_row_index = True
    columns = {
        "record_type": ("account type", "record type", "type"),
        "account_fund": ("account fund", "fund", "account"),
        "transaction_type": ("transcation type", "transaction type", "trans type", "action"),
        "date": ("date", "time"),
        "value": ("value", "amount"),
        "description": ("description", "note", "details"),
    }

    def build(self, values: list[str], row_index: int | None = None) -> Optional[TaxRecord]:
        record_type = self.text(values, "record_type") or self.text(values, "account_fund")
        value = self.number(values, "value")
        if not record_type and value == 0:
            return None
        raw_date = self.text(values, "date")
        return TaxRecord(
            id=generate_id(),
            record_type=record_type or "Unknown",
            account_fund=self.text(values, "account_fund") or record_type,
            transaction_type=self.text(values, "transaction_type"),
            date=parse_flexible_date(raw_date, self.today) or raw_date,
            value=value,
            description=self.text(values, "description"),
            row_index=self.row_index(row_index),
        )


FACTORIES: dict[str, type[RecordFactory]] = {
    factory.sheet_type: factory
    for factory in (
        AssetFactory,
        InvestmentFactory,
        TradeFactory,
        SubscriptionFactory,
        AccountFactory,
        NetWorthFactory,
        DebtFactory,
        TaxRecordFactory,
    )
}


def parse_sheet(raw: str | None, sheet_type: str, today: date | None = None) -> list[SheetRecord]:
    """Parse one flat (one-row-per-record) sheet into typed records."""
    factory_cls = FACTORIES.get(sheet_type)
    if factory_cls is None:
        raise ValueError(f"Unsupported sheet type: {sheet_type}")

    lines = split_lines(raw)
    if len(lines) < 2:
        return []

    header_index = score_header_row(lines, HEADER_KEYWORDS[sheet_type])
    if header_index == -1:
        return []

    factory = factory_cls(parse_csv_line(lines[header_index]), today=today)
    records: list[SheetRecord] = []
    for index in range(header_index + 1, len(lines)):
        line = lines[index]
        if sheet_type == "debt" and not line.strip():
            if index + 1 < len(lines) and not lines[index + 1].strip():
                break
        values = parse_csv_line(line)
        if is_blank_row(values):
            continue
        record = factory.build(values, index)
        if record is None:
            logger.debug("Skipped %s row %d with no usable data", sheet_type, index)
            continue
        records.append(record)
    return records


def select_primary_loan(debts: list[DebtEntry]) -> list[DebtEntry]:
    loan = next((debt for debt in debts if "loan" in (debt.name or "").lower()), None)
    return [loan] if loan is not None else []
