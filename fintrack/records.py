from __future__ import annotations

from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

ZERO = Decimal("0")


class TradeSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class FlowType(str, Enum):
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"


class Record(BaseModel):
    model_config = ConfigDict(frozen=True)


class Asset(Record):
    id: str
    name: str
    type: str
    value: Decimal
    currency: str = "CAD"
    last_updated: str | None = None
    row_index: int | None = None


class Investment(Record):
    id: str
    ticker: str
    name: str
    quantity: Decimal
    avg_price: Decimal = ZERO
    current_price: Decimal = ZERO
    account_name: str = "Uncategorized"
    asset_class: str = "Other"
    market_value: Decimal | None = None


class Trade(Record):
    id: str
    date: str
    ticker: str
    type: TradeSide = TradeSide.BUY
    quantity: Decimal
    price: Decimal
    total: Decimal
    fee: Decimal = ZERO
    market_price: Decimal = ZERO
    row_index: int | None = None


class Subscription(Record):
    id: str
    name: str
    cost: Decimal
    period: str = "Monthly"
    category: str = "General"
    active: bool = True
    payment_method: str = ""
    row_index: int | None = None


class BankAccount(Record):
    id: str
    institution: str
    name: str
    type: str = "Checking"
    payment_type: str = "Card"
    account_number: str = "****"
    transaction_type: str = "Debit"
    currency: str = "CAD"
    purpose: str = "General"
    row_index: int | None = None


class DebtEntry(Record):
    id: str
    name: str
    amount_owed: Decimal
    interest_rate: Decimal = ZERO
    monthly_payment: Decimal = ZERO
    date: str | None = None


class TaxRecord(Record):
    id: str
    record_type: str
    account_fund: str = ""
    transaction_type: str = ""
    date: str = ""
    value: Decimal = ZERO
    description: str = ""
    row_index: int | None = None


class NetWorthEntry(Record):
    date: str
    value: Decimal
    currency: str | None = None


class IncomeEntry(Record):
    date: str
    month_str: str
    amount: Decimal


class ExpenseEntry(Record):
    date: str
    month_str: str
    categories: dict[str, Decimal] = Field(default_factory=dict)
    total: Decimal = ZERO


class IncomeAndExpenses(Record):
    income: list[IncomeEntry] = Field(default_factory=list)
    expenses: list[ExpenseEntry] = Field(default_factory=list)


class LedgerItem(Record):
    name: str
    monthly_values: list[Decimal]
    total: Decimal
    row_index: int | None = None


class LedgerCategory(Record):
    name: str
    sub_categories: list[LedgerItem] = Field(default_factory=list)
    total: Decimal = ZERO
    row_index: int | None = None


class LedgerData(Record):
    months: list[str] = Field(default_factory=list)
    categories: list[LedgerCategory] = Field(default_factory=list)

    def is_consistent(self) -> bool:
        width = len(self.months)
        for category in self.categories:
            subtotal = ZERO
            for item in category.sub_categories:
                if len(item.monthly_values) != width:
                    return False
                if sum(item.monthly_values, ZERO) != item.total:
                    return False
                subtotal += item.total
            if subtotal != category.total:
                return False
        return True


class NormalizedTransaction(Record):
    id: str
    date: str
    category: str
    sub_category: str
    amount: Decimal
    type: FlowType
