"""
Keyword heuristics for classifying spreadsheet rows.

Every heuristic is an ordered list of rules evaluated top-to-bottom; the
first rule whose keywords appear in the inspected text decides the result.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from fintrack.records import Asset


@dataclass(frozen=True)
class KeywordRule:
    keywords: tuple[str, ...]
    result: str

    def matches(self, *texts: str) -> bool:
        lowered = [text.lower() for text in texts if text]
        return any(keyword in text for text in lowered for keyword in self.keywords)


def first_match(rules: Iterable[KeywordRule], *texts: str) -> Optional[str]:
    for rule in rules:
        if rule.matches(*texts):
            return rule.result
    return None


# Checked against the asset name only; the name beats a missing or
# mis-mapped type column.
ASSET_TYPE_RULES: tuple[KeywordRule, ...] = (
    KeywordRule(("fhsa",), "FHSA"),
    KeywordRule(("tfsa",), "TFSA"),
    KeywordRule(("rrsp",), "RRSP"),
    KeywordRule(("crypto", "btc", "eth"), "Crypto"),
    KeywordRule(("fund", "savings"), "Cash"),
    KeywordRule(("car", "vehicle"), "Personal Property"),
    KeywordRule(("house", "real estate", "property", "condo"), "Real Estate"),
)

INVESTMENT_TYPE_KEYWORDS = (
    "investment",
    "crypto",
    "stock",
    "etf",
    "retirement",
    "pension",
    "tfsa",
    "fhsa",
    "rrsp",
)
INVESTMENT_NAME_KEYWORDS = ("tfsa", "fhsa", "rrsp", "pension", "crypto")
FIXED_TYPE_KEYWORDS = ("real estate", "property", "house", "vehicle", "car")
CASH_NAME_KEYWORDS = ("fund", "savings")

REGISTERED_ACCOUNT_RULES: tuple[KeywordRule, ...] = (
    KeywordRule(("tfsa",), "TFSA"),
    KeywordRule(("fhsa",), "FHSA"),
    KeywordRule(("rrsp",), "RRSP"),
    KeywordRule(("resp",), "RESP"),
    KeywordRule(("lira",), "LIRA"),
)

CARD_TRANSACTION_RULES: tuple[KeywordRule, ...] = (
    KeywordRule(("credit", "visa", "mastercard", "amex"), "Credit"),
)

INACTIVE_VALUES = {"false", "no", "inactive", "cancelled"}


def classify_asset_type(name: str, declared_type: str | None) -> str:
    return first_match(ASSET_TYPE_RULES, name) or (declared_type or "").strip() or "Other"


def is_investment_asset(asset: Asset) -> bool:
    asset_type = (asset.type or "").lower()
    name = (asset.name or "").lower()
    return any(keyword in asset_type for keyword in INVESTMENT_TYPE_KEYWORDS) or any(
        keyword in name for keyword in INVESTMENT_NAME_KEYWORDS
    )


def is_fixed_asset(asset: Asset) -> bool:
    asset_type = (asset.type or "").lower()
    name = (asset.name or "").lower()
    # "Car Fund" is savings, not a vehicle.
    if any(keyword in name for keyword in CASH_NAME_KEYWORDS):
        return False
    return any(keyword in asset_type for keyword in FIXED_TYPE_KEYWORDS)


def is_cash_asset(asset: Asset) -> bool:
    name = (asset.name or "").lower()
    if any(keyword in name for keyword in CASH_NAME_KEYWORDS) and "pension" not in name:
        return True
    if is_investment_asset(asset):
        return False
    if is_fixed_asset(asset):
        return False
    return True


def registered_account_for(name: str, asset_type: str) -> Optional[str]:
    return first_match(REGISTERED_ACCOUNT_RULES, name, asset_type)


def classify_card_transaction_type(account_type: str, payment_type: str, name: str) -> str:
    return first_match(CARD_TRANSACTION_RULES, account_type, payment_type, name) or "Debit"


def is_active_flag(value: str | None) -> bool:
    if not value or not value.strip():
        return True
    return value.strip().lower() not in INACTIVE_VALUES
