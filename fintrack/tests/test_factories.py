import unittest
from datetime import date
from decimal import Decimal

from fintrack.factories import (
    FACTORIES,
    AccountFactory,
    AssetFactory,
    DebtFactory,
    InvestmentFactory,
    TradeFactory,
    parse_sheet,
    select_primary_loan,
)
from fintrack.records import DebtEntry, TradeSide

TODAY = date(2024, 6, 30)


class BlankRowTests(unittest.TestCase):
    def test_blank_rows_never_produce_records(self) -> None:
        headers = {
            "assets": ["Name", "Type", "Value", "Currency"],
            "investments": ["Ticker", "Name", "Quantity", "Price"],
            "trades": ["Date", "Ticker", "Type", "Quantity", "Price", "Total"],
            "subscriptions": ["Name", "Cost", "Period", "Active"],
            "accounts": ["Institution", "Name", "Type"],
            "log_data": ["Date", "Net Worth"],
            "debt": ["Name", "Balance", "Rate", "Payment"],
            "tax": ["Account Type", "Transaction Type", "Date", "Value"],
        }
        for sheet_type, factory_cls in FACTORIES.items():
            with self.subTest(sheet_type=sheet_type):
                factory = factory_cls(headers[sheet_type], today=TODAY)
                blank = ["" for _ in headers[sheet_type]]
                self.assertIsNone(factory.build(blank, 3))
                self.assertIsNone(factory.build(["  "] * len(blank), 3))

    def test_parse_sheet_skips_blank_lines(self) -> None:
        raw = "Name,Type,Value\nChequing,Cash,100\n,,\n\nHouse,,500000"

        assets = parse_sheet(raw, "assets", today=TODAY)

        self.assertEqual([asset.name for asset in assets], ["Chequing", "House"])
        self.assertEqual(assets[1].type, "Real Estate")
        self.assertEqual(assets[1].row_index, 4)


class AssetFactoryTests(unittest.TestCase):
    def test_rejects_row_without_identity_or_value(self) -> None:
        factory = AssetFactory(["Name", "Value"], today=TODAY)

        self.assertIsNone(factory.build(["", "0"]))
        self.assertIsNotNone(factory.build(["", "25"]))

    def test_builds_asset_with_currency_and_date(self) -> None:
        factory = AssetFactory(["Name", "Type", "Value", "Currency", "Last Updated"], today=TODAY)

        asset = factory.build(["My TFSA", "Other", "$12,000", "usd", "Jan-24"], 7)

        self.assertEqual(asset.type, "TFSA")
        self.assertEqual(asset.value, Decimal("12000"))
        self.assertEqual(asset.currency, "USD")
        self.assertEqual(asset.last_updated, "2024-01-01")
        self.assertEqual(asset.row_index, 7)


class InvestmentFactoryTests(unittest.TestCase):
    def test_price_derived_from_market_value(self) -> None:
        factory = InvestmentFactory(["Ticker", "Name", "Quantity", "Market Value"], today=TODAY)

        holding = factory.build(["VFV", "Vanguard S&P 500", "10", "1,250"])

        self.assertEqual(holding.current_price, Decimal("125"))
        self.assertEqual(holding.market_value, Decimal("1250"))
        self.assertEqual(holding.account_name, "Uncategorized")


class TradeFactoryTests(unittest.TestCase):
    def setUp(self) -> None:
        self.factory = TradeFactory(
            ["Date", "Ticker", "Type", "Quantity", "Price", "Total", "Fee"],
            today=TODAY,
        )

    def test_total_derived_from_quantity_and_price(self) -> None:
        trade = self.factory.build(["2024-01-05", "AAPL", "Buy", "10", "150", "", "1"], 2)

        self.assertEqual(trade.total, Decimal("1500"))
        self.assertEqual(trade.type, TradeSide.BUY)
        self.assertEqual(trade.fee, Decimal("1"))
        self.assertEqual(trade.row_index, 2)

    def test_price_derived_from_total(self) -> None:
        trade = self.factory.build(["2024-01-05", "AAPL", "Buy", "4", "", "100", ""])

        self.assertEqual(trade.price, Decimal("25"))

    def test_negative_quantity_is_a_sell_stored_unsigned(self) -> None:
        trade = self.factory.build(["2024-02-01", "Bitcoin", "", "-0.5", "60000", "", ""])

        self.assertEqual(trade.type, TradeSide.SELL)
        self.assertEqual(trade.ticker, "BTC")
        self.assertEqual(trade.quantity, Decimal("0.5"))
        self.assertEqual(trade.total, Decimal("30000"))

    def test_sell_marker_in_type(self) -> None:
        trade = self.factory.build(["2024-02-01", "XEQT.TO", "Sold", "3", "30", "", ""])

        self.assertEqual(trade.type, TradeSide.SELL)
        self.assertEqual(trade.ticker, "XEQT")

    def test_missing_ticker_rejects_row(self) -> None:
        self.assertIsNone(self.factory.build(["2024-02-01", "", "Buy", "3", "30", "", ""]))

    def test_unparseable_date_defaults_to_today(self) -> None:
        trade = self.factory.build(["someday", "AAPL", "Buy", "1", "1", "", ""])

        self.assertEqual(trade.date, "2024-06-30")


class AccountFactoryTests(unittest.TestCase):
    def test_account_number_keeps_last_four_digits(self) -> None:
        factory = AccountFactory(["Institution", "Name", "Type", "Account Number"], today=TODAY)

        account = factory.build(["RBC", "Avion", "Credit Card", "4520123498765432"])

        self.assertEqual(account.account_number, "5432")
        self.assertEqual(account.transaction_type, "Credit")


class SheetParsingTests(unittest.TestCase):
    def test_unknown_sheet_type_raises(self) -> None:
        with self.assertRaises(ValueError):
            parse_sheet("a,b\n1,2", "mystery")

    def test_empty_and_single_line_input(self) -> None:
        self.assertEqual(parse_sheet("", "assets"), [])
        self.assertEqual(parse_sheet("Name,Value", "assets"), [])

    def test_net_worth_log_falls_back_to_first_columns(self) -> None:
        raw = "When,Held\n2024-01-31,\"$10,000\"\nsometime,5"

        entries = parse_sheet(raw, "log_data", today=TODAY)

        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0].date, "2024-01-31")
        self.assertEqual(entries[0].value, Decimal("10000"))

    def test_debt_sheet_stops_at_double_blank_line(self) -> None:
        raw = "\n".join(
            [
                "Name,Balance,Rate,Payment",
                "Student Loan,20000,5.5,300",
                "",
                "",
                "Car Loan,15000,6,400",
            ]
        )

        debts = parse_sheet(raw, "debt", today=TODAY)

        self.assertEqual([debt.name for debt in debts], ["Student Loan"])

    def test_numeric_debt_name_becomes_loan(self) -> None:
        factory = DebtFactory(["Name", "Balance"], today=TODAY)

        debt = factory.build(["$5,000", "5000"])

        self.assertEqual(debt.name, "Loan")

    def test_select_primary_loan(self) -> None:
        debts = [
            DebtEntry(id="1", name="Credit Line", amount_owed=Decimal("100")),
            DebtEntry(id="2", name="Student Loan", amount_owed=Decimal("200")),
        ]

        self.assertEqual([debt.id for debt in select_primary_loan(debts)], ["2"])
        self.assertEqual(select_primary_loan(debts[:1]), [])

    def test_tax_sheet_accepts_misspelled_header(self) -> None:
        raw = "Account Type,Transcation Type,Date,Value\nTFSA,Contribution,2024-01-02,500"

        records = parse_sheet(raw, "tax", today=TODAY)

        self.assertEqual(records[0].transaction_type, "Contribution")
        self.assertEqual(records[0].value, Decimal("500"))
        self.assertEqual(records[0].row_index, 1)


if __name__ == "__main__":
    unittest.main()
