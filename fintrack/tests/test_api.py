import unittest
from decimal import Decimal

from fastapi.testclient import TestClient

from fintrack.main import app, get_price_cache, get_store
from fintrack.price_cache import PriceCache
from fintrack.storage import SnapshotStore, create_store_engine

EXPENSE_SHEET = b"Expense Categories,Jan,Feb,Mar\nHousing,,,\nRent,1000,1000,1000\nUtilities,100,0,120\n"
ASSET_SHEET = b"Name,Type,Value,Currency\nChequing,Cash,1500,CAD\nHouse,Property,400000,CAD\n"


class ApiTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_store_engine("sqlite://")
        self.store = SnapshotStore(self.engine)
        self.store.init_schema()
        self.cache = PriceCache(ttl_seconds=300)
        app.dependency_overrides[get_store] = lambda: self.store
        app.dependency_overrides[get_price_cache] = lambda: self.cache
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        self.engine.dispose()

    def upload_expenses(self) -> dict:
        response = self.client.post(
            "/ledgers/expenses/2024",
            files={"file": ("expenses.csv", EXPENSE_SHEET, "text/csv")},
        )
        self.assertEqual(response.status_code, 200)
        return response.json()

    def test_health(self) -> None:
        response = self.client.get("/health")

        self.assertEqual(response.json(), {"status": "ok"})

    def test_parse_sheet_upload(self) -> None:
        response = self.client.post(
            "/sheets/assets/parse",
            files={"file": ("assets.csv", ASSET_SHEET, "text/csv")},
        )

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual([item["name"] for item in body], ["Chequing", "House"])
        self.assertEqual(body[1]["type"], "Real Estate")
        self.assertEqual(Decimal(body[0]["value"]), Decimal("1500"))

    def test_unknown_sheet_type_is_rejected(self) -> None:
        response = self.client.post(
            "/sheets/recipes/parse",
            files={"file": ("recipes.csv", ASSET_SHEET, "text/csv")},
        )

        self.assertEqual(response.status_code, 400)

    def test_non_utf8_upload_is_rejected(self) -> None:
        response = self.client.post(
            "/sheets/assets/parse",
            files={"file": ("assets.csv", b"Name,Value\n\xff\xfe,1", "text/csv")},
        )

        self.assertEqual(response.status_code, 400)

    def test_ledger_upload_is_stored_and_flattened(self) -> None:
        body = self.upload_expenses()

        self.assertEqual(body["key"], "detailed_expenses_2024")
        self.assertEqual(body["ledger"]["categories"][0]["name"], "Housing")
        self.assertEqual(self.client.get("/ledgers").json(), ["detailed_expenses_2024"])

        timeline = self.client.get("/timeline").json()
        self.assertEqual(len(timeline), 5)
        self.assertEqual(timeline[0]["date"], "2024-03-01")
        self.assertEqual(self.client.get("/timeline", params={"flow_type": "INCOME"}).json(), [])

    def test_unknown_ledger_kind_is_rejected(self) -> None:
        response = self.client.post(
            "/ledgers/assets/2024",
            files={"file": ("expenses.csv", EXPENSE_SHEET, "text/csv")},
        )

        self.assertEqual(response.status_code, 400)

    def test_dimensions_and_variance_for_custom_range(self) -> None:
        self.upload_expenses()
        focus = {"focus": "CUSTOM", "custom_start": "2024-01-01", "custom_end": "2024-03-31"}

        dimensions = self.client.post("/analytics/dimensions", json=focus).json()
        self.assertEqual(dimensions["window"], {"start": "2024-01-01", "end": "2024-03-31"})
        self.assertEqual(dimensions["dimensions"][0]["name"], "Housing")
        self.assertEqual(Decimal(dimensions["dimensions"][0]["total"]), Decimal("3220"))

        variance = self.client.post("/analytics/variance", json={**focus, "path": ["Housing"]}).json()
        self.assertEqual([row["name"] for row in variance["rows"]], ["Rent", "Utilities"])
        self.assertEqual(Decimal(variance["rows"][0]["prev_total"]), Decimal("0"))
        self.assertEqual(Decimal(variance["rows"][0]["pct"]), Decimal("100"))
        self.assertEqual(variance["shadow_window"]["end"], "2023-12-31")

    def test_custom_focus_without_dates_is_rejected(self) -> None:
        response = self.client.post("/analytics/dimensions", json={"focus": "CUSTOM"})

        self.assertEqual(response.status_code, 400)

    def test_attribution(self) -> None:
        payload = {
            "use_window": False,
            "history": [
                {"date": "2024-01-01", "accounts": {"TFSA": "1000", "RRSP": "500"}},
                {"date": "2024-02-01", "accounts": {"TFSA": "1300", "RRSP": "500"}},
            ],
            "trades": [
                {
                    "id": "t1",
                    "date": "2024-01-15",
                    "ticker": "VFV",
                    "type": "BUY",
                    "quantity": "2",
                    "price": "100",
                    "total": "200",
                }
            ],
        }

        body = self.client.post("/analytics/attribution", json=payload).json()

        self.assertEqual(body["accounts"], ["RRSP", "TFSA"])
        self.assertEqual(Decimal(body["attribution"]["contributions"]), Decimal("200"))
        self.assertEqual(Decimal(body["attribution"]["market_alpha"]), Decimal("100"))
        self.assertEqual([step["name"] for step in body["waterfall"]][0], "Start")
        self.assertEqual(Decimal(body["max_drawdown"]), Decimal("0"))

    def test_attribution_normalizes_log_dates(self) -> None:
        payload = {
            "use_window": False,
            "history": [
                {"date": "02/05/2024", "accounts": {"TFSA": "1200"}},
                {"date": "01/05/2024", "accounts": {"TFSA": "1000"}},
                {"date": "not a date", "accounts": {"TFSA": "5"}},
            ],
        }

        response = self.client.post("/analytics/attribution", json=payload)

        self.assertEqual(response.status_code, 200)
        series = response.json()["series"]
        self.assertEqual([point["date"] for point in series], ["2024-01-05", "2024-02-05"])
        self.assertEqual(Decimal(series[-1]["percent_change"]), Decimal("20"))

    def test_reconcile_and_synthetic_portfolio(self) -> None:
        lot = {
            "id": "a",
            "ticker": "VFV",
            "name": "Vanguard S&P 500",
            "quantity": "4",
            "avg_price": "100",
            "current_price": "120",
            "account_name": "TFSA",
        }
        trades = [
            {"id": "t1", "date": "2024-01-01", "ticker": "VFV", "type": "BUY", "quantity": "6", "price": "100", "total": "600"}
        ]

        reconciled = self.client.post("/portfolio/reconcile", json={"investments": [lot], "trades": trades}).json()
        self.assertEqual(Decimal(reconciled[0]["quantity"]), Decimal("6"))

        self.client.post("/prices", json={"quotes": {"vfv.to": "130"}})
        synthetic = self.client.post("/portfolio/synthetic", json={"investments": [lot]}).json()
        self.assertEqual(Decimal(synthetic["values"]["a"]), Decimal("520"))
        self.assertEqual(Decimal(synthetic["total_value"]), Decimal("520"))

    def test_prices_round_trip_through_cache(self) -> None:
        posted = self.client.post("/prices", json={"quotes": {"btc-usd": "90000.5"}}).json()

        self.assertEqual({key: Decimal(value) for key, value in posted.items()}, {"BTC": Decimal("90000.5")})
        self.assertEqual(self.client.get("/prices").json(), posted)

    def test_dashboard(self) -> None:
        payload = {
            "assets": [
                {"id": "1", "name": "My TFSA", "type": "TFSA", "value": "1000"},
                {"id": "2", "name": "Chequing", "type": "Cash", "value": "500"},
            ],
            "tax_records": [
                {"id": "1", "record_type": "TFSA", "transaction_type": "Limit", "value": "7000"},
                {"id": "2", "record_type": "TFSA", "transaction_type": "Contribution", "value": "1000"},
            ],
        }

        body = self.client.post("/dashboard", json=payload).json()

        self.assertEqual(Decimal(body["aggregates"]["net_worth"]), Decimal("1500"))
        self.assertEqual(Decimal(body["aggregates"]["total_investments"]), Decimal("1000"))
        self.assertEqual(Decimal(body["tax_room"]["TFSA"]["remaining"]), Decimal("6000"))

    def test_dashboard_net_income_trend(self) -> None:
        payload = {
            "year": 2024,
            "income": [{"date": "2024-01-01", "month_str": "Jan", "amount": "5000"}],
            "expenses": [{"date": "2024-01-01", "month_str": "Jan", "total": "3200"}],
        }

        trend = self.client.post("/dashboard", json=payload).json()["net_income_trend"]

        self.assertEqual(len(trend), 1)
        self.assertEqual(trend[0]["date"], "2024-01-01")
        self.assertEqual(Decimal(trend[0]["net"]), Decimal("1800"))

    def test_ledger_flows(self) -> None:
        self.upload_expenses()

        flows = self.client.get("/ledgers/expenses/2024/flows", params={"month": 2}).json()

        self.assertEqual([node["name"] for node in flows["nodes"]], ["Total Spending", "Housing", "Rent", "Utilities"])
        self.assertEqual(Decimal(str(flows["links"][0]["value"])), Decimal("1120"))
        self.assertEqual(self.client.get("/ledgers/expenses/2023/flows").status_code, 404)
        self.assertEqual(self.client.get("/ledgers/savings/2024/flows").status_code, 400)


if __name__ == "__main__":
    unittest.main()
