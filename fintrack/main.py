from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal

from fastapi import Depends, FastAPI, File, HTTPException, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from fintrack import config
from fintrack.analytics import (
    PortfolioLogEntry,
    calculate_max_drawdown,
    calculate_portfolio_attribution,
    calculate_velocity,
    process_portfolio_history,
    waterfall_steps,
)
from fintrack.currency_conversion import CompositeRateProvider, FrankfurterRateProvider, StaticRateProvider
from fintrack.dashboard import calculate_dashboard_aggregates, calculate_tax_stats, net_income_trend
from fintrack.factories import FACTORIES, parse_sheet
from fintrack.ledger import (
    build_unified_timeline,
    ledger_key,
    ledger_trend_rows,
    parse_detailed_expenses,
    parse_detailed_income,
    sankey_flows,
)
from fintrack.logging_setup import setup_logging
from fintrack.portfolio import build_synthetic_portfolio, reconcile_investments, value_holdings
from fintrack.price_cache import PriceCache
from fintrack.records import Asset, ExpenseEntry, FlowType, IncomeEntry, Investment, LedgerData, TaxRecord, Trade
from fintrack.sanitizer import parse_flexible_date
from fintrack.storage import LEDGER_KINDS, SnapshotStore, create_store_engine
from fintrack.temporal import (
    TemporalWindows,
    TimeFocus,
    aggregate_comparative_trend,
    aggregate_dimensions,
    calculate_temporal_variance,
    filter_by_window,
    get_temporal_windows,
)

logger = logging.getLogger(__name__)

app = FastAPI(title="fintrack")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[config.FRONTEND_ORIGIN],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

engine = create_store_engine(config.DATABASE_URL)
snapshot_store = SnapshotStore(engine)
price_cache = PriceCache(ttl_seconds=config.PRICE_CACHE_TTL)
FX_PROVIDER = CompositeRateProvider(
    primary=FrankfurterRateProvider(base_currency=config.BASE_CURRENCY),
    fallback=StaticRateProvider(),
)


@app.on_event("startup")
def init_db() -> None:
    setup_logging()
    snapshot_store.init_schema()
    logger.info("Snapshot store ready at %s", engine.url.render_as_string(hide_password=True))


def get_store() -> SnapshotStore:
    return snapshot_store


def get_price_cache() -> PriceCache:
    return price_cache


class FocusPayload(BaseModel):
    focus: TimeFocus = TimeFocus.YTD
    today: date | None = None
    custom_start: date | None = None
    custom_end: date | None = None
    history_start: date | None = None


class DimensionsPayload(FocusPayload):
    path: list[str] = Field(default_factory=list)
    flow_type: FlowType = FlowType.EXPENSE


class VariancePayload(DimensionsPayload):
    exclude_fixed: bool = False


class PortfolioLogPayload(BaseModel):
    date: str
    accounts: dict[str, Decimal] = Field(default_factory=dict)


class AttributionPayload(FocusPayload):
    history: list[PortfolioLogPayload] = Field(default_factory=list)
    trades: list[Trade] = Field(default_factory=list)
    use_window: bool = True


class SyntheticPortfolioPayload(BaseModel):
    investments: list[Investment] = Field(default_factory=list)
    trades: list[Trade] = Field(default_factory=list)
    assets: list[Asset] = Field(default_factory=list)
    rates: dict[str, Decimal] | None = None


class ReconcilePayload(BaseModel):
    investments: list[Investment] = Field(default_factory=list)
    trades: list[Trade] = Field(default_factory=list)


class DashboardPayload(BaseModel):
    assets: list[Asset] = Field(default_factory=list)
    tax_records: list[TaxRecord] = Field(default_factory=list)
    rates: dict[str, Decimal] | None = None
    income: list[IncomeEntry] = Field(default_factory=list)
    expenses: list[ExpenseEntry] = Field(default_factory=list)
    year: int | None = None


class PricesPayload(BaseModel):
    quotes: dict[str, Decimal] = Field(default_factory=dict)


def resolve_windows(payload: FocusPayload) -> TemporalWindows:
    try:
        return get_temporal_windows(
            payload.focus,
            today=payload.today,
            custom_start=payload.custom_start,
            custom_end=payload.custom_end,
            history_start=payload.history_start,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


async def read_upload(file: UploadFile) -> str:
    contents = await file.read()
    try:
        return contents.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise HTTPException(status_code=400, detail="Sheet must be UTF-8 encoded.") from exc


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.post("/sheets/{sheet_type}/parse")
async def parse_sheet_upload(sheet_type: str, file: UploadFile = File(...)) -> list[dict]:
    if sheet_type not in FACTORIES:
        raise HTTPException(status_code=400, detail=f"Unsupported sheet type: {sheet_type}")
    raw = await read_upload(file)
    try:
        records = parse_sheet(raw, sheet_type)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return [record.model_dump(mode="json") for record in records]


@app.post("/ledgers/{kind}/{year}")
async def upload_ledger(
    kind: str,
    year: int,
    file: UploadFile = File(...),
    store: SnapshotStore = Depends(get_store),
) -> dict:
    if kind not in LEDGER_KINDS:
        raise HTTPException(status_code=400, detail=f"Unknown ledger kind: {kind}")
    raw = await read_upload(file)
    ledger = parse_detailed_income(raw) if kind == "income" else parse_detailed_expenses(raw)
    key = store.save_ledger(kind, year, ledger)
    return {
        "key": key,
        "ledger": ledger.model_dump(mode="json"),
        "trend": ledger_trend_rows(ledger),
    }


@app.get("/ledgers")
def list_ledgers(store: SnapshotStore = Depends(get_store)) -> list[str]:
    return store.keys("detailed_")


@app.get("/ledgers/{kind}/{year}/flows")
def get_ledger_flows(
    kind: str,
    year: int,
    month: int = Query(default=0, ge=0, le=11),
    category: str | None = Query(default=None),
    store: SnapshotStore = Depends(get_store),
) -> dict:
    if kind not in LEDGER_KINDS:
        raise HTTPException(status_code=400, detail=f"Unknown ledger kind: {kind}")
    payload = store.load(ledger_key(kind, year))
    if payload is None:
        raise HTTPException(status_code=404, detail=f"No {kind} ledger for {year}")
    return sankey_flows(LedgerData.model_validate(payload), month, category)


@app.get("/timeline")
def get_timeline(
    flow_type: FlowType | None = Query(default=None),
    store: SnapshotStore = Depends(get_store),
) -> list[dict]:
    timeline = build_unified_timeline(store.load_ledgers())
    if flow_type is not None:
        timeline = [transaction for transaction in timeline if transaction.type == flow_type]
    return [transaction.model_dump(mode="json") for transaction in timeline]


@app.post("/analytics/dimensions")
def analytics_dimensions(payload: DimensionsPayload, store: SnapshotStore = Depends(get_store)) -> dict:
    windows = resolve_windows(payload)
    timeline = build_unified_timeline(store.load_ledgers())
    current = filter_by_window(timeline, windows.current)
    return {
        "window": windows.current,
        "dimensions": aggregate_dimensions(current, payload.path, payload.flow_type),
    }


@app.post("/analytics/variance")
def analytics_variance(payload: VariancePayload, store: SnapshotStore = Depends(get_store)) -> dict:
    windows = resolve_windows(payload)
    timeline = build_unified_timeline(store.load_ledgers())
    current = filter_by_window(timeline, windows.current)
    shadow = filter_by_window(timeline, windows.shadow)
    return {
        "label": windows.label,
        "current_window": windows.current,
        "shadow_window": windows.shadow,
        "rows": calculate_temporal_variance(
            current, shadow, payload.path, payload.flow_type, exclude_fixed=payload.exclude_fixed
        ),
        "trend": aggregate_comparative_trend(current, shadow, payload.path, payload.flow_type),
    }


@app.post("/analytics/attribution")
def analytics_attribution(payload: AttributionPayload) -> dict:
    window = resolve_windows(payload).current if payload.use_window else None
    history = []
    for entry in payload.history:
        on = parse_flexible_date(entry.date)
        if on is None:
            logger.debug("Skipping portfolio log entry with unreadable date %r", entry.date)
            continue
        history.append(PortfolioLogEntry(date=on, accounts=entry.accounts))
    series, account_keys = process_portfolio_history(history, window)
    attribution = calculate_portfolio_attribution(series, payload.trades, window)
    return {
        "accounts": account_keys,
        "series": series,
        "attribution": attribution,
        "waterfall": waterfall_steps(attribution),
        "max_drawdown": calculate_max_drawdown(series),
        "velocity": calculate_velocity(series),
    }


@app.post("/portfolio/synthetic")
def portfolio_synthetic(payload: SyntheticPortfolioPayload, cache: PriceCache = Depends(get_price_cache)) -> dict:
    holdings = build_synthetic_portfolio(payload.investments, payload.trades, payload.assets, payload.rates)
    values = value_holdings(holdings, cache.snapshot())
    return {
        "holdings": [holding.model_dump(mode="json") for holding in holdings],
        "values": values,
        "total_value": sum(values.values(), Decimal("0")),
    }


@app.post("/portfolio/reconcile")
def portfolio_reconcile(payload: ReconcilePayload) -> list[dict]:
    reconciled = reconcile_investments(payload.investments, payload.trades)
    return [holding.model_dump(mode="json") for holding in reconciled]


@app.post("/dashboard")
def dashboard(payload: DashboardPayload) -> dict:
    return {
        "aggregates": calculate_dashboard_aggregates(payload.assets, payload.rates),
        "tax_room": calculate_tax_stats(payload.tax_records),
        "net_income_trend": net_income_trend(payload.income, payload.expenses, payload.year or date.today().year),
    }


@app.post("/prices")
def put_prices(payload: PricesPayload, cache: PriceCache = Depends(get_price_cache)) -> dict:
    cache.put_many(payload.quotes)
    return cache.snapshot()


@app.get("/prices")
def get_prices(cache: PriceCache = Depends(get_price_cache)) -> dict:
    cache.purge_expired()
    return cache.snapshot()


@app.get("/rates")
def get_rates() -> dict:
    return dict(FX_PROVIDER.get_rates())
