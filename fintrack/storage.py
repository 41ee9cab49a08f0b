from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    MetaData,
    String,
    Table,
    create_engine,
    delete,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from fintrack.ledger import LEDGER_KEY_RE, ledger_key
from fintrack.records import LedgerData

logger = logging.getLogger(__name__)

LEDGER_KINDS = ("income", "expenses")

metadata = MetaData()

snapshots = Table(
    "snapshots",
    metadata,
    Column("key", String(255), primary_key=True),
    Column("payload", JSON, nullable=False),
    Column("updated_at", DateTime, nullable=False),
)


def create_store_engine(database_url: str) -> Engine:
    """Engine for the snapshot store; in-memory SQLite shares one connection."""
    connect_args = {}
    kwargs: dict[str, Any] = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    return create_engine(database_url, connect_args=connect_args, **kwargs)


class SnapshotStore:
    """Last-parsed payloads keyed by name, e.g. ``detailed_expenses_2024``."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def init_schema(self) -> None:
        metadata.create_all(self.engine)

    def save(self, key: str, payload: Any) -> None:
        now = datetime.now(timezone.utc).replace(tzinfo=None)
        with self.engine.begin() as conn:
            existing = conn.execute(select(snapshots.c.key).where(snapshots.c.key == key)).first()
            if existing is None:
                conn.execute(insert(snapshots).values(key=key, payload=payload, updated_at=now))
            else:
                conn.execute(
                    update(snapshots).where(snapshots.c.key == key).values(payload=payload, updated_at=now)
                )
        logger.debug("Saved snapshot %s", key)

    def load(self, key: str) -> Optional[Any]:
        with self.engine.begin() as conn:
            row = conn.execute(select(snapshots.c.payload).where(snapshots.c.key == key)).first()
        return None if row is None else row.payload

    def keys(self, prefix: str = "") -> list[str]:
        stmt = select(snapshots.c.key).order_by(snapshots.c.key)
        if prefix:
            stmt = stmt.where(snapshots.c.key.startswith(prefix, autoescape=True))
        with self.engine.begin() as conn:
            return [row.key for row in conn.execute(stmt)]

    def delete(self, key: str) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(delete(snapshots).where(snapshots.c.key == key))
        return result.rowcount > 0

    def save_ledger(self, kind: str, year: str | int, ledger: LedgerData) -> str:
        if kind not in LEDGER_KINDS:
            raise ValueError(f"Unknown ledger kind: {kind}")
        key = ledger_key(kind, year)
        self.save(key, ledger.model_dump(mode="json"))
        return key

    def load_ledgers(self) -> dict[str, LedgerData]:
        ledgers: dict[str, LedgerData] = {}
        for key in self.keys("detailed_"):
            if not LEDGER_KEY_RE.fullmatch(key):
                continue
            payload = self.load(key)
            if payload is not None:
                ledgers[key] = LedgerData.model_validate(payload)
        return ledgers
