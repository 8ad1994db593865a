"""Durable storage for market meta overrides and the trade history."""

from __future__ import annotations

import json
import logging
import os
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping

from sqlalchemy import Column, MetaData, String, Text, create_engine, event, select
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from app.orders.models import Trade


_DEFAULT_DB_URL = "sqlite:///data/app.db"


LOGGER = logging.getLogger(__name__)


def _ts() -> str:
    return datetime.now(timezone.utc).isoformat()


def _db_url() -> str:
    return os.environ.get("ARB_DB_URL", _DEFAULT_DB_URL)


metadata = MetaData()
Base = declarative_base(metadata=metadata)


class OverrideRow(Base):
    __tablename__ = "overrides"

    symbol = Column(String(64), primary_key=True)
    override_json = Column(Text, nullable=False)
    updated_at = Column(String(40), nullable=False, default=_ts, onupdate=_ts)


class HistoryRow(Base):
    __tablename__ = "history"

    local_id = Column(String(32), primary_key=True)
    created_at = Column(String(40), nullable=False)
    executed_at = Column(String(40), nullable=True)
    cancelled_at = Column(String(40), nullable=True)
    symbol = Column(String(64), nullable=False, index=True)
    mode = Column(String(8), nullable=False)
    price_used_a = Column(String(64), nullable=True)
    price_used_b = Column(String(64), nullable=True)
    volume = Column(String(64), nullable=True)
    leg_order_id_a = Column(String(128), nullable=True)
    leg_order_id_b = Column(String(128), nullable=True)
    status = Column(String(32), nullable=False, index=True)
    leg_status_a = Column(String(16), nullable=True)
    leg_status_b = Column(String(16), nullable=True)
    settlement = Column(String(16), nullable=True)
    raw_json = Column(Text, nullable=False)


def _configure_engine(url: str) -> Engine:
    parsed = make_url(url)
    if parsed.drivername.startswith("sqlite") and parsed.database not in (None, "", ":memory:"):
        Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(url, future=True)

    if url.startswith("sqlite"):

        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):  # pragma: no cover - wiring
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.close()

    return engine


class TradeStore:
    """SQLAlchemy backed repository for overrides and history items."""

    def __init__(self, url: str | None = None) -> None:
        self.url = url or _db_url()
        self._engine = _configure_engine(self.url)
        metadata.create_all(self._engine)
        self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False, future=True)

    @property
    def engine(self) -> Engine:
        return self._engine

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        session: Session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception as exc:
            session.rollback()
            LOGGER.exception("trade store session rollback", extra={"error": str(exc)})
            raise
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Overrides
    # ------------------------------------------------------------------
    def upsert_override(self, symbol: str, override: Mapping[str, Any]) -> None:
        key = str(symbol).upper()
        payload = json.dumps(dict(override), sort_keys=True)
        with self.session_scope() as session:
            row = session.get(OverrideRow, key)
            if row is None:
                session.add(OverrideRow(symbol=key, override_json=payload, updated_at=_ts()))
            else:
                row.override_json = payload
                row.updated_at = _ts()

    def load_overrides(self) -> Dict[str, Dict[str, Any]]:
        result: Dict[str, Dict[str, Any]] = {}
        with self.session_scope() as session:
            for row in session.scalars(select(OverrideRow)):
                try:
                    result[row.symbol] = json.loads(row.override_json)
                except ValueError:
                    LOGGER.warning("override row is not valid JSON", extra={"symbol": row.symbol})
        return result

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------
    def save_history_item(self, trade: Trade) -> None:
        data = trade.as_dict()
        columns = {
            "created_at": data["created_at"],
            "executed_at": data["executed_at"],
            "cancelled_at": data["cancelled_at"],
            "symbol": data["symbol"],
            "mode": data["mode"],
            "price_used_a": data["price_used_a"],
            "price_used_b": data["price_used_b"],
            "volume": data["volume"],
            "leg_order_id_a": data["leg_order_id_a"],
            "leg_order_id_b": data["leg_order_id_b"],
            "status": data["status"],
            "leg_status_a": data["leg_status_a"],
            "leg_status_b": data["leg_status_b"],
            "settlement": data["settlement"],
            "raw_json": json.dumps(data, sort_keys=True),
        }
        with self.session_scope() as session:
            row = session.get(HistoryRow, trade.local_id)
            if row is None:
                session.add(HistoryRow(local_id=trade.local_id, **columns))
            else:
                for name, value in columns.items():
                    setattr(row, name, value)

    def load_history(self) -> List[Trade]:
        trades: List[Trade] = []
        with self.session_scope() as session:
            rows = session.scalars(select(HistoryRow)).all()
            for row in rows:
                try:
                    trades.append(Trade.from_dict(json.loads(row.raw_json)))
                except (ValueError, KeyError) as exc:
                    LOGGER.warning(
                        "history row could not be decoded",
                        extra={"local_id": row.local_id, "error": str(exc)},
                    )
        # local ids are millisecond epochs, so numeric order is creation order
        trades.sort(key=lambda trade: int(trade.local_id) if trade.local_id.isdigit() else 0, reverse=True)
        return trades


__all__ = ["HistoryRow", "OverrideRow", "TradeStore"]
