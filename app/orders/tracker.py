"""In-memory trade book backed by the durable history store."""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Protocol, Set

from prometheus_client import Gauge

from .models import Trade
from .state import UNSETTLED_STATUSES, LegStatus, TradeStatus

LOGGER = logging.getLogger(__name__)


_TRADES_TRACKED = Gauge(
    "arb_trades_tracked",
    "Trades held in memory grouped by aggregate status.",
    labelnames=("status",),
)


class HistoryStore(Protocol):
    def save_history_item(self, trade: Trade) -> None: ...

    def load_history(self) -> List[Trade]: ...


class TradeNotFoundError(KeyError):
    """Raised when a trade id is not known to the book."""

    def __init__(self, local_id: str) -> None:
        super().__init__(local_id)
        self.local_id = local_id

    def __str__(self) -> str:
        return f"trade not found: {self.local_id}"


class TradeBook:
    """Maintain the trade collection shared by the API handlers and the poller."""

    def __init__(self, store: HistoryStore | None = None) -> None:
        self._store = store
        self._trades: Dict[str, Trade] = {}
        # ids whose last write failed; retried by the poller
        self._unsaved: Set[str] = set()

    def __len__(self) -> int:
        return len(self._trades)

    def load(self) -> int:
        if self._store is None:
            return 0
        trades = self._store.load_history()
        for trade in trades:
            if trade.executed_at is None and trade.status is TradeStatus.CREATING:
                # the process stopped between persisting and submitting
                if trade.leg_order_id_a is None and trade.leg_status_a is LegStatus.CREATING:
                    trade.leg_status_a = LegStatus.UNKNOWN
                if trade.leg_order_id_b is None and trade.leg_status_b is LegStatus.CREATING:
                    trade.leg_status_b = LegStatus.UNKNOWN
                trade.status = TradeStatus.NEEDS_REVIEW
                LOGGER.warning("interrupted trade flagged for review", extra={"local_id": trade.local_id})
        self._trades = {trade.local_id: trade for trade in trades}
        self._observe()
        LOGGER.info("trade history loaded", extra={"count": len(self._trades)})
        return len(self._trades)

    def add(self, trade: Trade) -> None:
        if trade.local_id in self._trades:
            raise ValueError(f"duplicate trade id: {trade.local_id}")
        self._trades[trade.local_id] = trade
        self._observe()

    def get(self, local_id: str) -> Trade:
        trade = self._trades.get(str(local_id))
        if trade is None:
            raise TradeNotFoundError(str(local_id))
        return trade

    def unsettled(self) -> List[Trade]:
        """Trades the poller still has to reconcile, oldest first."""

        return [trade for trade in self._ordered(reverse=False) if trade.status in UNSETTLED_STATUSES]

    def newest_first(self) -> List[Trade]:
        return self._ordered(reverse=True)

    def _ordered(self, *, reverse: bool) -> List[Trade]:
        def key(trade: Trade) -> int:
            return int(trade.local_id) if trade.local_id.isdigit() else 0

        return sorted(self._trades.values(), key=key, reverse=reverse)

    async def save(self, trade: Trade) -> None:
        """Persist *trade*; store failures are logged and re-raised."""

        self._observe()
        if self._store is None:
            return
        try:
            await asyncio.to_thread(self._store.save_history_item, trade)
        except Exception:
            self._unsaved.add(trade.local_id)
            LOGGER.exception(
                "trade persist failed",
                extra={"local_id": trade.local_id, "status": trade.status.value},
            )
            raise
        self._unsaved.discard(trade.local_id)

    def unsaved(self) -> List[Trade]:
        """Trades whose latest state has not reached the store yet."""

        return [self._trades[local_id] for local_id in sorted(self._unsaved) if local_id in self._trades]

    def _observe(self) -> None:
        counts = {status.value: 0 for status in TradeStatus}
        for trade in self._trades.values():
            counts[trade.status.value] += 1
        for status, count in counts.items():
            _TRADES_TRACKED.labels(status=status).set(float(count))


__all__ = ["HistoryStore", "TradeBook", "TradeNotFoundError"]
