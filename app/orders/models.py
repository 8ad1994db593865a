"""Two-legged trade record."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Mapping, Protocol

from app.util.quantization import as_dec

from .state import (
    LegStatus,
    SettlementState,
    TradeMode,
    TradeStatus,
    coerce_leg_status,
    coerce_trade_status,
)


LOGGER = logging.getLogger(__name__)

_ID_LOCK = threading.Lock()
_LAST_ID = 0


def _ts() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_local_id() -> str:
    """Millisecond epoch id, bumped past the previous one on collision."""

    global _LAST_ID
    with _ID_LOCK:
        candidate = int(time.time() * 1000)
        if candidate <= _LAST_ID:
            candidate = _LAST_ID + 1
        _LAST_ID = candidate
        return str(candidate)


class PositionSink(Protocol):
    def accumulate(self, fill_qty: Decimal, fill_price: Decimal, arb_pct: Decimal) -> Any: ...


@dataclass(slots=True)
class Trade:
    local_id: str
    symbol: str
    mode: TradeMode
    price_used_a: Decimal
    price_used_b: Decimal
    volume: Decimal
    contracts_b: Decimal
    created_at: str = field(default_factory=_ts)
    leg_order_id_a: str | None = None
    leg_order_id_b: str | None = None
    leg_status_a: LegStatus = LegStatus.CREATING
    leg_status_b: LegStatus = LegStatus.CREATING
    status: TradeStatus = TradeStatus.CREATING
    settlement: SettlementState = SettlementState.PENDING
    executed_at: str | None = None
    filled_at: str | None = None
    cancelled_at: str | None = None
    meta_used: Dict[str, Any] = field(default_factory=dict)
    fill_qty: Decimal | None = None
    fill_price: Decimal | None = None
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def settled(self) -> bool:
        return self.settlement is SettlementState.SETTLED

    @property
    def arb_pct(self) -> Decimal:
        if self.price_used_a <= 0:
            return Decimal("0")
        return (self.price_used_b - self.price_used_a) / self.price_used_a * Decimal("100")

    def observable(self) -> tuple[TradeStatus, LegStatus, LegStatus, SettlementState]:
        """Fields whose change warrants a write to the store."""

        return (self.status, self.leg_status_a, self.leg_status_b, self.settlement)

    def settle(self, sink: PositionSink, fill_qty: Any, fill_price: Any) -> bool:
        """Fold this trade's fill into the position exactly once.

        Returns ``False`` (and leaves the sink untouched) when the trade was
        already settled or voided, or when there is nothing to fold in.
        """

        if self.settlement is not SettlementState.PENDING:
            LOGGER.info(
                "trade settlement skipped",
                extra={"local_id": self.local_id, "settlement": self.settlement.value},
            )
            return False
        qty = as_dec(fill_qty)
        price = as_dec(fill_price)
        if qty <= 0:
            return False
        self.settlement = SettlementState.SETTLED
        self.fill_qty = qty
        self.fill_price = price
        sink.accumulate(qty, price, self.arb_pct)
        LOGGER.info(
            "trade settled",
            extra={"local_id": self.local_id, "fill_qty": str(qty), "fill_price": str(price)},
        )
        return True

    def void(self) -> bool:
        if self.settlement is not SettlementState.PENDING:
            return False
        self.settlement = SettlementState.VOID
        return True

    def as_dict(self) -> Dict[str, Any]:
        return {
            "local_id": self.local_id,
            "created_at": self.created_at,
            "symbol": self.symbol,
            "mode": self.mode.value,
            "price_used_a": format(self.price_used_a, "f"),
            "price_used_b": format(self.price_used_b, "f"),
            "volume": format(self.volume, "f"),
            "contracts_b": format(self.contracts_b, "f"),
            "leg_order_id_a": self.leg_order_id_a,
            "leg_order_id_b": self.leg_order_id_b,
            "leg_status_a": self.leg_status_a.value,
            "leg_status_b": self.leg_status_b.value,
            "status": self.status.value,
            "settlement": self.settlement.value,
            "settled": self.settled,
            "executed_at": self.executed_at,
            "filled_at": self.filled_at,
            "cancelled_at": self.cancelled_at,
            "meta_used": dict(self.meta_used),
            "fill_qty": format(self.fill_qty, "f") if self.fill_qty is not None else None,
            "fill_price": format(self.fill_price, "f") if self.fill_price is not None else None,
            "errors": dict(self.errors),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Trade":
        def optional_dec(key: str) -> Decimal | None:
            raw = payload.get(key)
            return as_dec(raw) if raw not in (None, "") else None

        settlement_raw = payload.get("settlement")
        if settlement_raw is None:
            settlement_raw = "settled" if payload.get("settled") else "pending"
        return cls(
            local_id=str(payload["local_id"]),
            created_at=str(payload.get("created_at") or _ts()),
            symbol=str(payload.get("symbol") or ""),
            mode=TradeMode(str(payload.get("mode") or "open")),
            price_used_a=as_dec(payload.get("price_used_a") or 0),
            price_used_b=as_dec(payload.get("price_used_b") or 0),
            volume=as_dec(payload.get("volume") or 0),
            contracts_b=as_dec(payload.get("contracts_b") or 0),
            leg_order_id_a=payload.get("leg_order_id_a"),
            leg_order_id_b=payload.get("leg_order_id_b"),
            leg_status_a=coerce_leg_status(payload.get("leg_status_a")),
            leg_status_b=coerce_leg_status(payload.get("leg_status_b")),
            status=coerce_trade_status(payload.get("status")),
            settlement=SettlementState(str(settlement_raw)),
            executed_at=payload.get("executed_at"),
            filled_at=payload.get("filled_at"),
            cancelled_at=payload.get("cancelled_at"),
            meta_used=dict(payload.get("meta_used") or {}),
            fill_qty=optional_dec("fill_qty"),
            fill_price=optional_dec("fill_price"),
            errors=dict(payload.get("errors") or {}),
        )


__all__ = ["PositionSink", "Trade", "new_local_id"]
