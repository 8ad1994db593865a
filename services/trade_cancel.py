"""Operator cancellation of both legs of a trade."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict

from app.metrics.arb import record_cancel
from app.orders.models import Trade
from app.orders.state import LegStatus, TradeStatus
from app.services.runtime import RuntimeState, get_state
from exchanges.errors import InvalidInputError, VenueError


LOGGER = logging.getLogger(__name__)

_ZERO = Decimal("0")


def _ts() -> str:
    return datetime.now(timezone.utc).isoformat()


def _error_text(exc: Exception) -> str:
    return exc.message if isinstance(exc, VenueError) else str(exc)


async def _cancel_leg(leg: str, client: Any, symbol: str, trade: Trade) -> Dict[str, Any]:
    order_id = trade.leg_order_id_a if leg == "a" else trade.leg_order_id_b
    status = trade.leg_status_a if leg == "a" else trade.leg_status_b
    if not order_id:
        return {"ok": True, "skipped": "no_order"}
    if status is LegStatus.CANCELLED:
        return {"ok": True, "skipped": "already_cancelled", "id": order_id}
    if status is LegStatus.FILLED:
        # nothing left on the book; the fill is settled by the caller
        return {"ok": True, "skipped": "already_filled", "id": order_id}
    try:
        await client.cancel_order(symbol, order_id)
    except Exception as exc:  # noqa: BLE001 - the other leg is still attempted
        LOGGER.error(
            "leg cancel failed",
            extra={"local_id": trade.local_id, "leg": leg, "order_id": order_id, "error": _error_text(exc)},
            exc_info=not isinstance(exc, VenueError),
        )
        return {"ok": False, "id": order_id, "error": _error_text(exc)}
    LOGGER.info("leg cancelled", extra={"local_id": trade.local_id, "leg": leg, "order_id": order_id})
    return {"ok": True, "id": order_id, "cancelled": True}


async def cancel_trade(local_id: str, runtime: RuntimeState | None = None) -> Dict[str, Any]:
    """Cancel both legs independently and settle any partial fill of leg A."""

    state = runtime or get_state()
    trade = state.trades.get(str(local_id))
    if trade.status in (TradeStatus.FILLED, TradeStatus.CANCELLED):
        raise InvalidInputError(f"trade {trade.local_id} is already {trade.status.value}")
    if trade.executed_at is None:
        raise InvalidInputError(f"trade {trade.local_id} is still being submitted")

    symbol_a = str(trade.meta_used.get("symbol_spot") or trade.symbol)
    symbol_b = str(trade.meta_used.get("symbol_fut") or trade.symbol)

    leg_a = await _cancel_leg("a", state.spot, symbol_a, trade)
    leg_a_filled = trade.leg_status_a is LegStatus.FILLED
    filled = _ZERO
    avg_price: Decimal | None = None
    if leg_a.get("cancelled") or leg_a_filled:
        try:
            detail = await state.spot.get_order_detail(symbol_a, str(trade.leg_order_id_a))
            filled = detail.filled
            avg_price = detail.avg_price
            leg_a["filled"] = float(filled)
        except Exception as exc:  # noqa: BLE001 - fill lookup is best effort
            leg_a["fill_lookup_error"] = _error_text(exc)
            LOGGER.warning(
                "leg A fill lookup during cancel failed",
                extra={"local_id": trade.local_id, "error": _error_text(exc)},
            )
        if leg_a_filled and filled <= 0:
            # same fallback the poller uses for a leg it saw fill
            filled = trade.volume
            leg_a["filled"] = float(filled)
    leg_b = await _cancel_leg("b", state.perp, symbol_b, trade)

    if leg_a.get("cancelled"):
        trade.leg_status_a = LegStatus.CANCELLED
    if leg_b.get("cancelled"):
        trade.leg_status_b = LegStatus.CANCELLED
    all_ok = bool(leg_a["ok"] and leg_b["ok"])
    if all_ok:
        trade.status = TradeStatus.CANCELLED
        trade.cancelled_at = _ts()
    else:
        trade.status = TradeStatus.CANCEL_FAILED
        trade.errors.update(
            {f"cancel_{name}": leg["error"] for name, leg in (("a", leg_a), ("b", leg_b)) if not leg["ok"]}
        )

    if filled > 0:
        trade.settle(state.position, filled, avg_price or trade.price_used_a)
    elif all_ok:
        trade.void()

    await state.trades.save(trade)
    record_cancel("ok" if all_ok else "failed")
    LOGGER.info(
        "trade cancel finished",
        extra={"local_id": trade.local_id, "status": trade.status.value, "filled_a": str(filled)},
    )
    return {
        "ok": all_ok,
        "local_id": trade.local_id,
        "status": trade.status.value,
        "legs": {"a": leg_a, "b": leg_b},
    }


__all__ = ["cancel_trade"]
