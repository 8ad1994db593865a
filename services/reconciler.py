"""Reconciliation of submitted trades against the venues' order state."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict

from app.metrics.arb import ARB_RECON_PASS_SECONDS, ARB_RECON_PASSES_TOTAL, record_recon_error
from app.orders.models import Trade
from app.orders.state import LegStatus, TradeStatus, derive_status
from app.services.runtime import RuntimeState, get_state
from exchanges.base import OrderDetail
from exchanges.errors import (
    InvalidInputError,
    OrderNotFoundError,
    VenueAuthError,
    VenueError,
    VenueTransientError,
)


LOGGER = logging.getLogger(__name__)

POLICY_NEEDS_REVIEW = "needs_review"
POLICY_ASSUME_FILLED = "assume_filled"


def _ts() -> str:
    return datetime.now(timezone.utc).isoformat()


def _error_kind(exc: Exception) -> str:
    if isinstance(exc, OrderNotFoundError):
        return "not_found"
    if isinstance(exc, VenueAuthError):
        return "auth"
    if isinstance(exc, VenueTransientError):
        return "transient"
    if isinstance(exc, VenueError):
        return "business"
    if isinstance(exc, InvalidInputError):
        return "invalid"
    return "unexpected"


@dataclass
class _LegOutcome:
    status: LegStatus
    fill_qty: Decimal | None = None
    fill_price: Decimal | None = None


class TradeReconciler:
    """Poll unsettled trades and fold completed ones into the position."""

    def __init__(
        self,
        runtime: RuntimeState | None = None,
        *,
        not_found_policy: str | None = None,
    ) -> None:
        self._runtime = runtime
        self._policy = not_found_policy

    @property
    def state(self) -> RuntimeState:
        return self._runtime or get_state()

    @property
    def not_found_policy(self) -> str:
        return self._policy or self.state.config.recon.not_found_policy

    async def poll_once(self) -> Dict[str, Any]:
        state = self.state
        started = time.perf_counter()
        checked = 0
        updated = 0
        await self._flush_unsaved(state)
        for trade in state.trades.unsettled():
            # still being submitted by execute
            if trade.executed_at is None:
                continue
            checked += 1
            try:
                if await self._reconcile(state, trade):
                    updated += 1
            except Exception:  # noqa: BLE001 - one trade must not stop the pass
                record_recon_error("trade", "unexpected")
                LOGGER.exception("trade reconciliation failed", extra={"local_id": trade.local_id})
        ARB_RECON_PASSES_TOTAL.inc()
        ARB_RECON_PASS_SECONDS.observe(time.perf_counter() - started)
        return {"checked": checked, "updated": updated}

    async def _flush_unsaved(self, state: RuntimeState) -> None:
        # a settled trade leaves the unsettled set, so its failed write is retried here
        for trade in state.trades.unsaved():
            try:
                await state.trades.save(trade)
            except Exception:  # noqa: BLE001 - retried on the next pass
                record_recon_error("store", "persist")
            else:
                LOGGER.info("pending trade write flushed", extra={"local_id": trade.local_id})

    async def _lookup(self, leg: str, client: Any, symbol: str, order_id: str) -> OrderDetail | Exception:
        try:
            return await client.get_order_detail(symbol, order_id)
        except Exception as exc:  # noqa: BLE001 - classified by the caller
            kind = _error_kind(exc)
            record_recon_error(leg, kind)
            extra = {"leg": leg, "order_id": order_id, "symbol": symbol, "kind": kind, "error": str(exc)}
            if kind == "auth":
                LOGGER.error("order lookup rejected", extra=extra)
            elif kind == "unexpected":
                LOGGER.exception("order lookup failed", extra=extra)
            else:
                LOGGER.warning("order lookup failed", extra=extra)
            return exc

    async def _leg_a(self, state: RuntimeState, trade: Trade) -> _LegOutcome:
        current = trade.leg_status_a
        if not trade.leg_order_id_a or current in (LegStatus.ERROR, LegStatus.CANCELLED):
            return _LegOutcome(current)
        symbol = str(trade.meta_used.get("symbol_spot") or trade.symbol)
        result = await self._lookup("a", state.spot, symbol, trade.leg_order_id_a)
        if isinstance(result, OrderDetail):
            if result.is_filled:
                return _LegOutcome(LegStatus.FILLED, result.filled or None, result.avg_price)
            return _LegOutcome(current)
        if isinstance(result, OrderNotFoundError) and current is not LegStatus.FILLED:
            if self.not_found_policy == POLICY_ASSUME_FILLED:
                LOGGER.warning(
                    "leg A order not found; assuming it filled",
                    extra={"local_id": trade.local_id, "order_id": trade.leg_order_id_a},
                )
                return _LegOutcome(LegStatus.FILLED, trade.volume, trade.price_used_a)
            LOGGER.warning(
                "leg A order not found; trade needs review",
                extra={"local_id": trade.local_id, "order_id": trade.leg_order_id_a},
            )
            return _LegOutcome(LegStatus.UNKNOWN)
        return _LegOutcome(current)

    async def _leg_b(self, state: RuntimeState, trade: Trade) -> LegStatus:
        current = trade.leg_status_b
        if not trade.leg_order_id_b or current in (LegStatus.ERROR, LegStatus.CANCELLED, LegStatus.FILLED):
            return current
        symbol = str(trade.meta_used.get("symbol_fut") or trade.symbol)
        result = await self._lookup("b", state.perp, symbol, trade.leg_order_id_b)
        if isinstance(result, OrderDetail) and result.is_filled:
            return LegStatus.FILLED
        return current

    async def _reconcile(self, state: RuntimeState, trade: Trade) -> bool:
        before = trade.observable()
        outcome_a = await self._leg_a(state, trade)
        leg_b = await self._leg_b(state, trade)

        # a cancel or resolve may have run while the lookups were in flight
        if trade.observable() != before:
            LOGGER.info("trade changed during reconciliation; skipping", extra={"local_id": trade.local_id})
            return False

        leg_a = outcome_a.status
        if leg_a is LegStatus.CREATING:
            leg_a = LegStatus.OPEN
        if leg_b is LegStatus.CREATING:
            leg_b = LegStatus.OPEN
        trade.leg_status_a = leg_a
        trade.leg_status_b = leg_b
        trade.status = derive_status(leg_a, leg_b, trade.status)
        if trade.status is TradeStatus.FILLED:
            if trade.filled_at is None:
                trade.filled_at = _ts()
            trade.settle(
                state.position,
                outcome_a.fill_qty or trade.volume,
                outcome_a.fill_price or trade.price_used_a,
            )

        if trade.observable() == before:
            return False
        LOGGER.info(
            "trade reconciled",
            extra={
                "local_id": trade.local_id,
                "status": trade.status.value,
                "leg_status_a": leg_a.value,
                "leg_status_b": leg_b.value,
            },
        )
        try:
            await state.trades.save(trade)
        except Exception:  # noqa: BLE001 - retried on the next pass
            record_recon_error("store", "persist")
        return True

    async def resolve(self, local_id: str, leg_a_filled: bool) -> Trade:
        """Operator decision for a trade whose leg A could not be found."""

        state = self.state
        trade = state.trades.get(local_id)
        if trade.status is not TradeStatus.NEEDS_REVIEW:
            raise InvalidInputError(f"trade {local_id} is {trade.status.value}, not needs_review")

        if leg_a_filled:
            trade.leg_status_a = LegStatus.FILLED
            trade.status = derive_status(trade.leg_status_a, trade.leg_status_b, trade.status)
            if trade.status is TradeStatus.FILLED:
                trade.filled_at = trade.filled_at or _ts()
                trade.settle(state.position, trade.volume, trade.price_used_a)
        else:
            trade.leg_status_a = LegStatus.CANCELLED
            live_b = trade.leg_order_id_b and trade.leg_status_b in (LegStatus.CREATING, LegStatus.OPEN)
            if trade.leg_status_b is LegStatus.FILLED:
                # leg B is on the book without its hedge
                trade.status = TradeStatus.ERROR
                trade.errors["a"] = "leg A cancelled by operator; leg B filled"
            elif live_b:
                trade.status = TradeStatus.CANCEL_FAILED
            else:
                trade.status = TradeStatus.CANCELLED
                trade.cancelled_at = _ts()
            if trade.status is not TradeStatus.CANCEL_FAILED:
                trade.void()

        LOGGER.info(
            "trade resolved by operator",
            extra={"local_id": trade.local_id, "leg_a_filled": bool(leg_a_filled), "status": trade.status.value},
        )
        await state.trades.save(trade)
        return trade


_RECONCILER = TradeReconciler()


def get_reconciler() -> TradeReconciler:
    return _RECONCILER


__all__ = [
    "POLICY_ASSUME_FILLED",
    "POLICY_NEEDS_REVIEW",
    "TradeReconciler",
    "get_reconciler",
]
