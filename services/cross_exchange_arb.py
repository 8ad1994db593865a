"""Sizing, precheck and two-leg execution of the spot/perp arbitrage."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_CEILING, Decimal
from typing import Any, Dict

from app.exchanges.metadata import MarketMeta
from app.metrics.arb import record_leg_submit, record_trade
from app.orders.models import Trade, new_local_id
from app.orders.state import LegStatus, TradeMode, submission_status
from app.services.runtime import RuntimeState, get_state
from app.util.quantization import (
    as_dec,
    contracts_cap,
    round_price,
    round_qty_down,
    to_base,
    to_contracts,
)
from exchanges.base import BookTop
from exchanges.errors import InvalidInputError, VenueError
from exchanges.mexc_futures import SIDE_CLOSE_SHORT, SIDE_OPEN_SHORT

from .errors import BlockedPlanError, StalePrecheckError


LOGGER = logging.getLogger(__name__)

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")


def _ts() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_mode(value: Any) -> TradeMode:
    try:
        return TradeMode(str(value or "").strip().lower())
    except ValueError as exc:
        raise InvalidInputError("mode must be open or close") from exc


@dataclass(frozen=True)
class TradePlan:
    mode: TradeMode
    symbol: str
    price_a: Decimal
    price_b: Decimal
    contracts: Decimal
    contract_size: Decimal
    qty: Decimal
    leverage: int
    margin_pct: Decimal
    tradable_base: Decimal
    min_quote: Decimal = _ZERO
    blocked: bool = False
    reason: str | None = None

    @property
    def quote_a(self) -> Decimal:
        return self.qty * self.price_a

    @property
    def required_usdt(self) -> Decimal:
        if self.mode is TradeMode.CLOSE:
            return _ZERO
        return self.price_b * self.contract_size * self.contracts / Decimal(self.leverage)

    def details(self) -> Dict[str, Any]:
        return {
            "mode": self.mode.value,
            "symbol": self.symbol,
            "price_a": float(self.price_a),
            "price_b": float(self.price_b),
            "contracts": float(self.contracts),
            "contract_size": float(self.contract_size),
            "qty": float(self.qty),
            "leverage": self.leverage,
            "margin_pct": float(self.margin_pct),
            "required_usdt": round(float(self.required_usdt), 6),
        }


def compute_plan(
    mode: TradeMode,
    book_a: BookTop,
    book_b: BookTop,
    meta: MarketMeta,
    target_qty: Any = 0,
    filled_qty: Any = 0,
) -> TradePlan:
    """Size a trade from the two books without touching any venue.

    Venue A depth is in base units and venue B depth in contracts. The
    result is never larger than venue B's touch depth or the remaining
    target; the minimum notional may raise it up to those caps.
    """

    margin = meta.settings.margin_pct / _HUNDRED
    perp = meta.mexc
    if mode is TradeMode.OPEN:
        base_a, depth_a = book_a.ask, book_a.ask_size
        base_b, depth_b = book_b.bid, book_b.bid_size
        price_a_raw = base_a * (1 - margin)
        price_b_raw = base_b * (1 + margin)
    else:
        base_a, depth_a = book_a.bid, book_a.bid_size
        base_b, depth_b = book_b.ask, book_b.ask_size
        price_a_raw = base_a * (1 + margin)
        price_b_raw = base_b * (1 - margin)

    depth_a_base = round_qty_down(max(depth_a, _ZERO), meta.gate.qty_scale)
    depth_b_contracts = round_qty_down(max(depth_b, _ZERO), perp.vol_precision)
    limits = [depth_a_base, to_base(depth_b_contracts, perp)]
    target = as_dec(target_qty)
    remaining: Decimal | None = None
    if target > 0:
        remaining = max(target - as_dec(filled_qty), _ZERO)
        limits.append(remaining)
    tradable = min(limits)

    contracts = to_contracts(tradable, perp)
    min_quote = meta.gate.min_quote
    if min_quote > 0 and price_a_raw > 0:
        need = (min_quote / (price_a_raw * perp.contract_size)).to_integral_value(rounding=ROUND_CEILING)
        contracts = max(contracts, need)
    contracts = min(contracts, depth_b_contracts)
    if remaining is not None:
        contracts = min(contracts, contracts_cap(remaining, perp))

    price_a = round_price(price_a_raw, meta.gate.price_scale)
    price_b = round_price(price_b_raw, perp.price_scale)
    qty = round_qty_down(to_base(contracts, perp), meta.gate.qty_scale)

    blocked = False
    reason: str | None = None
    if min_quote > 0 and qty * price_a < min_quote:
        blocked, reason = True, "min_quote_not_met"
    elif contracts <= 0 or qty <= 0:
        blocked, reason = True, "no_tradable_size"

    return TradePlan(
        mode=mode,
        symbol=meta.symbol_spot,
        price_a=price_a,
        price_b=price_b,
        contracts=contracts,
        contract_size=perp.contract_size,
        qty=qty,
        leverage=meta.settings.leverage,
        margin_pct=meta.settings.margin_pct,
        tradable_base=tradable,
        min_quote=min_quote,
        blocked=blocked,
        reason=reason,
    )


async def _plan_for(state: RuntimeState, symbol: str, mode: TradeMode) -> tuple[TradePlan, MarketMeta]:
    meta = await state.meta.resolve(symbol)
    book_a = await state.spot.get_order_book(meta.symbol_spot)
    book_b = await state.perp.get_order_book(meta.symbol_fut)
    plan = compute_plan(
        mode,
        book_a,
        book_b,
        meta,
        target_qty=state.position.target_qty,
        filled_qty=state.position.filled_qty,
    )
    return plan, meta


def _blocked_payload(plan: TradePlan) -> Dict[str, Any]:
    return {
        "ok": True,
        "blocked": True,
        "reason": plan.reason,
        "mode": plan.mode.value,
        "min_quote": float(plan.min_quote),
        "calc": {"gate_quote": round(float(plan.quote_a), 6)},
        "details": plan.details(),
    }


async def precheck(mode: Any, runtime: RuntimeState | None = None) -> Dict[str, Any]:
    trade_mode = parse_mode(mode)
    state = runtime or get_state()
    plan, _ = await _plan_for(state, state.symbol, trade_mode)
    if plan.blocked:
        LOGGER.info(
            "precheck blocked",
            extra={"symbol": plan.symbol, "mode": trade_mode.value, "reason": plan.reason},
        )
        return _blocked_payload(plan)

    details = plan.details()
    if trade_mode is TradeMode.CLOSE:
        return {"ok": True, "blocked": False, "need_confirm": False, "unknown_balance": False, "details": details}

    balance = await state.perp.get_available_usdt()
    available = balance.get("available_usdt")
    if available is None:
        return {
            "ok": True,
            "blocked": False,
            "need_confirm": False,
            "unknown_balance": True,
            "balance": dict(balance),
            "details": details,
        }
    details["available_usdt"] = round(float(available), 6)
    need_confirm = Decimal(str(available)) < plan.required_usdt
    return {
        "ok": True,
        "blocked": False,
        "need_confirm": need_confirm,
        "unknown_balance": False,
        "details": details,
    }


def _check_staleness(
    plan: TradePlan,
    expected_price_a: Any,
    expected_price_b: Any,
    tolerance_pct: float,
) -> None:
    tolerance = as_dec(tolerance_pct)
    moved: Dict[str, Any] = {}
    for leg, expected, actual in (("a", expected_price_a, plan.price_a), ("b", expected_price_b, plan.price_b)):
        if expected in (None, ""):
            continue
        try:
            expected_dec = as_dec(expected)
        except ValueError as exc:
            raise InvalidInputError(f"expected_price_{leg} must be a number") from exc
        if expected_dec <= 0:
            raise InvalidInputError(f"expected_price_{leg} must be positive")
        drift = abs(actual - expected_dec) / expected_dec * _HUNDRED
        if drift > tolerance:
            moved[leg] = {
                "expected": float(expected_dec),
                "actual": float(actual),
                "drift_pct": round(float(drift), 6),
            }
    if moved:
        details = plan.details()
        details["moved"] = moved
        details["tolerance_pct"] = float(tolerance)
        LOGGER.warning("execute rejected: stale precheck", extra={"symbol": plan.symbol, "moved": moved})
        raise StalePrecheckError("stale_precheck", details)


async def execute_trade(
    mode: Any,
    *,
    expected_price_a: Any = None,
    expected_price_b: Any = None,
    runtime: RuntimeState | None = None,
) -> Dict[str, Any]:
    """Recompute the plan and submit one order per venue.

    The trade record is persisted before either order is sent. A leg that
    fails is recorded as ``error``; the other leg is never rolled back.
    """

    trade_mode = parse_mode(mode)
    state = runtime or get_state()
    symbol = state.symbol
    plan, meta = await _plan_for(state, symbol, trade_mode)
    if plan.blocked:
        LOGGER.info("execute blocked", extra={"symbol": symbol, "reason": plan.reason})
        raise BlockedPlanError(plan.reason or "blocked", _blocked_payload(plan))
    _check_staleness(
        plan,
        expected_price_a,
        expected_price_b,
        state.config.execution.staleness_tolerance_pct,
    )

    trade = Trade(
        local_id=new_local_id(),
        symbol=symbol,
        mode=trade_mode,
        price_used_a=plan.price_a,
        price_used_b=plan.price_b,
        volume=plan.qty,
        contracts_b=plan.contracts,
        meta_used=meta.as_dict(),
    )
    await state.trades.save(trade)
    state.trades.add(trade)
    LOGGER.info(
        "trade created",
        extra={
            "local_id": trade.local_id,
            "symbol": symbol,
            "mode": trade_mode.value,
            "price_a": str(plan.price_a),
            "price_b": str(plan.price_b),
            "qty": str(plan.qty),
            "contracts": str(plan.contracts),
        },
    )

    side_a = "buy" if trade_mode is TradeMode.OPEN else "sell"
    try:
        ack_a = await state.spot.submit_order(meta.symbol_spot, side_a, plan.price_a, plan.qty)
        trade.leg_order_id_a = ack_a.order_id
        trade.leg_status_a = LegStatus.OPEN
    except Exception as exc:  # noqa: BLE001 - one leg failing must not stop the other
        trade.leg_status_a = LegStatus.ERROR
        trade.errors["a"] = exc.message if isinstance(exc, VenueError) else str(exc)
        LOGGER.error(
            "leg A submission failed",
            extra={"local_id": trade.local_id, "error": trade.errors["a"]},
            exc_info=not isinstance(exc, VenueError),
        )
    record_leg_submit("a", trade.leg_status_a is LegStatus.OPEN)

    side_code = SIDE_OPEN_SHORT if trade_mode is TradeMode.OPEN else SIDE_CLOSE_SHORT
    try:
        ack_b = await state.perp.submit_order(
            meta.symbol_fut, side_code, plan.price_b, plan.contracts, plan.leverage
        )
        trade.leg_order_id_b = ack_b.order_id
        trade.leg_status_b = LegStatus.OPEN
    except Exception as exc:  # noqa: BLE001 - one leg failing must not stop the other
        trade.leg_status_b = LegStatus.ERROR
        trade.errors["b"] = exc.message if isinstance(exc, VenueError) else str(exc)
        LOGGER.error(
            "leg B submission failed",
            extra={"local_id": trade.local_id, "error": trade.errors["b"]},
            exc_info=not isinstance(exc, VenueError),
        )
    record_leg_submit("b", trade.leg_status_b is LegStatus.OPEN)

    trade.status = submission_status(
        trade.leg_status_a is LegStatus.OPEN, trade.leg_status_b is LegStatus.OPEN
    )
    trade.executed_at = _ts()
    await state.trades.save(trade)
    record_trade(trade_mode.value, trade.status.value)
    LOGGER.info(
        "trade submitted",
        extra={"local_id": trade.local_id, "status": trade.status.value},
    )

    result: Dict[str, Any] = {
        "ok": True,
        "local_id": trade.local_id,
        "mode": trade_mode.value,
        "leg_a": {"id": trade.leg_order_id_a, "price": format(trade.price_used_a, "f")},
        "leg_b": {
            "id": trade.leg_order_id_b,
            "price": format(trade.price_used_b, "f"),
            "contracts": format(trade.contracts_b, "f"),
        },
        "status": trade.status.value,
    }
    if trade.errors:
        result["errors"] = dict(trade.errors)
    return result


__all__ = [
    "TradePlan",
    "compute_plan",
    "execute_trade",
    "parse_mode",
    "precheck",
]
