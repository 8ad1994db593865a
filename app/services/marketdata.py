"""Top-of-book snapshot of both venues for the active symbol."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict

from exchanges.base import BookTop

from .runtime import RuntimeState, get_state

LOGGER = logging.getLogger(__name__)

_HUNDRED = Decimal("100")


def spread_pct(sell: Decimal, buy: Decimal) -> float | None:
    """Percentage by which *sell* exceeds *buy*; ``None`` without a price."""

    if buy <= 0 or sell <= 0:
        return None
    return round(float((sell - buy) / buy * _HUNDRED), 6)


def build_snapshot(symbol: str, book_a: BookTop, book_b: BookTop, contract_size: Decimal) -> Dict[str, Any]:
    # venue B sizes arrive in contracts; the snapshot reports base units
    perp = {
        "bid": float(book_b.bid),
        "bid_size": float(book_b.bid_size * contract_size),
        "ask": float(book_b.ask),
        "ask_size": float(book_b.ask_size * contract_size),
    }
    return {
        "symbol": symbol,
        "gate": book_a.as_dict(),
        "mexc": perp,
        "diff_open": spread_pct(book_b.bid, book_a.ask),
        "diff_close": spread_pct(book_b.ask, book_a.bid),
    }


async def get_snapshot(runtime: RuntimeState | None = None) -> Dict[str, Any]:
    state = runtime or get_state()
    meta = await state.meta.resolve(state.symbol)
    book_a = await state.spot.get_order_book(meta.symbol_spot)
    book_b = await state.perp.get_order_book(meta.symbol_fut)
    snapshot = build_snapshot(state.symbol, book_a, book_b, meta.mexc.contract_size)
    LOGGER.debug(
        "market snapshot",
        extra={"symbol": state.symbol, "diff_open": snapshot["diff_open"], "diff_close": snapshot["diff_close"]},
    )
    return snapshot


__all__ = ["build_snapshot", "get_snapshot", "spread_pct"]
