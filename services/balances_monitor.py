"""Venue balance snapshot for the operator view."""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping

from app.services.runtime import RuntimeState, get_state
from exchanges.errors import VenueError

LOGGER = logging.getLogger(__name__)


def _float(value: object, default: float = 0.0) -> float:
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default


def _spot_payload(balances: Mapping[str, Mapping[str, Any]]) -> Dict[str, Any]:
    return {
        currency: {
            "available": _float(entry.get("available")),
            "locked": _float(entry.get("locked")),
        }
        for currency, entry in balances.items()
    }


async def get_balances(runtime: RuntimeState | None = None) -> Dict[str, Any]:
    """Spot balances of the active pair plus the derivatives venue's free USDT.

    A failure on either venue is reported in that venue's entry and never
    hides the other one.
    """

    state = runtime or get_state()
    symbol = state.symbol
    try:
        spot = _spot_payload(await state.spot.get_balances(symbol))
    except VenueError as exc:
        LOGGER.warning("spot balance lookup failed", extra={"symbol": symbol, **exc.as_dict()})
        spot = {"error": exc.message}
    except Exception as exc:  # noqa: BLE001 - reported to the caller
        LOGGER.exception("spot balance lookup failed", extra={"symbol": symbol})
        spot = {"error": str(exc)}

    perp = dict(await state.perp.get_available_usdt())
    return {"symbol": symbol, "gate": spot, "mexc": perp}


__all__ = ["get_balances"]
