from __future__ import annotations

import logging
from typing import Any, Dict, List, NoReturn

from fastapi import APIRouter, HTTPException, Query, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from services.balances_monitor import get_balances
from services.cross_exchange_arb import execute_trade, precheck
from services.errors import BlockedPlanError, TradeNotFoundError, VenueError
from services.reconciler import get_reconciler
from services.trade_cancel import cancel_trade

from ..services.marketdata import get_snapshot
from ..services.runtime import get_state

LOGGER = logging.getLogger(__name__)

router = APIRouter()


class SymbolRequest(BaseModel):
    symbol: str


class OverrideRequest(BaseModel):
    symbol: str | None = None
    override: Dict[str, Any] = Field(default_factory=dict)


class TargetRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    target_qty: Any = Field(..., alias="targetQty")


class ModeRequest(BaseModel):
    mode: str


class ExecuteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    mode: str
    expected_price_a: float | None = Field(default=None, alias="expectedPriceA")
    expected_price_b: float | None = Field(default=None, alias="expectedPriceB")


class TradeRef(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    local_id: str = Field(..., alias="localId")


class ResolveRequest(TradeRef):
    leg_a_filled: bool = Field(..., alias="legAFilled")


def _raise_http(exc: Exception) -> NoReturn:
    """Translate service errors into HTTP responses."""

    if isinstance(exc, BlockedPlanError):
        detail = {"error": exc.reason, **exc.details}
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail) from exc
    if isinstance(exc, TradeNotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, ValueError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if isinstance(exc, VenueError):
        LOGGER.warning("venue request failed", extra=exc.as_dict())
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.as_dict()) from exc
    raise exc


@router.get("/symbol")
def get_symbol() -> dict:
    return {"symbol": get_state().symbol}


@router.post("/symbol")
async def set_symbol(request: SymbolRequest) -> dict:
    state = get_state()
    try:
        symbol = state.set_symbol(request.symbol)
        meta = await state.meta.resolve(symbol)
    except (ValueError, VenueError) as exc:
        _raise_http(exc)
    return {"ok": True, "symbol": symbol, "meta": meta.as_dict()}


@router.get("/market-meta")
async def market_meta(symbol: str | None = Query(default=None)) -> dict:
    state = get_state()
    return await state.meta.describe((symbol or state.symbol).upper())


@router.post("/market-meta-override")
async def market_meta_override(request: OverrideRequest) -> dict:
    state = get_state()
    symbol = (request.symbol or state.symbol).upper()
    try:
        merged = await state.meta.set_override(symbol, request.override)
    except (ValueError, TypeError) as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return {"ok": True, "symbol": symbol, "merged": merged.as_dict()}


@router.get("/data")
async def market_data() -> dict:
    try:
        return await get_snapshot()
    except VenueError as exc:
        _raise_http(exc)


@router.get("/balances")
async def balances() -> dict:
    return await get_balances()


@router.post("/position-target")
def position_target(request: TargetRequest) -> dict:
    try:
        target = get_state().position.set_target(request.target_qty)
    except ValueError as exc:
        _raise_http(exc)
    return {"ok": True, "target_qty": float(target)}


@router.get("/position-progress")
def position_progress() -> dict:
    return get_state().position.snapshot()


@router.post("/precheck")
async def precheck_endpoint(request: ModeRequest) -> dict:
    try:
        return await precheck(request.mode)
    except (ValueError, VenueError) as exc:
        _raise_http(exc)


@router.post("/execute-trade")
async def execute_trade_endpoint(request: ExecuteRequest) -> dict:
    try:
        return await execute_trade(
            request.mode,
            expected_price_a=request.expected_price_a,
            expected_price_b=request.expected_price_b,
        )
    except (ValueError, VenueError) as exc:
        _raise_http(exc)


@router.post("/cancel-order")
async def cancel_order(request: TradeRef):
    try:
        result = await cancel_trade(request.local_id)
    except (KeyError, ValueError) as exc:
        _raise_http(exc)
    if not result["ok"]:
        return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content=result)
    return result


@router.post("/resolve-trade")
async def resolve_trade(request: ResolveRequest) -> dict:
    try:
        trade = await get_reconciler().resolve(request.local_id, request.leg_a_filled)
    except (KeyError, ValueError) as exc:
        _raise_http(exc)
    return trade.as_dict()


@router.get("/history")
async def history() -> List[dict]:
    await get_reconciler().poll_once()
    return [trade.as_dict() for trade in get_state().trades.newest_first()]
