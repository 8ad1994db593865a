from __future__ import annotations

import asyncio

import pytest

from app.orders.state import LegStatus, SettlementState, TradeStatus
from exchanges.errors import VenueBusinessError, VenueTransientError
from services.cross_exchange_arb import execute_trade
from services.errors import InvalidInputError, TradeNotFoundError
from services.reconciler import TradeReconciler
from services.trade_cancel import cancel_trade
from tests.fakes.fake_venues import detail


async def _open_trade(state):
    result = await execute_trade("open", runtime=state)
    return state.trades.get(result["local_id"])


@pytest.mark.asyncio
async def test_zero_fill_cancel_leaves_position_untouched(state, tmp_path):
    state.position.set_target(10000)
    position_file = tmp_path / "position_state.json"
    before_bytes = position_file.read_bytes()
    before = state.position.snapshot()
    trade = await _open_trade(state)

    result = await cancel_trade(trade.local_id, runtime=state)

    assert result["ok"] is True
    assert result["status"] == "cancelled"
    assert trade.leg_status_a is LegStatus.CANCELLED
    assert trade.leg_status_b is LegStatus.CANCELLED
    assert trade.cancelled_at is not None
    assert trade.settlement is SettlementState.VOID
    assert state.position.snapshot() == before
    assert position_file.read_bytes() == before_bytes


@pytest.mark.asyncio
async def test_partial_fill_on_leg_a_is_settled(state, spot):
    trade = await _open_trade(state)
    spot.orders["1001"] = detail("1001", status="open", total="5000", filled="2000", avg_price="0.0098")

    result = await cancel_trade(trade.local_id, runtime=state)

    assert result["legs"]["a"]["filled"] == 2000.0
    assert trade.settlement is SettlementState.SETTLED
    snapshot = state.position.snapshot()
    assert snapshot["filled_qty"] == 2000.0
    assert snapshot["avg_price"] == pytest.approx(0.0098)


@pytest.mark.asyncio
async def test_leg_a_failure_does_not_stop_leg_b(state, spot, perp):
    trade = await _open_trade(state)
    spot.cancel_errors["1001"] = VenueBusinessError("gate", "ORDER_CLOSED")

    result = await cancel_trade(trade.local_id, runtime=state)

    assert result["ok"] is False
    assert result["status"] == "cancel_failed"
    assert result["legs"]["a"] == {"ok": False, "id": "1001", "error": "ORDER_CLOSED"}
    assert result["legs"]["b"]["ok"] is True
    assert perp.cancelled == ["5001"]
    assert trade.leg_status_a is LegStatus.OPEN
    assert trade.leg_status_b is LegStatus.CANCELLED
    assert trade.settlement is SettlementState.PENDING


@pytest.mark.asyncio
async def test_leg_b_failure_is_reported_symmetrically(state, spot, perp):
    trade = await _open_trade(state)
    perp.cancel_errors["5001"] = VenueTransientError("mexc", "timeout")

    result = await cancel_trade(trade.local_id, runtime=state)

    assert result["ok"] is False
    assert spot.cancelled == ["1001"]
    assert result["legs"]["b"]["error"] == "timeout"
    assert trade.status is TradeStatus.CANCEL_FAILED
    assert trade.errors["cancel_b"] == "timeout"


@pytest.mark.asyncio
async def test_retry_skips_already_cancelled_leg(state, spot, perp):
    trade = await _open_trade(state)
    spot.cancel_errors["1001"] = VenueBusinessError("gate", "busy")
    await cancel_trade(trade.local_id, runtime=state)
    spot.cancel_errors.clear()

    result = await cancel_trade(trade.local_id, runtime=state)

    assert result["ok"] is True
    assert result["legs"]["b"]["skipped"] == "already_cancelled"
    assert perp.cancelled == ["5001"]
    assert trade.status is TradeStatus.CANCELLED


@pytest.mark.asyncio
async def test_cancel_failed_trade_is_not_polled(state, spot):
    trade = await _open_trade(state)
    spot.cancel_errors["1001"] = VenueBusinessError("gate", "busy")
    await cancel_trade(trade.local_id, runtime=state)
    lookups = list(spot.lookups)

    result = await TradeReconciler(state).poll_once()

    assert result["checked"] == 0
    assert spot.lookups == lookups


@pytest.mark.asyncio
async def test_cancel_unknown_trade(state):
    with pytest.raises(TradeNotFoundError):
        await cancel_trade("123", runtime=state)


@pytest.mark.asyncio
async def test_cancel_filled_trade_is_rejected(state, spot, perp):
    trade = await _open_trade(state)
    spot.orders["1001"] = detail("1001", status="closed", total="5000", filled="5000")
    perp.orders["5001"] = detail("5001", status="3", total="500", filled="500")
    await TradeReconciler(state).poll_once()

    with pytest.raises(InvalidInputError):
        await cancel_trade(trade.local_id, runtime=state)
    assert spot.cancelled == []


@pytest.mark.asyncio
async def test_filled_leg_a_is_kept_and_settled(state, spot, perp):
    trade = await _open_trade(state)
    spot.orders["1001"] = detail("1001", status="closed", total="5000", filled="5000", avg_price="0.0099")
    await TradeReconciler(state).poll_once()
    assert trade.status is TradeStatus.LEG_A_FILLED

    result = await cancel_trade(trade.local_id, runtime=state)

    assert result["ok"] is True
    assert result["legs"]["a"]["skipped"] == "already_filled"
    assert result["legs"]["a"]["filled"] == 5000.0
    assert spot.cancelled == []
    assert perp.cancelled == ["5001"]
    assert trade.status is TradeStatus.CANCELLED
    assert trade.leg_status_a is LegStatus.FILLED
    assert trade.settlement is SettlementState.SETTLED
    snapshot = state.position.snapshot()
    assert snapshot["filled_qty"] == 5000.0
    assert snapshot["avg_price"] == pytest.approx(0.0099)


@pytest.mark.asyncio
async def test_cancel_while_submitting_is_rejected(state, spot, perp):
    release = asyncio.Event()
    submit = spot.submit_order

    async def held_submit(*args):
        await release.wait()
        return await submit(*args)

    spot.submit_order = held_submit
    task = asyncio.create_task(execute_trade("open", runtime=state))
    for _ in range(200):
        if len(state.trades):
            break
        await asyncio.sleep(0.01)
    trade = state.trades.newest_first()[0]

    with pytest.raises(InvalidInputError):
        await cancel_trade(trade.local_id, runtime=state)

    release.set()
    await task
    assert trade.status is TradeStatus.OPEN
    assert trade.settlement is SettlementState.PENDING
    assert spot.cancelled == []

    spot.orders["1001"] = detail("1001", status="closed", total="5000", filled="5000")
    perp.orders["5001"] = detail("5001", status="3", total="500", filled="500")
    await TradeReconciler(state).poll_once()
    assert trade.settlement is SettlementState.SETTLED
    assert state.position.snapshot()["filled_qty"] == 5000.0
