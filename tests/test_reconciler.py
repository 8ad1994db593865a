from __future__ import annotations

from decimal import Decimal

import pytest

from app.orders.models import Trade, new_local_id
from app.orders.state import LegStatus, SettlementState, TradeMode, TradeStatus
from app.orders.tracker import TradeBook
from exchanges.base import OrderDetail
from exchanges.errors import VenueAuthError, VenueTransientError
from services.cross_exchange_arb import execute_trade
from services.errors import InvalidInputError, TradeNotFoundError
from services.reconciler import POLICY_ASSUME_FILLED, TradeReconciler
from tests.fakes.fake_venues import detail


async def _open_trade(state):
    result = await execute_trade("open", runtime=state)
    return state.trades.get(result["local_id"])


def _fill_a(spot, order_id="1001", qty="5000", avg="0.0099"):
    spot.orders[order_id] = detail(order_id, status="closed", total=qty, filled=qty, avg_price=avg)


def _fill_b(perp, order_id="5001"):
    perp.orders[order_id] = detail(order_id, status="3", total="500", filled="500")


@pytest.mark.asyncio
async def test_both_legs_filled_settles_once(state, spot, perp):
    trade = await _open_trade(state)
    _fill_a(spot)
    _fill_b(perp)
    reconciler = TradeReconciler(state)

    first = await reconciler.poll_once()

    assert first == {"checked": 1, "updated": 1}
    assert trade.status is TradeStatus.FILLED
    assert trade.settlement is SettlementState.SETTLED
    assert trade.filled_at is not None
    snapshot = state.position.snapshot()
    assert snapshot["filled_qty"] == 5000.0
    assert snapshot["avg_price"] == pytest.approx(0.0099)
    assert len(snapshot["series"]) == 1

    second = await reconciler.poll_once()
    assert second["checked"] == 0
    assert trade.settle(state.position, Decimal("5000"), Decimal("0.0099")) is False
    assert len(state.position.snapshot()["series"]) == 1


@pytest.mark.parametrize(
    "fill_a, fill_b, expected",
    [
        (True, False, TradeStatus.LEG_A_FILLED),
        (False, True, TradeStatus.LEG_B_FILLED),
        (False, False, TradeStatus.OPEN),
    ],
)
@pytest.mark.asyncio
async def test_partial_fills_never_report_filled(state, spot, perp, fill_a, fill_b, expected):
    trade = await _open_trade(state)
    if fill_a:
        _fill_a(spot)
    if fill_b:
        _fill_b(perp)

    await TradeReconciler(state).poll_once()

    assert trade.status is expected
    assert (trade.status is TradeStatus.FILLED) == (
        trade.leg_status_a is LegStatus.FILLED and trade.leg_status_b is LegStatus.FILLED
    )
    assert trade.settlement is SettlementState.PENDING
    assert state.position.snapshot()["filled_qty"] == 0.0


@pytest.mark.asyncio
async def test_fill_detected_by_remaining_zero(state, spot, perp):
    trade = await _open_trade(state)
    spot.orders["1001"] = OrderDetail(
        order_id="1001", status="open", total=Decimal("0"), filled=Decimal("0"), remaining=Decimal("0")
    )
    _fill_b(perp)

    await TradeReconciler(state).poll_once()

    assert trade.status is TradeStatus.FILLED
    # no fill quantity reported, so the trade volume is used
    assert trade.fill_qty == trade.volume
    assert trade.fill_price == trade.price_used_a


@pytest.mark.asyncio
async def test_unchanged_trade_is_not_rewritten(state, store, monkeypatch):
    await _open_trade(state)
    calls = []
    monkeypatch.setattr(store, "save_history_item", lambda trade: calls.append(trade.local_id))

    result = await TradeReconciler(state).poll_once()

    assert result == {"checked": 1, "updated": 0}
    assert calls == []


@pytest.mark.asyncio
async def test_failed_write_after_settlement_is_retried(state, store, spot, perp, monkeypatch):
    trade = await _open_trade(state)
    _fill_a(spot)
    _fill_b(perp)
    original = store.save_history_item
    failures = []

    def flaky_save(item):
        if item.status is TradeStatus.FILLED and not failures:
            failures.append(item.local_id)
            raise OSError("disk full")
        return original(item)

    monkeypatch.setattr(store, "save_history_item", flaky_save)
    reconciler = TradeReconciler(state)

    await reconciler.poll_once()
    assert failures == [trade.local_id]
    assert trade.settlement is SettlementState.SETTLED
    assert state.trades.unsaved() == [trade]

    await reconciler.poll_once()
    assert state.trades.unsaved() == []
    stored = {item.local_id: item for item in store.load_history()}[trade.local_id]
    assert stored.status is TradeStatus.FILLED
    assert stored.settlement is SettlementState.SETTLED

    # a restart must not hand the trade to the poller again
    reloaded = TradeBook(store)
    reloaded.load()
    assert reloaded.unsettled() == []
    assert state.position.snapshot()["filled_qty"] == 5000.0


@pytest.mark.asyncio
async def test_missing_leg_a_order_needs_review(state, spot, perp):
    trade = await _open_trade(state)
    del spot.orders["1001"]
    _fill_b(perp)
    reconciler = TradeReconciler(state)

    await reconciler.poll_once()

    assert trade.leg_status_a is LegStatus.UNKNOWN
    assert trade.status is TradeStatus.NEEDS_REVIEW
    assert trade.settlement is SettlementState.PENDING
    assert state.position.snapshot()["filled_qty"] == 0.0
    # flagged trades are left alone until an operator resolves them
    assert (await reconciler.poll_once())["checked"] == 0


@pytest.mark.asyncio
async def test_missing_leg_a_order_assumed_filled_by_policy(state, spot, perp):
    trade = await _open_trade(state)
    del spot.orders["1001"]
    _fill_b(perp)

    await TradeReconciler(state, not_found_policy=POLICY_ASSUME_FILLED).poll_once()

    assert trade.status is TradeStatus.FILLED
    assert trade.fill_qty == trade.volume
    assert trade.fill_price == trade.price_used_a
    assert state.position.snapshot()["filled_qty"] == float(trade.volume)


@pytest.mark.parametrize(
    "error",
    [VenueTransientError("gate", "timeout"), VenueAuthError("gate", "http_401"), RuntimeError("boom")],
)
@pytest.mark.asyncio
async def test_lookup_failures_leave_trade_for_next_pass(state, spot, perp, error):
    trade = await _open_trade(state)
    spot.orders["1001"] = error
    _fill_b(perp)
    reconciler = TradeReconciler(state)

    result = await reconciler.poll_once()

    assert result["checked"] == 1
    assert trade.leg_status_a is LegStatus.OPEN
    assert trade.status is TradeStatus.LEG_B_FILLED

    _fill_a(spot)
    await reconciler.poll_once()
    assert trade.status is TradeStatus.FILLED


@pytest.mark.asyncio
async def test_trades_still_submitting_are_skipped(state, spot):
    trade = Trade(
        local_id=new_local_id(),
        symbol="BOXCAT_USDT",
        mode=TradeMode.OPEN,
        price_used_a=Decimal("0.01"),
        price_used_b=Decimal("0.0102"),
        volume=Decimal("100"),
        contracts_b=Decimal("10"),
    )
    state.trades.add(trade)

    result = await TradeReconciler(state).poll_once()

    assert result["checked"] == 0
    assert spot.lookups == []


@pytest.mark.asyncio
async def test_leg_error_stays_visible_until_other_leg_fills(state, spot, perp):
    spot.submit_error = VenueTransientError("gate", "timeout")
    result = await execute_trade("open", runtime=state)
    trade = state.trades.get(result["local_id"])
    reconciler = TradeReconciler(state)

    await reconciler.poll_once()
    assert trade.status is TradeStatus.LEG_A_ERROR

    perp.orders["5001"] = detail("5001", status="3", total="500", filled="500")
    await reconciler.poll_once()
    assert trade.status is TradeStatus.LEG_B_FILLED
    assert spot.lookups == []


@pytest.mark.asyncio
async def test_resolve_as_filled_settles(state, spot, perp):
    trade = await _open_trade(state)
    del spot.orders["1001"]
    _fill_b(perp)
    reconciler = TradeReconciler(state)
    await reconciler.poll_once()

    resolved = await reconciler.resolve(trade.local_id, True)

    assert resolved.status is TradeStatus.FILLED
    assert resolved.settlement is SettlementState.SETTLED
    assert state.position.snapshot()["filled_qty"] == float(trade.volume)


@pytest.mark.asyncio
async def test_resolve_as_cancelled_with_live_leg_b(state, spot):
    trade = await _open_trade(state)
    del spot.orders["1001"]
    reconciler = TradeReconciler(state)
    await reconciler.poll_once()

    resolved = await reconciler.resolve(trade.local_id, False)

    assert resolved.leg_status_a is LegStatus.CANCELLED
    assert resolved.status is TradeStatus.CANCEL_FAILED
    assert resolved.settlement is SettlementState.PENDING


@pytest.mark.asyncio
async def test_resolve_as_cancelled_with_filled_leg_b_is_an_error(state, spot, perp):
    trade = await _open_trade(state)
    del spot.orders["1001"]
    _fill_b(perp)
    reconciler = TradeReconciler(state)
    await reconciler.poll_once()

    resolved = await reconciler.resolve(trade.local_id, False)

    assert resolved.status is TradeStatus.ERROR
    assert resolved.settlement is SettlementState.VOID
    assert "a" in resolved.errors


@pytest.mark.asyncio
async def test_resolve_requires_needs_review(state):
    trade = await _open_trade(state)
    reconciler = TradeReconciler(state)

    with pytest.raises(InvalidInputError):
        await reconciler.resolve(trade.local_id, True)
    with pytest.raises(TradeNotFoundError):
        await reconciler.resolve("404", True)
