from __future__ import annotations

from decimal import Decimal

import pytest

from app.exchanges.metadata import MarketMeta
from app.orders.state import TradeMode
from services.cross_exchange_arb import compute_plan, parse_mode
from services.errors import InvalidInputError
from tests.fakes.fake_venues import book


def _meta(*, gate=None, mexc=None, margin_pct=0, leverage=1) -> MarketMeta:
    return MarketMeta.from_dict(
        {
            "symbol_spot": "BOXCAT_USDT",
            "symbol_fut": "BOXCAT_USDT",
            "gate": {"price_scale": 6, "qty_scale": 0, "min_qty": 0, "min_quote": 0, **(gate or {})},
            "mexc": {"price_scale": 6, "vol_precision": 0, "contract_size": 10, "min_contracts": 1, **(mexc or {})},
            "settings": {"margin_pct": margin_pct, "leverage": leverage},
        }
    )


def test_tradable_size_is_minimum_of_both_depths_and_remaining_target():
    plan = compute_plan(
        TradeMode.OPEN,
        book("0.99", "100", "1", "100"),
        book("1.01", "50", "1.02", "50"),
        _meta(),
        target_qty=300,
        filled_qty=0,
    )

    assert plan.tradable_base == Decimal("100")
    assert plan.contracts == Decimal("10")
    assert plan.qty == Decimal("100")
    assert not plan.blocked


def test_remaining_target_caps_contracts():
    plan = compute_plan(
        TradeMode.OPEN,
        book("0.99", "100", "1", "100"),
        book("1.01", "50", "1.02", "50"),
        _meta(),
        target_qty=135,
        filled_qty=100,
    )

    assert plan.tradable_base == Decimal("35")
    assert plan.contracts == Decimal("3")
    assert plan.qty == Decimal("30")


def test_min_quote_not_met_blocks_plan():
    meta = _meta(
        gate={"price_scale": 2, "qty_scale": 4, "min_quote": 3},
        mexc={"contract_size": "0.0001"},
    )
    plan = compute_plan(
        TradeMode.OPEN,
        book("0.99", "0.0001", "1", "0.0001"),
        book("1", "1", "1.01", "1"),
        meta,
    )

    assert plan.qty == Decimal("0.0001")
    assert plan.price_a == Decimal("1.00")
    assert plan.blocked is True
    assert plan.reason == "min_quote_not_met"
    assert plan.quote_a < plan.min_quote


def test_min_quote_raises_size_up_to_perp_depth():
    plan = compute_plan(
        TradeMode.OPEN,
        book("0.99", "20", "1", "20"),
        book("1.01", "50", "1.02", "50"),
        _meta(gate={"min_quote": 50}),
    )

    assert plan.contracts == Decimal("5")
    assert plan.qty == Decimal("50")
    assert not plan.blocked


def test_empty_perp_depth_blocks_without_min_quote():
    plan = compute_plan(
        TradeMode.OPEN,
        book("0.99", "100", "1", "100"),
        book("1.01", "0", "1.02", "0"),
        _meta(),
    )

    assert plan.contracts == 0
    assert plan.blocked is True
    assert plan.reason == "no_tradable_size"


def test_open_prices_apply_margin_away_from_touch():
    plan = compute_plan(
        TradeMode.OPEN,
        book("0.9", "100", "1", "100"),
        book("1.2", "50", "1.3", "50"),
        _meta(margin_pct=10, leverage=2),
    )

    assert plan.price_a == Decimal("0.900000")
    assert plan.price_b == Decimal("1.320000")
    assert plan.required_usdt == Decimal("1.32") * 10 * plan.contracts / 2


def test_close_prices_use_opposite_sides_and_need_no_margin():
    plan = compute_plan(
        TradeMode.CLOSE,
        book("1", "100", "1.1", "100"),
        book("1.1", "50", "1.2", "50"),
        _meta(margin_pct=10),
    )

    assert plan.price_a == Decimal("1.100000")
    assert plan.price_b == Decimal("1.080000")
    assert plan.required_usdt == 0


def test_details_carry_the_sizing_inputs():
    plan = compute_plan(
        TradeMode.OPEN,
        book("0.99", "100", "1", "100"),
        book("1.01", "50", "1.02", "50"),
        _meta(leverage=3),
    )
    details = plan.details()

    assert details["mode"] == "open"
    assert details["symbol"] == "BOXCAT_USDT"
    assert details["contracts"] == 10.0
    assert details["contract_size"] == 10.0
    assert details["leverage"] == 3
    assert details["required_usdt"] == pytest.approx(1.01 * 10 * 10 / 3, rel=1e-6)


@pytest.mark.parametrize("value", ["", "buy", None, "opened"])
def test_parse_mode_rejects_unknown_modes(value):
    with pytest.raises(InvalidInputError):
        parse_mode(value)


def test_parse_mode_is_case_insensitive():
    assert parse_mode(" Close ") is TradeMode.CLOSE
