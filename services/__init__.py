"""Service layer for the spot/perp arbitrage: sizing, execution, reconciliation."""

from .cross_exchange_arb import compute_plan, execute_trade, precheck  # noqa: F401
from .reconciler import TradeReconciler, get_reconciler  # noqa: F401
from .trade_cancel import cancel_trade  # noqa: F401

__all__ = [
    "cancel_trade",
    "compute_plan",
    "execute_trade",
    "get_reconciler",
    "precheck",
    "TradeReconciler",
]
