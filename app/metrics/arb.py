"""Prometheus metrics for trade execution, reconciliation and the position."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

__all__ = [
    "ARB_CANCEL_TOTAL",
    "ARB_LEG_SUBMIT_TOTAL",
    "ARB_POSITION_AVG_ARB_PCT",
    "ARB_POSITION_FILLED_QTY",
    "ARB_RECON_ERRORS_TOTAL",
    "ARB_RECON_PASSES_TOTAL",
    "ARB_RECON_PASS_SECONDS",
    "ARB_TRADES_TOTAL",
    "record_cancel",
    "record_leg_submit",
    "record_position",
    "record_recon_error",
    "record_trade",
]

ARB_TRADES_TOTAL = Counter(
    "arb_trades_total",
    "Trades created by execute, grouped by mode and status after submission.",
    ("mode", "status"),
)

ARB_LEG_SUBMIT_TOTAL = Counter(
    "arb_leg_submit_total",
    "Leg order submissions grouped by leg and result.",
    ("leg", "result"),
)

ARB_RECON_PASSES_TOTAL = Counter(
    "arb_recon_passes_total",
    "Completed reconciliation passes.",
)

ARB_RECON_ERRORS_TOTAL = Counter(
    "arb_recon_errors_total",
    "Order lookups that failed during reconciliation.",
    ("leg", "kind"),
)

ARB_RECON_PASS_SECONDS = Histogram(
    "arb_recon_pass_seconds",
    "Duration of a reconciliation pass.",
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 4.0, 8.0, 16.0),
)

ARB_POSITION_FILLED_QTY = Gauge(
    "arb_position_filled_qty",
    "Base quantity accumulated into the running position.",
)

ARB_POSITION_AVG_ARB_PCT = Gauge(
    "arb_position_avg_arb_pct",
    "Quantity weighted average arbitrage margin of the position, in percent.",
)

ARB_CANCEL_TOTAL = Counter(
    "arb_cancel_total",
    "Cancel requests grouped by outcome.",
    ("result",),
)

ARB_POSITION_FILLED_QTY.set(0.0)
ARB_POSITION_AVG_ARB_PCT.set(0.0)


def record_trade(mode: str, status: str) -> None:
    ARB_TRADES_TOTAL.labels(mode=mode, status=status).inc()


def record_leg_submit(leg: str, ok: bool) -> None:
    ARB_LEG_SUBMIT_TOTAL.labels(leg=leg, result="ok" if ok else "error").inc()


def record_recon_error(leg: str, kind: str) -> None:
    ARB_RECON_ERRORS_TOTAL.labels(leg=leg, kind=kind).inc()


def record_position(filled_qty: float, avg_arb_pct: float) -> None:
    ARB_POSITION_FILLED_QTY.set(float(filled_qty))
    ARB_POSITION_AVG_ARB_PCT.set(float(avg_arb_pct))


def record_cancel(result: str) -> None:
    ARB_CANCEL_TOTAL.labels(result=result).inc()
