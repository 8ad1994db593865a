"""Leg and trade status values plus the aggregate status rules."""

from __future__ import annotations

import logging
from enum import Enum


LOGGER = logging.getLogger(__name__)


class LegStatus(str, Enum):
    """Lifecycle of a single venue order."""

    CREATING = "creating"
    OPEN = "open"
    FILLED = "filled"
    CANCELLED = "cancelled"
    ERROR = "error"
    UNKNOWN = "unknown"


class TradeStatus(str, Enum):
    """Aggregate status of a two-legged trade."""

    CREATING = "creating"
    OPEN = "open"
    LEG_A_FILLED = "legA_filled"
    LEG_B_FILLED = "legB_filled"
    LEG_A_ERROR = "legA_error"
    LEG_B_ERROR = "legB_error"
    ERROR = "error"
    FILLED = "filled"
    CANCELLED = "cancelled"
    CANCEL_FAILED = "cancel_failed"
    NEEDS_REVIEW = "needs_review"


class SettlementState(str, Enum):
    """Whether a trade's fill has been folded into the position."""

    PENDING = "pending"
    SETTLED = "settled"
    VOID = "void"


class TradeMode(str, Enum):
    OPEN = "open"
    CLOSE = "close"


# Trades in these states are still polled against the venues.
UNSETTLED_STATUSES: frozenset[TradeStatus] = frozenset(
    {
        TradeStatus.CREATING,
        TradeStatus.OPEN,
        TradeStatus.LEG_A_FILLED,
        TradeStatus.LEG_B_FILLED,
        TradeStatus.LEG_A_ERROR,
        TradeStatus.LEG_B_ERROR,
    }
)


def submission_status(leg_a_ok: bool, leg_b_ok: bool) -> TradeStatus:
    """Aggregate status right after both legs were submitted."""

    if leg_a_ok and leg_b_ok:
        return TradeStatus.OPEN
    if leg_a_ok:
        return TradeStatus.LEG_B_ERROR
    if leg_b_ok:
        return TradeStatus.LEG_A_ERROR
    return TradeStatus.ERROR


def fill_status(leg_a: LegStatus, leg_b: LegStatus) -> TradeStatus:
    """Aggregate status derived from the two legs' fill state."""

    a_filled = leg_a is LegStatus.FILLED
    b_filled = leg_b is LegStatus.FILLED
    if a_filled and b_filled:
        return TradeStatus.FILLED
    if a_filled:
        return TradeStatus.LEG_A_FILLED
    if b_filled:
        return TradeStatus.LEG_B_FILLED
    return TradeStatus.OPEN


def derive_status(leg_a: LegStatus, leg_b: LegStatus, current: TradeStatus) -> TradeStatus:
    """Re-derive the aggregate status after a reconciliation step.

    A leg in ``unknown`` pins the trade to ``needs_review``. A submission
    error stays visible until the surviving leg fills.
    """

    if LegStatus.UNKNOWN in (leg_a, leg_b):
        return TradeStatus.NEEDS_REVIEW
    derived = fill_status(leg_a, leg_b)
    if derived is TradeStatus.OPEN and current in (TradeStatus.LEG_A_ERROR, TradeStatus.LEG_B_ERROR):
        return current
    return derived


def coerce_leg_status(value: str | LegStatus | None) -> LegStatus:
    if isinstance(value, LegStatus):
        return value
    try:
        return LegStatus(str(value or LegStatus.CREATING.value).lower())
    except ValueError:
        LOGGER.warning("unrecognised leg status", extra={"value": value})
        return LegStatus.UNKNOWN


def coerce_trade_status(value: str | TradeStatus | None) -> TradeStatus:
    if isinstance(value, TradeStatus):
        return value
    try:
        return TradeStatus(str(value or TradeStatus.CREATING.value))
    except ValueError:
        LOGGER.warning("unrecognised trade status", extra={"value": value})
        return TradeStatus.NEEDS_REVIEW


__all__ = [
    "LegStatus",
    "SettlementState",
    "TradeMode",
    "TradeStatus",
    "UNSETTLED_STATUSES",
    "coerce_leg_status",
    "coerce_trade_status",
    "derive_status",
    "fill_status",
    "submission_status",
]
