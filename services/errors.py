"""Errors raised by the trade services, re-exported for the API layer."""

from app.orders.tracker import TradeNotFoundError
from exchanges.errors import InvalidInputError, VenueError


class BlockedPlanError(InvalidInputError):
    """The recomputed plan cannot be executed (size or notional rules)."""

    def __init__(self, reason: str, details: dict | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.details = dict(details or {})


class StalePrecheckError(BlockedPlanError):
    """Prices moved beyond tolerance since the operator confirmed the precheck."""


__all__ = [
    "BlockedPlanError",
    "InvalidInputError",
    "StalePrecheckError",
    "TradeNotFoundError",
    "VenueError",
]
