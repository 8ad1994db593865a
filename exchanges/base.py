"""Protocol definitions for the two venues of the spot/perp arbitrage."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Mapping, Protocol, runtime_checkable


# Status strings (lower-cased) that venues use for a completely executed order.
FILLED_STATUS_CODES = frozenset(
    {"closed", "finished", "done", "filled", "completed", "success", "3", "7"}
)


@dataclass(frozen=True)
class BookTop:
    """Best bid/ask of a venue order book.

    Sizes are expressed in the venue's native unit: base asset for the spot
    venue, contracts for the perpetual venue.
    """

    bid: Decimal
    bid_size: Decimal
    ask: Decimal
    ask_size: Decimal

    def as_dict(self) -> dict[str, float]:
        return {
            "bid": float(self.bid),
            "bid_size": float(self.bid_size),
            "ask": float(self.ask),
            "ask_size": float(self.ask_size),
        }


@dataclass(frozen=True)
class OrderDetail:
    """Normalised order lookup result."""

    order_id: str
    status: str
    total: Decimal
    filled: Decimal
    remaining: Decimal | None = None
    avg_price: Decimal | None = None
    raw: Mapping[str, Any] = field(default_factory=dict)

    @property
    def is_filled(self) -> bool:
        if self.status.strip().lower() in FILLED_STATUS_CODES:
            return True
        if self.total > 0 and self.filled >= self.total:
            return True
        return self.remaining is not None and self.remaining == 0


@dataclass(frozen=True)
class OrderAck:
    order_id: str
    raw: Mapping[str, Any] = field(default_factory=dict)


@runtime_checkable
class SpotVenueClient(Protocol):
    """Venue A: spot market, quantities in base asset."""

    name: str

    async def get_order_book(self, symbol: str) -> BookTop:
        """Return the top of book for *symbol*."""

    async def get_pair_meta(self, symbol: str) -> Mapping[str, Any]:
        """Return the raw instrument metadata payload for *symbol*."""

    async def submit_order(
        self, symbol: str, side: str, price: Decimal, amount: Decimal
    ) -> OrderAck:
        """Place a limit order of *amount* base units."""

    async def cancel_order(self, symbol: str, order_id: str) -> Mapping[str, Any]:
        """Cancel a single order."""

    async def get_order_detail(self, symbol: str, order_id: str) -> OrderDetail:
        """Look an order up by id; raises ``OrderNotFoundError`` if unknown."""

    async def get_balances(self, symbol: str) -> dict[str, dict[str, float]]:
        """Return ``{currency: {available, locked}}`` for the pair's assets."""


@runtime_checkable
class PerpVenueClient(Protocol):
    """Venue B: leveraged perpetual contracts, quantities in contracts."""

    name: str

    async def get_order_book(self, symbol: str) -> BookTop:
        """Return the top of book for *symbol* (sizes in contracts)."""

    async def get_contract_meta(self, symbol: str) -> Mapping[str, Any]:
        """Return the raw contract metadata payload for *symbol*."""

    async def submit_order(
        self,
        symbol: str,
        side_code: int,
        price: Decimal,
        contracts: Decimal,
        leverage: int,
    ) -> OrderAck:
        """Place a limit order of *contracts* with the venue's side code."""

    async def cancel_order(self, symbol: str, order_id: str) -> Mapping[str, Any]:
        """Cancel a single order."""

    async def get_order_detail(self, symbol: str, order_id: str) -> OrderDetail:
        """Look an order up by id; raises ``OrderNotFoundError`` if unknown."""

    async def get_available_usdt(self) -> dict[str, Any]:
        """Return ``{"available_usdt": x}`` or ``{"unknown": True, "reason": ...}``."""
