"""Venue clients for the spot (leg A) and perpetual (leg B) sides of the arbitrage."""

from .base import BookTop, OrderAck, OrderDetail, PerpVenueClient, SpotVenueClient  # noqa: F401
from .gate_spot import GateSpotClient  # noqa: F401
from .mexc_futures import MexcFuturesClient  # noqa: F401

__all__ = [
    "BookTop",
    "OrderAck",
    "OrderDetail",
    "PerpVenueClient",
    "SpotVenueClient",
    "GateSpotClient",
    "MexcFuturesClient",
]
