"""Per-symbol venue metadata (precision, contract size, minimum notional)."""

from .metadata import MarketMeta, MarketMetaResolver, PerpMeta, SpotMeta  # noqa: F401

__all__ = ["MarketMeta", "MarketMetaResolver", "PerpMeta", "SpotMeta"]
