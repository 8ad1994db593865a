from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path

from exchanges import GateSpotClient, MexcFuturesClient
from exchanges.base import PerpVenueClient, SpotVenueClient
from exchanges.errors import InvalidInputError
from positions import PositionAggregator

from ..core.config import AppConfig, load_app_config
from ..exchanges.metadata import MarketMetaResolver
from ..orders.tracker import TradeBook
from ..persistence.trade_store import TradeStore


LOGGER = logging.getLogger(__name__)


_STATE_LOCK = threading.RLock()


def normalize_symbol(symbol: str | None) -> str:
    value = str(symbol or "").strip().upper()
    if "_" not in value:
        raise InvalidInputError("symbol must look like BASE_QUOTE")
    base, _, quote = value.partition("_")
    if not base or not quote:
        raise InvalidInputError("symbol must look like BASE_QUOTE")
    return value


@dataclass
class RuntimeState:
    config: AppConfig
    spot: SpotVenueClient
    perp: PerpVenueClient
    meta: MarketMetaResolver
    trades: TradeBook
    position: PositionAggregator
    store: TradeStore | None
    symbol: str

    def set_symbol(self, symbol: str) -> str:
        value = normalize_symbol(symbol)
        with _STATE_LOCK:
            self.symbol = value
        LOGGER.info("active symbol changed", extra={"symbol": value})
        return value


def build_runtime(
    config: AppConfig,
    *,
    spot: SpotVenueClient | None = None,
    perp: PerpVenueClient | None = None,
    store: TradeStore | None = None,
    position: PositionAggregator | None = None,
    load: bool = True,
) -> RuntimeState:
    """Wire clients, repositories and the position state from *config*."""

    timeout = config.venues.timeout_sec
    if spot is None:
        spot = GateSpotClient(
            api_key=config.gate.api_key,
            api_secret=config.gate.api_secret,
            base_url=config.gate.base_url,
            timeout=timeout,
        )
    if perp is None:
        perp = MexcFuturesClient(
            web_auth_token=config.mexc.web_auth_token,
            api_key=config.mexc.api_key,
            api_secret=config.mexc.api_secret,
            base_url=config.mexc.base_url,
            supported_symbols=config.mexc.supported_symbols,
            open_type=config.mexc.open_type,
            timeout=timeout,
        )
    if position is None:
        position = PositionAggregator(Path(config.persistence.position_path))
    meta = MarketMetaResolver(
        spot,
        perp,
        store,
        margin_pct=config.execution.margin_pct,
        leverage=config.mexc.leverage,
    )
    trades = TradeBook(store)
    if load:
        if store is not None:
            meta.load()
            trades.load()
        position.load()
    return RuntimeState(
        config=config,
        spot=spot,
        perp=perp,
        meta=meta,
        trades=trades,
        position=position,
        store=store,
        symbol=config.default_symbol,
    )


def _bootstrap_runtime() -> RuntimeState:
    loaded = load_app_config()
    config = loaded.data
    store = TradeStore(config.persistence.db_url)
    state = build_runtime(config, store=store)
    LOGGER.info(
        "runtime bootstrapped",
        extra={
            "config_path": str(loaded.path),
            "symbol": state.symbol,
            "trades": len(state.trades),
        },
    )
    return state


_STATE: RuntimeState | None = None


def get_state() -> RuntimeState:
    global _STATE
    with _STATE_LOCK:
        if _STATE is None:
            _STATE = _bootstrap_runtime()
        return _STATE


def set_state(state: RuntimeState | None) -> None:
    """Install *state* as the process runtime (``None`` forces a re-bootstrap)."""

    global _STATE
    with _STATE_LOCK:
        _STATE = state


__all__ = [
    "RuntimeState",
    "build_runtime",
    "get_state",
    "normalize_symbol",
    "set_state",
]
