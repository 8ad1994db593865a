from __future__ import annotations

"""Market metadata discovery, overrides and merging for the two venues."""

import asyncio
import copy
import logging
import threading
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Mapping, Protocol

from app.util.quantization import as_dec


LOGGER = logging.getLogger(__name__)


GATE_DEFAULTS: Dict[str, Any] = {"price_scale": 11, "qty_scale": 0, "min_qty": 0, "min_quote": 3}
MEXC_DEFAULTS: Dict[str, Any] = {
    "price_scale": 4,
    "vol_precision": 0,
    "contract_size": 10,
    "min_contracts": 1,
}

_CAMEL_TO_SNAKE = {
    "symbolSpot": "symbol_spot",
    "symbolFut": "symbol_fut",
    "priceScale": "price_scale",
    "qtyScale": "qty_scale",
    "minQty": "min_qty",
    "minQuote": "min_quote",
    "volPrecision": "vol_precision",
    "contractSize": "contract_size",
    "minContracts": "min_contracts",
    "marginPct": "margin_pct",
}


@dataclass(frozen=True, slots=True)
class SpotMeta:
    price_scale: int
    qty_scale: int
    min_qty: Decimal
    min_quote: Decimal


@dataclass(frozen=True, slots=True)
class PerpMeta:
    price_scale: int
    vol_precision: int
    contract_size: Decimal
    min_contracts: Decimal


@dataclass(frozen=True, slots=True)
class ExecutionSettings:
    margin_pct: Decimal
    leverage: int


@dataclass(frozen=True, slots=True)
class MarketMeta:
    symbol_spot: str
    symbol_fut: str
    gate: SpotMeta
    mexc: PerpMeta
    settings: ExecutionSettings

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "MarketMeta":
        gate = {**GATE_DEFAULTS, **dict(payload.get("gate") or {})}
        mexc = {**MEXC_DEFAULTS, **dict(payload.get("mexc") or {})}
        settings = dict(payload.get("settings") or {})
        leverage = int(as_dec(settings.get("leverage", 1)))
        if leverage < 1:
            raise ValueError("leverage must be >= 1")
        return cls(
            symbol_spot=str(payload.get("symbol_spot") or ""),
            symbol_fut=str(payload.get("symbol_fut") or payload.get("symbol_spot") or ""),
            gate=SpotMeta(
                price_scale=int(gate["price_scale"]),
                qty_scale=int(gate["qty_scale"]),
                min_qty=as_dec(gate["min_qty"]),
                min_quote=as_dec(gate["min_quote"]),
            ),
            mexc=PerpMeta(
                price_scale=int(mexc["price_scale"]),
                vol_precision=int(mexc["vol_precision"]),
                contract_size=as_dec(mexc["contract_size"]),
                min_contracts=as_dec(mexc["min_contracts"]),
            ),
            settings=ExecutionSettings(
                margin_pct=as_dec(settings.get("margin_pct", 0)),
                leverage=leverage,
            ),
        )

    def as_dict(self) -> Dict[str, Any]:
        return {
            "symbol_spot": self.symbol_spot,
            "symbol_fut": self.symbol_fut,
            "gate": {
                "price_scale": self.gate.price_scale,
                "qty_scale": self.gate.qty_scale,
                "min_qty": float(self.gate.min_qty),
                "min_quote": float(self.gate.min_quote),
            },
            "mexc": {
                "price_scale": self.mexc.price_scale,
                "vol_precision": self.mexc.vol_precision,
                "contract_size": float(self.mexc.contract_size),
                "min_contracts": float(self.mexc.min_contracts),
            },
            "settings": {
                "margin_pct": float(self.settings.margin_pct),
                "leverage": self.settings.leverage,
            },
        }


def deep_merge(base: Mapping[str, Any], patch: Mapping[str, Any] | None) -> Dict[str, Any]:
    """Merge *patch* into a copy of *base*.

    Mapping leaves merge recursively, scalars replace, and ``None`` leaves are
    ignored so a partial patch never erases a value.
    """

    merged: Dict[str, Any] = copy.deepcopy(dict(base))
    if not patch:
        return merged
    for key, value in patch.items():
        if isinstance(value, Mapping):
            current = merged.get(key)
            merged[key] = deep_merge(current if isinstance(current, Mapping) else {}, value)
        elif value is not None:
            merged[key] = value
    return merged


def normalize_keys(payload: Mapping[str, Any]) -> Dict[str, Any]:
    """Translate camelCase override keys to their snake_case names."""

    result: Dict[str, Any] = {}
    for key, value in payload.items():
        name = _CAMEL_TO_SNAKE.get(str(key), str(key))
        result[name] = normalize_keys(value) if isinstance(value, Mapping) else value
    return result


def normalize_gate(raw: Mapping[str, Any] | Any) -> Dict[str, Any]:
    """Normalise a Gate.io ``currency_pairs`` entry."""

    if not isinstance(raw, Mapping):
        raise TypeError("metadata payload must be a mapping")

    def pick(*keys: str, default: Any) -> Any:
        for key in keys:
            if raw.get(key) not in (None, ""):
                return raw[key]
        return default

    return {
        "price_scale": int(pick("precision", "trade_price_precision", default=GATE_DEFAULTS["price_scale"])),
        "qty_scale": int(pick("amount_precision", "trade_amount_precision", default=GATE_DEFAULTS["qty_scale"])),
        "min_qty": float(as_dec(pick("min_base_amount", default=0))),
        "min_quote": float(as_dec(pick("min_quote_amount", default=0))),
    }


def normalize_mexc(raw: Mapping[str, Any] | Any) -> Dict[str, Any]:
    """Normalise a MEXC ``contract/detail`` entry."""

    if not isinstance(raw, Mapping):
        raise TypeError("metadata payload must be a mapping")

    def pick(*keys: str, default: Any) -> Any:
        for key in keys:
            if raw.get(key) not in (None, ""):
                return raw[key]
        return default

    contract_size = as_dec(pick("contractSize", "contract_value", "multiplier", default=MEXC_DEFAULTS["contract_size"]))
    if contract_size <= 0:
        raise ValueError("mexc contractSize must be positive")
    return {
        "price_scale": int(pick("priceScale", "price_scale", default=MEXC_DEFAULTS["price_scale"])),
        "vol_precision": int(pick("volScale", "volPrecision", "quantity_scale", default=MEXC_DEFAULTS["vol_precision"])),
        "contract_size": float(contract_size),
        "min_contracts": float(as_dec(pick("minVol", "min_volume", default=MEXC_DEFAULTS["min_contracts"]))),
    }


class OverrideStore(Protocol):
    def upsert_override(self, symbol: str, override: Mapping[str, Any]) -> None: ...

    def load_overrides(self) -> Dict[str, Dict[str, Any]]: ...


class MarketMetaResolver:
    """Per-symbol metadata repository.

    The auto-discovered baseline is cached for the process lifetime (or until
    :meth:`refresh`); overrides are persisted through the store before being
    applied in memory.
    """

    def __init__(
        self,
        spot_client: Any,
        perp_client: Any,
        store: OverrideStore | None = None,
        *,
        margin_pct: float = 10.0,
        leverage: int = 1,
    ) -> None:
        self._spot = spot_client
        self._perp = perp_client
        self._store = store
        self._settings = {"margin_pct": float(margin_pct), "leverage": int(leverage)}
        self._auto: Dict[str, Dict[str, Any]] = {}
        self._overrides: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.RLock()

    def load(self, store: OverrideStore | None = None) -> int:
        """Load persisted overrides; returns the number of symbols loaded."""

        if store is not None:
            self._store = store
        if self._store is None:
            return 0
        loaded = self._store.load_overrides()
        with self._lock:
            self._overrides = {
                str(symbol).upper(): normalize_keys(value or {}) for symbol, value in loaded.items()
            }
            count = len(self._overrides)
        LOGGER.info("market meta overrides loaded", extra={"count": count})
        return count

    async def _discover(self, symbol: str) -> Dict[str, Any]:
        try:
            gate = normalize_gate(await self._spot.get_pair_meta(symbol))
        except Exception as exc:  # noqa: BLE001 - every failure falls back to defaults
            LOGGER.warning(
                "gate meta discovery failed; using defaults",
                extra={"symbol": symbol, "error": str(exc)},
            )
            gate = dict(GATE_DEFAULTS)
        try:
            mexc = normalize_mexc(await self._perp.get_contract_meta(symbol))
        except Exception as exc:  # noqa: BLE001 - every failure falls back to defaults
            LOGGER.warning(
                "mexc meta discovery failed; using defaults",
                extra={"symbol": symbol, "error": str(exc)},
            )
            mexc = dict(MEXC_DEFAULTS)
        return {
            "symbol_spot": symbol,
            "symbol_fut": symbol,
            "gate": gate,
            "mexc": mexc,
            "settings": dict(self._settings),
        }

    async def baseline(self, symbol: str) -> Dict[str, Any]:
        key = symbol.upper()
        with self._lock:
            cached = self._auto.get(key)
        if cached is not None:
            return copy.deepcopy(cached)
        discovered = await self._discover(key)
        with self._lock:
            # a concurrent resolve may have filled the cache first
            cached = self._auto.setdefault(key, discovered)
        return copy.deepcopy(cached)

    def override(self, symbol: str) -> Dict[str, Any]:
        with self._lock:
            return copy.deepcopy(self._overrides.get(symbol.upper(), {}))

    async def resolve(self, symbol: str) -> MarketMeta:
        merged = deep_merge(await self.baseline(symbol), self.override(symbol))
        return MarketMeta.from_dict(merged)

    async def describe(self, symbol: str) -> Dict[str, Any]:
        auto = await self.baseline(symbol)
        override = self.override(symbol)
        merged = MarketMeta.from_dict(deep_merge(auto, override))
        return {"symbol": symbol.upper(), "auto": auto, "override": override, "merged": merged.as_dict()}

    async def set_override(self, symbol: str, partial: Mapping[str, Any]) -> MarketMeta:
        key = symbol.upper()
        updated = deep_merge(self.override(key), normalize_keys(partial or {}))
        # reject overrides that would not produce a usable meta
        MarketMeta.from_dict(deep_merge(await self.baseline(key), updated))
        if self._store is not None:
            await asyncio.to_thread(self._store.upsert_override, key, updated)
        with self._lock:
            self._overrides[key] = updated
        LOGGER.info("market meta override stored", extra={"symbol": key, "override": updated})
        return await self.resolve(key)

    def refresh(self, symbol: str | None = None) -> None:
        with self._lock:
            if symbol is None:
                self._auto.clear()
            else:
                self._auto.pop(symbol.upper(), None)


__all__ = [
    "ExecutionSettings",
    "GATE_DEFAULTS",
    "MEXC_DEFAULTS",
    "MarketMeta",
    "MarketMetaResolver",
    "PerpMeta",
    "SpotMeta",
    "deep_merge",
    "normalize_gate",
    "normalize_keys",
    "normalize_mexc",
]
