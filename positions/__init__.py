"""Running position estimate built from settled trade fills."""

from __future__ import annotations

import logging
import math
import threading
import time
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path
from typing import Any, Dict, List

from app.metrics.arb import record_position
from app.util.quantization import as_dec
from positions_store import load_state, save_state


LOGGER = logging.getLogger(__name__)

_ZERO = Decimal("0")
_PRICE_DIGITS = Decimal("1e-11")
_PCT_DIGITS = Decimal("1e-6")


def _now_ms() -> int:
    return int(time.time() * 1000)


class PositionAggregator:
    """Weighted-average position state shared by the poller and the API.

    Every mutation holds the lock and writes the JSON snapshot before
    releasing it.
    """

    def __init__(self, path: Path | None = None, *, persist: bool = True) -> None:
        self._lock = threading.RLock()
        self._path = path
        self._persist = persist
        self.target_qty = _ZERO
        self.filled_qty = _ZERO
        self.avg_price = _ZERO
        self.avg_arb_pct = _ZERO
        self.series: List[Dict[str, Any]] = []

    def load(self) -> bool:
        """Restore the persisted snapshot; returns ``True`` when one existed."""

        payload = load_state(self._path) if self._persist else None
        if not payload:
            return False
        with self._lock:
            try:
                self.target_qty = as_dec(payload.get("target_qty", 0))
                self.filled_qty = as_dec(payload.get("filled_qty", 0))
                self.avg_price = as_dec(payload.get("avg_price", 0))
                self.avg_arb_pct = as_dec(payload.get("avg_arb_pct", 0))
            except ValueError:
                LOGGER.warning("position snapshot has invalid numbers; starting empty")
                self.reset()
                return False
            series = payload.get("series")
            self.series = [dict(point) for point in series] if isinstance(series, list) else []
        LOGGER.info(
            "position state restored",
            extra={"filled_qty": str(self.filled_qty), "points": len(self.series)},
        )
        return True

    def reset(self) -> None:
        with self._lock:
            self.target_qty = _ZERO
            self.filled_qty = _ZERO
            self.avg_price = _ZERO
            self.avg_arb_pct = _ZERO
            self.series = []

    def _save(self) -> None:
        if self._persist:
            save_state(self._persisted(), self._path)

    def _persisted(self) -> Dict[str, Any]:
        # running totals are written as exact decimals so a restart resumes the same averages
        with self._lock:
            return {
                "target_qty": format(self.target_qty, "f"),
                "filled_qty": format(self.filled_qty, "f"),
                "avg_price": format(self.avg_price, "f"),
                "avg_arb_pct": format(self.avg_arb_pct, "f"),
                "series": [dict(point) for point in self.series],
            }

    def set_target(self, target_qty: Any) -> Decimal:
        try:
            value = float(target_qty)
        except (TypeError, ValueError) as exc:
            raise ValueError("target_qty must be a number") from exc
        if not math.isfinite(value) or value < 0:
            raise ValueError("target_qty must be a finite number >= 0")
        with self._lock:
            self.target_qty = as_dec(target_qty)
            self._save()
            LOGGER.info("position target set", extra={"target_qty": str(self.target_qty)})
            return self.target_qty

    def remaining(self) -> Decimal | None:
        """Base quantity left to reach the target, or ``None`` without a target."""

        with self._lock:
            if self.target_qty <= 0:
                return None
            return max(self.target_qty - self.filled_qty, _ZERO)

    def accumulate(self, fill_qty: Any, fill_price: Any, arb_pct: Any) -> bool:
        qty = as_dec(fill_qty)
        if qty <= 0:
            return False
        price = as_dec(fill_price)
        pct = as_dec(arb_pct)
        with self._lock:
            prev_qty = self.filled_qty
            new_qty = prev_qty + qty
            if new_qty > 0:
                new_avg = (self.avg_price * prev_qty + price * qty) / new_qty
                new_arb = (self.avg_arb_pct * prev_qty + pct * qty) / new_qty
            else:
                new_avg = _ZERO
                new_arb = _ZERO
            self.filled_qty = new_qty
            self.avg_price = new_avg
            self.avg_arb_pct = new_arb
            self.series.append(
                {
                    "t": _now_ms(),
                    "filled_qty": float(new_qty),
                    "avg_price": float(new_avg.quantize(_PRICE_DIGITS, rounding=ROUND_HALF_UP)),
                    "avg_arb_pct": float(new_arb.quantize(_PCT_DIGITS, rounding=ROUND_HALF_UP)),
                }
            )
            self._save()
        record_position(float(new_qty), float(new_arb))
        LOGGER.info(
            "position accumulated",
            extra={"fill_qty": str(qty), "fill_price": str(price), "filled_qty": str(new_qty)},
        )
        return True

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "target_qty": float(self.target_qty),
                "filled_qty": float(self.filled_qty),
                "avg_price": float(self.avg_price),
                "avg_arb_pct": float(self.avg_arb_pct),
                "series": [dict(point) for point in self.series],
            }


__all__ = ["PositionAggregator"]
