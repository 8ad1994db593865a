"""Quantity/price normalisation between base units and perpetual contracts."""

from __future__ import annotations

import logging
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Protocol


LOGGER = logging.getLogger(__name__)


class ContractSpec(Protocol):
    contract_size: Decimal
    vol_precision: int
    min_contracts: Decimal


def as_dec(value: Any) -> Decimal:
    """Coerce the input into a finite Decimal."""

    if isinstance(value, Decimal):
        coerced = value
    else:
        if value is None:
            raise ValueError("none_value")
        try:
            coerced = Decimal(str(value))
        except (InvalidOperation, TypeError, ValueError) as exc:
            raise ValueError("invalid_decimal") from exc
    if not coerced.is_finite():
        LOGGER.error(
            "quantization.non_finite",
            extra={"event": "quantization_non_finite", "details": {"value": str(value)}},
        )
        raise ValueError("non_finite_decimal")
    return coerced


def _exponent(scale: int) -> Decimal:
    scale = int(scale)
    if scale < 0:
        raise ValueError("negative_scale")
    return Decimal(1).scaleb(-scale)


def round_price(price: Any, scale: int) -> Decimal:
    """Round *price* to ``scale`` fractional digits, half away from zero."""

    return as_dec(price).quantize(_exponent(scale), rounding=ROUND_HALF_UP)


def round_qty_down(qty: Any, scale: int) -> Decimal:
    """Truncate *qty* to ``scale`` fractional digits."""

    return as_dec(qty).quantize(_exponent(scale), rounding=ROUND_DOWN)


def contracts_cap(base_qty: Any, spec: ContractSpec) -> Decimal:
    """Largest contract count whose base size does not exceed *base_qty*."""

    contract_size = as_dec(spec.contract_size)
    if contract_size <= 0:
        LOGGER.warning(
            "quantization.invalid_contract_size",
            extra={"event": "quantization_invalid_contract_size", "details": {"contract_size": str(contract_size)}},
        )
        raise ValueError("contract_size_not_positive")
    qty = as_dec(base_qty)
    if qty <= 0:
        return Decimal("0").quantize(_exponent(spec.vol_precision))
    return round_qty_down(qty / contract_size, spec.vol_precision)


def to_contracts(base_qty: Any, spec: ContractSpec) -> Decimal:
    """Convert base units to contracts, floored and raised to ``min_contracts``."""

    contracts = contracts_cap(base_qty, spec)
    min_contracts = as_dec(spec.min_contracts)
    if contracts < min_contracts:
        return round_qty_down(min_contracts, spec.vol_precision) if min_contracts > 0 else contracts
    return contracts


def to_base(contracts: Any, spec: ContractSpec) -> Decimal:
    return as_dec(contracts) * as_dec(spec.contract_size)


__all__ = [
    "ContractSpec",
    "as_dec",
    "contracts_cap",
    "round_price",
    "round_qty_down",
    "to_base",
    "to_contracts",
]
