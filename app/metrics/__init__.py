"""Metric helpers exposed for reuse across the application."""

from .arb import (
    record_cancel,
    record_leg_submit,
    record_position,
    record_recon_error,
    record_trade,
)

__all__ = [
    "record_cancel",
    "record_leg_submit",
    "record_position",
    "record_recon_error",
    "record_trade",
]
