"""
Core package.

Pure tick/price arithmetic shared by the strategy and the orchestrator.
"""

from rebalancer.core.tick_math import (
    MAX_TICK,
    MIN_TICK,
    TICK_BASE,
    InvalidTickRangeError,
    backoff_ms,
    center_tick,
    clamp_tick,
    compute_new_tick_range,
    drift_pct,
    is_tick_in_range,
    price_to_tick,
    tick_to_price,
)

__all__ = [
    "MAX_TICK",
    "MIN_TICK",
    "TICK_BASE",
    "InvalidTickRangeError",
    "backoff_ms",
    "center_tick",
    "clamp_tick",
    "compute_new_tick_range",
    "drift_pct",
    "is_tick_in_range",
    "price_to_tick",
    "tick_to_price",
]
