"""
Tick math for CLMM pools (Uniswap-v3 style, as used by Cetus).

Price <-> tick:
    price = 1.0001 ** tick
    tick  = log(price) / log(1.0001), aligned to the pool's tick spacing

Prices are token B per token A in raw units. Everything here is pure:
no state, no I/O.
"""

from __future__ import annotations

import math
from typing import Tuple

TICK_BASE = 1.0001
LOG_TICK_BASE = math.log(TICK_BASE)
MIN_TICK = -443636
MAX_TICK = 443636

ROUND_FLOOR = "floor"
ROUND_CEIL = "ceil"
ROUND_NEAREST = "nearest"
ROUNDING_MODES = (ROUND_FLOOR, ROUND_CEIL, ROUND_NEAREST)


class InvalidTickRangeError(ValueError):
    """Aligned lower bound is not strictly below the aligned upper bound."""


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def _check_spacing(tick_spacing: int) -> None:
    if tick_spacing <= 0:
        raise ValueError(f"tick_spacing must be positive, got {tick_spacing}")


def tick_to_price(tick: int) -> float:
    return TICK_BASE ** tick


def clamp_tick(tick: int, tick_spacing: int) -> int:
    """Clamp tick to [MIN_TICK, MAX_TICK] with both bounds aligned to tick_spacing."""
    _check_spacing(tick_spacing)
    min_aligned = math.ceil(MIN_TICK / tick_spacing) * tick_spacing
    max_aligned = math.floor(MAX_TICK / tick_spacing) * tick_spacing
    return max(min_aligned, min(max_aligned, int(tick)))


def price_to_tick(price: float, tick_spacing: int, rounding: str = ROUND_NEAREST) -> int:
    """
    Convert a price to a valid, spacing-aligned tick.

    Args:
        price: token B / token A price, must be > 0
        tick_spacing: pool tick spacing
        rounding: "floor" (toward lower price), "ceil" (toward higher price)
            or "nearest" (halves round up)

    Raises:
        ValueError: non-positive price or spacing, unknown rounding mode
    """
    if price <= 0:
        raise ValueError(f"price must be positive, got {price}")
    _check_spacing(tick_spacing)

    scaled = (math.log(price) / LOG_TICK_BASE) / tick_spacing
    if rounding == ROUND_FLOOR:
        tick = math.floor(scaled) * tick_spacing
    elif rounding == ROUND_CEIL:
        tick = math.ceil(scaled) * tick_spacing
    elif rounding == ROUND_NEAREST:
        tick = _round_half_up(scaled) * tick_spacing
    else:
        raise ValueError(f"unknown rounding mode '{rounding}', expected one of {ROUNDING_MODES}")

    return clamp_tick(tick, tick_spacing)


def compute_new_tick_range(current_price: float, band_pct: float, tick_spacing: int) -> Tuple[int, int]:
    """
    Range of +/- band_pct around current_price. The lower bound is floored and
    the upper bound ceiled, so the range never ends up narrower than asked.

    Raises:
        InvalidTickRangeError: degenerate band/spacing combination
    """
    factor = band_pct / 100
    tick_lower = price_to_tick(current_price * (1 - factor), tick_spacing, ROUND_FLOOR)
    tick_upper = price_to_tick(current_price * (1 + factor), tick_spacing, ROUND_CEIL)

    if tick_lower >= tick_upper:
        raise InvalidTickRangeError(
            f"Invalid tick range: lower={tick_lower} >= upper={tick_upper} "
            f"(price={current_price}, band_pct={band_pct}, spacing={tick_spacing})"
        )
    return tick_lower, tick_upper


def center_tick(tick_lower: int, tick_upper: int) -> int:
    return _round_half_up((tick_lower + tick_upper) / 2)


def drift_pct(current_price: float, tick_lower: int, tick_upper: int) -> float:
    """Signed % distance of current_price from the range center (positive = above)."""
    center_price = tick_to_price(center_tick(tick_lower, tick_upper))
    return (current_price - center_price) / center_price * 100


def is_tick_in_range(tick: int, tick_lower: int, tick_upper: int) -> bool:
    return tick_lower <= tick <= tick_upper


def backoff_ms(attempt: int, base_ms: int = 1000, max_ms: int = 30000) -> int:
    """Exponential backoff for a zero-based attempt. No jitter."""
    # cap the exponent so huge attempts don't build enormous ints
    if attempt >= 64:
        return max_ms
    return min(base_ms * 2 ** attempt, max_ms)
