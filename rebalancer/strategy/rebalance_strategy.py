"""
Rebalance strategy - pure decision logic for a single CLMM position.

This module handles:
- Deciding whether the position needs a new range (out of range / drift)
- Token split required by a range at the current price
- Swap sizing to move wallet balances toward that split

This is a pure calculation module with no side effects: no network, no
filesystem, every result is fully determined by its inputs. Amounts are
float approximations meant for planning, not wei-exact on-chain math.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol

from rebalancer.core.tick_math import (
    compute_new_tick_range,
    drift_pct,
    is_tick_in_range,
    tick_to_price,
)

# Skip swaps smaller than this share of total portfolio value (in token A units)
SWAP_TOLERANCE = 0.05


@dataclass(frozen=True)
class PoolState:
    """Pool snapshot, read fresh every poll."""
    current_tick: int
    current_price: float  # token B per token A
    tick_spacing: int
    sqrt_price: int = 0  # raw protocol value, carried through only


@dataclass(frozen=True)
class PositionState:
    """On-chain position snapshot."""
    tick_lower: int
    tick_upper: int
    liquidity: int
    # None when the data source could not read them
    unclaimed_fee_a: Optional[int] = 0
    unclaimed_fee_b: Optional[int] = 0
    position_id: str = ""


class RebalanceTrigger(str, Enum):
    NONE = "none"
    PRICE_OUT_OF_RANGE = "price_out_of_range"
    DRIFT_EXCEEDED = "drift_exceeded"


@dataclass(frozen=True)
class StrategyDecision:
    """Result of evaluate_strategy."""
    should_rebalance: bool
    trigger: RebalanceTrigger
    current_drift_pct: float
    details: str  # human-readable rationale
    new_tick_lower: Optional[int] = None
    new_tick_upper: Optional[int] = None


@dataclass(frozen=True)
class TokenAmounts:
    amount_a: float
    amount_b: float


@dataclass(frozen=True)
class SwapPlan:
    swap_a_to_b: bool
    swap_amount: int  # in units of the token being sold


class StrategyParams(Protocol):
    price_band_pct: float
    drift_trigger_pct: float


def evaluate_strategy(pool: PoolState, position: PositionState, config: StrategyParams) -> StrategyDecision:
    """
    Decide whether to rebalance and where the new range goes.

    Out-of-range is checked first and wins over drift when both would fire.
    Both triggers re-center with the same band width.

    Raises:
        InvalidTickRangeError: degenerate band/spacing, fatal for this cycle
    """
    drift = drift_pct(pool.current_price, position.tick_lower, position.tick_upper)
    in_range = is_tick_in_range(pool.current_tick, position.tick_lower, position.tick_upper)

    if not in_range:
        new_lower, new_upper = compute_new_tick_range(pool.current_price, config.price_band_pct, pool.tick_spacing)
        return StrategyDecision(
            should_rebalance=True,
            trigger=RebalanceTrigger.PRICE_OUT_OF_RANGE,
            current_drift_pct=drift,
            new_tick_lower=new_lower,
            new_tick_upper=new_upper,
            details=f"Current tick {pool.current_tick} is outside [{position.tick_lower}, {position.tick_upper}]",
        )

    if abs(drift) > config.drift_trigger_pct:
        new_lower, new_upper = compute_new_tick_range(pool.current_price, config.price_band_pct, pool.tick_spacing)
        return StrategyDecision(
            should_rebalance=True,
            trigger=RebalanceTrigger.DRIFT_EXCEEDED,
            current_drift_pct=drift,
            new_tick_lower=new_lower,
            new_tick_upper=new_upper,
            details=f"Drift {drift:.2f}% exceeds threshold {config.drift_trigger_pct}%",
        )

    return StrategyDecision(
        should_rebalance=False,
        trigger=RebalanceTrigger.NONE,
        current_drift_pct=drift,
        details=f"In range. Drift: {drift:.2f}%",
    )


def compute_token_amounts(liquidity: int, current_price: float, tick_lower: int, tick_upper: int) -> TokenAmounts:
    """
    Token amounts backing `liquidity` over [tick_lower, tick_upper] at current_price.

    Standard concentrated-liquidity reserves in sqrt-price space:
        below range:  A = L * (1/sqrt(pl) - 1/sqrt(pu)),  B = 0
        above range:  A = 0,  B = L * (sqrt(pu) - sqrt(pl))
        inside:       A = L * (1/sqrt(p) - 1/sqrt(pu)),   B = L * (sqrt(p) - sqrt(pl))
    """
    lower_price = tick_to_price(tick_lower)
    upper_price = tick_to_price(tick_upper)
    sqrt_lower = math.sqrt(lower_price)
    sqrt_upper = math.sqrt(upper_price)
    liq = float(liquidity)

    if current_price <= lower_price:
        return TokenAmounts(amount_a=liq * (1 / sqrt_lower - 1 / sqrt_upper), amount_b=0.0)
    if current_price >= upper_price:
        return TokenAmounts(amount_a=0.0, amount_b=liq * (sqrt_upper - sqrt_lower))

    sqrt_current = math.sqrt(current_price)
    return TokenAmounts(
        amount_a=liq * (1 / sqrt_current - 1 / sqrt_upper),
        amount_b=liq * (sqrt_current - sqrt_lower),
    )


def target_ratio(amounts: TokenAmounts) -> float:
    """A/B ratio of a target split; 1.0 when the split holds no token B."""
    if amounts.amount_b > 0:
        return amounts.amount_a / amounts.amount_b
    return 1.0


def compute_swap_needed(
    balance_a: int,
    balance_b: int,
    target_ratio_a_to_b: float,
    current_price: float,
) -> Optional[SwapPlan]:
    """
    Size the swap that brings balances to target_ratio_a_to_b (= A / B).

    With x the amount of token A to sell:
        (bA - x) / (bB + x * price) = r   =>   x = (bA - r * bB) / (1 + r * price)
    x > 0 sells A (amount x, token A units); x < 0 sells B (amount |x| * price,
    token B units).

    Returns:
        SwapPlan, or None when no swap is worth doing
    """
    b_a = float(balance_a)
    b_b = float(balance_b)

    if target_ratio_a_to_b <= 0 or (b_a == 0 and b_b == 0):
        return None

    x = (b_a - target_ratio_a_to_b * b_b) / (1 + target_ratio_a_to_b * current_price)

    total_value_in_a = b_a + b_b / current_price
    if abs(x) < SWAP_TOLERANCE * total_value_in_a:
        return None

    if x > 0:
        amount = math.floor(x)
        swap_a_to_b = True
    else:
        amount = math.floor(abs(x) * current_price)
        swap_a_to_b = False

    if amount <= 0:
        return None
    return SwapPlan(swap_a_to_b=swap_a_to_b, swap_amount=amount)
