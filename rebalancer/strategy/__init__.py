"""
Strategy package - rebalance decision and token math.
"""

from rebalancer.strategy.rebalance_strategy import (
    PoolState,
    PositionState,
    RebalanceTrigger,
    StrategyDecision,
    SwapPlan,
    TokenAmounts,
    compute_swap_needed,
    compute_token_amounts,
    evaluate_strategy,
    target_ratio,
)

__all__ = [
    "PoolState",
    "PositionState",
    "RebalanceTrigger",
    "StrategyDecision",
    "SwapPlan",
    "TokenAmounts",
    "compute_swap_needed",
    "compute_token_amounts",
    "evaluate_strategy",
    "target_ratio",
]
