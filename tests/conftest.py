"""
Pytest configuration and fixtures.
Adds the repo root to the Python path so tests can import `rebalancer`
without an editable install.
"""

import sys
from pathlib import Path

import pytest

repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from rebalancer.strategy.rebalance_strategy import PoolState, PositionState  # noqa: E402


@pytest.fixture
def base_pool() -> PoolState:
    return PoolState(current_tick=0, current_price=1.0, tick_spacing=10, sqrt_price=2 ** 64)


@pytest.fixture
def base_position() -> PositionState:
    return PositionState(
        tick_lower=-200,
        tick_upper=200,
        liquidity=1_000_000,
        unclaimed_fee_a=100,
        unclaimed_fee_b=200,
        position_id="0xposition",
    )
