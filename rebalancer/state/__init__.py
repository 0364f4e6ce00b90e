"""
State package.

Durable record of the last successful rebalance.
"""

from rebalancer.state.state_store import (
    AtomicStateStore,
    BotState,
    StateStore,
    load_state,
    save_state,
    update_state_after_rebalance,
)

__all__ = [
    "AtomicStateStore",
    "BotState",
    "StateStore",
    "load_state",
    "save_state",
    "update_state_after_rebalance",
]
