"""
Risk package.

Single-instance locking, startup id validation and gas budget checks.
"""

from rebalancer.risk.instance_lock import (
    ConcurrentInstanceError,
    InstanceLock,
    pid_is_alive,
)
from rebalancer.risk.risk_checks import (
    GasBudgetExceededError,
    GasEstimate,
    check_gas_budget,
    validate_ids,
    validate_wallet_address,
)

__all__ = [
    "ConcurrentInstanceError",
    "InstanceLock",
    "pid_is_alive",
    "GasBudgetExceededError",
    "GasEstimate",
    "check_gas_budget",
    "validate_ids",
    "validate_wallet_address",
]
