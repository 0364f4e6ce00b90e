"""
Abort conditions checked before the bot starts or a transaction is broadcast.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from rebalancer.infra.logging_cfg import DEFAULT_LOGGER_NAME, log_event


class GasBudgetExceededError(RuntimeError):
    pass


@dataclass(frozen=True)
class GasEstimate:
    computation_cost: int
    storage_cost: int
    storage_rebate: int

    @property
    def total(self) -> int:
        return self.computation_cost + self.storage_cost - self.storage_rebate


def check_gas_budget(estimate: GasEstimate, gas_budget: int, logger: Optional[logging.Logger] = None) -> None:
    """Raise if the estimated net gas exceeds the configured budget."""
    total = estimate.total
    if total > gas_budget:
        raise GasBudgetExceededError(f"Gas estimate {total} exceeds budget {gas_budget}. Aborting.")
    log_event(logger or logging.getLogger(DEFAULT_LOGGER_NAME), "gas_check_passed",
              level=logging.DEBUG, gas_estimate=total, gas_budget=gas_budget)


def validate_wallet_address(address: Optional[str]) -> None:
    if not address or not address.startswith("0x") or len(address) < 10:
        raise ValueError(f'Invalid wallet address: "{address}"')


def validate_ids(pool_id: Optional[str], position_id: Optional[str] = None) -> None:
    if not pool_id or not pool_id.startswith("0x"):
        raise ValueError(f'Invalid pool ID: "{pool_id}"')
    if position_id and not position_id.startswith("0x"):
        raise ValueError(f'Invalid position ID: "{position_id}"')
