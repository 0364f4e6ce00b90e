"""
Contracts for the bot's external collaborators.

The orchestrator only talks to these abstract classes; concrete adapters
(see rebalancer.adapters) implement them. Transaction construction and
signing stay behind TransactionBuilder, outside this package.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, List, Optional

from rebalancer.risk.risk_checks import GasEstimate
from rebalancer.strategy.rebalance_strategy import PoolState, PositionState


class PositionNotFoundError(LookupError):
    """No open position for the wallet in the configured pool."""


@dataclass(frozen=True)
class TokenBalances:
    balance_a: int
    balance_b: int


@dataclass(frozen=True)
class BuiltTransaction:
    """A built and signed operation, ready to simulate or broadcast."""
    kind: str  # collect_fee, remove_liquidity, swap, add_liquidity
    tx_bytes: str  # base64 BCS bytes
    signatures: List[str] = field(default_factory=list)
    gas_budget: Optional[int] = None  # budget baked into tx_bytes, when the builder reports it


@dataclass(frozen=True)
class SimulationResult:
    success: bool
    gas: Optional[GasEstimate] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class ExecutionResult:
    digest: str
    success: bool
    error: Optional[str] = None


class PoolDataSource(ABC):
    @abstractmethod
    async def fetch_pool_state(self) -> PoolState:
        ...

    @abstractmethod
    async def fetch_position_state(self) -> PositionState:
        """
        Configured position, or the first one the wallet holds in the pool.

        Raises:
            PositionNotFoundError: wallet has no position in the pool
        """

    @abstractmethod
    async def get_token_balances(self) -> TokenBalances:
        ...


class TransactionBuilder(ABC):
    """
    Builds and signs the four rebalance operations.

    Every method receives the gas ceiling; the built transaction must carry
    it as its gas budget and report it in BuiltTransaction.gas_budget.
    """

    @abstractmethod
    async def collect_fee(self, position_id: str, gas_budget: int) -> BuiltTransaction:
        ...

    @abstractmethod
    async def remove_liquidity(
        self, position_id: str, liquidity: int, slippage_bps: int, gas_budget: int
    ) -> BuiltTransaction:
        ...

    @abstractmethod
    async def swap(self, swap_a_to_b: bool, amount: int, slippage_bps: int, gas_budget: int) -> BuiltTransaction:
        ...

    @abstractmethod
    async def add_liquidity(
        self,
        position_id: str,
        tick_lower: int,
        tick_upper: int,
        amount_a: int,
        amount_b: int,
        slippage_bps: int,
        gas_budget: int,
    ) -> BuiltTransaction:
        ...


class TransactionSigner(ABC):
    @abstractmethod
    async def build_collect_fee_tx(self, position_id: str) -> Any:
        ...

    @abstractmethod
    async def build_remove_liquidity_tx(self, position_id: str, liquidity: int, slippage_bps: int) -> Any:
        ...

    @abstractmethod
    async def build_swap_tx(self, swap_a_to_b: bool, amount: int, slippage_bps: int) -> Any:
        ...

    @abstractmethod
    async def build_add_liquidity_tx(
        self,
        position_id: str,
        tick_lower: int,
        tick_upper: int,
        amount_a: int,
        amount_b: int,
        slippage_bps: int,
    ) -> Any:
        ...

    @abstractmethod
    async def simulate(self, tx: Any, gas_budget: int) -> SimulationResult:
        ...

    @abstractmethod
    async def sign_and_execute(self, tx: Any, gas_budget: int) -> ExecutionResult:
        ...
