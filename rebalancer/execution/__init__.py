"""
Execution package.

Collaborator contracts and the transaction execution wrapper.
"""

from rebalancer.execution.interfaces import (
    BuiltTransaction,
    ExecutionResult,
    PoolDataSource,
    PositionNotFoundError,
    SimulationResult,
    TokenBalances,
    TransactionBuilder,
    TransactionSigner,
)
from rebalancer.execution.tx_executor import (
    TransactionExecutor,
    TransactionFailedError,
    TxExecutorConfig,
    TxResult,
)

__all__ = [
    "BuiltTransaction",
    "ExecutionResult",
    "PoolDataSource",
    "PositionNotFoundError",
    "SimulationResult",
    "TokenBalances",
    "TransactionBuilder",
    "TransactionSigner",
    "TransactionExecutor",
    "TransactionFailedError",
    "TxExecutorConfig",
    "TxResult",
]
