from rebalancer.orchestrator.rebalance_orchestrator import (
    CycleAction,
    CycleResult,
    OrchestratorConfig,
    OrchestratorPhase,
    RebalanceAborted,
    RebalanceOrchestrator,
    ShutdownRequested,
)

__all__ = [
    "CycleAction",
    "CycleResult",
    "OrchestratorConfig",
    "OrchestratorPhase",
    "RebalanceAborted",
    "RebalanceOrchestrator",
    "ShutdownRequested",
]
