"""
RebalanceOrchestrator: the poll, evaluate, rebalance loop.

The orchestrator owns control flow and timing only. Price math lives in
rebalancer.strategy, transaction handling in rebalancer.execution, and
persistence in rebalancer.state.

Cycle:
    IDLE -> POLLING -> EVALUATING -> EXECUTING -> IDLE
                                  \\-> IDLE (no trigger, or dry run)

Rebalance sequence (each step through TransactionExecutor):
    1. collect fees
    2. remove all liquidity
    3. swap toward the new range's token ratio, when worth it
    4. add liquidity at the new range with the full wallet balances

State is persisted only after all four steps succeed. Once stop() is
called no new step starts.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Callable, Dict, Optional

from rebalancer.execution.interfaces import PoolDataSource, PositionNotFoundError, TransactionSigner
from rebalancer.execution.tx_executor import TransactionExecutor, TxResult
from rebalancer.infra.logging_cfg import DEFAULT_LOGGER_NAME
from rebalancer.monitoring.alerting import AlertManager, AlertPayload, AlertType
from rebalancer.state.state_store import AtomicStateStore, BotState, update_state_after_rebalance
from rebalancer.strategy.rebalance_strategy import (
    PositionState,
    StrategyDecision,
    compute_swap_needed,
    compute_token_amounts,
    evaluate_strategy,
    target_ratio,
)
from rebalancer.utils import now_ms


class ShutdownRequested(Exception):
    """stop() was called before the next rebalance step could start."""


class RebalanceAborted(Exception):
    """A step was refused by the confirmation gate; the sequence stops there."""

    def __init__(self, step: str) -> None:
        super().__init__(f"rebalance aborted at step '{step}': live mode requires CONFIRM=true")
        self.step = step


class OrchestratorPhase(Enum):
    IDLE = auto()
    POLLING = auto()
    EVALUATING = auto()
    EXECUTING = auto()


class CycleAction(Enum):
    """What a cycle ended up doing."""
    IDLE = auto()          # no trigger
    DRY_RUN = auto()       # triggered, logged only
    REBALANCED = auto()
    ABORTED = auto()       # confirmation gate
    INTERRUPTED = auto()   # stop() during the sequence
    FAILED = auto()


@dataclass
class CycleResult:
    """Result of a single orchestrator cycle."""
    success: bool
    action: CycleAction = CycleAction.IDLE
    decision: Optional[StrategyDecision] = None
    tx_digest: Optional[str] = None
    error: Optional[str] = None
    duration_ms: float = 0.0


@dataclass
class OrchestratorConfig:
    """Configuration for RebalanceOrchestrator."""
    price_band_pct: float = 1.5
    drift_trigger_pct: float = 0.5
    min_interval_seconds: float = 60.0
    slippage_bps: int = 50
    dry_run: bool = True
    network: str = "mainnet"

    # Logging callback
    log_event_callback: Optional[Callable[..., None]] = None

    @classmethod
    def from_settings(cls, cfg: Any) -> "OrchestratorConfig":
        return cls(
            price_band_pct=cfg.price_band_pct,
            drift_trigger_pct=cfg.drift_trigger_pct,
            min_interval_seconds=cfg.min_interval_seconds,
            slippage_bps=cfg.slippage_bps,
            dry_run=cfg.dry_run,
            network=cfg.network,
        )


class RebalanceOrchestrator:
    def __init__(
        self,
        config: OrchestratorConfig,
        data_source: PoolDataSource,
        signer: TransactionSigner,
        executor: TransactionExecutor,
        state_store: AtomicStateStore,
        alerts: Optional[AlertManager] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.config = config
        self.data_source = data_source
        self.signer = signer
        self.executor = executor
        self.state_store = state_store
        self.alerts = alerts
        self._log = logger or logging.getLogger(DEFAULT_LOGGER_NAME)

        self.state: BotState = BotState()
        self.phase = OrchestratorPhase.IDLE
        self._running = True
        self._stop_event = asyncio.Event()
        self._cycle_count = 0
        self._steps_done = 0

        self._log_event = self.config.log_event_callback or self._default_log

    def _default_log(self, event: str, level: int = logging.INFO, **kwargs: Any) -> None:
        payload = {"event": event, **kwargs}
        self._log.log(level, json.dumps(payload, default=str))

    @property
    def is_running(self) -> bool:
        return self._running

    def stop(self) -> None:
        """Signal the loop to stop; sleeps wake immediately."""
        if not self._running:
            return
        self._running = False
        self._stop_event.set()
        self.executor.interrupt()
        self._log_event("orchestrator_stop", phase=self.phase.name)

    async def _idle(self, seconds: float) -> None:
        """Sleep up to `seconds`, returning early on stop()."""
        if seconds <= 0 or not self._running:
            return
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    def _rate_limit_remaining(self) -> float:
        last = self.state.last_rebalance_time
        if not last:
            return 0.0
        elapsed = (now_ms() - last) / 1000
        return max(0.0, self.config.min_interval_seconds - elapsed)

    async def _alert(self, alert_type: AlertType, message: str, tx_digest: Optional[str] = None) -> None:
        if self.alerts is None:
            return
        try:
            await self.alerts.notify(AlertPayload(
                type=alert_type,
                message=message,
                tx_digest=tx_digest,
                network=self.config.network,
            ))
        except Exception as exc:
            self._log_event("alert_error", level=logging.WARNING, type=alert_type.value, err=repr(exc))

    async def run_forever(self) -> None:
        """Poll until stop(). Exceptions inside a cycle never end the loop."""
        self.state = await self.state_store.load()
        self._log_event(
            "orchestrator_start",
            dry_run=self.config.dry_run,
            total_rebalances=self.state.total_rebalances,
            min_interval_seconds=self.config.min_interval_seconds,
        )

        while self._running:
            loop_start = time.monotonic()

            wait = self._rate_limit_remaining()
            if wait > 0:
                self._log_event("rate_limit_wait", level=logging.DEBUG, wait_sec=round(wait, 3))
                await self._idle(wait)
                if not self._running:
                    break

            await self.run_cycle()

            remaining = self.config.min_interval_seconds - (time.monotonic() - loop_start)
            if remaining > 0:
                self._log_event("sleep_until_next_poll", level=logging.DEBUG, wait_sec=round(remaining, 3))
                await self._idle(remaining)

        self.phase = OrchestratorPhase.IDLE
        self._log_event("orchestrator_stopped", cycles=self._cycle_count,
                        total_rebalances=self.state.total_rebalances)

    async def run_cycle(self) -> CycleResult:
        """
        Execute one poll/evaluate/act cycle.

        Every exception is caught here, logged and alerted; the result says
        what happened.
        """
        start = time.perf_counter()
        self._cycle_count += 1
        self._steps_done = 0

        def _elapsed() -> float:
            return (time.perf_counter() - start) * 1000

        try:
            result = await self._cycle()
            result.duration_ms = _elapsed()
            return result
        except ShutdownRequested:
            self._log_event("rebalance_interrupted", level=logging.WARNING, steps_done=self._steps_done)
            if self._steps_done:
                await self._alert(
                    AlertType.FAILURE,
                    f"Rebalance interrupted by shutdown after {self._steps_done} step(s); position needs attention",
                )
            return CycleResult(success=False, action=CycleAction.INTERRUPTED,
                               error="shutdown requested", duration_ms=_elapsed())
        except RebalanceAborted as exc:
            self._log_event("rebalance_aborted", level=logging.WARNING, step=exc.step, steps_done=self._steps_done)
            await self._alert(AlertType.INFO, f"Rebalance aborted at {exc.step}: CONFIRM is not set")
            return CycleResult(success=False, action=CycleAction.ABORTED,
                               error=str(exc), duration_ms=_elapsed())
        except PositionNotFoundError as exc:
            self._log_event("position_not_found", level=logging.ERROR, err=str(exc))
            await self._alert(AlertType.FAILURE, f"Bot error: {exc}")
            return CycleResult(success=False, action=CycleAction.FAILED,
                               error=str(exc), duration_ms=_elapsed())
        except Exception as exc:
            self._log.exception("Error in bot loop")
            self._log_event("cycle_error", level=logging.ERROR, err=str(exc),
                            err_type=type(exc).__name__, steps_done=self._steps_done)
            await self._alert(AlertType.FAILURE, f"Bot error: {exc}")
            return CycleResult(success=False, action=CycleAction.FAILED,
                               error=str(exc), duration_ms=_elapsed())
        finally:
            self.phase = OrchestratorPhase.IDLE

    async def _cycle(self) -> CycleResult:
        self.phase = OrchestratorPhase.POLLING
        pool, position = await asyncio.gather(
            self.data_source.fetch_pool_state(),
            self.data_source.fetch_position_state(),
        )
        self._log_event(
            "pool_state",
            level=logging.DEBUG,
            current_tick=pool.current_tick,
            current_price=pool.current_price,
            position_id=position.position_id,
            tick_lower=position.tick_lower,
            tick_upper=position.tick_upper,
            liquidity=str(position.liquidity),
        )

        self.phase = OrchestratorPhase.EVALUATING
        decision = evaluate_strategy(pool, position, self.config)
        self._log_event(
            "strategy_evaluated",
            trigger=decision.trigger.value,
            drift_pct=round(decision.current_drift_pct, 4),
            should_rebalance=decision.should_rebalance,
            details=decision.details,
        )

        if not decision.should_rebalance:
            return CycleResult(success=True, action=CycleAction.IDLE, decision=decision)

        new_lower, new_upper = decision.new_tick_lower, decision.new_tick_upper
        await self._alert(
            AlertType.START,
            f"Rebalance triggered: {decision.trigger.value}\n"
            f"Drift: {decision.current_drift_pct:.2f}%\n"
            f"New range: [{new_lower}, {new_upper}]",
        )

        if self.config.dry_run:
            self._log_event("dry_run_would_rebalance", new_tick_lower=new_lower,
                            new_tick_upper=new_upper, dry_run=True)
            return CycleResult(success=True, action=CycleAction.DRY_RUN, decision=decision)

        self.phase = OrchestratorPhase.EXECUTING
        digest = await self.execute_rebalance(position, new_lower, new_upper)

        self.state = update_state_after_rebalance(
            self.state, position.position_id, new_lower, new_upper, position.liquidity, digest,
        )
        await self.state_store.save(self.state)
        self._log_event("rebalance_complete", digest=digest, total_rebalances=self.state.total_rebalances)

        await self._alert(
            AlertType.SUCCESS,
            f"Rebalance complete! New range: [{new_lower}, {new_upper}]",
            tx_digest=digest,
        )
        return CycleResult(success=True, action=CycleAction.REBALANCED, decision=decision, tx_digest=digest)

    async def _step(self, label: str, tx: Any) -> TxResult:
        result = await self.executor.execute(tx, label=label)
        if result.aborted:
            raise RebalanceAborted(label)
        self._steps_done += 1
        self._log_event("rebalance_step_done", step=label, digest=result.digest)
        return result

    def _check_running(self) -> None:
        if not self._running:
            raise ShutdownRequested()

    async def execute_rebalance(self, position: PositionState, new_tick_lower: int, new_tick_upper: int) -> str:
        """
        Run the four-step rebalance and return the final transaction digest.

        Raises:
            ShutdownRequested: stop() was called between steps
            RebalanceAborted: a step was refused by the confirmation gate
        """
        cfg = self.config
        position_id = position.position_id

        # 1. Collect fees
        self._check_running()
        tx = await self.signer.build_collect_fee_tx(position_id)
        await self._step("collect_fee", tx)

        # 2. Remove liquidity
        self._check_running()
        tx = await self.signer.build_remove_liquidity_tx(position_id, position.liquidity, cfg.slippage_bps)
        await self._step("remove_liquidity", tx)

        # 3. Swap toward the new range's ratio
        self._check_running()
        pool, balances = await asyncio.gather(
            self.data_source.fetch_pool_state(),
            self.data_source.get_token_balances(),
        )
        target = compute_token_amounts(position.liquidity, pool.current_price, new_tick_lower, new_tick_upper)
        swap = compute_swap_needed(balances.balance_a, balances.balance_b, target_ratio(target), pool.current_price)
        if swap is not None:
            self._log_event("swap_needed", swap_a_to_b=swap.swap_a_to_b, amount=swap.swap_amount)
            self._check_running()
            tx = await self.signer.build_swap_tx(swap.swap_a_to_b, swap.swap_amount, cfg.slippage_bps)
            await self._step("swap", tx)
        else:
            self._log_event("swap_skipped", reason="ratio close to target")

        # 4. Add liquidity at the new range with everything the wallet holds
        self._check_running()
        balances = await self.data_source.get_token_balances()
        tx = await self.signer.build_add_liquidity_tx(
            position_id,
            new_tick_lower,
            new_tick_upper,
            balances.balance_a,
            balances.balance_b,
            cfg.slippage_bps,
        )
        result = await self._step("add_liquidity", tx)
        return result.digest

    def get_stats(self) -> Dict[str, Any]:
        return {
            "running": self._running,
            "phase": self.phase.name,
            "cycle_count": self._cycle_count,
            "total_rebalances": self.state.total_rebalances,
            "last_rebalance_time": self.state.last_rebalance_time,
            "last_tx_digest": self.state.last_tx_digest,
        }
