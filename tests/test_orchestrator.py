"""
Tests for RebalanceOrchestrator - the poll/evaluate/rebalance loop.

Tests cover:
- Idle and dry-run cycles
- The four-step live rebalance, with and without a swap
- Confirmation-gate abort, mid-sequence failure, shutdown between steps
- Loop behaviour: rate limiting, error isolation, stop()
"""

import asyncio
from dataclasses import replace
from typing import Any, Dict, List, Optional

import pytest

from rebalancer.core.tick_math import tick_to_price
from rebalancer.execution.interfaces import (
    BuiltTransaction,
    ExecutionResult,
    PositionNotFoundError,
    SimulationResult,
    TokenBalances,
)
from rebalancer.execution.tx_executor import TransactionExecutor, TxExecutorConfig
from rebalancer.monitoring.alerting import AlertConfig, AlertManager, AlertType
from rebalancer.orchestrator.rebalance_orchestrator import (
    CycleAction,
    OrchestratorConfig,
    OrchestratorPhase,
    RebalanceOrchestrator,
)
from rebalancer.state.state_store import AtomicStateStore, BotState, save_state
from rebalancer.strategy.rebalance_strategy import PoolState, PositionState
from rebalancer.utils import now_ms


OUT_OF_RANGE_POOL = PoolState(current_tick=300, current_price=tick_to_price(300), tick_spacing=10)


class MockDataSource:
    """Serves a fixed pool/position and a queue of wallet balances."""

    def __init__(self, pool: PoolState, position: PositionState, balances: Optional[List[TokenBalances]] = None):
        self.pool = pool
        self.position = position
        self.balances = list(balances or [])
        self.pool_fetches = 0
        self.on_fetch = None
        self.position_error: Optional[Exception] = None

    async def fetch_pool_state(self) -> PoolState:
        self.pool_fetches += 1
        if self.on_fetch is not None:
            self.on_fetch()
        return self.pool

    async def fetch_position_state(self) -> PositionState:
        if self.position_error is not None:
            raise self.position_error
        return self.position

    async def get_token_balances(self) -> TokenBalances:
        return self.balances.pop(0)


class MockSigner:
    """Records builds; executes successfully unless a step is scripted to fail."""

    def __init__(self):
        self.built: List[tuple] = []
        self.fail_kinds: Dict[str, Exception] = {}
        self.on_execute = None

    def _build(self, kind: str, *args: Any) -> BuiltTransaction:
        self.built.append((kind, *args))
        return BuiltTransaction(kind=kind, tx_bytes=f"bytes-{kind}", signatures=["sig"])

    async def build_collect_fee_tx(self, position_id):
        return self._build("collect_fee", position_id)

    async def build_remove_liquidity_tx(self, position_id, liquidity, slippage_bps):
        return self._build("remove_liquidity", position_id, liquidity, slippage_bps)

    async def build_swap_tx(self, swap_a_to_b, amount, slippage_bps):
        return self._build("swap", swap_a_to_b, amount, slippage_bps)

    async def build_add_liquidity_tx(self, position_id, tick_lower, tick_upper, amount_a, amount_b, slippage_bps):
        return self._build("add_liquidity", position_id, tick_lower, tick_upper, amount_a, amount_b, slippage_bps)

    async def simulate(self, tx, gas_budget):
        return SimulationResult(success=True)

    async def sign_and_execute(self, tx, gas_budget):
        if self.on_execute is not None:
            self.on_execute(tx)
        if tx.kind in self.fail_kinds:
            raise self.fail_kinds[tx.kind]
        return ExecutionResult(digest=f"0x{tx.kind}", success=True)

    @property
    def kinds(self) -> List[str]:
        return [b[0] for b in self.built]


class RecordingAlerts:
    def __init__(self):
        self.sent = []

    async def notify(self, payload) -> bool:
        self.sent.append(payload)
        return True

    @property
    def types(self):
        return [p.type for p in self.sent]


class RaisingAlerts:
    """Alert sink whose delivery blows up."""

    def __init__(self):
        self.attempts = 0

    async def notify(self, payload) -> bool:
        self.attempts += 1
        raise RuntimeError("sink exploded")


async def _no_sleep(_seconds: float) -> None:
    return None


def make_orchestrator(tmp_path, data_source, *, dry_run=False, confirm=True, max_retries=0,
                      min_interval_seconds=60.0, signer=None, sleep=_no_sleep, alerts=None):
    signer = signer or MockSigner()
    executor = TransactionExecutor(
        signer,
        TxExecutorConfig(dry_run=False, confirm=confirm, max_retries=max_retries),
        sleep=sleep,
    )
    alerts = alerts if alerts is not None else RecordingAlerts()
    orchestrator = RebalanceOrchestrator(
        OrchestratorConfig(dry_run=dry_run, min_interval_seconds=min_interval_seconds, network="testnet"),
        data_source=data_source,
        signer=signer,
        executor=executor,
        state_store=AtomicStateStore(tmp_path / "state.json"),
        alerts=alerts,
    )
    return orchestrator, signer, alerts


class TestRunCycle:
    @pytest.mark.asyncio
    async def test_in_range_is_idle(self, tmp_path, base_pool, base_position):
        orch, signer, alerts = make_orchestrator(tmp_path, MockDataSource(base_pool, base_position))

        result = await orch.run_cycle()

        assert result.success is True
        assert result.action == CycleAction.IDLE
        assert signer.built == []
        assert alerts.sent == []
        assert orch.phase == OrchestratorPhase.IDLE

    @pytest.mark.asyncio
    async def test_dry_run_only_alerts(self, tmp_path, base_position):
        orch, signer, alerts = make_orchestrator(
            tmp_path, MockDataSource(OUT_OF_RANGE_POOL, base_position), dry_run=True,
        )

        result = await orch.run_cycle()

        assert result.action == CycleAction.DRY_RUN
        assert result.decision.should_rebalance
        assert signer.built == []
        assert alerts.types == [AlertType.START]
        assert "price_out_of_range" in alerts.sent[0].message
        assert alerts.sent[0].network == "testnet"
        assert not (tmp_path / "state.json").exists()

    @pytest.mark.asyncio
    async def test_live_rebalance_with_swap(self, tmp_path, base_position):
        source = MockDataSource(
            OUT_OF_RANGE_POOL,
            base_position,
            balances=[TokenBalances(10_000, 100), TokenBalances(5_000, 5_100)],
        )
        orch, signer, alerts = make_orchestrator(tmp_path, source)

        result = await orch.run_cycle()

        assert result.success is True
        assert result.action == CycleAction.REBALANCED
        assert result.tx_digest == "0xadd_liquidity"
        assert signer.kinds == ["collect_fee", "remove_liquidity", "swap", "add_liquidity"]

        swap = signer.built[2]
        assert swap[1] is True and swap[2] > 0 and swap[3] == 50

        add = signer.built[3]
        lower, upper = result.decision.new_tick_lower, result.decision.new_tick_upper
        assert add == ("add_liquidity", "0xposition", lower, upper, 5_000, 5_100, 50)

        saved = await orch.state_store.load()
        assert saved.total_rebalances == 1
        assert saved.last_tx_digest == "0xadd_liquidity"
        assert (saved.last_tick_lower, saved.last_tick_upper) == (lower, upper)
        assert saved.last_position_id == "0xposition"
        assert saved.last_liquidity == str(base_position.liquidity)

        assert alerts.types == [AlertType.START, AlertType.SUCCESS]
        assert alerts.sent[1].tx_digest == "0xadd_liquidity"

    @pytest.mark.asyncio
    async def test_live_rebalance_without_swap(self, tmp_path, base_position):
        source = MockDataSource(
            OUT_OF_RANGE_POOL,
            base_position,
            balances=[TokenBalances(1_000, 1_000), TokenBalances(1_000, 1_000)],
        )
        orch, signer, _ = make_orchestrator(tmp_path, source)

        result = await orch.run_cycle()

        assert result.action == CycleAction.REBALANCED
        assert signer.kinds == ["collect_fee", "remove_liquidity", "add_liquidity"]
        # pool re-read before sizing the swap
        assert source.pool_fetches == 2

    @pytest.mark.asyncio
    async def test_confirmation_gate_aborts_sequence(self, tmp_path, base_position):
        orch, signer, alerts = make_orchestrator(
            tmp_path, MockDataSource(OUT_OF_RANGE_POOL, base_position), confirm=False,
        )

        result = await orch.run_cycle()

        assert result.success is False
        assert result.action == CycleAction.ABORTED
        assert signer.kinds == ["collect_fee"]
        assert alerts.types == [AlertType.START, AlertType.INFO]
        assert not (tmp_path / "state.json").exists()

    @pytest.mark.asyncio
    async def test_step_failure_leaves_state_untouched(self, tmp_path, base_position):
        signer = MockSigner()
        signer.fail_kinds["remove_liquidity"] = ConnectionError("rpc down")
        orch, _, alerts = make_orchestrator(
            tmp_path, MockDataSource(OUT_OF_RANGE_POOL, base_position), signer=signer,
        )

        result = await orch.run_cycle()

        assert result.success is False
        assert result.action == CycleAction.FAILED
        assert "rpc down" in result.error
        assert signer.kinds == ["collect_fee", "remove_liquidity"]
        assert alerts.types == [AlertType.START, AlertType.FAILURE]
        assert "rpc down" in alerts.sent[1].message
        assert not (tmp_path / "state.json").exists()
        assert orch.state == BotState()

    @pytest.mark.asyncio
    async def test_stop_between_steps(self, tmp_path, base_position):
        signer = MockSigner()
        orch, _, alerts = make_orchestrator(
            tmp_path, MockDataSource(OUT_OF_RANGE_POOL, base_position), signer=signer,
        )
        # Shutdown arrives while the first step is in flight
        signer.on_execute = lambda tx: orch.stop()

        result = await orch.run_cycle()

        assert result.action == CycleAction.INTERRUPTED
        assert signer.kinds == ["collect_fee"]
        assert alerts.types == [AlertType.START, AlertType.FAILURE]
        assert not (tmp_path / "state.json").exists()

    @pytest.mark.asyncio
    async def test_position_not_found(self, tmp_path, base_pool, base_position):
        source = MockDataSource(base_pool, base_position)
        source.position_error = PositionNotFoundError("no position")
        orch, _, alerts = make_orchestrator(tmp_path, source)

        result = await orch.run_cycle()

        assert result.action == CycleAction.FAILED
        assert alerts.types == [AlertType.FAILURE]

    @pytest.mark.asyncio
    async def test_invalid_range_fails_cycle(self, tmp_path, base_position):
        pool = replace(OUT_OF_RANGE_POOL, current_price=1e300)
        orch, signer, alerts = make_orchestrator(tmp_path, MockDataSource(pool, base_position))

        result = await orch.run_cycle()

        assert result.action == CycleAction.FAILED
        assert "Invalid tick range" in result.error
        assert signer.built == []


class TestRunForever:
    @pytest.mark.asyncio
    async def test_stops_after_current_cycle(self, tmp_path, base_pool, base_position):
        source = MockDataSource(base_pool, base_position)
        orch, _, _ = make_orchestrator(tmp_path, source, min_interval_seconds=60)
        source.on_fetch = orch.stop

        await asyncio.wait_for(orch.run_forever(), timeout=2)

        assert source.pool_fetches == 1
        assert orch.is_running is False
        assert orch.get_stats()["cycle_count"] == 1

    @pytest.mark.asyncio
    async def test_rate_limit_wait_is_interruptible(self, tmp_path, base_pool, base_position):
        save_state(tmp_path / "state.json", BotState(last_rebalance_time=now_ms(), total_rebalances=1))
        source = MockDataSource(base_pool, base_position)
        orch, _, _ = make_orchestrator(tmp_path, source, min_interval_seconds=3600)

        asyncio.get_running_loop().call_later(0.05, orch.stop)
        await asyncio.wait_for(orch.run_forever(), timeout=2)

        assert source.pool_fetches == 0
        assert orch.state.total_rebalances == 1

    @pytest.mark.asyncio
    async def test_cycle_errors_do_not_end_loop(self, tmp_path, base_pool, base_position):
        source = MockDataSource(base_pool, base_position)
        orch, _, alerts = make_orchestrator(tmp_path, source, min_interval_seconds=0)
        calls = {"n": 0}

        def on_fetch():
            calls["n"] += 1
            if calls["n"] == 1:
                raise ConnectionError("transient")
            orch.stop()

        source.on_fetch = on_fetch

        await asyncio.wait_for(orch.run_forever(), timeout=2)

        assert calls["n"] == 2
        assert alerts.types == [AlertType.FAILURE]

    @pytest.mark.asyncio
    async def test_broken_alert_sink_does_not_end_loop(self, tmp_path, base_pool, base_position):
        source = MockDataSource(base_pool, base_position)
        orch, _, alerts = make_orchestrator(tmp_path, source, min_interval_seconds=0, alerts=RaisingAlerts())
        calls = {"n": 0}

        def on_fetch():
            calls["n"] += 1
            if calls["n"] == 1:
                raise ConnectionError("transient")
            orch.stop()

        source.on_fetch = on_fetch

        await asyncio.wait_for(orch.run_forever(), timeout=2)

        assert calls["n"] == 2
        assert alerts.attempts == 1

    @pytest.mark.asyncio
    async def test_malformed_webhook_url_does_not_end_loop(self, tmp_path, base_pool, base_position):
        source = MockDataSource(base_pool, base_position)
        manager = AlertManager(AlertConfig(webhook_url="http://[::1/hook", retries=0))
        orch, _, _ = make_orchestrator(tmp_path, source, min_interval_seconds=0, alerts=manager)
        calls = {"n": 0}

        def on_fetch():
            calls["n"] += 1
            if calls["n"] == 1:
                raise ConnectionError("transient")
            orch.stop()

        source.on_fetch = on_fetch

        try:
            await asyncio.wait_for(orch.run_forever(), timeout=2)
        finally:
            await manager.close()

        assert calls["n"] == 2
        assert orch.is_running is False

    @pytest.mark.asyncio
    async def test_stop_cuts_retry_backoff_short(self, tmp_path, base_position):
        signer = MockSigner()
        signer.fail_kinds["collect_fee"] = ConnectionError("rpc down")
        orch, _, _ = make_orchestrator(
            tmp_path, MockDataSource(OUT_OF_RANGE_POOL, base_position),
            max_retries=3, signer=signer, sleep=None,
        )
        signer.on_execute = lambda tx: asyncio.get_running_loop().call_later(0.05, orch.stop)

        started = asyncio.get_running_loop().time()
        result = await asyncio.wait_for(orch.run_cycle(), timeout=2)

        # first backoff is 1s
        assert asyncio.get_running_loop().time() - started < 0.9
        assert result.success is False
        assert signer.kinds == ["collect_fee"]
