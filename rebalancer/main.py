"""
Entry point wiring all components.

Exit codes: 0 on normal or signal shutdown, 1 on invalid configuration, a
concurrent instance, or a fatal error.
"""

from __future__ import annotations

import asyncio
import signal
import sys

import httpx

from rebalancer.adapters.sui_rpc import MissingTxBuilder, SuiRpcClient, SuiRpcSigner, load_tx_builder
from rebalancer.config.config import Settings
from rebalancer.config.config_validator import validate_and_log
from rebalancer.execution.tx_executor import TransactionExecutor, TxExecutorConfig
from rebalancer.infra.logging_cfg import DEFAULT_LOGGER_NAME, build_logger, log_event
from rebalancer.monitoring.alerting import AlertConfig, AlertManager
from rebalancer.orchestrator.rebalance_orchestrator import OrchestratorConfig, RebalanceOrchestrator
from rebalancer.risk.instance_lock import ConcurrentInstanceError, InstanceLock
from rebalancer.state.state_store import AtomicStateStore

EXIT_OK = 0
EXIT_FAILURE = 1


async def main(cfg: Settings | None = None) -> int:
    if cfg is None:
        try:
            cfg = Settings.load()
        except ValueError as exc:
            build_logger(DEFAULT_LOGGER_NAME).error(f"Configuration error: {exc}")
            return EXIT_FAILURE

    log = build_logger(DEFAULT_LOGGER_NAME, cfg.log_level, cfg.log_file)
    log_event(log, "startup", **cfg.dump())

    if not validate_and_log(cfg, log):
        log.error("Configuration validation failed, exiting")
        return EXIT_FAILURE

    lock = InstanceLock(cfg.lock_file, logger=log)
    try:
        lock.acquire()
    except ConcurrentInstanceError as exc:
        log.error(str(exc))
        return EXIT_FAILURE

    # One shared client for RPC and webhooks.
    http = httpx.AsyncClient(timeout=cfg.http_timeout)
    loop = asyncio.get_running_loop()
    installed: list[signal.Signals] = []
    try:
        alerts = AlertManager(
            AlertConfig(
                webhook_url=cfg.alert_webhook_url,
                webhook_type=cfg.alert_webhook_type,
                network=cfg.network,
                enabled=cfg.alert_enabled,
                timeout_sec=cfg.http_timeout,
            ),
            logger=log,
            client=http,
        )
        rpc = SuiRpcClient(
            cfg.sui_rpc_url,
            wallet_address=cfg.wallet_address,
            pool_id=cfg.pool_id,
            token_a_type=cfg.token_a_type,
            token_b_type=cfg.token_b_type,
            position_id=cfg.position_id,
            client=http,
            logger=log,
        )
        builder = load_tx_builder(cfg.tx_builder, cfg) if cfg.tx_builder else MissingTxBuilder()
        signer = SuiRpcSigner(builder, rpc, cfg.gas_budget)
        executor = TransactionExecutor(
            signer,
            TxExecutorConfig(
                gas_budget=cfg.gas_budget,
                dry_run=cfg.dry_run,
                confirm=cfg.confirm,
                max_retries=cfg.max_retries,
            ),
            logger=log,
        )
        orchestrator = RebalanceOrchestrator(
            OrchestratorConfig.from_settings(cfg),
            data_source=rpc,
            signer=signer,
            executor=executor,
            state_store=AtomicStateStore(cfg.state_file, log),
            alerts=alerts,
            logger=log,
        )

        # Windows doesn't support add_signal_handler, so rely on KeyboardInterrupt handling
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, orchestrator.stop)
                installed.append(sig)
            except NotImplementedError:
                pass

        await orchestrator.run_forever()
        return EXIT_OK
    except Exception:
        log.exception("Fatal error")
        return EXIT_FAILURE
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)
        lock.release()
        await http.aclose()
        log.info("Shutdown complete")


def cli() -> None:
    try:
        code = asyncio.run(main())
    except KeyboardInterrupt:
        print("\nBot stopped by user")
        code = EXIT_OK
    sys.exit(code)


if __name__ == "__main__":
    cli()
