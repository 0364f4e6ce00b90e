"""
TransactionExecutor: dry-run / confirm / retry wrapper around the signer.

- Dry run: simulate only, check simulated gas against the budget
- Live without confirmation: abort the operation (last human safety gate)
- Live: broadcast with up to max_retries retries and exponential backoff
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from rebalancer.core.tick_math import backoff_ms
from rebalancer.execution.interfaces import TransactionSigner
from rebalancer.infra.logging_cfg import DEFAULT_LOGGER_NAME, log_event
from rebalancer.risk.risk_checks import GasBudgetExceededError, check_gas_budget

DRY_RUN_DIGEST = "dry-run"
ABORTED_DIGEST = "aborted-no-confirm"


class TransactionFailedError(RuntimeError):
    pass


@dataclass(frozen=True)
class TxResult:
    digest: str
    dry_run: bool = False
    aborted: bool = False


@dataclass
class TxExecutorConfig:
    gas_budget: int = 500_000_000
    dry_run: bool = True
    confirm: bool = False
    max_retries: int = 3


class TransactionExecutor:
    def __init__(
        self,
        signer: TransactionSigner,
        config: Optional[TxExecutorConfig] = None,
        logger: Optional[logging.Logger] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> None:
        self.signer = signer
        self.config = config or TxExecutorConfig()
        self._log = logger or logging.getLogger(DEFAULT_LOGGER_NAME)
        self._interrupted = asyncio.Event()
        self._sleep = sleep or self._backoff_sleep

    def interrupt(self) -> None:
        """Cut the current backoff short; no further retry is started."""
        self._interrupted.set()

    async def _backoff_sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._interrupted.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def execute(self, tx: Any, label: str = "tx") -> TxResult:
        """
        Run one built operation according to the configured mode.

        Raises:
            TransactionFailedError: simulation failed, or a broadcast came back
                unsuccessful on the final attempt
            GasBudgetExceededError: simulated or declared gas above budget (never retried)
            Exception: last broadcast error once retries are exhausted
        """
        cfg = self.config

        if cfg.dry_run:
            result = await self.signer.simulate(tx, cfg.gas_budget)
            if not result.success:
                raise TransactionFailedError(f"{label} simulation failed: {result.error or 'unknown'}")
            if result.gas is not None:
                check_gas_budget(result.gas, cfg.gas_budget, self._log)
            log_event(self._log, "tx_simulated", label=label, dry_run=True,
                      gas=result.gas.total if result.gas else None)
            return TxResult(digest=DRY_RUN_DIGEST, dry_run=True)

        if not cfg.confirm:
            log_event(self._log, "tx_aborted_no_confirm", level=logging.WARNING, label=label,
                      hint="live mode requires CONFIRM=true")
            return TxResult(digest=ABORTED_DIGEST, aborted=True)

        last_exc: Optional[BaseException] = None
        attempts = cfg.max_retries + 1
        for attempt in range(attempts):
            try:
                result = await self.signer.sign_and_execute(tx, cfg.gas_budget)
                if not result.success:
                    raise TransactionFailedError(
                        f"{label} failed: {result.error or 'unknown'} (digest={result.digest})"
                    )
                log_event(self._log, "tx_executed", label=label, digest=result.digest, attempt=attempt)
                return TxResult(digest=result.digest)
            except GasBudgetExceededError:
                raise
            except Exception as exc:
                last_exc = exc
                if attempt >= attempts - 1 or self._interrupted.is_set():
                    break
                delay = backoff_ms(attempt)
                log_event(self._log, "tx_retry", level=logging.WARNING, label=label,
                          attempt=attempt, delay_ms=delay, err=str(exc))
                await self._sleep(delay / 1000)
                if self._interrupted.is_set():
                    log_event(self._log, "tx_retry_interrupted", level=logging.WARNING, label=label, attempt=attempt)
                    break

        log_event(self._log, "tx_failed", level=logging.ERROR, label=label, attempts=attempts, err=str(last_exc))
        if last_exc is None:
            raise TransactionFailedError(f"{label} failed: no attempts made (max_retries={cfg.max_retries})")
        raise last_exc
