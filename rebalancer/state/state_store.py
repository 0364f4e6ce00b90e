"""
State persistence helpers.

The bot keeps a small JSON record of the last successful rebalance so it can
resume rate limiting and reporting after a restart. The file is only written
after a fully committed rebalance.
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from rebalancer.infra.logging_cfg import DEFAULT_LOGGER_NAME, log_event
from rebalancer.utils import now_ms


@dataclass(frozen=True)
class BotState:
    last_rebalance_time: Optional[int] = None  # epoch ms
    last_position_id: Optional[str] = None
    last_tick_lower: Optional[int] = None
    last_tick_upper: Optional[int] = None
    last_liquidity: Optional[str] = None  # integer as text
    total_rebalances: int = 0
    last_tx_digest: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BotState":
        known = {f.name for f in dataclasses.fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        state = cls(**values)
        if not isinstance(state.total_rebalances, int) or state.total_rebalances < 0:
            raise ValueError(f"invalid total_rebalances: {state.total_rebalances!r}")
        return state


def load_state(path: str | Path, logger: Optional[logging.Logger] = None) -> BotState:
    """Persisted state, or the default when the file is missing or unreadable."""
    log = logger or logging.getLogger(DEFAULT_LOGGER_NAME)
    p = Path(path)
    if not p.exists():
        return BotState()
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError("state file does not hold a JSON object")
        return BotState.from_dict(data)
    except (OSError, ValueError, TypeError) as exc:
        log_event(log, "state_load_error", level=logging.WARNING, path=str(p), err=str(exc))
        return BotState()


def save_state(path: str | Path, state: BotState) -> None:
    """Write state through a temp file and an atomic replace."""
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    tmp = p.with_name(p.name + ".tmp")
    tmp.write_text(json.dumps(state.to_dict(), indent=2), encoding="utf-8")
    tmp.replace(p)


def update_state_after_rebalance(
    state: BotState,
    position_id: str,
    tick_lower: int,
    tick_upper: int,
    liquidity: int,
    tx_digest: str,
) -> BotState:
    return dataclasses.replace(
        state,
        last_rebalance_time=now_ms(),
        last_position_id=position_id,
        last_tick_lower=tick_lower,
        last_tick_upper=tick_upper,
        last_liquidity=str(liquidity),
        total_rebalances=state.total_rebalances + 1,
        last_tx_digest=tx_digest,
    )


class StateStore:
    def __init__(self, path: str | Path, logger: Optional[logging.Logger] = None) -> None:
        self.path = Path(path)
        self._log = logger or logging.getLogger(DEFAULT_LOGGER_NAME)

    def load(self) -> BotState:
        return load_state(self.path, self._log)

    def save(self, state: BotState) -> None:
        save_state(self.path, state)


class AtomicStateStore:
    """
    Async wrapper around StateStore.

    File IO runs in the default executor; an asyncio.Lock keeps loads and
    saves from interleaving.
    """

    def __init__(self, path: str | Path, logger: Optional[logging.Logger] = None) -> None:
        self._store = StateStore(path, logger)
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._store.path

    async def load(self) -> BotState:
        async with self._lock:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(None, self._store.load)

    async def save(self, state: BotState) -> None:
        async with self._lock:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, lambda: self._store.save(state))
