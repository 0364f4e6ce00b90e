"""
Minimal async Sui JSON-RPC client for a Cetus CLMM pool.

Reads pool, position and wallet state; simulates and broadcasts transactions
that a TransactionBuilder has already built and signed.
"""

from __future__ import annotations

import asyncio
import importlib
import itertools
import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx

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
from rebalancer.infra.logging_cfg import DEFAULT_LOGGER_NAME, log_event
from rebalancer.risk.risk_checks import GasBudgetExceededError, GasEstimate, check_gas_budget
from rebalancer.strategy.rebalance_strategy import PoolState, PositionState

Q64 = 2 ** 64
OWNED_OBJECTS_PAGE = 50


class RpcError(RuntimeError):
    def __init__(self, method: str, code: Any, message: str) -> None:
        super().__init__(f"{method} failed ({code}): {message}")
        self.method = method
        self.code = code


def sqrt_price_to_price(sqrt_price: int) -> float:
    """Q64.64 sqrt price to a token B per token A price."""
    ratio = sqrt_price / Q64
    return ratio * ratio


def i32_from_bits(value: Any) -> int:
    """Decode a Move I32 ({"fields": {"bits": u32}} or a bare u32) to a signed int."""
    if isinstance(value, dict):
        value = value.get("fields", value).get("bits")
    bits = int(value)
    return bits - 2 ** 32 if bits >= 2 ** 31 else bits


def _move_fields(obj: Dict[str, Any]) -> Dict[str, Any]:
    content = (obj.get("data") or {}).get("content") or {}
    fields = content.get("fields")
    if not isinstance(fields, dict):
        raise ValueError(f"object {obj.get('data', {}).get('objectId')} has no Move fields")
    return fields


def _object_id(value: Any) -> str:
    if isinstance(value, dict):
        return value.get("id") or value.get("bytes") or ""
    return str(value)


def _positions_table_id(pool_fields: Dict[str, Any]) -> str:
    """Object id of position_manager.positions (a LinkedTable keyed by position ID); "" if absent."""
    manager = (pool_fields.get("position_manager") or {}).get("fields") or {}
    table = (manager.get("positions") or {}).get("fields") or {}
    return _object_id(table.get("id") or "")


def _find_fields(node: Any, key: str) -> Optional[Dict[str, Any]]:
    """Depth-first search for the Move fields dict holding `key`."""
    if isinstance(node, dict):
        if key in node:
            return node
        for child in node.values():
            found = _find_fields(child, key)
            if found is not None:
                return found
    return None


class SuiRpcClient(PoolDataSource):
    def __init__(
        self,
        rpc_url: str,
        wallet_address: str,
        pool_id: str,
        token_a_type: str,
        token_b_type: str,
        position_id: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.wallet_address = wallet_address
        self.pool_id = pool_id
        self.token_a_type = token_a_type
        self.token_b_type = token_b_type
        self.position_id = position_id
        self._log = logger or logging.getLogger(DEFAULT_LOGGER_NAME)
        self._ids = itertools.count(1)
        self._clmm_package: Optional[str] = None
        self._positions_table: Optional[str] = None
        # If a shared client is passed in, we won't close it in close(); otherwise we own the client.
        if client is not None:
            self.client = client
            self._owns_client = False
        else:
            self.client = httpx.AsyncClient(timeout=timeout)
            self._owns_client = True

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def _post_rpc(self, method: str, params: List[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        resp = await self.client.post(self.rpc_url, json=payload)
        resp.raise_for_status()
        data = resp.json()
        if "error" in data:
            err = data["error"] or {}
            raise RpcError(method, err.get("code"), err.get("message", str(err)))
        return data.get("result")

    async def get_object(self, object_id: str) -> Dict[str, Any]:
        return await self._post_rpc("sui_getObject", [object_id, {"showContent": True, "showType": True}])

    async def fetch_pool_state(self) -> PoolState:
        obj = await self.get_object(self.pool_id)
        if obj.get("error"):
            raise RpcError("sui_getObject", obj["error"].get("code"), f"pool {self.pool_id} not readable")
        fields = _move_fields(obj)

        obj_type = (obj.get("data") or {}).get("type") or ""
        if obj_type and self._clmm_package is None:
            self._clmm_package = obj_type.split("::", 1)[0]
        if self._positions_table is None:
            self._positions_table = _positions_table_id(fields)

        sqrt_price = int(fields["current_sqrt_price"])
        return PoolState(
            current_tick=i32_from_bits(fields["current_tick_index"]),
            current_price=sqrt_price_to_price(sqrt_price),
            tick_spacing=int(fields["tick_spacing"]),
            sqrt_price=sqrt_price,
        )

    async def _discover_position_id(self) -> str:
        if self._clmm_package is None:
            await self.fetch_pool_state()
        query = {
            "filter": {"StructType": f"{self._clmm_package}::position::Position"},
            "options": {"showContent": True},
        }
        cursor: Optional[str] = None
        while True:
            page = await self._post_rpc(
                "suix_getOwnedObjects", [self.wallet_address, query, cursor, OWNED_OBJECTS_PAGE]
            )
            for item in page.get("data") or []:
                try:
                    fields = _move_fields(item)
                except ValueError:
                    continue
                if _object_id(fields.get("pool")) == self.pool_id:
                    position_id = item["data"]["objectId"]
                    log_event(self._log, "position_discovered", position_id=position_id)
                    return position_id
            if not page.get("hasNextPage"):
                break
            cursor = page.get("nextCursor")

        raise PositionNotFoundError(
            f"No open positions found for wallet {self.wallet_address} in pool {self.pool_id}"
        )

    async def fetch_position_state(self) -> PositionState:
        if not self.position_id:
            self.position_id = await self._discover_position_id()

        obj = await self.get_object(self.position_id)
        if obj.get("error"):
            raise PositionNotFoundError(f"Position {self.position_id} not found: {obj['error']}")
        fields = _move_fields(obj)
        fee_a, fee_b = await self._fetch_owed_fees(self.position_id)
        return PositionState(
            tick_lower=i32_from_bits(fields["tick_lower_index"]),
            tick_upper=i32_from_bits(fields["tick_upper_index"]),
            liquidity=int(fields["liquidity"]),
            unclaimed_fee_a=fee_a,
            unclaimed_fee_b=fee_b,
            position_id=self.position_id,
        )

    async def _fetch_owed_fees(self, position_id: str) -> Tuple[Optional[int], Optional[int]]:
        """
        Owed fees from the pool's position manager (PositionInfo.fee_owned_a/b).

        These are the amounts settled at the last position update, as the
        Cetus SDK reports them. (None, None) when the entry cannot be read.
        """
        if self._positions_table is None:
            await self.fetch_pool_state()
        if not self._positions_table:
            return None, None
        try:
            entry = await self._post_rpc(
                "suix_getDynamicFieldObject",
                [self._positions_table, {"type": "0x2::object::ID", "value": position_id}],
            )
            info = _find_fields(_move_fields(entry), "fee_owned_a")
        except (RpcError, ValueError) as exc:
            log_event(self._log, "position_fees_unavailable", level=logging.WARNING,
                      position_id=position_id, err=str(exc))
            return None, None
        if info is None:
            log_event(self._log, "position_fees_unavailable", level=logging.WARNING,
                      position_id=position_id, err="no PositionInfo in entry")
            return None, None
        return int(info["fee_owned_a"]), int(info["fee_owned_b"])

    async def _balance(self, coin_type: str) -> int:
        result = await self._post_rpc("suix_getBalance", [self.wallet_address, coin_type])
        return int(result["totalBalance"])

    async def get_token_balances(self) -> TokenBalances:
        balance_a, balance_b = await asyncio.gather(
            self._balance(self.token_a_type),
            self._balance(self.token_b_type),
        )
        return TokenBalances(balance_a=balance_a, balance_b=balance_b)

    async def dry_run(self, tx: BuiltTransaction) -> SimulationResult:
        result = await self._post_rpc("sui_dryRunTransactionBlock", [tx.tx_bytes])
        effects = result.get("effects") or {}
        status = effects.get("status") or {}
        gas_used = effects.get("gasUsed")
        gas = None
        if gas_used:
            gas = GasEstimate(
                computation_cost=int(gas_used.get("computationCost", 0)),
                storage_cost=int(gas_used.get("storageCost", 0)),
                storage_rebate=int(gas_used.get("storageRebate", 0)),
            )
        return SimulationResult(success=status.get("status") == "success", gas=gas, error=status.get("error"))

    async def execute(self, tx: BuiltTransaction) -> ExecutionResult:
        result = await self._post_rpc(
            "sui_executeTransactionBlock",
            [tx.tx_bytes, list(tx.signatures), {"showEffects": True}, "WaitForLocalExecution"],
        )
        status = (result.get("effects") or {}).get("status") or {}
        return ExecutionResult(
            digest=result.get("digest", ""),
            success=status.get("status") == "success",
            error=status.get("error"),
        )


class SuiRpcSigner(TransactionSigner):
    """
    Builds through a TransactionBuilder, simulates and broadcasts through SuiRpcClient.

    The gas ceiling is handed to the builder and enforced again before any
    broadcast: a declared budget above the ceiling is refused, and an
    undeclared one is dry-run and its estimate checked.
    """

    def __init__(self, builder: TransactionBuilder, rpc: SuiRpcClient, gas_budget: int) -> None:
        self.builder = builder
        self.rpc = rpc
        self.gas_budget = gas_budget

    async def build_collect_fee_tx(self, position_id: str) -> BuiltTransaction:
        return await self.builder.collect_fee(position_id, self.gas_budget)

    async def build_remove_liquidity_tx(self, position_id: str, liquidity: int, slippage_bps: int) -> BuiltTransaction:
        return await self.builder.remove_liquidity(position_id, liquidity, slippage_bps, self.gas_budget)

    async def build_swap_tx(self, swap_a_to_b: bool, amount: int, slippage_bps: int) -> BuiltTransaction:
        return await self.builder.swap(swap_a_to_b, amount, slippage_bps, self.gas_budget)

    async def build_add_liquidity_tx(
        self,
        position_id: str,
        tick_lower: int,
        tick_upper: int,
        amount_a: int,
        amount_b: int,
        slippage_bps: int,
    ) -> BuiltTransaction:
        return await self.builder.add_liquidity(
            position_id, tick_lower, tick_upper, amount_a, amount_b, slippage_bps, self.gas_budget
        )

    async def simulate(self, tx: BuiltTransaction, gas_budget: int) -> SimulationResult:
        return await self.rpc.dry_run(tx)

    async def _enforce_gas_ceiling(self, tx: BuiltTransaction, gas_budget: int) -> None:
        if tx.gas_budget is not None:
            if tx.gas_budget > gas_budget:
                raise GasBudgetExceededError(
                    f"{tx.kind} declares gas budget {tx.gas_budget} above ceiling {gas_budget}. Aborting."
                )
            return
        sim = await self.rpc.dry_run(tx)
        if sim.gas is not None:
            check_gas_budget(sim.gas, gas_budget)

    async def sign_and_execute(self, tx: BuiltTransaction, gas_budget: int) -> ExecutionResult:
        if not tx.signatures:
            return ExecutionResult(digest="", success=False, error=f"{tx.kind} transaction is not signed")
        await self._enforce_gas_ceiling(tx, gas_budget)
        return await self.rpc.execute(tx)


class MissingTxBuilder(TransactionBuilder):
    """Stand-in for dry-run deployments with no TX_BUILDER; any build fails."""

    def _fail(self, kind: str) -> BuiltTransaction:
        raise RuntimeError(f"cannot build {kind}: TX_BUILDER is not configured")

    async def collect_fee(self, position_id, gas_budget):
        return self._fail("collect_fee")

    async def remove_liquidity(self, position_id, liquidity, slippage_bps, gas_budget):
        return self._fail("remove_liquidity")

    async def swap(self, swap_a_to_b, amount, slippage_bps, gas_budget):
        return self._fail("swap")

    async def add_liquidity(self, position_id, tick_lower, tick_upper, amount_a, amount_b, slippage_bps, gas_budget):
        return self._fail("add_liquidity")


def load_tx_builder(path: str, settings: Any) -> TransactionBuilder:
    """
    Instantiate the operator's builder from a `package.module:factory` path.

    The factory is called with the resolved Settings.
    """
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"TX_BUILDER must look like 'package.module:factory', got {path!r}")
    module = importlib.import_module(module_name)
    factory = getattr(module, attr)
    builder = factory(settings)
    if not isinstance(builder, TransactionBuilder):
        raise TypeError(f"{path} returned {type(builder).__name__}, expected a TransactionBuilder")
    return builder
