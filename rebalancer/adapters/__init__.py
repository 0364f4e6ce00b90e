from rebalancer.adapters.sui_rpc import MissingTxBuilder, RpcError, SuiRpcClient, SuiRpcSigner, load_tx_builder

__all__ = ["MissingTxBuilder", "RpcError", "SuiRpcClient", "SuiRpcSigner", "load_tx_builder"]
