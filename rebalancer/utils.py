"""
Utility helpers.
"""

from __future__ import annotations

import time


def now_ms() -> int:
    return int(time.time() * 1000)


def network_from_rpc_url(rpc_url: str) -> str:
    """Best-effort network label for explorer links."""
    url = (rpc_url or "").lower()
    if "testnet" in url:
        return "testnet"
    if "devnet" in url:
        return "devnet"
    return "mainnet"


def mask_secret(value: str | None, keep: int = 4) -> str | None:
    if not value:
        return value
    if len(value) <= keep * 2:
        return "*" * len(value)
    return f"{value[:keep]}...{value[-keep:]}"
