"""
Environment-driven configuration with validation.

Precedence: environment > YAML config file > default.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, TypeVar

from dotenv import load_dotenv

from rebalancer.config.file_config import load_file_config, resolve_config_path
from rebalancer.infra.logging_cfg import DEFAULT_LOGGER_NAME, log_event
from rebalancer.utils import mask_secret, network_from_rpc_url

load_dotenv()

T = TypeVar("T")

REBALANCE_MODES = ("price_band", "drift")
WEBHOOK_TYPES = ("auto", "generic", "telegram", "slack", "discord")
SECRET_FIELDS = ("mnemonic", "alert_webhook_url")


class ConfigValidationError(ValueError):
    pass


def env_bool(key: str, default: bool) -> bool:
    val = os.getenv(key)
    if val is None or val == "":
        return default
    return val.lower() in {"1", "true", "yes", "y"}


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "y"}


@dataclass(frozen=True)
class Settings:
    # RPC / wallet
    sui_rpc_url: str
    wallet_address: str
    keystore_path: str | None
    mnemonic: str | None
    # Pool / position
    pool_id: str
    position_id: str | None
    token_a_type: str
    token_b_type: str
    # Strategy
    rebalance_mode: str
    price_band_pct: float
    drift_trigger_pct: float
    min_interval_seconds: int
    slippage_bps: int
    # Safety
    gas_budget: int
    max_retries: int
    dry_run: bool
    confirm: bool
    # Alerting
    alert_webhook_url: str | None
    alert_webhook_type: str
    alert_enabled: bool
    # Runtime
    log_level: str
    log_file: str | None
    state_file: str
    lock_file: str
    http_timeout: float
    tx_builder: str | None
    config_file: str
    cetus_package_ids: Dict[str, str] = field(default_factory=dict)

    @property
    def network(self) -> str:
        return network_from_rpc_url(self.sui_rpc_url)

    def dump(self) -> dict:
        """Return a dict of settings for logging, with secrets masked."""
        data = self.__dict__.copy()
        for key in SECRET_FIELDS:
            data[key] = mask_secret(data.get(key))
        data["network"] = self.network
        return data

    @classmethod
    def load(cls, config_file: str | None = None, file_values: Optional[Mapping[str, Any]] = None) -> "Settings":
        path = resolve_config_path(config_file)
        file_cfg: Mapping[str, Any] = file_values if file_values is not None else load_file_config(str(path))

        def _pick(env_key: str, file_key: str, default: T, cast: Callable[[Any], T]) -> T:
            raw = os.getenv(env_key)
            if raw is not None and raw != "":
                try:
                    return cast(raw)
                except ValueError as exc:
                    raise ConfigValidationError(f"{env_key}={raw!r} is not valid: {exc}") from exc
            value = file_cfg.get(file_key)
            if value is not None:
                try:
                    return cast(value)
                except (TypeError, ValueError) as exc:
                    raise ConfigValidationError(f"{file_key}={value!r} in {path} is not valid: {exc}") from exc
            return default

        def _str(env_key: str, file_key: str, default: str | None = None) -> str | None:
            return _pick(env_key, file_key, default, str)

        webhook = _str("ALERT_WEBHOOK_URL", "alert_webhook_url") or _str("TELEGRAM_WEBHOOK", "telegram_webhook")

        cfg = cls(
            sui_rpc_url=_str("SUI_RPC_URL", "sui_rpc_url", "https://fullnode.mainnet.sui.io:443"),
            wallet_address=_str("WALLET_ADDRESS", "wallet_address", ""),
            keystore_path=_str("KEYSTORE_PATH", "keystore_path"),
            mnemonic=_str("MNEMONIC", "mnemonic"),
            pool_id=_str("POOL_ID", "pool_id", ""),
            position_id=_str("POSITION_ID", "position_id"),
            token_a_type=_str("TOKEN_A_TYPE", "token_a_type", ""),
            token_b_type=_str("TOKEN_B_TYPE", "token_b_type", ""),
            rebalance_mode=_str("REBALANCE_MODE", "rebalance_mode", "price_band"),
            price_band_pct=_pick("PRICE_BAND_PCT", "price_band_pct", 1.5, float),
            drift_trigger_pct=_pick("DRIFT_TRIGGER_PCT", "drift_trigger_pct", 0.5, float),
            min_interval_seconds=_pick("MIN_INTERVAL_SECONDS", "min_interval_seconds", 60, int),
            slippage_bps=_pick("SLIPPAGE_BPS", "slippage_bps", 50, int),
            gas_budget=_pick("GAS_BUDGET", "gas_budget", 500_000_000, int),
            max_retries=_pick("MAX_RETRIES", "max_retries", 3, int),
            dry_run=_pick("DRY_RUN", "dry_run", True, _to_bool),
            confirm=_pick("CONFIRM", "confirm", False, _to_bool),
            alert_webhook_url=webhook,
            alert_webhook_type=_str("ALERT_WEBHOOK_TYPE", "alert_webhook_type", "auto"),
            alert_enabled=_pick("ALERT_ENABLED", "alert_enabled", True, _to_bool),
            log_level=_str("LOG_LEVEL", "log_level", "info"),
            log_file=_str("LOG_FILE", "log_file"),
            state_file=_str("STATE_FILE", "state_file", "state/state.json"),
            lock_file=_str("LOCK_FILE", "lock_file", "bot.lock"),
            http_timeout=_pick("HTTP_TIMEOUT", "http_timeout", 10.0, float),
            tx_builder=_str("TX_BUILDER", "tx_builder"),
            config_file=str(path),
            cetus_package_ids=dict(file_cfg.get("cetus_package_ids") or {}),
        )
        cfg._validate()
        _log_loaded(cfg)
        return cfg

    def _validate(self) -> None:
        if self.rebalance_mode not in REBALANCE_MODES:
            raise ConfigValidationError(
                f"REBALANCE_MODE must be one of {', '.join(REBALANCE_MODES)}, got {self.rebalance_mode!r}"
            )
        if self.price_band_pct <= 0:
            raise ConfigValidationError("PRICE_BAND_PCT must be > 0")
        if self.drift_trigger_pct < 0:
            raise ConfigValidationError("DRIFT_TRIGGER_PCT must be >= 0")
        if self.min_interval_seconds < 0:
            raise ConfigValidationError("MIN_INTERVAL_SECONDS must be >= 0")
        if not 0 <= self.slippage_bps <= 10_000:
            raise ConfigValidationError("SLIPPAGE_BPS must be within 0..10000")
        if self.gas_budget <= 0:
            raise ConfigValidationError("GAS_BUDGET must be > 0")
        if self.max_retries < 0:
            raise ConfigValidationError("MAX_RETRIES must be >= 0")
        if self.http_timeout <= 0:
            raise ConfigValidationError("HTTP_TIMEOUT must be > 0")
        if self.alert_webhook_type not in WEBHOOK_TYPES:
            raise ConfigValidationError(
                f"ALERT_WEBHOOK_TYPE must be one of {', '.join(WEBHOOK_TYPES)}, got {self.alert_webhook_type!r}"
            )


def _log_loaded(cfg: Settings) -> None:
    """Log the effective mode once at startup so overrides are obvious."""
    log_event(
        logging.getLogger(DEFAULT_LOGGER_NAME),
        "config_loaded",
        config_file=cfg.config_file,
        network=cfg.network,
        rebalance_mode=cfg.rebalance_mode,
        dry_run=cfg.dry_run,
        confirm=cfg.confirm,
    )
