"""
Configuration validation before the bot is allowed to start.

- Required fields and Sui object id shapes
- Range checks for numeric parameters
- Live-mode prerequisites (signer, transaction builder)
- Warnings for risky but valid settings
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx

from rebalancer.risk.risk_checks import validate_ids, validate_wallet_address

logger = logging.getLogger(__name__)


class ValidationSeverity(Enum):
    """Severity levels for validation issues."""
    ERROR = auto()    # Blocks startup
    WARNING = auto()  # Logs warning but allows startup
    INFO = auto()     # Informational only


@dataclass
class ValidationIssue:
    """A single validation issue."""
    field: str
    message: str
    severity: ValidationSeverity
    value: Any = None
    suggestion: Optional[str] = None

    def render(self) -> str:
        text = f"CONFIG {self.severity.name}: {self.message}"
        return f"{text} (suggestion: {self.suggestion})" if self.suggestion else text


@dataclass
class ValidationResult:
    """Result of config validation."""
    valid: bool
    issues: List[ValidationIssue] = field(default_factory=list)

    def _of(self, severity: ValidationSeverity) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == severity]

    def has_errors(self) -> bool:
        return bool(self._of(ValidationSeverity.ERROR))

    def has_warnings(self) -> bool:
        return bool(self._of(ValidationSeverity.WARNING))

    def get_errors(self) -> List[ValidationIssue]:
        return self._of(ValidationSeverity.ERROR)

    def get_warnings(self) -> List[ValidationIssue]:
        return self._of(ValidationSeverity.WARNING)


def _error(field_name: str, message: str, **kw) -> ValidationIssue:
    return ValidationIssue(field_name, message, ValidationSeverity.ERROR, **kw)


def _warning(field_name: str, message: str, **kw) -> ValidationIssue:
    return ValidationIssue(field_name, message, ValidationSeverity.WARNING, **kw)


Validator = Callable[[Any], Optional[List[ValidationIssue]]]


class ConfigValidator:
    """
    Validates a Settings instance.

    Checks:
    - Required fields are present
    - Wallet, pool and position ids are well formed
    - Numeric values are within safe ranges
    - Live mode has a signer and a transaction builder
    - Risky configurations
    """

    # (min, max), inclusive
    NUMERIC_RANGES: Dict[str, Tuple[float, float]] = {
        "price_band_pct": (0.01, 50.0),
        "drift_trigger_pct": (0.0, 50.0),
        "min_interval_seconds": (1, 86_400),
        "slippage_bps": (0, 1_000),
        "gas_budget": (1_000_000, 50_000_000_000),
        "max_retries": (0, 10),
        "http_timeout": (1.0, 120.0),
    }

    REQUIRED_STRINGS: Tuple[str, ...] = (
        "sui_rpc_url",
        "wallet_address",
        "pool_id",
        "token_a_type",
        "token_b_type",
    )

    def __init__(self) -> None:
        self._custom_validators: List[Validator] = []

    def register_validator(self, validator: Validator) -> None:
        """Register an extra check; it returns a list of issues or None."""
        self._custom_validators.append(validator)

    def validate(self, cfg) -> ValidationResult:
        checks = [
            self._validate_required_strings,
            self._validate_ids,
            self._validate_numeric_ranges,
            self._validate_live_mode,
            self._validate_webhook_url,
            self._check_risky_configs,
            *self._custom_validators,
        ]
        issues: List[ValidationIssue] = []
        for check in checks:
            issues.extend(check(cfg) or [])
        return ValidationResult(valid=not any(i.severity == ValidationSeverity.ERROR for i in issues),
                                issues=issues)

    def _validate_required_strings(self, cfg) -> List[ValidationIssue]:
        return [
            _error(name, f"Required field '{name}' is missing or empty",
                   value=getattr(cfg, name, None), suggestion=f"Set {name.upper()}")
            for name in self.REQUIRED_STRINGS
            if not str(getattr(cfg, name, None) or "").strip()
        ]

    def _validate_ids(self, cfg) -> List[ValidationIssue]:
        issues = []
        wallet = getattr(cfg, "wallet_address", None)
        if wallet:
            try:
                validate_wallet_address(wallet)
            except ValueError as exc:
                issues.append(_error("wallet_address", str(exc), value=wallet))
        if getattr(cfg, "pool_id", None):
            try:
                validate_ids(cfg.pool_id, getattr(cfg, "position_id", None))
            except ValueError as exc:
                # pool id and position id share one check
                name = "position_id" if "position" in str(exc) else "pool_id"
                issues.append(_error(name, str(exc)))
        return issues

    def _validate_numeric_ranges(self, cfg) -> List[ValidationIssue]:
        issues = []
        for name, (low, high) in self.NUMERIC_RANGES.items():
            value = getattr(cfg, name, None)
            if value is None:
                continue
            try:
                number = float(value)
            except (TypeError, ValueError):
                issues.append(_error(name, f"'{name}' has invalid numeric value: {value}", value=value))
                continue
            if number < low:
                issues.append(_error(name, f"'{name}' value {value} is below minimum {low}",
                                     value=value, suggestion=f"Set to at least {low}"))
            elif number > high:
                issues.append(_error(name, f"'{name}' value {value} is above maximum {high}",
                                     value=value, suggestion=f"Set to at most {high}"))
        return issues

    def _validate_live_mode(self, cfg) -> List[ValidationIssue]:
        if getattr(cfg, "dry_run", True):
            return []
        issues = []
        if not getattr(cfg, "tx_builder", None):
            issues.append(_error("tx_builder", "Live mode requires a transaction builder",
                                 suggestion="Set TX_BUILDER=module:factory or run with DRY_RUN=true"))
        if not getattr(cfg, "keystore_path", None) and not getattr(cfg, "mnemonic", None):
            issues.append(_warning(
                "keystore_path",
                "Live mode without KEYSTORE_PATH or MNEMONIC; the builder must bring its own key",
            ))
        if not getattr(cfg, "confirm", False):
            issues.append(_warning("confirm", "Live mode without CONFIRM=true: every transaction will be aborted",
                                   suggestion="Set CONFIRM=true to broadcast"))
        return issues

    def _validate_webhook_url(self, cfg) -> List[ValidationIssue]:
        url = getattr(cfg, "alert_webhook_url", None)
        if not url:
            return []
        try:
            parsed = httpx.URL(url)
        except httpx.InvalidURL as exc:
            return [_error("alert_webhook_url", f"Alert webhook URL is not a valid URL: {exc}",
                           suggestion="Fix ALERT_WEBHOOK_URL or unset it")]
        if parsed.scheme not in ("http", "https") or not parsed.host:
            return [_error("alert_webhook_url", f"Alert webhook URL must be http(s) with a host, got {url!r}",
                           suggestion="Fix ALERT_WEBHOOK_URL or unset it")]
        return []

    def _check_risky_configs(self, cfg) -> List[ValidationIssue]:
        issues = []

        slippage = getattr(cfg, "slippage_bps", 50)
        if slippage > 300:
            issues.append(_warning("slippage_bps",
                                   f"High slippage tolerance ({slippage / 100:.2f}%) exposes swaps to MEV",
                                   value=slippage))

        band = getattr(cfg, "price_band_pct", 1.5)
        drift = getattr(cfg, "drift_trigger_pct", 0.5)
        if getattr(cfg, "rebalance_mode", "price_band") == "drift" and drift >= band:
            issues.append(_warning(
                "drift_trigger_pct",
                f"Drift trigger ({drift}%) >= band half-width ({band}%); drift never fires before range exit",
                value=drift,
            ))

        interval = getattr(cfg, "min_interval_seconds", 60)
        if interval < 10:
            issues.append(_warning("min_interval_seconds",
                                   f"Short interval ({interval}s) may hammer the RPC endpoint and churn the position",
                                   value=interval))

        if getattr(cfg, "alert_enabled", True) and not getattr(cfg, "alert_webhook_url", None):
            issues.append(ValidationIssue("alert_webhook_url", "No alert webhook configured",
                                          ValidationSeverity.INFO))

        return issues


def validate_config(cfg) -> ValidationResult:
    return ConfigValidator().validate(cfg)


def validate_and_log(cfg, logger_instance=None) -> bool:
    """
    Validate config and log every error and warning.

    Returns:
        True if config is valid (no errors), False otherwise
    """
    log = logger_instance or logger
    result = validate_config(cfg)

    for issue in result.get_errors():
        log.error(issue.render())
    for issue in result.get_warnings():
        log.warning(issue.render())

    if result.valid:
        log.info("Configuration validation passed")
    else:
        log.error(f"Configuration validation failed with {len(result.get_errors())} error(s)")
    return result.valid
