from rebalancer.config.config import ConfigValidationError, Settings, env_bool
from rebalancer.config.config_validator import (
    ConfigValidator,
    ValidationIssue,
    ValidationResult,
    ValidationSeverity,
    validate_and_log,
    validate_config,
)
from rebalancer.config.file_config import ConfigFileError, load_file_config

__all__ = [
    "ConfigFileError",
    "ConfigValidationError",
    "ConfigValidator",
    "Settings",
    "ValidationIssue",
    "ValidationResult",
    "ValidationSeverity",
    "env_bool",
    "load_file_config",
    "validate_and_log",
    "validate_config",
]
