"""
Infrastructure package.

Logging configuration and structured event helpers.
"""

from rebalancer.infra.logging_cfg import build_logger, log_event

__all__ = [
    "build_logger",
    "log_event",
]
