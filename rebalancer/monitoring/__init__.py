"""
Monitoring package.

Webhook alerts for rebalance lifecycle events.
"""

from rebalancer.monitoring.alerting import (
    AlertConfig,
    AlertManager,
    AlertPayload,
    AlertType,
    build_message,
    notify,
)

__all__ = [
    "AlertConfig",
    "AlertManager",
    "AlertPayload",
    "AlertType",
    "build_message",
    "notify",
]
