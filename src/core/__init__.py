"""
Core Liquidator Module.

Provides:
- Account universe tracking (bulk refresh + change feed updates)
- Alert system for liquidation events
- Orchestrator for main loop coordination
"""

from .alerts import (
    AlertManager,
    Alert,
    AlertType,
    AlertSeverity,
    AlertHandler,
    LoggingAlertHandler,
    CallbackAlertHandler,
    WebhookAlertHandler,
    create_sick_account_alert,
    create_liquidation_alert,
)
from .tracker import AccountUniverse
from .orchestrator import (
    ConfigurationError,
    CycleResult,
    Orchestrator,
    OrchestratorConfig,
    OrchestratorState,
)

__all__ = [
    # Alerts
    "AlertManager",
    "Alert",
    "AlertType",
    "AlertSeverity",
    "AlertHandler",
    "LoggingAlertHandler",
    "CallbackAlertHandler",
    "WebhookAlertHandler",
    "create_sick_account_alert",
    "create_liquidation_alert",
    # Tracker
    "AccountUniverse",
    # Orchestrator
    "ConfigurationError",
    "CycleResult",
    "Orchestrator",
    "OrchestratorConfig",
    "OrchestratorState",
]
