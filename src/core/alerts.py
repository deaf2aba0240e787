"""
Notification System for Liquidator Events.

Provides:
- Alert types and severity levels
- Routing to handlers by minimum severity
- Logging, callback and chat webhook handlers
- Per-account deduplication with severity-dependent windows
"""

import logging
import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum, auto
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

import requests

logger = logging.getLogger(__name__)


class AlertSeverity(Enum):
    """Alert severity levels, lowest first."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"  # Operator should look now
    EMERGENCY = "emergency"  # Liquidator cannot continue

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def at_least(self, other: "AlertSeverity") -> bool:
        return self.rank >= other.rank


_SEVERITY_RANK = {severity: i for i, severity in enumerate(AlertSeverity)}

_LOG_LEVELS = {
    AlertSeverity.INFO: logging.INFO,
    AlertSeverity.WARNING: logging.WARNING,
    AlertSeverity.CRITICAL: logging.ERROR,
    AlertSeverity.EMERGENCY: logging.CRITICAL,
}

# Seconds during which a repeat of the same (type, key) is dropped
DEDUP_WINDOWS = {
    AlertSeverity.INFO: 300.0,
    AlertSeverity.WARNING: 120.0,
    AlertSeverity.CRITICAL: 30.0,
    AlertSeverity.EMERGENCY: 0.0,
}


class AlertType(Enum):
    """What happened."""

    LIQUIDATOR_STARTED = auto()
    LIQUIDATOR_STOPPED = auto()

    SICK_ACCOUNT = auto()  # Confirmed liquidatable after reload
    ACCOUNT_LIQUIDATED = auto()
    LIQUIDATION_FAILED = auto()

    ACCOUNT_REBALANCED = auto()  # Operator account
    TRIGGER_EXECUTED = auto()

    CYCLE_ERROR = auto()
    ERROR_RATE_HIGH = auto()


@dataclass
class Alert:
    """One dispatched notification."""

    alert_id: str
    alert_type: AlertType
    severity: AlertSeverity
    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    dedup_key: Optional[str] = None
    created_at: float = field(default_factory=time.time)

    def __str__(self) -> str:
        return f"[{self.severity.value.upper()}] {self.alert_type.name}: {self.message}"


class AlertHandler(ABC):
    """Delivers alerts at or above its minimum severity."""

    def __init__(self, min_severity: AlertSeverity = AlertSeverity.INFO):
        self.min_severity = min_severity

    def accepts(self, alert: Alert) -> bool:
        return alert.severity.at_least(self.min_severity)

    @abstractmethod
    def handle(self, alert: Alert) -> bool:
        """Deliver one alert; True when delivered."""
        pass


class LoggingAlertHandler(AlertHandler):
    """Writes alerts to the application log."""

    def handle(self, alert: Alert) -> bool:
        logger.log(_LOG_LEVELS[alert.severity], f"[ALERT] {alert} | {alert.details}")
        return True


class CallbackAlertHandler(AlertHandler):
    """Hands alerts to a function (tests, embedding)."""

    def __init__(
        self,
        callback: Callable[[Alert], None],
        min_severity: AlertSeverity = AlertSeverity.WARNING,
    ):
        super().__init__(min_severity)
        self._callback = callback

    def handle(self, alert: Alert) -> bool:
        self._callback(alert)
        return True


class WebhookAlertHandler(AlertHandler):
    """
    Posts alert text to a chat webhook.

    Payload is {"content": message}, the shape Discord-style webhooks accept.
    Delivery failures are logged and never raised.
    """

    def __init__(
        self,
        url: str,
        min_severity: AlertSeverity = AlertSeverity.INFO,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        super().__init__(min_severity)
        self._url = url
        self._timeout = timeout
        self._session = session or requests.Session()

    def handle(self, alert: Alert) -> bool:
        if not alert.message:
            return False
        try:
            response = self._session.post(
                self._url,
                json={"content": alert.message},
                timeout=self._timeout,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            logger.error(f"Error posting to notify webhook: {e}")
            return False
        return True


DedupKey = Tuple[AlertType, Optional[str]]


class AlertManager:
    """
    Creates, deduplicates and routes alerts.

    Deduplication is per (alert type, dedup key): a second sick account is
    reported even while the first one's alert is still inside its window.

    Usage:
        alerts = AlertManager()
        alerts.add_handler(LoggingAlertHandler())
        alerts.add_handler(WebhookAlertHandler(url))

        alerts.create_alert(
            AlertType.SICK_ACCOUNT,
            AlertSeverity.WARNING,
            "Sick account 7xK...",
            {"health_ratio": "-3.2"},
            dedup_key="7xK...",
        )
    """

    def __init__(self, max_history: int = 1000, clock: Callable[[], float] = time.time):
        self._handlers: List[AlertHandler] = []
        self._history: Deque[Alert] = deque(maxlen=max_history)
        self._last_sent: Dict[DedupKey, float] = {}
        self._counter = 0
        self._clock = clock

    def add_handler(self, handler: AlertHandler) -> None:
        self._handlers.append(handler)
        logger.debug(f"Added alert handler: {handler.__class__.__name__}")

    def create_alert(
        self,
        alert_type: AlertType,
        severity: AlertSeverity,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        dedup_key: Optional[str] = None,
        force: bool = False,
    ) -> Optional[Alert]:
        """
        Create and dispatch an alert.

        Args:
            alert_type: Type of alert
            severity: Severity level
            message: Text delivered to handlers
            details: Structured context
            dedup_key: Narrows deduplication (e.g. an account key)
            force: Bypass deduplication

        Returns:
            The alert, or None when it was deduplicated
        """
        now = self._clock()
        key = (alert_type, dedup_key)
        last = self._last_sent.get(key)
        if not force and last is not None and now - last <= DEDUP_WINDOWS[severity]:
            logger.debug(f"Alert deduplicated: {alert_type.name} {dedup_key or ''}")
            return None

        self._counter += 1
        alert = Alert(
            alert_id=f"alert_{self._counter}_{int(now)}",
            alert_type=alert_type,
            severity=severity,
            message=message,
            details=details or {},
            dedup_key=dedup_key,
            created_at=now,
        )
        self._last_sent[key] = now
        self._history.append(alert)

        for handler in self._handlers:
            if not handler.accepts(alert):
                continue
            try:
                handler.handle(alert)
            except Exception as e:
                logger.error(f"Handler {handler.__class__.__name__} failed: {e}")

        return alert

    def recent(
        self,
        since: Optional[float] = None,
        alert_type: Optional[AlertType] = None,
        min_severity: Optional[AlertSeverity] = None,
    ) -> List[Alert]:
        """Alerts from history, optionally filtered."""
        return [
            a for a in self._history
            if (since is None or a.created_at >= since)
            and (alert_type is None or a.alert_type == alert_type)
            and (min_severity is None or a.severity.at_least(min_severity))
        ]

    def reset_dedup(self, alert_type: AlertType) -> None:
        """Let the next alert of this type through immediately."""
        for key in [k for k in self._last_sent if k[0] == alert_type]:
            del self._last_sent[key]

    def get_stats(self) -> Dict[str, Any]:
        by_severity = {s.value: 0 for s in AlertSeverity}
        for alert in self._history:
            by_severity[alert.severity.value] += 1

        return {
            "total_alerts": len(self._history),
            "by_severity": by_severity,
            "handler_count": len(self._handlers),
        }


# === Liquidation alerts ===


def create_sick_account_alert(
    alert_manager: AlertManager,
    account_key: str,
    health_ratio: Decimal,
    summary: str = "",
) -> Optional[Alert]:
    """Report a confirmed liquidatable account with its maintenance health ratio."""
    message = f"Sick account {account_key} health ratio: {health_ratio:.4f}"
    if summary:
        message = f"{message}\n{summary}"
    return alert_manager.create_alert(
        AlertType.SICK_ACCOUNT,
        AlertSeverity.WARNING,
        message,
        {"account": account_key, "health_ratio": str(health_ratio)},
        dedup_key=account_key,
    )


def create_liquidation_alert(
    alert_manager: AlertManager,
    account_key: str,
    error: Optional[Exception] = None,
) -> Optional[Alert]:
    """
    Report the outcome of a liquidation pass.

    Successes are always sent; failures are deduplicated per account.
    """
    if error is None:
        return alert_manager.create_alert(
            AlertType.ACCOUNT_LIQUIDATED,
            AlertSeverity.INFO,
            f"Liquidated account {account_key}",
            {"account": account_key},
            dedup_key=account_key,
            force=True,
        )
    return alert_manager.create_alert(
        AlertType.LIQUIDATION_FAILED,
        AlertSeverity.CRITICAL,
        f"Failed to liquidate account {account_key}: {error}",
        {"account": account_key, "error": type(error).__name__},
        dedup_key=account_key,
    )
