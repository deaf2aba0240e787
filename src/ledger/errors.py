"""
Ledger Error Handling.

Classification of failures reported by the ledger and the executor:
- Error kinds and severity
- Expected business outcomes vs transient failures
- Error aggregation for alerting

The ledger reports failures as message strings carrying a program error
code, e.g. "custom program error: MangoErrorCode::TriggerConditionFalse".
The core never matches on message text; it branches on LedgerErrorKind.

Ledger Error Codes Reference:
- MangoErrorCode::InvalidParam - Rejected parameter (on trigger execution:
  the order slot is already consumed)
- MangoErrorCode::TriggerConditionFalse - Trigger price not crossed
- MangoErrorCode::NotLiquidatable - Account recovered before the action landed
- MangoErrorCode::Bankrupt - Account must go through bankruptcy resolution
- MangoErrorCode::InsufficientFunds - Not enough collateral for the action
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Dict, List, Optional

from .actions import ActionKind

logger = logging.getLogger(__name__)


class ErrorSeverity(Enum):
    """Severity levels for errors."""
    LOW = auto()       # Expected outcome, skip
    MEDIUM = auto()    # Transient, retried next cycle
    HIGH = auto()      # Action failed, needs attention
    CRITICAL = auto()  # Misconfiguration, halt


class LedgerErrorKind(Enum):
    """Stable error kinds the liquidation core branches on."""
    TRIGGER_ALREADY_EXECUTED = "trigger_already_executed"
    TRIGGER_CONDITION_FALSE = "trigger_condition_false"
    NOT_LIQUIDATABLE = "not_liquidatable"
    BANKRUPT = "bankrupt"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    INVALID_PARAMETER = "invalid_parameter"
    TIMEOUT = "timeout"
    NETWORK = "network"
    RATE_LIMIT = "rate_limit"
    UNKNOWN = "unknown"


@dataclass
class ErrorInfo:
    """Detailed information about an error."""
    code: str
    message: str
    kind: LedgerErrorKind
    severity: ErrorSeverity
    expected: bool = False  # Business outcome, not a failure
    transient: bool = True  # Next cycle may succeed
    details: Optional[Dict[str, Any]] = None


# Error code mappings
ERROR_MAPPINGS: Dict[str, ErrorInfo] = {
    "MangoErrorCode::TriggerConditionFalse": ErrorInfo(
        code="MangoErrorCode::TriggerConditionFalse",
        message="Trigger condition no longer holds",
        kind=LedgerErrorKind.TRIGGER_CONDITION_FALSE,
        severity=ErrorSeverity.LOW,
        expected=True,
    ),
    "MangoErrorCode::NotLiquidatable": ErrorInfo(
        code="MangoErrorCode::NotLiquidatable",
        message="Account is no longer liquidatable",
        kind=LedgerErrorKind.NOT_LIQUIDATABLE,
        severity=ErrorSeverity.LOW,
        expected=True,
    ),
    "MangoErrorCode::Bankrupt": ErrorInfo(
        code="MangoErrorCode::Bankrupt",
        message="Account is bankrupt",
        kind=LedgerErrorKind.BANKRUPT,
        severity=ErrorSeverity.MEDIUM,
    ),
    "MangoErrorCode::InsufficientFunds": ErrorInfo(
        code="MangoErrorCode::InsufficientFunds",
        message="Insufficient funds for action",
        kind=LedgerErrorKind.INSUFFICIENT_FUNDS,
        severity=ErrorSeverity.MEDIUM,
    ),
    "MangoErrorCode::InvalidParam": ErrorInfo(
        code="MangoErrorCode::InvalidParam",
        message="Invalid action parameters",
        kind=LedgerErrorKind.INVALID_PARAMETER,
        severity=ErrorSeverity.HIGH,
        transient=False,
    ),
    "Transaction was not confirmed": ErrorInfo(
        code="Transaction was not confirmed",
        message="Submission timed out",
        kind=LedgerErrorKind.TIMEOUT,
        severity=ErrorSeverity.MEDIUM,
    ),
    "Blockhash not found": ErrorInfo(
        code="Blockhash not found",
        message="Stale blockhash",
        kind=LedgerErrorKind.TIMEOUT,
        severity=ErrorSeverity.MEDIUM,
    ),
    "429 Too Many Requests": ErrorInfo(
        code="429 Too Many Requests",
        message="RPC rate limit exceeded",
        kind=LedgerErrorKind.RATE_LIMIT,
        severity=ErrorSeverity.MEDIUM,
    ),
    "Connection refused": ErrorInfo(
        code="Connection refused",
        message="RPC node unreachable",
        kind=LedgerErrorKind.NETWORK,
        severity=ErrorSeverity.MEDIUM,
    ),
}

# Codes whose meaning depends on the action that produced them
CONTEXT_MAPPINGS: Dict[ActionKind, Dict[str, LedgerErrorKind]] = {
    ActionKind.EXECUTE_TRIGGER_ORDER: {
        "MangoErrorCode::InvalidParam": LedgerErrorKind.TRIGGER_ALREADY_EXECUTED,
    },
}


def classify_error(message: str, action_kind: Optional[ActionKind] = None) -> ErrorInfo:
    """
    Classify a raw ledger/executor message into ErrorInfo.

    Args:
        message: Error text reported by the executor
        action_kind: Kind of action that failed, for context-specific codes

    Returns:
        ErrorInfo for the first known code found in the message
    """
    if action_kind is not None:
        for code, kind in CONTEXT_MAPPINGS.get(action_kind, {}).items():
            if code in message:
                return ErrorInfo(
                    code=code,
                    message=message,
                    kind=kind,
                    severity=ErrorSeverity.LOW,
                    expected=True,
                )

    for code, info in ERROR_MAPPINGS.items():
        if code in message:
            return info

    return ErrorInfo(
        code="unknown",
        message=f"Unknown error: {message}",
        kind=LedgerErrorKind.UNKNOWN,
        severity=ErrorSeverity.MEDIUM,
    )


class LedgerError(Exception):
    """Base exception for classified ledger/executor failures."""

    def __init__(
        self,
        message: str,
        error_info: Optional[ErrorInfo] = None,
        action_kind: Optional[ActionKind] = None,
    ):
        self.raw_message = message
        self.action_kind = action_kind
        self.error_info = error_info or classify_error(message, action_kind)

        super().__init__(f"Ledger error: {message}")

    @property
    def kind(self) -> LedgerErrorKind:
        return self.error_info.kind

    @property
    def is_expected(self) -> bool:
        """Check if this is an expected business outcome."""
        return self.error_info.expected

    @property
    def is_transient(self) -> bool:
        return self.error_info.transient


class TriggerAlreadyExecutedError(LedgerError):
    """Another actor executed the trigger order first."""
    pass


class TriggerConditionFalseError(LedgerError):
    """Price moved back before the execution landed."""
    pass


class NotLiquidatableError(LedgerError):
    """Ledger rejected a liquidation because the account recovered."""
    pass


class TransientLedgerError(LedgerError):
    """Read or submit failure expected to clear on the next cycle."""
    pass


def classify_and_raise(message: str, action_kind: Optional[ActionKind] = None) -> None:
    """
    Classify an error message and raise the matching exception type.

    Args:
        message: Error text reported by the executor
        action_kind: Kind of action that failed

    Raises:
        Appropriate LedgerError subclass
    """
    if not message:
        return

    error_info = classify_error(message, action_kind)

    if error_info.kind == LedgerErrorKind.TRIGGER_ALREADY_EXECUTED:
        raise TriggerAlreadyExecutedError(message, error_info, action_kind)
    elif error_info.kind == LedgerErrorKind.TRIGGER_CONDITION_FALSE:
        raise TriggerConditionFalseError(message, error_info, action_kind)
    elif error_info.kind == LedgerErrorKind.NOT_LIQUIDATABLE:
        raise NotLiquidatableError(message, error_info, action_kind)
    elif error_info.kind in (
        LedgerErrorKind.TIMEOUT,
        LedgerErrorKind.NETWORK,
        LedgerErrorKind.RATE_LIMIT,
    ):
        raise TransientLedgerError(message, error_info, action_kind)

    raise LedgerError(message, error_info, action_kind)


class ErrorAggregator:
    """
    Aggregates errors for monitoring and alerting.

    Tracks error patterns to detect systemic issues (e.g. a dead RPC node).
    """

    def __init__(self, window_size: int = 100):
        """
        Initialize error aggregator.

        Args:
            window_size: Number of recent errors to track
        """
        self.window_size = window_size
        self._errors: List[Dict[str, Any]] = []

    def record_error(self, error: LedgerError) -> None:
        """Record an error occurrence."""
        self._errors.append({
            "timestamp": time.time(),
            "code": error.error_info.code,
            "kind": error.kind.value,
            "severity": error.error_info.severity.name,
        })

        if len(self._errors) > self.window_size:
            self._errors = self._errors[-self.window_size:]

    def get_stats(self, time_window: float = 300.0) -> Dict[str, Any]:
        """
        Get error statistics for recent window.

        Args:
            time_window: Seconds to look back (default 5 min)

        Returns:
            Dict with error statistics
        """
        cutoff = time.time() - time_window
        recent = [e for e in self._errors if e["timestamp"] >= cutoff]

        if not recent:
            return {"total": 0, "by_kind": {}, "by_severity": {}, "rate_per_minute": 0.0}

        by_kind: Dict[str, int] = {}
        by_severity: Dict[str, int] = {}

        for error in recent:
            by_kind[error["kind"]] = by_kind.get(error["kind"], 0) + 1
            by_severity[error["severity"]] = by_severity.get(error["severity"], 0) + 1

        return {
            "total": len(recent),
            "by_kind": by_kind,
            "by_severity": by_severity,
            "rate_per_minute": len(recent) / (time_window / 60),
        }

    def should_alert(self) -> bool:
        """Check if error rate warrants an alert."""
        stats = self.get_stats(time_window=60.0)

        # More than 10 errors per minute
        if stats["rate_per_minute"] > 10:
            return True

        if stats["by_severity"].get("CRITICAL", 0) > 0:
            return True

        # Sustained network trouble
        if stats["by_kind"].get("network", 0) + stats["by_kind"].get("timeout", 0) > 5:
            return True

        return False
