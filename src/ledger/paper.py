"""
Paper Executor.

Records actions instead of submitting them. Used for dry runs (--paper)
and as the executor in tests. Failures can be scripted per action kind
with raw ledger messages, which are classified exactly like real ones.
"""

import logging
import uuid
from collections import defaultdict, deque
from typing import Deque, Dict, List, Optional

from .actions import Action, ActionKind, ActionOutcome
from .errors import classify_and_raise
from .interfaces import Executor

logger = logging.getLogger(__name__)


class PaperExecutor(Executor):
    """Executor that validates nothing and executes nothing."""

    def __init__(self, payer: str = "paper-payer", wrapped: Optional[Executor] = None):
        """
        Initialize paper executor.

        Args:
            payer: Wallet reported as payer
            wrapped: Real executor whose payer identity is kept
        """
        self._payer = wrapped.payer if wrapped is not None else payer
        self.submitted: List[Action] = []
        self._scripted_failures: Dict[ActionKind, Deque[str]] = defaultdict(deque)

    @property
    def payer(self) -> str:
        return self._payer

    def fail_next(self, kind: ActionKind, message: str) -> None:
        """Make the next submission of this kind fail with a raw ledger message."""
        self._scripted_failures[kind].append(message)

    async def submit(self, action: Action) -> ActionOutcome:
        failures = self._scripted_failures.get(action.kind)
        if failures:
            message = failures.popleft()
            logger.debug(f"Paper executor: scripted failure for {action.kind.name}: {message}")
            classify_and_raise(message, action.kind)

        self.submitted.append(action)
        signature = f"PAPER-{uuid.uuid4().hex[:12].upper()}"
        logger.info(f"Paper action {action.kind.name} on {action.account[:8]}: {signature}")
        return ActionOutcome(action=action, signature=signature)

    def submitted_of(self, kind: ActionKind) -> List[Action]:
        """Get recorded actions of one kind, in submission order."""
        return [a for a in self.submitted if a.kind == kind]

    def clear(self) -> None:
        self.submitted.clear()
        self._scripted_failures.clear()
