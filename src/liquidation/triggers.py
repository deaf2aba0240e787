"""
Trigger Order Executor.

Fires conditional perp orders whose oracle price crossed the trigger
price. The ledger deactivates an order exactly once, when it executes;
this module never flips the flag locally. Losing a race to another
executor, or the price moving back before the execution lands, are
expected outcomes and are skipped until the next cycle.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal

from ..ledger.actions import ExecuteTriggerOrder
from ..ledger.errors import LedgerError, LedgerErrorKind
from ..ledger.interfaces import Executor
from ..ledger.models import MarginAccount, PriceSnapshot, TriggerCondition, TriggerOrder

logger = logging.getLogger(__name__)


def should_trigger(order: TriggerOrder, price: Decimal) -> bool:
    """Above fires when price > trigger, below when price < trigger."""
    if order.condition == TriggerCondition.ABOVE:
        return price > order.trigger_price
    return price < order.trigger_price


@dataclass
class TriggerRunResult:
    """Counts of one account's trigger pass."""
    executed: int = 0
    skipped: int = 0
    failed: int = 0

    def __add__(self, other: "TriggerRunResult") -> "TriggerRunResult":
        return TriggerRunResult(
            executed=self.executed + other.executed,
            skipped=self.skipped + other.skipped,
            failed=self.failed + other.failed,
        )


class TriggerOrderExecutor:
    """Evaluates and executes an account's trigger orders."""

    EXPECTED_KINDS = (
        LedgerErrorKind.TRIGGER_ALREADY_EXECUTED,
        LedgerErrorKind.TRIGGER_CONDITION_FALSE,
    )

    def __init__(self, executor: Executor):
        self._executor = executor

    async def process_account(
        self,
        account: MarginAccount,
        snapshot: PriceSnapshot,
    ) -> TriggerRunResult:
        """
        Execute every active trigger order whose condition holds.

        A failing order never prevents the remaining orders from being tried.
        """
        result = TriggerRunResult()

        for order in account.active_trigger_orders():
            price = snapshot.price(order.market_index)
            if not should_trigger(order, price):
                continue

            logger.info(
                f"Executing trigger order {order.slot} for account {account.public_key} "
                f"({order.condition.value} {order.trigger_price}, price {price})"
            )
            try:
                await self._executor.submit(ExecuteTriggerOrder(
                    account=account.public_key,
                    market_index=order.market_index,
                    order_slot=order.slot,
                ))
                result.executed += 1

            except LedgerError as e:
                if e.kind in self.EXPECTED_KINDS:
                    logger.info(
                        f"Skipped trigger order {order.slot} on {account.public_key}: "
                        f"{e.kind.value}"
                    )
                    result.skipped += 1
                else:
                    logger.error(
                        f"Failed to execute trigger order {order.slot} "
                        f"for {account.public_key}: {e}"
                    )
                    result.failed += 1

            except Exception as e:
                logger.error(
                    f"Failed to execute trigger order {order.slot} "
                    f"for {account.public_key}: {e}"
                )
                result.failed += 1

        return result
