"""
Liquidation Module.

Provides:
- Liquidation leg selection and transfer sizing
- Bankruptcy resolution for token and perp legs
- The per-account liquidation state machine
- Trigger order execution
"""

from .errors import (
    LiquidationError,
    AccountNoLongerLiquidatable,
    LiquidationAbortedError,
    LiquidationInvariantError,
)
from .selector import (
    SpotLegs,
    select_spot_legs,
    resolve_asset_leg,
    should_liquidate_spot,
    largest_deposit_index,
    lowest_health_perp_market,
    highest_health_perp_market,
    size_transfer,
)
from .bankruptcy import BankruptcyResolver
from .liquidator import Liquidator, LiquidationReport
from .triggers import TriggerOrderExecutor, TriggerRunResult, should_trigger

__all__ = [
    # Errors
    "LiquidationError",
    "AccountNoLongerLiquidatable",
    "LiquidationAbortedError",
    "LiquidationInvariantError",
    # Selector
    "SpotLegs",
    "select_spot_legs",
    "resolve_asset_leg",
    "should_liquidate_spot",
    "largest_deposit_index",
    "lowest_health_perp_market",
    "highest_health_perp_market",
    "size_transfer",
    # Resolution
    "BankruptcyResolver",
    "Liquidator",
    "LiquidationReport",
    # Triggers
    "TriggerOrderExecutor",
    "TriggerRunResult",
    "should_trigger",
]
