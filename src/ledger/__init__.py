"""
Ledger Boundary Module.

Provides:
- Domain models for groups, prices, margin accounts and trigger orders
- Action variants submitted to the executor
- Classified ledger errors
- Abstract reader, executor, change feed and decoder contracts
- Paper executor and websocket change feed
"""

from .models import (
    ZERO,
    ONE,
    Strictness,
    OrderSide,
    OrderType,
    TriggerCondition,
    TokenInfo,
    SpotMarketInfo,
    PerpMarketInfo,
    Group,
    PriceSnapshot,
    PerpPosition,
    SpotOpenOrders,
    TriggerOrder,
    MarginAccount,
)
from .actions import (
    ActionKind,
    AssetKind,
    LiquidationPair,
    Action,
    ForceCancelSpotOrders,
    ForceCancelPerpOrders,
    LiabilityTransfer,
    PerpPositionTransfer,
    ResolveTokenBankruptcy,
    ResolvePerpBankruptcy,
    PlaceSpotOrder,
    CancelSpotOrder,
    PlacePerpOrder,
    CancelPerpOrder,
    SettleFunds,
    SettlePnl,
    ExecuteTriggerOrder,
    ActionOutcome,
)
from .errors import (
    ErrorSeverity,
    LedgerErrorKind,
    ErrorInfo,
    LedgerError,
    TriggerAlreadyExecutedError,
    TriggerConditionFalseError,
    NotLiquidatableError,
    TransientLedgerError,
    classify_error,
    classify_and_raise,
    ErrorAggregator,
)
from .interfaces import (
    LedgerReader,
    Executor,
    ChangeFeed,
    AccountDecoder,
    LedgerAdapter,
    load_adapter,
)
from .paper import PaperExecutor
from .feed import ProgramChangeFeed, FeedConfig, FeedState

__all__ = [
    # Models
    "ZERO",
    "ONE",
    "Strictness",
    "OrderSide",
    "OrderType",
    "TriggerCondition",
    "TokenInfo",
    "SpotMarketInfo",
    "PerpMarketInfo",
    "Group",
    "PriceSnapshot",
    "PerpPosition",
    "SpotOpenOrders",
    "TriggerOrder",
    "MarginAccount",
    # Actions
    "ActionKind",
    "AssetKind",
    "LiquidationPair",
    "Action",
    "ForceCancelSpotOrders",
    "ForceCancelPerpOrders",
    "LiabilityTransfer",
    "PerpPositionTransfer",
    "ResolveTokenBankruptcy",
    "ResolvePerpBankruptcy",
    "PlaceSpotOrder",
    "CancelSpotOrder",
    "PlacePerpOrder",
    "CancelPerpOrder",
    "SettleFunds",
    "SettlePnl",
    "ExecuteTriggerOrder",
    "ActionOutcome",
    # Errors
    "ErrorSeverity",
    "LedgerErrorKind",
    "ErrorInfo",
    "LedgerError",
    "TriggerAlreadyExecutedError",
    "TriggerConditionFalseError",
    "NotLiquidatableError",
    "TransientLedgerError",
    "classify_error",
    "classify_and_raise",
    "ErrorAggregator",
    # Collaborators
    "LedgerReader",
    "Executor",
    "ChangeFeed",
    "AccountDecoder",
    "LedgerAdapter",
    "load_adapter",
    "PaperExecutor",
    "ProgramChangeFeed",
    "FeedConfig",
    "FeedState",
]
