"""
Executor Actions.

Every state change the liquidator makes is expressed as one of these
immutable action values and handed to an Executor. Liability transfers
are a single variant tagged by (asset kind x liability kind) so that
one sizing function covers token/token, token/perp and perp/perp.
"""

import time
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum, auto
from typing import Optional

from .models import OrderSide, OrderType


class ActionKind(Enum):
    """Kinds of actions understood by the executor."""
    FORCE_CANCEL_SPOT_ORDERS = auto()
    FORCE_CANCEL_PERP_ORDERS = auto()
    LIQUIDATE_TOKEN_AND_TOKEN = auto()
    LIQUIDATE_TOKEN_AND_PERP = auto()
    LIQUIDATE_PERP_MARKET = auto()
    RESOLVE_TOKEN_BANKRUPTCY = auto()
    RESOLVE_PERP_BANKRUPTCY = auto()
    PLACE_SPOT_ORDER = auto()
    CANCEL_SPOT_ORDER = auto()
    PLACE_PERP_ORDER = auto()
    CANCEL_PERP_ORDER = auto()
    SETTLE_FUNDS = auto()
    SETTLE_PNL = auto()
    EXECUTE_TRIGGER_ORDER = auto()


class AssetKind(Enum):
    """Which ledger a transfer leg lives in."""
    TOKEN = "token"
    PERP = "perp"


@dataclass(frozen=True)
class LiquidationPair:
    """Asset leg and liability leg of a liability transfer."""
    asset_kind: AssetKind
    asset_index: int
    liab_kind: AssetKind
    liab_index: int

    @classmethod
    def tokens(cls, asset_index: int, liab_index: int) -> "LiquidationPair":
        return cls(AssetKind.TOKEN, asset_index, AssetKind.TOKEN, liab_index)

    @classmethod
    def token_for_perp(cls, asset_index: int, market_index: int) -> "LiquidationPair":
        """Liqee gives up a token, liqor takes the perp quote liability."""
        return cls(AssetKind.TOKEN, asset_index, AssetKind.PERP, market_index)

    @classmethod
    def perp_for_token(cls, market_index: int, liab_index: int) -> "LiquidationPair":
        """Liqee gives up perp quote, liqor takes the token liability."""
        return cls(AssetKind.PERP, market_index, AssetKind.TOKEN, liab_index)

    @classmethod
    def perp_position(cls, market_index: int) -> "LiquidationPair":
        return cls(AssetKind.PERP, market_index, AssetKind.PERP, market_index)

    @property
    def is_token_pair(self) -> bool:
        return self.asset_kind == AssetKind.TOKEN and self.liab_kind == AssetKind.TOKEN

    @property
    def is_perp_pair(self) -> bool:
        return self.asset_kind == AssetKind.PERP and self.liab_kind == AssetKind.PERP

    @property
    def token_index(self) -> Optional[int]:
        """Token leg of a mixed pair (None for pure pairs)."""
        if self.asset_kind == AssetKind.TOKEN and self.liab_kind == AssetKind.PERP:
            return self.asset_index
        if self.asset_kind == AssetKind.PERP and self.liab_kind == AssetKind.TOKEN:
            return self.liab_index
        return None

    def __str__(self) -> str:
        return (
            f"{self.asset_kind.value}[{self.asset_index}]"
            f"<-{self.liab_kind.value}[{self.liab_index}]"
        )


@dataclass(frozen=True)
class Action:
    """Base action: every action targets one margin account."""
    account: str

    @property
    def kind(self) -> ActionKind:
        raise NotImplementedError


@dataclass(frozen=True)
class ForceCancelSpotOrders(Action):
    market_index: int
    limit: int = 5

    @property
    def kind(self) -> ActionKind:
        return ActionKind.FORCE_CANCEL_SPOT_ORDERS


@dataclass(frozen=True)
class ForceCancelPerpOrders(Action):
    market_index: int
    limit: int = 10

    @property
    def kind(self) -> ActionKind:
        return ActionKind.FORCE_CANCEL_PERP_ORDERS


@dataclass(frozen=True)
class LiabilityTransfer(Action):
    """Move liabilities (and matching assets) from liqee to liqor."""
    liqor: str
    pair: LiquidationPair
    max_liab_transfer: Decimal

    @property
    def kind(self) -> ActionKind:
        if self.pair.is_token_pair:
            return ActionKind.LIQUIDATE_TOKEN_AND_TOKEN
        return ActionKind.LIQUIDATE_TOKEN_AND_PERP


@dataclass(frozen=True)
class PerpPositionTransfer(Action):
    """Take over part of a liqee's perp base position (signed lots)."""
    liqor: str
    market_index: int
    base_transfer_request: int

    @property
    def kind(self) -> ActionKind:
        return ActionKind.LIQUIDATE_PERP_MARKET


@dataclass(frozen=True)
class ResolveTokenBankruptcy(Action):
    liqor: str
    liab_index: int
    max_liab_transfer: Decimal

    @property
    def kind(self) -> ActionKind:
        return ActionKind.RESOLVE_TOKEN_BANKRUPTCY


@dataclass(frozen=True)
class ResolvePerpBankruptcy(Action):
    liqor: str
    market_index: int
    max_liab_transfer: Decimal

    @property
    def kind(self) -> ActionKind:
        return ActionKind.RESOLVE_PERP_BANKRUPTCY


@dataclass(frozen=True)
class PlaceSpotOrder(Action):
    market_index: int
    side: OrderSide
    price: Decimal
    quantity: Decimal
    order_type: OrderType = OrderType.LIMIT

    @property
    def kind(self) -> ActionKind:
        return ActionKind.PLACE_SPOT_ORDER


@dataclass(frozen=True)
class CancelSpotOrder(Action):
    market_index: int
    order_id: str

    @property
    def kind(self) -> ActionKind:
        return ActionKind.CANCEL_SPOT_ORDER


@dataclass(frozen=True)
class PlacePerpOrder(Action):
    market_index: int
    side: OrderSide
    price: Decimal
    quantity: Decimal
    order_type: OrderType = OrderType.IOC
    reduce_only: bool = False

    @property
    def kind(self) -> ActionKind:
        return ActionKind.PLACE_PERP_ORDER


@dataclass(frozen=True)
class CancelPerpOrder(Action):
    market_index: int
    order_id: str

    @property
    def kind(self) -> ActionKind:
        return ActionKind.CANCEL_PERP_ORDER


@dataclass(frozen=True)
class SettleFunds(Action):
    market_index: int

    @property
    def kind(self) -> ActionKind:
        return ActionKind.SETTLE_FUNDS


@dataclass(frozen=True)
class SettlePnl(Action):
    market_index: int

    @property
    def kind(self) -> ActionKind:
        return ActionKind.SETTLE_PNL


@dataclass(frozen=True)
class ExecuteTriggerOrder(Action):
    market_index: int
    order_slot: int

    @property
    def kind(self) -> ActionKind:
        return ActionKind.EXECUTE_TRIGGER_ORDER


@dataclass
class ActionOutcome:
    """Result of a successfully submitted action."""
    action: Action
    signature: Optional[str] = None
    submitted_at: float = field(default_factory=time.time)

    @property
    def kind(self) -> ActionKind:
        return self.action.kind
