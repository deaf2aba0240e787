"""
Ledger Domain Models.

Decoded views of venue state consumed by the risk engine:
- Group configuration (tokens, spot markets, perp markets, risk weights)
- Per-cycle price snapshot
- Margin accounts with token balances, perp positions and resting orders
- Trigger (advanced) orders attached to an account

Raw storage decoding lives outside this package; these types are what a
ledger reader hands back. All quantities are Decimal fixed-point values.
"""

import time
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import List, Mapping, Optional, Tuple

ZERO = Decimal("0")
ONE = Decimal("1")


class Strictness(Enum):
    """Health strictness levels."""
    MAINT = "maint"  # Decides whether an account is liquidatable
    INIT = "init"    # Bounds how much new exposure an account may take


class OrderSide(Enum):
    """Order side (buy/sell)."""
    BUY = "buy"
    SELL = "sell"


class OrderType(Enum):
    """Order types supported by the venue."""
    LIMIT = "limit"
    IOC = "ioc"
    POST_ONLY = "postOnly"
    MARKET = "market"


class TriggerCondition(Enum):
    """Price condition that activates a trigger order."""
    ABOVE = "above"
    BELOW = "below"


# ===========================================
# GROUP CONFIGURATION
# ===========================================

@dataclass(frozen=True)
class TokenInfo:
    """A token registered in the group."""
    index: int
    symbol: str
    decimals: int = 6


@dataclass(frozen=True)
class SpotMarketInfo:
    """Risk parameters of a spot market (one per non-quote token)."""
    index: int
    symbol: str
    maint_asset_weight: Decimal
    init_asset_weight: Decimal
    maint_liab_weight: Decimal
    init_liab_weight: Decimal
    liquidation_fee: Decimal = ZERO
    min_order_size: Decimal = ZERO

    def asset_weight(self, strictness: Strictness) -> Decimal:
        if strictness == Strictness.MAINT:
            return self.maint_asset_weight
        return self.init_asset_weight

    def liab_weight(self, strictness: Strictness) -> Decimal:
        if strictness == Strictness.MAINT:
            return self.maint_liab_weight
        return self.init_liab_weight


@dataclass(frozen=True)
class PerpMarketInfo:
    """Risk parameters and lot sizes of a perp market."""
    index: int
    symbol: str
    maint_asset_weight: Decimal
    init_asset_weight: Decimal
    maint_liab_weight: Decimal
    init_liab_weight: Decimal
    liquidation_fee: Decimal = ZERO
    base_lot_size: Decimal = ONE  # Base units per lot
    quote_lot_size: Decimal = ONE
    min_order_size: Decimal = ZERO

    def asset_weight(self, strictness: Strictness) -> Decimal:
        if strictness == Strictness.MAINT:
            return self.maint_asset_weight
        return self.init_asset_weight

    def liab_weight(self, strictness: Strictness) -> Decimal:
        if strictness == Strictness.MAINT:
            return self.maint_liab_weight
        return self.init_liab_weight

    def base_lots_to_number(self, lots: int) -> Decimal:
        """Convert a lot count into base units."""
        return Decimal(lots) * self.base_lot_size


@dataclass(frozen=True)
class Group:
    """
    Shared venue configuration.

    Tokens are ordered with the quote token last. spot_markets and
    perp_markets are indexed by token/market index; a missing entry
    means no market is listed at that index.
    """
    public_key: str
    tokens: Tuple[TokenInfo, ...]
    spot_markets: Tuple[Optional[SpotMarketInfo], ...] = ()
    perp_markets: Tuple[Optional[PerpMarketInfo], ...] = ()
    signer_key: str = ""

    @property
    def quote_index(self) -> int:
        """Index of the quote token (always the last token)."""
        return len(self.tokens) - 1

    @property
    def num_tokens(self) -> int:
        return len(self.tokens)

    def spot_market(self, index: int) -> Optional[SpotMarketInfo]:
        if 0 <= index < len(self.spot_markets):
            return self.spot_markets[index]
        return None

    def perp_market(self, index: int) -> Optional[PerpMarketInfo]:
        if 0 <= index < len(self.perp_markets):
            return self.perp_markets[index]
        return None

    def spot_market_indexes(self) -> List[int]:
        return [i for i, m in enumerate(self.spot_markets) if m is not None]

    def perp_market_indexes(self) -> List[int]:
        return [i for i, m in enumerate(self.perp_markets) if m is not None]

    def spot_asset_weight(self, index: int, strictness: Strictness) -> Decimal:
        """Asset weight of a token; unlisted tokens (and quote) weigh 1."""
        market = self.spot_market(index)
        return market.asset_weight(strictness) if market else ONE

    def spot_liab_weight(self, index: int, strictness: Strictness) -> Decimal:
        """Liability weight of a token; unlisted tokens (and quote) weigh 1."""
        market = self.spot_market(index)
        return market.liab_weight(strictness) if market else ONE

    def symbol(self, index: int) -> str:
        if 0 <= index < len(self.tokens):
            return self.tokens[index].symbol
        return f"#{index}"


@dataclass(frozen=True)
class PriceSnapshot:
    """
    Oracle prices and funding read once per cycle.

    Every health computation inside one decision uses the same snapshot.
    The quote token is always priced at 1.
    """
    prices: Mapping[int, Decimal]
    quote_index: int
    long_funding: Mapping[int, Decimal] = field(default_factory=dict)
    short_funding: Mapping[int, Decimal] = field(default_factory=dict)
    loaded_at: float = field(default_factory=time.time)

    def price(self, index: int) -> Decimal:
        if index == self.quote_index:
            return ONE
        return self.prices.get(index, ONE)

    def funding(self, index: int) -> Tuple[Decimal, Decimal]:
        """Get (long, short) cumulative funding for a perp market."""
        return (
            self.long_funding.get(index, ZERO),
            self.short_funding.get(index, ZERO),
        )

    @property
    def age_seconds(self) -> float:
        return time.time() - self.loaded_at


# ===========================================
# ACCOUNT STATE
# ===========================================

@dataclass
class PerpPosition:
    """An account's position in one perp market."""
    base_position: int = 0  # Lots, positive = long
    quote_position: Decimal = ZERO
    long_settled_funding: Decimal = ZERO
    short_settled_funding: Decimal = ZERO
    bids_quantity: int = 0  # Lots resting on the bid side
    asks_quantity: int = 0

    @property
    def has_open_orders(self) -> bool:
        return self.bids_quantity > 0 or self.asks_quantity > 0

    def unsettled_funding(self, long_funding: Decimal, short_funding: Decimal) -> Decimal:
        """Funding accrued since the last settlement (positive = owed)."""
        if self.base_position > 0:
            return (long_funding - self.long_settled_funding) * self.base_position
        if self.base_position < 0:
            return (short_funding - self.short_settled_funding) * self.base_position
        return ZERO

    def quote_after_funding(self, long_funding: Decimal, short_funding: Decimal) -> Decimal:
        return self.quote_position - self.unsettled_funding(long_funding, short_funding)


@dataclass
class SpotOpenOrders:
    """
    Open-orders state of an account in one spot market.

    Derived from a separate storage stream; raw account updates do
    not carry it, so it must be preserved across them.
    """
    public_key: str
    market_index: int
    base_token_free: Decimal = ZERO
    base_token_total: Decimal = ZERO
    quote_token_free: Decimal = ZERO
    quote_token_total: Decimal = ZERO
    referrer_rebates_accrued: Decimal = ZERO
    order_ids: List[str] = field(default_factory=list)

    @property
    def has_orders(self) -> bool:
        return bool(self.order_ids)

    @property
    def has_settleable_funds(self) -> bool:
        return (
            self.quote_token_total + self.referrer_rebates_accrued > 0
            or self.base_token_total > 0
        )


@dataclass
class TriggerOrder:
    """A conditional perp order stored off the main order book."""
    slot: int
    market_index: int
    condition: TriggerCondition
    trigger_price: Decimal
    side: OrderSide = OrderSide.BUY
    quantity: Decimal = ZERO
    is_active: bool = True


@dataclass
class MarginAccount:
    """
    One risk-bearing account.

    Lists are indexed by token index (deposits, borrows, in_margin_basket,
    spot_open_orders) or perp market index (perp_accounts). Accessors
    treat out-of-range indexes as empty.
    """
    public_key: str
    owner: str
    deposits: List[Decimal] = field(default_factory=list)
    borrows: List[Decimal] = field(default_factory=list)
    perp_accounts: List[PerpPosition] = field(default_factory=list)
    in_margin_basket: List[bool] = field(default_factory=list)
    spot_open_orders: List[Optional[str]] = field(default_factory=list)
    spot_open_orders_accounts: List[Optional[SpotOpenOrders]] = field(default_factory=list)
    being_liquidated: bool = False
    is_bankrupt: bool = False
    advanced_orders_key: Optional[str] = None
    trigger_orders: List[TriggerOrder] = field(default_factory=list)

    def deposit(self, index: int) -> Decimal:
        return self.deposits[index] if index < len(self.deposits) else ZERO

    def borrow(self, index: int) -> Decimal:
        return self.borrows[index] if index < len(self.borrows) else ZERO

    def net(self, index: int) -> Decimal:
        """Net deposit (deposit - borrow) of a token."""
        return self.deposit(index) - self.borrow(index)

    def perp_account(self, market_index: int) -> PerpPosition:
        if market_index < len(self.perp_accounts):
            return self.perp_accounts[market_index]
        return PerpPosition()

    def is_in_basket(self, index: int) -> bool:
        return index < len(self.in_margin_basket) and self.in_margin_basket[index]

    def open_orders(self, index: int) -> Optional[SpotOpenOrders]:
        if index < len(self.spot_open_orders_accounts):
            return self.spot_open_orders_accounts[index]
        return None

    def open_orders_index(self, open_orders_key: str) -> Optional[int]:
        """Find which spot market an open-orders reference belongs to."""
        for i, key in enumerate(self.spot_open_orders):
            if key is not None and key == open_orders_key:
                return i
        return None

    def set_open_orders(self, index: int, open_orders: SpotOpenOrders) -> None:
        while len(self.spot_open_orders_accounts) <= index:
            self.spot_open_orders_accounts.append(None)
        self.spot_open_orders_accounts[index] = open_orders

    def has_spot_orders(self) -> bool:
        """Any resting spot orders in markets of the margin basket."""
        for i, oo in enumerate(self.spot_open_orders_accounts):
            if oo is not None and self.is_in_basket(i) and oo.has_orders:
                return True
        return False

    def has_perp_orders(self) -> bool:
        return any(pa.has_open_orders for pa in self.perp_accounts)

    @property
    def has_trigger_orders(self) -> bool:
        return bool(self.advanced_orders_key)

    def active_trigger_orders(self) -> List[TriggerOrder]:
        return [o for o in self.trigger_orders if o.is_active]

