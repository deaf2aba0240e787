"""
Health Evaluator.

Pure functions from (account, group, price snapshot, strictness) to
weighted health. Maintenance strictness decides whether an account is
liquidatable; init strictness bounds how much a liquidator may absorb.

Contributions are quote-valued:
- Spot token i: (net_i + open-orders base) x price_i x weight, asset
  weight when positive, liability weight when negative
- Perp market m: base position x price x weight by sign, plus quote
  position net of unsettled funding. Resting bids/asks are evaluated
  as if fully filled and the worse side is taken.
- Quote: quote net plus open-orders quote and referrer rebates
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Tuple

from ..ledger.models import (
    ZERO,
    Group,
    MarginAccount,
    PerpMarketInfo,
    PerpPosition,
    PriceSnapshot,
    Strictness,
)


@dataclass
class HealthComponents:
    """Per-asset health contributions at one strictness."""
    strictness: Strictness
    spot: Dict[int, Decimal] = field(default_factory=dict)
    perps: Dict[int, Decimal] = field(default_factory=dict)
    quote: Decimal = ZERO

    @property
    def spot_total(self) -> Decimal:
        return sum(self.spot.values(), ZERO)

    @property
    def perp_total(self) -> Decimal:
        return sum(self.perps.values(), ZERO)

    @property
    def total(self) -> Decimal:
        return self.quote + self.spot_total + self.perp_total

    @property
    def spot_health(self) -> Decimal:
        """Token health: quote plus spot contributions."""
        return self.quote + self.spot_total

    @property
    def perp_health(self) -> Decimal:
        """Derivative health: quote plus perp contributions."""
        return self.quote + self.perp_total

    def assets_and_liabs(self) -> Tuple[Decimal, Decimal]:
        """Split contributions into weighted assets and (positive) liabilities."""
        assets = ZERO
        liabs = ZERO
        for value in [self.quote, *self.spot.values(), *self.perps.values()]:
            if value > 0:
                assets += value
            else:
                liabs -= value
        return assets, liabs


def _spot_base(account: MarginAccount, index: int) -> Decimal:
    oo = account.open_orders(index)
    base = account.net(index)
    if oo is not None and account.is_in_basket(index):
        base += oo.base_token_total
    return base


def _quote_balance(account: MarginAccount, group: Group) -> Decimal:
    quote = account.net(group.quote_index)
    for i in group.spot_market_indexes():
        oo = account.open_orders(i)
        if oo is not None and account.is_in_basket(i):
            quote += oo.quote_token_total + oo.referrer_rebates_accrued
    return quote


def _weighted_base(
    lots: int,
    market: PerpMarketInfo,
    price: Decimal,
    strictness: Strictness,
) -> Decimal:
    value = market.base_lots_to_number(lots) * price
    if lots > 0:
        return value * market.asset_weight(strictness)
    return value * market.liab_weight(strictness)


def perp_position_health(
    position: PerpPosition,
    market: PerpMarketInfo,
    price: Decimal,
    long_funding: Decimal,
    short_funding: Decimal,
    strictness: Strictness,
) -> Decimal:
    """Weighted health of one perp position, worst case over resting orders."""
    quote = position.quote_after_funding(long_funding, short_funding)

    if not position.has_open_orders:
        return _weighted_base(position.base_position, market, price, strictness) + quote

    bids_base = position.base_position + position.bids_quantity
    bids_quote = quote - market.base_lots_to_number(position.bids_quantity) * price
    asks_base = position.base_position - position.asks_quantity
    asks_quote = quote + market.base_lots_to_number(position.asks_quantity) * price

    return min(
        _weighted_base(bids_base, market, price, strictness) + bids_quote,
        _weighted_base(asks_base, market, price, strictness) + asks_quote,
    )


def evaluate(
    account: MarginAccount,
    group: Group,
    snapshot: PriceSnapshot,
    strictness: Strictness,
) -> HealthComponents:
    """Compute health components of an account."""
    components = HealthComponents(strictness=strictness)

    for i in range(group.num_tokens):
        if i == group.quote_index:
            continue
        base = _spot_base(account, i)
        if base == 0:
            continue
        weight = (
            group.spot_asset_weight(i, strictness) if base > 0
            else group.spot_liab_weight(i, strictness)
        )
        components.spot[i] = base * snapshot.price(i) * weight

    for m in group.perp_market_indexes():
        position = account.perp_account(m)
        long_funding, short_funding = snapshot.funding(m)
        contribution = perp_position_health(
            position,
            group.perp_market(m),
            snapshot.price(m),
            long_funding,
            short_funding,
            strictness,
        )
        if contribution != 0:
            components.perps[m] = contribution

    components.quote = _quote_balance(account, group)
    return components


def health(
    account: MarginAccount,
    group: Group,
    snapshot: PriceSnapshot,
    strictness: Strictness,
) -> Decimal:
    """Aggregate weighted health."""
    return evaluate(account, group, snapshot, strictness).total


def health_ratio(
    account: MarginAccount,
    group: Group,
    snapshot: PriceSnapshot,
    strictness: Strictness = Strictness.MAINT,
) -> Decimal:
    """
    Health ratio in percent: (assets - liabs) / liabs x 100.

    Returns 100 when the account has no liabilities.
    """
    assets, liabs = evaluate(account, group, snapshot, strictness).assets_and_liabs()
    if liabs > 0:
        return (assets - liabs) / liabs * 100
    return Decimal("100")


def perp_market_health(
    account: MarginAccount,
    group: Group,
    snapshot: PriceSnapshot,
    market_index: int,
    strictness: Strictness = Strictness.MAINT,
) -> Decimal:
    """Health contribution of a single perp market."""
    market = group.perp_market(market_index)
    if market is None:
        return ZERO
    long_funding, short_funding = snapshot.funding(market_index)
    return perp_position_health(
        account.perp_account(market_index),
        market,
        snapshot.price(market_index),
        long_funding,
        short_funding,
        strictness,
    )


def token_net_values(
    account: MarginAccount,
    group: Group,
    snapshot: PriceSnapshot,
) -> List[Decimal]:
    """Quote-valued net deposit of every token (open orders excluded)."""
    return [account.net(i) * snapshot.price(i) for i in range(group.num_tokens)]


def compute_equity(
    account: MarginAccount,
    group: Group,
    snapshot: PriceSnapshot,
) -> Decimal:
    """Unweighted value of all assets minus all liabilities."""
    equity = _quote_balance(account, group)

    for i in range(group.num_tokens):
        if i != group.quote_index:
            equity += _spot_base(account, i) * snapshot.price(i)

    for m in group.perp_market_indexes():
        position = account.perp_account(m)
        long_funding, short_funding = snapshot.funding(m)
        market = group.perp_market(m)
        equity += market.base_lots_to_number(position.base_position) * snapshot.price(m)
        equity += position.quote_after_funding(long_funding, short_funding)

    return equity


def has_collateral(
    account: MarginAccount,
    group: Group,
    snapshot: PriceSnapshot,
) -> bool:
    """Whether anything remains that a liquidator could take over."""
    if _quote_balance(account, group) > 0:
        return True

    for i in range(group.num_tokens):
        if i != group.quote_index and _spot_base(account, i) > 0:
            return True

    for m in group.perp_market_indexes():
        position = account.perp_account(m)
        long_funding, short_funding = snapshot.funding(m)
        if position.base_position != 0:
            return True
        if position.quote_after_funding(long_funding, short_funding) > 0:
            return True

    return False


def is_liquidatable(
    account: MarginAccount,
    group: Group,
    snapshot: PriceSnapshot,
) -> bool:
    """
    Maintenance health below zero.

    An account already flagged as being liquidated stays liquidatable
    until its init health recovers.
    """
    if health(account, group, snapshot, Strictness.MAINT) < 0:
        return True
    return account.being_liquidated and health(account, group, snapshot, Strictness.INIT) < 0


def is_bankrupt(
    account: MarginAccount,
    group: Group,
    snapshot: PriceSnapshot,
) -> bool:
    """Negative equity with no collateral left (or flagged by the ledger)."""
    if account.is_bankrupt:
        return True
    return (
        compute_equity(account, group, snapshot) < 0
        and not has_collateral(account, group, snapshot)
    )
