"""
Liquidation Target Selector.

Chooses the legs of a liability transfer and sizes it against the
liquidator's own init health:
- Spot legs: most negative and most positive quote-valued net deposit
- Perp legs: lowest (or highest) per-market maintenance health
- One sizing function for every (asset kind x liability kind) pair

Transfer sizes never exceed what the liquidator can absorb; a liquidatee
with a larger liability is worked down over several cycles.
"""

import logging
from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal
from typing import List, Optional, Union

from ..ledger.actions import LiquidationPair
from ..ledger.models import ZERO, ONE, Group, MarginAccount, PriceSnapshot, Strictness
from ..risk.health import perp_market_health

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SpotLegs:
    """Selected spot legs with their quote-valued nets."""
    liab_index: Optional[int]
    liab_value: Decimal
    asset_index: Optional[int]
    asset_value: Decimal
    asset_substituted: bool = False

    @property
    def has_liability(self) -> bool:
        return self.liab_index is not None

    @property
    def needs_perp_fallback(self) -> bool:
        """No usable token asset leg: transfer against a perp market instead."""
        return self.asset_index is None or self.asset_value < 0


def resolve_asset_leg(liab_index: Optional[int], asset_index: Optional[int], quote_index: int) -> Optional[int]:
    """Substitute the quote token when both legs landed on the same index."""
    if liab_index is not None and liab_index == asset_index:
        return quote_index
    return asset_index


def select_spot_legs(net_values: List[Decimal], quote_index: int) -> SpotLegs:
    """
    Pick the liability leg (minimum) and asset leg (maximum) of net values.

    Both scans start from zero, so only strictly negative values become
    the liability leg and only strictly positive values the asset leg.
    An index is considered for the asset leg only when it did not set a
    new minimum. Ties keep the first index. The substituted quote leg is
    not re-validated; its value stays what the scan recorded.
    """
    min_net, min_index = ZERO, None
    max_net, max_index = ZERO, None

    for i, value in enumerate(net_values):
        if value < min_net:
            min_net, min_index = value, i
        elif value > max_net:
            max_net, max_index = value, i

    asset_index = resolve_asset_leg(min_index, max_index, quote_index)
    return SpotLegs(
        liab_index=min_index,
        liab_value=min_net,
        asset_index=asset_index,
        asset_value=max_net,
        asset_substituted=asset_index != max_index,
    )


def should_liquidate_spot(account: MarginAccount, group: Group) -> bool:
    """Any token with a negative net deposit."""
    return any(account.net(i) < 0 for i in range(group.num_tokens))


def largest_deposit_index(account: MarginAccount, group: Group, snapshot: PriceSnapshot) -> int:
    """Token with the largest positive quote-valued net; quote if none."""
    max_net = ZERO
    max_index = group.quote_index
    for i in range(group.num_tokens):
        value = account.net(i) * snapshot.price(i)
        if value > max_net:
            max_net, max_index = value, i
    return max_index


def lowest_health_perp_market(
    account: MarginAccount,
    group: Group,
    snapshot: PriceSnapshot,
) -> Optional[int]:
    """Perp market with the most negative maintenance contribution."""
    best_index = None
    best_health = None
    for m in group.perp_market_indexes():
        market_health = perp_market_health(account, group, snapshot, m, Strictness.MAINT)
        if best_health is None or market_health < best_health:
            best_index, best_health = m, market_health
    return best_index


def highest_health_perp_market(
    account: MarginAccount,
    group: Group,
    snapshot: PriceSnapshot,
) -> Optional[int]:
    """Perp market with the largest maintenance contribution."""
    best_index = None
    best_health = None
    for m in group.perp_market_indexes():
        market_health = perp_market_health(account, group, snapshot, m, Strictness.MAINT)
        if best_health is None or market_health > best_health:
            best_index, best_health = m, market_health
    return best_index


# ===========================================
# SIZING
# ===========================================

def _floor(value: Decimal) -> Decimal:
    return value.to_integral_value(rounding=ROUND_FLOOR)


def _size_token_pair(
    pair: LiquidationPair,
    group: Group,
    snapshot: PriceSnapshot,
    capacity: Decimal,
    safety_factor: Decimal,
) -> Decimal:
    liab_weight = group.spot_liab_weight(pair.liab_index, Strictness.INIT)
    asset_weight = group.spot_asset_weight(pair.asset_index, Strictness.INIT)
    spread = abs(liab_weight - asset_weight)
    if spread == 0:
        return capacity * safety_factor

    price = snapshot.price(pair.liab_index)
    if price <= 0:
        raise ValueError(f"No usable price for token {pair.liab_index}: {price}")

    return capacity / (price * spread) * safety_factor


def _size_mixed_pair(
    pair: LiquidationPair,
    group: Group,
    capacity: Decimal,
    safety_factor: Decimal,
    collateral_index: Optional[int],
) -> Decimal:
    index = collateral_index if collateral_index is not None else pair.token_index
    if index is None or index == group.quote_index:
        return capacity * safety_factor

    asset_weight = group.spot_asset_weight(index, Strictness.INIT)
    if asset_weight >= ONE:
        return capacity * safety_factor

    return capacity / (ONE - asset_weight) * safety_factor


def _size_perp_position(
    pair: LiquidationPair,
    group: Group,
    snapshot: PriceSnapshot,
    capacity: Decimal,
    safety_factor: Decimal,
    base_position: int,
) -> int:
    market = group.perp_market(pair.asset_index)
    if market is None:
        raise ValueError(f"Unknown perp market {pair.asset_index}")

    price = snapshot.price(pair.asset_index)
    if price <= 0:
        raise ValueError(f"No usable price for perp market {pair.asset_index}: {price}")

    if base_position >= 0:
        divisor = ONE - market.init_asset_weight
    else:
        divisor = market.init_liab_weight - ONE
    if divisor <= 0:
        raise ValueError(f"Perp market {pair.asset_index} weights leave no transfer room")

    lots = _floor(capacity / divisor / price / market.base_lot_size)
    request = int(lots * safety_factor)
    return request if base_position >= 0 else -request


def size_transfer(
    pair: LiquidationPair,
    group: Group,
    snapshot: PriceSnapshot,
    liqor_init_health: Decimal,
    safety_factor: Decimal,
    base_position: int = 0,
    collateral_index: Optional[int] = None,
) -> Union[Decimal, int]:
    """
    Maximum transfer the liquidator can absorb for a pair.

    Args:
        pair: Asset and liability legs
        group: Group configuration
        snapshot: Prices of this decision
        liqor_init_health: Liquidator's init health
        safety_factor: Fraction in (0, 1] absorbing price and fee slippage
        base_position: Liquidatee base lots (perp position pairs only)
        collateral_index: Token whose weight bounds a mixed transfer;
            defaults to the pair's token leg

    Returns:
        Liability amount for token pairs, signed base lots for a perp
        position pair. Zero when the liquidator has no spare health.

    Raises:
        ValueError: a zero price or weights that leave no room
    """
    if liqor_init_health <= 0:
        return 0 if pair.is_perp_pair else ZERO

    if pair.is_token_pair:
        return _size_token_pair(pair, group, snapshot, liqor_init_health, safety_factor)
    if pair.is_perp_pair:
        return _size_perp_position(
            pair, group, snapshot, liqor_init_health, safety_factor, base_position
        )
    return _size_mixed_pair(pair, group, liqor_init_health, safety_factor, collateral_index)
