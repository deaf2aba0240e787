"""
Portfolio Rebalancer for the operator account.

After absorbing liabilities and collateral from liquidations the
operator account drifts away from its target portfolio. The rebalancer:
- Sells token excess / buys token shortfall against per-token targets
- Flattens perp positions taken over from liquidatees
- Settles funds and realized PnL back into the quote balance

Every asset and market is attempted independently, and a whole pass is
wrapped so that a failure only ends that pass.
"""

import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum, auto
from typing import Callable, List, Sequence

from ..ledger.actions import (
    CancelPerpOrder,
    CancelSpotOrder,
    PlacePerpOrder,
    PlaceSpotOrder,
    SettleFunds,
    SettlePnl,
)
from ..ledger.interfaces import Executor, LedgerReader
from ..ledger.models import (
    ZERO,
    ONE,
    Group,
    MarginAccount,
    OrderSide,
    OrderType,
    PriceSnapshot,
)

logger = logging.getLogger(__name__)


class RebalanceReason(Enum):
    """Reasons for triggering rebalance."""

    TOKEN_IMBALANCE = auto()  # Net token balance away from target
    OPEN_POSITIONS = auto()  # Perp position or unsettled positive PnL
    MANUAL = auto()  # Operator-requested


@dataclass
class TokenDiff:
    """Distance of one token from its target."""

    index: int
    diff: Decimal  # Net balance minus target, token units
    value: Decimal  # diff x price, quote units

    @property
    def side(self) -> OrderSide:
        return OrderSide.SELL if self.value > 0 else OrderSide.BUY


@dataclass
class RebalanceDecision:
    """Decision from rebalancer."""

    should_rebalance: bool
    reasons: List[RebalanceReason] = field(default_factory=list)
    interval_met: bool = True  # False when skipped for running too soon
    details: str = ""  # Human-readable details

    @property
    def tokens_unbalanced(self) -> bool:
        return RebalanceReason.TOKEN_IMBALANCE in self.reasons

    @property
    def positions_unbalanced(self) -> bool:
        return RebalanceReason.OPEN_POSITIONS in self.reasons

    def __str__(self) -> str:
        if not self.should_rebalance:
            return f"RebalanceDecision(no rebalance: {self.details})"
        names = ",".join(r.name for r in self.reasons)
        return f"RebalanceDecision(REBALANCE: reasons={names})"


def compute_token_diffs(
    account: MarginAccount,
    group: Group,
    snapshot: PriceSnapshot,
    targets: Sequence[Decimal],
) -> List[TokenDiff]:
    """
    Diff of every spot token against its target.

    Targets are indexed like spot markets; missing targets are zero.
    """
    diffs = []
    for i in group.spot_market_indexes():
        target = targets[i] if i < len(targets) else ZERO
        diff = account.net(i) - target
        diffs.append(TokenDiff(index=i, diff=diff, value=diff * snapshot.price(i)))
    return diffs


def fee_adjusted_price(price: Decimal, fee: Decimal, side: OrderSide) -> Decimal:
    """Sell below and buy above the oracle price by the liquidation fee."""
    if side == OrderSide.SELL:
        return price * (ONE - fee)
    return price * (ONE + fee)


class PortfolioRebalancer:
    """
    Restores the operator account to its target portfolio.

    Rebalancing is gated by a minimum interval measured from the previous
    check (or construction): a call that comes too early is skipped
    regardless of how unbalanced the account is.

    Example:
        rebalancer = PortfolioRebalancer(reader, executor, group, targets)

        decision = await rebalancer.balance_account(operator_account, snapshot)
        if decision.should_rebalance:
            ...
    """

    def __init__(
        self,
        reader: LedgerReader,
        executor: Executor,
        group: Group,
        targets: Sequence[Decimal] = (),
        min_rebalance_interval: float = 10.0,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize rebalancer.

        Args:
            reader: Ledger reader for reloads and open orders
            executor: Executor for orders and settlements
            group: Group configuration
            targets: Target net balance per spot token
            min_rebalance_interval: Minimum seconds between rebalances
            clock: Time source (seconds)
        """
        self._reader = reader
        self._executor = executor
        self._group = group
        self._targets = [Decimal(t) for t in targets]
        self._min_rebalance_interval = min_rebalance_interval
        self._clock = clock

        self._last_rebalance_time: float = clock()
        self._rebalance_count = 0

    @property
    def group(self) -> Group:
        return self._group

    @group.setter
    def group(self, group: Group) -> None:
        self._group = group

    def _min_order_size(self, index: int) -> Decimal:
        market = self._group.spot_market(index)
        return market.min_order_size if market else ZERO

    def should_rebalance(
        self,
        account: MarginAccount,
        snapshot: PriceSnapshot,
    ) -> RebalanceDecision:
        """
        Determine if rebalancing is needed.

        Args:
            account: Operator account
            snapshot: Current prices

        Returns:
            RebalanceDecision with the reasons that fired
        """
        elapsed = self._clock() - self._last_rebalance_time
        if elapsed < self._min_rebalance_interval:
            return RebalanceDecision(
                should_rebalance=False,
                interval_met=False,
                details=f"Min interval not met ({elapsed:.1f}s < {self._min_rebalance_interval}s)",
            )

        reasons = []
        diffs = compute_token_diffs(account, self._group, snapshot, self._targets)
        if any(abs(d.diff) > self._min_order_size(d.index) for d in diffs):
            reasons.append(RebalanceReason.TOKEN_IMBALANCE)

        for m in self._group.perp_market_indexes():
            position = account.perp_account(m)
            if position.base_position != 0 or position.quote_position > 0:
                reasons.append(RebalanceReason.OPEN_POSITIONS)
                break

        if not reasons:
            return RebalanceDecision(should_rebalance=False, details="Portfolio on target")

        return RebalanceDecision(should_rebalance=True, reasons=reasons)

    async def balance_account(
        self,
        account: MarginAccount,
        snapshot: PriceSnapshot,
    ) -> RebalanceDecision:
        """
        Rebalance tokens and close positions if the interval has passed.

        Never raises: failures are logged and end only the current pass.
        """
        decision = self.should_rebalance(account, snapshot)
        if not decision.interval_met:
            return decision

        if decision.tokens_unbalanced:
            await self.balance_tokens(account)

        if decision.positions_unbalanced:
            await self.close_positions(account)

        self._last_rebalance_time = self._clock()
        if decision.should_rebalance:
            self.mark_rebalanced()
        return decision

    async def balance_tokens(self, account: MarginAccount) -> List[int]:
        """
        Trade every token with a diff above min order size back to target.

        Returns:
            Token indexes an order was placed for, in order of placement
        """
        placed: List[int] = []
        try:
            logger.info("Rebalancing tokens")
            account = await self._reader.load_account(account.public_key, self._group)
            snapshot = await self._reader.load_prices(self._group)

            cancelled = 0
            for i in self._group.spot_market_indexes():
                oo = account.open_orders(i)
                if oo is None:
                    continue
                for order_id in oo.order_ids:
                    try:
                        await self._executor.submit(CancelSpotOrder(account.public_key, i, order_id))
                        cancelled += 1
                    except Exception as e:
                        logger.error(f"Failed to cancel spot order {order_id}: {e}")
            logger.info(f"Cancelled {cancelled} spot orders")

            account = await self._reader.load_open_orders(account, self._group)
            settled = 0
            for i in self._group.spot_market_indexes():
                oo = account.open_orders(i)
                if oo is not None and oo.has_settleable_funds:
                    try:
                        await self._executor.submit(SettleFunds(account.public_key, i))
                        settled += 1
                    except Exception as e:
                        logger.error(f"Failed to settle funds on {self._group.symbol(i)}: {e}")
            logger.info(f"Settled on {settled} markets")

            if settled:
                account = await self._reader.load_account(account.public_key, self._group)

            diffs = compute_token_diffs(account, self._group, snapshot, self._targets)
            acted = [d for d in diffs if abs(d.diff) > self._min_order_size(d.index)]
            acted.sort(key=lambda d: abs(d.value), reverse=True)

            for d in acted:
                try:
                    await self._trade_token(account, d, snapshot)
                    placed.append(d.index)
                except Exception as e:
                    logger.error(f"Failed to rebalance {self._group.symbol(d.index)}: {e}")

        except Exception as e:
            logger.error(f"Error rebalancing tokens: {e}")

        return placed

    async def _trade_token(
        self,
        account: MarginAccount,
        d: TokenDiff,
        snapshot: PriceSnapshot,
    ) -> None:
        market = self._group.spot_market(d.index)
        fee = market.liquidation_fee if market else ZERO
        side = d.side
        price = fee_adjusted_price(snapshot.price(d.index), fee, side)
        quantity = abs(d.diff)

        logger.info(
            f"{side.value.capitalize()}ing {quantity} of {self._group.symbol(d.index)} for ${price}"
        )
        await self._executor.submit(PlaceSpotOrder(
            account=account.public_key,
            market_index=d.index,
            side=side,
            price=price,
            quantity=quantity,
            order_type=OrderType.LIMIT,
        ))
        await self._executor.submit(SettleFunds(account.public_key, d.index))

    async def close_positions(self, account: MarginAccount) -> List[int]:
        """
        Flatten every perp position and settle positive PnL.

        Returns:
            Perp market indexes that were processed without error
        """
        closed: List[int] = []
        try:
            logger.info("Closing perp positions")
            account = await self._reader.load_account(account.public_key, self._group)
            snapshot = await self._reader.load_prices(self._group)

            for m in self._group.perp_market_indexes():
                position = account.perp_account(m)
                if position.base_position == 0 and position.quote_position <= 0:
                    continue
                try:
                    account = await self._close_market(account, m, snapshot)
                    closed.append(m)
                except Exception as e:
                    logger.error(f"Failed to close perp market {m}: {e}")

        except Exception as e:
            logger.error(f"Error closing positions: {e}")

        return closed

    async def _close_market(
        self,
        account: MarginAccount,
        market_index: int,
        snapshot: PriceSnapshot,
    ) -> MarginAccount:
        market = self._group.perp_market(market_index)
        position = account.perp_account(market_index)

        for order_id in await self._reader.load_perp_orders(account, self._group, market_index):
            await self._executor.submit(CancelPerpOrder(account.public_key, market_index, order_id))

        if position.base_position != 0:
            side = OrderSide.SELL if position.base_position > 0 else OrderSide.BUY
            quantity = abs(market.base_lots_to_number(position.base_position))
            price = fee_adjusted_price(snapshot.price(market_index), market.liquidation_fee, side)

            logger.info(f"{side.value.capitalize()}ing {quantity} of {market.symbol} for ${price}")
            await self._executor.submit(PlacePerpOrder(
                account=account.public_key,
                market_index=market_index,
                side=side,
                price=price,
                quantity=quantity,
                order_type=OrderType.IOC,
                reduce_only=True,
            ))

        account = await self._reader.load_account(account.public_key, self._group)
        if account.perp_account(market_index).quote_position > 0:
            logger.info(f"Settling PnL on {market.symbol}")
            await self._executor.submit(SettlePnl(account.public_key, market_index))
        return account

    def mark_rebalanced(self) -> None:
        """Mark that a rebalance has occurred."""
        self._last_rebalance_time = self._clock()
        self._rebalance_count += 1
        logger.info(f"Rebalance #{self._rebalance_count} completed")

    @property
    def last_rebalance_time(self) -> float:
        """Get timestamp of last rebalance check."""
        return self._last_rebalance_time

    @property
    def rebalance_count(self) -> int:
        """Get total number of rebalances."""
        return self._rebalance_count

    @property
    def targets(self) -> List[Decimal]:
        return list(self._targets)

    def reset_stats(self) -> None:
        """Reset statistics."""
        self._last_rebalance_time = self._clock()
        self._rebalance_count = 0
