"""
Account Liquidator.

Drives one confirmed-liquidatable account through the liquidation state
machine:

1. Force-cancel resting perp orders, reload, reconfirm
2. Force-cancel resting spot orders in basket markets (bounded passes),
   reload, reconfirm
3. Spot flow when any token net is negative: token/token transfer, or
   a perp/token transfer when no token asset leg exists; bankrupt
   accounts go to the resolver instead
4. Stop if the account recovered
5. Perp flow on the worst perp market: bankruptcy resolution, a base
   position transfer, or a token/perp transfer for negative pure quote
6. Clear the being-liquidated flag with a no-op perp force-cancel

Every transfer is sized by the liquidator's own init health times the
safety factor, so one pass never overloads the liquidator.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional, Union

from ..ledger.actions import (
    Action,
    ActionKind,
    ForceCancelPerpOrders,
    ForceCancelSpotOrders,
    LiabilityTransfer,
    LiquidationPair,
    PerpPositionTransfer,
)
from ..ledger.interfaces import Executor, LedgerReader
from ..ledger.models import Group, MarginAccount, PriceSnapshot, Strictness
from ..risk.health import evaluate, health, is_bankrupt, is_liquidatable, perp_market_health, token_net_values
from .bankruptcy import BankruptcyResolver
from .errors import AccountNoLongerLiquidatable, LiquidationAbortedError, LiquidationInvariantError
from .selector import (
    largest_deposit_index,
    lowest_health_perp_market,
    select_spot_legs,
    should_liquidate_spot,
    size_transfer,
)

logger = logging.getLogger(__name__)


@dataclass
class LiquidationReport:
    """What one liquidation attempt did."""
    account: str
    actions: List[ActionKind] = field(default_factory=list)
    cancel_passes: int = 0
    spot_liquidated: bool = False
    perp_liquidated: bool = False
    bankruptcies_resolved: int = 0
    recovered_after_spot: bool = False
    flag_cleared: bool = False
    final_state: Optional[MarginAccount] = None

    @property
    def transfers(self) -> int:
        return sum(
            1 for kind in self.actions
            if kind in (
                ActionKind.LIQUIDATE_TOKEN_AND_TOKEN,
                ActionKind.LIQUIDATE_TOKEN_AND_PERP,
                ActionKind.LIQUIDATE_PERP_MARKET,
            )
        )


class Liquidator:
    """
    Liquidates accounts one at a time on behalf of the operator account.

    No two actions for the same liquidatee are in flight at once: every
    step awaits its submission and a reload before the next decision.
    """

    def __init__(
        self,
        reader: LedgerReader,
        executor: Executor,
        group: Group,
        safety_factor: Decimal = Decimal("0.9"),
        max_cancel_passes: int = 5,
        perp_cancel_limit: int = 10,
        spot_cancel_limit: int = 5,
    ):
        self._reader = reader
        self._executor = executor
        self._group = group
        self._safety_factor = safety_factor
        self._max_cancel_passes = max_cancel_passes
        self._perp_cancel_limit = perp_cancel_limit
        self._spot_cancel_limit = spot_cancel_limit
        self._resolver = BankruptcyResolver(reader, executor, group, safety_factor)

    @property
    def group(self) -> Group:
        return self._group

    @group.setter
    def group(self, group: Group) -> None:
        self._group = group
        self._resolver = BankruptcyResolver(self._reader, self._executor, group, self._safety_factor)

    async def _submit(self, action: Action, report: LiquidationReport) -> None:
        logger.info(f"{action.kind.name} on {action.account}")
        await self._executor.submit(action)
        report.actions.append(action.kind)

    async def _reload(self, account: MarginAccount) -> MarginAccount:
        return await self._reader.load_account(account.public_key, self._group)

    async def _reload_and_confirm(
        self,
        account: MarginAccount,
        snapshot: PriceSnapshot,
    ) -> MarginAccount:
        account = await self._reload(account)
        if not is_liquidatable(account, self._group, snapshot):
            raise AccountNoLongerLiquidatable(account.public_key)
        return account

    def _size(
        self,
        liqee: MarginAccount,
        pair: LiquidationPair,
        snapshot: PriceSnapshot,
        capacity: Decimal,
        base_position: int = 0,
        collateral_index: Optional[int] = None,
    ) -> Union[Decimal, int]:
        try:
            amount = size_transfer(
                pair,
                self._group,
                snapshot,
                capacity,
                self._safety_factor,
                base_position=base_position,
                collateral_index=collateral_index,
            )
        except ValueError as e:
            raise LiquidationInvariantError(liqee.public_key, f"cannot size {pair}: {e}") from e

        if amount == 0 or (amount < 0) != (base_position < 0):
            raise LiquidationAbortedError(
                liqee.public_key,
                f"no transfer capacity for {pair} (liqor init health {capacity})",
            )
        return amount

    # ==========================================
    # ENTRY POINT
    # ==========================================

    async def liquidate_account(
        self,
        liqee: MarginAccount,
        liqor: MarginAccount,
        snapshot: PriceSnapshot,
    ) -> LiquidationReport:
        """
        Run one liquidation attempt.

        Raises:
            AccountNoLongerLiquidatable: account recovered during order cancellation
            LiquidationAbortedError: no progress possible on current state
            LiquidationInvariantError: state contradicts a required step
            LedgerError: classified executor/reader failure
        """
        report = LiquidationReport(account=liqee.public_key)

        if liqee.has_perp_orders():
            for m in self._group.perp_market_indexes():
                await self._submit(
                    ForceCancelPerpOrders(liqee.public_key, m, self._perp_cancel_limit), report
                )
            liqee = await self._reload_and_confirm(liqee, snapshot)

        liqee = await self._cancel_spot_orders(liqee, snapshot, report)

        maint = evaluate(liqee, self._group, snapshot, Strictness.MAINT)
        spot_needed = should_liquidate_spot(liqee, self._group)

        if spot_needed:
            liqee = await self._liquidate_spot(liqee, liqor, snapshot, report)
            report.spot_liquidated = True
            if not is_liquidatable(liqee, self._group, snapshot):
                logger.info(f"{liqee.public_key} healthy after spot liquidation")
                report.recovered_after_spot = True
                report.final_state = liqee
                return report

        liqee = await self._liquidate_perps(liqee, liqor, snapshot, report)

        markets = self._group.perp_market_indexes()
        if not spot_needed and maint.perp_health >= 0 and liqee.being_liquidated and markets:
            logger.info(f"Clearing being-liquidated flag on {liqee.public_key}")
            await self._submit(
                ForceCancelPerpOrders(liqee.public_key, markets[0], self._perp_cancel_limit), report
            )
            report.flag_cleared = True

        report.final_state = liqee
        return report

    async def _cancel_spot_orders(
        self,
        liqee: MarginAccount,
        snapshot: PriceSnapshot,
        report: LiquidationReport,
    ) -> MarginAccount:
        """Force-cancel spot orders until none remain, up to the pass limit."""
        while liqee.has_spot_orders() and report.cancel_passes < self._max_cancel_passes:
            for i in self._group.spot_market_indexes():
                if liqee.is_in_basket(i):
                    await self._submit(
                        ForceCancelSpotOrders(liqee.public_key, i, self._spot_cancel_limit), report
                    )
            report.cancel_passes += 1
            liqee = await self._reload_and_confirm(liqee, snapshot)

        if liqee.has_spot_orders():
            raise LiquidationAbortedError(
                liqee.public_key,
                f"spot orders still open after {report.cancel_passes} cancel passes",
            )
        return liqee

    # ==========================================
    # SPOT FLOW
    # ==========================================

    async def _liquidate_spot(
        self,
        liqee: MarginAccount,
        liqor: MarginAccount,
        snapshot: PriceSnapshot,
        report: LiquidationReport,
    ) -> MarginAccount:
        """Transfer or resolve the worst token leg; returns the liqee as last reloaded."""
        legs = select_spot_legs(
            token_net_values(liqee, self._group, snapshot), self._group.quote_index
        )
        if not legs.has_liability:
            raise LiquidationInvariantError(liqee.public_key, "no negative token leg to liquidate")

        if is_bankrupt(liqee, self._group, snapshot):
            logger.info(f"Bankrupt account {liqee.public_key}")
            resolved, liqee = await self._resolver.resolve_token(liqee, liqor, legs.liab_index, snapshot)
            if resolved:
                report.bankruptcies_resolved += 1
                report.actions.append(ActionKind.RESOLVE_TOKEN_BANKRUPTCY)
            return liqee

        capacity = health(liqor, self._group, snapshot, Strictness.INIT)

        if legs.needs_perp_fallback:
            market = lowest_health_perp_market(liqee, self._group, snapshot)
            if market is None:
                raise LiquidationInvariantError(
                    liqee.public_key, "no token asset leg and no perp market to fall back on"
                )
            pair = LiquidationPair.perp_for_token(market, legs.liab_index)
            collateral = legs.asset_index if legs.asset_index is not None else self._group.quote_index
            amount = self._size(liqee, pair, snapshot, capacity, collateral_index=collateral)
        else:
            pair = LiquidationPair.tokens(legs.asset_index, legs.liab_index)
            amount = self._size(liqee, pair, snapshot, capacity)

        await self._submit(
            LiabilityTransfer(liqee.public_key, liqor.public_key, pair, amount), report
        )

        liqee = await self._reload(liqee)
        if is_bankrupt(liqee, self._group, snapshot):
            logger.info(f"Bankrupt account {liqee.public_key} after transfer")
            resolved, liqee = await self._resolver.resolve_token(liqee, liqor, legs.liab_index, snapshot)
            if resolved:
                report.bankruptcies_resolved += 1
                report.actions.append(ActionKind.RESOLVE_TOKEN_BANKRUPTCY)
        return liqee

    # ==========================================
    # PERP FLOW
    # ==========================================

    async def _liquidate_perps(
        self,
        liqee: MarginAccount,
        liqor: MarginAccount,
        snapshot: PriceSnapshot,
        report: LiquidationReport,
    ) -> MarginAccount:
        market = lowest_health_perp_market(liqee, self._group, snapshot)
        if market is None:
            logger.debug(f"No perp markets listed, skipping perp flow for {liqee.public_key}")
            return liqee

        if is_bankrupt(liqee, self._group, snapshot):
            resolved, liqee = await self._resolver.resolve_perp(liqee, liqor, market, snapshot)
            if resolved:
                report.bankruptcies_resolved += 1
                report.actions.append(ActionKind.RESOLVE_PERP_BANKRUPTCY)
            return liqee

        capacity = health(liqor, self._group, snapshot, Strictness.INIT)
        position = liqee.perp_account(market)

        if position.base_position == 0:
            # Without base only a negative quote position is left to take over
            if perp_market_health(liqee, self._group, snapshot, market) >= 0:
                logger.debug(f"No perp liability to transfer on {liqee.public_key} market {market}")
                return liqee
            collateral = largest_deposit_index(liqee, self._group, snapshot)
            pair = LiquidationPair.token_for_perp(collateral, market)
            amount = self._size(liqee, pair, snapshot, capacity, collateral_index=collateral)
            await self._submit(
                LiabilityTransfer(liqee.public_key, liqor.public_key, pair, amount), report
            )
        else:
            lots = self._size(
                liqee,
                LiquidationPair.perp_position(market),
                snapshot,
                capacity,
                base_position=position.base_position,
            )
            await self._submit(
                PerpPositionTransfer(liqee.public_key, liqor.public_key, market, lots), report
            )
        report.perp_liquidated = True

        liqee = await self._reload(liqee)
        if is_bankrupt(liqee, self._group, snapshot):
            resolved, liqee = await self._resolver.resolve_perp(liqee, liqor, market, snapshot)
            if resolved:
                report.bankruptcies_resolved += 1
                report.actions.append(ActionKind.RESOLVE_PERP_BANKRUPTCY)
        return liqee
