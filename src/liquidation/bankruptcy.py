"""
Bankruptcy Resolver.

Accounts with negative equity and nothing left to seize cannot be made
whole by transfers. Their residual liability in one leg is moved to the
liquidator through the insurance/settlement path and the remainder is
socialized by the ledger.

Resolution is idempotent: a leg without residual liability is a no-op.
"""

import logging
from decimal import Decimal
from typing import Tuple

from ..ledger.actions import LiquidationPair, ResolvePerpBankruptcy, ResolveTokenBankruptcy
from ..ledger.interfaces import Executor, LedgerReader
from ..ledger.models import Group, MarginAccount, PriceSnapshot, Strictness
from ..risk.health import health
from .errors import LiquidationAbortedError
from .selector import size_transfer

logger = logging.getLogger(__name__)


class BankruptcyResolver:
    """Resolves token and perp bankruptcy of one liquidatee leg at a time."""

    def __init__(
        self,
        reader: LedgerReader,
        executor: Executor,
        group: Group,
        safety_factor: Decimal,
    ):
        self._reader = reader
        self._executor = executor
        self._group = group
        self._safety_factor = safety_factor

    def _capacity(self, liqor: MarginAccount, snapshot: PriceSnapshot) -> Decimal:
        return health(liqor, self._group, snapshot, Strictness.INIT)

    async def resolve_token(
        self,
        liqee: MarginAccount,
        liqor: MarginAccount,
        liab_index: int,
        snapshot: PriceSnapshot,
    ) -> Tuple[bool, MarginAccount]:
        """
        Resolve the residual borrow of one token.

        Returns:
            (submitted, liqee reloaded after submission)
        """
        residual = -liqee.net(liab_index)
        if residual <= 0:
            logger.debug(
                f"No residual {self._group.symbol(liab_index)} liability on {liqee.public_key}"
            )
            return False, liqee

        amount = size_transfer(
            LiquidationPair.tokens(self._group.quote_index, liab_index),
            self._group,
            snapshot,
            self._capacity(liqor, snapshot),
            self._safety_factor,
        )
        if amount <= 0:
            raise LiquidationAbortedError(
                liqee.public_key, "liquidator has no init health to resolve bankruptcy"
            )

        logger.info(
            f"Resolving token bankruptcy of {liqee.public_key}: "
            f"{self._group.symbol(liab_index)} residual={residual} max={amount}"
        )
        await self._executor.submit(ResolveTokenBankruptcy(
            account=liqee.public_key,
            liqor=liqor.public_key,
            liab_index=liab_index,
            max_liab_transfer=amount,
        ))
        return True, await self._reader.load_account(liqee.public_key, self._group)

    async def resolve_perp(
        self,
        liqee: MarginAccount,
        liqor: MarginAccount,
        market_index: int,
        snapshot: PriceSnapshot,
    ) -> Tuple[bool, MarginAccount]:
        """
        Resolve negative quote left in a perp market with no base position.

        Returns:
            (submitted, liqee reloaded after submission)
        """
        position = liqee.perp_account(market_index)
        long_funding, short_funding = snapshot.funding(market_index)
        residual = -position.quote_after_funding(long_funding, short_funding)

        if position.base_position != 0 or residual <= 0:
            logger.debug(f"No residual perp liability on {liqee.public_key} market {market_index}")
            return False, liqee

        amount = size_transfer(
            LiquidationPair.token_for_perp(self._group.quote_index, market_index),
            self._group,
            snapshot,
            self._capacity(liqor, snapshot),
            self._safety_factor,
        )
        if amount <= 0:
            raise LiquidationAbortedError(
                liqee.public_key, "liquidator has no init health to resolve bankruptcy"
            )

        logger.info(
            f"Resolving perp bankruptcy of {liqee.public_key}: "
            f"market={market_index} residual={residual} max={amount}"
        )
        await self._executor.submit(ResolvePerpBankruptcy(
            account=liqee.public_key,
            liqor=liqor.public_key,
            market_index=market_index,
            max_liab_transfer=amount,
        ))
        return True, await self._reader.load_account(liqee.public_key, self._group)
