"""
Tests for the per-account liquidation state machine.

The fake reader scripts how the liquidatee looks after each reload, and
the paper executor records which actions were submitted.
"""

from decimal import Decimal

import pytest

from src.ledger import (
    ActionKind,
    LiquidationPair,
    PerpPosition,
    SpotOpenOrders,
)
from src.liquidation import (
    AccountNoLongerLiquidatable,
    LiquidationAbortedError,
    Liquidator,
)
from conftest import make_account, make_group

D = Decimal


@pytest.fixture
def liquidator(reader, executor, group):
    return Liquidator(reader, executor, group, safety_factor=D("0.9"))


def with_spot_orders(account, order_ids=("1",)):
    account.in_margin_basket = [True, False, False]
    account.spot_open_orders = ["oo-0", None]
    account.set_open_orders(0, SpotOpenOrders(
        public_key="oo-0", market_index=0, order_ids=list(order_ids),
    ))
    return account


class TestSpotFlow:
    """Tests for token liquidation."""

    @pytest.mark.asyncio
    async def test_token_pair_transfer(self, liquidator, reader, executor, group, snapshot, liqor):
        liqee = make_account("liqee", group, deposits={0: D("1")}, borrows={2: D("95")})
        reader.script("liqee", make_account("liqee", group, deposits={0: D("0.5")}, borrows={2: D("40")}))

        report = await liquidator.liquidate_account(liqee, liqor, snapshot)

        transfers = executor.submitted_of(ActionKind.LIQUIDATE_TOKEN_AND_TOKEN)
        assert len(transfers) == 1
        assert transfers[0].pair == LiquidationPair.tokens(0, 2)
        assert transfers[0].max_liab_transfer == D("45000")
        assert transfers[0].liqor == "liqor"
        assert report.spot_liquidated
        assert report.recovered_after_spot
        assert report.transfers == 1

    @pytest.mark.asyncio
    async def test_perp_fallback_without_token_asset(
        self, liquidator, reader, executor, group, snapshot, liqor
    ):
        liqee = make_account(
            "liqee", group,
            borrows={2: D("100")},
            perps={0: PerpPosition(base_position=1, quote_position=D("-10"))},
        )
        reader.script("liqee", make_account("liqee", group, deposits={2: D("1")}))

        report = await liquidator.liquidate_account(liqee, liqor, snapshot)

        transfers = executor.submitted_of(ActionKind.LIQUIDATE_TOKEN_AND_PERP)
        assert len(transfers) == 1
        assert transfers[0].pair == LiquidationPair.perp_for_token(0, 2)
        assert transfers[0].max_liab_transfer == D("9000")
        assert report.recovered_after_spot

    @pytest.mark.asyncio
    async def test_bankrupt_account_is_resolved(
        self, liquidator, reader, executor, group, snapshot, liqor
    ):
        liqee = make_account("liqee", group, borrows={0: D("1")})
        reader.script("liqee", make_account("liqee", group))

        report = await liquidator.liquidate_account(liqee, liqor, snapshot)

        resolutions = executor.submitted_of(ActionKind.RESOLVE_TOKEN_BANKRUPTCY)
        assert len(resolutions) == 1
        assert resolutions[0].liab_index == 0
        assert resolutions[0].max_liab_transfer == D("450")
        assert executor.submitted_of(ActionKind.LIQUIDATE_TOKEN_AND_TOKEN) == []
        assert report.bankruptcies_resolved == 1

    @pytest.mark.asyncio
    async def test_bankrupt_after_token_transfer_is_resolved(
        self, liquidator, reader, executor, group, snapshot, liqor
    ):
        liqee = make_account("liqee", group, deposits={0: D("1")}, borrows={2: D("150")})
        reader.script(
            "liqee",
            make_account("liqee", group, borrows={2: D("50")}),
            make_account("liqee", group),
        )

        report = await liquidator.liquidate_account(liqee, liqor, snapshot)

        assert [a.kind for a in executor.submitted] == [
            ActionKind.LIQUIDATE_TOKEN_AND_TOKEN,
            ActionKind.RESOLVE_TOKEN_BANKRUPTCY,
        ]
        resolution = executor.submitted[1]
        assert resolution.liab_index == 2
        # Quote against quote has no weight spread: 10000 x 0.9
        assert resolution.max_liab_transfer == D("9000")
        assert report.bankruptcies_resolved == 1
        assert report.recovered_after_spot

    @pytest.mark.asyncio
    async def test_no_liquidator_capacity_aborts(self, liquidator, reader, executor, group, snapshot):
        liqee = make_account("liqee", group, deposits={0: D("1")}, borrows={2: D("95")})
        broke = make_account("liqor", group, owner="payer")

        with pytest.raises(LiquidationAbortedError):
            await liquidator.liquidate_account(liqee, broke, snapshot)

        assert executor.submitted == []


class TestOrderCancellation:
    """Tests for force-cancel passes."""

    @pytest.mark.asyncio
    async def test_spot_orders_abort_after_max_passes(
        self, liquidator, reader, executor, group, snapshot, liqor
    ):
        liqee = with_spot_orders(
            make_account("liqee", group, deposits={0: D("1")}, borrows={2: D("95")})
        )
        reader.add(liqee)

        with pytest.raises(LiquidationAbortedError):
            await liquidator.liquidate_account(liqee, liqor, snapshot)

        cancels = executor.submitted_of(ActionKind.FORCE_CANCEL_SPOT_ORDERS)
        assert len(cancels) == 5
        assert all(c.market_index == 0 for c in cancels)
        assert executor.submitted_of(ActionKind.LIQUIDATE_TOKEN_AND_TOKEN) == []

    @pytest.mark.asyncio
    async def test_recovery_after_spot_cancel(self, liquidator, reader, executor, group, snapshot, liqor):
        liqee = with_spot_orders(
            make_account("liqee", group, deposits={0: D("1")}, borrows={2: D("95")})
        )
        reader.script("liqee", make_account("liqee", group, deposits={0: D("1")}, borrows={2: D("50")}))

        with pytest.raises(AccountNoLongerLiquidatable):
            await liquidator.liquidate_account(liqee, liqor, snapshot)

        assert len(executor.submitted_of(ActionKind.FORCE_CANCEL_SPOT_ORDERS)) == 1

    @pytest.mark.asyncio
    async def test_perp_orders_cancelled_first(self, liquidator, reader, executor, group, snapshot, liqor):
        liqee = make_account(
            "liqee", group,
            deposits={0: D("1")},
            borrows={2: D("95")},
            perps={0: PerpPosition(bids_quantity=1)},
        )
        reader.script("liqee", make_account("liqee", group, deposits={0: D("1")}, borrows={2: D("50")}))

        with pytest.raises(AccountNoLongerLiquidatable):
            await liquidator.liquidate_account(liqee, liqor, snapshot)

        assert [a.kind for a in executor.submitted] == [ActionKind.FORCE_CANCEL_PERP_ORDERS]
        assert executor.submitted[0].limit == 10


class TestPerpFlow:
    """Tests for perp liquidation."""

    @pytest.mark.asyncio
    async def test_base_position_transfer(self, liquidator, reader, executor, group, snapshot, liqor):
        liqee = make_account(
            "liqee", group, perps={0: PerpPosition(base_position=10, quote_position=D("-1000"))}
        )
        reader.script(
            "liqee",
            make_account("liqee", group, perps={0: PerpPosition(base_position=1, quote_position=D("-90"))}),
        )

        report = await liquidator.liquidate_account(liqee, liqor, snapshot)

        transfers = executor.submitted_of(ActionKind.LIQUIDATE_PERP_MARKET)
        assert len(transfers) == 1
        assert transfers[0].market_index == 0
        assert transfers[0].base_transfer_request == 900
        assert report.perp_liquidated
        assert not report.spot_liquidated
        assert not report.flag_cleared

    @pytest.mark.asyncio
    async def test_flagged_account_position_transferred_then_flag_cleared(
        self, liquidator, reader, executor, group, snapshot, liqor
    ):
        """Maint 30, init -20: the position is still taken over before the flag clear."""
        liqee = make_account(
            "liqee", group,
            perps={0: PerpPosition(base_position=10, quote_position=D("-920"))},
            being_liquidated=True,
        )
        reader.script(
            "liqee",
            make_account(
                "liqee", group,
                perps={0: PerpPosition(base_position=1, quote_position=D("-92"))},
                being_liquidated=True,
            ),
        )

        report = await liquidator.liquidate_account(liqee, liqor, snapshot)

        assert [a.kind for a in executor.submitted] == [
            ActionKind.LIQUIDATE_PERP_MARKET,
            ActionKind.FORCE_CANCEL_PERP_ORDERS,
        ]
        assert executor.submitted[0].base_transfer_request == 900
        assert executor.submitted[1].market_index == 0
        assert report.perp_liquidated
        assert report.flag_cleared

    @pytest.mark.asyncio
    async def test_healthy_perp_taken_over_after_spot_flow(
        self, liquidator, reader, executor, group, snapshot, liqor
    ):
        liqee = make_account(
            "liqee", group,
            deposits={0: D("1")},
            borrows={2: D("200")},
            perps={0: PerpPosition(base_position=1, quote_position=D("-50"))},
        )
        reader.script(
            "liqee",
            make_account(
                "liqee", group,
                deposits={0: D("0.5")},
                borrows={2: D("160")},
                perps={0: PerpPosition(base_position=1, quote_position=D("-50"))},
            ),
            make_account("liqee", group, deposits={0: D("0.5")}, borrows={2: D("60")}),
        )

        report = await liquidator.liquidate_account(liqee, liqor, snapshot)

        assert [a.kind for a in executor.submitted] == [
            ActionKind.LIQUIDATE_TOKEN_AND_TOKEN,
            ActionKind.LIQUIDATE_PERP_MARKET,
        ]
        assert executor.submitted[1].base_transfer_request == 900
        assert report.spot_liquidated
        assert report.perp_liquidated
        assert not report.recovered_after_spot
        assert not report.flag_cleared

    @pytest.mark.asyncio
    async def test_quote_only_exposure_takes_largest_deposit(
        self, liquidator, reader, executor, group, snapshot, liqor
    ):
        liqee = make_account(
            "liqee", group,
            deposits={0: D("2")},
            perps={0: PerpPosition(quote_position=D("-300"))},
        )
        reader.script(
            "liqee",
            make_account("liqee", group, deposits={0: D("1")}, perps={0: PerpPosition(quote_position=D("-100"))}),
        )

        report = await liquidator.liquidate_account(liqee, liqor, snapshot)

        transfers = executor.submitted_of(ActionKind.LIQUIDATE_TOKEN_AND_PERP)
        assert [a.kind for a in executor.submitted] == [ActionKind.LIQUIDATE_TOKEN_AND_PERP]
        assert transfers[0].pair == LiquidationPair.token_for_perp(0, 0)
        # 10000 / (1 - 0.8) x 0.9 with BTC as collateral
        assert transfers[0].max_liab_transfer == D("45000")
        assert report.perp_liquidated
        assert not report.spot_liquidated

    @pytest.mark.asyncio
    async def test_no_base_and_no_perp_liability_skips_transfer(
        self, liquidator, reader, executor, group, snapshot, liqor
    ):
        liqee = make_account(
            "liqee", group,
            deposits={0: D("1")},
            borrows={1: D("8.9")},
            perps={0: PerpPosition(quote_position=D("5"))},
        )
        reader.script("liqee", make_account("liqee", group, deposits={0: D("1")}, borrows={1: D("8.9")}))

        report = await liquidator.liquidate_account(liqee, liqor, snapshot)

        assert [a.kind for a in executor.submitted] == [ActionKind.LIQUIDATE_TOKEN_AND_TOKEN]
        assert not report.recovered_after_spot
        assert not report.perp_liquidated

    @pytest.mark.asyncio
    async def test_bankrupt_account_resolved_in_perp_flow(
        self, liquidator, reader, executor, group, snapshot, liqor
    ):
        liqee = make_account("liqee", group, perps={0: PerpPosition(quote_position=D("-100"))})
        reader.script("liqee", make_account("liqee", group))

        report = await liquidator.liquidate_account(liqee, liqor, snapshot)

        assert [a.kind for a in executor.submitted] == [ActionKind.RESOLVE_PERP_BANKRUPTCY]
        assert executor.submitted[0].market_index == 0
        assert executor.submitted[0].max_liab_transfer == D("9000")
        assert report.bankruptcies_resolved == 1
        assert not report.perp_liquidated

    @pytest.mark.asyncio
    async def test_bankrupt_after_position_transfer_is_resolved(
        self, liquidator, reader, executor, group, snapshot, liqor
    ):
        liqee = make_account(
            "liqee", group, perps={0: PerpPosition(base_position=10, quote_position=D("-1000"))}
        )
        reader.script(
            "liqee",
            make_account("liqee", group, perps={0: PerpPosition(quote_position=D("-30"))}),
            make_account("liqee", group),
        )

        report = await liquidator.liquidate_account(liqee, liqor, snapshot)

        assert [a.kind for a in executor.submitted] == [
            ActionKind.LIQUIDATE_PERP_MARKET,
            ActionKind.RESOLVE_PERP_BANKRUPTCY,
        ]
        assert executor.submitted[1].max_liab_transfer == D("9000")
        assert report.perp_liquidated
        assert report.bankruptcies_resolved == 1

    def test_group_setter(self, liquidator):
        other = make_group(public_key="group-2")
        liquidator.group = other

        assert liquidator.group is other
