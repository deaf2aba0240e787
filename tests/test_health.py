"""
Tests for the Health Evaluator.

Tests:
- Weighted spot and perp contributions at maint and init strictness
- Open orders counted in the margin basket only
- Worst-case evaluation of resting perp orders and funding
- Liquidatable and bankrupt classification
- Health ratio
"""

from decimal import Decimal

import pytest

from src.ledger import PerpPosition, SpotOpenOrders, Strictness
from src.risk import (
    compute_equity,
    evaluate,
    has_collateral,
    health,
    health_ratio,
    is_bankrupt,
    is_liquidatable,
    perp_market_health,
)
from conftest import make_account, make_snapshot

D = Decimal


class TestSpotHealth:
    """Tests for token contributions."""

    def test_asset_and_liability_weights(self, group, snapshot):
        account = make_account("a", group, deposits={0: D("1")}, borrows={2: D("95")})

        assert health(account, group, snapshot, Strictness.MAINT) == D("-5")
        assert health(account, group, snapshot, Strictness.INIT) == D("-15")

    def test_borrowed_token_uses_liability_weight(self, group, snapshot):
        account = make_account("a", group, deposits={2: D("200")}, borrows={1: D("10")})

        # 200 - 10 x 10 x 1.1
        assert health(account, group, snapshot, Strictness.MAINT) == D("90")

    def test_open_orders_in_basket_count(self, group, snapshot):
        account = make_account(
            "a", group,
            deposits={0: D("1")},
            in_margin_basket=[True, False, False],
            spot_open_orders=["oo-0", None],
        )
        account.set_open_orders(0, SpotOpenOrders(
            public_key="oo-0",
            market_index=0,
            base_token_total=D("1"),
            quote_token_total=D("50"),
            referrer_rebates_accrued=D("1"),
        ))

        components = evaluate(account, group, snapshot, Strictness.MAINT)

        assert components.spot[0] == D("180")
        assert components.quote == D("51")

    def test_open_orders_outside_basket_ignored(self, group, snapshot):
        account = make_account("a", group, deposits={0: D("1")}, spot_open_orders=["oo-0", None])
        account.set_open_orders(0, SpotOpenOrders(
            public_key="oo-0", market_index=0, base_token_total=D("5"),
        ))

        assert health(account, group, snapshot, Strictness.MAINT) == D("90")


class TestPerpHealth:
    """Tests for perp contributions."""

    def test_long_position(self, group, snapshot):
        account = make_account(
            "a", group, perps={0: PerpPosition(base_position=10, quote_position=D("-1000"))}
        )

        assert perp_market_health(account, group, snapshot, 0) == D("-50")
        assert perp_market_health(account, group, snapshot, 0, Strictness.INIT) == D("-100")

    def test_short_position(self, group, snapshot):
        account = make_account(
            "a", group, perps={0: PerpPosition(base_position=-10, quote_position=D("1000"))}
        )

        # -1000 x 1.05 + 1000
        assert perp_market_health(account, group, snapshot, 0) == D("-50")

    def test_resting_bids_take_worst_side(self, group, snapshot):
        account = make_account("a", group, perps={0: PerpPosition(bids_quantity=1)})

        # Bids filled: 1 x 100 x 0.95 - 100
        assert perp_market_health(account, group, snapshot, 0) == D("-5")

    def test_unsettled_funding_reduces_quote(self, group):
        snapshot = make_snapshot(group)
        snapshot = type(snapshot)(
            prices=snapshot.prices,
            quote_index=snapshot.quote_index,
            long_funding={0: D("1")},
        )
        account = make_account(
            "a", group, perps={0: PerpPosition(base_position=2, quote_position=D("10"))}
        )

        # 2 x 100 x 0.95 + (10 - 2)
        assert perp_market_health(account, group, snapshot, 0) == D("198")

    def test_perp_health_component(self, group, snapshot):
        account = make_account(
            "a", group,
            deposits={2: D("20")},
            perps={0: PerpPosition(base_position=10, quote_position=D("-1000"))},
        )

        components = evaluate(account, group, snapshot, Strictness.MAINT)

        assert components.perp_health == D("-30")
        assert components.spot_health == D("20")


class TestClassification:
    """Tests for liquidatable and bankrupt checks."""

    def test_negative_maint_is_liquidatable(self, group, snapshot):
        account = make_account("a", group, deposits={0: D("1")}, borrows={2: D("95")})
        assert is_liquidatable(account, group, snapshot)

    def test_healthy_account_not_liquidatable(self, group, snapshot):
        account = make_account("a", group, deposits={0: D("1")}, borrows={2: D("50")})
        assert not is_liquidatable(account, group, snapshot)

    def test_being_liquidated_uses_init_health(self, group, snapshot):
        account = make_account("a", group, deposits={0: D("1")}, borrows={2: D("85")})
        assert not is_liquidatable(account, group, snapshot)

        account.being_liquidated = True
        assert is_liquidatable(account, group, snapshot)

    def test_negative_equity_without_collateral_is_bankrupt(self, group, snapshot):
        account = make_account("a", group, borrows={0: D("1")})

        assert compute_equity(account, group, snapshot) == D("-100")
        assert not has_collateral(account, group, snapshot)
        assert is_bankrupt(account, group, snapshot)

    def test_perp_base_is_collateral(self, group, snapshot):
        account = make_account(
            "a", group,
            borrows={2: D("500")},
            perps={0: PerpPosition(base_position=1)},
        )

        assert has_collateral(account, group, snapshot)
        assert not is_bankrupt(account, group, snapshot)

    def test_ledger_flag_is_bankrupt(self, group, snapshot):
        account = make_account("a", group, deposits={2: D("10")}, is_bankrupt=True)
        assert is_bankrupt(account, group, snapshot)


class TestHealthRatio:
    """Tests for health ratio."""

    def test_ratio_with_liabilities(self, group, snapshot):
        account = make_account("a", group, deposits={0: D("1")}, borrows={2: D("45")})

        # (90 - 45) / 45 x 100
        assert health_ratio(account, group, snapshot) == D("100")

    def test_ratio_of_sick_account_is_negative(self, group, snapshot):
        account = make_account("a", group, deposits={0: D("1")}, borrows={2: D("95")})
        assert health_ratio(account, group, snapshot) < 0

    def test_no_liabilities(self, group, snapshot):
        account = make_account("a", group, deposits={0: D("1")})
        assert health_ratio(account, group, snapshot) == D("100")

    def test_empty_account(self, group, snapshot):
        account = make_account("a", group)
        assert health(account, group, snapshot, Strictness.MAINT) == 0
        assert not is_liquidatable(account, group, snapshot)
