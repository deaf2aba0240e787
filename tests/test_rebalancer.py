"""
Tests for Portfolio Rebalancer module.

Tests:
- Token diff computation and ordering by value
- Minimum interval enforcement
- Fee-adjusted order prices
- Perp position flattening and PnL settlement
- Failure isolation
"""

import pytest
from decimal import Decimal

from src.ledger import ActionKind, OrderSide, OrderType, PaperExecutor, PerpPosition
from src.rebalance import (
    PortfolioRebalancer,
    RebalanceDecision,
    RebalanceReason,
    compute_token_diffs,
    fee_adjusted_price,
)
from conftest import FakeReader, make_account, make_group, make_snapshot

D = Decimal


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def four_token_group():
    """BTC, ETH, SOL spot markets plus USDC quote; min order size 1."""
    return make_group(("BTC", "ETH", "SOL"), min_order_size=D("1"))


@pytest.fixture
def flat_snapshot(four_token_group):
    return make_snapshot(four_token_group, {0: D("1"), 1: D("1"), 2: D("1")})


@pytest.fixture
def clock():
    return FakeClock()


class TestRebalanceDecision:
    """Tests for RebalanceDecision dataclass."""

    def test_no_rebalance_decision(self):
        decision = RebalanceDecision(should_rebalance=False, details="Portfolio on target")

        assert not decision.tokens_unbalanced
        assert "no rebalance" in str(decision)

    def test_rebalance_decision(self):
        decision = RebalanceDecision(
            should_rebalance=True,
            reasons=[RebalanceReason.TOKEN_IMBALANCE, RebalanceReason.OPEN_POSITIONS],
        )

        assert decision.tokens_unbalanced
        assert decision.positions_unbalanced
        assert "TOKEN_IMBALANCE" in str(decision)


class TestHelpers:
    """Tests for pure helpers."""

    def test_compute_token_diffs(self, four_token_group, flat_snapshot):
        account = make_account(
            "op", four_token_group, deposits={0: D("12")}, borrows={1: D("3")}
        )

        diffs = compute_token_diffs(account, four_token_group, flat_snapshot, [D("10"), D("0")])

        assert [(d.index, d.diff) for d in diffs] == [(0, D("2")), (1, D("-3")), (2, D("0"))]
        assert diffs[0].side == OrderSide.SELL
        assert diffs[1].side == OrderSide.BUY

    def test_fee_adjusted_price(self):
        assert fee_adjusted_price(D("100"), D("0.025"), OrderSide.SELL) == D("97.5")
        assert fee_adjusted_price(D("100"), D("0.025"), OrderSide.BUY) == D("102.5")


class TestPortfolioRebalancer:
    """Tests for PortfolioRebalancer."""

    @pytest.fixture
    def reader(self, four_token_group, flat_snapshot):
        return FakeReader(four_token_group, flat_snapshot)

    @pytest.fixture
    def rebalancer(self, reader, executor, four_token_group, clock):
        return PortfolioRebalancer(
            reader,
            executor,
            four_token_group,
            targets=[D("10"), D("0"), D("0")],
            min_rebalance_interval=10.0,
            clock=clock,
        )

    def test_min_interval_respected(self, rebalancer, four_token_group, flat_snapshot, clock):
        """A check before the interval elapsed is skipped however unbalanced."""
        account = make_account("op", four_token_group, borrows={1: D("50")})

        clock.now = 5.0
        decision = rebalancer.should_rebalance(account, flat_snapshot)
        assert not decision.should_rebalance
        assert not decision.interval_met

        clock.now = 11.0
        decision = rebalancer.should_rebalance(account, flat_snapshot)
        assert decision.should_rebalance
        assert decision.tokens_unbalanced

    def test_within_min_order_size_is_balanced(self, rebalancer, four_token_group, flat_snapshot, clock):
        clock.now = 100.0
        account = make_account("op", four_token_group, deposits={0: D("10.5")})

        decision = rebalancer.should_rebalance(account, flat_snapshot)

        assert decision.interval_met
        assert not decision.should_rebalance

    def test_open_perp_position_needs_rebalance(self, rebalancer, four_token_group, flat_snapshot, clock):
        clock.now = 100.0
        account = make_account(
            "op", four_token_group,
            deposits={0: D("10")},
            perps={0: PerpPosition(base_position=1)},
        )

        decision = rebalancer.should_rebalance(account, flat_snapshot)

        assert decision.positions_unbalanced
        assert not decision.tokens_unbalanced

    @pytest.mark.asyncio
    async def test_balance_tokens_largest_value_first(
        self, rebalancer, reader, executor, four_token_group
    ):
        """Tokens are traded in descending order of absolute value."""
        account = make_account(
            "op", four_token_group, deposits={0: D("12")}, borrows={1: D("3")}
        )
        reader.add(account)

        placed = await rebalancer.balance_tokens(account)

        assert placed == [1, 0]
        orders = executor.submitted_of(ActionKind.PLACE_SPOT_ORDER)
        assert orders[0].side == OrderSide.BUY
        assert orders[0].quantity == D("3")
        assert orders[0].price == D("1.025")
        assert orders[1].side == OrderSide.SELL
        assert orders[1].quantity == D("2")
        assert orders[1].order_type == OrderType.LIMIT
        assert len(executor.submitted_of(ActionKind.SETTLE_FUNDS)) == 2

    @pytest.mark.asyncio
    async def test_one_failing_token_does_not_stop_others(
        self, rebalancer, reader, executor, four_token_group
    ):
        account = make_account(
            "op", four_token_group, deposits={0: D("12")}, borrows={1: D("3")}
        )
        reader.add(account)
        executor.fail_next(ActionKind.PLACE_SPOT_ORDER, "MangoErrorCode::InsufficientFunds")

        placed = await rebalancer.balance_tokens(account)

        assert placed == [0]

    @pytest.mark.asyncio
    async def test_balance_tokens_never_raises(self, rebalancer, four_token_group):
        account = make_account("missing", four_token_group)

        assert await rebalancer.balance_tokens(account) == []

    @pytest.mark.asyncio
    async def test_close_positions(self, rebalancer, reader, executor, four_token_group):
        """Perp base is sold IOC reduce-only, then positive PnL is settled."""
        account = make_account(
            "op", four_token_group,
            deposits={3: D("1000")},
            perps={0: PerpPosition(base_position=2, quote_position=D("-150"))},
        )
        reader.perp_orders[("op", 0)] = ["order-1"]
        reader.script(
            "op",
            account,
            make_account(
                "op", four_token_group,
                deposits={3: D("1000")},
                perps={0: PerpPosition(quote_position=D("30"))},
            ),
        )

        closed = await rebalancer.close_positions(account)

        assert closed == [0]
        assert [a.kind for a in executor.submitted] == [
            ActionKind.CANCEL_PERP_ORDER,
            ActionKind.PLACE_PERP_ORDER,
            ActionKind.SETTLE_PNL,
        ]
        order = executor.submitted[1]
        assert order.side == OrderSide.SELL
        assert order.quantity == D("2")
        assert order.order_type == OrderType.IOC
        assert order.reduce_only
        assert order.price == D("1") * (1 - D("0.0125"))

    @pytest.mark.asyncio
    async def test_balance_account_counts_rebalance(
        self, rebalancer, reader, four_token_group, flat_snapshot, clock
    ):
        account = make_account("op", four_token_group, deposits={0: D("12")})
        reader.add(account)

        clock.now = 20.0
        decision = await rebalancer.balance_account(account, flat_snapshot)

        assert decision.should_rebalance
        assert rebalancer.rebalance_count == 1
        assert rebalancer.last_rebalance_time == 20.0

        clock.now = 25.0
        decision = await rebalancer.balance_account(account, flat_snapshot)
        assert not decision.interval_met
        assert rebalancer.rebalance_count == 1

    @pytest.mark.asyncio
    async def test_balanced_account_updates_check_time_only(
        self, rebalancer, four_token_group, flat_snapshot, clock
    ):
        account = make_account("op", four_token_group, deposits={0: D("10")})

        clock.now = 30.0
        await rebalancer.balance_account(account, flat_snapshot)

        assert rebalancer.rebalance_count == 0
        assert rebalancer.last_rebalance_time == 30.0

    def test_reset_stats(self, rebalancer, clock):
        rebalancer.mark_rebalanced()
        clock.now = 50.0

        rebalancer.reset_stats()

        assert rebalancer.rebalance_count == 0
        assert rebalancer.last_rebalance_time == 50.0
