"""
Tests for the account universe tracker.
"""

import logging
import random
from decimal import Decimal

import pytest

from src.core import AccountUniverse
from src.ledger import SpotOpenOrders
from conftest import make_account

D = Decimal


def with_open_orders_ref(account, key="oo-0"):
    account.spot_open_orders = [key, None]
    return account


@pytest.fixture
def universe():
    return AccountUniverse(rng=random.Random(7))


class TestReplaceAll:
    """Tests for bulk replacement."""

    def test_shuffle_keeps_every_account(self, universe, group):
        accounts = [make_account(f"acct-{i}", group) for i in range(20)]

        universe.replace_all(accounts)

        assert len(universe) == 20
        assert {a.public_key for a in universe.snapshot()} == {a.public_key for a in accounts}
        for account in accounts:
            assert account.public_key in universe

    def test_snapshot_is_a_copy(self, universe, group):
        universe.replace_all([make_account("a", group)])

        snapshot = universe.snapshot()
        universe.apply_account_update(make_account("b", group))

        assert len(snapshot) == 1
        assert len(universe) == 2


class TestAccountUpdates:
    """Tests for change feed account updates."""

    def test_new_account_appended(self, universe, group):
        universe.replace_all([make_account("a", group)])

        universe.apply_account_update(make_account("b", group))

        assert [a.public_key for a in universe.snapshot()] == ["a", "b"]

    def test_existing_account_replaced_in_place(self, universe, group):
        universe.replace_all([make_account("a", group), make_account("b", group)])
        order_before = [a.public_key for a in universe.snapshot()]

        universe.apply_account_update(make_account("a", group, deposits={2: D("7")}))

        assert [a.public_key for a in universe.snapshot()] == order_before
        assert universe.get("a").net(2) == D("7")

    def test_update_preserves_open_orders(self, universe, group):
        account = with_open_orders_ref(make_account("a", group))
        oo = SpotOpenOrders(public_key="oo-0", market_index=0, base_token_total=D("2"))
        account.set_open_orders(0, oo)
        universe.replace_all([account])

        universe.apply_account_update(with_open_orders_ref(make_account("a", group, deposits={0: D("1")})))

        updated = universe.get("a")
        assert updated.net(0) == D("1")
        assert updated.open_orders(0) == oo

    def test_accounts_with_trigger_orders(self, universe, group):
        universe.replace_all([
            make_account("plain", group),
            make_account("with-triggers", group, advanced_orders_key="adv-1"),
        ])

        assert [a.public_key for a in universe.accounts_with_trigger_orders()] == ["with-triggers"]


class TestOpenOrdersUpdates:
    """Tests for secondary feed updates."""

    def test_matched_update_attached(self, universe, group):
        universe.replace_all([with_open_orders_ref(make_account("a", group))])
        oo = SpotOpenOrders(public_key="oo-0", market_index=0, order_ids=["1"])

        universe.apply_open_orders_update("oo-0", oo)

        assert universe.get("a").open_orders(0) == oo
        assert universe.get_stats()["unmatched_open_orders"] == 0

    def test_unmatched_update_logged(self, universe, group, caplog):
        universe.replace_all([with_open_orders_ref(make_account("a", group))])

        with caplog.at_level(logging.ERROR):
            universe.apply_open_orders_update(
                "oo-unknown", SpotOpenOrders(public_key="oo-unknown", market_index=0)
            )

        assert universe.get_stats()["unmatched_open_orders"] == 1
        assert "oo-unknown" in caplog.text

    def test_new_account_open_orders_indexed(self, universe, group):
        universe.replace_all([])
        universe.apply_account_update(with_open_orders_ref(make_account("a", group), "oo-a"))

        universe.apply_open_orders_update("oo-a", SpotOpenOrders(public_key="oo-a", market_index=0))

        assert universe.get("a").open_orders(0) is not None


class TestRefresh:
    """Tests for bulk refresh with concurrent feed updates."""

    @pytest.mark.asyncio
    async def test_refresh_loads_all(self, universe, reader, group):
        reader.add(make_account("a", group), make_account("b", group))

        count = await universe.refresh(reader, group)

        assert count == 2
        assert reader.load_all_calls == 1
        assert not universe.is_refreshing

    @pytest.mark.asyncio
    async def test_account_inserted_during_refresh_survives(self, universe, reader, group):
        reader.add(make_account("a", group), make_account("b", group))

        async def feed_delivers_update():
            assert universe.is_refreshing
            universe.apply_account_update(make_account("new", group))
            universe.apply_account_update(make_account("a", group, deposits={2: D("5")}))

        reader.on_load_all = feed_delivers_update

        count = await universe.refresh(reader, group)

        assert count == 3
        assert "new" in universe
        assert universe.get("a").net(2) == D("5")

    @pytest.mark.asyncio
    async def test_refresh_failure_resets_state(self, universe, reader, group):
        async def fail():
            raise ConnectionError("node down")

        reader.on_load_all = fail

        with pytest.raises(ConnectionError):
            await universe.refresh(reader, group)

        assert not universe.is_refreshing
        universe.apply_account_update(make_account("a", group))
        assert len(universe) == 1
