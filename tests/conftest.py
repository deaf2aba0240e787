"""
Shared fixtures: a small three-token group and an in-memory ledger reader.

Group layout:
    0 BTC  spot (maint 0.9/1.1, init 0.8/1.2), perp market 0 (maint 0.95/1.05, init 0.9/1.1)
    1 ETH  spot (same weights), no perp market
    2 USDC quote
"""

import copy
from collections import defaultdict, deque
from decimal import Decimal
from typing import Deque, Dict, List, Optional, Sequence, Tuple

import pytest

from src.ledger import (
    Group,
    LedgerReader,
    MarginAccount,
    PaperExecutor,
    PerpMarketInfo,
    PerpPosition,
    PriceSnapshot,
    SpotMarketInfo,
    TokenInfo,
    TriggerOrder,
)

D = Decimal


def make_group(
    spot_symbols: Sequence[str] = ("BTC", "ETH"),
    perp_indexes: Sequence[int] = (0,),
    min_order_size: Decimal = D("0"),
    public_key: str = "group-1",
) -> Group:
    symbols = list(spot_symbols) + ["USDC"]
    tokens = tuple(TokenInfo(index=i, symbol=s) for i, s in enumerate(symbols))
    spot_markets = tuple(
        SpotMarketInfo(
            index=i,
            symbol=f"{s}/USDC",
            maint_asset_weight=D("0.9"),
            init_asset_weight=D("0.8"),
            maint_liab_weight=D("1.1"),
            init_liab_weight=D("1.2"),
            liquidation_fee=D("0.025"),
            min_order_size=min_order_size,
        )
        for i, s in enumerate(spot_symbols)
    )
    perp_markets = tuple(
        PerpMarketInfo(
            index=i,
            symbol=f"{spot_symbols[i]}-PERP",
            maint_asset_weight=D("0.95"),
            init_asset_weight=D("0.9"),
            maint_liab_weight=D("1.05"),
            init_liab_weight=D("1.1"),
            liquidation_fee=D("0.0125"),
            base_lot_size=D("1"),
        )
        if i in perp_indexes else None
        for i in range(len(spot_symbols))
    )
    return Group(
        public_key=public_key,
        tokens=tokens,
        spot_markets=spot_markets,
        perp_markets=perp_markets,
    )


def make_snapshot(group: Group, prices: Optional[Dict[int, Decimal]] = None) -> PriceSnapshot:
    if prices is None:
        prices = {0: D("100"), 1: D("10")}
    return PriceSnapshot(prices=dict(prices), quote_index=group.quote_index)


def make_account(
    public_key: str,
    group: Group,
    deposits: Optional[Dict[int, Decimal]] = None,
    borrows: Optional[Dict[int, Decimal]] = None,
    perps: Optional[Dict[int, PerpPosition]] = None,
    owner: str = "owner",
    **kwargs,
) -> MarginAccount:
    n = group.num_tokens
    deposits = deposits or {}
    borrows = borrows or {}
    perps = perps or {}
    return MarginAccount(
        public_key=public_key,
        owner=owner,
        deposits=[D(deposits.get(i, 0)) for i in range(n)],
        borrows=[D(borrows.get(i, 0)) for i in range(n)],
        perp_accounts=[perps.get(m, PerpPosition()) for m in range(n - 1)],
        in_margin_basket=kwargs.pop("in_margin_basket", [False] * n),
        spot_open_orders=kwargs.pop("spot_open_orders", [None] * (n - 1)),
        **kwargs,
    )


class FakeReader(LedgerReader):
    """
    In-memory ledger reader.

    script(key, *states) queues successive results of load_account so a
    test can describe how an account changes after each action.
    """

    def __init__(self, group: Group, snapshot: PriceSnapshot):
        self.group = group
        self.snapshot = snapshot
        self.accounts: Dict[str, MarginAccount] = {}
        self.perp_orders: Dict[Tuple[str, int], List[str]] = {}
        self.trigger_orders: Dict[str, List[TriggerOrder]] = {}
        self._scripts: Dict[str, Deque[MarginAccount]] = defaultdict(deque)
        self.load_account_calls: List[str] = []
        self.load_all_calls = 0
        self.on_load_all = None  # Optional coroutine run mid bulk-load

    def add(self, *accounts: MarginAccount) -> None:
        for account in accounts:
            self.accounts[account.public_key] = account

    def script(self, public_key: str, *states: MarginAccount) -> None:
        self._scripts[public_key].extend(states)

    async def load_group_and_prices(self):
        return self.group, self.snapshot

    async def load_prices(self, group):
        return self.snapshot

    async def load_account(self, public_key, group):
        self.load_account_calls.append(public_key)
        queue = self._scripts.get(public_key)
        if queue:
            self.accounts[public_key] = queue.popleft()
        if public_key not in self.accounts:
            raise KeyError(public_key)
        return copy.deepcopy(self.accounts[public_key])

    async def load_all_accounts(self, group):
        self.load_all_calls += 1
        result = [copy.deepcopy(a) for a in self.accounts.values()]
        if self.on_load_all is not None:
            await self.on_load_all()
        return result

    async def load_accounts_for_owner(self, owner, group):
        return [copy.deepcopy(a) for a in self.accounts.values() if a.owner == owner]

    async def load_perp_orders(self, account, group, market_index):
        return list(self.perp_orders.get((account.public_key, market_index), []))

    async def load_trigger_orders(self, account):
        return list(self.trigger_orders.get(account.public_key, []))


@pytest.fixture
def group():
    return make_group()


@pytest.fixture
def snapshot(group):
    return make_snapshot(group)


@pytest.fixture
def reader(group, snapshot):
    return FakeReader(group, snapshot)


@pytest.fixture
def executor():
    return PaperExecutor(payer="payer")


@pytest.fixture
def liqor(group):
    """Operator account with 10000 USDC: init health 10000."""
    return make_account("liqor", group, deposits={2: D("10000")}, owner="payer")
