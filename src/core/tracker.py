"""
Account Universe Tracker.

Holds the live list of margin accounts the control loop scans:
- Full refresh from the ledger (shuffled so a cycle that cannot reach every
  account does not always favor the same ones)
- Incremental account updates from the change feed
- Open-orders updates from the secondary feed, mapped back to the owning
  account by its embedded open-orders references

The change feed may deliver updates while a bulk refresh is awaiting the
ledger. Those updates are applied to the live list immediately and also
journaled; once the bulk result replaces the list the journal is replayed
in sequence order, so an account inserted mid-refresh is never lost.
"""

import logging
import random
from dataclasses import dataclass
from enum import Enum, auto
from typing import Dict, List, Optional, Sequence, Union

from ..ledger.interfaces import LedgerReader
from ..ledger.models import Group, MarginAccount, SpotOpenOrders

logger = logging.getLogger(__name__)


class UpdateKind(Enum):
    """Kind of journaled feed update."""

    ACCOUNT = auto()
    OPEN_ORDERS = auto()


@dataclass
class JournaledUpdate:
    """A feed update received while a refresh was in flight."""

    sequence: int
    kind: UpdateKind
    key: str
    payload: Union[MarginAccount, SpotOpenOrders]


class AccountUniverse:
    """
    Indexed store of margin accounts.

    Positions in the list are stable between full refreshes: updates
    replace entries in place and new accounts are appended. Readers that
    need a consistent view for a whole cycle take snapshot().
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self._accounts: List[MarginAccount] = []
        self._positions: Dict[str, int] = {}
        self._open_orders_owner: Dict[str, str] = {}
        self._rng = rng or random.Random()

        self._sequence = 0
        self._refreshing = False
        self._journal: List[JournaledUpdate] = []
        self._last_refresh_count = 0
        self._unmatched_open_orders = 0

    def __len__(self) -> int:
        return len(self._accounts)

    def __contains__(self, public_key: str) -> bool:
        return public_key in self._positions

    @property
    def is_refreshing(self) -> bool:
        return self._refreshing

    def get(self, public_key: str) -> Optional[MarginAccount]:
        position = self._positions.get(public_key)
        if position is None:
            return None
        return self._accounts[position]

    def snapshot(self) -> List[MarginAccount]:
        """Stable copy of the current list for iteration."""
        return list(self._accounts)

    def accounts_with_trigger_orders(self) -> List[MarginAccount]:
        """Accounts that reference a trigger-orders store."""
        return [a for a in self._accounts if a.has_trigger_orders]

    # === Mutation ===

    def replace_all(self, accounts: Sequence[MarginAccount]) -> None:
        """Replace the whole list with a bulk load result, then shuffle it."""
        shuffled = list(accounts)
        self._rng.shuffle(shuffled)

        self._accounts = shuffled
        self._positions = {a.public_key: i for i, a in enumerate(shuffled)}
        self._open_orders_owner = {}
        for account in shuffled:
            self._index_open_orders(account)

        logger.info(f"Account universe replaced with {len(shuffled)} accounts")

    def apply_account_update(self, account: MarginAccount) -> None:
        """
        Insert a newly seen account or replace an existing one in place.

        Raw updates do not carry derived open-orders state, so the cached
        open-orders of the existing entry are carried over.
        """
        self._record(UpdateKind.ACCOUNT, account.public_key, account)
        self._apply_account(account)

    def apply_open_orders_update(self, open_orders_key: str, open_orders: SpotOpenOrders) -> None:
        """Attach an open-orders update to the account that references it."""
        self._record(UpdateKind.OPEN_ORDERS, open_orders_key, open_orders)
        self._apply_open_orders(open_orders_key, open_orders)

    async def refresh(self, reader: LedgerReader, group: Group) -> int:
        """
        Reload every account of the group.

        Returns:
            Number of accounts in the universe afterwards
        """
        self._refreshing = True
        self._journal = []
        start_sequence = self._sequence
        try:
            logger.info("Loading all margin accounts")
            accounts = await reader.load_all_accounts(group)
            self.replace_all(accounts)

            replay = sorted(
                (u for u in self._journal if u.sequence > start_sequence),
                key=lambda u: u.sequence,
            )
            for update in replay:
                if update.kind == UpdateKind.ACCOUNT:
                    self._apply_account(update.payload)
                else:
                    self._apply_open_orders(update.key, update.payload)

            if replay:
                logger.info(f"Replayed {len(replay)} updates received during refresh")
        finally:
            self._refreshing = False
            self._journal = []

        self._last_refresh_count = len(self._accounts)
        return self._last_refresh_count

    # === Internals ===

    def _record(
        self,
        kind: UpdateKind,
        key: str,
        payload: Union[MarginAccount, SpotOpenOrders],
    ) -> None:
        self._sequence += 1
        if self._refreshing:
            self._journal.append(JournaledUpdate(self._sequence, kind, key, payload))

    def _index_open_orders(self, account: MarginAccount) -> None:
        for key in account.spot_open_orders:
            if key:
                self._open_orders_owner[key] = account.public_key

    def _apply_account(self, account: MarginAccount) -> None:
        position = self._positions.get(account.public_key)
        if position is None:
            self._positions[account.public_key] = len(self._accounts)
            self._accounts.append(account)
            logger.debug(f"New margin account {account.public_key}")
        else:
            existing = self._accounts[position]
            if existing.spot_open_orders_accounts and not account.spot_open_orders_accounts:
                account.spot_open_orders_accounts = list(existing.spot_open_orders_accounts)
            self._accounts[position] = account

        self._index_open_orders(account)

    def _apply_open_orders(self, open_orders_key: str, open_orders: SpotOpenOrders) -> None:
        owner = self._open_orders_owner.get(open_orders_key)
        account = self.get(owner) if owner else None
        index = account.open_orders_index(open_orders_key) if account else None

        if account is None or index is None:
            self._unmatched_open_orders += 1
            logger.error(f"Could not match open orders {open_orders_key} to a margin account")
            return

        account.set_open_orders(index, open_orders)

    def get_stats(self) -> Dict[str, int]:
        return {
            "accounts": len(self._accounts),
            "last_refresh_count": self._last_refresh_count,
            "updates_seen": self._sequence,
            "unmatched_open_orders": self._unmatched_open_orders,
        }
