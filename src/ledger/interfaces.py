"""
Collaborator Interfaces.

The liquidator core talks to the venue only through these contracts:
- LedgerReader: decoded group, prices and accounts
- Executor: submits one action and returns its outcome or raises LedgerError
- ChangeFeed: pushes raw account and open-orders updates
- AccountDecoder: turns raw storage bytes into domain models

Concrete venue bindings are loaded at startup from a "module:factory"
reference (see load_adapter).
"""

import importlib
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from .actions import Action, ActionOutcome
from .models import (
    Group,
    MarginAccount,
    PriceSnapshot,
    SpotOpenOrders,
    TriggerOrder,
)

logger = logging.getLogger(__name__)


AccountCallback = Callable[[MarginAccount], None]
OpenOrdersCallback = Callable[[str, SpotOpenOrders], None]


class LedgerReader(ABC):
    """Read side of the venue."""

    @abstractmethod
    async def load_group_and_prices(self) -> Tuple[Group, PriceSnapshot]:
        """Load the group configuration and a consistent price snapshot."""

    @abstractmethod
    async def load_prices(self, group: Group) -> PriceSnapshot:
        """Load a fresh price snapshot for an already known group."""

    @abstractmethod
    async def load_account(self, public_key: str, group: Group) -> MarginAccount:
        """Reload one account including its open-orders state."""

    @abstractmethod
    async def load_all_accounts(self, group: Group) -> List[MarginAccount]:
        """Bulk load every margin account of the group."""

    @abstractmethod
    async def load_accounts_for_owner(self, owner: str, group: Group) -> List[MarginAccount]:
        """Load every margin account owned by a wallet."""

    @abstractmethod
    async def load_perp_orders(
        self,
        account: MarginAccount,
        group: Group,
        market_index: int,
    ) -> List[str]:
        """Order ids of an account's resting orders in one perp market."""

    async def load_trigger_orders(self, account: MarginAccount) -> List[TriggerOrder]:
        """Load an account's trigger orders (none by default)."""
        return []

    async def load_open_orders(self, account: MarginAccount, group: Group) -> MarginAccount:
        """Attach derived spot open-orders state to an account."""
        return account


class Executor(ABC):
    """Write side of the venue."""

    @property
    @abstractmethod
    def payer(self) -> str:
        """Public key of the wallet paying for and signing actions."""

    @abstractmethod
    async def submit(self, action: Action) -> ActionOutcome:
        """
        Submit one action.

        Returns:
            ActionOutcome on success

        Raises:
            LedgerError: classified failure
        """


class ChangeFeed(ABC):
    """Push notifications of raw account changes."""

    @abstractmethod
    async def subscribe_account_changes(self, group: Group, on_update: AccountCallback) -> None:
        """Call on_update for every changed margin account."""

    @abstractmethod
    async def subscribe_aux_changes(self, group: Group, on_update: OpenOrdersCallback) -> None:
        """Call on_update(open_orders_key, open_orders) for open-orders changes."""

    @abstractmethod
    async def resubscribe(self) -> None:
        """Drop and re-establish all subscriptions."""

    @abstractmethod
    async def unsubscribe_all(self) -> None:
        """Stop all subscriptions."""


class AccountDecoder(ABC):
    """Decoder for raw storage of the venue program."""

    @abstractmethod
    def decode_account(self, public_key: str, data: bytes) -> Optional[MarginAccount]:
        """Decode a margin account, None if the bytes are another type."""

    @abstractmethod
    def decode_open_orders(self, public_key: str, data: bytes) -> Optional[SpotOpenOrders]:
        """Decode a spot open-orders account, None if not one."""

    def account_filters(self, group: Group) -> List[Dict[str, Any]]:
        """RPC filters selecting the group's margin accounts."""
        return []

    def open_orders_filters(self, group: Group) -> List[Dict[str, Any]]:
        """RPC filters selecting open-orders accounts owned by the group signer."""
        return []


@dataclass
class LedgerAdapter:
    """Bundle of venue collaborators returned by an adapter factory."""
    reader: LedgerReader
    executor: Executor
    feed: Optional[ChangeFeed] = None


def load_adapter(reference: str, config: Any) -> LedgerAdapter:
    """
    Build venue collaborators from a "package.module:factory" reference.

    The factory is called with the bot configuration and must return a
    LedgerAdapter.

    Raises:
        ValueError: malformed reference or wrong factory result
        ImportError: module cannot be imported
    """
    module_name, sep, attr = reference.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Adapter reference must look like 'module:factory', got {reference!r}")

    module = importlib.import_module(module_name)
    factory = getattr(module, attr, None)
    if factory is None or not callable(factory):
        raise ValueError(f"{module_name} has no callable {attr!r}")

    adapter = factory(config)
    if not isinstance(adapter, LedgerAdapter):
        raise ValueError(f"{reference} returned {type(adapter).__name__}, expected LedgerAdapter")

    logger.info(f"Loaded ledger adapter {reference}")
    return adapter
