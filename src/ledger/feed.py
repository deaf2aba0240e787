"""
Program Change Feed.

Real-time account updates via the RPC node's websocket (JSON-RPC
programSubscribe):
- Margin account changes of the venue program, filtered to the group
- Open-orders changes of the dex program, filtered to the group signer
- Automatic reconnection with exponential backoff
- Periodic resubscription on request

Raw bytes are handed to an injected AccountDecoder; this module only
moves notifications.
"""

import asyncio
import base64
import json
import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Callable, Dict, List, Optional

import websockets
from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK

from .interfaces import AccountCallback, AccountDecoder, ChangeFeed, OpenOrdersCallback
from .models import Group

logger = logging.getLogger(__name__)


class FeedState(Enum):
    """Websocket connection states."""
    DISCONNECTED = auto()
    CONNECTING = auto()
    CONNECTED = auto()
    RECONNECTING = auto()
    CLOSED = auto()


@dataclass
class FeedConfig:
    """Change feed configuration."""
    ws_url: str
    commitment: str = "processed"

    # Heartbeat (handled by the websockets library)
    ping_interval: float = 30.0
    ping_timeout: float = 10.0

    # Reconnection
    reconnect_delay: float = 1.0
    max_reconnect_delay: float = 300.0
    reconnect_multiplier: float = 2.0
    max_reconnect_attempts: int = 0  # 0 = unlimited


RawHandler = Callable[[str, bytes], None]


@dataclass
class ProgramSubscription:
    """One programSubscribe stream."""
    name: str
    program_id: str
    filters: List[Dict[str, Any]]
    handler: RawHandler
    req_id: Optional[int] = None
    subscription_id: Optional[int] = None
    notifications: int = field(default=0)


class ProgramChangeFeed(ChangeFeed):
    """
    Change feed over JSON-RPC program subscriptions.

    Usage:
        feed = ProgramChangeFeed(FeedConfig(ws_url), decoder, program_id, dex_program_id)
        await feed.subscribe_account_changes(group, tracker.apply_account_update)
        await feed.subscribe_aux_changes(group, tracker.apply_open_orders_update)
    """

    def __init__(
        self,
        config: FeedConfig,
        decoder: AccountDecoder,
        program_id: str,
        dex_program_id: str,
    ):
        self._config = config
        self._decoder = decoder
        self._program_id = program_id
        self._dex_program_id = dex_program_id

        self._state = FeedState.DISCONNECTED
        self._ws = None
        self._reconnect_count = 0
        self._req_id_counter = 1

        self._subscriptions: Dict[str, ProgramSubscription] = {}
        self._receive_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._shutdown = False

    @property
    def state(self) -> FeedState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == FeedState.CONNECTED

    def _set_state(self, state: FeedState) -> None:
        if state != self._state:
            logger.debug(f"Change feed state: {self._state.name} -> {state.name}")
            self._state = state

    def _next_req_id(self) -> int:
        req_id = self._req_id_counter
        self._req_id_counter += 1
        return req_id

    # ==========================================
    # CONNECTION MANAGEMENT
    # ==========================================

    async def connect(self) -> None:
        """Open the websocket and (re)send every registered subscription."""
        if self._state not in (
            FeedState.DISCONNECTED, FeedState.RECONNECTING, FeedState.CLOSED
        ):
            return

        self._shutdown = False
        self._set_state(FeedState.CONNECTING)

        try:
            self._ws = await websockets.connect(
                self._config.ws_url,
                ping_interval=self._config.ping_interval,
                ping_timeout=self._config.ping_timeout,
                close_timeout=10,
                max_size=None,  # Account snapshots can be large
            )
        except Exception as e:
            logger.error(f"Change feed connection failed: {e}")
            self._set_state(FeedState.DISCONNECTED)
            raise

        self._set_state(FeedState.CONNECTED)
        self._reconnect_count = 0
        self._receive_task = asyncio.create_task(self._receive_loop())
        logger.info(f"Change feed connected to {self._config.ws_url}")

        for sub in self._subscriptions.values():
            sub.subscription_id = None
            await self._send_subscribe(sub)

    async def disconnect(self) -> None:
        """Close the websocket without forgetting subscriptions."""
        self._shutdown = True

        if self._receive_task:
            self._receive_task.cancel()
            try:
                await self._receive_task
            except asyncio.CancelledError:
                pass
            self._receive_task = None

        reconnect = self._reconnect_task
        self._reconnect_task = None
        if reconnect and reconnect is not asyncio.current_task() and not reconnect.done():
            reconnect.cancel()
            try:
                await reconnect
            except asyncio.CancelledError:
                pass

        if self._ws:
            try:
                await self._ws.close()
            except Exception as e:
                logger.warning(f"Error closing change feed: {e}")

        self._ws = None
        self._set_state(FeedState.CLOSED)
        logger.info("Change feed disconnected")

    async def _reconnect(self) -> None:
        """Reconnect with exponential backoff until it works or shutdown."""
        while not self._shutdown:
            self._reconnect_count += 1
            self._set_state(FeedState.RECONNECTING)

            if (
                self._config.max_reconnect_attempts > 0 and
                self._reconnect_count > self._config.max_reconnect_attempts
            ):
                logger.error(
                    f"Max reconnection attempts ({self._config.max_reconnect_attempts}) reached"
                )
                self._set_state(FeedState.CLOSED)
                return

            delay = min(
                self._config.reconnect_delay
                * (self._config.reconnect_multiplier ** (self._reconnect_count - 1)),
                self._config.max_reconnect_delay,
            )
            logger.info(f"Change feed reconnecting in {delay:.1f}s (attempt {self._reconnect_count})")
            await asyncio.sleep(delay)

            try:
                await self.connect()
                return
            except Exception as e:
                logger.error(f"Change feed reconnection failed: {e}")

    # ==========================================
    # MESSAGE HANDLING
    # ==========================================

    async def _receive_loop(self) -> None:
        """Background task receiving notifications."""
        while not self._shutdown:
            try:
                if not self._ws:
                    break

                message = await self._ws.recv()
                if isinstance(message, bytes):
                    message = message.decode("utf-8")

                self._handle_message(json.loads(message))

            except ConnectionClosedOK:
                logger.info("Change feed closed normally")
                break

            except ConnectionClosedError as e:
                logger.warning(f"Change feed connection lost: {e}")
                self._ws = None
                self._set_state(FeedState.DISCONNECTED)
                if not self._shutdown:
                    self._reconnect_task = asyncio.create_task(self._reconnect())
                break

            except asyncio.CancelledError:
                break

            except json.JSONDecodeError as e:
                logger.error(f"Invalid JSON message: {e}")

    def _handle_message(self, data: Dict[str, Any]) -> None:
        """Route one JSON-RPC message."""
        if "error" in data:
            logger.error(f"Change feed error: {data['error']}")
            return

        if data.get("method") == "programNotification":
            self._handle_notification(data.get("params", {}))
            return

        # Subscription confirmation: {"id": req_id, "result": subscription_id}
        req_id = data.get("id")
        if req_id is None:
            return
        for sub in self._subscriptions.values():
            if sub.req_id == req_id:
                if isinstance(data.get("result"), int):
                    sub.subscription_id = data["result"]
                    logger.info(f"Subscribed to {sub.name} changes ({sub.program_id[:8]})")
                break

    def _handle_notification(self, params: Dict[str, Any]) -> None:
        subscription_id = params.get("subscription")
        sub = next(
            (s for s in self._subscriptions.values() if s.subscription_id == subscription_id),
            None,
        )
        if sub is None:
            logger.debug(f"Notification for unknown subscription {subscription_id}")
            return

        value = params.get("result", {}).get("value", {})
        public_key = value.get("pubkey")
        encoded = value.get("account", {}).get("data", [None])[0]
        if not public_key or encoded is None:
            return

        sub.notifications += 1
        try:
            sub.handler(public_key, base64.b64decode(encoded))
        except Exception as e:
            logger.error(f"{sub.name} update handler error for {public_key}: {e}")

    async def _send(self, data: Dict[str, Any]) -> None:
        if not self._ws:
            raise ConnectionError("Change feed not connected")
        await self._ws.send(json.dumps(data))

    # ==========================================
    # SUBSCRIPTIONS
    # ==========================================

    async def _send_subscribe(self, sub: ProgramSubscription) -> None:
        sub.req_id = self._next_req_id()
        await self._send({
            "jsonrpc": "2.0",
            "id": sub.req_id,
            "method": "programSubscribe",
            "params": [
                sub.program_id,
                {
                    "encoding": "base64",
                    "commitment": self._config.commitment,
                    "filters": sub.filters,
                },
            ],
        })
        logger.debug(f"Sent programSubscribe for {sub.name}")

    async def _send_unsubscribe(self, sub: ProgramSubscription) -> None:
        if sub.subscription_id is None:
            return
        await self._send({
            "jsonrpc": "2.0",
            "id": self._next_req_id(),
            "method": "programUnsubscribe",
            "params": [sub.subscription_id],
        })
        sub.subscription_id = None

    async def _register(self, sub: ProgramSubscription) -> None:
        self._subscriptions[sub.name] = sub
        if not self.is_connected:
            await self.connect()
        else:
            await self._send_subscribe(sub)

    async def subscribe_account_changes(self, group: Group, on_update: AccountCallback) -> None:
        def handle(public_key: str, data: bytes) -> None:
            account = self._decoder.decode_account(public_key, data)
            if account is not None:
                on_update(account)

        await self._register(ProgramSubscription(
            name="margin_accounts",
            program_id=self._program_id,
            filters=self._decoder.account_filters(group),
            handler=handle,
        ))

    async def subscribe_aux_changes(self, group: Group, on_update: OpenOrdersCallback) -> None:
        def handle(public_key: str, data: bytes) -> None:
            open_orders = self._decoder.decode_open_orders(public_key, data)
            if open_orders is not None:
                on_update(public_key, open_orders)

        await self._register(ProgramSubscription(
            name="open_orders",
            program_id=self._dex_program_id,
            filters=self._decoder.open_orders_filters(group),
            handler=handle,
        ))

    async def resubscribe(self) -> None:
        """Drop and re-establish every subscription on the current socket."""
        if not self.is_connected:
            await self.connect()
            return

        for sub in self._subscriptions.values():
            await self._send_unsubscribe(sub)
            await self._send_subscribe(sub)
        logger.info(f"Resubscribed {len(self._subscriptions)} change streams")

    async def unsubscribe_all(self) -> None:
        if self.is_connected:
            for sub in self._subscriptions.values():
                try:
                    await self._send_unsubscribe(sub)
                except Exception as e:
                    logger.warning(f"Unsubscribe {sub.name} failed: {e}")
        self._subscriptions.clear()
        await self.disconnect()

    def get_stats(self) -> Dict[str, Any]:
        return {
            "state": self._state.name,
            "reconnects": self._reconnect_count,
            "notifications": {
                name: sub.notifications for name, sub in self._subscriptions.items()
            },
        }
