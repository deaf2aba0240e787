"""
Orchestrator - Central Coordinator for the Liquidator.

Provides:
- Operator account resolution and component wiring
- The fixed-interval liquidation cycle
- Account universe refresh and change feed resubscription timers
- Graceful startup and shutdown
"""

import asyncio
import dataclasses
import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Dict, List, Optional

from config.settings import BotConfig
from src.ledger import (
    ChangeFeed,
    ErrorAggregator,
    Executor,
    Group,
    LedgerError,
    LedgerReader,
    MarginAccount,
    PriceSnapshot,
)
from src.liquidation import (
    AccountNoLongerLiquidatable,
    LiquidationError,
    Liquidator,
    TriggerOrderExecutor,
    TriggerRunResult,
)
from src.rebalance import PortfolioRebalancer
from src.risk import compute_equity, health_ratio, is_liquidatable
from .alerts import (
    AlertManager,
    AlertSeverity,
    AlertType,
    LoggingAlertHandler,
    create_liquidation_alert,
    create_sick_account_alert,
)
from .tracker import AccountUniverse

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Fatal startup misconfiguration (unknown group, missing operator account)."""
    pass


class OrchestratorState(Enum):
    """Orchestrator lifecycle states."""

    CREATED = auto()
    INITIALIZING = auto()
    RUNNING = auto()
    SHUTTING_DOWN = auto()
    STOPPED = auto()
    ERROR = auto()


@dataclass
class OrchestratorConfig:
    """Timing intervals for the main loop."""

    cycle_interval: float = 3.5  # 3.5 sec
    refresh_interval: float = 600.0  # 10 min
    resubscribe_interval: float = 300.0  # 5 min
    shutdown_timeout: float = 10.0  # 10 sec

    @classmethod
    def from_bot_config(cls, config: BotConfig) -> "OrchestratorConfig":
        return cls(
            cycle_interval=config.loop.cycle_interval,
            refresh_interval=config.loop.refresh_interval,
            resubscribe_interval=config.loop.resubscribe_interval,
            shutdown_timeout=config.loop.shutdown_timeout,
        )


@dataclass
class CycleResult:
    """Counts of one liquidation cycle."""

    accounts_checked: int = 0
    liquidatable: int = 0
    liquidated: int = 0
    failed: int = 0
    triggers: TriggerRunResult = dataclasses.field(default_factory=TriggerRunResult)
    rebalanced: bool = False


class Orchestrator:
    """
    Central coordinator for the liquidator.

    Responsibilities:
    - Resolve the group and the operator account at startup
    - Keep the account universe fresh (bulk refresh + change feed)
    - Run the liquidation cycle on a fixed interval
    - Manage graceful shutdown

    Usage:
        orchestrator = Orchestrator(config, reader, executor, feed)

        await orchestrator.initialize()
        await orchestrator.start()

        # Liquidator runs until stopped
        await orchestrator.stop()
    """

    def __init__(
        self,
        config: BotConfig,
        reader: LedgerReader,
        executor: Executor,
        feed: Optional[ChangeFeed] = None,
        alert_manager: Optional[AlertManager] = None,
        orchestrator_config: Optional[OrchestratorConfig] = None,
        universe: Optional[AccountUniverse] = None,
    ):
        """
        Initialize orchestrator.

        Args:
            config: Bot configuration
            reader: Ledger reader
            executor: Action executor (its payer owns the operator account)
            feed: Change feed (None = refresh timer only)
            alert_manager: Notification manager (logging-only if None)
            orchestrator_config: Timing configuration (derived from config if None)
            universe: Account store (new one if None)
        """
        self._config = config
        self._reader = reader
        self._executor = executor
        self._feed = feed
        self._orch_config = orchestrator_config or OrchestratorConfig.from_bot_config(config)
        self._state = OrchestratorState.CREATED

        if alert_manager is None:
            alert_manager = AlertManager()
            alert_manager.add_handler(LoggingAlertHandler())
        self._alert_manager = alert_manager

        self._universe = universe or AccountUniverse()
        self._error_aggregator = ErrorAggregator()

        # Components (initialized in initialize())
        self._group: Optional[Group] = None
        self._snapshot: Optional[PriceSnapshot] = None
        self._operator: Optional[MarginAccount] = None
        self._liquidator: Optional[Liquidator] = None
        self._rebalancer: Optional[PortfolioRebalancer] = None
        self._trigger_executor: Optional[TriggerOrderExecutor] = None

        # Tasks
        self._tasks: List[asyncio.Task] = []
        self._shutdown_event = asyncio.Event()

        # Stats
        self._cycle_count = 0
        self._cycle_errors = 0
        self._liquidation_count = 0
        self._liquidation_failures = 0
        self._triggers_executed = 0

        logger.info(f"Orchestrator created (paper_trading={config.paper_trading})")

    @property
    def state(self) -> OrchestratorState:
        """Get current orchestrator state."""
        return self._state

    @property
    def universe(self) -> AccountUniverse:
        return self._universe

    @property
    def operator(self) -> Optional[MarginAccount]:
        return self._operator

    @property
    def group(self) -> Optional[Group]:
        return self._group

    # === Lifecycle Methods ===

    async def initialize(self) -> None:
        """
        Load the group and resolve the operator account.

        Raises:
            ConfigurationError: Group mismatch or no usable operator account
        """
        self._state = OrchestratorState.INITIALIZING
        logger.info("Initializing orchestrator...")

        try:
            self._group, self._snapshot = await self._reader.load_group_and_prices()

            expected = self._config.venue.group
            if expected is not None and self._group.public_key != expected.public_key:
                raise ConfigurationError(
                    f"Loaded group {self._group.public_key} but configured "
                    f"{expected.name} is {expected.public_key}"
                )
            logger.info(f"Group {self._group.public_key} loaded with {self._group.num_tokens} tokens")

            self._operator = await self._resolve_operator()
            logger.info(f"Operator account: {self._operator.public_key}")

            liq = self._config.liquidation
            self._liquidator = Liquidator(
                self._reader,
                self._executor,
                self._group,
                safety_factor=liq.safety_factor,
                max_cancel_passes=liq.max_cancel_passes,
                perp_cancel_limit=liq.perp_cancel_limit,
                spot_cancel_limit=liq.spot_cancel_limit,
            )
            self._rebalancer = PortfolioRebalancer(
                self._reader,
                self._executor,
                self._group,
                targets=self._config.rebalance.targets,
                min_rebalance_interval=self._config.rebalance.min_interval,
            )
            self._trigger_executor = TriggerOrderExecutor(self._executor)

            logger.info("Orchestrator initialization complete")

        except ConfigurationError as e:
            self._state = OrchestratorState.ERROR
            logger.critical(f"Configuration error: {e}")
            raise

        except Exception as e:
            self._state = OrchestratorState.ERROR
            logger.exception(f"Initialization failed: {e}")
            raise

    async def _resolve_operator(self) -> MarginAccount:
        """Configured operator account, else the payer's richest account."""
        payer = self._executor.payer
        configured = self._config.venue.operator_account

        if configured:
            try:
                account = await self._reader.load_account(configured, self._group)
            except Exception as e:
                raise ConfigurationError(f"Cannot load operator account {configured}: {e}") from e
            if account.owner != payer:
                raise ConfigurationError(
                    f"Account {configured} is owned by {account.owner}, not payer {payer}"
                )
            return account

        accounts = await self._reader.load_accounts_for_owner(payer, self._group)
        if not accounts:
            raise ConfigurationError(f"No margin account found for payer {payer}")

        return max(accounts, key=lambda a: compute_equity(a, self._group, self._snapshot))

    async def start(self) -> None:
        """
        Start the orchestrator main loop.

        Loads the account universe, subscribes to the change feed and
        creates async tasks for:
        - The liquidation cycle
        - Periodic full refresh
        - Periodic change feed resubscription
        """
        if self._state != OrchestratorState.INITIALIZING:
            raise RuntimeError(
                f"Cannot start from state {self._state.name}, must be INITIALIZING"
            )

        logger.info("Starting orchestrator...")
        self._shutdown_event.clear()

        count = await self._universe.refresh(self._reader, self._group)
        logger.info(f"Loaded {count} margin accounts")

        if self._feed is not None:
            await self._feed.subscribe_account_changes(
                self._group, self._universe.apply_account_update
            )
            await self._feed.subscribe_aux_changes(
                self._group, self._universe.apply_open_orders_update
            )
            logger.info("Subscribed to account changes")

        self._tasks = [
            asyncio.create_task(self._cycle_task(), name="cycle"),
            asyncio.create_task(self._refresh_task(), name="refresh"),
        ]
        if self._feed is not None:
            self._tasks.append(
                asyncio.create_task(self._resubscribe_task(), name="resubscribe")
            )

        self._state = OrchestratorState.RUNNING
        self._alert_manager.create_alert(
            AlertType.LIQUIDATOR_STARTED,
            AlertSeverity.INFO,
            f"Liquidator launched for group {self._config.venue.group_name}",
            {"operator": self._operator.public_key, "accounts": count},
            force=True,
        )
        logger.info("Orchestrator started")

    async def stop(self) -> None:
        """Gracefully stop the orchestrator."""
        if self._state in (OrchestratorState.STOPPED, OrchestratorState.SHUTTING_DOWN):
            return

        logger.info("Stopping orchestrator...")
        self._state = OrchestratorState.SHUTTING_DOWN
        self._shutdown_event.set()

        for task in self._tasks:
            task.cancel()

        if self._tasks:
            done, pending = await asyncio.wait(
                self._tasks,
                timeout=self._orch_config.shutdown_timeout,
            )
            if pending:
                logger.warning(f"{len(pending)} tasks did not complete within timeout")

        if self._feed is not None:
            try:
                await self._feed.unsubscribe_all()
            except Exception as e:
                logger.error(f"Failed to unsubscribe change feed: {e}")

        self._alert_manager.create_alert(
            AlertType.LIQUIDATOR_STOPPED,
            AlertSeverity.INFO,
            "Liquidator stopped",
            self.get_stats(),
            force=True,
        )

        self._state = OrchestratorState.STOPPED
        logger.info("Orchestrator stopped")

    # === Main Loop Tasks ===

    async def _cycle_task(self) -> None:
        """Run the liquidation cycle forever."""
        logger.info("Cycle task started")

        try:
            while not self._shutdown_event.is_set():
                try:
                    await self.run_cycle()
                except Exception as e:
                    self._cycle_errors += 1
                    logger.exception(f"Cycle error: {e}")
                    self._alert_manager.create_alert(
                        AlertType.CYCLE_ERROR,
                        AlertSeverity.CRITICAL,
                        f"Liquidation cycle failed: {e}",
                        {"error": type(e).__name__},
                    )

                await asyncio.sleep(self._orch_config.cycle_interval)

        except asyncio.CancelledError:
            logger.info("Cycle task cancelled")

    async def _refresh_task(self) -> None:
        """Periodic full reload of group and accounts."""
        logger.info("Refresh task started")

        try:
            while not self._shutdown_event.is_set():
                await asyncio.sleep(self._orch_config.refresh_interval)

                if self._shutdown_event.is_set():
                    break

                try:
                    await self.refresh()
                except Exception as e:
                    logger.error(f"Account refresh error: {e}")

        except asyncio.CancelledError:
            logger.info("Refresh task cancelled")

    async def _resubscribe_task(self) -> None:
        """Periodic change feed resubscription."""
        logger.info("Resubscribe task started")

        try:
            while not self._shutdown_event.is_set():
                await asyncio.sleep(self._orch_config.resubscribe_interval)

                if self._shutdown_event.is_set():
                    break

                try:
                    await self._feed.resubscribe()
                    logger.info("Resubscribed to account changes")
                except Exception as e:
                    logger.error(f"Resubscribe error: {e}")

        except asyncio.CancelledError:
            logger.info("Resubscribe task cancelled")

    async def refresh(self) -> int:
        """Reload the group configuration and the whole account universe."""
        group, _ = await self._reader.load_group_and_prices()
        self._set_group(group)
        return await self._universe.refresh(self._reader, group)

    def _set_group(self, group: Group) -> None:
        self._group = group
        if self._liquidator:
            self._liquidator.group = group
        if self._rebalancer:
            self._rebalancer.group = group

    # === Cycle ===

    async def run_cycle(self) -> CycleResult:
        """
        Run one liquidation cycle.

        Per-account failures are contained; a failure to read prices or the
        operator account propagates to the caller.
        """
        if self._group is None or self._operator is None:
            raise RuntimeError("Orchestrator not initialized")

        self._cycle_count += 1
        result = CycleResult()

        self._snapshot = await self._reader.load_prices(self._group)
        self._operator = await self._reader.load_account(self._operator.public_key, self._group)

        if self._config.liquidation.check_triggers:
            result.triggers = await self._process_triggers()

        accounts = self._universe.snapshot()
        logger.debug(f"Cycle {self._cycle_count}: scanning {len(accounts)} accounts")

        for account in accounts:
            result.accounts_checked += 1
            if not is_liquidatable(account, self._group, self._snapshot):
                continue

            result.liquidatable += 1
            try:
                if await self._liquidate(account):
                    result.liquidated += 1
                else:
                    result.failed += 1
            finally:
                await self._rebalance()

        result.rebalanced = await self._rebalance()
        return result

    async def _process_triggers(self) -> TriggerRunResult:
        """Execute trigger orders of every account that has any."""
        total = TriggerRunResult()

        for account in self._universe.accounts_with_trigger_orders():
            try:
                orders = await self._reader.load_trigger_orders(account)
                if not orders:
                    continue
                enriched = dataclasses.replace(account, trigger_orders=orders)
                total = total + await self._trigger_executor.process_account(enriched, self._snapshot)
            except Exception as e:
                logger.error(f"Failed to process trigger orders for {account.public_key}: {e}")
                total.failed += 1

        if total.executed:
            self._triggers_executed += total.executed
            self._alert_manager.create_alert(
                AlertType.TRIGGER_EXECUTED,
                AlertSeverity.INFO,
                f"Executed {total.executed} trigger orders",
                dataclasses.asdict(total),
            )
        return total

    async def _liquidate(self, account: MarginAccount) -> bool:
        """
        Reload, reconfirm and liquidate one account.

        Returns:
            False if the attempt failed, True otherwise (including
            accounts that recovered before anything was done)
        """
        key = account.public_key
        try:
            liqee = await self._reader.load_account(key, self._group)
            if not is_liquidatable(liqee, self._group, self._snapshot):
                logger.info(f"Account {key} no longer liquidatable")
                return True

            ratio = health_ratio(liqee, self._group, self._snapshot)
            logger.info(f"Sick account {key} health ratio: {ratio:.4f}")
            create_sick_account_alert(self._alert_manager, key, ratio)

            report = await self._liquidator.liquidate_account(liqee, self._operator, self._snapshot)
            self._liquidation_count += 1
            logger.info(
                f"Liquidated {key}: {report.transfers} transfers, "
                f"{report.bankruptcies_resolved} bankruptcies resolved"
            )
            create_liquidation_alert(self._alert_manager, key)
            return True

        except AccountNoLongerLiquidatable:
            logger.info(f"Account {key} recovered during liquidation")
            return True

        except LiquidationError as e:
            self._liquidation_failures += 1
            logger.error(f"Failed to liquidate account {key}: {e}")
            create_liquidation_alert(self._alert_manager, key, e)
            return False

        except LedgerError as e:
            self._error_aggregator.record_error(e)
            if e.is_expected:
                logger.info(f"Liquidation of {key} ended: {e.kind.value}")
                return True
            self._liquidation_failures += 1
            logger.error(f"Failed to liquidate account {key}: {e}")
            create_liquidation_alert(self._alert_manager, key, e)
            self._check_error_rate()
            return False

        except Exception as e:
            self._liquidation_failures += 1
            logger.error(f"Failed to liquidate account {key}: {e}")
            create_liquidation_alert(self._alert_manager, key, e)
            return False

    async def _rebalance(self) -> bool:
        """Reload the operator account and rebalance it if due."""
        if not self._config.rebalance.enabled:
            return False
        try:
            self._operator = await self._reader.load_account(self._operator.public_key, self._group)
            decision = await self._rebalancer.balance_account(self._operator, self._snapshot)
        except Exception as e:
            logger.error(f"Rebalance error: {e}")
            return False

        if decision.should_rebalance:
            self._alert_manager.create_alert(
                AlertType.ACCOUNT_REBALANCED,
                AlertSeverity.INFO,
                f"Rebalanced operator account {self._operator.public_key}",
                {"reasons": [r.name for r in decision.reasons]},
            )
        return decision.should_rebalance

    def _check_error_rate(self) -> None:
        if self._error_aggregator.should_alert():
            stats = self._error_aggregator.get_stats()
            self._alert_manager.create_alert(
                AlertType.ERROR_RATE_HIGH,
                AlertSeverity.WARNING,
                f"High ledger error rate: {stats['rate_per_minute']:.1f}/min",
                stats,
            )

    # === Stats ===

    def get_stats(self) -> Dict[str, Any]:
        """Get comprehensive statistics."""
        stats: Dict[str, Any] = {
            "state": self._state.name,
            "cycles": self._cycle_count,
            "cycle_errors": self._cycle_errors,
            "liquidations": self._liquidation_count,
            "liquidation_failures": self._liquidation_failures,
            "triggers_executed": self._triggers_executed,
            "universe": self._universe.get_stats(),
            "alerts": self._alert_manager.get_stats(),
        }

        if self._operator is not None:
            stats["operator"] = self._operator.public_key

        if self._rebalancer:
            stats["rebalance_count"] = self._rebalancer.rebalance_count

        return stats
