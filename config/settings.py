"""
Configuration dataclasses for the margin account liquidator.

All configuration parameters are defined here with sensible defaults.
Values can be overridden via config.yaml or environment variables.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional
from enum import Enum


class Cluster(Enum):
    """Ledger clusters the liquidator can run against."""
    MAINNET = "mainnet"
    DEVNET = "devnet"
    TESTNET = "testnet"


CLUSTER_URLS: Dict[Cluster, str] = {
    Cluster.MAINNET: "https://api.mainnet-beta.solana.com",
    Cluster.DEVNET: "https://api.devnet.solana.com",
    Cluster.TESTNET: "https://api.testnet.solana.com",
}


# ===========================================
# VENUE CONFIGURATION
# ===========================================

@dataclass
class GroupIds:
    """On-ledger identifiers of one group."""

    name: str
    public_key: str
    program_id: str
    dex_program_id: str = ""


@dataclass
class VenueConfig:
    """Where to connect and which group to watch."""

    cluster: Cluster = Cluster.MAINNET
    group_name: str = "mainnet.1"
    group: Optional[GroupIds] = None  # Resolved from the groups registry

    endpoint_url: str = ""  # Empty = cluster default
    ws_url: str = ""  # Empty = derived from endpoint_url
    commitment: str = "processed"

    # Operator account
    operator_account: str = ""  # Empty = highest-equity account owned by payer
    keypair_path: str = "~/.config/solana/id.json"

    @property
    def rpc_url(self) -> str:
        return self.endpoint_url or CLUSTER_URLS[self.cluster]

    @property
    def websocket_url(self) -> str:
        if self.ws_url:
            return self.ws_url
        url = self.rpc_url
        if url.startswith("https://"):
            return "wss://" + url[len("https://"):]
        if url.startswith("http://"):
            return "ws://" + url[len("http://"):]
        return url


# ===========================================
# CONTROL LOOP CONFIGURATION
# ===========================================

@dataclass
class LoopConfig:
    """Timer intervals of the control loop (seconds)."""

    cycle_interval: float = 3.5  # Health scan + liquidation + rebalance
    refresh_interval: float = 600.0  # Full account universe reload
    resubscribe_interval: float = 300.0  # Change feed resubscription
    shutdown_timeout: float = 10.0


# ===========================================
# LIQUIDATION CONFIGURATION
# ===========================================

@dataclass
class LiquidationConfig:
    """Liquidation sizing and behavior - CRITICAL for operator solvency."""

    safety_factor: Decimal = Decimal("0.9")  # Fraction of liqor init health used
    check_triggers: bool = True  # Evaluate trigger orders each cycle
    max_cancel_passes: int = 5  # Spot force-cancel rounds before aborting
    perp_cancel_limit: int = 10  # Orders per perp force-cancel
    spot_cancel_limit: int = 5  # Orders per spot force-cancel


# ===========================================
# REBALANCE CONFIGURATION
# ===========================================

@dataclass
class RebalanceConfig:
    """Operator portfolio targets."""

    targets: List[Decimal] = field(default_factory=lambda: [Decimal("0")] * 9)
    min_interval: float = 10.0  # Seconds between rebalances
    enabled: bool = True


# ===========================================
# MONITORING CONFIGURATION
# ===========================================

@dataclass
class AlertConfig:
    """Notification channel configuration."""

    webhook_url: str = ""  # Empty = log only
    min_severity: str = "info"
    timeout: float = 10.0


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"
    file_path: str = "logs/liquidator.log"
    max_size_mb: int = 10
    backup_count: int = 5


# ===========================================
# MAIN BOT CONFIGURATION
# ===========================================

@dataclass
class BotConfig:
    """Complete liquidator configuration combining all sub-configs."""

    venue: VenueConfig = field(default_factory=VenueConfig)
    loop: LoopConfig = field(default_factory=LoopConfig)
    liquidation: LiquidationConfig = field(default_factory=LiquidationConfig)
    rebalance: RebalanceConfig = field(default_factory=RebalanceConfig)

    # Operational configs
    alerts: AlertConfig = field(default_factory=AlertConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Adapter factory ("package.module:factory") binding the venue
    adapter: str = ""

    # Paper trading mode
    paper_trading: bool = False

    def validate(self) -> List[str]:
        """
        Validate configuration and return list of errors.

        Returns:
            List of error messages (empty if valid)
        """
        errors = []

        if not (Decimal("0") < self.liquidation.safety_factor <= Decimal("1")):
            errors.append(
                f"Safety factor must be in (0, 1], got {self.liquidation.safety_factor}"
            )

        if self.loop.cycle_interval <= 0:
            errors.append("Cycle interval must be positive")

        if self.loop.refresh_interval < self.loop.cycle_interval:
            errors.append(
                "Account refresh interval is shorter than the cycle interval"
            )

        if self.liquidation.max_cancel_passes < 1:
            errors.append("At least one force-cancel pass is required")

        if any(t < 0 for t in self.rebalance.targets):
            errors.append("Rebalance targets must not be negative")

        if self.venue.group is None:
            errors.append(f"Group {self.venue.group_name} is not resolved")

        return errors
