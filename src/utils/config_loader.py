"""
Configuration loader for the margin account liquidator.

Loads configuration from:
1. YAML file (config/config.yaml)
2. Environment variables (LIQUIDATOR_* prefix)
3. .env file (via python-dotenv)

Environment variables override YAML values.
Key material MUST be referenced via environment or keypair file (never in YAML).
"""

import os
import logging
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

from config.settings import (
    BotConfig,
    Cluster,
    GroupIds,
    VenueConfig,
    LoopConfig,
    LiquidationConfig,
    RebalanceConfig,
    AlertConfig,
    LoggingConfig,
)

logger = logging.getLogger(__name__)


def parse_decimal(value: Any, name: str) -> Decimal:
    """Parse a config value as Decimal, raising ValueError on garbage."""
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"{name} must be a number, got {value!r}") from e


def parse_targets(value: Any) -> List[Decimal]:
    """
    Parse rebalance targets.

    Accepts a YAML list or a space-separated string ("0 0 1.5 0").
    """
    if isinstance(value, str):
        items = value.split()
    else:
        items = list(value)
    return [parse_decimal(item, "TARGETS") for item in items]


class ConfigLoader:
    """
    Loads and validates liquidator configuration.

    Configuration priority (highest to lowest):
    1. Environment variables (LIQUIDATOR_*)
    2. YAML config file
    3. Default values in dataclasses
    """

    ENV_PREFIX = "LIQUIDATOR_"

    def __init__(
        self,
        config_path: Optional[str] = None,
        env_file: Optional[str] = None,
    ):
        """
        Initialize config loader.

        Args:
            config_path: Path to YAML config file. If None, uses config/config.yaml
            env_file: Path to .env file. If None, uses .env in project root
        """
        self._config_path = Path(config_path) if config_path else Path("config/config.yaml")
        self._env_file = Path(env_file) if env_file else Path(".env")

        # Load .env file if exists
        if self._env_file.exists():
            load_dotenv(self._env_file)
            logger.debug(f"Loaded environment from {self._env_file}")

    def load(self) -> BotConfig:
        """
        Load complete liquidator configuration.

        Returns:
            BotConfig with all settings populated

        Raises:
            ValueError: Unknown cluster/group or unparseable values
        """
        yaml_config = self._load_yaml()
        config = self._build_config(yaml_config)

        errors = config.validate()
        if errors:
            for error in errors:
                logger.warning(f"Config warning: {error}")

        return config

    def _load_yaml(self) -> Dict[str, Any]:
        """Load YAML configuration file."""
        if not self._config_path.exists():
            logger.warning(f"Config file not found: {self._config_path}, using defaults")
            return {}

        with open(self._config_path) as f:
            config = yaml.safe_load(f) or {}

        logger.info(f"Loaded config from {self._config_path}")
        return config

    def _get_env(self, key: str, default: Any = None) -> Any:
        """
        Get environment variable with LIQUIDATOR_ prefix.

        Args:
            key: Variable name (without prefix)
            default: Default value if not set

        Returns:
            Environment variable value or default
        """
        full_key = f"{self.ENV_PREFIX}{key}"
        value = os.environ.get(full_key)

        if value is None:
            return default

        # Type conversion based on default type
        try:
            if isinstance(default, bool):
                return value.lower() in ("true", "1", "yes")
            elif isinstance(default, int):
                return int(value)
            elif isinstance(default, float):
                return float(value)
        except ValueError as e:
            raise ValueError(f"{full_key} has invalid value {value!r}") from e

        return value

    def _resolve_group(
        self,
        yaml_config: Dict[str, Any],
        cluster: Cluster,
        group_name: str,
    ) -> GroupIds:
        """Look up a group by name in the groups registry."""
        groups = yaml_config.get("groups", {}) or {}
        entry = groups.get(group_name)
        if entry is None:
            raise ValueError(f"Group {group_name} not found")

        entry_cluster = entry.get("cluster", cluster.value)
        if entry_cluster != cluster.value:
            raise ValueError(
                f"Group {group_name} belongs to cluster {entry_cluster}, not {cluster.value}"
            )

        try:
            return GroupIds(
                name=group_name,
                public_key=entry["public_key"],
                program_id=entry["program_id"],
                dex_program_id=entry.get("dex_program_id", ""),
            )
        except KeyError as e:
            raise ValueError(f"Group {group_name} is missing {e.args[0]}") from e

    def _build_config(self, yaml_config: Dict[str, Any]) -> BotConfig:
        """Build BotConfig from YAML and environment."""

        # Build Venue config
        venue_yaml = yaml_config.get("venue", {})
        cluster_str = self._get_env("CLUSTER", venue_yaml.get("cluster", "mainnet"))
        try:
            cluster = Cluster(cluster_str)
        except ValueError as e:
            raise ValueError(f"Unknown cluster {cluster_str!r}") from e

        group_name = self._get_env("GROUP", venue_yaml.get("group", "mainnet.1"))
        venue = VenueConfig(
            cluster=cluster,
            group_name=group_name,
            group=self._resolve_group(yaml_config, cluster, group_name),
            endpoint_url=self._get_env("ENDPOINT_URL", venue_yaml.get("endpoint_url", "")),
            ws_url=self._get_env("WS_URL", venue_yaml.get("ws_url", "")),
            commitment=venue_yaml.get("commitment", "processed"),
            operator_account=self._get_env(
                "LIQOR_PK", venue_yaml.get("operator_account", "")
            ),
            keypair_path=self._get_env(
                "KEYPAIR", venue_yaml.get("keypair_path", "~/.config/solana/id.json")
            ),
        )

        # Build Loop config
        loop_yaml = yaml_config.get("loop", {})
        loop = LoopConfig(
            cycle_interval=self._get_env(
                "INTERVAL", float(loop_yaml.get("cycle_interval", 3.5))
            ),
            refresh_interval=self._get_env(
                "INTERVAL_ACCOUNTS", float(loop_yaml.get("refresh_interval", 600.0))
            ),
            resubscribe_interval=self._get_env(
                "INTERVAL_WEBSOCKET", float(loop_yaml.get("resubscribe_interval", 300.0))
            ),
            shutdown_timeout=float(loop_yaml.get("shutdown_timeout", 10.0)),
        )

        # Build Liquidation config
        liq_yaml = yaml_config.get("liquidation", {})
        safety_factor = parse_decimal(
            self._get_env("LIAB_LIMIT", liq_yaml.get("safety_factor", "0.9")),
            "LIAB_LIMIT",
        )
        liquidation = LiquidationConfig(
            safety_factor=min(safety_factor, Decimal("1")),
            check_triggers=self._get_env(
                "CHECK_TRIGGERS", bool(liq_yaml.get("check_triggers", True))
            ),
            max_cancel_passes=liq_yaml.get("max_cancel_passes", 5),
            perp_cancel_limit=liq_yaml.get("perp_cancel_limit", 10),
            spot_cancel_limit=liq_yaml.get("spot_cancel_limit", 5),
        )

        # Build Rebalance config
        rebalance_yaml = yaml_config.get("rebalance", {})
        targets_raw = self._get_env("TARGETS", rebalance_yaml.get("targets"))
        rebalance = RebalanceConfig(
            min_interval=self._get_env(
                "INTERVAL_REBALANCE", float(rebalance_yaml.get("min_interval", 10.0))
            ),
            enabled=rebalance_yaml.get("enabled", True),
        )
        if targets_raw is not None:
            rebalance.targets = parse_targets(targets_raw)

        # Build Alert config
        alerts_yaml = yaml_config.get("alerts", {})
        alerts = AlertConfig(
            webhook_url=self._get_env("WEBHOOK_URL", alerts_yaml.get("webhook_url", "")),
            min_severity=alerts_yaml.get("min_severity", "info"),
            timeout=float(alerts_yaml.get("timeout", 10.0)),
        )

        # Build Logging config
        logging_yaml = yaml_config.get("logging", {})
        log_config = LoggingConfig(
            level=self._get_env("LOG_LEVEL", logging_yaml.get("level", "INFO")),
            file_path=logging_yaml.get("file_path", "logs/liquidator.log"),
            max_size_mb=logging_yaml.get("max_size_mb", 10),
            backup_count=logging_yaml.get("backup_count", 5),
        )

        paper_trading = self._get_env("PAPER_TRADING", bool(yaml_config.get("paper_trading", False)))

        return BotConfig(
            venue=venue,
            loop=loop,
            liquidation=liquidation,
            rebalance=rebalance,
            alerts=alerts,
            logging=log_config,
            adapter=self._get_env("ADAPTER", yaml_config.get("adapter", "")),
            paper_trading=paper_trading,
        )

    def get_private_key(self) -> Optional[str]:
        """
        Get the payer's secret key from environment, if set there.

        The key MUST never be stored in config files; otherwise the
        keypair file in venue.keypair_path is used by the adapter.
        """
        return os.environ.get(f"{self.ENV_PREFIX}PRIVATE_KEY") or None
