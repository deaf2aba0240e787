#!/usr/bin/env python3
"""
Margin Account Liquidator - Main Entry Point.

Usage:
    python -m src.main config/config.yaml --adapter mypkg.venue:build_adapter
    python -m src.main config/config.yaml --paper
    python -m src.main config/config.yaml --dry-run

Environment:
    LIQUIDATOR_CLUSTER / LIQUIDATOR_GROUP: Target cluster and group
    LIQUIDATOR_LIQOR_PK: Operator margin account (optional)
    LIQUIDATOR_TARGETS: Space-separated rebalance targets
    LIQUIDATOR_WEBHOOK_URL: Notification webhook
    LIQUIDATOR_ADAPTER: Venue adapter factory ("module:factory")
"""

import argparse
import asyncio
import logging
import signal
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from config.settings import BotConfig
from src.utils.config_loader import ConfigLoader
from src.core import (
    AlertManager,
    AlertSeverity,
    ConfigurationError,
    LoggingAlertHandler,
    Orchestrator,
    OrchestratorState,
    WebhookAlertHandler,
)
from src.ledger import LedgerAdapter, PaperExecutor, load_adapter


def setup_logging(
    level: str,
    log_file: Optional[str] = None,
    max_size_mb: int = 10,
    backup_count: int = 5,
) -> None:
    """
    Configure logging for the liquidator.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional file path for logging
        max_size_mb: Rotate the log file at this size
        backup_count: Rotated files to keep
    """
    console_format = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    file_format = (
        "%(asctime)s [%(levelname)s] %(name)s "
        "(%(filename)s:%(lineno)d): %(message)s"
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, level.upper(), logging.INFO))
    console_handler.setFormatter(logging.Formatter(console_format))
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=max_size_mb * 1024 * 1024,
            backupCount=backup_count,
        )
        file_handler.setLevel(logging.DEBUG)  # Log everything to file
        file_handler.setFormatter(logging.Formatter(file_format))
        root_logger.addHandler(file_handler)

    # Reduce noise from third-party libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("websockets").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Margin Account Liquidator",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Record actions instead of submitting them
  python -m src.main config/config.yaml --adapter mypkg.venue:build_adapter --paper

  # Validate configuration without running
  python -m src.main config/config.yaml --dry-run

  # Run with debug logging
  python -m src.main config/config.yaml --log-level DEBUG
        """,
    )

    parser.add_argument(
        "config",
        type=str,
        nargs="?",
        default="config/config.yaml",
        help="Path to configuration YAML file",
    )

    parser.add_argument(
        "--adapter",
        type=str,
        default=None,
        help="Venue adapter factory as 'module:factory' (overrides config)",
    )

    parser.add_argument(
        "--paper",
        action="store_true",
        help="Record actions instead of submitting them",
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate configuration and exit",
    )

    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: from config)",
    )

    parser.add_argument(
        "--log-file",
        type=str,
        default=None,
        help="Log file path (default: from config)",
    )

    return parser.parse_args(argv)


def print_config_summary(config: BotConfig) -> None:
    """Print configuration summary."""
    print("\nConfiguration:")
    print(f"  Cluster: {config.venue.cluster.value}")
    print(f"  Group: {config.venue.group_name}")
    print(f"  Operator account: {config.venue.operator_account or '(auto)'}")
    print(f"  Paper trading: {config.paper_trading}")
    print(f"  Safety factor: {config.liquidation.safety_factor}")
    print(f"  Check triggers: {config.liquidation.check_triggers}")
    print(f"  Cycle interval: {config.loop.cycle_interval}s")
    print(f"  Targets: {' '.join(str(t) for t in config.rebalance.targets)}")
    print()


def build_alert_manager(config: BotConfig) -> AlertManager:
    """Logging handler always, webhook handler when a URL is configured."""
    alert_manager = AlertManager()
    alert_manager.add_handler(LoggingAlertHandler())

    if config.alerts.webhook_url:
        alert_manager.add_handler(WebhookAlertHandler(
            config.alerts.webhook_url,
            min_severity=AlertSeverity(config.alerts.min_severity),
            timeout=config.alerts.timeout,
        ))
    return alert_manager


def build_adapter(config: BotConfig, reference: str) -> LedgerAdapter:
    """Load the venue adapter, swapping in a paper executor when requested."""
    adapter = load_adapter(reference, config)
    if config.paper_trading:
        adapter = LedgerAdapter(
            reader=adapter.reader,
            executor=PaperExecutor(wrapped=adapter.executor),
            feed=adapter.feed,
        )
    return adapter


async def main(args: argparse.Namespace) -> int:
    """
    Main async entry point.

    Args:
        args: Parsed command line arguments

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    logger = logging.getLogger(__name__)

    try:
        loader = ConfigLoader(args.config)
        config = loader.load()
    except ValueError as e:
        logger.critical(f"Error loading config: {e}")
        return 1

    if args.log_level is None:
        logging.getLogger().setLevel(getattr(logging, config.logging.level.upper(), logging.INFO))

    if args.paper:
        config.paper_trading = True
    if args.adapter:
        config.adapter = args.adapter

    print_config_summary(config)

    errors = config.validate()
    if errors:
        print("Configuration errors:")
        for error in errors:
            print(f"  - {error}")
        return 1

    if not config.adapter:
        print("Error: no venue adapter configured (use --adapter or LIQUIDATOR_ADAPTER)")
        return 1

    logger.info("Configuration validated successfully")

    if args.dry_run:
        print("Dry run complete - configuration is valid")
        return 0

    try:
        adapter = build_adapter(config, config.adapter)
    except (ImportError, ValueError) as e:
        logger.critical(f"Cannot load adapter {config.adapter}: {e}")
        return 1

    orchestrator = Orchestrator(
        config,
        adapter.reader,
        adapter.executor,
        feed=adapter.feed,
        alert_manager=build_alert_manager(config),
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, lambda: asyncio.ensure_future(orchestrator.stop()))
        except NotImplementedError:
            pass  # Windows

    try:
        await orchestrator.initialize()
        await orchestrator.start()

        logger.info("Liquidator is running. Press Ctrl+C to stop.")

        while orchestrator.state != OrchestratorState.STOPPED:
            await asyncio.sleep(1)

        logger.info("Orchestrator stopped normally")
        return 0

    except ConfigurationError:
        return 1

    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        try:
            await orchestrator.stop()
        except Exception as stop_error:
            logger.error(f"Error during shutdown: {stop_error}")
        return 1


def run() -> None:
    """Synchronous entry point."""
    args = parse_args()

    setup_logging(args.log_level or "INFO", args.log_file or "logs/liquidator.log")

    logger = logging.getLogger(__name__)
    logger.info("Starting margin account liquidator")
    logger.info(f"Config: {args.config}")

    try:
        exit_code = asyncio.run(main(args))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        exit_code = 0

    logger.info(f"Exiting with code {exit_code}")
    sys.exit(exit_code)


if __name__ == "__main__":
    run()
