"""Configuration module for the margin account liquidator."""

from .settings import (
    Cluster,
    CLUSTER_URLS,
    GroupIds,
    VenueConfig,
    LoopConfig,
    LiquidationConfig,
    RebalanceConfig,
    AlertConfig,
    LoggingConfig,
    BotConfig,
)

__all__ = [
    "Cluster",
    "CLUSTER_URLS",
    "GroupIds",
    "VenueConfig",
    "LoopConfig",
    "LiquidationConfig",
    "RebalanceConfig",
    "AlertConfig",
    "LoggingConfig",
    "BotConfig",
]
