"""
Risk Module.

Provides:
- Weighted health at maintenance and init strictness
- Liquidatable and bankrupt classification
- Health ratio for account reports
"""

from .health import (
    HealthComponents,
    evaluate,
    health,
    health_ratio,
    perp_market_health,
    perp_position_health,
    token_net_values,
    compute_equity,
    has_collateral,
    is_liquidatable,
    is_bankrupt,
)

__all__ = [
    "HealthComponents",
    "evaluate",
    "health",
    "health_ratio",
    "perp_market_health",
    "perp_position_health",
    "token_net_values",
    "compute_equity",
    "has_collateral",
    "is_liquidatable",
    "is_bankrupt",
]
