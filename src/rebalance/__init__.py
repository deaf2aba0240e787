"""
Rebalance Module.

Provides:
- Token diff computation against per-token targets
- Operator portfolio rebalancing and perp position closing
"""

from .rebalancer import (
    PortfolioRebalancer,
    RebalanceDecision,
    RebalanceReason,
    TokenDiff,
    compute_token_diffs,
    fee_adjusted_price,
)

__all__ = [
    "PortfolioRebalancer",
    "RebalanceDecision",
    "RebalanceReason",
    "TokenDiff",
    "compute_token_diffs",
    "fee_adjusted_price",
]
