"""Liquidation outcome exceptions."""


class LiquidationError(Exception):
    """Base exception for a liquidation attempt that stopped early."""

    def __init__(self, account: str, message: str):
        self.account = account
        super().__init__(f"{account}: {message}")


class AccountNoLongerLiquidatable(LiquidationError):
    """Reload showed the account is healthy again (expected outcome)."""

    def __init__(self, account: str):
        super().__init__(account, "account no longer liquidatable")


class LiquidationAbortedError(LiquidationError):
    """The attempt could not make progress on current state."""
    pass


class LiquidationInvariantError(LiquidationError):
    """State contradicted what the liquidation step required."""
    pass
