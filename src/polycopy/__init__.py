"""Copy-trading engine for Polymarket wallets."""

__version__ = "0.1.0"
