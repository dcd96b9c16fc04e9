"""PineGate — marketplace access control for TradingView invite-only scripts."""

__version__ = "0.1.0"
