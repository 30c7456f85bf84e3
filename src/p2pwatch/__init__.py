"""Watch Bybit P2P orders and gate their release behind a two-step Telegram confirmation."""

__version__ = "0.1.0"
