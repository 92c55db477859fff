"""DEX Buy Tracker - multi-chain swap monitoring with Telegram buy alerts."""

__version__ = "0.1.0"
