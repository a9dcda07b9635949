"""marketscan: crypto market scanner and bar-by-bar backtester."""

__version__ = "0.1.0"
