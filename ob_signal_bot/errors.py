from __future__ import annotations


class ObSignalError(Exception):
    """Base class for errors raised by the scanner bot."""


class DataUnavailable(ObSignalError):
    """Market data could not be fetched for a symbol after trying every known form."""

    def __init__(self, symbol: str, what: str = "data", timeframe: str = "") -> None:
        self.symbol = symbol
        self.what = what
        self.timeframe = timeframe
        label = f"{symbol} {timeframe}".strip()
        super().__init__(f"{what} unavailable: {label}")


class ConfigError(ObSignalError, ValueError):
    """Invalid configuration, raised once at startup."""
