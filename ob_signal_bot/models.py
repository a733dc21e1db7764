from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple


LONG = "LONG"
SHORT = "SHORT"


@dataclass(frozen=True)
class Candle:
    open_time_ms: int
    open: float
    high: float
    low: float
    close: float
    volume: float

    @property
    def body(self) -> float:
        return abs(self.close - self.open)

    @property
    def is_bullish(self) -> bool:
        return self.close > self.open

    @property
    def is_bearish(self) -> bool:
        return self.close < self.open


@dataclass(frozen=True)
class SwingPoint:
    index: int
    price: float
    kind: str  # high or low


@dataclass(frozen=True)
class OrderBlock:
    low: float
    high: float
    index: int

    def contains(self, price: float) -> bool:
        return self.low <= price <= self.high


@dataclass(frozen=True)
class Ticker:
    symbol: str  # exchange form, e.g. "BTCUSDT" or "BTCUSDT (spot)" after a market fallback
    last_price: Optional[float]
    percent_change: Optional[float]


@dataclass(frozen=True)
class Signal:
    direction: str  # LONG or SHORT
    timeframe: str
    entry: float
    stop: float
    targets: Tuple[float, ...]
    ob_low: float
    ob_high: float
    snr: Optional[float] = None
    atr: Optional[float] = None

    @property
    def risk(self) -> float:
        return abs(self.entry - self.stop)


@dataclass(frozen=True)
class ScanResult:
    symbol: str
    price: Optional[float] = None
    percent_change: Optional[float] = None
    signal: Optional[Signal] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class TimeframeOutcome:
    timeframe: str
    signal: Optional[Signal] = None
    error: Optional[str] = None

    @property
    def direction(self) -> Optional[str]:
        return self.signal.direction if self.signal is not None else None


@dataclass(frozen=True)
class MultiScanResult:
    symbol: str
    price: Optional[float] = None
    percent_change: Optional[float] = None
    per_timeframe: Dict[str, TimeframeOutcome] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None
