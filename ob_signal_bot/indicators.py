from __future__ import annotations
from typing import List, Optional, Sequence
import math

from .models import Candle, SwingPoint


def true_range(high: float, low: float, prev_close: float) -> float:
    return max(high - low, abs(high - prev_close), abs(low - prev_close))


def atr(candles: Sequence[Candle], period: int = 14) -> Optional[float]:
    """Simple-average ATR over the last `period` bars (not Wilder-smoothed)."""
    if period <= 0 or len(candles) < period + 1:
        return None
    trs = []
    for i in range(-period, 0):
        c = candles[i]
        trs.append(true_range(c.high, c.low, candles[i - 1].close))
    return sum(trs) / period


def swing_high(candles: Sequence[Candle], lookback: int = 5) -> Optional[SwingPoint]:
    """Most recent confirmed swing high; ties with any neighbour disqualify."""
    if lookback <= 0:
        return None
    n = len(candles)
    # the newest bar never confirms a swing
    for i in range(n - lookback - 2, lookback - 1, -1):
        h = candles[i].high
        if all(candles[i - k].high < h and candles[i + k].high < h for k in range(1, lookback + 1)):
            return SwingPoint(index=i, price=h, kind="high")
    return None


def swing_low(candles: Sequence[Candle], lookback: int = 5) -> Optional[SwingPoint]:
    """Most recent confirmed swing low; ties with any neighbour disqualify."""
    if lookback <= 0:
        return None
    n = len(candles)
    for i in range(n - lookback - 2, lookback - 1, -1):
        lo = candles[i].low
        if all(candles[i - k].low > lo and candles[i + k].low > lo for k in range(1, lookback + 1)):
            return SwingPoint(index=i, price=lo, kind="low")
    return None


def trend_snr(closes: Sequence[float], length: int = 50) -> Optional[float]:
    """Trend signal-to-noise: |OLS slope| / residual std over the last `length` closes.

    Returns None when there is not enough data or the fit is degenerate
    (zero x-variance, residual dispersion that is zero up to rounding or non-finite).
    """
    if length < 2 or len(closes) < length:
        return None
    ys = [float(v) for v in closes[-length:]]
    n = float(length)
    mean_x = (n - 1.0) / 2.0
    mean_y = sum(ys) / n

    sxx = 0.0
    sxy = 0.0
    for x, y in enumerate(ys):
        dx = x - mean_x
        sxx += dx * dx
        sxy += dx * (y - mean_y)
    if sxx == 0:
        return None

    slope = sxy / sxx
    intercept = mean_y - slope * mean_x
    sse = 0.0
    for x, y in enumerate(ys):
        resid = y - (intercept + slope * x)
        sse += resid * resid

    dof = max(length - 2, 1)
    resid_std = math.sqrt(sse / dof)
    # rounding noise on an exactly linear series is not a residual
    if not math.isfinite(resid_std) or resid_std <= 1e-12 * abs(mean_y):
        return None
    snr = abs(slope) / resid_std
    if not math.isfinite(snr):
        return None
    return snr


def closes_of(candles: Sequence[Candle]) -> List[float]:
    return [c.close for c in candles]
