from __future__ import annotations
from typing import Optional, Sequence

from .models import Candle, OrderBlock


def find_order_block(
    candles: Sequence[Candle],
    bos_index: int,
    is_up: bool,
    *,
    use_wicks: bool = True,
    max_lookback: int = 50,
) -> Optional[OrderBlock]:
    """Last opposite-coloured candle before a break of structure.

    Walks back from `bos_index - 1` for at most `max_lookback` bars; the
    closest bearish candle (up-break) or bullish candle (down-break) wins.
    Doji bars are skipped. The zone is the wick range or the body range.
    """
    if not candles or bos_index <= 0:
        return None
    start = min(bos_index, len(candles)) - 1
    stop = max(0, bos_index - max_lookback)
    for j in range(start, stop - 1, -1):
        c = candles[j]
        if (is_up and c.is_bearish) or (not is_up and c.is_bullish):
            if use_wicks:
                return OrderBlock(low=c.low, high=c.high, index=j)
            return OrderBlock(low=min(c.open, c.close), high=max(c.open, c.close), index=j)
    return None
