from __future__ import annotations

import logging
import math
from typing import Optional, Sequence, Tuple

from .config import StrategyConfig
from .indicators import atr, closes_of, swing_high, swing_low, trend_snr
from .models import LONG, SHORT, Candle, OrderBlock, Signal, SwingPoint
from .orderblock import find_order_block

log = logging.getLogger("strategy")


def pick_entry(ob: OrderBlock, direction: str, entry_mode: str) -> float:
    if entry_mode == "ob_top":
        return ob.high if direction == LONG else ob.low
    if entry_mode == "ob_bottom":
        return ob.low if direction == LONG else ob.high
    return (ob.low + ob.high) / 2.0


def classify_break(close: float, sh: SwingPoint, sl: SwingPoint) -> Optional[str]:
    """Direction of the structure break on the last close, if any.

    When the close is beyond both swings (only possible when the swing low is
    priced above the swing high) the break of the more recent swing wins.
    """
    up = close > sh.price
    down = close < sl.price
    if up and down:
        return SHORT if sl.index > sh.index else LONG
    if up:
        return LONG
    if down:
        return SHORT
    return None


def risk_targets(entry: float, risk: float, direction: str, r_mults: Sequence[float]) -> Tuple[float, ...]:
    sign = 1.0 if direction == LONG else -1.0
    return tuple(entry + sign * r * risk for r in sorted(set(r_mults)) if r > 0)


class SignalEngine:
    """Stateless order-block signal generator for one (symbol, timeframe) series."""

    def __init__(self, cfg: StrategyConfig):
        self.cfg = cfg

    def generate(self, candles: Sequence[Candle], timeframe: str) -> Optional[Signal]:
        cfg = self.cfg
        if not candles or len(candles) < int(cfg.min_candles):
            return None

        last = candles[-1]
        close = last.close

        a = atr(candles, int(cfg.atr_period))
        if a is None or not math.isfinite(a) or a <= 0:
            return None

        sh = swing_high(candles, int(cfg.swing_lookback))
        sl = swing_low(candles, int(cfg.swing_lookback))
        if sh is None or sl is None:
            return None

        if last.body < a * float(cfg.atr_mult):
            return None

        snr: Optional[float] = None
        if cfg.snr.enabled:
            snr = trend_snr(closes_of(candles), int(cfg.snr.length))
            if snr is None or snr < cfg.snr.min_for(timeframe):
                return None

        direction = classify_break(close, sh, sl)
        if direction is None:
            return None

        bos_idx = len(candles) - 1
        ob = find_order_block(
            candles,
            bos_idx,
            direction == LONG,
            use_wicks=bool(cfg.ob_use_wicks),
            max_lookback=int(cfg.ob_max_lookback),
        )
        if ob is None:
            return None

        # only fire while price is still inside the source order block
        if not ob.contains(close):
            return None

        entry = pick_entry(ob, direction, cfg.entry_mode)
        pad = a * float(cfg.sl_atr_pad)
        stop = ob.low - pad if direction == LONG else ob.high + pad
        risk = entry - stop if direction == LONG else stop - entry
        if not math.isfinite(risk) or risk <= 0:
            return None

        targets = risk_targets(entry, risk, direction, cfg.targets_for(timeframe))
        if not targets:
            return None

        log.debug(
            "signal tf=%s dir=%s entry=%.6g stop=%.6g ob=[%.6g, %.6g] ob_idx=%d atr=%.6g snr=%s",
            timeframe, direction, entry, stop, ob.low, ob.high, ob.index, a, snr,
        )
        return Signal(
            direction=direction,
            timeframe=timeframe,
            entry=float(entry),
            stop=float(stop),
            targets=targets,
            ob_low=float(ob.low),
            ob_high=float(ob.high),
            snr=snr,
            atr=float(a),
        )


def generate_signal(candles: Sequence[Candle], timeframe: str, cfg: Optional[StrategyConfig] = None) -> Optional[Signal]:
    return SignalEngine(cfg or StrategyConfig()).generate(candles, timeframe)
