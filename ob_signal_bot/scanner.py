from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol, Sequence

from .config import StrategyConfig
from .errors import DataUnavailable
from .models import Candle, MultiScanResult, ScanResult, Ticker, TimeframeOutcome
from .strategy import SignalEngine

log = logging.getLogger("scanner")


class MarketDataProvider(Protocol):
    async def fetch_ticker(self, symbol: str) -> Ticker: ...

    async def fetch_klines(self, symbol: str, timeframe: str, limit: int = 300) -> List[Candle]: ...


def _reason(e: BaseException) -> str:
    return str(e) or e.__class__.__name__


@dataclass(frozen=True)
class Agreement:
    symbol: str
    aligned: bool
    direction: Optional[str] = None
    reason: Optional[str] = None  # error | no_signal | mixed


def classify_agreement(result: MultiScanResult) -> Agreement:
    """Aligned when at least two timeframes fire and all fired ones agree."""
    if result.error is not None:
        return Agreement(symbol=result.symbol, aligned=False, reason="error")
    dirs = [o.direction for o in result.per_timeframe.values() if o.direction]
    if not dirs:
        return Agreement(symbol=result.symbol, aligned=False, reason="no_signal")
    if len(dirs) >= 2 and all(d == dirs[0] for d in dirs):
        return Agreement(symbol=result.symbol, aligned=True, direction=dirs[0])
    return Agreement(symbol=result.symbol, aligned=False, reason="mixed")


class Scanner:
    """Sequential symbol x timeframe scans; one provider request in flight at a time."""

    def __init__(self, provider: MarketDataProvider, strategy_cfg: StrategyConfig, *, candle_limit: int = 300):
        self.provider = provider
        self.engine = SignalEngine(strategy_cfg)
        self.candle_limit = int(candle_limit)

    async def scan_one(self, symbol: str, timeframes: Sequence[str]) -> ScanResult:
        """First-match: the first timeframe (in priority order) that yields a signal."""
        t = await self.provider.fetch_ticker(symbol)
        for tf in timeframes:
            candles = await self.provider.fetch_klines(symbol, tf, self.candle_limit)
            sig = self.engine.generate(candles, tf)
            if sig is not None:
                log.info("hit symbol=%s tf=%s dir=%s entry=%.6g", t.symbol, tf, sig.direction, sig.entry)
                return ScanResult(symbol=t.symbol, price=t.last_price, percent_change=t.percent_change, signal=sig)
        return ScanResult(symbol=t.symbol, price=t.last_price, percent_change=t.percent_change)

    async def scan_all(self, symbols: Sequence[str], timeframes: Sequence[str]) -> List[ScanResult]:
        started = time.monotonic()
        out: List[ScanResult] = []
        for sym in symbols:
            try:
                out.append(await self.scan_one(sym, timeframes))
            except DataUnavailable as e:
                log.warning("scan_symbol_failed symbol=%s err=%s", sym, e)
                out.append(ScanResult(symbol=sym, error=_reason(e)))
            except Exception as e:
                log.exception("scan_symbol_error symbol=%s err=%s", sym, e)
                out.append(ScanResult(symbol=sym, error=_reason(e)))
        log.info(
            "scan_done symbols=%d hits=%d errors=%d tfs=%s elapsed=%.1fs",
            len(out),
            sum(1 for r in out if r.signal is not None),
            sum(1 for r in out if not r.ok),
            list(timeframes),
            time.monotonic() - started,
        )
        return out

    async def scan_symbol_multi(self, symbol: str, timeframes: Sequence[str]) -> MultiScanResult:
        """Full matrix: every timeframe is evaluated; candle failures stay per timeframe."""
        t = await self.provider.fetch_ticker(symbol)
        per_tf: Dict[str, TimeframeOutcome] = {}
        for tf in timeframes:
            try:
                candles = await self.provider.fetch_klines(symbol, tf, self.candle_limit)
                sig = self.engine.generate(candles, tf)
            except DataUnavailable as e:
                log.warning("scan_tf_failed symbol=%s tf=%s err=%s", symbol, tf, e)
                per_tf[tf] = TimeframeOutcome(timeframe=tf, error=_reason(e))
                continue
            except Exception as e:
                log.exception("scan_tf_error symbol=%s tf=%s err=%s", symbol, tf, e)
                per_tf[tf] = TimeframeOutcome(timeframe=tf, error=_reason(e))
                continue
            per_tf[tf] = TimeframeOutcome(timeframe=tf, signal=sig)
        return MultiScanResult(
            symbol=t.symbol,
            price=t.last_price,
            percent_change=t.percent_change,
            per_timeframe=per_tf,
        )

    async def scan_all_multi(self, symbols: Sequence[str], timeframes: Sequence[str]) -> List[MultiScanResult]:
        started = time.monotonic()
        out: List[MultiScanResult] = []
        for sym in symbols:
            try:
                out.append(await self.scan_symbol_multi(sym, timeframes))
            except DataUnavailable as e:
                log.warning("scan_symbol_failed symbol=%s err=%s", sym, e)
                out.append(MultiScanResult(symbol=sym, error=_reason(e)))
            except Exception as e:
                log.exception("scan_symbol_error symbol=%s err=%s", sym, e)
                out.append(MultiScanResult(symbol=sym, error=_reason(e)))
        log.info(
            "scan_multi_done symbols=%d aligned=%d errors=%d elapsed=%.1fs",
            len(out),
            sum(1 for r in out if classify_agreement(r).aligned),
            sum(1 for r in out if not r.ok),
            time.monotonic() - started,
        )
        return out
