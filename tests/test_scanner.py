import asyncio
import json
from typing import Dict, List, Set, Tuple

from ob_signal_bot.config import StrategyConfig
from ob_signal_bot.errors import DataUnavailable
from ob_signal_bot.models import LONG, SHORT, Candle, MultiScanResult, Ticker, TimeframeOutcome
from ob_signal_bot.scanner import Scanner, classify_agreement

from candles import flat, long_setup, short_setup

SYMBOLS = ["BTC/USDT", "ETH/USDT", "SOL/USDT", "DOGE/USDT", "XRP/USDT", "ADA/USDT", "LINK/USDT"]


class FakeProvider:
    def __init__(
        self,
        series: Dict[Tuple[str, str], List[Candle]] = None,
        *,
        dead_symbols: Set[str] = (),
        dead_klines: Set[Tuple[str, str]] = (),
    ):
        self.series = series or {}
        self.dead_symbols = set(dead_symbols)
        self.dead_klines = set(dead_klines)
        self.calls: List[Tuple[str, ...]] = []

    async def fetch_ticker(self, symbol: str) -> Ticker:
        self.calls.append(("ticker", symbol))
        if symbol in self.dead_symbols:
            raise DataUnavailable(symbol, "ticker")
        return Ticker(symbol=symbol.replace("/", ""), last_price=100.0, percent_change=1.25)

    async def fetch_klines(self, symbol: str, timeframe: str, limit: int = 300) -> List[Candle]:
        self.calls.append(("klines", symbol, timeframe))
        if (symbol, timeframe) in self.dead_klines:
            raise DataUnavailable(symbol, "candles", timeframe)
        return self.series.get((symbol, timeframe), flat(100))


def _scanner(provider) -> Scanner:
    return Scanner(provider, StrategyConfig(), candle_limit=300)


def test_partial_provider_failure_keeps_every_symbol():
    provider = FakeProvider(dead_symbols={"SOL/USDT", "ADA/USDT"})
    rows = asyncio.run(_scanner(provider).scan_all(SYMBOLS, ["15m", "1h"]))

    assert len(rows) == 7
    errors = [r for r in rows if not r.ok]
    assert sorted(r.symbol for r in errors) == ["ADA/USDT", "SOL/USDT"]
    assert all("unavailable" in r.error for r in errors)
    assert sum(1 for r in rows if r.ok) == 5
    assert [r.symbol for r in rows if r.ok][0] == "BTCUSDT"


def test_first_match_stops_at_first_signalling_timeframe():
    provider = FakeProvider({("BTC/USDT", "15m"): long_setup(), ("BTC/USDT", "1h"): short_setup()})
    res = asyncio.run(_scanner(provider).scan_one("BTC/USDT", ["5m", "15m", "1h"]))

    assert res.ok
    assert res.signal is not None
    assert res.signal.timeframe == "15m"
    assert res.signal.direction == LONG
    assert (res.price, res.percent_change) == (100.0, 1.25)
    assert ("klines", "BTC/USDT", "1h") not in provider.calls
    assert provider.calls.count(("ticker", "BTC/USDT")) == 1


def test_no_signal_is_not_an_error():
    rows = asyncio.run(_scanner(FakeProvider()).scan_all(["BTC/USDT"], ["15m"]))
    assert rows[0].ok
    assert rows[0].signal is None


def test_candle_failure_in_first_match_marks_symbol_as_error():
    provider = FakeProvider(dead_klines={("ETH/USDT", "15m")})
    rows = asyncio.run(_scanner(provider).scan_all(["BTC/USDT", "ETH/USDT"], ["15m"]))
    assert rows[0].ok
    assert not rows[1].ok
    assert rows[1].symbol == "ETH/USDT"


def test_unexpected_provider_exception_is_isolated():
    class Broken(FakeProvider):
        async def fetch_ticker(self, symbol):
            if symbol == "ETH/USDT":
                raise ValueError("bad payload")
            return await super().fetch_ticker(symbol)

    rows = asyncio.run(_scanner(Broken()).scan_all(["BTC/USDT", "ETH/USDT", "XRP/USDT"], ["15m"]))
    assert [r.ok for r in rows] == [True, False, True]
    assert rows[1].error == "bad payload"


def test_full_matrix_keeps_per_timeframe_outcomes():
    provider = FakeProvider(
        {("BTC/USDT", "15m"): long_setup(), ("BTC/USDT", "1h"): long_setup()},
        dead_klines={("BTC/USDT", "4h")},
    )
    res = asyncio.run(_scanner(provider).scan_symbol_multi("BTC/USDT", ["5m", "15m", "1h", "4h"]))

    assert list(res.per_timeframe) == ["5m", "15m", "1h", "4h"]
    assert res.per_timeframe["5m"].signal is None and res.per_timeframe["5m"].error is None
    assert res.per_timeframe["15m"].direction == LONG
    assert res.per_timeframe["1h"].direction == LONG
    assert res.per_timeframe["4h"].error is not None

    verdict = classify_agreement(res)
    assert verdict.aligned
    assert verdict.direction == LONG


def test_scan_all_multi_records_symbol_errors():
    provider = FakeProvider(dead_symbols={"ETH/USDT"})
    rows = asyncio.run(_scanner(provider).scan_all_multi(["BTC/USDT", "ETH/USDT"], ["15m", "1h"]))
    assert len(rows) == 2
    assert rows[0].ok and set(rows[0].per_timeframe) == {"15m", "1h"}
    assert not rows[1].ok
    assert classify_agreement(rows[1]).reason == "error"


def _multi(*dirs) -> MultiScanResult:
    from ob_signal_bot.models import Signal

    per_tf = {}
    for i, d in enumerate(dirs):
        tf = f"tf{i}"
        sig = None
        if d is not None:
            sig = Signal(direction=d, timeframe=tf, entry=1.0, stop=0.5, targets=(1.5,), ob_low=0.9, ob_high=1.1)
        per_tf[tf] = TimeframeOutcome(timeframe=tf, signal=sig)
    return MultiScanResult(symbol="X", price=1.0, percent_change=0.0, per_timeframe=per_tf)


def test_classify_agreement():
    assert classify_agreement(_multi(None, None)).reason == "no_signal"
    assert classify_agreement(_multi(LONG, None)).reason == "mixed"  # a single timeframe is not agreement
    assert classify_agreement(_multi(LONG, SHORT)).reason == "mixed"
    agreed = classify_agreement(_multi(SHORT, None, SHORT))
    assert agreed.aligned and agreed.direction == SHORT


def test_bad_payload_on_one_timeframe_keeps_the_others():
    class Garbled(FakeProvider):
        async def fetch_klines(self, symbol, timeframe, limit=300):
            if timeframe == "4h":
                raise json.JSONDecodeError("Expecting value", "<html>", 0)
            return await super().fetch_klines(symbol, timeframe, limit)

    provider = Garbled({("BTC/USDT", "15m"): long_setup(), ("BTC/USDT", "1h"): long_setup()})
    (res,) = asyncio.run(_scanner(provider).scan_all_multi(["BTC/USDT"], ["15m", "1h", "4h"]))

    assert res.ok
    assert res.per_timeframe["15m"].direction == LONG
    assert res.per_timeframe["1h"].direction == LONG
    assert "Expecting value" in res.per_timeframe["4h"].error
    assert classify_agreement(res).aligned
