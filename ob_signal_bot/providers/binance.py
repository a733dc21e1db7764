from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Optional, Tuple

import aiohttp

from ..errors import DataUnavailable
from ..models import Candle, Ticker

log = logging.getLogger("binance")


def _rest_base(market: str) -> str:
    return "https://fapi.binance.com" if market == "futures" else "https://api.binance.com"


def _klines_path(market: str) -> str:
    return "/fapi/v1/klines" if market == "futures" else "/api/v3/klines"


def _ticker_path(market: str) -> str:
    return "/fapi/v1/ticker/24hr" if market == "futures" else "/api/v3/ticker/24hr"


def exchange_id(symbol: str) -> str:
    """'BTC/USDT', 'BTC/USDT:USDT' and 'btcusdt' all map to 'BTCUSDT'."""
    s = (symbol or "").strip().upper()
    if ":" in s:
        s = s.split(":", 1)[0]
    return s.replace("/", "").replace("-", "").replace("_", "")


def _float_or_none(v: Any) -> Optional[float]:
    if v is None:
        return None
    try:
        return float(v)
    except (TypeError, ValueError):
        return None


# a failure of one (market, symbol) form; the next form is tried
# ValueError covers undecodable bodies (e.g. a proxy HTML page) and bad rows
_FORM_ERRORS = (RuntimeError, ValueError, TypeError, IndexError, asyncio.TimeoutError, aiohttp.ClientError)


class BinanceRequestError(RuntimeError):
    def __init__(self, status: int, body: str):
        self.status = status
        super().__init__(f"Binance request failed: {status} {body[:500]}")


class BinanceProvider:
    def __init__(
        self,
        market: str = "futures",
        *,
        fallback_markets: bool = True,
        rest_timeout_s: int = 20,
        rest_max_retries: int = 1,
        rest_backoff_s: float = 0.8,
        rest_conn_limit: int = 10,
        rest_conn_limit_per_host: int = 4,
    ):
        self.market = market
        self.fallback_markets = fallback_markets
        self.rest_timeout_s = rest_timeout_s

        # REST robustness
        self.rest_max_retries = rest_max_retries
        self.rest_backoff_s = rest_backoff_s
        self.rest_conn_limit = rest_conn_limit
        self.rest_conn_limit_per_host = rest_conn_limit_per_host

        self._session: Optional[aiohttp.ClientSession] = None

    async def close(self) -> None:
        """Close the shared aiohttp session (best-effort)."""
        if self._session is not None and not self._session.closed:
            await self._session.close()

    def _timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(
            total=self.rest_timeout_s,
            connect=min(10, self.rest_timeout_s),
            sock_connect=min(10, self.rest_timeout_s),
            sock_read=max(10, int(self.rest_timeout_s * 0.75)),
        )

    def _connector(self) -> aiohttp.TCPConnector:
        return aiohttp.TCPConnector(
            limit=self.rest_conn_limit,
            limit_per_host=self.rest_conn_limit_per_host,
            ttl_dns_cache=300,
            enable_cleanup_closed=True,
        )

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout(), connector=self._connector())
        return self._session

    def candidate_forms(self, symbol: str) -> List[Tuple[str, str]]:
        """(market, exchange symbol) pairs to try, configured market first."""
        sym = exchange_id(symbol)
        markets = [self.market]
        if self.fallback_markets:
            markets += [m for m in ("futures", "spot") if m != self.market]
        # 'BTC/USDT:USDT' names a perpetual explicitly
        if ":" in (symbol or "") and "futures" in markets:
            markets = ["futures"]
        return [(m, sym) for m in markets]

    async def _get_json(self, market: str, path: str, params: dict, *, what: str) -> Any:
        url = _rest_base(market) + path
        sess = await self._get_session()

        backoff = float(self.rest_backoff_s)
        last_err: Optional[BaseException] = None
        for attempt in range(1, int(self.rest_max_retries) + 1):
            try:
                async with sess.get(url, params=params) as resp:
                    # Rate-limit / ban signals
                    if resp.status in (418, 429):
                        txt = await resp.text()
                        retry_after = resp.headers.get("Retry-After")
                        sleep_s = float(retry_after) if (retry_after and retry_after.isdigit()) else backoff
                        log.warning(
                            "rest_rate_limited status=%s what=%s params=%s sleep=%.1fs body=%s",
                            resp.status,
                            what,
                            params,
                            sleep_s,
                            txt[:200],
                        )
                        last_err = BinanceRequestError(resp.status, txt)
                        if attempt >= int(self.rest_max_retries):
                            break
                        await asyncio.sleep(sleep_s)
                        backoff = min(backoff * 2.0, 20.0)
                        continue

                    if resp.status != 200:
                        # 400 for unknown symbols etc; not worth retrying
                        txt = await resp.text()
                        raise BinanceRequestError(resp.status, txt)

                    # Some proxies return a wrong content-type; be tolerant.
                    return await resp.json(content_type=None)

            except (asyncio.TimeoutError, aiohttp.ClientError) as e:
                last_err = e
                if attempt >= int(self.rest_max_retries):
                    break
                log.warning(
                    "rest_timeout_or_client_err attempt=%d/%d what=%s params=%s backoff=%.1fs err=%s",
                    attempt,
                    self.rest_max_retries,
                    what,
                    params,
                    backoff,
                    e,
                )
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2.0, 20.0)

        if last_err is None:
            last_err = RuntimeError(f"no response for {what}")
        raise last_err

    async def fetch_ticker(self, symbol: str) -> Ticker:
        for market, sym in self.candidate_forms(symbol):
            try:
                data = await self._get_json(market, _ticker_path(market), {"symbol": sym}, what="ticker")
            except _FORM_ERRORS as e:
                log.debug("ticker_form_failed symbol=%s market=%s err=%s", sym, market, e)
                continue
            if not isinstance(data, dict):
                continue
            return Ticker(
                symbol=sym if market == self.market else f"{sym} ({market})",
                last_price=_float_or_none(data.get("lastPrice")),
                percent_change=_float_or_none(data.get("priceChangePercent")),
            )
        raise DataUnavailable(symbol, "ticker")

    async def fetch_klines(self, symbol: str, timeframe: str, limit: int = 300) -> List[Candle]:
        for market, sym in self.candidate_forms(symbol):
            params = {"symbol": sym, "interval": timeframe, "limit": int(limit)}
            try:
                data = await self._get_json(market, _klines_path(market), params, what="klines")
                if not isinstance(data, list):
                    raise ValueError(f"unexpected klines payload: {type(data).__name__}")
                return parse_klines(data)
            except _FORM_ERRORS as e:
                log.debug("klines_form_failed symbol=%s market=%s tf=%s err=%s", sym, market, timeframe, e)
        raise DataUnavailable(symbol, "candles", timeframe)


def parse_klines(rows: List[list]) -> List[Candle]:
    out: List[Candle] = []
    for row in rows:
        # [0]=open time, [1..5]=o,h,l,c,v
        out.append(Candle(
            open_time_ms=int(row[0]),
            open=float(row[1]),
            high=float(row[2]),
            low=float(row[3]),
            close=float(row[4]),
            volume=float(row[5]),
        ))
    return out
