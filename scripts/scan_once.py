from __future__ import annotations

import argparse
import asyncio
import logging

from ob_signal_bot.config import load_config
from ob_signal_bot.formatters import format_scan, format_summary
from ob_signal_bot.providers.binance import BinanceProvider
from ob_signal_bot.scanner import Scanner


async def _run(cfg, summary: bool) -> str:
    provider = BinanceProvider(
        market=cfg.provider.market,
        fallback_markets=cfg.provider.fallback_markets,
        rest_timeout_s=cfg.provider.rest_timeout_s,
    )
    scanner = Scanner(provider, cfg.strategy, candle_limit=cfg.provider.candle_limit)
    try:
        if summary:
            rows = await scanner.scan_all_multi(cfg.scan.symbols, cfg.scan.summary_timeframes)
            return format_summary(rows, cfg.scan.summary_timeframes, tz=cfg.app.timezone)
        rows = await scanner.scan_all(cfg.scan.symbols, cfg.scan.timeframes)
        return format_scan(rows, tz=cfg.app.timezone)
    finally:
        await provider.close()


def main():
    p = argparse.ArgumentParser(description="Run a single scan and print the result")
    p.add_argument("--config", required=True, help="Path to YAML config")
    p.add_argument("--summary", action="store_true", help="Multi-timeframe summary instead of first-match scan")
    args = p.parse_args()

    cfg = load_config(args.config)
    logging.basicConfig(level=cfg.app.log_level, format="%(asctime)s | %(levelname)s | %(name)s | %(message)s")
    print(asyncio.run(_run(cfg, args.summary)))


if __name__ == "__main__":
    main()
