from __future__ import annotations

import argparse
import asyncio
import logging

from .config import load_config
from .errors import ConfigError
from .runner import AlertRunner


def _setup_logging(level: str) -> None:
    lvl = getattr(logging, (level or "INFO").upper(), logging.INFO)
    logging.basicConfig(
        level=lvl,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


def main(argv=None) -> int:
    p = argparse.ArgumentParser(description="Order Block Sentinel - multi-TF order block signal bot")
    p.add_argument("--config", required=True, help="Path to YAML config")
    args = p.parse_args(argv)

    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        _setup_logging("INFO")
        logging.getLogger("main").error("config_error err=%s", e)
        return 2
    _setup_logging(cfg.app.log_level)

    runner = AlertRunner(cfg)

    async def _run() -> None:
        try:
            await runner.run_forever()
        finally:
            # Close shared REST session cleanly.
            await runner.provider.close()

    try:
        asyncio.run(_run())
        return 0
    except KeyboardInterrupt:
        logging.getLogger("main").info("stopped")
        return 0
    except Exception as e:
        logging.getLogger("main").exception("fatal err=%s", e)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
