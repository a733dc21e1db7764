from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from .config import Config
from .formatters import format_scan, format_status, format_summary, parse_tz
from .notifier.telegram import TelegramNotifier
from .providers.binance import BinanceProvider
from .scanner import MarketDataProvider, Scanner
from .subscribers import SubscriberStore

log = logging.getLogger("runner")

ORDERS_DISABLED = "Order placement is disabled (signals and quotes only)."

HELP_TEXT = "\n".join([
    "/signal - scan all symbols on the default timeframes",
    "/signal_htf - scan all symbols on higher timeframes",
    "/summary - multi-timeframe agreement summary",
    "/auto_on - receive scheduled signal pushes",
    "/auto_off - stop scheduled pushes",
    "/status - bot status",
])


def parse_command(text: str) -> Optional[str]:
    """'/signal@MyBot extra' -> 'signal'."""
    text = (text or "").strip()
    if not text.startswith("/"):
        return None
    head = text.split()[0][1:]
    return head.split("@", 1)[0].lower() or None


class AlertRunner:
    def __init__(
        self,
        cfg: Config,
        *,
        provider: Optional[MarketDataProvider] = None,
        notifier: Optional[TelegramNotifier] = None,
        subscribers: Optional[SubscriberStore] = None,
    ):
        self.cfg = cfg
        parse_tz(cfg.app.timezone)  # fail fast on a bad timezone string
        self.provider = provider or BinanceProvider(
            market=cfg.provider.market,
            fallback_markets=cfg.provider.fallback_markets,
            rest_timeout_s=cfg.provider.rest_timeout_s,
            rest_max_retries=cfg.provider.rest_max_retries,
            rest_backoff_s=cfg.provider.rest_backoff_s,
        )
        self.scanner = Scanner(self.provider, cfg.strategy, candle_limit=cfg.provider.candle_limit)
        token = cfg.telegram.token if cfg.telegram.enabled else ""
        self.tg = notifier or TelegramNotifier(
            token=token,
            disable_web_page_preview=cfg.telegram.disable_web_page_preview,
            poll_timeout_s=cfg.telegram.poll_timeout_s,
        )
        self.subscribers = subscribers if subscribers is not None else SubscriberStore(cfg.telegram.chat_ids or [])

        # at most one scan in flight (ticks and commands alike)
        self._scan_lock = asyncio.Lock()
        self._offset: Optional[int] = None
        self._metrics = {
            "ticks_total": 0,
            "ticks_skipped_busy": 0,
            "pushes_total": 0,
        }

    # ---- scheduled scan -------------------------------------------------

    async def scheduled_tick(self) -> int:
        """One scheduler cycle. Returns the number of hits pushed."""
        self._metrics["ticks_total"] += 1
        if len(self.subscribers) == 0:
            return 0
        if self._scan_lock.locked():
            self._metrics["ticks_skipped_busy"] += 1
            log.warning("tick_skipped reason=previous_scan_running")
            return 0
        try:
            async with self._scan_lock:
                rows = await self.scanner.scan_all(self.cfg.scan.symbols, self.cfg.scan.timeframes)
            hits = [r for r in rows if r.signal is not None]
            if not hits:
                return 0
            msg = format_scan(hits, only_hits=True, tz=self.cfg.app.timezone)
            await self.tg.send(msg, self.subscribers.snapshot())
            self._metrics["pushes_total"] += 1
            log.info("push_done hits=%d chats=%d", len(hits), len(self.subscribers))
            return len(hits)
        except Exception as e:
            log.exception("tick_failed err=%s", e)
            return 0

    async def scan_loop(self) -> None:
        interval = float(self.cfg.scan.interval_s)
        if not self.cfg.scan.push_on_start:
            await asyncio.sleep(interval)
        while True:
            loop = asyncio.get_running_loop()
            started = loop.time()
            await self.scheduled_tick()
            elapsed = loop.time() - started
            await asyncio.sleep(max(0.0, interval - elapsed))

    # ---- chat commands --------------------------------------------------

    async def handle_command(self, command: str, chat_id: str) -> Optional[str]:
        """Reply text for a command, or None when the command is unknown."""
        cfg = self.cfg
        if command == "signal":
            return await self._scan_reply(cfg.scan.timeframes)
        if command == "signal_htf":
            return await self._scan_reply(cfg.scan.htf_timeframes)
        if command == "summary":
            try:
                async with self._scan_lock:
                    rows = await self.scanner.scan_all_multi(cfg.scan.symbols, cfg.scan.summary_timeframes)
                return format_summary(rows, cfg.scan.summary_timeframes, tz=cfg.app.timezone)
            except Exception as e:
                log.exception("command_failed cmd=summary err=%s", e)
                return f"Summary failed: {e}"
        if command == "auto_on":
            self.subscribers.add(chat_id)
            return f"✅ Auto scan enabled (every {int(cfg.scan.interval_s)}s)."
        if command == "auto_off":
            self.subscribers.remove(chat_id)
            return "🛑 Auto scan disabled."
        if command == "status":
            return format_status(
                market=cfg.provider.market,
                timeframes=cfg.scan.timeframes,
                summary_timeframes=cfg.scan.summary_timeframes,
                subscribers=len(self.subscribers),
                interval_s=cfg.scan.interval_s,
                tz=cfg.app.timezone,
            )
        if command in ("market", "limit"):
            return ORDERS_DISABLED
        if command in ("start", "help"):
            return f"{cfg.app.name}\n{HELP_TEXT}"
        return None

    async def _scan_reply(self, timeframes: List[str]) -> str:
        try:
            async with self._scan_lock:
                rows = await self.scanner.scan_all(self.cfg.scan.symbols, timeframes)
            return format_scan(rows, tz=self.cfg.app.timezone)
        except Exception as e:
            log.exception("command_failed cmd=signal err=%s", e)
            return f"Query failed: {e}"

    async def handle_update(self, update: Dict[str, Any]) -> None:
        msg = update.get("message") or {}
        chat = msg.get("chat") or {}
        chat_id = chat.get("id")
        command = parse_command(msg.get("text", ""))
        if chat_id is None or command is None:
            return
        log.info("command cmd=%s chat_id=%s", command, chat_id)
        reply = await self.handle_command(command, str(chat_id))
        if reply:
            await self.tg.reply(str(chat_id), reply)

    async def poll_commands(self) -> None:
        backoff = 1
        while True:
            try:
                updates = await self.tg.get_updates(self._offset)
                backoff = 1
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.warning("poll_error err=%s retry_in=%ss", e, backoff)
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, 60)
                continue
            for upd in updates:
                self._offset = int(upd.get("update_id", 0)) + 1
                # commands run one after another, never alongside each other
                await self.handle_update(upd)

    async def run_forever(self) -> None:
        cfg = self.cfg
        log.info(
            "start name=%s symbols=%d tfs=%s interval=%ss subscribers=%d",
            cfg.app.name,
            len(cfg.scan.symbols),
            cfg.scan.timeframes,
            cfg.scan.interval_s,
            len(self.subscribers),
        )
        tasks = [asyncio.create_task(self.scan_loop(), name="scan_loop")]
        if self.tg.enabled():
            await self.tg.delete_webhook()
            tasks.append(asyncio.create_task(self.poll_commands(), name="poll_commands"))
        else:
            log.warning("telegram disabled; running scheduled scans without chat commands")
        try:
            await asyncio.gather(*tasks)
        finally:
            for t in tasks:
                t.cancel()
