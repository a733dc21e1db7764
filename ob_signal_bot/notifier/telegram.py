from __future__ import annotations

import aiohttp
from typing import Any, Dict, List, Optional
import logging

log = logging.getLogger("telegram")

MAX_MESSAGE_LEN = 4096


def split_message(text: str, limit: int = MAX_MESSAGE_LEN) -> List[str]:
    """Split on line boundaries so each chunk fits Telegram's message limit."""
    if len(text) <= limit:
        return [text]
    chunks: List[str] = []
    cur = ""
    for line in text.split("\n"):
        while len(line) > limit:
            if cur:
                chunks.append(cur)
                cur = ""
            chunks.append(line[:limit])
            line = line[limit:]
        candidate = f"{cur}\n{line}" if cur else line
        if len(candidate) > limit:
            chunks.append(cur)
            cur = line
        else:
            cur = candidate
    if cur:
        chunks.append(cur)
    return chunks


class TelegramNotifier:
    def __init__(self, token: str, *, disable_web_page_preview: bool = True, poll_timeout_s: int = 30):
        self.token = (token or "").strip()
        self.disable_web_page_preview = disable_web_page_preview
        self.poll_timeout_s = int(poll_timeout_s)

    def enabled(self) -> bool:
        return bool(self.token)

    def _url(self, method: str) -> str:
        return f"https://api.telegram.org/bot{self.token}/{method}"

    async def send(self, text: str, chat_ids: List[str]) -> None:
        if not self.enabled():
            return
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=15)) as sess:
            for chat_id in chat_ids:
                for chunk in split_message(text):
                    payload = {
                        "chat_id": chat_id,
                        "text": chunk,
                        "disable_web_page_preview": self.disable_web_page_preview,
                    }
                    try:
                        async with sess.post(self._url("sendMessage"), json=payload) as resp:
                            if resp.status != 200:
                                body = await resp.text()
                                log.warning("telegram_send_failed chat_id=%s status=%s body=%s", chat_id, resp.status, body[:2000])
                    except Exception as e:
                        log.exception("telegram_send_exception chat_id=%s err=%s", chat_id, e)

    async def reply(self, chat_id: str, text: str) -> None:
        await self.send(text, [chat_id])

    async def get_updates(self, offset: Optional[int] = None) -> List[Dict[str, Any]]:
        """Long-poll for new updates. Raises on transport errors; caller backs off."""
        if not self.enabled():
            return []
        params: Dict[str, Any] = {"timeout": self.poll_timeout_s, "allowed_updates": '["message"]'}
        if offset is not None:
            params["offset"] = offset
        timeout = aiohttp.ClientTimeout(total=self.poll_timeout_s + 15)
        async with aiohttp.ClientSession(timeout=timeout) as sess:
            async with sess.get(self._url("getUpdates"), params=params) as resp:
                data = await resp.json(content_type=None)
        if not data.get("ok"):
            raise RuntimeError(f"getUpdates failed: {data.get('description', 'unknown')}")
        return list(data.get("result") or [])

    async def delete_webhook(self) -> None:
        # long polling does not work while a webhook is registered
        if not self.enabled():
            return
        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=15)) as sess:
                async with sess.post(self._url("deleteWebhook")) as resp:
                    if resp.status != 200:
                        log.warning("telegram_delete_webhook_failed status=%s", resp.status)
        except Exception as e:
            log.warning("telegram_delete_webhook_exception err=%s", e)
