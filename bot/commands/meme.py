# -*- coding: utf-8 -*-
"""
===================================
隨機梗圖命令
===================================

發送帶按鈕的梗圖卡片：
- "Next Meme"        -> 回傳 meme:next
- "Send Image Only"  -> 回傳 meme:image|<title>|<url>（URL 編碼）
"""

import logging
from typing import Any, Dict
from urllib.parse import quote, unquote

import requests
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from bot.commands.base import BotCommand
from bot.models import InvocationContext

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 80

FETCH_FAILED = "❌ Failed to fetch a meme. Please try again later."


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=8),
    retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout)),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)
def fetch_meme(api_url: str, timeout: float = 15.0) -> Dict[str, Any]:
    """
    獲取一條隨機梗圖

    連接錯誤和超時會重試，其他錯誤直接拋出。
    """
    resp = requests.get(api_url, timeout=timeout)
    resp.raise_for_status()
    data = resp.json()
    if not isinstance(data, dict):
        raise ValueError(f"unexpected meme response: {type(data).__name__}")
    return {
        "title": data.get("title") or "",
        "url": data.get("url") or "",
        "post_link": data.get("postLink") or data.get("url") or "",
        "subreddit": data.get("subreddit") or "",
        "author": data.get("author") or "",
    }


def build_meme_card(meme: Dict[str, Any]) -> Dict[str, Any]:
    """梗圖 -> generic 模板 payload"""
    title = meme["title"]
    if len(title) > MAX_TITLE_LENGTH:
        title = title[:MAX_TITLE_LENGTH - 3] + "..."

    image_payload = f"meme:image|{quote(meme['title'], safe='')}|{quote(meme['url'], safe='')}"
    return {
        "template_type": "generic",
        "elements": [{
            "title": title,
            "image_url": meme["url"],
            "subtitle": f"r/{meme['subreddit']} • by u/{meme['author']}",
            "default_action": {
                "type": "web_url",
                "url": meme["post_link"],
                "webview_height_ratio": "tall",
            },
            "buttons": [
                {"type": "postback", "title": "Next Meme", "payload": "meme:next"},
                {"type": "web_url", "title": "Source", "url": meme["post_link"]},
                {"type": "postback", "title": "Send Image Only", "payload": image_payload},
            ],
        }],
    }


class MemeCommand(BotCommand):
    """隨機梗圖，支持按鈕回傳"""

    @property
    def name(self) -> str:
        return "meme"

    @property
    def description(self) -> str:
        return "Get a random meme with interactive buttons."

    @property
    def usage(self) -> str:
        return "{prefix}meme"

    @property
    def category(self) -> str:
        return "fun"

    def execute(self, ctx: InvocationContext) -> None:
        self._send_meme(ctx)

    def on_postback(self, ctx: InvocationContext, payload: str) -> None:
        if payload in ("", "next"):
            self._send_meme(ctx)
            return

        if payload.startswith("image|"):
            parts = payload.split("|")
            if len(parts) < 3:
                ctx.reply("❌ Failed to send the meme image. Please try again later.")
                return
            ctx.reply(unquote(parts[1]))
            ctx.send_attachment("image", unquote(parts[2]))
            return

        logger.warning(f"[Meme] 未知的回傳: {payload}")

    def _send_meme(self, ctx: InvocationContext) -> None:
        config = ctx.runtime.config
        try:
            meme = fetch_meme(config.meme_api_url, timeout=config.http_timeout)
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"[Meme] 獲取梗圖失敗: {e}")
            ctx.reply(FETCH_FAILED)
            return

        if not meme["url"]:
            ctx.reply(FETCH_FAILED)
            return

        ctx.send_attachment("template", build_meme_card(meme))
