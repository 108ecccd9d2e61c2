# -*- coding: utf-8 -*-
"""
===================================
AI 對話命令
===================================

調用外部對話服務（AI_API_BASE），會話 ID 保存在 custom.ai_conversation_id。
用戶直接回覆機器人的回答即可繼續對話。

服務接口：
- GET  {base}/health                 -> {"status": "ready"}
- POST {base}/chat                   -> 新會話
- POST {base}/chat/{id}              -> 繼續會話
- POST {base}/chat/{id}/reset        -> 重置會話
請求體 {"prompt": ..., "image": ...}，響應 {"message", "conversation_id", "sources", "media", "error"}
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

import requests

from bot.commands.base import BotCommand
from bot.models import InvocationContext

logger = logging.getLogger(__name__)

HEALTH_TIMEOUT = 3


def parse_ai_args(args: List[str]) -> Tuple[str, Optional[str], bool]:
    """
    解析參數

    Returns:
        (prompt, image_url, reset)
    """
    prompt_parts = []
    image = None
    reset = False

    i = 0
    while i < len(args):
        arg = args[i]
        if arg == "--img" and i + 1 < len(args):
            image = args[i + 1]
            i += 2
            continue
        if arg == "--reset":
            reset = True
        else:
            prompt_parts.append(arg)
        i += 1

    return " ".join(prompt_parts), image, reset


def _attached_image(message: Optional[Dict[str, Any]]) -> Optional[str]:
    for attachment in (message or {}).get("attachments") or []:
        if attachment.get("type") == "image":
            url = (attachment.get("payload") or {}).get("url")
            if url:
                return url
    return None


class AiCommand(BotCommand):
    """與 AI 對話，支持回覆續接"""

    @property
    def name(self) -> str:
        return "ai"

    @property
    def description(self) -> str:
        return "Chat with the AI assistant."

    @property
    def usage(self) -> str:
        return "{prefix}ai <prompt> [--img <image_url>] [--reset] [attach image]"

    @property
    def examples(self) -> List[str]:
        return ["{prefix}ai Tell me a joke!", "{prefix}ai --reset"]

    @property
    def category(self) -> str:
        return "ai"

    def execute(self, ctx: InvocationContext) -> None:
        prefix = ctx.prefix
        has_attachment = bool((ctx.message or {}).get("attachments"))

        if not ctx.args and not has_attachment:
            ctx.reply(f"Usage: {self.format_usage(prefix)}")
            return

        prompt, image, reset = parse_ai_args(ctx.args)
        image = image or _attached_image(ctx.message)

        if not prompt and not image and not reset:
            ctx.reply(f"Please provide a prompt or attach an image. Example: {prefix}ai Tell me a joke!")
            return

        config = ctx.runtime.config
        base = config.ai_api_base
        if not base:
            ctx.reply("AI chat is not configured on this bot.")
            return

        try:
            health = requests.get(f"{base}/health", timeout=HEALTH_TIMEOUT)
            status = health.json() if health.status_code == 200 else {}
            ready = isinstance(status, dict) and status.get("status") == "ready"
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"[AI] 健康檢查失敗: {e}")
            ctx.reply("AI API is not reachable. Please try again later.")
            return

        if not ready:
            ctx.reply("AI is not ready. Please try again later.")
            return

        custom = (ctx.user or {}).get("custom") or {}
        thread = custom.get("ai_conversation_id")

        if reset and thread:
            url = f"{base}/chat/{thread}/reset"
            body = {"prompt": prompt or "Let's start over.", "image": image}
        elif thread:
            url = f"{base}/chat/{thread}"
            body = {"prompt": prompt, "image": image}
        else:
            url = f"{base}/chat"
            body = {"prompt": prompt, "image": image}

        try:
            resp = requests.post(url, json=body, timeout=config.http_timeout)
            data = resp.json()
        except (requests.RequestException, ValueError) as e:
            logger.error(f"[AI] 請求失敗: {e}")
            ctx.reply("Failed to contact AI. Please try again later.")
            return

        if not isinstance(data, dict):
            logger.error(f"[AI] 響應格式異常: {type(data).__name__}")
            ctx.reply("Failed to contact AI. Please try again later.")
            return

        if data.get("error"):
            ctx.reply(f"AI error: {data['error']}")
            return

        self._remember_conversation(ctx, thread, reset, data.get("conversation_id"))
        ctx.reply(self._format_answer(ctx, data))

    def on_reply(self, ctx: InvocationContext) -> None:
        """回覆機器人的回答時繼續對話"""
        prompt = (ctx.reply_message or {}).get("text") or ""
        if not prompt:
            ctx.reply("Please reply with a text prompt.")
            return

        ctx.args = [prompt]
        self.execute(ctx)

    def _remember_conversation(
        self,
        ctx: InvocationContext,
        thread: Optional[str],
        reset: bool,
        conversation_id: Optional[str]
    ) -> None:
        if reset and thread:
            thread = None
        new_thread = thread or conversation_id
        if new_thread == ((ctx.user or {}).get("custom") or {}).get("ai_conversation_id"):
            return
        ctx.user = ctx.runtime.users.save_user(ctx.sender_id, {"custom": {"ai_conversation_id": new_thread}})

    def _format_answer(self, ctx: InvocationContext, data: Dict[str, Any]) -> str:
        text = f"{data.get('message') or ''}"

        sources = data.get("sources") or []
        if sources:
            text += "\n\nSources:\n" + "\n".join(f"- {s}" for s in sources)

        images = [m.get("url") for m in data.get("media") or [] if m.get("url") and m.get("type") == "IMAGE"]
        if images:
            for url in images:
                ctx.send_attachment("image", url)
            text += "\n\n[AI sent image(s) above]"

        return text.strip() or "(empty response)"
