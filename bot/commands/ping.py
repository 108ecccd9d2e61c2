# -*- coding: utf-8 -*-
"""
===================================
延遲查詢命令
===================================
"""

from typing import List

from bot.commands.base import BotCommand
from bot.models import InvocationContext


class PingCommand(BotCommand):
    """報告當前用戶最近的回覆延遲和平均延遲"""

    @property
    def name(self) -> str:
        return "ping"

    @property
    def aliases(self) -> List[str]:
        return ["p"]

    @property
    def description(self) -> str:
        return "Replies with Pong!"

    @property
    def usage(self) -> str:
        return "{prefix}ping"

    @property
    def category(self) -> str:
        return "utility"

    def execute(self, ctx: InvocationContext) -> None:
        stats = ctx.runtime.latency.get_stats(ctx.sender_id) if ctx.runtime else None
        if stats is None:
            ctx.reply("Not available. Try running another command first.")
            return

        ctx.reply(f"🏓 Pong! Last latency: {stats.last_ms:.0f}ms | Average: {stats.average_ms:.2f}ms")
