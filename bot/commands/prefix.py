# -*- coding: utf-8 -*-
"""
===================================
自定義前綴命令
===================================

查看或設置用戶自己的命令前綴，保存在用戶記錄 custom.prefix 中。
"""

from bot.commands.base import BotCommand
from bot.models import InvocationContext

MAX_PREFIX_LENGTH = 5


class PrefixCommand(BotCommand):

    @property
    def name(self) -> str:
        return "prefix"

    @property
    def description(self) -> str:
        return "Gets or sets your custom command prefix."

    @property
    def usage(self) -> str:
        return "{prefix}prefix [newPrefix]"

    @property
    def category(self) -> str:
        return "utility"

    def execute(self, ctx: InvocationContext) -> None:
        custom = (ctx.user or {}).get('custom') or {}

        if not ctx.args:
            current = custom.get('prefix')
            ctx.reply(f"Your current prefix is: {current}" if current else "You are using the default prefix.")
            return

        new_prefix = ctx.args[0]
        if len(new_prefix) > MAX_PREFIX_LENGTH:
            ctx.reply(f"Prefix must be a string of up to {MAX_PREFIX_LENGTH} characters.")
            return

        ctx.user = ctx.runtime.users.save_user(ctx.sender_id, {"custom": {"prefix": new_prefix}})
        ctx.reply(f"Your custom prefix is now set to: {new_prefix}")
