# -*- coding: utf-8 -*-
"""
===================================
命令管理命令（管理員）
===================================

運行時安裝、重載、卸載命令：
    !cmd install <name> <url> [sha256]
    !cmd reload <name>
    !cmd unload <name>
"""

import logging
from typing import List

from bot.commands.base import BotCommand
from bot.errors import CommandInstallError, CommandLoadError
from bot.models import InvocationContext

logger = logging.getLogger(__name__)


class CmdCommand(BotCommand):
    """命令管理，僅管理員可用"""

    @property
    def name(self) -> str:
        return "cmd"

    @property
    def description(self) -> str:
        return "Manage bot commands (admin only)."

    @property
    def usage(self) -> str:
        return "{prefix}cmd install <name> <url> | reload <name> | unload <name>"

    @property
    def examples(self) -> List[str]:
        return [
            "{prefix}cmd reload help",
            "{prefix}cmd install hello https://raw.githubusercontent.com/user/repo/main/hello.py",
        ]

    @property
    def category(self) -> str:
        return "admin"

    @property
    def admin_only(self) -> bool:
        return True

    def execute(self, ctx: InvocationContext) -> None:
        registry = ctx.commands
        args = ctx.args
        action = args[0].lower() if args else ""

        if action == "install" and len(args) >= 3:
            name, url = args[1], args[2]
            sha256 = args[3] if len(args) >= 4 else None
            try:
                registry.install(name, url, sha256=sha256)
            except CommandInstallError as e:
                logger.warning(f"[Cmd] 安裝命令失敗: {name} <- {url}: {e}")
                ctx.reply(f"❌ Failed to install command: {e}")
                return
            ctx.reply(f"✅ Command '{name}' installed from {url}")

        elif action == "reload" and len(args) >= 2:
            name = args[1]
            try:
                reloaded = registry.reload(name)
            except CommandLoadError as e:
                logger.warning(f"[Cmd] 重載命令失敗: {name}: {e}")
                ctx.reply(f"❌ Failed to reload command: {e}")
                return
            if reloaded:
                ctx.reply(f"♻️ Command '{name}' reloaded.")
            else:
                ctx.reply(f"❌ Command '{name}' not found.")

        elif action == "unload" and len(args) >= 2:
            name = args[1]
            if registry.unload(name):
                ctx.reply(f"🗑️ Command '{name}' unloaded from memory.")
            else:
                ctx.reply(f"❌ Command '{name}' not found.")

        else:
            ctx.reply(f"Usage: {self.format_usage(ctx.prefix)}")
