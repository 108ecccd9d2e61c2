# -*- coding: utf-8 -*-
"""
===================================
幫助命令
===================================

顯示可用命令列表和使用說明。
"""

from typing import List

from bot.commands.base import BotCommand
from bot.models import InvocationContext


class HelpCommand(BotCommand):
    """
    幫助命令

    顯示所有可用命令的列表和使用說明。
    也可以查看特定命令的詳細幫助。
    非管理員看不到 admin_only 命令。

    用法：
        !help       - 顯示所有命令
        !help ping  - 顯示 ping 命令的詳細幫助
    """

    @property
    def name(self) -> str:
        return "help"

    @property
    def aliases(self) -> List[str]:
        return ["h"]

    @property
    def description(self) -> str:
        return "List all commands or get help for a specific command."

    @property
    def usage(self) -> str:
        return "{prefix}help [command]"

    @property
    def examples(self) -> List[str]:
        return ["{prefix}help", "{prefix}help ping"]

    def execute(self, ctx: InvocationContext) -> None:
        """執行幫助命令"""
        prefix = ctx.prefix
        is_admin = ctx.is_admin

        if ctx.args:
            name = ctx.args[0].lower()
            command = ctx.commands.lookup(name) if ctx.commands else None
            if command is None or (command.admin_only and not is_admin):
                ctx.reply(f"No such command: {name}")
                return
            ctx.reply(self._format_command_help(command, prefix))
            return

        commands = ctx.commands.list_commands() if ctx.commands else []
        commands = [c for c in commands if is_admin or not c.admin_only]
        ctx.reply(self._format_help_list(commands, prefix))

    def _format_help_list(self, commands: List[BotCommand], prefix: str) -> str:
        """格式化命令列表"""
        lines = ["Available commands:"]

        for cmd in commands:
            admin_str = " (admin)" if cmd.admin_only else ""
            aliases_str = f" ({', '.join(cmd.aliases)})" if cmd.aliases else ""
            description = cmd.fill_prefix(cmd.description, prefix)
            lines.append(f"• {cmd.name}{admin_str}{aliases_str} - {description}")

            usage = cmd.format_usage(prefix)
            if usage:
                lines.append(f"   Usage: {usage}")

        return "\n".join(lines)

    def _format_command_help(self, command: BotCommand, prefix: str) -> str:
        """格式化單個命令的詳細幫助"""
        examples = "\n".join(command.fill_prefix(e, prefix) for e in command.examples) or "None"
        lines = [
            f"Command: {command.name}",
            f"Aliases: {', '.join(command.aliases) if command.aliases else 'None'}",
            f"Description: {command.fill_prefix(command.description, prefix)}",
            f"Usage: {command.format_usage(prefix)}",
        ]

        if command.admin_only:
            lines.append("(Admin only)")

        lines.append("Examples:")
        lines.append(examples)
        return "\n".join(lines)
