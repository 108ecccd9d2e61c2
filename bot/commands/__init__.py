# -*- coding: utf-8 -*-
"""
===================================
命令處理器模塊
===================================

包含所有內置命令的實現。

文件命令源會逐個加載本目錄下的模塊；
ALL_COMMANDS 是靜態命令源（BOT_COMMAND_SOURCE=static）使用的註冊表。
"""

from bot.commands.base import BotCommand
from bot.commands.ai import AiCommand
from bot.commands.cmd import CmdCommand
from bot.commands.help import HelpCommand
from bot.commands.meme import MemeCommand
from bot.commands.ping import PingCommand
from bot.commands.prefix import PrefixCommand
from bot.commands.timezone import TimezoneCommand
from bot.commands.userinfo import UserInfoCommand

# 所有內置命令（用於靜態註冊）
ALL_COMMANDS = [
    HelpCommand,
    PingCommand,
    PrefixCommand,
    TimezoneCommand,
    UserInfoCommand,
    CmdCommand,
    AiCommand,
    MemeCommand,
]

__all__ = [
    'BotCommand',
    'AiCommand',
    'CmdCommand',
    'HelpCommand',
    'MemeCommand',
    'PingCommand',
    'PrefixCommand',
    'TimezoneCommand',
    'UserInfoCommand',
    'ALL_COMMANDS',
]
