# -*- coding: utf-8 -*-
"""
===================================
機器人運行時
===================================

集中持有一個機器人進程的全部可變狀態：
配置、發送通道、平臺適配器、用戶存儲、命令註冊表、續接存儲、延遲統計。

不使用模塊級全局變量，測試時可以為每個用例構造獨立的運行時。
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, TYPE_CHECKING

from bot.correlation import ReplyCorrelationStore
from bot.latency import LatencyTracker
from bot.platforms.base import BotPlatform, BotTransport
from bot.platforms.messenger import MessengerClient, MessengerPlatform
from bot.registry import CommandRegistry, CommandSource, FileCommandSource, StaticCommandSource

if TYPE_CHECKING:
    from bot.dispatcher import EventDispatcher
    from bot.moments import MomentSender
    from config import Config
    from storage import UserStore

logger = logging.getLogger(__name__)


@dataclass
class BotRuntime:
    """
    運行時容器

    Attributes:
        config: 配置
        transport: 出站發送通道
        platform: 入站平臺適配器
        users: 用戶存儲
        registry: 命令註冊表
        correlations: 續接存儲
        latency: 延遲統計
        dispatcher: 事件分發器（構造後綁定）
    """
    config: 'Config'
    transport: BotTransport
    platform: BotPlatform
    users: 'UserStore'
    registry: CommandRegistry
    correlations: ReplyCorrelationStore = field(default_factory=ReplyCorrelationStore)
    latency: LatencyTracker = field(default_factory=LatencyTracker)
    dispatcher: Optional['EventDispatcher'] = None

    def __post_init__(self):
        if self.dispatcher is None:
            from bot.dispatcher import EventDispatcher
            self.dispatcher = EventDispatcher(self)

    def create_moment_sender(self) -> 'MomentSender':
        from bot.moments import MomentSender
        return MomentSender(
            users=self.users,
            transport=self.transport,
            default_timezone=self.config.timezone,
            max_workers=self.config.moment_max_workers,
        )

    def close(self) -> None:
        self.users.close()


def create_command_source(config: 'Config') -> CommandSource:
    """按配置創建命令源"""
    if config.bot_command_source == 'static':
        from bot.commands import ALL_COMMANDS
        return StaticCommandSource(ALL_COMMANDS)
    return FileCommandSource(install_dir=Path(config.bot_commands_dir))


def create_runtime(
    config: 'Config',
    transport: Optional[BotTransport] = None,
    users: Optional['UserStore'] = None,
    source: Optional[CommandSource] = None
) -> BotRuntime:
    """
    按配置構造運行時

    Args:
        config: 配置
        transport: 發送通道（默認 MessengerClient）
        users: 用戶存儲（默認按 USER_DB_TYPE 創建）
        source: 命令源（默認按 BOT_COMMAND_SOURCE 創建）

    Returns:
        未加載命令的運行時，調用方負責 runtime.registry.load()
    """
    from storage import create_user_store

    if transport is None:
        transport = MessengerClient(
            page_access_token=config.page_access_token,
            api_version=config.graph_api_version,
            timeout=config.http_timeout,
        )

    registry = CommandRegistry(
        source=source or create_command_source(config),
        allowed_install_hosts=config.bot_install_allowed_hosts,
        http_timeout=config.http_timeout,
    )

    runtime = BotRuntime(
        config=config,
        transport=transport,
        platform=MessengerPlatform(verify_token=config.verify_token, app_secret=config.app_secret),
        users=users if users is not None else create_user_store(config),
        registry=registry,
        correlations=ReplyCorrelationStore(
            max_entries=config.correlation_max_entries,
            max_age_seconds=config.correlation_max_age,
        ),
        latency=LatencyTracker(),
    )
    logger.info(f"[Runtime] 運行時已創建: 存儲={runtime.users.backend_name}, 前綴={config.bot_command_prefix}")
    return runtime
