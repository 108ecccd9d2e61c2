# -*- coding: utf-8 -*-
"""
===================================
命令基類
===================================

定義命令處理器的抽象基類，所有命令都必須繼承此類。

入口：
- execute(ctx): 必需，命令首次調用
- on_reply(ctx): 可選，用戶回覆本命令發出的消息時調用
- on_postback(ctx, payload): 可選，用戶點擊 "<name>:..." 按鈕時調用

是否具備可選入口由 has_reply_handler / has_postback_handler 給出，
分發器只讀這兩個標誌，不做屬性探測。
"""

from abc import ABC, abstractmethod
from typing import List

from bot.models import InvocationContext


class BotCommand(ABC):
    """
    命令處理器抽象基類

    使用示例：
        class MyCommand(BotCommand):
            @property
            def name(self) -> str:
                return "mycommand"

            @property
            def aliases(self) -> List[str]:
                return ["mc"]

            @property
            def description(self) -> str:
                return "My command"

            @property
            def usage(self) -> str:
                return "{prefix}mycommand [arg]"

            def execute(self, ctx: InvocationContext) -> None:
                ctx.reply("done")
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """
        命令名稱（不含前綴）

        例如 "help"，用戶輸入 "!help" 觸發
        """
        pass

    @property
    def aliases(self) -> List[str]:
        """命令別名列表"""
        return []

    @property
    @abstractmethod
    def description(self) -> str:
        """命令描述（用於幫助信息）"""
        pass

    @property
    @abstractmethod
    def usage(self) -> str:
        """
        使用說明（用於幫助信息）

        {prefix} 佔位符會被替換為用戶的有效前綴
        """
        pass

    @property
    def examples(self) -> List[str]:
        return []

    @property
    def category(self) -> str:
        return "general"

    @property
    def hidden(self) -> bool:
        """是否在幫助列表中隱藏"""
        return False

    @property
    def admin_only(self) -> bool:
        """
        是否僅管理員可用

        默認 False，設為 True 則需要發送者在 ADMIN_IDS 中
        """
        return False

    @property
    def keys(self) -> List[str]:
        """註冊表中屬於本命令的全部鍵（小寫，名稱在前）"""
        result = [self.name.lower()]
        for alias in self.aliases:
            key = alias.lower()
            if key not in result:
                result.append(key)
        return result

    @abstractmethod
    def execute(self, ctx: InvocationContext) -> None:
        """
        執行命令

        Args:
            ctx: 調用上下文，通過 ctx.reply() 回覆
        """
        pass

    def on_reply(self, ctx: InvocationContext) -> None:
        """用戶回覆本命令消息時的續接處理，子類按需重寫"""
        raise NotImplementedError(f"{self.name} has no reply handler")

    def on_postback(self, ctx: InvocationContext, payload: str) -> None:
        """按鈕回傳處理，子類按需重寫"""
        raise NotImplementedError(f"{self.name} has no postback handler")

    @property
    def has_reply_handler(self) -> bool:
        return type(self).on_reply is not BotCommand.on_reply

    @property
    def has_postback_handler(self) -> bool:
        return type(self).on_postback is not BotCommand.on_postback

    @staticmethod
    def fill_prefix(text: str, prefix: str) -> str:
        """替換 {prefix} / {PREFIX} 佔位符"""
        return text.replace("{prefix}", prefix).replace("{PREFIX}", prefix)

    def format_usage(self, prefix: str) -> str:
        """替換 {prefix} 並確保以前綴開頭"""
        usage = self.fill_prefix(self.usage, prefix)
        if usage and not usage.startswith(prefix):
            usage = prefix + usage
        return usage
