# -*- coding: utf-8 -*-
"""
===================================
回覆關聯存儲
===================================

記錄「機器人發出的消息 ID -> 續接處理器 + 調用上下文快照」。
用戶直接回覆該消息時，分發器通過 reply_to.mid 取回並執行續接。

特性：
- 一次性：resolve 即消費，同一條消息的第二次回覆不會再觸發
- 有界：超過容量時淘汰最早的條目，超過存活時間的條目惰性清理
- 線程安全：查找與刪除在同一把鎖內完成
"""

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Callable, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from bot.commands.base import BotCommand
    from bot.models import InvocationContext

logger = logging.getLogger(__name__)


@dataclass
class CorrelationEntry:
    """
    關聯條目

    Attributes:
        message_id: 出站消息 ID（平臺分配）
        command: 發出該消息的命令（提供 on_reply）
        context: 發送時凍結的調用上下文
        created_at: 登記時間（單調時鐘秒數）
    """
    message_id: str
    command: 'BotCommand'
    context: 'InvocationContext'
    created_at: float = field(default_factory=time.monotonic)


class ReplyCorrelationStore:
    """
    回覆關聯存儲

    使用 OrderedDict 維持插入順序，隊首即最舊條目，
    淘汰和過期清理都從隊首開始。
    """

    def __init__(
        self,
        max_entries: int = 1000,
        max_age_seconds: float = 86400,
        clock: Optional[Callable[[], float]] = None
    ):
        """
        Args:
            max_entries: 最大條目數，超出時淘汰最舊條目
            max_age_seconds: 條目最長存活時間（秒），<= 0 表示不過期
            clock: 時鐘函數（默認 time.monotonic，測試時可替換）
        """
        self.max_entries = max_entries
        self.max_age_seconds = max_age_seconds
        self._clock = clock or time.monotonic
        self._entries: 'OrderedDict[str, CorrelationEntry]' = OrderedDict()
        self._lock = threading.Lock()

    def register(self, message_id: str, command: 'BotCommand', context: 'InvocationContext') -> None:
        """
        登記續接

        只應在消息確認發送成功後調用。

        Args:
            message_id: 出站消息 ID
            command: 命令定義
            context: 調用上下文快照
        """
        if not message_id:
            return

        entry = CorrelationEntry(
            message_id=message_id,
            command=command,
            context=context,
            created_at=self._clock(),
        )

        with self._lock:
            self._purge_expired_locked()
            self._entries.pop(message_id, None)
            self._entries[message_id] = entry

            while len(self._entries) > self.max_entries:
                evicted_id, _ = self._entries.popitem(last=False)
                logger.debug(f"[Correlation] 容量已滿，淘汰條目: {evicted_id}")

        logger.debug(f"[Correlation] 登記續接: {message_id} -> {command.name}")

    def resolve(self, reply_to_id: str) -> Optional[CorrelationEntry]:
        """
        取回並消費續接

        Args:
            reply_to_id: 入站消息引用的原消息 ID

        Returns:
            關聯條目；不存在或已過期返回 None
        """
        if not reply_to_id:
            return None

        with self._lock:
            entry = self._entries.pop(reply_to_id, None)

        if entry is None:
            return None

        if self._is_expired(entry, self._clock()):
            logger.debug(f"[Correlation] 條目已過期: {reply_to_id}")
            return None

        return entry

    def purge_expired(self) -> int:
        """清理過期條目，返回清理數量"""
        with self._lock:
            return self._purge_expired_locked()

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, message_id: str) -> bool:
        with self._lock:
            return message_id in self._entries

    def _is_expired(self, entry: CorrelationEntry, now: float) -> bool:
        if self.max_age_seconds <= 0:
            return False
        return now - entry.created_at > self.max_age_seconds

    def _purge_expired_locked(self) -> int:
        if self.max_age_seconds <= 0:
            return 0

        now = self._clock()
        purged = 0
        while self._entries:
            oldest = next(iter(self._entries.values()))
            if not self._is_expired(oldest, now):
                break
            self._entries.popitem(last=False)
            purged += 1

        if purged:
            logger.debug(f"[Correlation] 清理過期條目 {purged} 個")
        return purged
