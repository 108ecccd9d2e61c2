# -*- coding: utf-8 -*-
"""
===================================
機器人消息模型
===================================

定義入站事件、調用上下文、發送結果和分發結果等統一模型。
"""

import copy
import logging
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from bot.commands.base import BotCommand
    from bot.registry import CommandRegistry
    from bot.runtime import BotRuntime

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    """事件分類結果"""
    IGNORED = "ignored"              # 忽略（自身消息、回執、空消息）
    COMMAND = "command"              # 前綴命令
    CONTINUATION = "continuation"    # 回覆機器人消息觸發的續接
    POSTBACK = "postback"            # 按鈕回傳
    FALLBACK = "fallback"            # 普通文本，回覆前綴提示
    ACKNOWLEDGED = "acknowledged"    # 附件/快捷回覆的簡單應答


@dataclass
class WebhookEvent:
    """
    統一的入站事件模型

    對應 Messenger webhook 中 entry[].messaging[] 的單個元素。

    Attributes:
        sender_id: 發送者 PSID
        recipient_id: 接收方 ID（主頁 ID，同時作為會話 ID）
        message: 原始 message 對象（無則為 None）
        postback: 原始 postback 對象（無則為 None）
        is_delivery: 是否送達回執
        is_read: 是否已讀回執
        timestamp: 平臺時間戳（毫秒）
        received_at: 本地接收時間（epoch 秒）
        raw: 原始事件數據
    """
    sender_id: str
    recipient_id: str = ""
    message: Optional[Dict[str, Any]] = None
    postback: Optional[Dict[str, Any]] = None
    is_delivery: bool = False
    is_read: bool = False
    timestamp: Optional[int] = None
    received_at: float = field(default_factory=time.time)
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], received_at: Optional[float] = None) -> 'WebhookEvent':
        """從 webhook 原始數據構造事件"""
        sender = data.get('sender') or {}
        recipient = data.get('recipient') or {}
        return cls(
            sender_id=str(sender.get('id', 'UNKNOWN_SENDER')),
            recipient_id=str(recipient.get('id', 'UNKNOWN_THREAD')),
            message=data.get('message'),
            postback=data.get('postback'),
            is_delivery='delivery' in data,
            is_read='read' in data,
            timestamp=data.get('timestamp'),
            received_at=received_at if received_at is not None else time.time(),
            raw=data,
        )

    @property
    def text(self) -> Optional[str]:
        return (self.message or {}).get('text') or None

    @property
    def attachments(self) -> List[Dict[str, Any]]:
        return (self.message or {}).get('attachments') or []

    @property
    def quick_reply(self) -> Optional[Dict[str, Any]]:
        return (self.message or {}).get('quick_reply') or None

    @property
    def reply_to_mid(self) -> Optional[str]:
        reply_to = (self.message or {}).get('reply_to') or {}
        return reply_to.get('mid') or None

    @property
    def is_echo(self) -> bool:
        return bool((self.message or {}).get('is_echo'))

    @property
    def postback_payload(self) -> Optional[str]:
        if self.postback is None:
            return None
        return self.postback.get('payload') or ""

    @property
    def has_content(self) -> bool:
        """是否為用戶主動發起的可處理事件"""
        return bool(
            self.text
            or self.quick_reply
            or self.reply_to_mid
            or self.postback is not None
        )


@dataclass
class SendResult:
    """
    發送 API 成功響應

    Attributes:
        message_id: 平臺分配的消息 ID（sender_action 沒有）
        recipient_id: 接收者 ID
        raw: 原始響應
    """
    message_id: Optional[str] = None
    recipient_id: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


def get_user_prefix(user: Optional[Dict[str, Any]], default_prefix: str) -> str:
    """用戶自定義前綴優先，否則使用默認前綴"""
    custom = (user or {}).get('custom') or {}
    return custom.get('prefix') or default_prefix


@dataclass
class InvocationContext:
    """
    命令調用上下文

    每個入站事件一個實例，只在本次分發期間由分發器持有。
    登記續接時保存的是 snapshot() 的凍結副本。

    Attributes:
        sender_id: 發送者 ID
        thread_id: 會話 ID
        args: 命令參數（已分割）
        message: 原始 message 對象
        event: 入站事件
        user: 用戶記錄（可能為 None）
        received_at: 事件接收時間（epoch 秒）
        command: 當前命令定義
        commands: 命令註冊表
        runtime: 運行時（配置、存儲、發送通道等）
        reply_message: 續接時用戶的回覆消息
        payload: 按鈕回傳時 <key>: 之後的部分
    """
    sender_id: str
    thread_id: str = ""
    args: List[str] = field(default_factory=list)
    message: Optional[Dict[str, Any]] = None
    event: Optional[WebhookEvent] = None
    user: Optional[Dict[str, Any]] = None
    received_at: float = field(default_factory=time.time)
    command: Optional['BotCommand'] = None
    commands: Optional['CommandRegistry'] = None
    runtime: Optional['BotRuntime'] = None
    reply_message: Optional[Dict[str, Any]] = None
    payload: Optional[str] = None
    reply_handler: Optional[Callable[..., Optional[SendResult]]] = field(default=None, repr=False)
    attachment_handler: Optional[Callable[..., Optional[SendResult]]] = field(default=None, repr=False)

    def reply(self, text: str, **options: Any) -> Optional[SendResult]:
        """
        回覆文本（自動分片）

        Returns:
            最後一個片段的發送結果；發送失敗返回 None
        """
        if self.reply_handler is None:
            logger.warning(f"[Context] 上下文未綁定回覆函數，丟棄消息: sender={self.sender_id}")
            return None
        return self.reply_handler(text, **options)

    def send_attachment(self, attachment_type: str, data: Any) -> Optional[SendResult]:
        """
        發送附件

        Args:
            attachment_type: image / audio / video / file / template
            data: URL 字符串、bytes、payload 字典或它們的列表
        """
        if self.attachment_handler is None:
            logger.warning(f"[Context] 上下文未綁定附件發送函數: sender={self.sender_id}")
            return None
        return self.attachment_handler(attachment_type, data)

    @property
    def prefix(self) -> str:
        """當前用戶的有效命令前綴"""
        default_prefix = self.runtime.config.bot_command_prefix if self.runtime else "!"
        return get_user_prefix(self.user, default_prefix)

    @property
    def is_admin(self) -> bool:
        if self.runtime is None:
            return False
        return self.sender_id in self.runtime.config.bot_admin_users

    def snapshot(self) -> 'InvocationContext':
        """
        凍結副本

        複製參數和用戶記錄，解綁回覆函數；續接觸發時再綁定新的回覆函數。
        """
        return replace(
            self,
            args=list(self.args),
            user=copy.deepcopy(self.user),
            reply_handler=None,
            attachment_handler=None,
        )


@dataclass
class DispatchResult:
    """
    分發結果

    Attributes:
        kind: 事件分類
        command: 命中的命令名（如有）
        detail: 細分狀態，如 invoked / not_found / empty / denied / demo / unhandled
    """
    kind: EventKind
    command: Optional[str] = None
    detail: str = ""

    @classmethod
    def ignored(cls, reason: str = "") -> 'DispatchResult':
        return cls(kind=EventKind.IGNORED, detail=reason)


@dataclass
class WebhookResponse:
    """
    Webhook 響應模型

    平臺適配器返回此模型，包含 HTTP 響應內容。

    Attributes:
        status_code: HTTP 狀態碼
        body: 響應體（字典將被 JSON 序列化，字符串按純文本返回）
        headers: 額外的響應頭
    """
    status_code: int = 200
    body: Any = field(default_factory=dict)
    headers: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def challenge(cls, challenge: str) -> 'WebhookResponse':
        """創建驗證響應（Messenger 要求原樣返回 hub.challenge）"""
        return cls(status_code=200, body=challenge)

    @classmethod
    def error(cls, message: str, status_code: int = 400) -> 'WebhookResponse':
        """創建錯誤響應"""
        return cls(status_code=status_code, body={"error": message})
