# -*- coding: utf-8 -*-
"""
===================================
事件分發器
===================================

負責對每個入站事件分類，並路由到命令、續接或按鈕回傳處理器。

分類順序：
1. 忽略：主頁自身消息、回顯、已讀/送達回執、發送者等於接收者、無內容
2. 前綴文本 -> 命令
3. 無前綴但回覆了機器人消息 -> 續接（一次性）
4. 其他文本 -> 前綴提示
5. 按鈕回傳 -> 命令 on_postback，否則內置演示回傳
6. 無文本的附件 / 快捷回覆 -> 簡單應答

處理器拋出的異常不在這裡捕獲，由 bot.handler 統一記錄。
"""

import logging
import random
import time
from typing import Any, Dict, Optional, TYPE_CHECKING

from bot.chunker import split_message
from bot.commands.base import BotCommand
from bot.errors import UserStoreError
from bot.models import (
    DispatchResult,
    EventKind,
    InvocationContext,
    SendResult,
    WebhookEvent,
    get_user_prefix,
)

if TYPE_CHECKING:
    from bot.runtime import BotRuntime

logger = logging.getLogger(__name__)

ADMIN_ONLY_NOTICE = "🚫 This command is for admins only."
ATTACHMENT_ACK = "Thanks for the attachment! I can't process it yet, but I'll learn soon."

WELCOME_TITLE = "Welcome to Veltrix AI!"
WELCOME_SUBTITLE = "I am a bot designed to help you. What can I do for you?"
WELCOME_IMAGE = "https://placehold.co/600x400/EEE/31343C?text=Veltrix%20AI"

JOKES = [
    "Why don't scientists trust atoms? Because they make up everything!",
    "Why did the scarecrow win an award? Because he was outstanding in his field!",
    "Why did the math book look sad? Because it had too many problems.",
    "Parallel lines have so much in common. It's a shame they'll never meet.",
    "Why did the bicycle fall over? Because it was two-tired!",
    "I told my computer I needed a break, and it said 'No problem, I'll go to sleep.'",
]

OPTIONS_MENU = [
    ("Tell me a joke", "TELL_JOKE"),
    ("Show me memes", "meme"),
    ("Show my profile", "userinfo"),
    ("Help", "help"),
]


def ignore_reason(event: WebhookEvent, page_id: Optional[str]) -> Optional[str]:
    """
    判斷事件是否應被忽略

    Returns:
        忽略原因；需要處理時返回 None
    """
    if page_id and event.sender_id == page_id:
        return "from_page"
    if event.is_echo:
        return "echo"
    if event.is_read:
        return "read"
    if event.is_delivery:
        return "delivery"
    if event.sender_id == event.recipient_id:
        return "self"
    if not event.has_content:
        return "empty"
    return None


def parse_command(text: str, prefix: str):
    """
    拆分命令文本

    Returns:
        (命令鍵, 參數列表)，命令鍵已轉小寫，可能為空字符串
    """
    parts = text[len(prefix):].split()
    if not parts:
        return "", []
    return parts[0].lower(), parts[1:]


def _display_name(user: Optional[Dict[str, Any]], sender_id: str) -> str:
    if not user:
        return sender_id
    name = f"{user.get('first_name') or ''} {user.get('last_name') or ''}".strip()
    return f"{name} ({sender_id})" if name else sender_id


class EventDispatcher:
    """
    事件分發器

    使用示例：
        dispatcher = EventDispatcher(runtime)
        result = dispatcher.dispatch(WebhookEvent.from_dict(raw))
        if result.kind == EventKind.COMMAND:
            ...
    """

    def __init__(self, runtime: 'BotRuntime', rng: Optional[random.Random] = None):
        """
        Args:
            runtime: 運行時（配置、發送通道、存儲、註冊表、關聯存儲、延遲統計）
            rng: 隨機數生成器（笑話選擇用，測試時可固定）
        """
        self.runtime = runtime
        self._rng = rng or random.Random()

    @property
    def config(self):
        return self.runtime.config

    @property
    def transport(self):
        return self.runtime.transport

    def dispatch(self, event: WebhookEvent) -> DispatchResult:
        """
        分發單個事件

        Args:
            event: 入站事件

        Returns:
            分發結果
        """
        reason = ignore_reason(event, self.config.page_id)
        if reason:
            logger.debug(f"[Dispatcher] 忽略事件: sender={event.sender_id}, reason={reason}")
            return DispatchResult.ignored(reason)

        sender_id = event.sender_id
        self.transport.mark_seen(sender_id)
        user = self._resolve_user(sender_id)
        display = _display_name(user, sender_id)

        if event.message is not None:
            text = event.text
            if text:
                return self._dispatch_text(event, text, user, display)
            if event.attachments:
                logger.info(f"EVENT MESSAGE Attachment | {display}")
                self._acknowledge(sender_id, ATTACHMENT_ACK)
                return DispatchResult(kind=EventKind.ACKNOWLEDGED, detail="attachment")
            if event.quick_reply:
                payload = event.quick_reply.get('payload', '')
                logger.info(f"EVENT MESSAGE QuickReply | {display} | {payload}")
                self._acknowledge(sender_id, f'You chose: "{payload}".')
                return DispatchResult(kind=EventKind.ACKNOWLEDGED, detail="quick_reply")
            return DispatchResult.ignored("unsupported")

        if event.postback is not None:
            return self._dispatch_postback(event, user, display)

        return DispatchResult.ignored("unsupported")

    # === 文本 ===

    def _dispatch_text(
        self,
        event: WebhookEvent,
        text: str,
        user: Optional[Dict[str, Any]],
        display: str
    ) -> DispatchResult:
        sender_id = event.sender_id
        prefix = get_user_prefix(user, self.config.bot_command_prefix)

        if text.startswith(prefix):
            return self._dispatch_command(event, text, prefix, user, display)

        reply_to = event.reply_to_mid
        if reply_to:
            entry = self.runtime.correlations.resolve(reply_to)
            if entry is not None:
                logger.info(f"EVENT REPLY {entry.command.name} | {display}")
                ctx = self._build_continuation_context(entry.context, entry.command, event, user)
                self._run_with_typing(sender_id, lambda: entry.command.on_reply(ctx))
                return DispatchResult(kind=EventKind.CONTINUATION, command=entry.command.name, detail="invoked")

        logger.info(f"EVENT MESSAGE Text | {display}")
        self.transport.typing(sender_id, True)
        self.transport.send_text(
            sender_id,
            f'👋 Hi! My current command prefix for you is "{prefix}". '
            f'Use it before any command. For example: {prefix}help'
        )
        self.transport.typing(sender_id, False)
        return DispatchResult(kind=EventKind.FALLBACK, detail="prefix_hint")

    def _dispatch_command(
        self,
        event: WebhookEvent,
        text: str,
        prefix: str,
        user: Optional[Dict[str, Any]],
        display: str
    ) -> DispatchResult:
        sender_id = event.sender_id
        key, args = parse_command(text, prefix)
        command = self.runtime.registry.lookup(key)

        if command is None:
            logger.info(f"EVENT COMMAND Unknown | {display} | {key}")
            if key:
                self.transport.send_text(
                    sender_id,
                    f"Command {key} not found, try {prefix}help to see all available commands."
                )
                return DispatchResult(kind=EventKind.COMMAND, command=key, detail="not_found")
            self.transport.send_text(
                sender_id,
                f"Please enter a command. Use {prefix}help to see all available commands."
            )
            return DispatchResult(kind=EventKind.COMMAND, detail="empty")

        logger.info(f"EVENT COMMAND {command.name} | {display} | {' '.join(args)}")

        if command.admin_only and sender_id not in self.config.bot_admin_users:
            self.transport.send_text(sender_id, ADMIN_ONLY_NOTICE)
            return DispatchResult(kind=EventKind.COMMAND, command=command.name, detail="denied")

        ctx = InvocationContext(
            sender_id=sender_id,
            thread_id=event.recipient_id,
            args=args,
            message=event.message,
            event=event,
            user=user,
            received_at=event.received_at,
            command=command,
            commands=self.runtime.registry,
            runtime=self.runtime,
        )
        self._bind(ctx, register_replies=True)
        self._run_with_typing(sender_id, lambda: command.execute(ctx))
        return DispatchResult(kind=EventKind.COMMAND, command=command.name, detail="invoked")

    # === 按鈕回傳 ===

    def _dispatch_postback(
        self,
        event: WebhookEvent,
        user: Optional[Dict[str, Any]],
        display: str
    ) -> DispatchResult:
        sender_id = event.sender_id
        raw_payload = event.postback_payload or ""
        logger.info(f"EVENT POSTBACK Payload | {display} | {raw_payload}")

        key, _, rest = raw_payload.partition(':')
        command = self.runtime.registry.lookup(key)
        if command is not None and command.has_postback_handler:
            ctx = InvocationContext(
                sender_id=sender_id,
                thread_id=event.recipient_id,
                args=[],
                event=event,
                user=user,
                received_at=event.received_at,
                command=command,
                commands=self.runtime.registry,
                runtime=self.runtime,
                payload=rest,
            )
            self._bind(ctx, register_replies=False)
            command.on_postback(ctx, rest)
            return DispatchResult(kind=EventKind.POSTBACK, command=command.name, detail="invoked")

        return self._handle_builtin_postback(sender_id, raw_payload)

    def _handle_builtin_postback(self, sender_id: str, payload: str) -> DispatchResult:
        if payload == 'GET_STARTED':
            self.transport.send_attachment(sender_id, 'template', {
                "template_type": "generic",
                "elements": [{
                    "title": WELCOME_TITLE,
                    "subtitle": WELCOME_SUBTITLE,
                    "image_url": WELCOME_IMAGE,
                    "buttons": [
                        {"type": "postback", "title": "Tell me a joke", "payload": "TELL_JOKE"},
                        {"type": "postback", "title": "Show me options", "payload": "SHOW_OPTIONS"},
                    ],
                }],
            })
            return DispatchResult(kind=EventKind.POSTBACK, detail="demo")

        if payload == 'TELL_JOKE':
            self.transport.send_text(sender_id, self._rng.choice(JOKES))
            return DispatchResult(kind=EventKind.POSTBACK, detail="demo")

        if payload == 'SHOW_OPTIONS':
            self.transport.send_attachment(sender_id, 'template', {
                "template_type": "button",
                "text": "Here are some options:",
                "buttons": [
                    {"type": "postback", "title": title, "payload": value}
                    for title, value in OPTIONS_MENU
                ],
            })
            return DispatchResult(kind=EventKind.POSTBACK, detail="demo")

        logger.warning(f"[Dispatcher] 未處理的按鈕回傳: sender={sender_id}, payload={payload}")
        self.transport.send_text(sender_id, f"Unhandled postback: {payload}")
        return DispatchResult(kind=EventKind.POSTBACK, detail="unhandled")

    # === 內部 ===

    def _resolve_user(self, sender_id: str) -> Optional[Dict[str, Any]]:
        """從存儲加載用戶，沒有則從平臺獲取資料；更新活躍時間並保存"""
        users = self.runtime.users
        try:
            user = users.get_user(sender_id)
        except UserStoreError as e:
            logger.warning(f"[Dispatcher] 讀取用戶失敗: {sender_id}: {e}")
            user = None

        if user is None:
            profile = self.transport.fetch_profile(sender_id)
            if profile:
                user = dict(profile)
                user.pop('id', None)
                user['psid'] = sender_id

        if user is None:
            return None

        user['last_active'] = int(time.time())
        try:
            return users.save_user(sender_id, user)
        except UserStoreError as e:
            logger.warning(f"[Dispatcher] 保存用戶失敗: {sender_id}: {e}")
            return user

    def _build_continuation_context(
        self,
        stored: InvocationContext,
        command: BotCommand,
        event: WebhookEvent,
        user: Optional[Dict[str, Any]]
    ) -> InvocationContext:
        """以凍結上下文為基礎，覆蓋為當前發送者和事件"""
        ctx = stored.snapshot()
        ctx.sender_id = event.sender_id
        ctx.user = user
        ctx.event = event
        ctx.message = event.message
        ctx.reply_message = event.message
        ctx.received_at = event.received_at
        ctx.command = command
        ctx.commands = self.runtime.registry
        ctx.runtime = self.runtime
        self._bind(ctx, register_replies=True)
        return ctx

    def _bind(self, ctx: InvocationContext, register_replies: bool) -> None:
        """為上下文綁定回覆和附件發送函數"""
        transport = self.transport
        max_length = self.config.max_message_length

        def reply(text: str, **options: Any) -> Optional[SendResult]:
            last = None
            for chunk in split_message(str(text), max_length):
                last = transport.send_text(ctx.sender_id, chunk, **options)
                latency_ms = (time.time() - ctx.received_at) * 1000
                self.runtime.latency.record(ctx.sender_id, latency_ms)

            command = ctx.command
            if (
                register_replies
                and command is not None
                and command.has_reply_handler
                and last is not None
                and last.message_id
            ):
                self.runtime.correlations.register(last.message_id, command, ctx.snapshot())
            return last

        def send_attachment(attachment_type: str, data: Any) -> Optional[SendResult]:
            return transport.send_attachment(ctx.sender_id, attachment_type, data)

        ctx.reply_handler = reply
        ctx.attachment_handler = send_attachment

    def _run_with_typing(self, sender_id: str, action) -> None:
        self.transport.typing(sender_id, True)
        try:
            action()
        finally:
            self.transport.typing(sender_id, False)

    def _acknowledge(self, sender_id: str, text: str) -> None:
        self.transport.typing(sender_id, True)
        self.transport.send_text(sender_id, text)
        self.transport.typing(sender_id, False)
