# -*- coding: utf-8 -*-
"""
===================================
Messenger 命令機器人
===================================

接收 Messenger webhook 事件，分類後路由到命令、回覆續接或按鈕回傳處理器。

模塊結構：
- models.py: 事件、調用上下文、分發結果等統一模型
- chunker.py: 長消息分片
- correlation.py: 回覆續接存儲
- latency.py: 回覆延遲統計
- registry.py: 命令註冊表與命令源
- dispatcher.py: 事件分發器
- moments.py: 定時問候推送
- runtime.py: 運行時（集中持有可變狀態）
- handler.py: Webhook 處理器
- commands/: 內置命令
- platforms/: 平臺適配器與發送通道

使用方式：
1. 配置環境變量（PAGE_ACCESS_TOKEN、VERIFY_TOKEN 等）
2. 啟動服務：python main.py
3. 在 Meta 開發者後臺配置 Webhook URL：http://your-server/webhook

內置命令（默認前綴 !）：
- !help [命令]       - 顯示幫助
- !ping              - 回覆延遲
- !prefix [新前綴]   - 自定義前綴
- !timezone <時區>   - 設置時區
- !userinfo          - 用戶資料
- !ai <問題>         - AI 對話
- !meme              - 隨機梗圖
- !cmd ...           - 命令管理（管理員）
"""

from bot.models import DispatchResult, EventKind, InvocationContext, WebhookEvent, WebhookResponse
from bot.dispatcher import EventDispatcher
from bot.registry import CommandRegistry, FileCommandSource, StaticCommandSource
from bot.runtime import BotRuntime, create_runtime

__all__ = [
    'DispatchResult',
    'EventKind',
    'InvocationContext',
    'WebhookEvent',
    'WebhookResponse',
    'EventDispatcher',
    'CommandRegistry',
    'FileCommandSource',
    'StaticCommandSource',
    'BotRuntime',
    'create_runtime',
]
