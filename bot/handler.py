# -*- coding: utf-8 -*-
"""
===================================
Bot Webhook 處理器
===================================

處理 Messenger 的 Webhook 回調，分發到事件分發器。

- verify_webhook: 訂閱驗證（GET）
- handle_webhook: 校驗並解析推送（POST），返回 (事件列表, 響應)
- process_events: 逐個分發事件，處理器異常在這裡記錄
"""

import json
import logging
from typing import Dict, List, Tuple, TYPE_CHECKING

from bot.models import DispatchResult, WebhookEvent, WebhookResponse

if TYPE_CHECKING:
    from bot.runtime import BotRuntime

logger = logging.getLogger(__name__)

EVENT_RECEIVED = "EVENT_RECEIVED"


def verify_webhook(runtime: 'BotRuntime', query: Dict[str, str]) -> WebhookResponse:
    """
    處理訂閱驗證請求

    Args:
        runtime: 運行時
        query: URL 查詢參數
    """
    return runtime.platform.handle_challenge(query)


def handle_webhook(
    runtime: 'BotRuntime',
    headers: Dict[str, str],
    body: bytes
) -> Tuple[List[WebhookEvent], WebhookResponse]:
    """
    處理 Webhook 推送

    這是推送的統一入口。只做校驗和解析，事件由調用方
    交給 process_events（通常在後臺任務中），以便立即應答平臺。

    Args:
        runtime: 運行時
        headers: HTTP 請求頭
        body: 請求體原始字節

    Returns:
        (待處理事件, 響應)
    """
    headers = {k.lower(): v for k, v in headers.items()}

    try:
        data = json.loads(body.decode('utf-8')) if body else {}
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.error(f"[BotHandler] JSON 解析失敗: {e}")
        return [], WebhookResponse.error("Invalid JSON", 400)

    if not isinstance(data, dict):
        return [], WebhookResponse.error("Invalid payload", 400)

    logger.debug(f"[BotHandler] 請求數據: {json.dumps(data, ensure_ascii=False)[:500]}")

    events, error_response = runtime.platform.handle_webhook(headers, body, data)
    if error_response is not None:
        return [], error_response

    if not runtime.config.bot_enabled:
        logger.info("[BotHandler] 機器人功能未啟用，丟棄事件")
        return [], WebhookResponse.challenge(EVENT_RECEIVED)

    logger.info(f"[BotHandler] 收到 {len(events)} 個事件")
    return events, WebhookResponse.challenge(EVENT_RECEIVED)


def process_events(runtime: 'BotRuntime', events: List[WebhookEvent]) -> List[DispatchResult]:
    """
    逐個分發事件

    單個事件處理失敗只記錄日誌，不影響同批次的其他事件。

    Returns:
        成功分發的事件結果
    """
    results = []
    for event in events:
        try:
            results.append(runtime.dispatcher.dispatch(event))
        except Exception as e:
            logger.exception(f"[BotHandler] 事件處理失敗: sender={event.sender_id}: {e}")
    return results
