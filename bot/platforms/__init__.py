# -*- coding: utf-8 -*-
"""
===================================
平臺適配器模塊
===================================

包含各平臺的 Webhook 處理、消息解析和出站發送邏輯。
"""

from bot.platforms.base import BotPlatform, BotTransport
from bot.platforms.messenger import MessengerClient, MessengerPlatform

__all__ = [
    'BotPlatform',
    'BotTransport',
    'MessengerPlatform',
    'MessengerClient',
]
