# -*- coding: utf-8 -*-
"""
===================================
機器人異常定義
===================================

命令註冊表、安裝流程與用戶存儲使用的異常層級。
"""


class BotError(Exception):
    """機器人異常基類"""
    pass


class CommandLoadError(BotError):
    """命令源碼無法加載或解析"""
    pass


class CommandConflictError(CommandLoadError):
    """兩個命令定義爭用同一個名稱或別名"""
    pass


class CommandInstallError(BotError):
    """命令安裝失敗（下載、校驗或寫入）"""
    pass


class UserStoreError(BotError):
    """用戶存儲後端異常"""
    pass
