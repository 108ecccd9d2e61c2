# -*- coding: utf-8 -*-
"""
===================================
Messenger 機器人 - 配置管理模塊
===================================

職責：
1. 使用單例模式管理全局配置
2. 從 .env 文件加載敏感配置
3. 提供類型安全的配置訪問接口
"""

import os
from pathlib import Path
from typing import List, Optional
from dotenv import load_dotenv
from dataclasses import dataclass, field
from datetime import datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


@dataclass
class Config:
    """
    系統配置類 - 單例模式

    設計說明：
    - 使用 dataclass 簡化配置屬性定義
    - 所有配置項從環境變量讀取，支持默認值
    - 類方法 get_instance() 實現單例訪問
    """

    # === Messenger 平臺配置 ===
    page_access_token: Optional[str] = None
    verify_token: Optional[str] = None
    app_secret: Optional[str] = None          # 配置後校驗 X-Hub-Signature-256
    page_id: Optional[str] = None
    graph_api_version: str = "v19.0"

    # === 機器人配置 ===
    bot_enabled: bool = True                  # 是否處理 webhook 事件
    bot_command_prefix: str = "!"             # 默認命令前綴（用戶可自定義）
    bot_admin_users: List[str] = field(default_factory=list)  # 管理員 PSID 列表
    bot_command_source: str = "files"         # files / static
    bot_commands_dir: str = "./data/commands"  # 安裝命令的寫入目錄
    bot_install_allowed_hosts: List[str] = field(
        default_factory=lambda: ["raw.githubusercontent.com", "gist.githubusercontent.com"]
    )
    max_message_length: int = 2000            # 單條消息最大長度

    # === 續接存儲配置 ===
    correlation_max_entries: int = 1000
    correlation_max_age: int = 86400          # 秒

    # === 用戶存儲配置 ===
    user_db_type: str = "json"                # memory / json / sqlite
    user_db_path: str = "./data/users.json"
    database_url: Optional[str] = None        # SQLAlchemy URL，優先於默認 SQLite 路徑
    database_path: str = "./data/users.sqlite"

    # === 定時推送配置 ===
    timezone: str = "Asia/Dhaka"              # 進程默認時區
    moments_enabled: bool = True
    moment_morning_time: str = "08:00"        # HH:MM
    moment_night_time: str = "22:00"          # HH:MM
    moment_random_interval_hours: int = 3
    moment_max_workers: int = 8               # 併發發送線程數

    # === 外部服務配置 ===
    ai_api_base: str = ""                     # 對話服務地址，為空時 ai 命令不可用
    meme_api_url: str = "https://meme-api.com/gimme"
    http_timeout: float = 15.0

    # === 日誌配置 ===
    log_dir: str = "./logs"  # 日誌文件目錄
    log_level: str = "INFO"  # 日誌級別

    # === 系統配置 ===
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 3000

    # 單例實例存儲
    _instance: Optional['Config'] = None

    @classmethod
    def get_instance(cls) -> 'Config':
        """
        獲取配置單例實例

        單例模式確保：
        1. 全局只有一個配置實例
        2. 配置只從環境變量加載一次
        3. 所有模塊共享相同配置
        """
        if cls._instance is None:
            cls._instance = cls._load_from_env()
        return cls._instance

    @classmethod
    def _load_from_env(cls) -> 'Config':
        """
        從 .env 文件加載配置

        加載優先級：
        1. 系統環境變量
        2. .env 文件
        3. 代碼中的默認值
        """
        # 加載項目根目錄下的 .env 文件
        env_path = Path(__file__).parent / '.env'
        load_dotenv(dotenv_path=env_path)

        allowed_hosts_str = os.getenv('BOT_INSTALL_ALLOWED_HOSTS')
        if allowed_hosts_str is None:
            allowed_hosts = ["raw.githubusercontent.com", "gist.githubusercontent.com"]
        else:
            allowed_hosts = [h.strip().lower() for h in allowed_hosts_str.split(',') if h.strip()]

        return cls(
            page_access_token=os.getenv('PAGE_ACCESS_TOKEN'),
            verify_token=os.getenv('VERIFY_TOKEN'),
            app_secret=os.getenv('APP_SECRET') or None,
            page_id=os.getenv('PAGE_ID') or None,
            graph_api_version=os.getenv('GRAPH_API_VERSION', 'v19.0'),
            # 機器人
            bot_enabled=os.getenv('BOT_ENABLED', 'true').lower() == 'true',
            bot_command_prefix=os.getenv('COMMAND_PREFIX') or '!',
            bot_admin_users=[u.strip() for u in os.getenv('ADMIN_IDS', '').split(',') if u.strip()],
            bot_command_source=os.getenv('BOT_COMMAND_SOURCE', 'files').lower(),
            bot_commands_dir=os.getenv('BOT_COMMANDS_DIR', './data/commands'),
            bot_install_allowed_hosts=allowed_hosts,
            max_message_length=int(os.getenv('MAX_MESSAGE_LENGTH', '2000')),
            correlation_max_entries=int(os.getenv('CORRELATION_MAX_ENTRIES', '1000')),
            correlation_max_age=int(os.getenv('CORRELATION_MAX_AGE', '86400')),
            # 存儲
            user_db_type=os.getenv('USER_DB_TYPE', 'json').lower(),
            user_db_path=os.getenv('USER_DB_PATH', './data/users.json'),
            database_url=os.getenv('DATABASE_URL') or None,
            database_path=os.getenv('DATABASE_PATH', './data/users.sqlite'),
            # 定時推送
            timezone=os.getenv('TIMEZONE', 'Asia/Dhaka'),
            moments_enabled=os.getenv('MOMENTS_ENABLED', 'true').lower() == 'true',
            moment_morning_time=os.getenv('MOMENT_MORNING_TIME', '08:00'),
            moment_night_time=os.getenv('MOMENT_NIGHT_TIME', '22:00'),
            moment_random_interval_hours=int(os.getenv('MOMENT_RANDOM_INTERVAL_HOURS', '3')),
            moment_max_workers=int(os.getenv('MOMENT_MAX_WORKERS', '8')),
            # 外部服務
            ai_api_base=os.getenv('AI_API_BASE', '').rstrip('/'),
            meme_api_url=os.getenv('MEME_API_URL', 'https://meme-api.com/gimme'),
            http_timeout=float(os.getenv('HTTP_TIMEOUT', '15')),
            # 日誌與系統
            log_dir=os.getenv('LOG_DIR', './logs'),
            log_level=os.getenv('LOG_LEVEL', 'INFO'),
            debug=os.getenv('DEBUG', 'false').lower() == 'true',
            host=os.getenv('HOST', '0.0.0.0'),
            port=int(os.getenv('PORT', '3000')),
        )

    @classmethod
    def reset_instance(cls) -> None:
        """重置單例（主要用於測試）"""
        cls._instance = None

    def validate(self) -> List[str]:
        """
        驗證配置完整性

        Returns:
            缺失或無效配置項的警告列表
        """
        warnings = []

        if not self.page_access_token:
            warnings.append("警告：未配置 PAGE_ACCESS_TOKEN，將無法發送任何消息")

        if not self.verify_token:
            warnings.append("警告：未配置 VERIFY_TOKEN，Webhook 訂閱驗證將失敗")

        if not self.app_secret:
            warnings.append("提示：未配置 APP_SECRET，將跳過 Webhook 簽名校驗")

        if not self.page_id:
            warnings.append("提示：未配置 PAGE_ID，僅依靠 is_echo 過濾主頁自身消息")

        if not self.bot_admin_users:
            warnings.append("提示：未配置 ADMIN_IDS，管理員命令將無人可用")

        if not 1 <= len(self.bot_command_prefix) <= 5:
            warnings.append("警告：COMMAND_PREFIX 長度應為 1-5 個字符")

        if self.max_message_length <= 0:
            warnings.append("警告：MAX_MESSAGE_LENGTH 必須大於 0，已使用 2000")
            self.max_message_length = 2000

        if self.user_db_type not in ('memory', 'json', 'sqlite', 'sql'):
            warnings.append(f"警告：未知的 USER_DB_TYPE: {self.user_db_type}")

        if self.moment_random_interval_hours <= 0 or 24 % self.moment_random_interval_hours != 0:
            warnings.append("警告：MOMENT_RANDOM_INTERVAL_HOURS 應能整除 24，已使用 3")
            self.moment_random_interval_hours = 3

        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            warnings.append(f"警告：無效的 TIMEZONE: {self.timezone}，已使用 Asia/Dhaka")
            self.timezone = "Asia/Dhaka"

        if not _is_hhmm(self.moment_morning_time):
            warnings.append(f"警告：無效的 MOMENT_MORNING_TIME: {self.moment_morning_time}，已使用 08:00")
            self.moment_morning_time = "08:00"

        if not _is_hhmm(self.moment_night_time):
            warnings.append(f"警告：無效的 MOMENT_NIGHT_TIME: {self.moment_night_time}，已使用 22:00")
            self.moment_night_time = "22:00"

        return warnings

    def get_db_url(self) -> str:
        """
        獲取 SQLAlchemy 數據庫連接 URL

        優先使用 DATABASE_URL，否則使用本地 SQLite 文件
        """
        if self.database_url:
            return self.database_url
        db_path = Path(self.database_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{db_path.absolute()}"


def _is_hhmm(value: str) -> bool:
    """檢查 HH:MM 格式（schedule 的 .at() 要求兩位小時）"""
    try:
        datetime.strptime(value, "%H:%M")
    except (TypeError, ValueError):
        return False
    return len(value) == 5


# === 便捷的配置訪問函數 ===
def get_config() -> Config:
    """獲取全局配置實例的快捷方式"""
    return Config.get_instance()
