# -*- coding: utf-8 -*-
"""
===================================
Messenger 機器人 - 用戶存儲層
===================================

職責：
1. 定義用戶存儲接口（get / save / list）
2. 提供 memory / json / sqlite(SQLAlchemy) 三種後端
3. 統一保存時的合併規則

合併規則（所有後端一致）：
- 新記錄的頂層字段覆蓋舊記錄
- custom 字段做淺合併（新值覆蓋同名鍵，其他鍵保留）
- 記錄始終帶 psid
"""

import copy
import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Column, DateTime, String, create_engine, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from bot.errors import UserStoreError

logger = logging.getLogger(__name__)

# SQLAlchemy ORM 基類
Base = declarative_base()


def merge_user(old: Optional[Dict[str, Any]], new: Dict[str, Any], psid: str) -> Dict[str, Any]:
    """
    合併用戶記錄

    Args:
        old: 已存記錄（可能為 None）
        new: 新數據
        psid: 用戶 ID

    Returns:
        合併後的新字典（不修改入參）
    """
    old = old or {}
    merged = copy.deepcopy(old)
    merged.update(copy.deepcopy(new))

    old_custom = old.get('custom')
    new_custom = new.get('custom')
    if isinstance(old_custom, dict) and isinstance(new_custom, dict):
        custom = copy.deepcopy(old_custom)
        custom.update(copy.deepcopy(new_custom))
        merged['custom'] = custom

    merged['psid'] = psid
    return merged


class UserStore(ABC):
    """用戶存儲抽象基類"""

    backend_name = "base"

    @abstractmethod
    def get_user(self, psid: str) -> Optional[Dict[str, Any]]:
        """
        獲取用戶記錄

        Returns:
            記錄副本，不存在返回 None
        """
        pass

    @abstractmethod
    def save_user(self, psid: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        合併保存用戶記錄

        Returns:
            合併後的完整記錄

        Raises:
            UserStoreError: 後端寫入失敗
        """
        pass

    @abstractmethod
    def get_all_users(self) -> List[Dict[str, Any]]:
        pass

    def close(self) -> None:
        pass


class MemoryUserStore(UserStore):
    """內存存儲（測試和臨時運行用）"""

    backend_name = "memory"

    def __init__(self):
        self._users: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def get_user(self, psid: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            user = self._users.get(psid)
            return copy.deepcopy(user) if user is not None else None

    def save_user(self, psid: str, data: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            merged = merge_user(self._users.get(psid), data, psid)
            self._users[psid] = merged
            return copy.deepcopy(merged)

    def get_all_users(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [copy.deepcopy(u) for u in self._users.values()]


class JsonUserStore(UserStore):
    """
    JSON 文件存儲

    整個文件是 {psid: record} 的字典，每次寫入先寫臨時文件再原子替換。
    """

    backend_name = "json"

    def __init__(self, path: str):
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read(self) -> Dict[str, Dict[str, Any]]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                content = f.read()
            return json.loads(content) if content.strip() else {}
        except (OSError, ValueError) as e:
            logger.error(f"[UserStore] 讀取用戶文件失敗: {self.path}: {e}")
            raise UserStoreError(f"Cannot read user database {self.path}: {e}") from e

    def _write(self, users: Dict[str, Dict[str, Any]]) -> None:
        tmp_path = self.path.with_suffix(self.path.suffix + '.tmp')
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, 'w', encoding='utf-8') as f:
                json.dump(users, f, ensure_ascii=False, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as e:
            logger.error(f"[UserStore] 寫入用戶文件失敗: {self.path}: {e}")
            raise UserStoreError(f"Cannot write user database {self.path}: {e}") from e

    def get_user(self, psid: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self._read().get(psid)

    def save_user(self, psid: str, data: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            users = self._read()
            merged = merge_user(users.get(psid), data, psid)
            users[psid] = merged
            self._write(users)
            return copy.deepcopy(merged)

    def get_all_users(self) -> List[Dict[str, Any]]:
        with self._lock:
            users = self._read()
        return [merge_user(None, record, psid) for psid, record in users.items()]


# === SQL 後端 ===

class UserRecord(Base):
    """
    用戶記錄模型

    資料字段不固定，整體存為 JSON 列。
    """
    __tablename__ = 'messenger_users'

    psid = Column(String(64), primary_key=True)
    data = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    def __repr__(self):
        return f"<UserRecord(psid={self.psid})>"


class SqlUserStore(UserStore):
    """
    SQLAlchemy 存儲

    默認 SQLite，也可通過 DATABASE_URL 指向任意 SQLAlchemy 支持的數據庫。
    """

    backend_name = "sqlite"

    def __init__(self, db_url: str):
        if db_url.startswith('sqlite:///'):
            db_file = db_url[len('sqlite:///'):]
            if db_file and db_file != ':memory:':
                Path(db_file).parent.mkdir(parents=True, exist_ok=True)

        self._engine = create_engine(
            db_url,
            echo=False,
            pool_pre_ping=True,
        )

        self._SessionLocal = sessionmaker(
            bind=self._engine,
            autocommit=False,
            autoflush=False,
        )

        Base.metadata.create_all(self._engine)
        logger.info(f"[UserStore] 數據庫初始化完成: {db_url}")

    def get_session(self) -> Session:
        """
        獲取數據庫 Session

        使用示例:
            with store.get_session() as session:
                session.commit()
        """
        return self._SessionLocal()

    def get_user(self, psid: str) -> Optional[Dict[str, Any]]:
        try:
            with self.get_session() as session:
                record = session.get(UserRecord, psid)
                return copy.deepcopy(record.data) if record is not None else None
        except SQLAlchemyError as e:
            logger.error(f"[UserStore] 查詢用戶失敗: {psid}: {e}")
            raise UserStoreError(str(e)) from e

    def save_user(self, psid: str, data: Dict[str, Any]) -> Dict[str, Any]:
        with self.get_session() as session:
            try:
                record = session.get(UserRecord, psid)
                if record is not None:
                    merged = merge_user(record.data, data, psid)
                    record.data = merged
                    record.updated_at = datetime.now()
                else:
                    merged = merge_user(None, data, psid)
                    session.add(UserRecord(psid=psid, data=merged))

                session.commit()
                return copy.deepcopy(merged)

            except SQLAlchemyError as e:
                session.rollback()
                logger.error(f"[UserStore] 保存用戶失敗: {psid}: {e}")
                raise UserStoreError(str(e)) from e

    def get_all_users(self) -> List[Dict[str, Any]]:
        try:
            with self.get_session() as session:
                records = session.execute(select(UserRecord)).scalars().all()
                return [merge_user(None, r.data, r.psid) for r in records]
        except SQLAlchemyError as e:
            logger.error(f"[UserStore] 查詢全部用戶失敗: {e}")
            raise UserStoreError(str(e)) from e

    def close(self) -> None:
        self._engine.dispose()


def create_user_store(config) -> UserStore:
    """
    按配置創建用戶存儲

    USER_DB_TYPE:
        memory - 內存
        json   - USER_DB_PATH 指向的 JSON 文件
        sqlite - DATABASE_URL（未配置時使用 data/users.sqlite）
    """
    db_type = (config.user_db_type or 'json').lower()

    if db_type == 'memory':
        store: UserStore = MemoryUserStore()
    elif db_type == 'json':
        store = JsonUserStore(config.user_db_path)
    elif db_type in ('sqlite', 'sql'):
        store = SqlUserStore(config.get_db_url())
    else:
        raise UserStoreError(f"Unknown USER_DB_TYPE: {config.user_db_type}")

    logger.info(f"[UserStore] 使用存儲後端: {store.backend_name}")
    return store
