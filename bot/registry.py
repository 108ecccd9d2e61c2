# -*- coding: utf-8 -*-
"""
===================================
命令註冊表
===================================

職責：
1. 從命令源加載命令定義，按名稱和別名建立索引
2. 運行時熱重載、卸載單個命令
3. 從白名單地址安裝新命令

併發模型：
- 讀（lookup）不加鎖，直接讀取當前字典引用
- 寫（load/reload/unload/install）在寫鎖內構造新字典後整體替換
  讀者只會看到替換前或替換後的完整表，不會看到半更新狀態

命令源：
- FileCommandSource: 內置 bot/commands/ 目錄 + 可寫的安裝目錄（插件文件）
- StaticCommandSource: 啟動時給定的命令類註冊表（只讀，不支持安裝）
"""

import hashlib
import importlib.util
import inspect
import logging
import os
import re
import sys
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Type
from urllib.parse import urlparse

import requests

from bot.commands.base import BotCommand
from bot.errors import CommandConflictError, CommandInstallError, CommandLoadError

logger = logging.getLogger(__name__)

# 內置命令目錄
BUILTIN_COMMANDS_DIR = Path(__file__).parent / "commands"

# 非命令模塊
_SKIP_MODULES = {"__init__", "base"}

# 插件模塊在 sys.modules 中的命名空間
PLUGIN_MODULE_PREFIX = "bot_plugins"

COMMAND_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_]{0,31}$")


# === 命令源 ===

class CommandSource(ABC):
    """命令源抽象基類"""

    @abstractmethod
    def names(self) -> List[str]:
        """所有可用命令源名稱（排序）"""
        pass

    @abstractmethod
    def has(self, name: str) -> bool:
        pass

    @abstractmethod
    def load(self, name: str) -> BotCommand:
        """
        解析並實例化命令

        Raises:
            CommandLoadError: 源不存在或解析失敗
        """
        pass

    @property
    def writable(self) -> bool:
        return False

    def install(
        self,
        name: str,
        content: str,
        validator: Optional[Callable[[BotCommand], None]] = None
    ) -> BotCommand:
        """寫入新的命令源，默認不支持"""
        raise CommandInstallError("This command source is read-only")


class FileCommandSource(CommandSource):
    """
    文件命令源

    每個 .py 文件是一個命令插件，文件中定義恰好一個 BotCommand 子類。
    安裝目錄中的同名文件優先於內置目錄。
    """

    def __init__(
        self,
        directories: Optional[Sequence[Path]] = None,
        install_dir: Optional[Path] = None
    ):
        """
        Args:
            directories: 只讀命令目錄（默認內置目錄）
            install_dir: 可寫安裝目錄（None 表示不支持安裝）
        """
        self.directories = [Path(d) for d in (directories if directories is not None else [BUILTIN_COMMANDS_DIR])]
        self.install_dir = Path(install_dir) if install_dir else None

    @property
    def writable(self) -> bool:
        return self.install_dir is not None

    def _search_dirs(self) -> List[Path]:
        dirs = []
        if self.install_dir is not None:
            dirs.append(self.install_dir)
        dirs.extend(self.directories)
        return dirs

    def _find(self, name: str) -> Optional[Path]:
        if not COMMAND_NAME_PATTERN.match(name):
            return None
        for directory in self._search_dirs():
            path = directory / f"{name}.py"
            if path.is_file():
                return path
        return None

    def names(self) -> List[str]:
        found = set()
        for directory in self._search_dirs():
            if not directory.is_dir():
                continue
            for path in directory.glob("*.py"):
                stem = path.stem
                if stem in _SKIP_MODULES or stem.startswith("_"):
                    continue
                found.add(stem)
        return sorted(found)

    def has(self, name: str) -> bool:
        return self._find(name) is not None

    def load(self, name: str) -> BotCommand:
        path = self._find(name)
        if path is None:
            raise CommandLoadError(f"No source for command '{name}'")
        return self.load_from_path(path, name)

    def load_from_path(self, path: Path, name: str) -> BotCommand:
        """從文件路徑加載命令（每次都重新執行模塊代碼）"""
        module_name = f"{PLUGIN_MODULE_PREFIX}.{name}"
        spec = importlib.util.spec_from_file_location(module_name, path)
        if spec is None or spec.loader is None:
            raise CommandLoadError(f"Cannot import command file: {path}")

        module = importlib.util.module_from_spec(spec)
        previous = sys.modules.get(module_name)
        sys.modules[module_name] = module
        try:
            spec.loader.exec_module(module)
            return _extract_command(module, path)
        except CommandLoadError:
            _restore_module(module_name, previous)
            raise
        except Exception as e:
            _restore_module(module_name, previous)
            raise CommandLoadError(f"Failed to load command '{name}' from {path}: {e}") from e

    def install(
        self,
        name: str,
        content: str,
        validator: Optional[Callable[[BotCommand], None]] = None
    ) -> BotCommand:
        """
        寫入新命令文件

        先寫入臨時文件並加載校驗，通過後再原子替換到正式路徑；
        任一步失敗都會刪除臨時文件，目錄保持原樣。
        """
        if self.install_dir is None:
            raise CommandInstallError("No writable commands directory configured")

        self.install_dir.mkdir(parents=True, exist_ok=True)
        pending = self.install_dir / f"_pending_{name}.py"
        target = self.install_dir / f"{name}.py"

        try:
            pending.write_text(content, encoding="utf-8")
            command = self.load_from_path(pending, name)
            if command.name.lower() != name:
                raise CommandInstallError(
                    f"Downloaded command is named '{command.name}', expected '{name}'"
                )
            if validator is not None:
                validator(command)
            os.replace(pending, target)
        except CommandInstallError:
            pending.unlink(missing_ok=True)
            raise
        except (CommandLoadError, OSError) as e:
            pending.unlink(missing_ok=True)
            raise CommandInstallError(str(e)) from e

        logger.info(f"[Registry] 命令文件已寫入: {target}")
        return command


class StaticCommandSource(CommandSource):
    """
    靜態命令源

    由命令類列表構成的註冊表，reload 時重新實例化對應類。
    """

    def __init__(self, command_classes: Iterable[Type[BotCommand]]):
        self._classes: Dict[str, Type[BotCommand]] = {}
        for command_class in command_classes:
            instance = command_class()
            self._classes[instance.name.lower()] = command_class

    def names(self) -> List[str]:
        return sorted(self._classes)

    def has(self, name: str) -> bool:
        return name.lower() in self._classes

    def load(self, name: str) -> BotCommand:
        command_class = self._classes.get(name.lower())
        if command_class is None:
            raise CommandLoadError(f"No source for command '{name}'")
        try:
            return command_class()
        except Exception as e:
            raise CommandLoadError(f"Failed to instantiate command '{name}': {e}") from e


def _restore_module(module_name: str, previous) -> None:
    if previous is not None:
        sys.modules[module_name] = previous
    else:
        sys.modules.pop(module_name, None)


def _extract_command(module, path: Path) -> BotCommand:
    """從模塊中找出唯一的 BotCommand 子類並實例化"""
    candidates = [
        obj for obj in vars(module).values()
        if inspect.isclass(obj)
        and issubclass(obj, BotCommand)
        and not inspect.isabstract(obj)
        and obj.__module__ == module.__name__
    ]

    if not candidates:
        raise CommandLoadError(f"No BotCommand subclass defined in {path}")
    if len(candidates) > 1:
        names = ", ".join(c.__name__ for c in candidates)
        raise CommandLoadError(f"Multiple BotCommand subclasses defined in {path}: {names}")

    try:
        command = candidates[0]()
    except Exception as e:
        raise CommandLoadError(f"Failed to instantiate {candidates[0].__name__}: {e}") from e

    if not isinstance(command.name, str) or not command.name.strip():
        raise CommandLoadError(f"Command in {path} has an empty name")

    return command


# === 註冊表 ===

class CommandRegistry:
    """
    命令註冊表

    使用示例：
        registry = CommandRegistry(FileCommandSource())
        registry.load()
        command = registry.lookup("h")   # 別名同樣可查
    """

    def __init__(
        self,
        source: CommandSource,
        allowed_install_hosts: Optional[Sequence[str]] = None,
        http_timeout: float = 15.0
    ):
        """
        Args:
            source: 命令源
            allowed_install_hosts: 允許安裝命令的主機白名單（空表示禁止安裝）
            http_timeout: 下載命令源的超時時間（秒）
        """
        self.source = source
        self.allowed_install_hosts = [h.lower() for h in (allowed_install_hosts or [])]
        self.http_timeout = http_timeout

        self._commands: Dict[str, BotCommand] = {}
        self._write_lock = threading.RLock()

    # --- 讀 ---

    def lookup(self, key: str) -> Optional[BotCommand]:
        """按名稱或別名查找命令（不區分大小寫）"""
        if not key:
            return None
        return self._commands.get(key.lower())

    def list_commands(self, include_hidden: bool = False) -> List[BotCommand]:
        """列出所有命令（按名稱去重排序）"""
        unique: Dict[str, BotCommand] = {}
        for command in self._commands.values():
            unique.setdefault(command.name.lower(), command)

        commands = list(unique.values())
        if not include_hidden:
            commands = [c for c in commands if not c.hidden]
        return sorted(commands, key=lambda c: c.name)

    def keys_of(self, name: str) -> List[str]:
        """某命令當前在表中擁有的全部鍵"""
        command = self.lookup(name)
        if command is None:
            return []
        return sorted(k for k, v in self._commands.items() if v is command)

    def __contains__(self, key: str) -> bool:
        return self.lookup(key) is not None

    def __len__(self) -> int:
        return len({id(c) for c in self._commands.values()})

    # --- 寫 ---

    def load(self, on_load: Optional[Callable[[str], None]] = None) -> int:
        """
        清空並從命令源重新加載全部命令

        Args:
            on_load: 每加載一個命令後的回調，參數為命令名

        Returns:
            加載的命令數量

        Raises:
            CommandLoadError: 任一命令解析失敗或鍵衝突（原表保持不變）
        """
        with self._write_lock:
            table: Dict[str, BotCommand] = {}
            names = self.source.names()
            for name in names:
                command = self.source.load(name)
                self._insert(table, command)
                logger.debug(f"[Registry] 註冊命令: {command.name} -> {command.keys}")
                if on_load is not None:
                    on_load(command.name)

            self._commands = table

        logger.info(f"[Registry] 命令加載完成，共 {len(names)} 個")
        return len(names)

    def reload(self, name: str) -> bool:
        """
        熱重載單個命令

        Returns:
            False 表示沒有對應的命令源

        Raises:
            CommandLoadError: 命令源解析失敗或新定義與其他命令衝突
        """
        name = (name or "").lower()
        if not COMMAND_NAME_PATTERN.match(name):
            logger.warning(f"[Registry] 重載被拒絕，非法命令名: {name}")
            return False

        with self._write_lock:
            if not self.source.has(name):
                logger.info(f"[Registry] 重載失敗，未找到命令源: {name}")
                return False

            command = self.source.load(name)
            table = self._without(self._commands, {name, command.name.lower()})
            self._insert(table, command)
            self._commands = table

        logger.info(f"[Registry] 命令已重載: {command.name} -> {command.keys}")
        return True

    def unload(self, name: str) -> bool:
        """
        卸載命令（名稱和全部別名）

        Returns:
            命令不存在時返回 False
        """
        with self._write_lock:
            command = self.lookup(name)
            if command is None:
                return False
            self._commands = {k: v for k, v in self._commands.items() if v is not command}

        logger.info(f"[Registry] 命令已卸載: {command.name}")
        return True

    def install(self, name: str, url: str, sha256: Optional[str] = None) -> BotCommand:
        """
        從遠程地址安裝命令

        流程：校驗名稱 -> 校驗主機白名單 -> 下載 -> 校驗摘要 -> 寫入並加載 -> 重載

        Args:
            name: 命令名（同時作為文件名）
            url: 源碼地址（必須為 https 且主機在白名單內）
            sha256: 可選的源碼 SHA-256 摘要

        Returns:
            安裝後的命令定義

        Raises:
            CommandInstallError: 任一步驟失敗，註冊表不變
        """
        name = (name or "").lower()
        if not COMMAND_NAME_PATTERN.match(name):
            raise CommandInstallError(f"Invalid command name: '{name}'")

        if not self.source.writable:
            raise CommandInstallError("Command installation is disabled for this source")

        self._check_install_url(url)

        try:
            resp = requests.get(url, timeout=self.http_timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            raise CommandInstallError(f"Failed to fetch {url}: {e}") from e

        content = resp.text
        if sha256:
            digest = hashlib.sha256(content.encode("utf-8")).hexdigest()
            if digest.lower() != sha256.lower():
                raise CommandInstallError(f"SHA-256 mismatch: expected {sha256}, got {digest}")

        with self._write_lock:
            def validate(command: BotCommand) -> None:
                table = self._without(self._commands, {name})
                try:
                    self._insert(table, command)
                except CommandConflictError as e:
                    raise CommandInstallError(str(e)) from e

            self.source.install(name, content, validator=validate)
            try:
                self.reload(name)
            except CommandLoadError as e:
                raise CommandInstallError(str(e)) from e
            command = self.lookup(name)

        logger.info(f"[Registry] 命令已安裝: {name} <- {url}")
        return command

    # --- 內部 ---

    def _check_install_url(self, url: str) -> None:
        parsed = urlparse(url or "")
        if parsed.scheme != "https" or not parsed.hostname:
            raise CommandInstallError(f"Only https URLs are allowed: {url}")

        host = parsed.hostname.lower()
        allowed = any(host == h or host.endswith("." + h) for h in self.allowed_install_hosts)
        if not allowed:
            raise CommandInstallError(f"Host '{host}' is not in the install allow-list")

    @staticmethod
    def _without(table: Dict[str, BotCommand], names: Iterable[str]) -> Dict[str, BotCommand]:
        """複製表並移除指定命令名擁有的全部鍵"""
        names = {n.lower() for n in names}
        return {k: v for k, v in table.items() if v.name.lower() not in names}

    @staticmethod
    def _insert(table: Dict[str, BotCommand], command: BotCommand) -> None:
        for key in command.keys:
            existing = table.get(key)
            if existing is not None and existing is not command:
                raise CommandConflictError(
                    f"Key '{key}' of command '{command.name}' is already used by '{existing.name}'"
                )
        for key in command.keys:
            table[key] = command
