# -*- coding: utf-8 -*-
"""
測試命令註冊表：加載、重載、卸載、安裝
"""
import hashlib
from pathlib import Path
from typing import List, Optional

import pytest
import requests

from bot.commands import ALL_COMMANDS
from bot.errors import CommandConflictError, CommandInstallError, CommandLoadError
from bot.registry import CommandRegistry, FileCommandSource, StaticCommandSource

ALLOWED = ["raw.githubusercontent.com"]


def plugin_source(class_name: str, name: str, aliases: Optional[List[str]] = None, reply: str = "hi") -> str:
    return f'''
from typing import List

from bot.commands.base import BotCommand


class {class_name}(BotCommand):

    @property
    def name(self) -> str:
        return "{name}"

    @property
    def aliases(self) -> List[str]:
        return {aliases or []!r}

    @property
    def description(self) -> str:
        return "{reply}"

    @property
    def usage(self) -> str:
        return "{{prefix}}{name}"

    def execute(self, ctx) -> None:
        ctx.reply("{reply}")
'''


def write_plugin(directory: Path, filename: str, source: str) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"{filename}.py"
    path.write_text(source, encoding="utf-8")
    return path


class FakeResponse:
    def __init__(self, text: str, status_code: int = 200):
        self.text = text
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")


@pytest.fixture
def plugin_dir(tmp_path):
    return tmp_path / "plugins"


@pytest.fixture
def install_dir(tmp_path):
    return tmp_path / "installed"


# === 加載 ===

def test_builtin_directory_loads_all_commands():
    registry = CommandRegistry(FileCommandSource())
    loaded = registry.load()

    assert loaded == len(ALL_COMMANDS)
    assert registry.lookup("help") is registry.lookup("h")
    assert registry.lookup("PING").name == "ping"
    assert registry.keys_of("userinfo") == ["me", "profile", "userinfo"]


def test_static_source_loads_all_commands():
    registry = CommandRegistry(StaticCommandSource(ALL_COMMANDS))
    registry.load()

    names = [c.name for c in registry.list_commands()]
    assert names == sorted(names)
    assert {"ai", "cmd", "help", "meme", "ping", "prefix", "timezone", "userinfo"} <= set(names)
    assert len(registry) == len(ALL_COMMANDS)


def test_load_reports_each_command(plugin_dir):
    write_plugin(plugin_dir, "alpha", plugin_source("AlphaCommand", "alpha"))
    write_plugin(plugin_dir, "beta", plugin_source("BetaCommand", "beta", ["b"]))
    seen = []

    registry = CommandRegistry(FileCommandSource(directories=[plugin_dir]))
    registry.load(on_load=seen.append)

    assert seen == ["alpha", "beta"]
    assert registry.lookup("b").name == "beta"


def test_private_and_base_modules_are_skipped(plugin_dir):
    write_plugin(plugin_dir, "alpha", plugin_source("AlphaCommand", "alpha"))
    write_plugin(plugin_dir, "_helper", "VALUE = 1\n")
    write_plugin(plugin_dir, "base", "VALUE = 1\n")

    source = FileCommandSource(directories=[plugin_dir])
    assert source.names() == ["alpha"]


def test_key_collision_aborts_load(plugin_dir):
    """兩個命令爭用同一別名時拒絕加載，原表不變"""
    write_plugin(plugin_dir, "alpha", plugin_source("AlphaCommand", "alpha"))
    registry = CommandRegistry(FileCommandSource(directories=[plugin_dir]))
    registry.load()

    write_plugin(plugin_dir, "beta", plugin_source("BetaCommand", "beta", ["alpha"]))
    with pytest.raises(CommandConflictError):
        registry.load()

    assert registry.lookup("alpha").name == "alpha"
    assert registry.lookup("beta") is None


def test_broken_source_raises_load_error(plugin_dir):
    write_plugin(plugin_dir, "broken", "def oops(:\n")
    registry = CommandRegistry(FileCommandSource(directories=[plugin_dir]))

    with pytest.raises(CommandLoadError):
        registry.load()
    assert len(registry) == 0


def test_module_without_command_is_rejected(plugin_dir):
    write_plugin(plugin_dir, "empty", "VALUE = 1\n")
    with pytest.raises(CommandLoadError):
        FileCommandSource(directories=[plugin_dir]).load("empty")


def test_install_dir_shadows_builtin(plugin_dir, install_dir):
    write_plugin(plugin_dir, "alpha", plugin_source("AlphaCommand", "alpha", reply="builtin"))
    write_plugin(install_dir, "alpha", plugin_source("AlphaCommand", "alpha", reply="override"))

    registry = CommandRegistry(FileCommandSource(directories=[plugin_dir], install_dir=install_dir))
    registry.load()

    assert registry.lookup("alpha").description == "override"


# === 重載 / 卸載 ===

def test_reload_picks_up_new_definition(plugin_dir):
    write_plugin(plugin_dir, "alpha", plugin_source("AlphaCommand", "alpha", ["a"], reply="v1"))
    registry = CommandRegistry(FileCommandSource(directories=[plugin_dir]))
    registry.load()

    write_plugin(plugin_dir, "alpha", plugin_source("AlphaCommand", "alpha", ["al"], reply="v2"))
    assert registry.reload("alpha") is True

    assert registry.lookup("alpha").description == "v2"
    assert registry.lookup("al") is registry.lookup("alpha")
    # 舊別名不再可用
    assert registry.lookup("a") is None


def test_reload_without_source_returns_false(plugin_dir):
    registry = CommandRegistry(FileCommandSource(directories=[plugin_dir]))
    registry.load()
    assert registry.reload("ghost") is False


@pytest.mark.parametrize("name", ["../outside/evil", "sub/evil", "..", ""])
def test_reload_rejects_path_like_names(tmp_path, plugin_dir, name):
    write_plugin(tmp_path / "outside", "evil", plugin_source("EvilCommand", "evil"))
    write_plugin(plugin_dir / "sub", "evil", plugin_source("EvilCommand", "evil"))
    source = FileCommandSource(directories=[plugin_dir])
    registry = CommandRegistry(source)
    registry.load()

    assert registry.reload(name) is False
    assert registry.lookup("evil") is None
    assert not source.has(name)


def test_reload_failure_keeps_previous_definition(plugin_dir):
    write_plugin(plugin_dir, "alpha", plugin_source("AlphaCommand", "alpha", reply="v1"))
    registry = CommandRegistry(FileCommandSource(directories=[plugin_dir]))
    registry.load()

    write_plugin(plugin_dir, "alpha", "raise RuntimeError('boom')\n")
    with pytest.raises(CommandLoadError):
        registry.reload("alpha")

    assert registry.lookup("alpha").description == "v1"


def test_unload_removes_name_and_aliases():
    registry = CommandRegistry(StaticCommandSource(ALL_COMMANDS))
    registry.load()

    assert registry.unload("me") is True
    assert registry.lookup("userinfo") is None
    assert registry.lookup("profile") is None
    assert registry.unload("userinfo") is False

    # 源文件仍在，可以重新加載
    assert registry.reload("userinfo") is True
    assert registry.lookup("me").name == "userinfo"


# === 安裝 ===

def _install_registry(plugin_dir: Path, install_dir: Path) -> CommandRegistry:
    write_plugin(plugin_dir, "alpha", plugin_source("AlphaCommand", "alpha", ["a"]))
    registry = CommandRegistry(
        FileCommandSource(directories=[plugin_dir], install_dir=install_dir),
        allowed_install_hosts=ALLOWED,
    )
    registry.load()
    return registry


def test_install_success(monkeypatch, plugin_dir, install_dir):
    source = plugin_source("HelloCommand", "hello", ["hey"], reply="hello there")
    calls = []

    def fake_get(url, timeout):
        calls.append(url)
        return FakeResponse(source)

    monkeypatch.setattr("bot.registry.requests.get", fake_get)
    registry = _install_registry(plugin_dir, install_dir)

    digest = hashlib.sha256(source.encode("utf-8")).hexdigest()
    command = registry.install("hello", "https://raw.githubusercontent.com/u/r/main/hello.py", sha256=digest)

    assert command.name == "hello"
    assert registry.lookup("hey") is command
    assert (install_dir / "hello.py").is_file()
    assert not list(install_dir.glob("_pending_*"))
    assert calls == ["https://raw.githubusercontent.com/u/r/main/hello.py"]


@pytest.mark.parametrize("url", [
    "http://raw.githubusercontent.com/u/r/main/hello.py",
    "https://evil.example.com/hello.py",
    "https://raw.githubusercontent.com.evil.com/hello.py",
    "not a url",
])
def test_install_rejects_disallowed_urls(monkeypatch, plugin_dir, install_dir, url):
    def fake_get(url, timeout):
        raise AssertionError("should not download")

    monkeypatch.setattr("bot.registry.requests.get", fake_get)
    registry = _install_registry(plugin_dir, install_dir)

    with pytest.raises(CommandInstallError):
        registry.install("hello", url)
    assert registry.lookup("hello") is None


def test_install_rejects_invalid_name(plugin_dir, install_dir):
    registry = _install_registry(plugin_dir, install_dir)
    with pytest.raises(CommandInstallError):
        registry.install("../etc/passwd", "https://raw.githubusercontent.com/u/r/main/x.py")


def test_install_rejects_digest_mismatch(monkeypatch, plugin_dir, install_dir):
    monkeypatch.setattr(
        "bot.registry.requests.get",
        lambda url, timeout: FakeResponse(plugin_source("HelloCommand", "hello"))
    )
    registry = _install_registry(plugin_dir, install_dir)

    with pytest.raises(CommandInstallError):
        registry.install("hello", "https://raw.githubusercontent.com/u/r/main/hello.py", sha256="0" * 64)
    assert not (install_dir / "hello.py").exists()


def test_install_download_failure(monkeypatch, plugin_dir, install_dir):
    monkeypatch.setattr(
        "bot.registry.requests.get",
        lambda url, timeout: FakeResponse("not found", status_code=404)
    )
    registry = _install_registry(plugin_dir, install_dir)

    with pytest.raises(CommandInstallError):
        registry.install("hello", "https://raw.githubusercontent.com/u/r/main/hello.py")


def test_install_conflict_leaves_registry_and_disk_unchanged(monkeypatch, plugin_dir, install_dir):
    """新命令的別名與已有命令衝突時不落盤"""
    monkeypatch.setattr(
        "bot.registry.requests.get",
        lambda url, timeout: FakeResponse(plugin_source("HelloCommand", "hello", ["a"]))
    )
    registry = _install_registry(plugin_dir, install_dir)

    with pytest.raises(CommandInstallError):
        registry.install("hello", "https://raw.githubusercontent.com/u/r/main/hello.py")

    assert registry.lookup("a").name == "alpha"
    assert registry.lookup("hello") is None
    assert not list(install_dir.glob("*.py"))


def test_install_name_mismatch(monkeypatch, plugin_dir, install_dir):
    monkeypatch.setattr(
        "bot.registry.requests.get",
        lambda url, timeout: FakeResponse(plugin_source("OtherCommand", "other"))
    )
    registry = _install_registry(plugin_dir, install_dir)

    with pytest.raises(CommandInstallError):
        registry.install("hello", "https://raw.githubusercontent.com/u/r/main/hello.py")
    assert not list(install_dir.glob("*.py"))


def test_static_source_cannot_install():
    registry = CommandRegistry(StaticCommandSource(ALL_COMMANDS), allowed_install_hosts=ALLOWED)
    registry.load()
    with pytest.raises(CommandInstallError):
        registry.install("hello", "https://raw.githubusercontent.com/u/r/main/hello.py")
