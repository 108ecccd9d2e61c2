# -*- coding: utf-8 -*-
"""
測試內置命令
"""
import pytest
import requests

from bot.commands.ai import parse_ai_args
from bot.commands.meme import FETCH_FAILED, build_meme_card, fetch_meme
from bot.commands.timezone import fuzzy_matches, gmt_offset_zone
from bot.commands.userinfo import time_ago
from bot.registry import StaticCommandSource
from bot.commands import ALL_COMMANDS
from bot.runtime import create_runtime
from storage import MemoryUserStore

from conftest import ADMIN_ID, FakeTransport, make_config, postback_event, text_event


def _last_text(transport, sender="U1"):
    return transport.texts(sender)[-1]


# === help ===

def test_help_lists_commands_without_admin_ones(runtime, transport):
    runtime.dispatcher.dispatch(text_event("U1", "!help"))
    text = _last_text(transport)

    assert text.startswith("Available commands:")
    assert "• help (h) - List all commands or get help for a specific command." in text
    assert "   Usage: !help [command]" in text
    assert "• cmd" not in text


def test_help_shows_admin_commands_to_admins(runtime, transport):
    runtime.dispatcher.dispatch(text_event(ADMIN_ID, "!help"))
    assert "• cmd (admin) - Manage bot commands (admin only)." in _last_text(transport, ADMIN_ID)


def test_help_for_single_command_by_alias(runtime, transport):
    runtime.dispatcher.dispatch(text_event("U1", "!help tz"))
    text = _last_text(transport)

    assert text.startswith("Command: timezone\nAliases: tz\n")
    assert "Usage: !timezone <timezone_name_or_gmt_offset>" in text
    assert "!timezone GMT+6" in text


def test_help_unknown_command(runtime, transport):
    runtime.dispatcher.dispatch(text_event("U1", "!help nope"))
    assert _last_text(transport) == "No such command: nope"


def test_help_uses_custom_prefix(runtime, transport):
    runtime.users.save_user("U1", {"custom": {"prefix": ">>"}})
    runtime.dispatcher.dispatch(text_event("U1", ">>help ping"))
    assert "Usage: >>ping" in _last_text(transport)


# === prefix ===

def test_prefix_show_default(runtime, transport):
    runtime.dispatcher.dispatch(text_event("U1", "!prefix"))
    assert _last_text(transport) == "You are using the default prefix."


def test_prefix_set_and_use(runtime, transport):
    runtime.dispatcher.dispatch(text_event("U1", "!prefix ?"))
    assert _last_text(transport) == "Your custom prefix is now set to: ?"
    assert runtime.users.get_user("U1")["custom"]["prefix"] == "?"

    runtime.dispatcher.dispatch(text_event("U1", "?prefix"))
    assert _last_text(transport) == "Your current prefix is: ?"


def test_prefix_too_long(runtime, transport):
    runtime.dispatcher.dispatch(text_event("U1", "!prefix abcdef"))
    assert _last_text(transport) == "Prefix must be a string of up to 5 characters."
    assert "prefix" not in (runtime.users.get_user("U1").get("custom") or {})


# === timezone ===

@pytest.mark.parametrize("text, zone", [
    ("GMT+6", "Etc/GMT-6"),
    ("utc-5", "Etc/GMT+5"),
    ("GMT+0", "Etc/GMT"),
    ("GMT+15", None),
    ("Dhaka", None),
])
def test_gmt_offset_zone(text, zone):
    assert gmt_offset_zone(text) == zone


def test_fuzzy_matches():
    names = ["Asia/Dhaka", "Asia/Tokyo", "America/New_York", "Europe/London"]
    assert fuzzy_matches("tokyo", names) == ["Asia/Tokyo"]
    assert fuzzy_matches("asia", names) == ["Asia/Dhaka", "Asia/Tokyo"]
    assert fuzzy_matches("york", names) == ["America/New_York"]


@pytest.mark.parametrize("args, zone", [
    ("Asia/Tokyo", "Asia/Tokyo"),
    ("New York", "America/New_York"),
    ("pst", "America/Los_Angeles"),
    ("GMT+6", "Etc/GMT-6"),
])
def test_timezone_is_saved(runtime, transport, args, zone):
    runtime.dispatcher.dispatch(text_event("U1", f"!timezone {args}"))

    assert runtime.users.get_user("U1")["custom"]["timezone"] == zone
    assert _last_text(transport).startswith(f"Your timezone has been set to {zone}")


def test_timezone_unknown(runtime, transport):
    runtime.dispatcher.dispatch(text_event("U1", "!tz qqqqzzzz"))

    assert _last_text(transport).startswith("I couldn't recognize 'qqqqzzzz'")
    assert "timezone" not in (runtime.users.get_user("U1").get("custom") or {})


def test_timezone_without_args(runtime, transport):
    runtime.dispatcher.dispatch(text_event("U1", "!timezone"))
    assert _last_text(transport).startswith("Please provide a timezone.")


def test_timezone_too_broad(runtime, transport):
    runtime.dispatcher.dispatch(text_event("U1", "!timezone america"))
    assert "too broad" in _last_text(transport)


# === ping ===

def test_ping_reports_latency(runtime, transport):
    runtime.latency.record("U1", 120.0)
    runtime.latency.record("U1", 80.0)
    runtime.dispatcher.dispatch(text_event("U1", "!p"))

    assert _last_text(transport) == "🏓 Pong! Last latency: 80ms | Average: 100.00ms"


# === userinfo ===

def test_time_ago():
    assert time_ago(1000, 1030) == "a few seconds ago"
    assert time_ago(1000, 1000 + 120) == "2 minutes ago"
    assert time_ago(1000, 1000 + 3600) == "1 hour ago"
    assert time_ago(1000, 1000 + 3 * 86400) == "3 days ago"


def test_userinfo(runtime, transport):
    runtime.dispatcher.dispatch(text_event("U1", "!me"))
    text = _last_text(transport)

    assert "👤 Name: Ada Lovelace" in text
    assert "🆔 ID: U1" in text
    assert "🌐 Locale: en_GB" in text
    assert "🕓 Last Active: a few seconds ago" in text


def test_userinfo_sends_profile_picture():
    transport = FakeTransport(profiles={"U1": {"first_name": "A", "profile_pic": "https://pic/u1.jpg"}})
    rt = create_runtime(make_config(), transport=transport, users=MemoryUserStore(),
                        source=StaticCommandSource(ALL_COMMANDS))
    rt.registry.load()
    rt.dispatcher.dispatch(text_event("U1", "!userinfo"))

    assert transport.attachments()[-1] == {
        "type": "image",
        "payload": {"url": "https://pic/u1.jpg", "is_reusable": True},
    }


def test_userinfo_unknown_user(runtime, transport):
    runtime.dispatcher.dispatch(text_event("U9", "!userinfo"))
    assert _last_text(transport, "U9") == "User info not found."


# === cmd ===

def test_cmd_usage(runtime, transport):
    runtime.dispatcher.dispatch(text_event(ADMIN_ID, "!cmd"))
    assert _last_text(transport, ADMIN_ID) == "Usage: !cmd install <name> <url> | reload <name> | unload <name>"


def test_cmd_unload_then_reload(runtime, transport):
    runtime.dispatcher.dispatch(text_event(ADMIN_ID, "!cmd unload ping"))
    assert _last_text(transport, ADMIN_ID) == "🗑️ Command 'ping' unloaded from memory."

    runtime.dispatcher.dispatch(text_event(ADMIN_ID, "!ping"))
    assert _last_text(transport, ADMIN_ID).startswith("Command ping not found")

    runtime.dispatcher.dispatch(text_event(ADMIN_ID, "!cmd reload ping"))
    assert _last_text(transport, ADMIN_ID) == "♻️ Command 'ping' reloaded."
    assert "ping" in runtime.registry


def test_cmd_unknown_targets(runtime, transport):
    runtime.dispatcher.dispatch(text_event(ADMIN_ID, "!cmd unload ghost"))
    assert _last_text(transport, ADMIN_ID) == "❌ Command 'ghost' not found."

    runtime.dispatcher.dispatch(text_event(ADMIN_ID, "!cmd reload ghost"))
    assert _last_text(transport, ADMIN_ID) == "❌ Command 'ghost' not found."


def test_cmd_install_failure_is_reported(runtime, transport):
    runtime.dispatcher.dispatch(
        text_event(ADMIN_ID, "!cmd install hello https://raw.githubusercontent.com/u/r/main/hello.py")
    )
    assert _last_text(transport, ADMIN_ID).startswith("❌ Failed to install command:")
    assert "hello" not in runtime.registry


# === ai ===

class FakeJsonResponse:
    def __init__(self, data, status_code=200):
        self._data = data
        self.status_code = status_code

    def json(self):
        return self._data


def test_parse_ai_args():
    assert parse_ai_args(["hello", "there"]) == ("hello there", None, False)
    assert parse_ai_args(["--img", "https://x/y.png", "what", "is", "this"]) == ("what is this", "https://x/y.png", False)
    assert parse_ai_args(["--reset"]) == ("", None, True)


def test_ai_not_configured(runtime, transport):
    runtime.dispatcher.dispatch(text_event("U1", "!ai hello"))
    assert _last_text(transport) == "AI chat is not configured on this bot."


def test_ai_conversation_continues_on_reply(monkeypatch, transport):
    posts = []

    def fake_get(url, timeout):
        return FakeJsonResponse({"status": "ready"})

    def fake_post(url, json, timeout):
        posts.append((url, json))
        return FakeJsonResponse({"message": f"answer {len(posts)}", "conversation_id": "c1"})

    monkeypatch.setattr("bot.commands.ai.requests.get", fake_get)
    monkeypatch.setattr("bot.commands.ai.requests.post", fake_post)

    rt = create_runtime(make_config(ai_api_base="https://ai.example"), transport=transport,
                        users=MemoryUserStore(), source=StaticCommandSource(ALL_COMMANDS))
    rt.registry.load()

    rt.dispatcher.dispatch(text_event("U1", "!ai hello"))
    assert _last_text(transport) == "answer 1"
    assert posts[0] == ("https://ai.example/chat", {"prompt": "hello", "image": None})
    assert rt.users.get_user("U1")["custom"]["ai_conversation_id"] == "c1"
    assert len(rt.correlations) == 1

    rt.dispatcher.dispatch(text_event("U1", "and more", reply_to=transport.last_message_id))

    assert posts[1] == ("https://ai.example/chat/c1", {"prompt": "and more", "image": None})
    assert _last_text(transport) == "answer 2"


def test_ai_unreachable(monkeypatch, transport):
    def fake_get(url, timeout):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr("bot.commands.ai.requests.get", fake_get)
    rt = create_runtime(make_config(ai_api_base="https://ai.example"), transport=transport,
                        users=MemoryUserStore(), source=StaticCommandSource(ALL_COMMANDS))
    rt.registry.load()

    rt.dispatcher.dispatch(text_event("U1", "!ai hello"))
    assert _last_text(transport) == "AI API is not reachable. Please try again later."


@pytest.mark.parametrize("health, answer, expected", [
    (["ready"], None, "AI is not ready. Please try again later."),
    ({"status": "ready"}, ["unexpected"], "Failed to contact AI. Please try again later."),
])
def test_ai_non_object_responses(monkeypatch, transport, health, answer, expected):
    monkeypatch.setattr("bot.commands.ai.requests.get", lambda url, timeout: FakeJsonResponse(health))
    monkeypatch.setattr("bot.commands.ai.requests.post", lambda url, json, timeout: FakeJsonResponse(answer))
    rt = create_runtime(make_config(ai_api_base="https://ai.example"), transport=transport,
                        users=MemoryUserStore(), source=StaticCommandSource(ALL_COMMANDS))
    rt.registry.load()

    rt.dispatcher.dispatch(text_event("U1", "!ai hello"))
    assert _last_text(transport) == expected


# === meme ===

MEME = {
    "title": "A funny meme",
    "url": "https://i.redd.it/abc.png",
    "post_link": "https://redd.it/abc",
    "subreddit": "memes",
    "author": "someone",
}


def test_build_meme_card():
    card = build_meme_card(MEME)
    element = card["elements"][0]

    assert element["image_url"] == MEME["url"]
    assert element["subtitle"] == "r/memes • by u/someone"
    buttons = element["buttons"]
    assert buttons[0]["payload"] == "meme:next"
    assert buttons[2]["payload"] == "meme:image|A%20funny%20meme|https%3A%2F%2Fi.redd.it%2Fabc.png"


def test_meme_command_sends_card(monkeypatch, runtime, transport):
    monkeypatch.setattr("bot.commands.meme.fetch_meme", lambda url, timeout: dict(MEME))
    runtime.dispatcher.dispatch(text_event("U1", "!meme"))

    attachment = transport.attachments()[-1]
    assert attachment["type"] == "template"
    assert attachment["payload"]["template_type"] == "generic"


def test_meme_fetch_failure(monkeypatch, runtime, transport):
    def fake_fetch(url, timeout):
        raise requests.ConnectionError("down")

    monkeypatch.setattr("bot.commands.meme.fetch_meme", fake_fetch)
    runtime.dispatcher.dispatch(text_event("U1", "!meme"))
    assert _last_text(transport) == FETCH_FAILED


def test_meme_postbacks(monkeypatch, runtime, transport):
    monkeypatch.setattr("bot.commands.meme.fetch_meme", lambda url, timeout: dict(MEME))

    runtime.dispatcher.dispatch(postback_event("U1", "meme:image|A%20funny%20meme|https%3A%2F%2Fi.redd.it%2Fabc.png"))
    assert _last_text(transport) == "A funny meme"
    assert transport.attachments()[-1]["payload"]["url"] == MEME["url"]

    runtime.dispatcher.dispatch(postback_event("U1", "meme:next"))
    assert transport.attachments()[-1]["type"] == "template"


def test_meme_postback_without_action_sends_next(monkeypatch, runtime, transport):
    monkeypatch.setattr("bot.commands.meme.fetch_meme", lambda url, timeout: dict(MEME))

    runtime.dispatcher.dispatch(postback_event("U1", "meme"))

    assert transport.attachments()[-1]["payload"]["template_type"] == "generic"


def test_fetch_meme_rejects_non_object_body(monkeypatch):
    class ListResponse:
        def raise_for_status(self):
            pass

        def json(self):
            return ["not", "a", "meme"]

    monkeypatch.setattr("bot.commands.meme.requests.get", lambda url, timeout: ListResponse())
    with pytest.raises(ValueError):
        fetch_meme("https://meme.example/gimme")
