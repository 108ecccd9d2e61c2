# -*- coding: utf-8 -*-
"""
測試公共夾具：記錄型發送通道、內存運行時
"""
import itertools
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from bot.commands import ALL_COMMANDS
from bot.models import SendResult, WebhookEvent
from bot.platforms.base import BotTransport
from bot.registry import StaticCommandSource
from bot.runtime import create_runtime
from config import Config
from storage import MemoryUserStore

PAGE_ID = "PAGE_1"
ADMIN_ID = "ADMIN_1"


class FakeTransport(BotTransport):
    """
    記錄所有出站請求的發送通道

    每次成功發送分配遞增的 message_id；發往 fail_recipients 的消息發送失敗。
    """

    def __init__(self, profiles: Optional[Dict[str, Dict[str, Any]]] = None):
        self.sent: List[tuple] = []
        self.uploads: List[tuple] = []
        self.profiles = profiles or {}
        self.fail_recipients = set()
        self.last_message_id: Optional[str] = None
        self._ids = itertools.count(1)

    def send(self, recipient_id: str, payload: Dict[str, Any]) -> Optional[SendResult]:
        self.sent.append((recipient_id, payload))
        if recipient_id in self.fail_recipients:
            return None
        if 'sender_action' in payload:
            return SendResult(recipient_id=recipient_id)
        self.last_message_id = f"m_{next(self._ids)}"
        return SendResult(message_id=self.last_message_id, recipient_id=recipient_id)

    def upload_attachment(self, recipient_id, attachment_type, data, filename="file"):
        self.uploads.append((recipient_id, attachment_type, data))
        return SendResult(message_id=f"m_{next(self._ids)}", recipient_id=recipient_id)

    def fetch_profile(self, psid: str) -> Optional[Dict[str, Any]]:
        profile = self.profiles.get(psid)
        return dict(profile) if profile else None

    # --- 斷言輔助 ---

    def texts(self, recipient_id: Optional[str] = None) -> List[str]:
        return [
            payload['text'] for rid, payload in self.sent
            if 'text' in payload and (recipient_id is None or rid == recipient_id)
        ]

    def actions(self, recipient_id: Optional[str] = None) -> List[str]:
        return [
            payload['sender_action'] for rid, payload in self.sent
            if 'sender_action' in payload and (recipient_id is None or rid == recipient_id)
        ]

    def attachments(self) -> List[Dict[str, Any]]:
        return [payload['attachment'] for _, payload in self.sent if 'attachment' in payload]


def make_config(**overrides) -> Config:
    values = dict(
        page_access_token="token",
        verify_token="verify-me",
        app_secret=None,
        page_id=PAGE_ID,
        bot_admin_users=[ADMIN_ID],
        bot_command_source="static",
        user_db_type="memory",
        moments_enabled=False,
        ai_api_base="",
    )
    values.update(overrides)
    return Config(**values)


def text_event(sender: str, text: str, reply_to: Optional[str] = None, mid: str = "in_1") -> WebhookEvent:
    message: Dict[str, Any] = {"mid": mid, "text": text}
    if reply_to:
        message["reply_to"] = {"mid": reply_to}
    return WebhookEvent.from_dict({
        "sender": {"id": sender},
        "recipient": {"id": PAGE_ID},
        "timestamp": 1700000000000,
        "message": message,
    })


def postback_event(sender: str, payload: str) -> WebhookEvent:
    return WebhookEvent.from_dict({
        "sender": {"id": sender},
        "recipient": {"id": PAGE_ID},
        "postback": {"title": "button", "payload": payload},
    })


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def transport():
    return FakeTransport(profiles={
        "U1": {"id": "U1", "first_name": "Ada", "last_name": "Lovelace", "locale": "en_GB"},
    })


@pytest.fixture
def runtime(config, transport):
    rt = create_runtime(
        config,
        transport=transport,
        users=MemoryUserStore(),
        source=StaticCommandSource(ALL_COMMANDS),
    )
    rt.registry.load()
    return rt
