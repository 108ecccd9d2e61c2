# -*- coding: utf-8 -*-
"""
測試 Messenger 適配器與 Send API 客戶端
"""
import hashlib
import hmac
import json

import requests

from bot.platforms.messenger import MessengerClient, MessengerPlatform


class FakeResponse:
    def __init__(self, status_code=200, data=None, text=""):
        self.status_code = status_code
        self._data = data
        self.text = text or json.dumps(data or {})

    def json(self):
        if self._data is None:
            raise ValueError("no json")
        return self._data


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response or FakeResponse(data={"recipient_id": "U1", "message_id": "mid.1"})
        self.error = error
        self.calls = []

    def post(self, url, **kwargs):
        self.calls.append(("POST", url, kwargs))
        if self.error:
            raise self.error
        return self.response

    def get(self, url, **kwargs):
        self.calls.append(("GET", url, kwargs))
        if self.error:
            raise self.error
        return self.response


# === 入站 ===

def test_parse_events_flattens_entries():
    platform = MessengerPlatform(verify_token="t")
    events = platform.parse_events({
        "object": "page",
        "entry": [
            {"messaging": [{"sender": {"id": "U1"}, "recipient": {"id": "P"}, "message": {"text": "a"}}]},
            {"messaging": [
                {"sender": {"id": "U2"}, "recipient": {"id": "P"}, "postback": {"payload": "X"}},
                {"sender": {"id": "U3"}, "recipient": {"id": "P"}, "read": {"watermark": 1}},
            ]},
        ],
    })

    assert [e.sender_id for e in events] == ["U1", "U2", "U3"]
    assert events[0].text == "a"
    assert events[1].postback_payload == "X"
    assert events[2].is_read


def test_event_accessors():
    platform = MessengerPlatform()
    event = platform.parse_events({"object": "page", "entry": [{"messaging": [{
        "sender": {"id": "U1"},
        "recipient": {"id": "P"},
        "message": {"mid": "in", "text": "hi", "reply_to": {"mid": "mid.7"}},
    }]}]})[0]

    assert event.reply_to_mid == "mid.7"
    assert event.has_content
    assert not event.is_echo


def test_signature_check_skipped_without_secret():
    assert MessengerPlatform().verify_request({}, b"{}")


def test_signature_check():
    body = b'{"object":"page"}'
    platform = MessengerPlatform(app_secret="s3cret")
    good = "sha256=" + hmac.new(b"s3cret", body, hashlib.sha256).hexdigest()

    assert platform.verify_request({"x-hub-signature-256": good}, body)
    assert not platform.verify_request({"x-hub-signature-256": good}, body + b" ")
    assert not platform.verify_request({}, body)


# === 出站 ===

def test_send_text_posts_message():
    session = FakeSession()
    client = MessengerClient("TOKEN", api_version="v19.0", timeout=5, session=session)

    result = client.send_text("U1", "hello", quick_replies=[{"content_type": "text", "title": "A", "payload": "A"}])

    assert result.message_id == "mid.1"
    method, url, kwargs = session.calls[0]
    assert url == "https://graph.facebook.com/v19.0/me/messages"
    assert kwargs["params"] == {"access_token": "TOKEN"}
    assert kwargs["timeout"] == 5
    assert kwargs["json"] == {
        "recipient": {"id": "U1"},
        "message": {"text": "hello", "quick_replies": [{"content_type": "text", "title": "A", "payload": "A"}]},
        "messaging_type": "RESPONSE",
    }


def test_sender_action_body():
    session = FakeSession(response=FakeResponse(data={"recipient_id": "U1"}))
    client = MessengerClient("TOKEN", session=session)

    result = client.typing("U1", True)

    assert result is not None
    assert result.message_id is None
    assert session.calls[0][2]["json"] == {"recipient": {"id": "U1"}, "sender_action": "typing_on"}


def test_send_failure_returns_none():
    client = MessengerClient("TOKEN", session=FakeSession(response=FakeResponse(status_code=400, data={"error": {}})))
    assert client.send_text("U1", "hello") is None


def test_network_error_returns_none():
    client = MessengerClient("TOKEN", session=FakeSession(error=requests.ConnectionError("down")))
    assert client.send_text("U1", "hello") is None
    assert client.fetch_profile("U1") is None


def test_missing_token_sends_nothing():
    session = FakeSession()
    client = MessengerClient(None, session=session)

    assert client.send_text("U1", "hello") is None
    assert client.fetch_profile("U1") is None
    assert session.calls == []


def test_attachment_variants():
    session = FakeSession()
    client = MessengerClient("TOKEN", session=session)

    client.send_attachment("U1", "image", "https://x/a.png")
    assert session.calls[-1][2]["json"]["message"] == {
        "attachment": {"type": "image", "payload": {"url": "https://x/a.png", "is_reusable": True}}
    }

    client.send_attachment("U1", "template", {"template_type": "button", "text": "t", "buttons": []})
    assert session.calls[-1][2]["json"]["message"]["attachment"]["payload"]["template_type"] == "button"

    client.send_attachment("U1", "image", ["https://x/1.png", "https://x/2.png"])
    assert len(session.calls) == 4

    client.send_attachment("U1", "file", b"binary-data")
    _, _, kwargs = session.calls[-1]
    assert kwargs["files"]["filedata"] == ("file", b"binary-data")
    assert json.loads(kwargs["data"]["recipient"]) == {"id": "U1"}


def test_fetch_profile():
    profile = {"id": "U1", "first_name": "Ada", "last_name": "Lovelace"}
    session = FakeSession(response=FakeResponse(data=profile))
    client = MessengerClient("TOKEN", session=session)

    assert client.fetch_profile("U1") == profile
    method, url, kwargs = session.calls[0]
    assert method == "GET"
    assert url == "https://graph.facebook.com/v19.0/U1"
    assert "first_name" in kwargs["params"]["fields"]


def test_non_object_json_bodies_are_tolerated():
    session = FakeSession(response=FakeResponse(data=["unexpected"]))
    client = MessengerClient("TOKEN", session=session)

    result = client.send_text("U1", "hello")
    assert result is not None
    assert result.message_id is None
    assert result.recipient_id == "U1"

    assert client.fetch_profile("U1") is None
