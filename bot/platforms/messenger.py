# -*- coding: utf-8 -*-
"""
===================================
Messenger 平臺適配器
===================================

入站：
- GET 訂閱驗證：hub.mode=subscribe 且 hub.verify_token 匹配時原樣返回 hub.challenge
- POST 推送：{"object": "page", "entry": [{"messaging": [...]}]}
- 配置 APP_SECRET 時校驗 X-Hub-Signature-256（HMAC-SHA256）

出站（Graph API Send API）：
- POST /{version}/me/messages?access_token=...
- 二進制附件走 multipart 上傳
- GET /{version}/{psid}?fields=... 獲取用戶資料
"""

import hashlib
import hmac
import json
import logging
from typing import Any, Dict, List, Optional

import requests

from bot.models import SendResult, WebhookEvent, WebhookResponse
from bot.platforms.base import BotPlatform, BotTransport

logger = logging.getLogger(__name__)

GRAPH_API_BASE = "https://graph.facebook.com"

PROFILE_FIELDS = "first_name,last_name,profile_pic,locale,timezone,gender"

SIGNATURE_HEADER = "x-hub-signature-256"


class MessengerPlatform(BotPlatform):
    """
    Messenger 入站適配器

    Args:
        verify_token: 訂閱驗證令牌
        app_secret: 應用密鑰（為空時跳過簽名校驗）
    """

    def __init__(self, verify_token: Optional[str] = None, app_secret: Optional[str] = None):
        self._verify_token = verify_token
        self._app_secret = app_secret

    @property
    def platform_name(self) -> str:
        return "messenger"

    def verify_request(self, headers: Dict[str, str], body: bytes) -> bool:
        """
        校驗 X-Hub-Signature-256

        簽名格式：sha256=<hex(hmac_sha256(app_secret, body))>
        """
        if not self._app_secret:
            return True

        signature = headers.get(SIGNATURE_HEADER, '')
        if not signature.startswith('sha256='):
            logger.warning("[Messenger] 缺少簽名頭")
            return False

        expected = hmac.new(
            self._app_secret.encode('utf-8'),
            body,
            digestmod=hashlib.sha256
        ).hexdigest()

        if not hmac.compare_digest(signature[len('sha256='):], expected):
            logger.warning("[Messenger] 簽名驗證失敗")
            return False

        return True

    def handle_challenge(self, query: Dict[str, str]) -> WebhookResponse:
        mode = query.get('hub.mode')
        token = query.get('hub.verify_token')
        challenge = query.get('hub.challenge')

        if mode and token:
            if mode == 'subscribe' and self._verify_token and token == self._verify_token:
                logger.info("[Messenger] Webhook 驗證通過")
                return WebhookResponse.challenge(challenge or '')
            logger.warning("[Messenger] Webhook 驗證失敗: 令牌不匹配")
            return WebhookResponse.error("Verification failed", 403)

        return WebhookResponse.error("Missing verification parameters", 400)

    def parse_events(self, data: Dict[str, Any]) -> List[WebhookEvent]:
        if data.get('object') != 'page':
            logger.debug(f"[Messenger] 忽略非 page 推送: {data.get('object')}")
            return []

        events = []
        for entry in data.get('entry') or []:
            for item in entry.get('messaging') or []:
                events.append(WebhookEvent.from_dict(item))
        return events

    def handle_webhook(self, headers, body, data):
        if data.get('object') != 'page':
            return [], WebhookResponse.error("Not a page subscription", 404)
        return super().handle_webhook(headers, body, data)


class MessengerClient(BotTransport):
    """
    Send API 客戶端

    使用一個 requests.Session 複用連接；所有請求帶超時，
    失敗時記錄日誌並返回 None。
    """

    def __init__(
        self,
        page_access_token: Optional[str],
        api_version: str = "v19.0",
        timeout: float = 15.0,
        session: Optional[requests.Session] = None
    ):
        self._token = page_access_token
        self.api_version = api_version
        self.timeout = timeout
        self._session = session or requests.Session()

    @property
    def messages_url(self) -> str:
        return f"{GRAPH_API_BASE}/{self.api_version}/me/messages"

    def _build_body(self, recipient_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        if 'sender_action' in payload:
            return {"recipient": {"id": recipient_id}, "sender_action": payload['sender_action']}
        return {
            "recipient": {"id": recipient_id},
            "message": payload,
            "messaging_type": "RESPONSE",
        }

    def send(self, recipient_id: str, payload: Dict[str, Any]) -> Optional[SendResult]:
        if not self._token:
            logger.error("[Messenger] 未配置 PAGE_ACCESS_TOKEN，無法發送")
            return None

        body = self._build_body(recipient_id, payload)
        try:
            resp = self._session.post(
                self.messages_url,
                params={"access_token": self._token},
                json=body,
                timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.error(f"[Messenger] 發送請求異常: {e}")
            return None

        return self._parse_send_response(resp, recipient_id)

    def upload_attachment(
        self,
        recipient_id: str,
        attachment_type: str,
        data: bytes,
        filename: str = "file"
    ) -> Optional[SendResult]:
        if not self._token:
            logger.error("[Messenger] 未配置 PAGE_ACCESS_TOKEN，無法上傳")
            return None

        form = {
            "recipient": json.dumps({"id": recipient_id}),
            "message": json.dumps({"attachment": {"type": attachment_type, "payload": {"is_reusable": True}}}),
            "messaging_type": "RESPONSE",
        }
        try:
            resp = self._session.post(
                self.messages_url,
                params={"access_token": self._token},
                data=form,
                files={"filedata": (filename, data)},
                timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.error(f"[Messenger] 附件上傳異常: {e}")
            return None

        return self._parse_send_response(resp, recipient_id)

    def fetch_profile(self, psid: str) -> Optional[Dict[str, Any]]:
        if not self._token:
            return None

        url = f"{GRAPH_API_BASE}/{self.api_version}/{psid}"
        try:
            resp = self._session.get(
                url,
                params={"fields": PROFILE_FIELDS, "access_token": self._token},
                timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.error(f"[Messenger] 獲取用戶資料異常: {psid}: {e}")
            return None

        if resp.status_code != 200:
            logger.warning(f"[Messenger] 獲取用戶資料失敗: {psid}: HTTP {resp.status_code}")
            return None

        try:
            profile = resp.json()
        except ValueError:
            logger.warning(f"[Messenger] 用戶資料不是有效 JSON: {psid}")
            return None
        if not isinstance(profile, dict):
            logger.warning(f"[Messenger] 用戶資料格式異常: {psid}")
            return None
        return profile

    def _parse_send_response(self, resp: requests.Response, recipient_id: str) -> Optional[SendResult]:
        if resp.status_code != 200:
            logger.error(f"[Messenger] 發送失敗: recipient={recipient_id}, HTTP {resp.status_code}, {resp.text[:200]}")
            return None

        try:
            result = resp.json()
        except ValueError:
            result = {}
        if not isinstance(result, dict):
            result = {}

        return SendResult(
            message_id=result.get('message_id'),
            recipient_id=result.get('recipient_id', recipient_id),
            raw=result,
        )
