# -*- coding: utf-8 -*-
"""
===================================
平臺適配器基類
===================================

定義平臺適配器和出站發送通道的抽象基類，各平臺必須繼承此類。

- BotPlatform: 入站（驗證請求、解析事件）
- BotTransport: 出站（發送消息、輸入狀態、附件、用戶資料）
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

from bot.models import SendResult, WebhookEvent, WebhookResponse


class BotPlatform(ABC):
    """
    平臺適配器抽象基類

    負責：
    1. 驗證 Webhook 請求籤名
    2. 處理訂閱驗證請求
    3. 將平臺推送解析為統一的 WebhookEvent 列表

    使用示例：
        class MyPlatform(BotPlatform):
            @property
            def platform_name(self) -> str:
                return "myplatform"

            def verify_request(self, headers, body) -> bool:
                return True

            def handle_challenge(self, query) -> WebhookResponse:
                return WebhookResponse.challenge(query["challenge"])

            def parse_events(self, data) -> List[WebhookEvent]:
                return [WebhookEvent.from_dict(data)]
    """

    @property
    @abstractmethod
    def platform_name(self) -> str:
        """平臺標識名稱，用於日誌標識"""
        pass

    @abstractmethod
    def verify_request(self, headers: Dict[str, str], body: bytes) -> bool:
        """
        驗證請求籤名

        Args:
            headers: HTTP 請求頭（鍵為小寫）
            body: 請求體原始字節

        Returns:
            簽名是否有效
        """
        pass

    @abstractmethod
    def handle_challenge(self, query: Dict[str, str]) -> WebhookResponse:
        """
        處理平臺訂閱驗證請求（GET）

        Args:
            query: URL 查詢參數

        Returns:
            驗證通過返回 challenge 響應，否則返回錯誤響應
        """
        pass

    @abstractmethod
    def parse_events(self, data: Dict[str, Any]) -> List[WebhookEvent]:
        """
        解析平臺推送為事件列表

        一次推送可能包含多個事件，不屬於本平臺的推送返回空列表。
        """
        pass

    def handle_webhook(
        self,
        headers: Dict[str, str],
        body: bytes,
        data: Dict[str, Any]
    ) -> Tuple[List[WebhookEvent], Optional[WebhookResponse]]:
        """
        處理 Webhook 推送

        這是主入口方法，協調驗證、解析等流程。

        Returns:
            (events, error_response) 元組
            - 驗證失敗：([], 403 響應)
            - 正常推送：(事件列表, None)，響應由調用方生成
        """
        if not self.verify_request(headers, body):
            return [], WebhookResponse.error("Invalid signature", 403)

        return self.parse_events(data), None


class BotTransport(ABC):
    """
    出站發送通道抽象基類

    所有發送方法在傳輸失敗時記錄日誌並返回 None，不拋出異常。
    """

    @abstractmethod
    def send(self, recipient_id: str, payload: Dict[str, Any]) -> Optional[SendResult]:
        """
        發送原始請求體

        Args:
            recipient_id: 接收者 ID
            payload: {"text": ...} / {"attachment": ...} / {"sender_action": ...}

        Returns:
            SendResult，失敗返回 None
        """
        pass

    @abstractmethod
    def upload_attachment(
        self,
        recipient_id: str,
        attachment_type: str,
        data: bytes,
        filename: str = "file"
    ) -> Optional[SendResult]:
        """以 multipart 方式上傳並發送二進制附件"""
        pass

    @abstractmethod
    def fetch_profile(self, psid: str) -> Optional[Dict[str, Any]]:
        """
        獲取用戶資料

        Returns:
            資料字典，失敗返回 None
        """
        pass

    def send_text(self, recipient_id: str, text: str, **options: Any) -> Optional[SendResult]:
        """發送文本，options 合併到 message 對象（如 quick_replies）"""
        message = {"text": text}
        message.update(options)
        return self.send(recipient_id, message)

    def send_action(self, recipient_id: str, action: str) -> Optional[SendResult]:
        """發送 sender_action：mark_seen / typing_on / typing_off"""
        return self.send(recipient_id, {"sender_action": action})

    def mark_seen(self, recipient_id: str) -> Optional[SendResult]:
        return self.send_action(recipient_id, "mark_seen")

    def typing(self, recipient_id: str, on: bool = True) -> Optional[SendResult]:
        return self.send_action(recipient_id, "typing_on" if on else "typing_off")

    def send_attachment(self, recipient_id: str, attachment_type: str, data: Any) -> Optional[SendResult]:
        """
        發送附件

        Args:
            attachment_type: image / audio / video / file / template
            data: URL 字符串、bytes、payload 字典或它們的列表

        Returns:
            最後一個附件的發送結果；data 為列表時任一失敗即返回 None
        """
        if isinstance(data, (list, tuple)):
            result = None
            for item in data:
                result = self.send_attachment(recipient_id, attachment_type, item)
                if result is None:
                    return None
            return result

        if isinstance(data, (bytes, bytearray)):
            return self.upload_attachment(recipient_id, attachment_type, bytes(data))

        if isinstance(data, dict):
            payload = data
        else:
            payload = {"url": str(data), "is_reusable": True}

        return self.send(recipient_id, {"attachment": {"type": attachment_type, "payload": payload}})
