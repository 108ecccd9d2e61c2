# -*- coding: utf-8 -*-
"""
===================================
定時問候推送
===================================

按用戶本地時間選擇問候語並直接通過發送通道推送，
不經過分發器，也不登記續接。

時段劃分（用戶本地小時）：
- morning: 05:00 - 11:59
- night:   20:00 - 04:59
- random:  其餘時間

random 批次只發給本地時間在 09:00 - 19:59 的用戶。
"""

import logging
import random
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, TYPE_CHECKING
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

if TYPE_CHECKING:
    from bot.platforms.base import BotTransport
    from storage import UserStore

logger = logging.getLogger(__name__)

MORNING = "morning"
NIGHT = "night"
RANDOM = "random"

MOMENT_MESSAGES: Dict[str, List[str]] = {
    MORNING: [
        "Good morning, sunshine! ☀️ Hope you have a day as amazing as you are!",
        "Rise and shine! The world is waiting for your awesomeness. ☕",
        "A brand new day is here! Make it count. Good morning! ✨",
        "Wakey, wakey, eggs and bakey! Just kidding, but seriously, have a great morning! 😄",
        "Sending you good vibes for a productive and joyful morning! 😊",
    ],
    NIGHT: [
        "Good night, sleep tight, don't let the bed bugs bite! 😴",
        "Time to recharge. May your dreams be sweet and peaceful. 🌙",
        "Wishing you a night filled with calm and restful sleep. 🛌",
        "The stars are out, and so should you be... sleeping! Good night! ✨",
        "May your evening be relaxing and your sleep be deep. Good night!",
    ],
    RANDOM: [
        "Just popping in to say hi and wish you a fantastic day! 😊",
        "Sending good vibes and positive energy your way! ✨",
        "Hope you're having an absolutely wonderful day! Keep shining!",
        "You're doing great! Keep up the amazing work. 👍",
        "Remember to take a moment for yourself today and relax. 🧘‍♀️",
        "A little message to brighten your day! You got this! 🌟",
        "Thinking of you and sending a smile! 😄",
        "Don't forget to stay hydrated! 💧",
        "You're awesome! Just a friendly reminder. 💪",
        "Hope your day is as sweet as you are! 🍬",
    ],
}

# random 批次的活躍時段 [start, end)
RANDOM_ACTIVE_START = 9
RANDOM_ACTIVE_END = 20


def classify_hour(hour: int) -> str:
    """本地小時 -> 時段"""
    if 5 <= hour < 12:
        return MORNING
    if hour >= 20 or hour < 5:
        return NIGHT
    return RANDOM


def resolve_timezone(name: Optional[str], default: str) -> ZoneInfo:
    """
    解析時區名稱，無效時回退到默認時區

    Args:
        name: 用戶時區（IANA 名稱）
        default: 默認時區
    """
    if name:
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"[Moments] 無效時區 '{name}'，使用默認時區 {default}")
    try:
        return ZoneInfo(default)
    except (ZoneInfoNotFoundError, ValueError):
        logger.error(f"[Moments] 默認時區 '{default}' 無效，使用 UTC")
        return ZoneInfo("UTC")


@dataclass
class MomentReport:
    """單次推送批次統計"""
    label: str
    total: int = 0
    sent: int = 0
    skipped: int = 0
    failed: int = 0


class MomentSender:
    """
    問候推送器

    使用示例：
        sender = MomentSender(users, transport, default_timezone="Asia/Dhaka")
        report = sender.run_morning()
    """

    def __init__(
        self,
        users: 'UserStore',
        transport: 'BotTransport',
        default_timezone: str = "Asia/Dhaka",
        max_workers: int = 8,
        clock: Optional[Callable[[], datetime]] = None,
        rng: Optional[random.Random] = None
    ):
        """
        Args:
            users: 用戶存儲
            transport: 發送通道
            default_timezone: 用戶未設置時區時使用的時區
            max_workers: 併發發送線程數
            clock: 返回帶時區的當前時間（測試時可替換）
            rng: 隨機數生成器
        """
        self.users = users
        self.transport = transport
        self.default_timezone = default_timezone
        self.max_workers = max(1, max_workers)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._rng = rng or random.Random()

    def local_hour(self, user: Dict[str, Any]) -> Tuple[int, str]:
        """用戶本地小時和實際使用的時區名"""
        custom = user.get('custom') or {}
        tz = resolve_timezone(custom.get('timezone'), self.default_timezone)
        return self._clock().astimezone(tz).hour, tz.key

    def pick_message(self, bucket: str) -> str:
        return self._rng.choice(MOMENT_MESSAGES[bucket])

    def send_to_user(self, user: Dict[str, Any]) -> Optional[str]:
        """
        給單個用戶發送一條問候

        Returns:
            發送成功返回時段名，失敗返回 None
        """
        psid = user.get('psid')
        hour, tz_name = self.local_hour(user)
        bucket = classify_hour(hour)

        result = self.transport.send_text(psid, self.pick_message(bucket))
        if result is None:
            logger.warning(f"[Moments] 發送失敗: user={psid}")
            return None

        logger.info(f"[Moments] 已發送 '{bucket}' 問候: user={psid}, timezone={tz_name}")
        return bucket

    def sweep(
        self,
        label: str,
        hour_filter: Optional[Callable[[int], bool]] = None
    ) -> MomentReport:
        """
        遍歷全部用戶併發推送

        Args:
            label: 批次名（日誌用）
            hour_filter: 按用戶本地小時過濾，返回 False 的用戶跳過

        Returns:
            批次統計
        """
        report = MomentReport(label=label)
        users = self.users.get_all_users()
        report.total = len(users)

        targets = []
        for user in users:
            if not user.get('psid'):
                logger.warning("[Moments] 跳過無 psid 的用戶記錄")
                report.skipped += 1
                continue
            if hour_filter is not None:
                hour, _ = self.local_hour(user)
                if not hour_filter(hour):
                    report.skipped += 1
                    continue
            targets.append(user)

        logger.info(f"[Moments] 開始 {label} 推送: 用戶 {report.total}, 目標 {len(targets)}")
        if not targets:
            return report

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(targets))) as executor:
            futures = {executor.submit(self.send_to_user, user): user for user in targets}
            for future in as_completed(futures):
                psid = futures[future].get('psid')
                try:
                    if future.result() is not None:
                        report.sent += 1
                    else:
                        report.failed += 1
                except Exception as e:
                    logger.error(f"[Moments] 推送異常: user={psid}: {e}")
                    report.failed += 1

        logger.info(
            f"[Moments] {label} 推送完成: 成功 {report.sent}, 失敗 {report.failed}, 跳過 {report.skipped}"
        )
        return report

    def run_morning(self) -> MomentReport:
        return self.sweep(MORNING)

    def run_night(self) -> MomentReport:
        return self.sweep(NIGHT)

    def run_random(self) -> MomentReport:
        """只推送給本地時間處於活躍時段的用戶"""
        return self.sweep(
            RANDOM,
            hour_filter=lambda hour: RANDOM_ACTIVE_START <= hour < RANDOM_ACTIVE_END
        )

    def run(self, label: str) -> MomentReport:
        """按批次名運行"""
        runners = {
            MORNING: self.run_morning,
            NIGHT: self.run_night,
            RANDOM: self.run_random,
        }
        if label not in runners:
            raise ValueError(f"Unknown moment batch: {label}")
        return runners[label]()
