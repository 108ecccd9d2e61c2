# -*- coding: utf-8 -*-
"""
===================================
定時調度模塊
===================================

職責：
1. 按進程默認時區定時觸發問候推送（早安 / 晚安 / 隨機）
2. 支持阻塞運行（獨立進程）和後臺線程運行（Web 服務內）
3. 優雅處理信號，確保可靠退出

依賴：
- schedule: 輕量級定時任務庫（時區支持需要 pytz）
"""

import logging
import signal
import threading
from datetime import datetime
from typing import Callable, List, Optional, TYPE_CHECKING

import schedule

if TYPE_CHECKING:
    from bot.moments import MomentSender
    from bot.runtime import BotRuntime

logger = logging.getLogger(__name__)


class GracefulShutdown:
    """
    優雅退出處理器

    捕獲 SIGTERM/SIGINT 信號，確保任務完成後再退出
    """

    def __init__(self):
        self.shutdown_requested = False
        self._lock = threading.Lock()

        # 註冊信號處理器
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

    def _signal_handler(self, signum, frame):
        """信號處理函數"""
        with self._lock:
            if not self.shutdown_requested:
                logger.info(f"收到退出信號 ({signum})，等待當前任務完成...")
                self.shutdown_requested = True

    @property
    def should_shutdown(self) -> bool:
        """檢查是否應該退出"""
        with self._lock:
            return self.shutdown_requested


def random_slots(interval_hours: int) -> List[str]:
    """隨機問候的整點觸發時間，如 3 -> ["00:00", "03:00", ..., "21:00"]"""
    return [f"{hour:02d}:00" for hour in range(0, 24, interval_hours)]


class MomentScheduler:
    """
    問候推送調度器

    基於 schedule 庫實現，每個實例持有獨立的 schedule.Scheduler，
    不使用模塊級默認調度器。
    """

    def __init__(
        self,
        sender: 'MomentSender',
        timezone: str = "Asia/Dhaka",
        morning_time: str = "08:00",
        night_time: str = "22:00",
        random_interval_hours: int = 3,
        poll_interval: float = 30.0
    ):
        """
        Args:
            sender: 問候推送器
            timezone: 觸發時間所在時區
            morning_time: 早安批次時間 "HH:MM"
            night_time: 晚安批次時間 "HH:MM"
            random_interval_hours: 隨機批次間隔（整點觸發）
            poll_interval: 主循環檢查間隔（秒）
        """
        self.sender = sender
        self.timezone = timezone
        self.morning_time = morning_time
        self.night_time = night_time
        self.random_interval_hours = random_interval_hours
        self.poll_interval = poll_interval

        self.schedule = schedule.Scheduler()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._configured = False

    def setup(self) -> None:
        """註冊全部定時任務"""
        if self._configured:
            return

        self.schedule.every().day.at(self.morning_time, self.timezone).do(
            self._safe_run_task, "morning", self.sender.run_morning
        ).tag("moments", "morning")

        self.schedule.every().day.at(self.night_time, self.timezone).do(
            self._safe_run_task, "night", self.sender.run_night
        ).tag("moments", "night")

        for slot in random_slots(self.random_interval_hours):
            self.schedule.every().day.at(slot, self.timezone).do(
                self._safe_run_task, "random", self.sender.run_random
            ).tag("moments", "random")

        self._configured = True
        logger.info(
            f"[Moments] 已設置定時推送: 早安 {self.morning_time}, 晚安 {self.night_time}, "
            f"隨機每 {self.random_interval_hours} 小時, 時區 {self.timezone}"
        )

    def _safe_run_task(self, label: str, task: Callable) -> None:
        """安全執行任務（帶異常捕獲）"""
        try:
            logger.info("=" * 50)
            logger.info(f"定時任務開始執行: {label} - {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
            logger.info("=" * 50)

            task()

            logger.info(f"定時任務執行完成: {label} - {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")

        except Exception as e:
            logger.exception(f"定時任務執行失敗: {label}: {e}")

    def run(self, install_signal_handlers: bool = True) -> None:
        """
        運行調度器主循環

        阻塞運行，直到收到退出信號或調用 stop()
        """
        self.setup()
        shutdown_handler = GracefulShutdown() if install_signal_handlers else None

        logger.info("調度器開始運行...")
        logger.info(f"下次執行時間: {self._get_next_run_time()}")

        last_heartbeat_hour = None
        while not self._stop_event.is_set():
            if shutdown_handler is not None and shutdown_handler.should_shutdown:
                break

            self.schedule.run_pending()

            # 每小時打印一次心跳
            now = datetime.now()
            if now.minute == 0 and now.hour != last_heartbeat_hour:
                last_heartbeat_hour = now.hour
                logger.info(f"調度器運行中... 下次執行: {self._get_next_run_time()}")

            self._stop_event.wait(self.poll_interval)

        logger.info("調度器已停止")

    def start_background(self) -> threading.Thread:
        """在守護線程中運行（不註冊信號處理器）"""
        if self._thread is not None and self._thread.is_alive():
            return self._thread

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self.run,
            kwargs={"install_signal_handlers": False},
            name="moment-scheduler",
            daemon=True,
        )
        self._thread.start()
        return self._thread

    def _get_next_run_time(self) -> str:
        """獲取下次執行時間"""
        next_run = self.schedule.next_run
        if next_run is not None:
            return next_run.strftime('%Y-%m-%d %H:%M:%S')
        return "未設置"

    def stop(self, timeout: float = 5.0) -> None:
        """停止調度器"""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None



def create_moment_scheduler(runtime: 'BotRuntime') -> MomentScheduler:
    """按運行時配置創建問候調度器"""
    config = runtime.config
    return MomentScheduler(
        sender=runtime.create_moment_sender(),
        timezone=config.timezone,
        morning_time=config.moment_morning_time,
        night_time=config.moment_night_time,
        random_interval_hours=config.moment_random_interval_hours,
    )
