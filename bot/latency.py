# -*- coding: utf-8 -*-
"""
===================================
回覆延遲統計
===================================

按發送者記錄最近 50 次回覆延遲（毫秒），僅用於診斷（/ping）。
數據只在內存中，進程重啟即清空。
"""

import threading
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Deque, Dict, Optional

DEFAULT_WINDOW_SIZE = 50


@dataclass
class LatencyStats:
    """延遲統計快照"""
    last_ms: float
    average_ms: float
    samples: int


class LatencyTracker:
    """
    延遲採樣窗口

    每個發送者一個定長 deque，首次記錄時惰性創建。
    """

    def __init__(self, window_size: int = DEFAULT_WINDOW_SIZE):
        self.window_size = window_size
        self._samples: Dict[str, Deque[float]] = defaultdict(lambda: deque(maxlen=self.window_size))
        self._last: Dict[str, float] = {}
        self._lock = threading.Lock()

    def record(self, sender_id: str, latency_ms: float) -> None:
        """記錄一次回覆延遲"""
        with self._lock:
            self._samples[sender_id].append(latency_ms)
            self._last[sender_id] = latency_ms

    def get_stats(self, sender_id: str) -> Optional[LatencyStats]:
        """
        獲取發送者的延遲統計

        Returns:
            LatencyStats，沒有任何記錄時返回 None
        """
        with self._lock:
            samples = self._samples.get(sender_id)
            if not samples:
                return None
            return LatencyStats(
                last_ms=self._last[sender_id],
                average_ms=sum(samples) / len(samples),
                samples=len(samples),
            )

    def reset(self, sender_id: Optional[str] = None) -> None:
        """清空統計（不指定發送者則全部清空）"""
        with self._lock:
            if sender_id is None:
                self._samples.clear()
                self._last.clear()
            else:
                self._samples.pop(sender_id, None)
                self._last.pop(sender_id, None)
