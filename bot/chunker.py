# -*- coding: utf-8 -*-
"""
===================================
消息分片
===================================

將超長文本切分為平臺允許長度內的有序片段。

切分策略（貪心邊界查找）：
1. 在 [max_length - 200, max_length] 窗口內（下限不低於 1800）從後往前找換行符
2. 找不到換行則在同一窗口內找空格
3. 都找不到則在 max_length 處硬切

邊界字符保留在下一片段開頭，所有片段按順序拼接即還原原文。
"""

from typing import List

# Messenger 單條文本上限
DEFAULT_MAX_LENGTH = 2000

# 邊界查找窗口
SEARCH_WINDOW = 200
MIN_SPLIT_POSITION = 1800


def _find_boundary(text: str, char: str, upper: int, lower: int) -> int:
    """在 [lower, upper] 內從後往前查找字符，找不到返回 -1"""
    for i in range(upper, lower - 1, -1):
        if text[i] == char:
            return i
    return -1


def split_message(text: str, max_length: int = DEFAULT_MAX_LENGTH) -> List[str]:
    """
    切分消息文本

    Args:
        text: 待發送文本
        max_length: 單片最大長度

    Returns:
        有序片段列表，每片長度 <= max_length；空文本返回空列表
    """
    if max_length <= 0:
        raise ValueError("max_length must be positive")

    fragments: List[str] = []
    remaining = text or ""

    while len(remaining) > max_length:
        upper = min(max_length, len(remaining) - 1)
        lower = max(max_length - SEARCH_WINDOW, MIN_SPLIT_POSITION)

        split_at = _find_boundary(remaining, "\n", upper, lower)
        if split_at == -1:
            split_at = _find_boundary(remaining, " ", upper, lower)
        # 位置 0 切分會產生空片段並導致死循環
        if split_at <= 0:
            split_at = max_length

        fragments.append(remaining[:split_at])
        remaining = remaining[split_at:]

    if remaining:
        fragments.append(remaining)

    return fragments
