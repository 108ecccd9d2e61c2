# -*- coding: utf-8 -*-
"""
===================================
用戶資料命令
===================================

顯示用戶的 Messenger 資料，refresh 參數會重新從平臺獲取。
"""

import time
from datetime import datetime, timezone
from typing import Any, Dict, List

from bot.commands.base import BotCommand
from bot.models import InvocationContext
from bot.moments import resolve_timezone


def time_ago(timestamp: float, now: float) -> str:
    """epoch 秒 -> "5 minutes ago" 形式的相對時間"""
    seconds = max(0, int(now - timestamp))
    units = [
        ("year", 365 * 86400),
        ("month", 30 * 86400),
        ("day", 86400),
        ("hour", 3600),
        ("minute", 60),
    ]
    for unit, size in units:
        count = seconds // size
        if count:
            return f"{count} {unit}{'s' if count > 1 else ''} ago"
    return "a few seconds ago"


def format_utc_offset(tz_name: str, default: str) -> str:
    """時區當前的 UTC 偏移，如 +06:00"""
    offset = datetime.now(timezone.utc).astimezone(resolve_timezone(tz_name, default)).strftime("%z")
    return f"{offset[:3]}:{offset[3:]}"


class UserInfoCommand(BotCommand):
    """
    用戶資料命令

    用法：
        !userinfo          - 顯示已保存的資料
        !userinfo refresh  - 從平臺重新獲取後顯示
    """

    @property
    def name(self) -> str:
        return "userinfo"

    @property
    def aliases(self) -> List[str]:
        return ["me", "profile"]

    @property
    def description(self) -> str:
        return "Shows your Messenger profile info."

    @property
    def usage(self) -> str:
        return "{prefix}userinfo [refresh]"

    def execute(self, ctx: InvocationContext) -> None:
        runtime = ctx.runtime
        user = ctx.user

        if ctx.args and ctx.args[0].lower() == "refresh":
            profile = runtime.transport.fetch_profile(ctx.sender_id)
            if profile:
                profile = dict(profile)
                profile.pop("id", None)
                user = runtime.users.save_user(ctx.sender_id, profile)
                ctx.user = user

        if not user:
            ctx.reply("User info not found.")
            return

        if user.get("profile_pic"):
            ctx.send_attachment("image", user["profile_pic"])

        ctx.reply(self._format_profile(user, ctx.sender_id, runtime.config.timezone))

    def _format_profile(self, user: Dict[str, Any], sender_id: str, default_tz: str) -> str:
        name = f"{user.get('first_name') or ''} {user.get('last_name') or ''}".strip()
        lines = [f"👤 Name: {name}"]
        lines.append(f"🆔 ID: {user.get('psid') or sender_id}")

        if user.get("locale"):
            lines.append(f"🌐 Locale: {user['locale']}")

        tz_name = (user.get("custom") or {}).get("timezone")
        if tz_name:
            lines.append(f"🕒 Timezone: {tz_name} (GMT{format_utc_offset(tz_name, default_tz)})")

        if user.get("gender"):
            lines.append(f"⚧ Gender: {user['gender']}")

        if user.get("last_active"):
            lines.append(f"🕓 Last Active: {time_ago(user['last_active'], time.time())}")

        return "\n".join(lines)
