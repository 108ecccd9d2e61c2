# -*- coding: utf-8 -*-
"""
===================================
時區設置命令
===================================

設置用戶時區（custom.timezone），定時問候按該時區選擇時段。

識別順序：
1. GMT/UTC 偏移，如 GMT+6、UTC-5（映射到 Etc/GMT∓N）
2. 常見城市、國家、縮寫
3. IANA 名稱模糊匹配（唯一結果直接使用，多個結果列出候選）
"""

import logging
import re
from typing import Dict, List, Optional
from zoneinfo import available_timezones

from bot.commands.base import BotCommand
from bot.errors import UserStoreError
from bot.models import InvocationContext

logger = logging.getLogger(__name__)

TZ_LIST_URL = "https://en.wikipedia.org/wiki/List_of_tz_database_time_zones"

MAX_SUGGESTIONS = 15

GMT_OFFSET_PATTERN = re.compile(r"^(GMT|UTC)([+-])(\d{1,2})$", re.IGNORECASE)

COMMON_TIMEZONES: Dict[str, str] = {
    # 城市
    "dhaka": "Asia/Dhaka",
    "london": "Europe/London",
    "newyork": "America/New_York",
    "paris": "Europe/Paris",
    "tokyo": "Asia/Tokyo",
    "sydney": "Australia/Sydney",
    "losangeles": "America/Los_Angeles",
    "chicago": "America/Chicago",
    "denver": "America/Denver",
    "dubai": "Asia/Dubai",
    "kolkata": "Asia/Kolkata",
    "berlin": "Europe/Berlin",
    "rome": "Europe/Rome",
    "madrid": "Europe/Madrid",
    "amsterdam": "Europe/Amsterdam",
    "stockholm": "Europe/Stockholm",
    "oslo": "Europe/Oslo",
    "copenhagen": "Europe/Copenhagen",
    "helsinki": "Europe/Helsinki",
    "dublin": "Europe/Dublin",
    "auckland": "Pacific/Auckland",
    "buenosaires": "America/Argentina/Buenos_Aires",
    "santiago": "America/Santiago",
    "lima": "America/Lima",
    "bogota": "America/Bogota",
    "caracas": "America/Caracas",
    "karachi": "Asia/Karachi",
    "jakarta": "Asia/Jakarta",
    "bangkok": "Asia/Bangkok",
    "hochiminh": "Asia/Ho_Chi_Minh",
    "manila": "Asia/Manila",
    "kualalumpur": "Asia/Kuala_Lumpur",
    "singapore": "Asia/Singapore",
    "riyadh": "Asia/Riyadh",
    "istanbul": "Europe/Istanbul",
    "tehran": "Asia/Tehran",
    "lagos": "Africa/Lagos",
    "nairobi": "Africa/Nairobi",
    "seoul": "Asia/Seoul",
    "shanghai": "Asia/Shanghai",
    "hongkong": "Asia/Hong_Kong",
    "taipei": "Asia/Taipei",
    "johannesburg": "Africa/Johannesburg",
    "cairo": "Africa/Cairo",
    "moscow": "Europe/Moscow",
    "saopaulo": "America/Sao_Paulo",
    "mexicocity": "America/Mexico_City",
    # 國家 / 地區
    "india": "Asia/Kolkata",
    "bangladesh": "Asia/Dhaka",
    "unitedkingdom": "Europe/London",
    "unitedstates": "America/New_York",
    "canada": "America/Toronto",
    "australia": "Australia/Sydney",
    "germany": "Europe/Berlin",
    "france": "Europe/Paris",
    "japan": "Asia/Tokyo",
    "uae": "Asia/Dubai",
    "china": "Asia/Shanghai",
    "russia": "Europe/Moscow",
    "brazil": "America/Sao_Paulo",
    "mexico": "America/Mexico_City",
    "southafrica": "Africa/Johannesburg",
    "egypt": "Africa/Cairo",
    "greece": "Europe/Athens",
    "spain": "Europe/Madrid",
    "italy": "Europe/Rome",
    "netherlands": "Europe/Amsterdam",
    "sweden": "Europe/Stockholm",
    "norway": "Europe/Oslo",
    "denmark": "Europe/Copenhagen",
    "finland": "Europe/Helsinki",
    "ireland": "Europe/Dublin",
    "newzealand": "Pacific/Auckland",
    "argentina": "America/Argentina/Buenos_Aires",
    "chile": "America/Santiago",
    "peru": "America/Lima",
    "colombia": "America/Bogota",
    "venezuela": "America/Caracas",
    "pakistan": "Asia/Karachi",
    "indonesia": "Asia/Jakarta",
    "thailand": "Asia/Bangkok",
    "vietnam": "Asia/Ho_Chi_Minh",
    "philippines": "Asia/Manila",
    "malaysia": "Asia/Kuala_Lumpur",
    "saudiarabia": "Asia/Riyadh",
    "turkey": "Europe/Istanbul",
    "iran": "Asia/Tehran",
    "nigeria": "Africa/Lagos",
    "kenya": "Africa/Nairobi",
    "southkorea": "Asia/Seoul",
    "taiwan": "Asia/Taipei",
    # 縮寫 / 時區名
    "gulfstandardtime": "Asia/Dubai",
    "centraleuropeantime": "Europe/Paris",
    "easterneuropeantime": "Europe/Athens",
    "australianeasternstandardtime": "Australia/Sydney",
    "pst": "America/Los_Angeles",
    "est": "America/New_York",
    "cst": "America/Chicago",
    "mst": "America/Denver",
    "ist": "Asia/Kolkata",
    "bdt": "Asia/Dhaka",
    "gst": "Asia/Dubai",
    "cet": "Europe/Paris",
    "eet": "Europe/Athens",
    "aest": "Australia/Sydney",
}


def gmt_offset_zone(text: str) -> Optional[str]:
    """
    GMT/UTC 偏移 -> Etc/GMT 時區

    Etc/GMT 的符號與常用寫法相反：GMT+6 對應 Etc/GMT-6。
    """
    match = GMT_OFFSET_PATTERN.match(text.strip())
    if not match:
        return None

    sign = 1 if match.group(2) == "+" else -1
    hours = int(match.group(3))
    offset = sign * hours
    if not -12 <= offset <= 14:
        return None
    if offset == 0:
        return "Etc/GMT"
    return f"Etc/GMT{'-' if offset > 0 else '+'}{hours}"


def fuzzy_matches(text: str, names: Optional[List[str]] = None) -> List[str]:
    """在 IANA 名稱中做不區分大小寫的子串匹配"""
    needle = text.lower()
    names = names if names is not None else sorted(available_timezones())
    matches = []
    for name in names:
        lowered = name.lower()
        parts = re.split(r"[/_]", lowered)
        if needle in lowered or any(needle in part for part in parts):
            matches.append(name)
    return matches


class TimezoneCommand(BotCommand):
    """設置定時問候使用的時區"""

    @property
    def name(self) -> str:
        return "timezone"

    @property
    def aliases(self) -> List[str]:
        return ["tz"]

    @property
    def description(self) -> str:
        return "Set your timezone for personalized moment messages."

    @property
    def usage(self) -> str:
        return "{PREFIX}timezone <timezone_name_or_gmt_offset>"

    @property
    def examples(self) -> List[str]:
        return [
            "{PREFIX}timezone Asia/Dhaka",
            "{PREFIX}timezone Dhaka",
            "{PREFIX}timezone London",
            "{PREFIX}timezone New York",
            "{PREFIX}timezone GMT+6",
            "{PREFIX}timezone PST",
        ]

    @property
    def category(self) -> str:
        return "utility"

    def execute(self, ctx: InvocationContext) -> None:
        prefix = ctx.prefix
        raw = " ".join(ctx.args).strip()
        if not raw:
            ctx.reply(
                f"Please provide a timezone. Examples: {prefix}timezone Asia/Dhaka, "
                f"{prefix}timezone London, {prefix}timezone GMT+6, or {prefix}timezone PST."
            )
            return

        all_zones = available_timezones()
        from_offset = False

        zone = gmt_offset_zone(raw)
        if zone:
            from_offset = True
        elif raw in all_zones:
            zone = raw
        else:
            zone = COMMON_TIMEZONES.get(re.sub(r"\s+", "", raw.lower()))

        if zone is None:
            matches = fuzzy_matches(raw, sorted(all_zones))
            if len(matches) == 1:
                zone = matches[0]
            elif 1 < len(matches) <= MAX_SUGGESTIONS:
                suggestions = "\n".join(f"- {name}" for name in matches)
                ctx.reply(
                    f"Did you mean one of these? Please use the exact name:\n{suggestions}\n\n"
                    f"Or provide a GMT/UTC offset (e.g., GMT+6)."
                )
                return
            elif len(matches) > MAX_SUGGESTIONS:
                ctx.reply(
                    f"Your input '{raw}' is too broad and matches too many timezones. "
                    f"Please be more specific (e.g., Asia/Dhaka, Europe/London, or a major city name). "
                    f"You can find a list here: {TZ_LIST_URL}"
                )
                return

        if zone is None or zone not in all_zones:
            ctx.reply(
                f"I couldn't recognize '{raw}' as a valid timezone. Please try:\n"
                f"- A full IANA timezone name (e.g., Asia/Dhaka, Europe/London)\n"
                f"- A GMT/UTC offset (e.g., GMT+6, UTC-5)\n"
                f"- A common city or country name, or abbreviation (e.g., Dhaka, London, India, PST)\n\n"
                f"You can find a list of IANA timezones here: {TZ_LIST_URL}"
            )
            return

        try:
            ctx.user = ctx.runtime.users.save_user(ctx.sender_id, {"custom": {"timezone": zone}})
        except UserStoreError as e:
            logger.error(f"[Timezone] 保存時區失敗: {ctx.sender_id}: {e}")
            ctx.reply("There was an error saving your timezone. Please try again later.")
            return
        logger.info(f"[Timezone] 用戶 {ctx.sender_id} 設置時區: {zone}")

        if from_offset:
            ctx.reply(
                f"Your timezone has been set to {zone} (based on your {raw} input). "
                f"Moment messages will now be sent based on this timezone."
            )
        else:
            ctx.reply(
                f"Your timezone has been set to {zone}. "
                f"Moment messages will now be sent based on this timezone."
            )
