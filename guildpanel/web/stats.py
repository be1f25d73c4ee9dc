"""
Statistics shown on the public stats page and the per-guild stats page.
"""
import platform
from datetime import datetime, timedelta
from typing import Any, List, Optional, Tuple

import discord
import psutil


UNIT_LABELS = ("Seconds", "Minutes", "Hours", "Days")


def _split_seconds(total_seconds: int) -> Tuple[int, int, int, int]:
    days, remainder = divmod(max(int(total_seconds), 0), 86400)
    hours, remainder = divmod(remainder, 3600)
    minutes, seconds = divmod(remainder, 60)
    return days, hours, minutes, seconds


def format_uptime(total_seconds: float) -> Tuple[str, str]:
    """Render an uptime as DD:HH:MM:SS plus the label of its largest non-zero unit."""
    days, hours, minutes, seconds = _split_seconds(int(total_seconds))
    duration = f"{days:02d}:{hours:02d}:{minutes:02d}:{seconds:02d}"
    label = UNIT_LABELS[0]
    for unit_label, value in zip(UNIT_LABELS, (seconds, minutes, hours, days)):
        if value:
            label = unit_label
    return duration, label


def format_member_for(delta: timedelta) -> str:
    days, hours, minutes, seconds = _split_seconds(int(delta.total_seconds()))
    parts = [(days, "days"), (hours, "hrs"), (minutes, "mins"), (seconds, "secs")]
    # leading zero units are dropped, the rest are kept
    while len(parts) > 1 and parts[0][0] == 0:
        parts.pop(0)
    return ", ".join(f"{value} {unit}" for value, unit in parts)


def memory_usage_mb() -> float:
    rss = psutil.Process().memory_info().rss
    return round(rss / 1024 / 1024, 2)


def uptime_seconds(client: Any, now: Optional[datetime] = None) -> float:
    started_at = getattr(client, "started_at", None)
    if started_at is None:
        return 0.0
    return ((now or discord.utils.utcnow()) - started_at).total_seconds()


def count_channels(channels, channel_type: discord.ChannelType) -> int:
    return sum(1 for channel in channels if channel.type == channel_type)


def collect_bot_stats(client: Any, now: Optional[datetime] = None) -> List[dict]:
    duration, label = format_uptime(uptime_seconds(client, now))
    channels = list(client.get_all_channels())
    return [
        {"label": "Servers", "icon": "fa fa-fw fa-server", "value": len(client.guilds)},
        {"label": "Members", "icon": "fa fa-fw fa-users", "value": sum(g.member_count or 0 for g in client.guilds)},
        {"label": "Text Channels", "icon": "fa fa-fw fa-hashtag", "value": count_channels(channels, discord.ChannelType.text)},
        {"label": "Voice Channels", "icon": "fa fa-fw fa-microphone", "value": count_channels(channels, discord.ChannelType.voice)},
        {"label": f"{label} Uptime", "icon": "far fa-clock", "value": duration},
        {"label": "Memory Usage", "icon": "fa fa-fw fa-tasks", "value": f"{memory_usage_mb():.2f}", "unit": "MB"},
        {"label": "discord.py Version", "icon": "fab fa-discord", "value": discord.__version__},
        {"label": "Python Version", "icon": "fab fa-python", "value": platform.python_version()},
    ]


def collect_guild_stats(guild: Any) -> List[dict]:
    members = list(guild.members)
    bots = sum(1 for member in members if member.bot)
    created = guild.created_at.strftime("%d %b %Y") if guild.created_at else "Unknown"
    return [
        {"label": "Members", "value": guild.member_count or len(members)},
        {"label": "Humans", "value": len(members) - bots},
        {"label": "Bots", "value": bots},
        {"label": "Text Channels", "value": count_channels(guild.channels, discord.ChannelType.text)},
        {"label": "Voice Channels", "value": count_channels(guild.channels, discord.ChannelType.voice)},
        {"label": "Categories", "value": count_channels(guild.channels, discord.ChannelType.category)},
        {"label": "Roles", "value": len(guild.roles)},
        {"label": "Created", "value": created},
    ]
