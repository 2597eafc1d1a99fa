"""
Structured notification messages.

Every builder returns a plain dict (author, title, description, color, footer,
timestamp) that a NotificationSink can render however it likes. Nothing here
knows about delivery channels.
"""

import datetime
from typing import Callable, Dict, Iterable, List, Optional

from .config import format_time, get_date_label

COLOR_INFO = 0x3498db
COLOR_JOIN = 0x2ecc71
COLOR_MUTED = 0x95a5a6
COLOR_DEATH = 0x992d22
COLOR_ALERT = 0xe74c3c
COLOR_LOOT = 0xe67e22
COLOR_BUILD = 0xf39c12
COLOR_ADMIN = 0x9b59b6

OwnerNameResolver = Callable[[str], Optional[str]]

SUMMARY_LINES = [
    ('connects', '📥', 'Connections'),
    ('disconnects', '📤', 'Disconnections'),
    ('deaths', '💀', 'Deaths'),
    ('builds', '🔨', 'Items Built'),
    ('damage', '🩸', 'Damage Hits'),
    ('loots', '📦', 'Containers Looted'),
    ('raid_hits', '⚠️', 'Raid Hits'),
    ('destroyed', '💥', 'Structures Destroyed'),
    ('admin', '🔑', 'Admin Access'),
    ('cheat', '🚨', 'Anti-Cheat Flags'),
    ('pvp_kills', '⚔️', 'PvP Kills'),
]


def make_message(description: str, color: int, author: Optional[str] = None, title: Optional[str] = None,
                 footer: Optional[str] = None, timestamp: Optional[datetime.datetime] = None) -> Dict:
    return {
        'author': author,
        'title': title,
        'description': description,
        'color': color,
        'footer': footer,
        'timestamp': timestamp.isoformat() if timestamp else None,
    }


def _time_footer(timestamp: Optional[datetime.datetime]) -> str:
    return format_time(timestamp) if timestamp else 'Just now'


def owner_display_name(owner_id: str, resolve: Optional[OwnerNameResolver] = None) -> str:
    name = resolve(owner_id) if resolve else None
    return name or f"Unknown ({owner_id[:8]}...)"


def _count_list(counts) -> str:
    return ', '.join(f"{name} ×{count}" if count > 1 else name for name, count in counts.items())


def death_message(player: str, timestamp: datetime.datetime, killer: Optional[str] = None) -> Dict:
    if killer:
        description = f"**{player}** was killed by **{killer}**"
    else:
        description = f"**{player}** died"
    return make_message(description, COLOR_DEATH, author='💀 Player Death', footer=_time_footer(timestamp))


def pvp_kill_message(killer: str, victim: str, damage: float, timestamp: datetime.datetime) -> Dict:
    return make_message(
        f"**{killer}** killed **{victim}**", COLOR_ALERT, author='⚔️ PvP Kill',
        footer=f"{damage:.0f} damage dealt · {_time_footer(timestamp)}",
    )


def death_loop_message(player: str, count: int, first: datetime.datetime, last: datetime.datetime) -> Dict:
    return make_message(
        f"**{player}** died **{count}** times in a row ({format_time(first)} - {format_time(last)})",
        COLOR_DEATH, author='🔁 Death Loop', footer=_time_footer(last),
    )


def loot_batch_message(entries: Iterable, resolve_owner: Optional[OwnerNameResolver] = None) -> Dict:
    lines = []
    for entry in entries:
        owner = owner_display_name(entry.owner_id, resolve_owner)
        lines.append(f"**{entry.looter}** opened **{entry.count}** container(s) owned by **{owner}**\n"
                     f"> {', '.join(entry.containers)}")
    return make_message('\n\n'.join(lines), COLOR_LOOT, author='📦 Container Activity',
                        timestamp=datetime.datetime.now(datetime.timezone.utc))


def build_batch_message(entries: Iterable) -> Dict:
    lines = [f"**{entry.player}** built {_count_list(entry.items)}" for entry in entries]
    return make_message('\n'.join(lines), COLOR_BUILD, author='🔨 Build Activity',
                        timestamp=datetime.datetime.now(datetime.timezone.utc))


def raid_batch_message(entries: List, resolve_owner: Optional[OwnerNameResolver] = None) -> Dict:
    lines = []
    for entry in entries:
        owner = owner_display_name(entry.owner_id, resolve_owner)
        summary = []
        if entry.destroyed:
            summary.append(f"**{entry.destroyed}** destroyed")
        if entry.damaged:
            summary.append(f"**{entry.damaged}** damaged")
        lines.append(f"**{entry.attacker}** raided **{owner}** - {', '.join(summary)}\n"
                     f"> {_count_list(entry.buildings)}")
    destruction = any(entry.destroyed for entry in entries)
    return make_message(
        '\n\n'.join(lines),
        COLOR_ALERT if destruction else COLOR_LOOT,
        author='💥 Raid Alert' if destruction else '⚠️ Raid Activity',
        timestamp=datetime.datetime.now(datetime.timezone.utc),
    )


def building_destroyed_message(attacker: str, building: str, timestamp: datetime.datetime) -> Dict:
    return make_message(f"**{attacker}** destroyed **{building}**", COLOR_MUTED,
                        author='🏠 Building Destroyed', footer=_time_footer(timestamp))


def admin_access_message(player: str, timestamp: datetime.datetime) -> Dict:
    return make_message(f"**{player}** gained admin access", COLOR_ADMIN,
                        author='🔑 Admin Access', footer=_time_footer(timestamp))


def cheat_flag_message(player: str, flag_type: str, timestamp: datetime.datetime) -> Dict:
    return make_message(f"**{player}**\n`{flag_type}`", COLOR_ALERT,
                        author='🚨 Anti-Cheat Alert', footer=_time_footer(timestamp))


def _online_footer(timestamp: datetime.datetime, online: Optional[int]) -> str:
    if online is None:
        return _time_footer(timestamp)
    return f"{online} online · {_time_footer(timestamp)}"


def connect_message(player: str, timestamp: datetime.datetime, online: Optional[int] = None) -> Dict:
    return make_message(f"**{player}** joined the server", COLOR_JOIN,
                        author='📥 Player Connected', footer=_online_footer(timestamp, online))


def disconnect_message(player: str, timestamp: datetime.datetime, online: Optional[int] = None) -> Dict:
    return make_message(f"**{player}** left the server", COLOR_MUTED,
                        author='📤 Player Disconnected', footer=_online_footer(timestamp, online))


def daily_summary_message(date: datetime.date, counts: Dict[str, int]) -> Dict:
    lines = [f"{icon}  **{label}:** {counts[kind]}"
             for kind, icon, label in SUMMARY_LINES if counts.get(kind)]
    total = sum(counts.values())
    return make_message('\n'.join(lines), COLOR_INFO,
                        title=f"📊 Daily Summary - {get_date_label(date)}",
                        footer=f"{total} total events",
                        timestamp=datetime.datetime.now(datetime.timezone.utc))


def startup_message() -> Dict:
    return make_message('📋 Log watcher connected. Monitoring game server activity.', COLOR_INFO,
                        timestamp=datetime.datetime.now(datetime.timezone.utc))


def thread_title(date: datetime.date) -> str:
    return f"📋 Activity Log - {get_date_label(date)}"
