"""Typed events produced by the log classifier. Transient: built once per line and consumed immediately."""

import datetime
from dataclasses import dataclass
from typing import ClassVar, Optional


@dataclass
class LogEvent:
    kind: ClassVar[str] = 'event'
    player: str
    timestamp: datetime.datetime
    steam_id: Optional[str] = None


@dataclass
class DeathEvent(LogEvent):
    kind: ClassVar[str] = 'death'


@dataclass
class BuildEvent(LogEvent):
    kind: ClassVar[str] = 'build'
    item: str = ''


@dataclass
class DamageTakenEvent(LogEvent):
    kind: ClassVar[str] = 'damage_taken'
    amount: float = 0.0
    source: str = ''
    source_category: str = 'Other'


@dataclass
class LootEvent(LogEvent):
    kind: ClassVar[str] = 'loot'
    owner_id: str = ''
    container: str = ''


@dataclass
class RaidEvent(LogEvent):
    kind: ClassVar[str] = 'raid'
    # None for structures nobody owns
    owner_id: Optional[str] = None
    building: str = ''
    destroyed: bool = False


@dataclass
class AdminAccessEvent(LogEvent):
    kind: ClassVar[str] = 'admin_access'


@dataclass
class CheatFlagEvent(LogEvent):
    kind: ClassVar[str] = 'cheat_flag'
    flag_type: str = ''


@dataclass
class ConnectEvent(LogEvent):
    kind: ClassVar[str] = 'connect'


@dataclass
class DisconnectEvent(LogEvent):
    kind: ClassVar[str] = 'disconnect'
