import datetime
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .config import DAY_COUNTER_KINDS


@dataclass
class TailCursor:
    """Read position of one watched remote file."""
    path: str
    last_size: int = 0
    initialized: bool = False
    # Trailing bytes of an unfinished line, kept as bytes so a multi-byte
    # character split across two reads is decoded only once it is complete.
    partial: bytes = b''
    # Offset loaded from the persisted record, consumed on the first stat.
    resume_offset: Optional[int] = None

    @property
    def committed_offset(self) -> int:
        """Offset of the first byte not yet turned into a complete line."""
        return max(self.last_size - len(self.partial), 0)

    def reset(self):
        self.last_size = 0
        self.partial = b''


@dataclass
class DamageLedgerEntry:
    victim_key: str
    attacker: str
    attacker_key: str
    last_timestamp: datetime.datetime
    accumulated_damage: float


@dataclass
class DeathLoopEntry:
    player: str
    player_key: str
    count: int
    first_timestamp: datetime.datetime
    last_timestamp: datetime.datetime
    pending_flush: bool = False
    timer: Any = None


@dataclass
class LootEntry:
    looter: str
    looter_id: str
    owner_id: str
    count: int = 0
    containers: List[str] = field(default_factory=list)


@dataclass
class BuildEntry:
    player: str
    steam_id: str
    items: Counter = field(default_factory=Counter)


@dataclass
class RaidEntry:
    attacker: str
    attacker_id: Optional[str]
    owner_id: str
    buildings: Counter = field(default_factory=Counter)
    destroyed: int = 0
    damaged: int = 0


def empty_counts() -> Dict[str, int]:
    return {kind: 0 for kind in DAY_COUNTER_KINDS}


@dataclass
class DayCounters:
    date: datetime.date
    counts: Dict[str, int] = field(default_factory=empty_counts)

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def non_zero(self) -> Dict[str, int]:
        return {k: v for k, v in self.counts.items() if v}

    def to_dict(self) -> Dict[str, Any]:
        return {'date': self.date.isoformat(), 'counts': dict(self.counts)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DayCounters':
        counts = empty_counts()
        for kind, value in (data.get('counts') or {}).items():
            if isinstance(value, int):
                counts[kind] = value
        return cls(date=datetime.date.fromisoformat(data['date']), counts=counts)
