"""
PvP kill attribution.

The game log never says who killed whom. It only reports "X took N damage
from Y" and, separately, "Player died (X)". DamageKillCorrelator remembers the
last player that hurt each victim and attributes a death to that player when
it follows within the configured window. Log timestamps only carry minutes, so
the window is generous and favours attribution over silence.
"""

import datetime
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from .persistence import atomic_write_json, load_json_state
from .state import DamageLedgerEntry

log = logging.getLogger("GameLogMonitor.KillTracker")


@dataclass
class KillAttribution:
    attacker: str
    total_damage: float


class DamageKillCorrelator:
    def __init__(self, window: datetime.timedelta):
        self.window = window
        self.ledger: Dict[str, DamageLedgerEntry] = {}

    def record_damage(self, victim: str, attacker: str, amount: float, timestamp: datetime.datetime):
        key = victim.lower()
        attacker_key = attacker.lower()
        entry = self.ledger.get(key)
        if entry is not None and entry.attacker_key == attacker_key:
            entry.accumulated_damage += amount
            entry.last_timestamp = timestamp
            entry.attacker = attacker
            return
        # Last hit wins, even over a bigger earlier total.
        self.ledger[key] = DamageLedgerEntry(
            victim_key=key,
            attacker=attacker,
            attacker_key=attacker_key,
            last_timestamp=timestamp,
            accumulated_damage=amount,
        )

    def check_kill(self, victim: str, death_timestamp: datetime.datetime) -> Optional[KillAttribution]:
        key = victim.lower()
        entry = self.ledger.get(key)
        if entry is None:
            return None

        elapsed = death_timestamp - entry.last_timestamp
        if datetime.timedelta(0) <= elapsed <= self.window:
            del self.ledger[key]
            return KillAttribution(attacker=entry.attacker, total_damage=entry.accumulated_damage)
        if elapsed > self.window:
            del self.ledger[key]
        return None

    def prune(self, now: datetime.datetime) -> int:
        """Drop entries older than twice the window. Returns how many were removed."""
        cutoff = now - self.window * 2
        stale = [key for key, entry in self.ledger.items() if entry.last_timestamp < cutoff]
        for key in stale:
            del self.ledger[key]
        return len(stale)


class KillLog:
    """Ring buffer of recent attributions, persisted as a JSON list."""

    def __init__(self, path: Optional[str], max_entries: int = 50):
        self.path = path
        self.max_entries = max_entries
        self.kills: List[dict] = []
        self.dirty = False

    def load(self):
        if self.path is None:
            return
        data = load_json_state(self.path, list, lambda d: isinstance(d, list))
        self.kills = [k for k in data if isinstance(k, dict)][-self.max_entries:]
        if self.kills:
            log.info(f"Loaded {len(self.kills)} PvP kill(s) from history")

    def append(self, killer: str, victim: str, damage: float, timestamp: datetime.datetime):
        self.kills.append({
            'killer': killer,
            'victim': victim,
            'damage': damage,
            'timestamp': timestamp.isoformat(),
        })
        if len(self.kills) > self.max_entries:
            self.kills = self.kills[-self.max_entries:]
        self.dirty = True

    def recent(self, count: int = 10) -> List[dict]:
        if count <= 0:
            return []
        return list(self.kills[-count:])

    def save(self):
        if not self.dirty or self.path is None:
            return
        try:
            atomic_write_json(self.path, self.kills)
            self.dirty = False
        except OSError as e:
            log.warning(f"Could not save PvP kill log: {e}")
