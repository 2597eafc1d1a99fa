"""
Debounced aggregation of bursty events.

Loot, build and raid events arrive in sprees. Each batch type collects entries
until a flush timer, armed by the first entry, fires once and emits every key
collected so far. Deaths go through DeathLoopSuppressor, which lets the first
few deaths of a window through and folds the rest into one summary.
"""

import datetime
import logging
from typing import Callable, Dict, Optional

from .scheduler import Scheduler
from .state import BuildEntry, DeathLoopEntry, LootEntry, RaidEntry

log = logging.getLogger("GameLogMonitor.Aggregators")


class BatchAccumulator:
    name = 'batch'

    def __init__(self, scheduler: Scheduler, delay: float, on_flush: Callable[[list], None]):
        self.scheduler = scheduler
        self.delay = delay
        self.on_flush = on_flush
        self.entries: Dict[str, object] = {}
        self._timer = None

    @property
    def armed(self) -> bool:
        return self._timer is not None

    def _entry(self, key: str, factory: Callable[[], object]):
        entry = self.entries.get(key)
        if entry is None:
            entry = factory()
            self.entries[key] = entry
        if self._timer is None:
            self._timer = self.scheduler.call_later(self.delay, self.flush)
        return entry

    def flush(self):
        """Emit everything collected since the timer was armed and start over."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if not self.entries:
            return
        entries = list(self.entries.values())
        self.entries = {}
        log.debug(f"Flushing {self.name} batch with {len(entries)} entries")
        self.on_flush(entries)

    def cancel(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None


class LootBatch(BatchAccumulator):
    name = 'loot'

    def add(self, looter: str, looter_id: str, owner_id: str, container: str) -> bool:
        if looter_id == owner_id:
            return False
        entry = self._entry(f"{looter_id}|{owner_id}",
                            lambda: LootEntry(looter=looter, looter_id=looter_id, owner_id=owner_id))
        entry.count += 1
        if container not in entry.containers:
            entry.containers.append(container)
        return True


class BuildBatch(BatchAccumulator):
    name = 'build'

    def add(self, player: str, steam_id: str, item: str) -> bool:
        entry = self._entry(steam_id, lambda: BuildEntry(player=player, steam_id=steam_id))
        entry.items[item] += 1
        return True


class RaidBatch(BatchAccumulator):
    name = 'raid'

    def add(self, attacker: str, attacker_id: Optional[str], owner_id: str,
            building: str, destroyed: bool) -> bool:
        if attacker_id and attacker_id == owner_id:
            return False
        entry = self._entry(f"{attacker_id}|{owner_id}",
                            lambda: RaidEntry(attacker=attacker, attacker_id=attacker_id, owner_id=owner_id))
        entry.buildings[building] += 1
        if destroyed:
            entry.destroyed += 1
        else:
            entry.damaged += 1
        return True


class DeathLoopSuppressor:
    """
    Collapses rapid repeated deaths of one player.

    record_death() returns True while the death should still be announced on
    its own. Once a window reaches the threshold, that death and the ones after
    it are held back and a single summary is emitted when the window ends.
    """

    def __init__(self, scheduler: Scheduler, threshold: int, window: datetime.timedelta,
                 on_flush: Callable[[DeathLoopEntry], None]):
        self.scheduler = scheduler
        self.threshold = threshold
        self.window = window
        self.on_flush = on_flush
        self.entries: Dict[str, DeathLoopEntry] = {}

    def record_death(self, player: str, timestamp: datetime.datetime) -> bool:
        key = player.lower()
        entry = self.entries.get(key)

        if entry is None or timestamp - entry.first_timestamp > self.window:
            if entry is not None and entry.pending_flush:
                self._flush(key)
            entry = DeathLoopEntry(player=player, player_key=key, count=1,
                                   first_timestamp=timestamp, last_timestamp=timestamp)
            self.entries[key] = entry
        else:
            entry.count += 1
            entry.last_timestamp = timestamp

        if entry.count < self.threshold:
            return True

        if not entry.pending_flush:
            entry.pending_flush = True
            remaining = self.window - (timestamp - entry.first_timestamp)
            delay = max(remaining.total_seconds(), 0)
            entry.timer = self.scheduler.call_later(delay, lambda: self._flush(key))
            log.info(f"Death loop detected for {player}, suppressing individual deaths")
        return False

    def _flush(self, key: str):
        entry = self.entries.pop(key, None)
        if entry is None:
            return
        if entry.timer is not None:
            entry.timer.cancel()
            entry.timer = None
        if entry.pending_flush:
            self.on_flush(entry)

    def flush_all(self):
        for key in list(self.entries):
            entry = self.entries[key]
            if entry.pending_flush:
                self._flush(key)

    def cancel_all(self):
        for entry in self.entries.values():
            if entry.timer is not None:
                entry.timer.cancel()
                entry.timer = None
