import datetime
import logging
from typing import Callable, Dict, Optional

from .config import get_timezone
from .persistence import atomic_write_json, load_json_state
from .state import DayCounters

log = logging.getLogger("GameLogMonitor.DayState")


def _valid_counters(data) -> bool:
    if not isinstance(data, dict) or not isinstance(data.get('counts', {}), dict):
        return False
    try:
        datetime.date.fromisoformat(data.get('date'))
    except (TypeError, ValueError):
        return False
    return True


class DayState:
    """
    Per-day event counters, persisted after every change.

    When the configured day moves past the stored date, on_summary receives
    the stored date and its non-zero counters exactly once, then the counters
    start again from zero for the new day.
    """

    def __init__(self, path: Optional[str], on_summary: Callable[[datetime.date, Dict[str, int]], None],
                 tz: Optional[datetime.tzinfo] = None):
        self.path = path
        self.on_summary = on_summary
        self.tz = tz or get_timezone()
        self.current: Optional[DayCounters] = None

    @property
    def date(self) -> Optional[datetime.date]:
        return self.current.date if self.current else None

    @property
    def counts(self) -> Dict[str, int]:
        return self.current.counts if self.current else {}

    def load(self, today: datetime.date):
        data = None
        if self.path is not None:
            data = load_json_state(self.path, lambda: None, _valid_counters)

        if data is None:
            self.current = DayCounters(date=today)
            self._save()
            return

        stored = DayCounters.from_dict(data)
        self.current = stored
        if stored.date < today:
            if stored.total:
                log.info(f"Found unsummarised counters for {stored.date}, posting summary")
            self.check_rollover(today)
        else:
            log.info(f"Resuming day counters for {stored.date} ({stored.total} events so far)")

    def incr(self, kind: str, timestamp: Optional[datetime.datetime] = None):
        if self.current is None:
            raise RuntimeError("DayState.load() must be called before incr()")
        if timestamp is not None:
            self.check_rollover(timestamp.astimezone(self.tz).date())
        self.current.counts[kind] = self.current.counts.get(kind, 0) + 1
        self._save()

    def check_rollover(self, today: datetime.date) -> bool:
        """Summarise and reset when today is past the stored date. Returns True on rollover."""
        if self.current is None or today <= self.current.date:
            return False
        old = self.current
        self.current = DayCounters(date=today)
        log.info(f"Day rollover: {old.date} -> {today}")
        if old.total:
            try:
                self.on_summary(old.date, old.non_zero())
            except Exception:
                log.error("Failed to emit daily summary:", exc_info=True)
        self._save()
        return True

    def _save(self):
        if self.path is None or self.current is None:
            return
        try:
            atomic_write_json(self.path, self.current.to_dict())
        except OSError as e:
            log.warning(f"Could not save day counters: {e}")
