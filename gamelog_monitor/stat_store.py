import datetime
from typing import Dict, List, Optional


class StatStore:
    """
    Downstream consumer of recognised events.

    The watcher makes exactly one record_* call per recognised occurrence. Byte
    ranges are delivered at least once, so after a crash a few calls may be
    repeated; implementations keep monotonic counters rather than unique
    ledgers. This base class ignores everything and is what the watcher uses
    when no store is supplied.
    """

    def record_death(self, player: str, timestamp: datetime.datetime):
        pass

    def record_build(self, player: str, steam_id: str, item: str, timestamp: datetime.datetime):
        pass

    def record_raid(self, attacker: str, attacker_id: Optional[str], owner_id: str, destroyed: bool,
                    timestamp: datetime.datetime):
        pass

    def record_loot(self, player: str, steam_id: str, owner_id: str, timestamp: datetime.datetime):
        pass

    def record_damage_taken(self, player: str, source: str, timestamp: datetime.datetime):
        pass

    def record_connect(self, player: str, steam_id: str, timestamp: datetime.datetime):
        pass

    def record_disconnect(self, player: str, steam_id: str, timestamp: datetime.datetime):
        pass

    def record_admin_access(self, player: str, timestamp: datetime.datetime):
        pass

    def record_cheat_flag(self, player: str, steam_id: str, flag_type: str, timestamp: datetime.datetime):
        pass

    def record_pvp_kill(self, killer: str, victim: str, timestamp: datetime.datetime):
        pass

    def load_id_map(self, entries: List[Dict[str, str]]):
        """Replace the steam id <-> name map with entries of {'steam_id', 'name'}."""
        pass

    def record_player_count(self, count: int, timestamp: datetime.datetime):
        """Number of players online right after a connect."""
        pass

    def get_player_name(self, steam_id: str) -> Optional[str]:
        return None

    def close(self):
        pass
