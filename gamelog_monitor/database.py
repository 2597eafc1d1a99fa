import datetime
import logging
import sqlite3
from typing import Any, Dict, List, Optional

from .config import (DATABASE_FILE, DB_CONNECTION_TIMEOUT, DB_MAX_RETRIES, DB_RETRY_BASE_DELAY,
                     DB_RETRY_MAX_DELAY, get_timezone)
from .db_utils import get_optimized_connection, retry_on_db_lock
from .log_processor import classify_damage_source
from .stat_store import StatStore

log = logging.getLogger("GameLogMonitor.Database")

# Counter columns that record_* calls may bump.
COUNTER_COLUMNS = (
    'deaths', 'builds', 'raids_out', 'raids_in', 'destroyed_out', 'destroyed_in',
    'containers_looted', 'damage_hits', 'connects', 'disconnects', 'admin_access', 'cheat_flags',
    'pvp_kills', 'pvp_deaths',
)

_retry = retry_on_db_lock(max_attempts=DB_MAX_RETRIES, base_delay=DB_RETRY_BASE_DELAY,
                          max_delay=DB_RETRY_MAX_DELAY)


def init_db(conn: sqlite3.Connection):
    log.info("Checking stat store schema...")
    cursor = conn.cursor()
    counters = ',\n'.join(f"{col} INTEGER NOT NULL DEFAULT 0" for col in COUNTER_COLUMNS)
    cursor.execute(f'''
        CREATE TABLE IF NOT EXISTS player_stats (
            player_key TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            {counters},
            last_event TEXT
        )
    ''')
    cursor.execute('''
        CREATE TABLE IF NOT EXISTS damage_sources (
            player_key TEXT NOT NULL,
            source TEXT NOT NULL,
            hits INTEGER NOT NULL DEFAULT 0,
            PRIMARY KEY (player_key, source)
        )
    ''')
    cursor.execute('''
        CREATE TABLE IF NOT EXISTS build_items (
            player_key TEXT NOT NULL,
            item TEXT NOT NULL,
            count INTEGER NOT NULL DEFAULT 0,
            PRIMARY KEY (player_key, item)
        )
    ''')
    cursor.execute('''
        CREATE TABLE IF NOT EXISTS cheat_flags (
            id INTEGER PRIMARY KEY,
            player_key TEXT NOT NULL,
            flag_type TEXT NOT NULL,
            timestamp TEXT NOT NULL
        )
    ''')
    cursor.execute('''
        CREATE TABLE IF NOT EXISTS pvp_kills (
            id INTEGER PRIMARY KEY,
            killer TEXT NOT NULL,
            victim TEXT NOT NULL,
            timestamp TEXT NOT NULL
        )
    ''')
    cursor.execute('''
        CREATE TABLE IF NOT EXISTS id_map (
            steam_id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            name_lower TEXT NOT NULL
        )
    ''')
    cursor.execute('CREATE INDEX IF NOT EXISTS idx_id_map_name ON id_map (name_lower)')
    cursor.execute('''
        CREATE TABLE IF NOT EXISTS peak_players (
            date TEXT PRIMARY KEY,
            peak INTEGER NOT NULL,
            reached_at TEXT NOT NULL
        )
    ''')
    conn.commit()


class SqliteStatStore(StatStore):
    """
    Player statistics in SQLite.

    Rows are keyed by steam id when one is known, either from the log line or
    from the id map file. Events that only carry a name (deaths, damage, admin
    access) fall back to a "name:<lowercase name>" key.
    """

    def __init__(self, db_path: str = DATABASE_FILE, timeout: float = DB_CONNECTION_TIMEOUT):
        self.db_path = db_path
        # Written from the watcher's database thread, opened and closed on the main thread.
        self.conn = get_optimized_connection(db_path, timeout=timeout, check_same_thread=False)
        init_db(self.conn)

    def close(self):
        if self.conn is not None:
            self.conn.close()
            self.conn = None

    # --- keys ---

    def _key_for_name(self, name: str) -> str:
        row = self.conn.execute('SELECT steam_id FROM id_map WHERE name_lower = ?',
                                (name.lower(),)).fetchone()
        if row:
            return row[0]
        return f"name:{name.lower()}"

    def _bump(self, key: str, name: str, timestamp: Optional[datetime.datetime], **increments: int):
        for column in increments:
            if column not in COUNTER_COLUMNS:
                raise ValueError(f"Unknown stat column: {column}")
        ts = (timestamp or datetime.datetime.now(datetime.timezone.utc)).isoformat()
        columns = ', '.join(increments)
        placeholders = ', '.join('?' for _ in increments)
        updates = ', '.join(f"{col} = {col} + excluded.{col}" for col in increments)
        self.conn.execute(f'''
            INSERT INTO player_stats (player_key, name, {columns}, last_event)
            VALUES (?, ?, {placeholders}, ?)
            ON CONFLICT(player_key) DO UPDATE SET
                {updates}, name = excluded.name, last_event = excluded.last_event
        ''', (key, name, *increments.values(), ts))

    # --- recording ---

    @_retry
    def record_death(self, player, timestamp):
        with self.conn:
            self._bump(self._key_for_name(player), player, timestamp, deaths=1)

    @_retry
    def record_build(self, player, steam_id, item, timestamp):
        with self.conn:
            self._bump(steam_id, player, timestamp, builds=1)
            self.conn.execute('''
                INSERT INTO build_items (player_key, item, count) VALUES (?, ?, 1)
                ON CONFLICT(player_key, item) DO UPDATE SET count = count + 1
            ''', (steam_id, item))

    @_retry
    def record_raid(self, attacker, attacker_id, owner_id, destroyed, timestamp):
        with self.conn:
            if attacker_id:
                self._bump(attacker_id, attacker, timestamp, raids_out=1, destroyed_out=int(destroyed))
            owner_name = self.get_player_name(owner_id) or owner_id
            self._bump(owner_id, owner_name, timestamp, raids_in=1, destroyed_in=int(destroyed))

    @_retry
    def record_loot(self, player, steam_id, owner_id, timestamp):
        if steam_id == owner_id:
            return
        with self.conn:
            self._bump(steam_id, player, timestamp, containers_looted=1)

    @_retry
    def record_damage_taken(self, player, source, timestamp):
        key = self._key_for_name(player)
        with self.conn:
            self._bump(key, player, timestamp, damage_hits=1)
            self.conn.execute('''
                INSERT INTO damage_sources (player_key, source, hits) VALUES (?, ?, 1)
                ON CONFLICT(player_key, source) DO UPDATE SET hits = hits + 1
            ''', (key, classify_damage_source(source)))

    @_retry
    def record_connect(self, player, steam_id, timestamp):
        with self.conn:
            self._bump(steam_id, player, timestamp, connects=1)

    @_retry
    def record_disconnect(self, player, steam_id, timestamp):
        with self.conn:
            self._bump(steam_id, player, timestamp, disconnects=1)

    @_retry
    def record_admin_access(self, player, timestamp):
        with self.conn:
            self._bump(self._key_for_name(player), player, timestamp, admin_access=1)

    @_retry
    def record_cheat_flag(self, player, steam_id, flag_type, timestamp):
        with self.conn:
            self._bump(steam_id, player, timestamp, cheat_flags=1)
            self.conn.execute('INSERT INTO cheat_flags (player_key, flag_type, timestamp) VALUES (?, ?, ?)',
                              (steam_id, flag_type, timestamp.isoformat()))

    @_retry
    def record_pvp_kill(self, killer, victim, timestamp):
        with self.conn:
            self._bump(self._key_for_name(killer), killer, timestamp, pvp_kills=1)
            self._bump(self._key_for_name(victim), victim, timestamp, pvp_deaths=1)
            self.conn.execute('INSERT INTO pvp_kills (killer, victim, timestamp) VALUES (?, ?, ?)',
                              (killer, victim, timestamp.isoformat()))

    @_retry
    def record_player_count(self, count, timestamp):
        day = timestamp.astimezone(get_timezone()).date().isoformat()
        with self.conn:
            self.conn.execute('''
                INSERT INTO peak_players (date, peak, reached_at) VALUES (?, ?, ?)
                ON CONFLICT(date) DO UPDATE SET peak = excluded.peak, reached_at = excluded.reached_at
                WHERE excluded.peak > peak_players.peak
            ''', (day, count, timestamp.isoformat()))

    # --- id map ---

    @_retry
    def load_id_map(self, entries: List[Dict[str, str]]):
        if not entries:
            return
        with self.conn:
            self.conn.execute('DELETE FROM id_map')
            self.conn.executemany(
                'INSERT OR REPLACE INTO id_map (steam_id, name, name_lower) VALUES (?, ?, ?)',
                [(e['steam_id'], e['name'], e['name'].lower()) for e in entries],
            )
            # Known players pick up their current name.
            self.conn.executemany(
                'UPDATE player_stats SET name = ? WHERE player_key = ? AND name != ?',
                [(e['name'], e['steam_id'], e['name']) for e in entries],
            )
        log.debug(f"Loaded {len(entries)} id map entries")

    def get_player_name(self, steam_id: str) -> Optional[str]:
        row = self.conn.execute('SELECT name FROM id_map WHERE steam_id = ?', (steam_id,)).fetchone()
        if row:
            return row[0]
        row = self.conn.execute('SELECT name FROM player_stats WHERE player_key = ? AND name != player_key',
                                (steam_id,)).fetchone()
        return row[0] if row else None

    # --- queries ---

    def get_stats(self, player_key: str) -> Optional[Dict[str, Any]]:
        cursor = self.conn.execute('SELECT * FROM player_stats WHERE player_key = ?', (player_key,))
        row = cursor.fetchone()
        if row is None:
            return None
        stats = dict(zip([d[0] for d in cursor.description], row))
        stats['damage_taken'] = dict(self.conn.execute(
            'SELECT source, hits FROM damage_sources WHERE player_key = ?', (player_key,)).fetchall())
        stats['build_items'] = dict(self.conn.execute(
            'SELECT item, count FROM build_items WHERE player_key = ?', (player_key,)).fetchall())
        return stats

    def get_peak_players(self, date: datetime.date) -> Optional[int]:
        row = self.conn.execute('SELECT peak FROM peak_players WHERE date = ?', (date.isoformat(),)).fetchone()
        return row[0] if row else None

    def get_recent_pvp_kills(self, count: int = 10) -> List[Dict[str, Any]]:
        rows = self.conn.execute(
            'SELECT killer, victim, timestamp FROM pvp_kills ORDER BY id DESC LIMIT ?', (count,)).fetchall()
        return [{'killer': k, 'victim': v, 'timestamp': t} for k, v, t in reversed(rows)]
