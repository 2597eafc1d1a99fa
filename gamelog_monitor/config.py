import datetime
import os
from dataclasses import dataclass
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def _env_bool(key: str, default: bool) -> bool:
    val = os.getenv(key)
    if val is None or val == '':
        return default
    return val.strip().lower() in ('1', 'true', 'yes', 'on')


def _env_int(key: str, default: int) -> int:
    try:
        return int(os.getenv(key, default))
    except (TypeError, ValueError):
        return default


# --- Configuration ---
# State files are written relative to the data directory, which defaults to
# ./data in the working directory. Override with GAMELOG_DATA_DIR.
DATA_DIR = os.getenv('GAMELOG_DATA_DIR', 'data')
OFFSETS_FILE = os.path.join(DATA_DIR, 'log-offsets.json')
DAY_COUNTERS_FILE = os.path.join(DATA_DIR, 'day-counters.json')
PVP_KILLS_FILE = os.path.join(DATA_DIR, 'pvp-kills.json')
DATABASE_FILE = os.getenv('GAMELOG_DB_PATH', os.path.join(DATA_DIR, 'player_stats.db'))

# --- Remote Server (SFTP) ---
SFTP_HOST = os.getenv('GAMELOG_SFTP_HOST', '')
SFTP_PORT = _env_int('GAMELOG_SFTP_PORT', 8821)
SFTP_USER = os.getenv('GAMELOG_SFTP_USER', '')
SFTP_PASSWORD = os.getenv('GAMELOG_SFTP_PASSWORD', '')
SFTP_CONNECT_TIMEOUT = 30  # seconds
# known_hosts file used to verify the server key. Empty disables host key checking.
SFTP_KNOWN_HOSTS = os.getenv('GAMELOG_SFTP_KNOWN_HOSTS', '')

GAME_LOG_PATH = os.getenv('GAMELOG_GAME_LOG_PATH', '/HumanitZServer/HMZLog.log')
CONNECT_LOG_PATH = os.getenv('GAMELOG_CONNECT_LOG_PATH', '/HumanitZServer/PlayerConnectedLog.txt')
ID_MAP_PATH = os.getenv('GAMELOG_ID_MAP_PATH', '/HumanitZServer/PlayerIDMapped.txt')

# --- Polling & Aggregation ---
LOG_POLL_INTERVAL_SECONDS = _env_int('GAMELOG_POLL_INTERVAL', 30)
ROLLOVER_CHECK_INTERVAL_SECONDS = 60
BATCH_FLUSH_DELAY_SECONDS = _env_int('GAMELOG_BATCH_FLUSH_DELAY', 60)

# Log timestamps only carry minutes, so the attribution window has to be generous.
PVP_KILL_WINDOW_SECONDS = _env_int('GAMELOG_PVP_KILL_WINDOW', 300)
ENABLE_PVP_KILL_FEED = _env_bool('GAMELOG_ENABLE_PVP_KILL_FEED', True)
PVP_KILL_LOG_SIZE = 50

ENABLE_DEATH_LOOP_DETECTION = _env_bool('GAMELOG_ENABLE_DEATH_LOOP_DETECTION', True)
DEATH_LOOP_THRESHOLD = _env_int('GAMELOG_DEATH_LOOP_THRESHOLD', 3)
DEATH_LOOP_WINDOW_SECONDS = _env_int('GAMELOG_DEATH_LOOP_WINDOW', 60)

# --- Time Zones ---
# BOT_TIMEZONE drives daily threads and summaries, LOG_TIMEZONE is the zone the
# game server writes its timestamps in.
BOT_TIMEZONE = os.getenv('GAMELOG_BOT_TIMEZONE', 'UTC')
LOG_TIMEZONE = os.getenv('GAMELOG_LOG_TIMEZONE', 'UTC')

# --- Notifications ---
WEBHOOK_DISCORD_URL = os.getenv('GAMELOG_WEBHOOK_URL', '')
WEBHOOK_USE_FORUM_THREADS = _env_bool('GAMELOG_WEBHOOK_FORUM_THREADS', True)
WEBHOOK_USERNAME = 'Game Log Monitor'
WEBHOOK_TIMEOUT_SECONDS = 15

# --- Database Concurrency Configuration ---
DB_CONNECTION_TIMEOUT = 30.0
DB_MAX_RETRIES = 3
DB_RETRY_BASE_DELAY = 0.5
DB_RETRY_MAX_DELAY = 5.0

# --- Day Counter Kinds ---
DAY_COUNTER_KINDS = (
    'connects', 'disconnects', 'deaths', 'builds', 'damage', 'loots',
    'raid_hits', 'destroyed', 'admin', 'cheat', 'pvp_kills',
)


# --- Timezone-aware date helpers ---

def get_timezone(name: str = None) -> datetime.tzinfo:
    """Resolve an IANA zone name, falling back to UTC when it is unknown."""
    try:
        return ZoneInfo(name or BOT_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError):
        return datetime.timezone.utc


def make_log_timestamp(year: int, month: int, day: int, hour: int, minute: int,
                       second: int = 0) -> datetime.datetime:
    """Build an aware timestamp for a log line. Raises ValueError on impossible dates."""
    return datetime.datetime(year, month, day, hour, minute, second,
                             tzinfo=get_timezone(LOG_TIMEZONE))


def format_time(ts: datetime.datetime) -> str:
    return ts.astimezone(get_timezone(BOT_TIMEZONE)).strftime('%H:%M')


def get_date_label(date: datetime.date) -> str:
    """'20 Feb 2026' style label."""
    return f"{date.day} {date.strftime('%b %Y')}"


@dataclass
class WatcherSettings:
    """Engine settings. Each LogWatcher gets its own copy so several servers can run side by side."""
    game_log_path: str = GAME_LOG_PATH
    connect_log_path: str = CONNECT_LOG_PATH
    id_map_path: str = ID_MAP_PATH
    poll_interval: float = LOG_POLL_INTERVAL_SECONDS
    rollover_check_interval: float = ROLLOVER_CHECK_INTERVAL_SECONDS
    batch_flush_delay: float = BATCH_FLUSH_DELAY_SECONDS
    pvp_kill_window: float = PVP_KILL_WINDOW_SECONDS
    enable_pvp_kill_feed: bool = ENABLE_PVP_KILL_FEED
    pvp_kill_log_size: int = PVP_KILL_LOG_SIZE
    enable_death_loop_detection: bool = ENABLE_DEATH_LOOP_DETECTION
    death_loop_threshold: int = DEATH_LOOP_THRESHOLD
    death_loop_window: float = DEATH_LOOP_WINDOW_SECONDS
    offsets_file: str = OFFSETS_FILE
    day_counters_file: str = DAY_COUNTERS_FILE
    pvp_kills_file: str = PVP_KILLS_FILE
    timezone: str = BOT_TIMEZONE
