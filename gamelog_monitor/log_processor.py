import datetime
import logging
import re
from dataclasses import dataclass
from typing import Callable, List, Optional

from . import config
from .events import (
    AdminAccessEvent,
    BuildEvent,
    CheatFlagEvent,
    ConnectEvent,
    DamageTakenEvent,
    DeathEvent,
    DisconnectEvent,
    LogEvent,
    LootEvent,
    RaidEvent,
)

log = logging.getLogger("GameLogMonitor.LogProcessor")

TimestampFactory = Callable[..., datetime.datetime]

# (13/2/2026 12:35) body  -- also 2,026 years, 2-digit years, :SS seconds and - . separators
_TS = r'(\d{1,2})[/\-.](\d{1,2})[/\-.](\d,?\d{3}|\d{2})\s+(\d{1,2}):(\d{1,2})(?::(\d{1,2}))?'
LINE_RE = re.compile(r'^\(' + _TS + r'\)\s+(.+)$')
CONNECT_RE = re.compile(
    r'^Player (Connected|Disconnected)\s+(.+?)\s+NetID\((\d{17})[^)]*\)\s*\(' + _TS + r'\)'
)

# Structure damage from these sources is never a raid.
NON_PLAYER_ATTACKERS = frozenset({'Decayfalse', 'Zeek'})

NPC_SOURCE_RE = re.compile(
    r'Zombie|Wolf|Bear|Deer|Snake|Spider|Human|KaiHuman|Mutant|Runner|Brute|Pudge|Dogzombie'
    r'|Police|Cop|Military|Hazmat|Camo',
    re.IGNORECASE,
)

# Specific variants come before the generic catch-alls.
DAMAGE_SOURCE_TABLE = [
    (re.compile(r'Dogzombie', re.I), 'Dog Zombie'),
    (re.compile(r'ZombieBear', re.I), 'Zombie Bear'),
    (re.compile(r'Mutant', re.I), 'Mutant'),
    (re.compile(r'Runner.*Brute|Brute.*Runner|RunnerBrute', re.I), 'Runner Brute'),
    (re.compile(r'Runner', re.I), 'Runner'),
    (re.compile(r'Brute', re.I), 'Brute'),
    (re.compile(r'Pudge|BellyToxic', re.I), 'Bloater'),
    (re.compile(r'Police|Cop|MilitaryArmoured|Camo|Hazmat', re.I), 'Armoured'),
    (re.compile(r'Zombie', re.I), 'Zombie'),
    (re.compile(r'KaiHuman', re.I), 'Bandit'),
    (re.compile(r'Wolf', re.I), 'Wolf'),
    (re.compile(r'Bear', re.I), 'Bear'),
    (re.compile(r'Deer', re.I), 'Deer'),
    (re.compile(r'Snake', re.I), 'Snake'),
    (re.compile(r'Spider', re.I), 'Spider'),
    (re.compile(r'Human', re.I), 'NPC'),
]


def classify_damage_source(source: str) -> str:
    """
    Map a raw damage source to a readable category.
    BP_PawnZombie2_C_123 -> Zombie, BP_Wolf_C_456 -> Wolf, SomePlayer -> Player.
    """
    for pattern, label in DAMAGE_SOURCE_TABLE:
        if pattern.search(source):
            return label
    if not source.startswith('BP_'):
        return 'Player'
    return 'Other'


def is_pvp_source(source: str) -> bool:
    """A damage source counts as a player when it has no BP_ prefix and no NPC keyword."""
    return not source.startswith('BP_') and not NPC_SOURCE_RE.search(source)


def simplify_blueprint_name(raw_name: str) -> str:
    """BP_GlassWindow_C_2147481025 -> GlassWindow, BP_Wall_Wood_C -> Wall Wood."""
    name = re.sub(r'^BP_', '', raw_name)
    name = re.sub(r'_C_\d+.*$', '', name)
    name = re.sub(r'_C$', '', name)
    return name.replace('_', ' ').strip()


def simplify_container_name(raw_name: str) -> str:
    if 'VehicleStorage' in raw_name: return 'Vehicle Storage'
    if 'CupboardContainer' in raw_name: return 'Cupboard'
    if 'StorageContainer' in raw_name: return 'Storage Container'
    if 'Fridge' in raw_name: return 'Fridge'
    if 'Barrel' in raw_name: return 'Barrel'
    name = re.sub(r'^(ChildActor_GEN_VARIABLE_|Storage_GEN_VARIABLE_)?BP_', '', raw_name)
    name = re.sub(r'_C_\w+$', '', name)
    return name.replace('_', ' ').strip()


def parse_log_timestamp(day: str, month: str, year: str, hour: str, minute: str,
                        second: Optional[str] = None,
                        make_timestamp: Optional[TimestampFactory] = None) -> Optional[datetime.datetime]:
    """Normalize the captured date parts. Returns None for impossible dates."""
    make_timestamp = make_timestamp or config.make_log_timestamp
    year = year.replace(',', '')
    try:
        year_num = int(year)
        if len(year) == 2:
            year_num += 2000
        return make_timestamp(year_num, int(month), int(day), int(hour), int(minute),
                              int(second) if second else 0)
    except ValueError:
        return None


# --- Rule table ---

@dataclass
class LogRule:
    """One body shape. build() may return None for a recognised line that should not produce an event."""
    name: str
    pattern: re.Pattern
    build: Callable[[re.Match, datetime.datetime], Optional[LogEvent]]


def _build_death(m, ts):
    return DeathEvent(player=m.group(1).strip(), timestamp=ts)


def _build_build(m, ts):
    return BuildEvent(player=m.group(1).strip(), steam_id=m.group(2), timestamp=ts,
                      item=simplify_blueprint_name(m.group(3).strip()))


def _build_damage(m, ts):
    try:
        amount = float(m.group(2))
    except ValueError:
        return None
    if amount <= 0:
        return None
    source = m.group(3).strip()
    return DamageTakenEvent(player=m.group(1).strip(), timestamp=ts, amount=amount,
                            source=source, source_category=classify_damage_source(source))


def _build_loot(m, ts):
    return LootEvent(player=m.group(1).strip(), steam_id=m.group(2), timestamp=ts,
                     owner_id=m.group(4), container=simplify_container_name(m.group(3)))


def _is_player_attacker(attacker: str, attacker_id: Optional[str]) -> bool:
    if attacker in NON_PLAYER_ATTACKERS:
        return False
    # Zombies and animals hitting walls carry no steam id.
    return bool(attacker_id) or is_pvp_source(attacker)


def _build_raid(m, ts):
    attacker, attacker_id, owner_id = m.group(3).strip(), m.group(4), m.group(2)
    if not _is_player_attacker(attacker, attacker_id):
        return None
    if attacker_id and attacker_id == owner_id:
        return None
    return RaidEvent(player=attacker, steam_id=attacker_id, timestamp=ts, owner_id=owner_id,
                     building=simplify_blueprint_name(m.group(1)), destroyed=bool(m.group(5)))


def _build_unowned(m, ts):
    attacker = m.group(2).strip()
    if not m.group(4) or not _is_player_attacker(attacker, m.group(3)):
        return None
    return RaidEvent(player=attacker, steam_id=m.group(3), timestamp=ts, owner_id=None,
                     building=simplify_blueprint_name(m.group(1)), destroyed=True)


def _build_admin(m, ts):
    return AdminAccessEvent(player=m.group(1).strip(), timestamp=ts)


def _build_cheat(m, ts):
    return CheatFlagEvent(player=m.group(2).strip(), steam_id=m.group(3), timestamp=ts,
                          flag_type=m.group(1).strip())


_CLAN_TAG = r'(?:\[[^\]]*\]\s*)?'

GAME_LOG_RULES: List[LogRule] = [
    LogRule('death', re.compile(r'^Player died \((.+)\)$'), _build_death),
    LogRule('build', re.compile(
        r'^' + _CLAN_TAG + r'(.+?)\((\d{17})[^)]*\)\s*finished building\s+(.+)$'), _build_build),
    LogRule('damage_taken', re.compile(
        r'^(.+?)\s+took\s+([\d.]+)\s+damage from\s+(.+)$'), _build_damage),
    LogRule('container_looted', re.compile(
        r'^' + _CLAN_TAG + r'(.+?)\s*\((\d{17})[^)]*\)\s*looted a container\s*\(([^)]+)\)\s*owner by\s*(\d{17})'),
        _build_loot),
    LogRule('structure_raid', re.compile(
        r'^Building \(([^)]+)\) owned by \((\d{17})[^)]*\) damaged \([\d.]+\) by (.+?)'
        r'(?:\((\d{17})[^)]*\))?(\s*\(Destroyed\))?$'), _build_raid),
    LogRule('structure_unowned', re.compile(
        r'^Building \(([^)]+)\) owned by \(\) damaged \([\d.]+\) by (.+?)'
        r'(?:\((\d{17})[^)]*\))?(\s*\(Destroyed\))?$'), _build_unowned),
    LogRule('admin_access', re.compile(r'^(.+?)\s+gained admin access!$'), _build_admin),
    LogRule('cheat_flag', re.compile(
        r'^(Stack limit detected in drop function|Odd behavior.*?Cheat)\s*\((.+?)\s*-\s*(\d{17})'),
        _build_cheat),
]

RULES_BY_NAME = {rule.name: rule for rule in GAME_LOG_RULES}


def apply_rules(body: str, timestamp: datetime.datetime,
                rules: List[LogRule] = GAME_LOG_RULES) -> Optional[LogEvent]:
    """First matching rule wins, even when its builder declines to emit an event."""
    for rule in rules:
        match = rule.pattern.match(body)
        if match:
            return rule.build(match, timestamp)
    return None


def classify_line(line: str, rules: List[LogRule] = GAME_LOG_RULES,
                  make_timestamp: Optional[TimestampFactory] = None) -> Optional[LogEvent]:
    """Turn one complete game-log line into an event, or None if it is not one we track."""
    match = LINE_RE.match(line)
    if not match:
        return None
    day, month, year, hour, minute, second, body = match.groups()
    timestamp = parse_log_timestamp(day, month, year, hour, minute, second, make_timestamp)
    if timestamp is None:
        log.debug(f"Dropping line with impossible timestamp: {line[:100]}")
        return None
    return apply_rules(body, timestamp, rules)


def classify_connect_line(line: str, make_timestamp: Optional[TimestampFactory] = None) -> Optional[LogEvent]:
    """
    Parse a connection log line:
        Player Connected Name NetID(76561198000000000_+_|...) (13/2/2026 12:35)
    """
    match = CONNECT_RE.match(line)
    if not match:
        return None
    action, name, steam_id, day, month, year, hour, minute, second = match.groups()
    timestamp = parse_log_timestamp(day, month, year, hour, minute, second, make_timestamp)
    if timestamp is None:
        return None
    event_cls = ConnectEvent if action == 'Connected' else DisconnectEvent
    return event_cls(player=name.strip(), steam_id=steam_id, timestamp=timestamp)


ID_MAP_RE = re.compile(r'^(\d{17})_\+_\|[^@]+@(.+)$')


def parse_id_map(text: str) -> List[dict]:
    """Parse the player id map file: 76561198000000000_+_|<guid>@PlayerName."""
    entries = []
    for line in text.splitlines():
        match = ID_MAP_RE.match(line.strip())
        if match:
            entries.append({'steam_id': match.group(1), 'name': match.group(2).strip()})
    return entries
