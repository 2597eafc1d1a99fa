"""
The log watcher engine.

LogWatcher wires the tailer, classifier, kill correlator, batches, death-loop
suppressor, day counters and stat store together. Every collaborator is passed
in, so several watchers (one per game server) can run in the same process.

All event handling is synchronous and happens between awaits, so the batch
dictionaries, the damage ledger and the day counters need no locks.
Notifications go onto an outbox queue that a separate task drains into the
sink. Stat store calls go onto a second queue that a writer task hands, in
batches, to a single database thread. Neither a slow sink nor a locked
database holds up tailing.
"""

import asyncio
import concurrent.futures
import datetime
import logging
from typing import Callable, Dict, List, Optional, Tuple

from . import messages
from .aggregators import BuildBatch, DeathLoopSuppressor, LootBatch, RaidBatch
from .config import WatcherSettings, get_timezone
from .day_state import DayState
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
from .kill_tracker import DamageKillCorrelator, KillLog
from .log_processor import TimestampFactory, classify_connect_line, classify_line, is_pvp_source, parse_id_map
from .log_tailer import CursorStore, LogTailer, WatchedFile, split_lines
from .notification_handler import LoggingSink, NotificationSink
from .remote_files import RemoteFileAccessor, RemoteFileError
from .scheduler import AsyncioScheduler, Scheduler
from .stat_store import StatStore

log = logging.getLogger("GameLogMonitor.LogWatcher")


class LogWatcher:
    def __init__(self, accessor: RemoteFileAccessor, sink: Optional[NotificationSink] = None,
                 stat_store: Optional[StatStore] = None, scheduler: Optional[Scheduler] = None,
                 settings: Optional[WatcherSettings] = None,
                 today_fn: Optional[Callable[[], datetime.date]] = None,
                 make_timestamp: Optional[TimestampFactory] = None,
                 db_executor: Optional[concurrent.futures.Executor] = None):
        self.accessor = accessor
        self.sink = sink or LoggingSink()
        self.stat_store = stat_store or StatStore()
        self.scheduler = scheduler or AsyncioScheduler()
        self.settings = settings or WatcherSettings()
        self.tz = get_timezone(self.settings.timezone)
        self.today_fn = today_fn or (lambda: datetime.datetime.now(self.tz).date())
        self.make_timestamp = make_timestamp
        # One worker keeps stat store calls in file order.
        self._owns_executor = db_executor is None
        self.db_executor = db_executor or concurrent.futures.ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="gamelog-db")

        s = self.settings
        self.correlator = DamageKillCorrelator(datetime.timedelta(seconds=s.pvp_kill_window))
        self.kill_log = KillLog(s.pvp_kills_file, s.pvp_kill_log_size)
        self.loot_batch = LootBatch(self.scheduler, s.batch_flush_delay, self._flush_loot)
        self.build_batch = BuildBatch(self.scheduler, s.batch_flush_delay, self._flush_builds)
        self.raid_batch = RaidBatch(self.scheduler, s.batch_flush_delay, self._flush_raids)
        self.death_loops = DeathLoopSuppressor(self.scheduler, s.death_loop_threshold,
                                               datetime.timedelta(seconds=s.death_loop_window),
                                               self._flush_death_loop)
        self.day_state = DayState(s.day_counters_file, self._post_daily_summary, self.tz)
        self.tailer = LogTailer(
            accessor,
            [
                WatchedFile('HMZLog', s.game_log_path, self.process_game_line),
                WatchedFile('ConnectLog', s.connect_log_path, self.process_connect_line),
            ],
            CursorStore(s.offsets_file) if s.offsets_file else None,
        )

        self.online_players = set()
        self.player_names: Dict[str, str] = {}
        self.outbox: asyncio.Queue = asyncio.Queue()
        self.stat_queue: asyncio.Queue = asyncio.Queue()
        self._stat_writer: Optional[asyncio.Task] = None
        self._stat_batch: Optional[asyncio.Future] = None
        self._tasks: List[asyncio.Task] = []
        self._id_map_warned = False
        self._loaded = False
        # False while backfilling: stat store calls only.
        self._live = True

        self._handlers: Dict[type, Callable[[LogEvent], None]] = {
            DeathEvent: self._on_death,
            BuildEvent: self._on_build,
            DamageTakenEvent: self._on_damage,
            LootEvent: self._on_loot,
            RaidEvent: self._on_raid,
            AdminAccessEvent: self._on_admin,
            CheatFlagEvent: self._on_cheat,
            ConnectEvent: self._on_connect,
            DisconnectEvent: self._on_disconnect,
        }

    # --- lifecycle ---

    def load_state(self, include_day_counters: bool = True):
        """
        Load cursors and the kill log, and the day counters unless told not to.

        Backfill leaves the day counters alone: loading them on a later day
        rolls them over, and the summary would be posted by a run that sends
        nothing. Safe to call more than once.
        """
        if not self._loaded:
            self.tailer.load_cursors()
            self.kill_log.load()
            self._loaded = True
        if include_day_counters and self.day_state.current is None:
            self.day_state.load(self.today_fn())

    async def start(self):
        self.load_state()
        log.info(f"Watching {self.settings.game_log_path} and {self.settings.connect_log_path}")
        # First pass records initial sizes, or catches up from saved offsets.
        await self.poll_once()
        self._notify(messages.startup_message())
        self._stat_writer = asyncio.create_task(self._stat_writer_loop())
        self._tasks = [
            asyncio.create_task(self._poll_loop()),
            asyncio.create_task(self._rollover_loop()),
            asyncio.create_task(self._delivery_loop()),
            self._stat_writer,
        ]

    async def stop(self):
        log.info("Stopping log watcher...")
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        self._stat_writer = None

        self.loot_batch.flush()
        self.build_batch.flush()
        self.raid_batch.flush()
        self.death_loops.flush_all()
        self.death_loops.cancel_all()

        self.tailer.save_cursors()
        self.kill_log.save()
        await self.deliver_pending()
        await self.close()
        log.info("Log watcher stopped.")

    async def close(self):
        """Write out queued stat store calls, then release the database thread and the accessor."""
        await self.drain_stats()
        if self._owns_executor:
            self.db_executor.shutdown(wait=True)
        await self.accessor.close()

    # --- background tasks ---

    async def _poll_loop(self):
        log.info("Log poll task started.")
        while True:
            try:
                await asyncio.sleep(self.settings.poll_interval)
                await self.poll_once()
            except asyncio.CancelledError:
                log.info("Log poll task cancelled.")
                break
            except Exception:
                log.error("Error in log poll task:", exc_info=True)

    async def _rollover_loop(self):
        while True:
            try:
                await asyncio.sleep(self.settings.rollover_check_interval)
                self.day_state.check_rollover(self.today_fn())
            except asyncio.CancelledError:
                break
            except Exception:
                log.error("Error in day rollover check:", exc_info=True)

    async def _delivery_loop(self):
        while True:
            try:
                thread_key, message = await self.outbox.get()
                await self._deliver(thread_key, message)
            except asyncio.CancelledError:
                break

    async def _deliver(self, thread_key: Optional[str], message: dict):
        try:
            await self.sink.send(thread_key, message)
        except Exception:
            log.error("Failed to deliver notification:", exc_info=True)

    async def deliver_pending(self) -> int:
        """Send everything currently queued. Returns how many messages were handed to the sink."""
        sent = 0
        while not self.outbox.empty():
            thread_key, message = self.outbox.get_nowait()
            await self._deliver(thread_key, message)
            sent += 1
        return sent

    async def _stat_writer_loop(self):
        log.info("Stat writer task started.")
        while True:
            try:
                first = await self.stat_queue.get()
                await self._write_stats([first] + self._take_stat_calls())
            except asyncio.CancelledError:
                break
            except Exception:
                log.error("Error in stat writer task:", exc_info=True)

    def _take_stat_calls(self) -> List[Tuple[str, tuple]]:
        calls = []
        while True:
            try:
                calls.append(self.stat_queue.get_nowait())
            except asyncio.QueueEmpty:
                break
        return calls

    async def _write_stats(self, calls: List[Tuple[str, tuple]]):
        if not calls:
            return
        loop = asyncio.get_running_loop()
        self._stat_batch = loop.run_in_executor(self.db_executor, self._apply_stat_calls, calls)
        try:
            # Cancelling the writer leaves the batch running for drain_stats to wait on.
            await asyncio.shield(self._stat_batch)
        finally:
            for _ in calls:
                self.stat_queue.task_done()

    def _apply_stat_calls(self, calls: List[Tuple[str, tuple]]):
        # Runs on the database thread.
        for method, args in calls:
            try:
                getattr(self.stat_store, method)(*args)
            except Exception:
                log.error(f"Stat store {method} failed:", exc_info=True)

    async def drain_stats(self):
        """Wait until every queued stat store call has been made."""
        if self._stat_writer is not None and not self._stat_writer.done():
            await self.stat_queue.join()
        else:
            if self._stat_batch is not None and not self._stat_batch.done():
                await asyncio.wait([self._stat_batch])
            await self._write_stats(self._take_stat_calls())

    # --- polling ---

    async def poll_once(self) -> int:
        self.load_state()
        lines = await self.tailer.poll()
        await self._refresh_id_map()
        self.correlator.prune(datetime.datetime.now(datetime.timezone.utc))
        self.kill_log.save()
        return lines

    async def _refresh_id_map(self):
        try:
            data = await self.accessor.read_full(self.settings.id_map_path)
        except RemoteFileError as e:
            if not self._id_map_warned:
                log.warning(f"Could not read player id map {self.settings.id_map_path}: {e}")
                self._id_map_warned = True
            return
        entries = parse_id_map(data.decode('utf-8', errors='replace'))
        if entries:
            self.player_names.update((e['steam_id'], e['name']) for e in entries)
            self._record('load_id_map', entries)

    def process_game_line(self, line: str) -> bool:
        event = classify_line(line, make_timestamp=self.make_timestamp)
        if event is None:
            return False
        self._handlers[type(event)](event)
        return True

    def process_connect_line(self, line: str) -> bool:
        event = classify_connect_line(line, make_timestamp=self.make_timestamp)
        if event is None:
            return False
        self._handlers[type(event)](event)
        return True

    # --- backfill ---

    async def backfill(self) -> Tuple[int, int]:
        """
        Read both logs in full and feed every recognised event to the stat store.

        No notifications, batches or day counters. The day counters file is not
        loaded, so the next live start still posts any pending summary.
        Afterwards the cursors are committed at the end of what was read, so
        live tailing carries on from there. Returns (lines, events).
        """
        self.load_state(include_day_counters=False)
        self._live = False
        total_lines = total_events = 0
        offsets = {}
        try:
            for watched in self.tailer.files:
                try:
                    data = await self.accessor.read_full(watched.path)
                except RemoteFileError as e:
                    log.warning(f"{watched.label}: backfill read failed: {e}")
                    continue
                lines, partial = split_lines(b'', data)
                events = 0
                for line in lines:
                    try:
                        if watched.on_line(line):
                            events += 1
                    except Exception:
                        log.error(f"{watched.label}: failed to backfill line: {line[:200]}", exc_info=True)
                offsets[watched.path] = len(data) - len(partial)
                await self.drain_stats()
                log.info(f"{watched.label}: backfilled {len(lines)} lines ({events} events)")
                total_lines += len(lines)
                total_events += events
        finally:
            self._live = True
        await self.tailer.set_offsets_to_end(offsets)
        return total_lines, total_events

    # --- notifications ---

    def _thread_key(self) -> str:
        return self.today_fn().isoformat()

    def _notify(self, message: dict, thread_key: Optional[str] = None, channel: bool = False):
        if not self._live:
            return
        if not channel and thread_key is None:
            thread_key = self._thread_key()
        self.outbox.put_nowait((thread_key, message))

    def _count(self, kind: str, timestamp: datetime.datetime):
        if self._live:
            self.day_state.incr(kind, timestamp)

    def _record(self, method: str, *args):
        self.stat_queue.put_nowait((method, args))

    def _remember(self, steam_id: Optional[str], player: str):
        if steam_id and player:
            self.player_names[steam_id] = player

    def _post_daily_summary(self, date: datetime.date, counts: Dict[str, int]):
        log.info(f"Posting daily summary for {date}: {counts}")
        self._notify(messages.daily_summary_message(date, counts), channel=True)

    def _flush_loot(self, entries):
        self._notify(messages.loot_batch_message(entries, self._owner_name))

    def _flush_builds(self, entries):
        self._notify(messages.build_batch_message(entries))

    def _flush_raids(self, entries):
        self._notify(messages.raid_batch_message(entries, self._owner_name))

    def _flush_death_loop(self, entry):
        self._notify(messages.death_loop_message(entry.player, entry.count,
                                                 entry.first_timestamp, entry.last_timestamp))

    def _owner_name(self, steam_id: str) -> Optional[str]:
        return self.player_names.get(steam_id)

    def get_pvp_kills(self, count: int = 10) -> List[dict]:
        return self.kill_log.recent(count)

    # --- event handlers ---

    def _on_death(self, event: DeathEvent):
        player, ts = event.player, event.timestamp
        self._record('record_death', player, ts)
        self._count('deaths', ts)

        kill = None
        if self.settings.enable_pvp_kill_feed:
            kill = self.correlator.check_kill(player, ts)
        if kill:
            self._record('record_pvp_kill', kill.attacker, player, ts)
            if self._live:
                self._count('pvp_kills', ts)
                self.kill_log.append(kill.attacker, player, kill.total_damage, ts)
                self._notify(messages.pvp_kill_message(kill.attacker, player, kill.total_damage, ts))

        if not self._live:
            return
        announce = True
        if self.settings.enable_death_loop_detection:
            announce = self.death_loops.record_death(player, ts)
        if announce:
            self._notify(messages.death_message(player, ts, killer=kill.attacker if kill else None))

    def _on_build(self, event: BuildEvent):
        self._remember(event.steam_id, event.player)
        self._record('record_build', event.player, event.steam_id, event.item, event.timestamp)
        self._count('builds', event.timestamp)
        if self._live:
            self.build_batch.add(event.player, event.steam_id, event.item)

    def _on_damage(self, event: DamageTakenEvent):
        self._record('record_damage_taken', event.player, event.source, event.timestamp)
        self._count('damage', event.timestamp)
        if self.settings.enable_pvp_kill_feed and is_pvp_source(event.source):
            self.correlator.record_damage(event.player, event.source, event.amount, event.timestamp)

    def _on_loot(self, event: LootEvent):
        # Looting your own container is not interesting.
        if event.steam_id == event.owner_id:
            return
        self._remember(event.steam_id, event.player)
        self._record('record_loot', event.player, event.steam_id, event.owner_id, event.timestamp)
        self._count('loots', event.timestamp)
        if self._live:
            self.loot_batch.add(event.player, event.steam_id, event.owner_id, event.container)

    def _on_raid(self, event: RaidEvent):
        if event.owner_id is None:
            self._count('destroyed', event.timestamp)
            self._notify(messages.building_destroyed_message(event.player, event.building, event.timestamp))
            return
        if event.steam_id and event.steam_id == event.owner_id:
            return
        self._remember(event.steam_id, event.player)
        self._record('record_raid', event.player, event.steam_id, event.owner_id, event.destroyed,
                     event.timestamp)
        self._count('raid_hits', event.timestamp)
        if self._live:
            self.raid_batch.add(event.player, event.steam_id, event.owner_id, event.building, event.destroyed)

    def _on_admin(self, event: AdminAccessEvent):
        self._record('record_admin_access', event.player, event.timestamp)
        self._count('admin', event.timestamp)
        self._notify(messages.admin_access_message(event.player, event.timestamp))

    def _on_cheat(self, event: CheatFlagEvent):
        self._remember(event.steam_id, event.player)
        self._record('record_cheat_flag', event.player, event.steam_id, event.flag_type, event.timestamp)
        self._count('cheat', event.timestamp)
        self._notify(messages.cheat_flag_message(event.player, event.flag_type, event.timestamp))

    def _on_connect(self, event: ConnectEvent):
        self._remember(event.steam_id, event.player)
        self._record('record_connect', event.player, event.steam_id, event.timestamp)
        self._count('connects', event.timestamp)
        if not self._live:
            return
        self.online_players.add(event.steam_id)
        self._record('record_player_count', len(self.online_players), event.timestamp)
        self._notify(messages.connect_message(event.player, event.timestamp, len(self.online_players)))

    def _on_disconnect(self, event: DisconnectEvent):
        self._remember(event.steam_id, event.player)
        self._record('record_disconnect', event.player, event.steam_id, event.timestamp)
        self._count('disconnects', event.timestamp)
        if not self._live:
            return
        self.online_players.discard(event.steam_id)
        self._notify(messages.disconnect_message(event.player, event.timestamp, len(self.online_players)))
