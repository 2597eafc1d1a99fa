"""
Shared fixtures for Game Log Monitor tests.
"""

import concurrent.futures
import datetime
from unittest.mock import Mock

import pytest

from gamelog_monitor.config import WatcherSettings
from gamelog_monitor.log_watcher import LogWatcher
from gamelog_monitor.notification_handler import NotificationSink
from gamelog_monitor.remote_files import RemoteFileAccessor, RemoteFileError, RemoteFileNotFoundError, RemoteStat
from gamelog_monitor.scheduler import Scheduler
from gamelog_monitor.stat_store import StatStore

GAME_LOG = "/srv/HMZLog.log"
CONNECT_LOG = "/srv/PlayerConnectedLog.txt"
ID_MAP = "/srv/PlayerIDMapped.txt"


def utc_timestamp(year, month, day, hour, minute, second=0):
    return datetime.datetime(year, month, day, hour, minute, second, tzinfo=datetime.timezone.utc)


class ManualHandle:
    def __init__(self, when, callback):
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualScheduler(Scheduler):
    """Timers that only fire when the test advances the clock."""

    def __init__(self):
        self.now = 0.0
        self.handles = []

    def call_later(self, delay, callback):
        handle = ManualHandle(self.now + delay, callback)
        self.handles.append(handle)
        return handle

    @property
    def pending(self):
        return [h for h in self.handles if not h.cancelled]

    def advance(self, seconds):
        target = self.now + seconds
        while True:
            due = [h for h in self.pending if h.when <= target]
            if not due:
                break
            handle = min(due, key=lambda h: h.when)
            self.handles.remove(handle)
            self.now = handle.when
            handle.callback()
        self.now = target


class FakeAccessor(RemoteFileAccessor):
    """In-memory remote filesystem with failure injection."""

    def __init__(self):
        self.files = {}
        self.fail_reads = 0
        self.fail_stats = 0
        self.reads = []
        self.closed = False

    def append(self, path, data):
        if isinstance(data, str):
            data = data.encode("utf-8")
        self.files[path] = self.files.get(path, b"") + data

    def replace(self, path, data):
        if isinstance(data, str):
            data = data.encode("utf-8")
        self.files[path] = data

    async def stat(self, path):
        if self.fail_stats:
            self.fail_stats -= 1
            raise RemoteFileError("connection reset")
        if path not in self.files:
            raise RemoteFileNotFoundError(path)
        return RemoteStat(size=len(self.files[path]))

    async def read_range(self, path, start, end):
        if self.fail_reads:
            self.fail_reads -= 1
            raise RemoteFileError("read timed out")
        if path not in self.files:
            raise RemoteFileNotFoundError(path)
        self.reads.append((path, start, end))
        return self.files[path][start:end]

    async def read_full(self, path):
        if path not in self.files:
            raise RemoteFileNotFoundError(path)
        return self.files[path]

    async def write_full(self, path, data):
        self.files[path] = data

    async def close(self):
        self.closed = True


class RecordingSink(NotificationSink):
    def __init__(self):
        self.sent = []

    async def send(self, thread_key, message):
        self.sent.append((thread_key, message))

    @property
    def authors(self):
        return [m.get("author") for _, m in self.sent]


class Today:
    """Mutable stand-in for the configured 'today' function."""

    def __init__(self, date):
        self.date = date

    def __call__(self):
        return self.date


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def accessor():
    return FakeAccessor()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def stat_store():
    return Mock(spec=StatStore)


@pytest.fixture
def today():
    return Today(datetime.date(2026, 2, 1))


@pytest.fixture
def settings(tmp_path):
    return WatcherSettings(
        game_log_path=GAME_LOG,
        connect_log_path=CONNECT_LOG,
        id_map_path=ID_MAP,
        offsets_file=str(tmp_path / "log-offsets.json"),
        day_counters_file=str(tmp_path / "day-counters.json"),
        pvp_kills_file=str(tmp_path / "pvp-kills.json"),
        timezone="UTC",
    )


@pytest.fixture
def db_executor():
    executor = concurrent.futures.ThreadPoolExecutor(max_workers=1)
    yield executor
    executor.shutdown(wait=True)


@pytest.fixture
def make_watcher(accessor, sink, stat_store, scheduler, settings, today, db_executor):
    """Factory so tests can build a second watcher over the same state files (a restart)."""

    def _make(**overrides):
        kwargs = dict(accessor=accessor, sink=sink, stat_store=stat_store, scheduler=scheduler,
                      settings=settings, today_fn=today, make_timestamp=utc_timestamp,
                      db_executor=db_executor)
        kwargs.update(overrides)
        return LogWatcher(**kwargs)

    return _make


@pytest.fixture
def watcher(make_watcher):
    return make_watcher()
