"""
Incremental tailing of append-only remote log files.

Each watched file has a TailCursor. A poll stats the file, detects rotation by
a shrinking size, fetches only the new byte range and hands complete lines to
the file's handler. The trailing unfinished line is kept until the next poll
completes it. Cursor offsets for all files are persisted together after each
pass so a restart resumes where the last run stopped.
"""

import datetime
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from .persistence import atomic_write_json, load_json_state
from .remote_files import RemoteFileAccessor, RemoteFileError, RemoteFileNotFoundError
from .state import TailCursor

log = logging.getLogger("GameLogMonitor.LogTailer")

BOM = '\ufeff'


def split_lines(partial: bytes, new_bytes: bytes) -> Tuple[List[str], bytes]:
    """
    Join the leftover partial line with freshly read bytes.

    Returns the complete lines (decoded, trimmed, empty ones dropped) and the
    new trailing partial, which is empty when the data ended on a newline.
    """
    chunks = (partial + new_bytes).split(b'\n')
    new_partial = chunks.pop()
    lines = []
    for chunk in chunks:
        line = chunk.decode('utf-8', errors='replace').lstrip(BOM).strip()
        if line:
            lines.append(line)
    return lines, new_partial


@dataclass
class WatchedFile:
    label: str
    path: str
    # Returns True when the line was a recognised event.
    on_line: Callable[[str], bool]


class CursorStore:
    """Combined cursor record: {"files": {path: offset}, "saved_at": iso}."""

    def __init__(self, path: str):
        self.path = path

    @staticmethod
    def _default():
        return {'files': {}, 'saved_at': None}

    @staticmethod
    def _valid(data) -> bool:
        return isinstance(data, dict) and isinstance(data.get('files', {}), dict)

    def load(self) -> Dict[str, int]:
        data = load_json_state(self.path, self._default, self._valid)
        offsets = {}
        for path, offset in (data.get('files') or {}).items():
            if isinstance(offset, int) and not isinstance(offset, bool) and offset >= 0:
                offsets[path] = offset
        return offsets

    def save(self, offsets: Dict[str, int]):
        atomic_write_json(self.path, {
            'files': dict(offsets),
            'saved_at': datetime.datetime.now(datetime.timezone.utc).isoformat(),
        })


class LogTailer:
    def __init__(self, accessor: RemoteFileAccessor, files: List[WatchedFile],
                 cursor_store: Optional[CursorStore] = None):
        self.accessor = accessor
        self.files = files
        self.cursor_store = cursor_store
        self.cursors: Dict[str, TailCursor] = {f.path: TailCursor(path=f.path) for f in files}

    def load_cursors(self):
        """Seed each cursor with its persisted offset so the first stat resumes instead of skipping ahead."""
        if self.cursor_store is None:
            return
        saved = self.cursor_store.load()
        for path, cursor in self.cursors.items():
            if path in saved:
                cursor.resume_offset = saved[path]
                log.info(f"Loaded saved offset {saved[path]} for {path}")

    def offsets(self) -> Dict[str, int]:
        offsets = {}
        for path, cursor in self.cursors.items():
            if cursor.initialized:
                offsets[path] = cursor.committed_offset
            elif cursor.resume_offset is not None:
                # Not seen yet this run; keep the saved position.
                offsets[path] = cursor.resume_offset
        return offsets

    def save_cursors(self):
        if self.cursor_store is None:
            return
        try:
            self.cursor_store.save(self.offsets())
        except OSError as e:
            log.warning(f"Could not save log offsets: {e}")

    async def poll(self) -> int:
        """One pass over every watched file, in order. Returns the number of lines dispatched."""
        dispatched = 0
        for watched in self.files:
            dispatched += await self._poll_file(watched)
        self.save_cursors()
        return dispatched

    async def _poll_file(self, watched: WatchedFile) -> int:
        cursor = self.cursors[watched.path]
        try:
            stat = await self.accessor.stat(watched.path)
        except RemoteFileNotFoundError:
            return 0
        except RemoteFileError as e:
            log.warning(f"{watched.label}: stat failed, will retry: {e}")
            return 0
        size = stat.size

        if size < cursor.last_size:
            log.info(f"{watched.label} rotated ({cursor.last_size} -> {size} bytes), resetting")
            cursor.reset()

        if not cursor.initialized:
            cursor.initialized = True
            if cursor.resume_offset is not None:
                cursor.last_size = min(cursor.resume_offset, size)
                cursor.resume_offset = None
                log.info(f"{watched.label}: resuming from offset {cursor.last_size} "
                         f"({size - cursor.last_size} bytes to catch up)")
            else:
                cursor.last_size = size
                log.info(f"{watched.label} initialised at {size} bytes, tailing from here")
                return 0

        if size == cursor.last_size:
            return 0

        log.debug(f"{watched.label}: {size - cursor.last_size} new bytes")
        try:
            data = await self.accessor.read_range(watched.path, cursor.last_size, size)
        except RemoteFileError as e:
            log.warning(f"{watched.label}: read of [{cursor.last_size}, {size}) failed, will retry: {e}")
            return 0

        # A short read only advances the cursor past the bytes that actually arrived.
        lines, cursor.partial = split_lines(cursor.partial, data)
        cursor.last_size += len(data)

        events = 0
        for line in lines:
            try:
                if watched.on_line(line):
                    events += 1
            except Exception:
                log.error(f"{watched.label}: failed to handle line: {line[:200]}", exc_info=True)
        if lines:
            log.info(f"{watched.label}: {len(lines)} lines ({events} events)")
        return len(lines)

    async def set_offsets_to_end(self, offsets: Optional[Dict[str, int]] = None):
        """
        Commit cursors at the end of their files.

        With offsets, only the given paths are committed, at the given byte
        positions. Without, every file is stat'ed and committed at its size.
        """
        for watched in self.files:
            cursor = self.cursors[watched.path]
            if offsets is not None:
                if watched.path not in offsets:
                    continue
                end = offsets[watched.path]
            else:
                try:
                    end = (await self.accessor.stat(watched.path)).size
                except RemoteFileError as e:
                    log.warning(f"{watched.label}: could not stat to set offset: {e}")
                    continue
            cursor.last_size = end
            cursor.partial = b''
            cursor.initialized = True
            cursor.resume_offset = None
        self.save_cursors()
