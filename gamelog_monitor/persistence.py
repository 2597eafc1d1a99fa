"""
Crash-safe JSON state files.

Every state file (cursor record, day counters, kill log) is written to a
temporary sibling and swapped into place with os.replace, so a crash mid-write
leaves the previous record intact. A file that fails to parse is moved aside
and replaced with a fresh default instead of aborting startup.
"""

import datetime
import json
import logging
import os
import time
from typing import Any, Callable, Optional

log = logging.getLogger("GameLogMonitor.Persistence")


def atomic_write_json(path: str, data: Any) -> None:
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    tmp = path + ".tmp"
    with open(tmp, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
        f.flush()
        os.fsync(f.fileno())
    # Windows can refuse the rename while another process holds the file open.
    retries = 25 if os.name == "nt" else 3
    for attempt in range(retries):
        try:
            os.replace(tmp, path)
            return
        except PermissionError:
            if attempt == retries - 1:
                raise
            time.sleep(0.04)


def backup_corrupt_file(path: str) -> Optional[str]:
    """Move a damaged state file out of the way. Returns the backup path."""
    stamp = datetime.datetime.now(datetime.timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    backup = f"{path}.corrupt-{stamp}"
    try:
        os.replace(path, backup)
        log.warning(f"Backed up corrupt state file '{path}' to '{backup}'.")
        return backup
    except OSError as e:
        log.error(f"Could not back up corrupt state file '{path}': {e}")
        return None


def load_json_state(path: str, default_factory: Callable[[], Any],
                    validate: Optional[Callable[[Any], bool]] = None) -> Any:
    """
    Load a JSON state file.

    A missing file yields default_factory(). A file that cannot be parsed, or
    whose content fails validate(), is backed up and replaced on disk with the
    default so the next start sees a clean record.
    """
    if not os.path.exists(path):
        return default_factory()

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if validate is None or validate(data):
            return data
        log.warning(f"State file '{path}' has an unexpected shape.")
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        log.warning(f"State file '{path}' could not be parsed: {e}")
    except OSError as e:
        # Unreadable but maybe fine on disk, so leave it alone.
        log.error(f"Could not read state file '{path}': {e}")
        return default_factory()

    backup_corrupt_file(path)
    default = default_factory()
    try:
        atomic_write_json(path, default)
    except OSError as e:
        log.error(f"Could not write fresh state file '{path}': {e}")
    return default
