"""
Database Utilities

Retry logic and connection setup for the SQLite stat store. The store is
written from the watcher's database thread while other tools may read the same
file, so connections use WAL and a busy timeout, and writes retry briefly when
the database is locked.
"""

import functools
import logging
import os
import sqlite3
import time
from typing import Any, Callable

log = logging.getLogger("GameLogMonitor.DbUtils")

RETRYABLE_ERRORS = ("locked", "busy", "unable to open")


def retry_on_db_lock(max_attempts: int = 3, base_delay: float = 0.5, max_delay: float = 5.0):
    """
    Decorator to retry database operations on lock/busy errors with exponential backoff.

    Args:
        max_attempts: Maximum number of attempts
        base_delay: Initial delay between retries in seconds
        max_delay: Maximum delay between retries in seconds
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            delay = base_delay
            for attempt in range(1, max_attempts + 1):
                try:
                    return func(*args, **kwargs)
                except (sqlite3.OperationalError, sqlite3.DatabaseError) as e:
                    message = str(e).lower()
                    if not any(marker in message for marker in RETRYABLE_ERRORS):
                        raise
                    if attempt == max_attempts:
                        log.error(f"Database operation {func.__name__} failed after {max_attempts} attempts: {e}",
                                  exc_info=True)
                        raise
                    log.warning(f"Database operation {func.__name__} failed "
                                f"(attempt {attempt}/{max_attempts}): {e}. Retrying in {delay:.2f}s...")
                    time.sleep(delay)
                    delay = min(delay * 2, max_delay)

        return wrapper

    return decorator


def get_optimized_connection(db_path: str, timeout: float = 30.0,
                             check_same_thread: bool = True) -> sqlite3.Connection:
    """Open a read-write connection tuned for one writer and concurrent readers."""
    directory = os.path.dirname(db_path)
    if directory and db_path != ":memory:":
        os.makedirs(directory, exist_ok=True)

    conn = sqlite3.connect(db_path, timeout=timeout, detect_types=0, check_same_thread=check_same_thread)
    cursor = conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA synchronous=NORMAL;")
    cursor.execute("PRAGMA temp_store=MEMORY;")
    cursor.execute(f"PRAGMA busy_timeout={int(timeout * 1000)};")
    cursor.close()

    log.debug(f"Opened SQLite connection to {db_path} (timeout={timeout}s)")
    return conn
