import argparse
import asyncio
import logging
import sys

from gamelog_monitor import config
from gamelog_monitor.database import SqliteStatStore
from gamelog_monitor.log_watcher import LogWatcher
from gamelog_monitor.notification_handler import DiscordWebhookSink, LoggingSink
from gamelog_monitor.remote_files import LocalFileAccessor, SftpFileAccessor

# --- Centralized Logging Configuration ---
log = logging.getLogger("GameLogMonitor")


def build_accessor(local_root):
    if local_root:
        log.info(f"Reading server files from local directory '{local_root}'.")
        return LocalFileAccessor(local_root)
    if not config.SFTP_HOST:
        log.critical("No SFTP host configured. Set GAMELOG_SFTP_HOST or use --local-root.")
        sys.exit(1)
    log.info(f"Reading server files over SFTP from {config.SFTP_HOST}:{config.SFTP_PORT}.")
    if not config.SFTP_KNOWN_HOSTS:
        log.warning("SFTP host key checking is disabled. Set GAMELOG_SFTP_KNOWN_HOSTS to a known_hosts file.")
    return SftpFileAccessor(config.SFTP_HOST, config.SFTP_PORT, config.SFTP_USER, config.SFTP_PASSWORD,
                            known_hosts=config.SFTP_KNOWN_HOSTS or None)


def build_sink():
    if config.WEBHOOK_DISCORD_URL:
        return DiscordWebhookSink(config.WEBHOOK_DISCORD_URL, config.WEBHOOK_USE_FORUM_THREADS)
    log.warning("No webhook URL configured. Notifications will only be logged.")
    return LoggingSink()


async def run_backfill(watcher: LogWatcher):
    """Read both logs from the start into the stat store, then exit. Day counters are left for the live run."""
    try:
        lines, events = await watcher.backfill()
        log.info(f"Backfill complete: {lines} lines, {events} events recorded. Live tailing resumes from here.")
    finally:
        await watcher.close()


async def run_watcher(watcher: LogWatcher):
    await watcher.start()
    try:
        while True:
            await asyncio.sleep(3600)
    except asyncio.CancelledError:
        pass
    finally:
        await watcher.stop()


def main():
    parser = argparse.ArgumentParser(
        description="Game Log Monitor - tails game server logs and posts activity to Discord",
        epilog="""
Examples:
  # Watch the server over SFTP (GAMELOG_SFTP_HOST, GAMELOG_SFTP_USER, GAMELOG_SFTP_PASSWORD)
  %(prog)s

  # Watch a server that shares this machine's filesystem
  %(prog)s --local-root /srv/gameserver

  # One-time import of the full logs into the stats database
  %(prog)s --backfill
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument('--local-root', metavar='DIR',
                        help="Read the server files from this local directory instead of SFTP.")
    parser.add_argument('--backfill', action='store_true',
                        help="BACKFILL MODE: Record every event in the full logs into the stats database and exit.")
    parser.add_argument('--debug', action='store_true', help="Enable debug logging.")
    args = parser.parse_args()

    log_level = logging.DEBUG if args.debug else logging.INFO
    logging.basicConfig(level=log_level, format='%(asctime)s [%(levelname)s] [%(name)s] %(message)s',
                        datefmt='%Y-%m-%d %H:%M:%S')
    # asyncssh is chatty at INFO
    logging.getLogger("asyncssh").setLevel(logging.WARNING)

    accessor = build_accessor(args.local_root)
    stat_store = SqliteStatStore(config.DATABASE_FILE)
    try:
        if args.backfill:
            watcher = LogWatcher(accessor, LoggingSink(), stat_store)
            asyncio.run(run_backfill(watcher))
        else:
            watcher = LogWatcher(accessor, build_sink(), stat_store)
            try:
                asyncio.run(run_watcher(watcher))
            except KeyboardInterrupt:
                log.info("Interrupted, shutting down.")
    finally:
        stat_store.close()


if __name__ == "__main__":
    main()
