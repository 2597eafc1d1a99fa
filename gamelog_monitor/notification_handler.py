"""
Notification sinks.

The watcher only ever calls send(thread_key, message). thread_key is the ISO
date of the day the message belongs to, or None for channel-level posts such
as the daily summary. Grouping into per-day threads is the sink's business.
"""

import datetime
import logging
from typing import Any, Dict, Optional

from .config import WEBHOOK_DISCORD_URL, WEBHOOK_USE_FORUM_THREADS
from .messages import thread_title
from .webhook_sender import send_webhook_message

logger = logging.getLogger("GameLogMonitor.NotificationHandler")


class NotificationSink:
    async def send(self, thread_key: Optional[str], message: Dict[str, Any]):
        raise NotImplementedError


class LoggingSink(NotificationSink):
    """Writes messages to the log. Used when no webhook is configured."""

    async def send(self, thread_key: Optional[str], message: Dict[str, Any]):
        headline = message.get('author') or message.get('title') or 'Message'
        logger.info(f"[{thread_key or 'channel'}] {headline}: {message.get('description', '')}")


class DiscordWebhookSink(NotificationSink):
    def __init__(self, url: str = WEBHOOK_DISCORD_URL, use_threads: bool = WEBHOOK_USE_FORUM_THREADS):
        self.url = url
        self.use_threads = use_threads
        # thread_key -> Discord thread (channel) id
        self.threads: Dict[str, str] = {}

    async def send(self, thread_key: Optional[str], message: Dict[str, Any]):
        if not self.use_threads or thread_key is None:
            await send_webhook_message(self.url, message)
            return

        thread_id = self.threads.get(thread_key)
        if thread_id:
            await send_webhook_message(self.url, message, thread_id=thread_id)
            return

        name = thread_title(datetime.date.fromisoformat(thread_key))
        response = await send_webhook_message(self.url, message, thread_name=name, wait=True)
        channel_id = (response or {}).get('channel_id')
        if channel_id:
            self.threads[thread_key] = str(channel_id)
            logger.info(f"Created daily thread: {name}")
        else:
            logger.warning(f"Could not create daily thread '{name}', will retry with the next message")
