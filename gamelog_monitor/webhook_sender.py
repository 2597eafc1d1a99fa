import logging
from typing import Any, Optional

import aiohttp

from .config import WEBHOOK_TIMEOUT_SECONDS, WEBHOOK_USERNAME

logger = logging.getLogger("GameLogMonitor.WebhookSender")


async def send_webhook_message(
    url: str,
    message: dict[str, Any],
    thread_id: Optional[str] = None,
    thread_name: Optional[str] = None,
    wait: bool = False,
) -> Optional[dict[str, Any]]:
    """
    Post one message to a Discord webhook.

    thread_id posts into an existing forum thread, thread_name starts a new
    one. With wait=True Discord answers with the created message, which is
    returned so the caller can learn the new thread's channel_id. Returns None
    when nothing was sent or the send failed.
    """
    if not url:
        logger.warning("No webhook URL provided. Skipping webhook notification.")
        return None

    payload = _format_discord_webhook(message, thread_name=thread_name)
    params = {}
    if wait:
        params['wait'] = 'true'
    if thread_id:
        params['thread_id'] = thread_id

    try:
        timeout = aiohttp.ClientTimeout(total=WEBHOOK_TIMEOUT_SECONDS)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.post(url, json=payload, params=params) as response:
                response.raise_for_status()
                logger.debug(f"Sent webhook message: {message.get('author') or message.get('title')}")
                if wait:
                    return await response.json()
                return {}
    except aiohttp.ClientError as e:
        logger.error(f"Failed to send webhook notification: {e}")
    except Exception as e:
        logger.error(f"An unexpected error occurred while sending webhook: {e}")
    return None


def _format_discord_embed(message: dict[str, Any]) -> dict[str, Any]:
    embed: dict[str, Any] = {
        "description": message.get("description") or "",
        "color": message.get("color", 0),
    }
    if message.get("title"):
        embed["title"] = message["title"]
    if message.get("author"):
        embed["author"] = {"name": message["author"]}
    if message.get("footer"):
        embed["footer"] = {"text": message["footer"]}
    if message.get("timestamp"):
        embed["timestamp"] = message["timestamp"]
    return embed


def _format_discord_webhook(message: dict[str, Any], thread_name: Optional[str] = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "username": WEBHOOK_USERNAME,
        "embeds": [_format_discord_embed(message)],
    }
    if thread_name:
        payload["thread_name"] = thread_name
    return payload
