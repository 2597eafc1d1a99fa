import asyncio
import logging
from typing import Callable, Optional

log = logging.getLogger("GameLogMonitor.Scheduler")


class Scheduler:
    """Schedule-after/cancel seam used by the batch and death-loop timers."""

    def call_later(self, delay: float, callback: Callable[[], None]):
        """Run callback after delay seconds. Returns a handle with cancel()."""
        raise NotImplementedError


class AsyncioScheduler(Scheduler):
    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    def call_later(self, delay: float, callback: Callable[[], None]):
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(max(delay, 0), self._guarded, callback)

    @staticmethod
    def _guarded(callback: Callable[[], None]):
        # Timer callbacks run straight on the loop, so an escaping error would only reach the loop's handler.
        try:
            callback()
        except Exception:
            log.error("Scheduled callback failed:", exc_info=True)
