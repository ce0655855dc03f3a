import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class QuestionTimer:
    """The single countdown owned by one room.

    ``restart`` cancels whatever countdown is pending before arming a new
    one, so a room never has two live timers. When a countdown expires the
    callback receives the question index the countdown was armed for; the
    room uses it to ignore an expiry that no longer matches its state.
    """

    def __init__(self, room_code: str):
        self.room_code = room_code
        self._task: Optional[asyncio.Task] = None

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def restart(self, index: int, delay: float,
                on_expire: Callable[[int], Awaitable[None]]):
        self.cancel()
        self._task = asyncio.create_task(self._run(index, delay, on_expire))

    def cancel(self) -> Optional[asyncio.Task]:
        """Cancel the pending countdown and return its task so callers can await it."""
        task = self._task if self.active else None
        self._task = None
        # An expiring countdown may restart the timer from inside its own callback
        if task is None or task is asyncio.current_task():
            return None
        task.cancel()
        return task

    async def _run(self, index: int, delay: float,
                   on_expire: Callable[[int], Awaitable[None]]):
        try:
            await asyncio.sleep(delay)
        except asyncio.CancelledError:
            logger.debug("Timer for question %d in room %s cancelled", index, self.room_code)
            raise
        if self._task is asyncio.current_task():
            self._task = None
        try:
            await on_expire(index)
        except Exception:
            logger.exception("Question timer callback failed in room %s", self.room_code)
