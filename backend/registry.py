from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Optional
import asyncio
import logging
import random
import string

from pydantic import ValidationError

import config
from errors import InvalidInput, NotFound
from protocol import OutboundEvent, Question, normalize_room_code
from room import Room

logger = logging.getLogger(__name__)

RoomPublisher = Callable[[str, OutboundEvent], Awaitable[None]]

ROOM_CODE_ALPHABET = string.ascii_uppercase + string.digits


def _parse_questions(questions: Any) -> List[Question]:
    if not isinstance(questions, list):
        raise InvalidInput("Invalid questions format")
    parsed = []
    for i, q in enumerate(questions):
        if isinstance(q, Question):
            parsed.append(q)
            continue
        try:
            parsed.append(Question.model_validate(q))
        except ValidationError as e:
            raise InvalidInput(f"Invalid question at index {i}: {e.errors()[0]['msg']}") from e
    return parsed


class RoomRegistry:
    """Process-wide table of rooms keyed by room code.

    Insertion and lookup never await, so on the event loop they cannot
    interleave with each other. Room state is only ever changed through
    the room's own methods.
    """

    def __init__(self, publish: RoomPublisher, time_limit: Optional[float] = None):
        self.rooms: Dict[str, Room] = {}
        self._publish = publish
        self._time_limit = time_limit
        self._cleanup_task: Optional[asyncio.Task] = None
        # Called with the room code after a room is evicted
        self.on_evict: Optional[Callable[[str], None]] = None

    def __len__(self) -> int:
        return len(self.rooms)

    def __contains__(self, room_code: str) -> bool:
        return normalize_room_code(room_code) in self.rooms

    def generate_room_code(self) -> str:
        """Generate a unique room code, checking for collisions."""
        for _ in range(config.MAX_ROOM_CODE_ATTEMPTS):
            code = ''.join(random.choices(ROOM_CODE_ALPHABET, k=config.ROOM_CODE_LENGTH))
            if code not in self.rooms:
                return code
        raise RuntimeError("Failed to generate unique room code")

    def create_room(self, subject: str, title: str, questions: Any,
                    creator_session_id: str = "") -> Room:
        parsed = _parse_questions(questions)
        code = self.generate_room_code()
        time_limit = self._time_limit if self._time_limit is not None else config.QUESTION_TIME_LIMIT
        room = Room(code, subject, title, parsed,
                    publish=partial(self._publish, code),
                    creator_session_id=creator_session_id,
                    time_limit=time_limit)
        self.rooms[code] = room
        logger.info("Created room %s ('%s', %d questions)", code, title, len(parsed))
        return room

    def get_room(self, room_code: str) -> Room:
        room = self.rooms.get(normalize_room_code(room_code))
        if room is None:
            raise NotFound("Room not found")
        return room

    def list_rooms_by_creator(self, session_id: str) -> List[dict]:
        if not session_id:
            return []
        return [room.summary() for room in self.rooms.values()
                if room.creator_session_id == session_id]

    def evict_expired(self, ttl: float) -> List[str]:
        expired = [code for code, room in self.rooms.items() if room.is_expired(ttl)]
        for code in expired:
            room = self.rooms.pop(code)
            room.close()
            logger.info("Evicted finished room %s", code)
            if self.on_evict:
                self.on_evict(code)
        return expired

    def start_cleanup_loop(self, ttl: float, interval: float = config.ROOM_CLEANUP_INTERVAL):
        """Start the background eviction task. A non-positive TTL keeps rooms forever."""
        if ttl <= 0 or self._cleanup_task is not None:
            return
        self._cleanup_task = asyncio.create_task(self._cleanup_expired_rooms(ttl, interval))

    async def _cleanup_expired_rooms(self, ttl: float, interval: float):
        """Periodically remove finished rooms that have been idle past the TTL."""
        while True:
            try:
                await asyncio.sleep(interval)
                self.evict_expired(ttl)
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Error in room cleanup loop")

    async def close(self):
        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None
        pending = [task for task in (room.close() for room in self.rooms.values()) if task]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
